"""Daily standup data-quality score."""

import math

from models import StandupEntry

VAGUE_MIN_LENGTH = 25
VAGUE_KEYWORDS = (
    "same",
    "as usual",
    "nothing",
    "n/a",
    "na",
    "todo",
    "tbd",
    "working on it",
    "stuff",
)


def _round(value: float) -> int:
    # Half-up rounding so 62.5 scores as 63
    return int(math.floor(value + 0.5))


def _rate(hits: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return hits / total * 100


def is_vague_text(value: str | None) -> bool:
    text = (value or "").strip().lower()
    if not text or len(text) < VAGUE_MIN_LENGTH:
        return True
    return any(keyword in text for keyword in VAGUE_KEYWORDS)


def calculate_standup_quality(entries: list[StandupEntry], total_members: int) -> dict:
    """Score a project day 0-100 from completion, linked work, blocker and vagueness rates.

    Rates are computed against the larger of the member count and the entry
    count, so members who never submitted pull the completion rate down.
    """
    denominator = max(total_members, len(entries), 1)

    completion = _rate(sum(1 for e in entries if e.is_complete), denominator)
    missing_linked = _rate(sum(1 for e in entries if not e.linked_work), denominator)
    missing_blockers = _rate(sum(1 for e in entries if not (e.blockers or "").strip()), denominator)
    vague = _rate(
        sum(
            1 for e in entries
            if is_vague_text(" ".join(
                part.strip()
                for part in (e.progress_since_yesterday, e.summary_today)
                if part and part.strip()
            ))
        ),
        denominator,
    )

    score = (
        completion * 0.4
        + (100 - missing_linked) * 0.25
        + (100 - missing_blockers) * 0.15
        + (100 - vague) * 0.2
    )

    return {
        "quality_score": _round(max(0.0, min(100.0, score))),
        "metrics": {
            "completion_rate": _round(completion),
            "missing_linked_work_rate": _round(missing_linked),
            "missing_blockers_rate": _round(missing_blockers),
            "vague_update_rate": _round(vague),
        },
    }
