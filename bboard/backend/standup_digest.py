"""Plain-text digests of a stored standup summary.

Three layouts are supported: a short stakeholder digest, a detailed team
digest, and a markdown sprint snapshot. Rendering is deterministic so the same
summary version always copies out identically.
"""

import math
import re
from datetime import date, datetime, timedelta, timezone

DIGEST_TYPES = ("stakeholder", "team-detailed", "sprint-snapshot")

NONE_REPORTED = "None reported"
MAX_STAKEHOLDER_ITEMS = 3
MAX_STAKEHOLDER_LINE_LENGTH = 160
STAKEHOLDER_ITEM_LENGTH = 48

SEVERITY_RANK = {"high": 0, "med": 1, "low": 2}
_UNRANKED = len(SEVERITY_RANK)


def normalize_whitespace(value: str) -> str:
    return re.sub(r"\s+", " ", value or "").strip()


def truncate_line(value: str, limit: int) -> str:
    normalized = normalize_whitespace(value)
    if len(normalized) <= limit:
        return normalized
    return normalized[:max(0, limit - 1)].rstrip() + "…"


def format_list(items: list[str]) -> str:
    if not items:
        return f"- {NONE_REPORTED}"
    return "\n".join(f"- {item}" for item in items)


def as_percent(value) -> str:
    if not isinstance(value, (int, float)) or isinstance(value, bool) or math.isnan(value):
        return "n/a"
    return f"{math.floor(value * 100 + 0.5)}%"


def reference_text(linked_work_ids: list[str] | None, include_references: bool) -> str:
    if not include_references or not linked_work_ids:
        return ""
    references = sorted({item.strip() for item in linked_work_ids if item and item.strip()})
    if not references:
        return ""
    return f" (refs: {', '.join(references)})"


def _text_key(value: str) -> tuple[str, str]:
    normalized = normalize_whitespace(value)
    return normalized.lower(), normalized


def sort_bullets(items: list[dict]) -> list[dict]:
    return sorted(items, key=lambda b: (_text_key(b["text"]), b["id"]))


def sort_actions(items: list[dict]) -> list[dict]:
    return sorted(items, key=lambda a: (
        SEVERITY_RANK.get(a.get("severity"), _UNRANKED),
        a.get("due") or "",
        _text_key(a["title"]),
        a["id"],
    ))


def sort_questions(items: list[dict]) -> list[dict]:
    return sorted(items, key=lambda q: (
        SEVERITY_RANK.get(q.get("priority"), _UNRANKED),
        _text_key(q["question_text"]),
        q["id"],
    ))


def _describe_bullet(bullet: dict, include_references: bool) -> str:
    return f"{normalize_whitespace(bullet['text'])}{reference_text(bullet.get('linked_work_ids'), include_references)}"


def _describe_action(action: dict, include_references: bool) -> str:
    return (
        f"{normalize_whitespace(action['title'])} — {normalize_whitespace(action['reason'])}"
        f"{reference_text(action.get('linked_work_ids'), include_references)}"
    )


def _describe_question(question: dict, include_references: bool) -> str:
    return (
        f"{normalize_whitespace(question['question_text'])}"
        f"{reference_text(question.get('source_entry_ids'), include_references)}"
    )


def week_of(date_value: str) -> str:
    """Monday of the week containing date_value (ISO), or the input if unparseable."""
    try:
        day = date.fromisoformat(date_value)
    except ValueError:
        return date_value
    return (day - timedelta(days=day.weekday())).isoformat()


def format_generated_timestamp(value: str | None) -> str:
    if not value:
        return ""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return f"{parsed.strftime('%Y-%m-%d %H:%M')} UTC"


def finalize_output(lines: list[str]) -> str:
    text = "\n".join(line.rstrip() for line in lines)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def _stakeholder_items(items: list[str]) -> str:
    if not items:
        return NONE_REPORTED
    return "; ".join(truncate_line(item, STAKEHOLDER_ITEM_LENGTH) for item in items[:MAX_STAKEHOLDER_ITEMS])


def render_digest(kind: str, source: dict, include_references: bool = False) -> str:
    """Render a digest of the given kind from a digest source dict.

    ``source`` carries ``date`` and optionally ``generated_at``,
    ``sprint_name``, ``sprint_date_range``, ``summary_json``,
    ``summary_rendered``, ``visible_actions``, ``visible_open_questions`` and
    ``signals`` (``quality_score`` plus a ``metrics`` dict of 0-1 rates).
    Visible actions/questions take precedence over the summary's own lists.
    """
    if kind not in DIGEST_TYPES:
        raise ValueError(f"Unknown digest type: {kind}")

    summary_json = source.get("summary_json") or {}
    summary_rendered = source.get("summary_rendered") or {}

    overall_progress = truncate_line(
        summary_rendered.get("overall_progress")
        or summary_json.get("overall_progress")
        or "No summary available.",
        MAX_STAKEHOLDER_LINE_LENGTH,
    )

    achievements = sort_bullets(summary_json.get("achievements", []))
    blockers = sort_bullets(summary_json.get("blockers", []))
    dependencies = sort_bullets(summary_json.get("dependencies", []))
    assignment_gaps = sort_bullets(summary_json.get("assignment_gaps", []))

    visible_actions = source.get("visible_actions")
    actions = sort_actions(
        visible_actions if visible_actions is not None else summary_json.get("actions_required", [])
    )
    visible_questions = source.get("visible_open_questions")
    questions = sort_questions(
        visible_questions if visible_questions is not None else summary_json.get("open_questions", [])
    )

    def bullet_lines(items: list[dict]) -> list[str]:
        return [_describe_bullet(item, include_references) for item in items]

    if kind == "stakeholder":
        wins = _stakeholder_items(bullet_lines(achievements))
        risks = _stakeholder_items(bullet_lines(blockers))
        needed = _stakeholder_items([
            f"{item['title']}{reference_text(item.get('linked_work_ids'), include_references)}"
            for item in actions
        ])
        return finalize_output([
            f"Stakeholder Digest — As of {source['date']}",
            f"Progress: {truncate_line(overall_progress, MAX_STAKEHOLDER_LINE_LENGTH - 10)}",
            f"Wins: {truncate_line(wins, MAX_STAKEHOLDER_LINE_LENGTH - 6)}",
            f"Risks: {truncate_line(risks, MAX_STAKEHOLDER_LINE_LENGTH - 7)}",
            f"Actions needed: {truncate_line(needed, MAX_STAKEHOLDER_LINE_LENGTH - 16)}",
        ])

    if kind == "sprint-snapshot":
        generated_on = format_generated_timestamp(source.get("generated_at"))
        sprint_name = source.get("sprint_name")
        heading = f"{sprint_name} ({source['date']})" if sprint_name else f"Week of {week_of(source['date'])}"
        date_range = source.get("sprint_date_range")

        return finalize_output([
            f"# Sprint Snapshot — {heading}",
            f"Generated on {generated_on}" if generated_on else "",
            f"Date range: {date_range}" if date_range else "",
            "## Progress",
            overall_progress,
            "",
            "## Wins",
            format_list(bullet_lines(achievements)),
            "",
            "## Risks / Blockers",
            format_list(bullet_lines(blockers)),
            "",
            "## Actions Needed",
            format_list([_describe_action(item, include_references) for item in actions]),
            "",
            "## Open Questions",
            format_list([_describe_question(item, include_references) for item in questions]),
            "",
            "## Dependencies",
            format_list(bullet_lines(dependencies)),
            "",
            "## Assignment Gaps",
            format_list(bullet_lines(assignment_gaps)),
        ])

    signals = source.get("signals") or {}
    metrics = signals.get("metrics") or {}
    quality_score = signals.get("quality_score")

    return finalize_output([
        f"Detailed Team Digest — {source['date']}",
        "",
        "Action Center",
        format_list([_describe_action(item, include_references) for item in actions]),
        "",
        "Open Questions",
        format_list([_describe_question(item, include_references) for item in questions]),
        "",
        "Signals",
        format_list([
            f"Data quality score: {quality_score if quality_score is not None else 'n/a'}",
            f"Completion rate: {as_percent(metrics.get('completion_rate'))}",
            f"Missing linked work rate: {as_percent(metrics.get('missing_linked_work_rate'))}",
            f"Missing blockers rate: {as_percent(metrics.get('missing_blockers_rate'))}",
            f"Vague update rate: {as_percent(metrics.get('vague_update_rate'))}",
        ]),
        "",
        "Full Summary",
        f"Overall progress\n{overall_progress}",
        f"Achievements\n{format_list(bullet_lines(achievements))}",
        f"Blockers and risks\n{format_list(bullet_lines(blockers))}",
        f"Dependencies requiring PO involvement\n{format_list(bullet_lines(dependencies))}",
        f"Assignment gaps\n{format_list(bullet_lines(assignment_gaps))}",
    ])
