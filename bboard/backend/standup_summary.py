"""AI standup summary pipeline.

Builds a prompt from a project's daily entries, asks the model for a
structured summary, validates it against the v1 schema and then makes the
result deterministic: evidence links are back-filled from linked work and
token overlap, bullet ids are re-derived from content hashes, open questions
and actions are generated by rules. When both the primary and fallback model
fail, a summary is assembled directly from the entries.
"""

import asyncio
import hashlib
import html
import json
import logging
import re
from datetime import date as date_type

from pydantic import ValidationError

import ai_client
import database as db
import notifications
from action_generation import normalize_array_values, with_generated_actions
from config import settings
from models import (
    SUMMARY_SECTIONS,
    GeneratedSummary,
    ModelSummaryPayload,
    OpenQuestion,
    StandupEntry,
    StandupSummaryRendered,
    StandupSummaryV1,
    SummaryBullet,
)
from permissions import PROJECT_ADMIN_ROLES
from standup_insights import (
    build_validation_flags,
    compute_summary_confidence,
    log_project_event,
    upsert_validation_flags_for_summary,
)
from standup_window import format_date_only, parse_date_only

logger = logging.getLogger(__name__)

PROMPT_VERSION = "standup-summary-v1"
FALLBACK_MODEL_NAME = "deterministic-fallback"
NO_ENTRIES_MODEL_NAME = "none"

EVIDENCE_MATCH_THRESHOLD = 0.5
MAX_QUESTIONS_PER_PERSON = 5
MAX_QUESTIONS_PER_PROJECT = 15
VAGUE_MIN_LENGTH = 25
QUESTION_SNIPPET_LENGTH = 60

PRIORITY_RANK = {"high": 0, "med": 1, "low": 2}

STOP_WORDS = frozenset({
    "the", "and", "for", "with", "that", "this", "from", "into", "onto", "are", "was",
    "were", "has", "have", "had", "will", "would", "should", "can", "could", "not",
    "but", "our", "your", "their", "them", "they", "its", "all", "any", "out", "off",
    "today", "yesterday", "tomorrow", "still", "also", "some", "more", "work", "team",
})

VAGUE_KEYWORDS = (
    "continue", "working on", "same", "as usual", "nothing", "n/a", "tbd", "todo", "stuff",
)

_DEPENDENCY_PATTERN = re.compile(
    r"\b(waiting|wait on|depends|depend on|dependent|dependency|approval|approve|blocked by|pending|need input)\b",
    re.IGNORECASE,
)

SYSTEM_PROMPT = (
    "You summarize daily stand-ups into brief structured updates for Product Owners and Admins. "
    "Only state what the entries support and cite the entries you used."
)


class SummaryValidationError(Exception):
    """Model output does not satisfy the v1 summary schema."""


class ProjectNotFoundError(Exception):
    pass


# --------------- Helpers ---------------

def make_summary_id(project_id: str, day: date_type) -> str:
    return f"{project_id}:{format_date_only(day)}"


def load_entries(rows: list[dict]) -> list[StandupEntry]:
    return [StandupEntry.model_validate(row) for row in rows]


def _has_text(value: str | None) -> bool:
    return bool(value and value.strip())


def _collapse(value: str) -> str:
    return re.sub(r"\s+", " ", value.strip())


def _snippet(value: str) -> str:
    text = _collapse(value)
    if len(text) <= QUESTION_SNIPPET_LENGTH:
        return text
    return text[:QUESTION_SNIPPET_LENGTH - 1].rstrip() + "…"


def _require_date(value, purpose: str) -> date_type:
    target = parse_date_only(value)
    if target is None:
        raise ValueError(f"Invalid date provided for stand-up summary {purpose}")
    return target


# --------------- Prompt ---------------

def build_summary_prompt(project_name: str, day: date_type, entries: list[StandupEntry]) -> str:
    lines = [
        f"Project: {project_name}",
        f"Date: {format_date_only(day)}",
        "Stand-up entries:",
    ]

    for entry in entries:
        member_name = entry.user.name or entry.user.email or "Unknown"
        block = [
            f"Entry ID: {entry.id}",
            f"Member: {member_name} ({entry.user.role})",
            f"Progress since yesterday: {_collapse(entry.progress_since_yesterday or '') or '(not provided)'}",
            f"Today's plan: {_collapse(entry.summary_today or '') or '(not provided)'}",
            f"Blockers: {_collapse(entry.blockers or '') or '(none reported)'}",
            f"Dependencies: {_collapse(entry.dependencies or '') or '(none reported)'}",
        ]
        if _has_text(entry.notes):
            block.append(f"Notes: {_collapse(entry.notes)}")
        if entry.linked_work:
            block.append("Linked work:")
            block.extend(f"- {item.reference}: {item.title}" for item in entry.linked_work)
        else:
            block.append("Linked work: (none)")
        lines.append("\n".join(block))

    lines.append("\n".join([
        "Produce a digest for Product Owners and Admins.",
        "Respond in JSON with keys:",
        '  "overall_progress" (string, 1-3 sentences),',
        '  "achievements", "blockers", "dependencies", "assignment_gaps"',
        '  (arrays of {"text": string, "source_entry_ids": string[], "linked_work_ids": string[]}).',
        "Every bullet must cite the Entry IDs it is based on in source_entry_ids.",
        "Use the linked work keys shown above in linked_work_ids.",
        "Use empty arrays when a section has nothing to report. Do not invent blockers.",
        "Do not include actions_required; actions are derived separately.",
    ]))

    return "\n\n".join(lines)


# --------------- Parsing & normalization ---------------

def parse_summary_response(raw, summary_id: str, project_id: str, day: date_type) -> StandupSummaryV1:
    """Validate a model response and lift it into a StandupSummaryV1."""
    if not isinstance(raw, dict):
        raise SummaryValidationError(f"Expected a JSON object, got {type(raw).__name__}")

    try:
        payload = ModelSummaryPayload.model_validate(raw)
    except ValidationError as e:
        raise SummaryValidationError(f"Summary failed schema validation: {e.error_count()} error(s)") from e

    sections = {}
    for section in SUMMARY_SECTIONS:
        sections[section] = [
            SummaryBullet(
                id=bullet.id or f"{section}-{index}",
                text=bullet.text,
                source_entry_ids=bullet.source_entry_ids,
                linked_work_ids=bullet.linked_work_ids,
            )
            for index, bullet in enumerate(getattr(payload, section))
        ]

    return StandupSummaryV1(
        summary_id=summary_id,
        project_id=project_id,
        date=format_date_only(day),
        overall_progress=_collapse(payload.overall_progress),
        actions_required=payload.actions_required,
        open_questions=[],
        **sections,
    )


def create_stable_bullet_id(section: str, bullet: SummaryBullet) -> str:
    payload = json.dumps(
        {
            "section": section,
            "text": _collapse(bullet.text),
            "source_entry_ids": normalize_array_values(bullet.source_entry_ids),
            "linked_work_ids": normalize_array_values(bullet.linked_work_ids),
        },
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return f"{section}_{hashlib.sha256(payload.encode('utf-8')).hexdigest()[:12]}"


def normalize_summary_bullet_ids(summary: StandupSummaryV1) -> StandupSummaryV1:
    """Normalize bullet content and replace ids with content hashes scoped by section."""
    updates = {}
    for section in SUMMARY_SECTIONS:
        updates[section] = [
            SummaryBullet(
                id=create_stable_bullet_id(section, bullet),
                text=_collapse(bullet.text),
                source_entry_ids=normalize_array_values(bullet.source_entry_ids),
                linked_work_ids=normalize_array_values(bullet.linked_work_ids),
            )
            for bullet in getattr(summary, section)
        ]
    return summary.model_copy(update=updates)


# --------------- Evidence ---------------

def tokenize(text: str) -> set[str]:
    return {
        token
        for token in re.findall(r"[a-z0-9]+", text.lower())
        if len(token) >= 3 and token not in STOP_WORDS
    }


def _entry_text(entry: StandupEntry) -> str:
    parts = [
        entry.user.display_name,
        entry.progress_since_yesterday,
        entry.summary_today,
        entry.blockers,
        entry.dependencies,
        entry.notes,
        *(item.title for item in entry.linked_work),
    ]
    return " ".join(part for part in parts if part)


def _match_by_linked_work(linked_work_ids: list[str], work_index: dict[str, set[str]]) -> list[str]:
    matched: set[str] = set()
    for work_id in linked_work_ids:
        matched |= work_index.get(work_id.strip(), set())
    return sorted(matched)


def _match_by_token_overlap(text: str, entry_tokens: dict[str, set[str]]) -> list[str]:
    bullet_tokens = tokenize(text)
    if not bullet_tokens:
        return []

    scores = {
        entry_id: len(bullet_tokens & tokens) / len(bullet_tokens)
        for entry_id, tokens in entry_tokens.items()
    }
    best = max(scores.values(), default=0.0)
    if best < EVIDENCE_MATCH_THRESHOLD:
        return []
    return sorted(entry_id for entry_id, score in scores.items() if score == best)


def attach_summary_evidence(summary: StandupSummaryV1, entries: list[StandupEntry]) -> StandupSummaryV1:
    """Fill missing source_entry_ids (and linked_work_ids) on bullets.

    Unknown entry ids cited by the model are dropped first. Bullets left
    without sources are matched by linked work id/key, then by token overlap
    with the entries' text.
    """
    entry_by_id = {entry.id: entry for entry in entries}
    work_index: dict[str, set[str]] = {}
    for entry in entries:
        for item in entry.linked_work:
            for ref in (item.id, item.key):
                if ref:
                    work_index.setdefault(ref, set()).add(entry.id)
    entry_tokens = {entry.id: tokenize(_entry_text(entry)) for entry in entries}

    updates = {}
    for section in SUMMARY_SECTIONS:
        bullets = []
        for bullet in getattr(summary, section):
            sources = [entry_id for entry_id in bullet.source_entry_ids if entry_id in entry_by_id]
            if not sources:
                sources = _match_by_linked_work(bullet.linked_work_ids, work_index)
            if not sources:
                sources = _match_by_token_overlap(bullet.text, entry_tokens)

            linked = list(bullet.linked_work_ids)
            if not linked:
                linked = [
                    item.reference
                    for entry_id in sources
                    for item in entry_by_id[entry_id].linked_work
                ]

            bullets.append(bullet.model_copy(update={
                "source_entry_ids": normalize_array_values(sources),
                "linked_work_ids": normalize_array_values(linked),
            }))
        updates[section] = bullets

    return summary.model_copy(update=updates)


# --------------- Open questions ---------------

def is_vague_text(value: str | None) -> bool:
    text = (value or "").strip().lower()
    if len(text) < VAGUE_MIN_LENGTH:
        return True
    return any(keyword in text for keyword in VAGUE_KEYWORDS)


def _question_id(summary_id: str, entry_id: str, category: str) -> str:
    digest = hashlib.sha256(f"{summary_id}|{entry_id}|{category}".encode("utf-8")).hexdigest()[:12]
    return f"question_{digest}"


def _entry_questions(entry: StandupEntry, summary_id: str) -> list[OpenQuestion]:
    linked = [item.reference for item in entry.linked_work]

    def ask(category: str, priority: str, text: str) -> OpenQuestion:
        return OpenQuestion(
            id=_question_id(summary_id, entry.id, category),
            category=category,
            question_text=text,
            ask_to_user_id=entry.user_id,
            entry_id=entry.id,
            priority=priority,
            source_entry_ids=[entry.id],
            linked_work_ids=linked,
        )

    if not _has_text(entry.progress_since_yesterday) and not _has_text(entry.summary_today):
        return [ask(
            "MISSING_UPDATE", "high",
            "Can you share what you progressed on since yesterday and what you plan for today?",
        )]

    questions = []
    blocker_text = " ".join(
        part.strip() for part in (entry.blockers, entry.dependencies) if _has_text(part)
    )
    has_known_owner = any(item.assignee_id for item in entry.linked_work)

    if blocker_text and _DEPENDENCY_PATTERN.search(blocker_text) and not has_known_owner:
        questions.append(ask(
            "DEPENDENCY_OWNER", "high",
            f'Who owns the dependency behind "{_snippet(blocker_text)}", and when is it expected?',
        ))
    elif _has_text(entry.blockers):
        questions.append(ask(
            "UNBLOCK_PATH", "med",
            f'What would unblock "{_snippet(entry.blockers)}", and who can help?',
        ))

    if is_vague_text(entry.summary_today):
        questions.append(ask(
            "DEFINE_NEXT_STEP", "med",
            "What is the concrete next step you expect to finish today?",
        ))

    if not entry.linked_work:
        questions.append(ask(
            "LINK_WORK", "low",
            "Which issue or research item does this update relate to?",
        ))

    return questions


def generate_open_questions(
    entries: list[StandupEntry],
    summary_id: str,
    resolved_question_ids: set[str] | None = None,
) -> list[OpenQuestion]:
    """Deterministic clarification questions, capped per person and per project."""
    resolved = resolved_question_ids or set()
    candidates = [
        question
        for entry in entries
        for question in _entry_questions(entry, summary_id)
        if question.id not in resolved
    ]
    candidates.sort(key=lambda q: (PRIORITY_RANK[q.priority], q.ask_to_user_id, q.entry_id, q.category))

    selected: list[OpenQuestion] = []
    per_person: dict[str, int] = {}
    for question in candidates:
        if len(selected) >= MAX_QUESTIONS_PER_PROJECT:
            break
        if per_person.get(question.ask_to_user_id, 0) >= MAX_QUESTIONS_PER_PERSON:
            continue
        per_person[question.ask_to_user_id] = per_person.get(question.ask_to_user_id, 0) + 1
        selected.append(question)

    return selected


# --------------- Fallback & rendering ---------------

def build_fallback_summary(
    project_id: str,
    day: date_type,
    entries: list[StandupEntry],
    summary_id: str | None = None,
) -> StandupSummaryV1:
    """Summary assembled straight from the entries, used when no model output is usable."""
    summary_id = summary_id or make_summary_id(project_id, day)
    day_str = format_date_only(day)

    def bullets(prefix: str, field: str) -> list[SummaryBullet]:
        return [
            SummaryBullet(
                id=f"{prefix}-{entry.id}",
                text=f"{entry.user.display_name}: {getattr(entry, field).strip()}",
                source_entry_ids=[entry.id],
                linked_work_ids=[item.id for item in entry.linked_work],
            )
            for entry in entries
            if _has_text(getattr(entry, field))
        ]

    if entries:
        count = len(entries)
        overall = f"Captured {count} stand-up update{'' if count == 1 else 's'} for {day_str}."
    else:
        overall = f"No stand-up entries were submitted for {day_str}."

    return StandupSummaryV1(
        summary_id=summary_id,
        project_id=project_id,
        date=day_str,
        overall_progress=overall,
        actions_required=[],
        open_questions=generate_open_questions(entries, summary_id),
        achievements=bullets("achievement", "summary_today"),
        blockers=bullets("blocker", "blockers"),
        dependencies=bullets("dependency", "dependencies"),
        assignment_gaps=[
            SummaryBullet(
                id=f"gap-{entry.id}",
                text=f"{entry.user.display_name} has no linked issues or research items.",
                source_entry_ids=[entry.id],
                linked_work_ids=[],
            )
            for entry in entries
            if not entry.linked_work
        ],
    )


def render_summary(summary: StandupSummaryV1) -> StandupSummaryRendered:
    return StandupSummaryRendered(
        overall_progress=summary.overall_progress,
        actions_required=[item.title for item in summary.actions_required],
        achievements=[item.text for item in summary.achievements],
        blockers=[item.text for item in summary.blockers],
        dependencies=[item.text for item in summary.dependencies],
        assignment_gaps=[item.text for item in summary.assignment_gaps],
    )


def _markdown_list(items: list[str]) -> str:
    if not items:
        return "- None reported"
    return "\n".join(f"- {item}" for item in items)


def render_summary_markdown(rendered: StandupSummaryRendered) -> str:
    return "\n\n".join([
        f"**Overall progress**\n{rendered.overall_progress}",
        f"**Action required today**\n{_markdown_list(rendered.actions_required)}",
        f"**Achievements**\n{_markdown_list(rendered.achievements)}",
        f"**Blockers and risks**\n{_markdown_list(rendered.blockers)}",
        f"**Dependencies requiring PO involvement**\n{_markdown_list(rendered.dependencies)}",
        f"**Assignment gaps**\n{_markdown_list(rendered.assignment_gaps)}",
    ])


def compute_input_hash(entries: list[StandupEntry]) -> str:
    """Hash of the entry content the summary was generated from."""
    canonical = [
        {
            "id": entry.id,
            "user_id": entry.user_id,
            "progress_since_yesterday": (entry.progress_since_yesterday or "").strip(),
            "summary_today": (entry.summary_today or "").strip(),
            "blockers": (entry.blockers or "").strip(),
            "dependencies": (entry.dependencies or "").strip(),
            "notes": (entry.notes or "").strip(),
            "is_complete": entry.is_complete,
            "linked_work": sorted(item.id for item in entry.linked_work),
        }
        for entry in sorted(entries, key=lambda e: e.id)
    ]
    payload = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


# --------------- Pipeline ---------------

def _candidate_models() -> list[str]:
    models = []
    for model in (settings.AI_MODEL_DEFAULT, settings.AI_MODEL_FALLBACK):
        if model and model not in models:
            models.append(model)
    return models


async def generate_project_standup_summary(
    project_id: str,
    day,
    entries: list[StandupEntry],
    *,
    project_name: str,
    resolved_question_ids: set[str] | None = None,
) -> GeneratedSummary:
    """Run the model chain and post-process its output into a stable StandupSummaryV1."""
    target = _require_date(day, "generation")
    summary_id = make_summary_id(project_id, target)
    summary: StandupSummaryV1 | None = None

    if not entries:
        summary = build_fallback_summary(project_id, target, entries, summary_id)
        model_used = NO_ENTRIES_MODEL_NAME
    elif not settings.ANTHROPIC_API_KEY:
        logger.info(f"No ANTHROPIC_API_KEY configured; using deterministic summary for {summary_id}")
    else:
        prompt = build_summary_prompt(project_name, target, entries)
        for model in _candidate_models():
            try:
                raw = await ai_client.chat_json(prompt, system=SYSTEM_PROMPT, model=model, temperature=0.4)
                summary = parse_summary_response(raw, summary_id, project_id, target)
                model_used = model
                break
            except (ai_client.AIClientError, SummaryValidationError) as e:
                logger.warning(f"Standup summary via {model} failed for {summary_id}: {e}")

    if summary is None:
        summary = build_fallback_summary(project_id, target, entries, summary_id)
        model_used = FALLBACK_MODEL_NAME

    summary = attach_summary_evidence(summary, entries)
    summary = normalize_summary_bullet_ids(summary)
    summary = summary.model_copy(update={
        "open_questions": generate_open_questions(entries, summary_id, resolved_question_ids),
    })
    summary = with_generated_actions(summary, entries)

    return GeneratedSummary(
        summary=summary,
        model=model_used,
        prompt_version=PROMPT_VERSION,
        input_hash=compute_input_hash(entries),
    )


async def _store_plain_summary(project_id: str, day_str: str, summary: StandupSummaryV1) -> dict:
    rendered = render_summary(summary)
    highlights = "\n".join(rendered.blockers) or None
    return await db.upsert_standup_summary(project_id, day_str, render_summary_markdown(rendered), highlights)


async def save_project_standup_summary(
    project_id: str,
    day,
    entries: list[StandupEntry] | None,
    user_id: str,
    *,
    force: bool = False,
) -> dict:
    """Generate and persist a new summary version, reusing the latest one if inputs are unchanged."""
    target = _require_date(day, "persistence")
    day_str = format_date_only(target)

    project = await db.get_project(project_id)
    if not project:
        raise ProjectNotFoundError(f"Project {project_id} not found")

    if entries is None:
        entries = load_entries(await db.list_standup_entries(project_id, day_str))

    summary_id = make_summary_id(project_id, target)
    latest = await db.get_latest_summary_version(summary_id)
    if latest and not force and latest["input_hash"] == compute_input_hash(entries):
        return latest

    clarifications = await db.list_clarifications(project_id, [entry.id for entry in entries])
    generated = await generate_project_standup_summary(
        project_id,
        target,
        entries,
        project_name=project["name"],
        resolved_question_ids={record["question_id"] for record in clarifications},
    )
    summary = generated.summary

    flags = build_validation_flags(summary, entries)
    confidence = compute_summary_confidence(summary, len(flags))

    version = await db.create_summary_version(
        project_id=project_id,
        summary_id=summary_id,
        date=day_str,
        model=generated.model,
        prompt_version=generated.prompt_version,
        input_hash=generated.input_hash,
        output_json=summary.model_dump(mode="json"),
        created_by=user_id,
        metadata_json={"confidence": confidence.model_dump(), "entry_count": len(entries)},
    )
    await upsert_validation_flags_for_summary(version["id"], summary, entries)

    await _store_plain_summary(project_id, day_str, summary)

    await log_project_event(
        "SummaryGenerated",
        project_id=project_id,
        user_id=user_id,
        summary_version_id=version["id"],
        metadata={"model": generated.model, "version": version["version"], "flags": len(flags)},
    )
    logger.info(
        f"Saved standup summary {summary_id} v{version['version']} "
        f"(model={generated.model}, confidence={confidence.confidence_score})"
    )
    return version


async def email_standup_summary_to_stakeholders(project_id: str, day, user_id: str) -> int:
    """Email the day's summary to project ADMIN/PO members. Returns the number of emails sent."""
    target = _require_date(day, "notification")
    day_str = format_date_only(target)

    project = await db.get_project(project_id)
    if not project:
        raise ProjectNotFoundError(f"Project {project_id} not found")

    summary_record = await db.get_standup_summary(project_id, day_str)
    if summary_record is None:
        version = await save_project_standup_summary(project_id, target, None, user_id)
        summary_record = await db.get_standup_summary(project_id, day_str)
        if summary_record is None:
            # unchanged inputs reuse a version whose plain-text row is gone
            summary = StandupSummaryV1.model_validate(version["output_json"])
            summary_record = await _store_plain_summary(project_id, day_str, summary)

    members = await db.list_project_members(project_id)
    recipients = [
        member["user_email"]
        for member in members
        if member["role"] in PROJECT_ADMIN_ROLES and member["user_email"]
    ]

    subject = f"[{settings.APP_NAME}] Daily Stand-up Summary - {project['name']} - {day_str}"
    highlights = (summary_record.get("highlights") or "").strip()
    if highlights:
        highlight_section = (
            "<h3>Highlights, blockers &amp; risks</h3>"
            f"<p>{html.escape(highlights).replace(chr(10), '<br>')}</p>"
        )
    else:
        highlight_section = "<p>No explicit blockers or risks were highlighted.</p>"

    body = (
        "<p>Hello,</p>"
        f"<p>Here is the daily stand-up summary for <strong>{html.escape(project['name'])}</strong> "
        f"on <strong>{day_str}</strong>.</p>"
        "<h3>Summary</h3>"
        f"<pre>{html.escape(summary_record['summary'])}</pre>"
        f"{highlight_section}"
    )

    results = await asyncio.gather(
        *(notifications.send_email(recipient, subject, body) for recipient in recipients)
    )
    return sum(1 for sent in results if sent)
