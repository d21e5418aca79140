"""Validation flags, summary confidence, event logging and daily KPIs."""

import logging
import statistics
from datetime import datetime, time, timedelta, timezone

import database as db
from models import StandupEntry, StandupSummaryV1, SummaryConfidence, ValidationFlag
from standup_window import format_date_only, parse_date_only, parse_timestamp

logger = logging.getLogger(__name__)

PO_VIEWER_ROLES = ("PO", "ADMIN")
SUMMARY_VIEWED_EVENT = "SummaryViewed"


def _has_text(value: str | None) -> bool:
    return bool(value and value.strip())


def build_validation_flags(summary: StandupSummaryV1, entries: list[StandupEntry]) -> list[ValidationFlag]:
    """Cross-check the summary against the raw entries it was built from."""
    flags = []

    has_entry_blockers = any(_has_text(entry.blockers) for entry in entries)
    all_progress_empty = all(
        not _has_text(entry.progress_since_yesterday) and not _has_text(entry.summary_today)
        for entry in entries
    )

    if not summary.blockers and has_entry_blockers:
        flags.append(ValidationFlag(
            flag_type="NO_BLOCKERS_CONTRADICTION",
            details={"reason": "Summary claims no blockers but source entries include blocker text."},
        ))

    if summary.blockers and not has_entry_blockers:
        flags.append(ValidationFlag(
            flag_type="BLOCKERS_WITHOUT_SOURCE",
            details={"reason": "Summary lists blockers while all standup blocker fields are empty."},
        ))

    if summary.achievements and all_progress_empty:
        flags.append(ValidationFlag(
            flag_type="ACHIEVEMENTS_WITHOUT_PROGRESS",
            details={
                "reason": "Summary lists achievements while all progress and today fields are empty in source entries.",
            },
        ))

    return flags


async def upsert_validation_flags_for_summary(
    summary_version_id: str,
    summary: StandupSummaryV1,
    entries: list[StandupEntry],
) -> list[ValidationFlag]:
    flags = build_validation_flags(summary, entries)
    await db.replace_validation_flags(summary_version_id, [flag.model_dump() for flag in flags])
    if flags:
        logger.info(f"Summary version {summary_version_id} has {len(flags)} validation flag(s)")
    return flags


def compute_summary_confidence(summary: StandupSummaryV1, flag_count: int) -> SummaryConfidence:
    bullets = summary.bullets()
    covered = sum(1 for bullet in bullets if bullet.source_entry_ids)
    coverage = covered / len(bullets) if bullets else 1.0
    penalty = min(0.6, flag_count * 0.2)

    return SummaryConfidence(
        confidence_score=round(max(0.2, coverage - penalty), 2),
        evidence_coverage=round(coverage, 2),
        validation_penalty=round(penalty, 2),
    )


async def log_project_event(
    type: str,
    *,
    project_id: str,
    user_id: str,
    summary_version_id: str | None = None,
    client_event_id: str | None = None,
    metadata: dict | None = None,
) -> dict | None:
    """Record an event. A repeated client_event_id is ignored and returns None."""
    event = await db.create_event(
        type,
        project_id,
        user_id,
        summary_version_id=summary_version_id,
        client_event_id=client_event_id,
        metadata_json=metadata,
    )
    if event is None:
        logger.info(f"Duplicate {type} event {client_event_id} for project {project_id} ignored")
    return event


async def compute_and_store_kpi_daily(project_id: str, day) -> dict:
    """Compute the UTC-day KPI metrics for a project and upsert them into kpi_daily."""
    target = parse_date_only(day)
    if target is None:
        raise ValueError("Invalid date provided for KPI computation")

    day_str = format_date_only(target)
    day_start = datetime.combine(target, time.min, tzinfo=timezone.utc)
    day_end = day_start + timedelta(days=1)

    members = await db.count_project_members(project_id)
    entries = await db.list_standup_entries(project_id, day_str)
    notes = await db.list_facilitator_notes(project_id, created_before=day_end.isoformat())
    views = await db.list_events(
        project_id,
        type=SUMMARY_VIEWED_EVENT,
        start=day_start.isoformat(),
        end=day_end.isoformat(),
    )

    compliance = (len(entries) / members) * 100 if members > 0 else 0.0
    blocker_entries = [entry for entry in entries if _has_text(entry["blockers"])]
    persisting = [
        entry for entry in blocker_entries
        if day_start - parse_timestamp(entry["created_at"]) >= timedelta(days=2)
    ]

    resolution_days = []
    for note in notes:
        if not note["resolved"] or not note["resolved_at"]:
            continue
        delta = parse_timestamp(note["resolved_at"]) - parse_timestamp(note["created_at"])
        days = delta.total_seconds() / 86400
        if days >= 0:
            resolution_days.append(days)

    po_views = sum(1 for event in views if event["user_role"] in PO_VIEWER_ROLES)

    metrics = {
        "day_boundary_timezone": "UTC",
        "standup_compliance_percent": round(compliance, 2),
        "median_blocker_resolution_days": round(statistics.median(resolution_days), 2) if resolution_days else 0,
        "blockers_opened_today": len(blocker_entries),
        "blockers_persisting_2_plus_days": len(persisting),
        "po_engagement_views_per_day": po_views,
    }

    await db.upsert_kpi_daily(project_id, day_str, metrics)
    logger.info(f"Stored KPI metrics for project {project_id} on {day_str}")
    return metrics
