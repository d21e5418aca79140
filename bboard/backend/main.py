"""FastAPI application with REST endpoints for B Board stand-ups."""

import logging
from contextlib import asynccontextmanager
from datetime import date as date_type, datetime, timedelta, timezone

import aiosqlite
from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

import database as db
from action_generation import with_generated_actions
from config import settings
from demo_data import seed_demo_project
from models import (
    ActionStateUpdate,
    ClarificationCreate,
    EventCreate,
    FacilitatorNoteCreate,
    FacilitatorNoteUpdate,
    FeedbackCreate,
    StandupEntryUpsert,
    StandupSummaryV1,
)
from permissions import PROJECT_ADMIN_ROLES, PROJECT_VIEWER_ROLES, ForbiddenError, ensure_project_role
from standup_digest import DIGEST_TYPES, render_digest
from standup_insights import compute_and_store_kpi_daily, compute_summary_confidence, log_project_event
from standup_quality import calculate_standup_quality
from standup_summary import (
    ProjectNotFoundError,
    attach_summary_evidence,
    build_fallback_summary,
    email_standup_summary_to_stakeholders,
    load_entries,
    make_summary_id,
    normalize_summary_bullet_ids,
    render_summary,
    render_summary_markdown,
    save_project_standup_summary,
)
from standup_window import format_date_only, get_previous_standup_date, parse_date_only, parse_timestamp

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

INSTRUMENTATION_WINDOW_DAYS = 14


# --------------- App Lifecycle ---------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    await db.init_db()
    if settings.SEED_DEMO_DATA:
        await seed_demo_project()
    logger.info("B Board backend started")
    yield
    logger.info("B Board backend shutting down")


app = FastAPI(
    title="B Board",
    description="AI-assisted daily stand-up summaries for Product Owners and Admins",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --------------- Helpers ---------------

async def get_current_user(x_user_id: str | None = Header(None)) -> dict:
    """Resolve the caller from the X-User-Id header."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    user = await db.get_user(x_user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


async def _require_project(project_id: str) -> dict:
    project = await db.get_project(project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


async def _require_role(user: dict, project_id: str, roles: tuple[str, ...]) -> dict | None:
    try:
        return await ensure_project_role(user, project_id, roles)
    except ForbiddenError:
        raise HTTPException(status_code=403, detail="Forbidden")


def _parse_day(value: str | None) -> date_type:
    day = parse_date_only(value)
    if day is None:
        raise HTTPException(status_code=400, detail="Invalid or missing date")
    return day


def _is_project_admin(user: dict, membership: dict | None) -> bool:
    return user["role"] == "ADMIN" or bool(membership and membership["role"] == "ADMIN")


def _entry_response(entry: dict) -> dict:
    return {
        **entry,
        "issue_ids": [issue["id"] for issue in entry["issues"]],
        "research_ids": [item["id"] for item in entry["research"]],
    }


def _visible_actions(actions: list[dict], states: list[dict], now: datetime) -> list[dict]:
    """Drop actions the viewer closed or snoozed into the future."""
    state_by_action = {state["action_id"]: state for state in states}
    visible = []
    for action in actions:
        state = state_by_action.get(action["id"])
        if state is None or state["state"] == "OPEN":
            visible.append(action)
        elif state["state"] == "SNOOZED":
            snooze_until = parse_timestamp(state["snooze_until"])
            if snooze_until is not None and snooze_until <= now:
                visible.append(action)
    return visible


# --------------- Health ---------------

@app.get("/api/health")
async def health():
    return {
        "status": "ok",
        "version": "0.1.0",
        "ai_configured": bool(settings.ANTHROPIC_API_KEY),
        "email_configured": bool(settings.SMTP_HOST),
    }


# --------------- Standup Entries ---------------

@app.post("/api/projects/{project_id}/standup/entries")
async def upsert_standup_entry(project_id: str, body: StandupEntryUpsert, user: dict = Depends(get_current_user)):
    """Create or update the caller's entry for a date."""
    await _require_project(project_id)
    await _require_role(user, project_id, PROJECT_VIEWER_ROLES)
    day = _parse_day(body.date)

    try:
        entry = await db.upsert_standup_entry(
            project_id,
            user["id"],
            format_date_only(day),
            summary_today=body.summary_today,
            progress_since_yesterday=body.progress_since_yesterday,
            blockers=body.blockers,
            dependencies=body.dependencies,
            notes=body.notes,
            is_complete=body.is_complete,
            issue_ids=body.issue_ids,
            research_ids=body.research_ids,
        )
    except aiosqlite.IntegrityError:
        raise HTTPException(status_code=400, detail="Unknown issue or research item")

    return _entry_response(entry)


@app.get("/api/projects/{project_id}/standup/entries")
async def get_my_standup_entry(project_id: str, date: str | None = Query(None),
                               user: dict = Depends(get_current_user)):
    await _require_project(project_id)
    await _require_role(user, project_id, PROJECT_VIEWER_ROLES)
    day = _parse_day(date)

    entry = await db.get_user_standup_entry(project_id, user["id"], format_date_only(day))
    return {"date": format_date_only(day), "entry": _entry_response(entry) if entry else None}


@app.get("/api/projects/{project_id}/standup/my")
async def get_my_standup(
    project_id: str,
    date: str | None = Query(None),
    target_user_id: str | None = Query(None, alias="userId"),
    user: dict = Depends(get_current_user),
):
    """An entry for a day next to the one from the previous stand-up day.

    Admins may pass ``userId`` to look at another member's entries.
    """
    await _require_project(project_id)
    membership = await _require_role(user, project_id, PROJECT_VIEWER_ROLES)
    day = parse_date_only(date or datetime.now(timezone.utc))
    if day is None:
        raise HTTPException(status_code=400, detail="Invalid or missing date")

    target_id = target_user_id or user["id"]
    if target_id != user["id"]:
        if not _is_project_admin(user, membership):
            raise HTTPException(status_code=403, detail="Forbidden")
        if not await db.get_project_member(project_id, target_id):
            raise HTTPException(status_code=404, detail="User is not a project member")

    previous_day = get_previous_standup_date(day, skip_weekends=True)
    entry = await db.get_user_standup_entry(project_id, target_id, format_date_only(day))
    previous = await db.get_user_standup_entry(project_id, target_id, format_date_only(previous_day))
    return {
        "user_id": target_id,
        "date": format_date_only(day),
        "entry": _entry_response(entry) if entry else None,
        "previous_date": format_date_only(previous_day),
        "previous_entry": _entry_response(previous) if previous else None,
    }


@app.get("/api/projects/{project_id}/standup/my/list")
async def list_my_standups(
    project_id: str,
    start_date: str | None = Query(None, alias="startDate"),
    end_date: str | None = Query(None, alias="endDate"),
    user: dict = Depends(get_current_user),
):
    """The caller's entry history, newest first. At least one bound is required."""
    await _require_project(project_id)
    await _require_role(user, project_id, PROJECT_VIEWER_ROLES)
    if not start_date and not end_date:
        raise HTTPException(status_code=400, detail="startDate or endDate is required")

    start = format_date_only(_parse_day(start_date)) if start_date else None
    end = format_date_only(_parse_day(end_date)) if end_date else None
    entries = await db.list_user_standup_entries(project_id, user["id"], start=start, end=end)
    return [_entry_response(entry) for entry in entries]


@app.get("/api/projects/{project_id}/standup/user-view")
async def get_member_standup_view(
    project_id: str,
    target_user_id: str | None = Query(None, alias="userId"),
    date: str | None = Query(None),
    user: dict = Depends(get_current_user),
):
    """A member's entry for a day and the calendar day before, for POs and admins."""
    await _require_project(project_id)
    await _require_role(user, project_id, PROJECT_ADMIN_ROLES)
    if not target_user_id:
        raise HTTPException(status_code=400, detail="userId is required")
    day = parse_date_only(date or datetime.now(timezone.utc))
    if day is None:
        raise HTTPException(status_code=400, detail="Invalid or missing date")

    if not await db.get_project_member(project_id, target_user_id):
        raise HTTPException(status_code=404, detail="User not found in project")
    target = await db.get_user(target_user_id)

    yesterday = get_previous_standup_date(day, skip_weekends=False)
    today_entry = await db.get_user_standup_entry(project_id, target_user_id, format_date_only(day))
    yesterday_entry = await db.get_user_standup_entry(project_id, target_user_id, format_date_only(yesterday))
    return {
        "user": {"id": target["id"], "name": target["name"]},
        "date": format_date_only(day),
        "today": _entry_response(today_entry) if today_entry else None,
        "yesterday": _entry_response(yesterday_entry) if yesterday_entry else None,
    }


# --------------- Summary ---------------

@app.get("/api/projects/{project_id}/standup/summary")
async def get_standup_summary(
    project_id: str,
    date: str | None = Query(None),
    force_refresh: bool = Query(False, alias="forceRefresh"),
    user: dict = Depends(get_current_user),
):
    """Latest structured summary for a day, generating one when missing or forced."""
    await _require_project(project_id)
    membership = await _require_role(user, project_id, PROJECT_ADMIN_ROLES)
    day = _parse_day(date)
    day_str = format_date_only(day)

    entries = load_entries(await db.list_standup_entries(project_id, day_str))
    summary_id = make_summary_id(project_id, day)

    version = await db.get_latest_summary_version(summary_id)
    if version is None or force_refresh:
        try:
            version = await save_project_standup_summary(project_id, day, entries, user["id"], force=force_refresh)
        except Exception as e:
            logger.exception(f"Standup summary generation failed for {summary_id}: {e}")

    if version:
        summary = StandupSummaryV1.model_validate(version["output_json"])
        flags = await db.list_validation_flags(version["id"])
        confidence = (version.get("metadata_json") or {}).get("confidence")
    else:
        summary = build_fallback_summary(project_id, day, entries, summary_id)
        summary = with_generated_actions(normalize_summary_bullet_ids(attach_summary_evidence(summary, entries)), entries)
        flags = []
        confidence = compute_summary_confidence(summary, 0).model_dump()

    rendered = render_summary(summary)
    legacy = await db.get_standup_summary(project_id, day_str)
    summary_text = legacy["summary"] if legacy else render_summary_markdown(rendered)

    members = await db.list_project_members(project_id)
    quality = calculate_standup_quality(entries, len(members))
    await db.upsert_quality_daily(project_id, day_str, quality["quality_score"], quality["metrics"])

    clarifications = await db.list_clarifications(project_id, [entry.id for entry in entries])
    entry_by_user = {entry.user_id: entry for entry in entries}

    return {
        "date": day_str,
        "summary": summary_text,
        "summary_id": summary_id,
        "version": version["version"] if version else None,
        "summary_version_id": version["id"] if version else None,
        "summary_rendered": rendered.model_dump(),
        "summary_json": summary.model_dump(mode="json"),
        "confidence": confidence,
        "validation_flags": [
            {"flag_type": flag["flag_type"], "details": flag["details_json"]} for flag in flags
        ],
        "data_quality": quality if _is_project_admin(user, membership) else None,
        "entries": [
            {
                **entry.model_dump(mode="json"),
                "standup_entry_id": entry.id,
                "member_id": entry.user_id,
                "linked_work_ids": [item.reference for item in entry.linked_work],
            }
            for entry in entries
        ],
        "members": [
            {
                "userId": member["user_id"],
                "name": member["user_name"] or member["user_email"] or member["user_id"],
                "status": "submitted" if member["user_id"] in entry_by_user else "missing",
                "isComplete": entry_by_user[member["user_id"]].is_complete if member["user_id"] in entry_by_user else False,
            }
            for member in members
        ],
        "clarifications": clarifications,
    }


@app.get("/api/projects/{project_id}/standup/digest")
async def get_standup_digest(
    project_id: str,
    date: str | None = Query(None),
    digest_type: str = Query("team-detailed", alias="type"),
    include_references: bool = Query(False, alias="includeReferences"),
    user: dict = Depends(get_current_user),
):
    """Render the latest summary version as a copy-ready digest."""
    await _require_project(project_id)
    await _require_role(user, project_id, PROJECT_ADMIN_ROLES)
    day = _parse_day(date)
    day_str = format_date_only(day)
    if digest_type not in DIGEST_TYPES:
        raise HTTPException(status_code=400, detail=f"type must be one of: {', '.join(DIGEST_TYPES)}")

    version = await db.get_latest_summary_version(make_summary_id(project_id, day))
    if not version:
        raise HTTPException(status_code=404, detail="No summary has been generated for this date")

    summary_json = version["output_json"]
    states = await db.list_action_states(project_id, user["id"], day_str)
    entry_ids = {question["entry_id"] for question in summary_json.get("open_questions", [])}
    resolved = {
        record["question_id"]
        for record in await db.list_clarifications(project_id, sorted(entry_ids))
    }
    quality = await db.get_quality_daily(project_id, day_str)

    source = {
        "date": day_str,
        "generated_at": version["created_at"],
        "summary_json": summary_json,
        "summary_rendered": {"overall_progress": summary_json.get("overall_progress", "")},
        "visible_actions": _visible_actions(summary_json.get("actions_required", []), states, datetime.now(timezone.utc)),
        "visible_open_questions": [
            question for question in summary_json.get("open_questions", []) if question["id"] not in resolved
        ],
        "signals": {
            "quality_score": quality["quality_score"],
            "metrics": {key: value / 100 for key, value in quality["metrics_json"].items()},
        } if quality else None,
    }

    return {
        "date": day_str,
        "type": digest_type,
        "version": version["version"],
        "content": render_digest(digest_type, source, include_references=include_references),
    }


@app.post("/api/projects/{project_id}/standup/summary/email")
async def email_standup_summary(project_id: str, date: str | None = Query(None),
                                user: dict = Depends(get_current_user)):
    await _require_project(project_id)
    await _require_role(user, project_id, PROJECT_ADMIN_ROLES)
    day = _parse_day(date)

    try:
        sent = await email_standup_summary_to_stakeholders(project_id, day, user["id"])
    except ProjectNotFoundError:
        raise HTTPException(status_code=404, detail="Project not found")
    return {"date": format_date_only(day), "sent": sent}


# --------------- Feedback ---------------

@app.get("/api/projects/{project_id}/standup/feedback")
async def list_summary_feedback(project_id: str, user: dict = Depends(get_current_user)):
    await _require_project(project_id)
    await _require_role(user, project_id, PROJECT_VIEWER_ROLES)
    return await db.list_feedback(project_id)


@app.post("/api/projects/{project_id}/standup/feedback")
async def submit_summary_feedback(project_id: str, body: FeedbackCreate, user: dict = Depends(get_current_user)):
    """Record (or replace) the caller's feedback on a summary section or bullet."""
    await _require_project(project_id)
    await _require_role(user, project_id, PROJECT_VIEWER_ROLES)

    version = await db.get_summary_version(body.summary_version_id)
    if not version or version["project_id"] != project_id:
        raise HTTPException(status_code=404, detail="Summary version not found")

    feedback = await db.upsert_feedback(
        summary_version_id=version["id"],
        section_type=body.section_type,
        bullet_id=body.bullet_id,
        feedback_type=body.feedback_type,
        comment=body.comment,
        user_id=user["id"],
        project_id=project_id,
    )
    await log_project_event(
        "FeedbackSubmitted",
        project_id=project_id,
        user_id=user["id"],
        summary_version_id=version["id"],
        metadata={
            "section_type": body.section_type,
            "bullet_id": body.bullet_id,
            "feedback_type": body.feedback_type,
        },
    )
    return feedback


# --------------- Action State ---------------

@app.get("/api/projects/{project_id}/standup/action-state")
async def list_action_states(project_id: str, date: str | None = Query(None),
                             user: dict = Depends(get_current_user)):
    await _require_project(project_id)
    await _require_role(user, project_id, PROJECT_ADMIN_ROLES)
    day = _parse_day(date)
    day_str = format_date_only(day)
    return {"date": day_str, "states": await db.list_action_states(project_id, user["id"], day_str)}


@app.put("/api/projects/{project_id}/standup/action-state")
async def update_action_state(project_id: str, body: ActionStateUpdate, user: dict = Depends(get_current_user)):
    await _require_project(project_id)
    await _require_role(user, project_id, PROJECT_ADMIN_ROLES)
    day = _parse_day(body.date)

    record = await db.upsert_action_state(
        project_id,
        user["id"],
        format_date_only(day),
        body.action_id,
        body.state,
        snooze_until=body.snooze_until if body.state == "SNOOZED" else None,
        summary_version=body.summary_version,
        client_event_id=body.client_event_id,
    )
    await log_project_event(
        "ActionStateChanged",
        project_id=project_id,
        user_id=user["id"],
        client_event_id=body.client_event_id,
        metadata={"action_id": body.action_id, "state": body.state},
    )
    return {
        "action_id": record["action_id"],
        "state": record["state"],
        "snooze_until": record["snooze_until"],
        "summary_version": record["summary_version"],
        "client_event_id": record["client_event_id"],
        "updated_at": record["updated_at"],
    }


# --------------- Clarifications ---------------

@app.post("/api/projects/{project_id}/standup/clarifications")
async def submit_clarification(project_id: str, body: ClarificationCreate, user: dict = Depends(get_current_user)):
    """Answer or dismiss an open question raised against an entry."""
    await _require_project(project_id)

    entry = await db.get_standup_entry(body.entry_id)
    if not entry or entry["project_id"] != project_id:
        raise HTTPException(status_code=404, detail="Entry not found")

    membership = await db.get_project_member(project_id, user["id"])
    is_lead = membership is not None and membership["role"] in PROJECT_ADMIN_ROLES
    if not (user["role"] == "ADMIN" or is_lead or entry["user_id"] == user["id"]):
        raise HTTPException(status_code=403, detail="Forbidden")

    answer = (body.answer or "").strip()
    if body.status == "ANSWERED" and not answer:
        raise HTTPException(status_code=400, detail="Answer is required")

    dismissed_until = None
    if body.status == "DISMISSED":
        dismissed_until = format_date_only(_parse_day(body.dismissed_until)) if body.dismissed_until else entry["date"]

    record = await db.upsert_clarification(
        project_id=project_id,
        entry_id=entry["id"],
        question_id=body.question_id,
        answer=answer if body.status == "ANSWERED" else None,
        status=body.status,
        dismissed_until=dismissed_until,
        created_by_id=user["id"],
    )
    await log_project_event(
        "ClarificationSubmitted",
        project_id=project_id,
        user_id=user["id"],
        metadata={"entry_id": entry["id"], "question_id": body.question_id, "status": body.status},
    )
    return record


# --------------- Events & KPIs ---------------

@app.post("/api/projects/{project_id}/standup/events")
async def record_event(project_id: str, body: EventCreate, user: dict = Depends(get_current_user)):
    """Client instrumentation. Repeated client_event_ids are acknowledged but not stored twice."""
    await _require_project(project_id)
    await _require_role(user, project_id, PROJECT_VIEWER_ROLES)

    event = await log_project_event(
        body.type,
        project_id=project_id,
        user_id=user["id"],
        summary_version_id=body.summary_version_id,
        client_event_id=body.client_event_id,
        metadata=body.metadata,
    )
    return {"recorded": event is not None, "event": event}


@app.post("/api/projects/{project_id}/standup/kpi")
async def compute_kpis(project_id: str, date: str | None = Query(None), user: dict = Depends(get_current_user)):
    await _require_project(project_id)
    await _require_role(user, project_id, PROJECT_ADMIN_ROLES)
    day = _parse_day(date)
    metrics = await compute_and_store_kpi_daily(project_id, day)
    return {"date": format_date_only(day), "metrics": metrics}


@app.get("/api/projects/{project_id}/standup/instrumentation")
async def get_instrumentation(project_id: str, date: str | None = Query(None),
                              user: dict = Depends(get_current_user)):
    """Recompute KPIs for the trailing window and return the KPI, feedback and flag trends."""
    await _require_project(project_id)
    await _require_role(user, project_id, PROJECT_ADMIN_ROLES)
    end = parse_date_only(date or datetime.now(timezone.utc))
    if end is None:
        raise HTTPException(status_code=400, detail="Invalid or missing date")
    start = end - timedelta(days=INSTRUMENTATION_WINDOW_DAYS - 1)

    for offset in range(INSTRUMENTATION_WINDOW_DAYS):
        await compute_and_store_kpi_daily(project_id, start + timedelta(days=offset))

    start_str, end_str = format_date_only(start), format_date_only(end)
    return {
        "start": start_str,
        "end": end_str,
        "kpi_daily": [
            {"date": row["date"], "metrics": row["metrics_json"]}
            for row in await db.list_kpi_daily(project_id, start_str, end_str)
        ],
        "feedback_trend": await db.count_feedback_by_day(project_id, start_str, end_str),
        "validation_flags_per_day": await db.count_validation_flags_by_day(project_id, start_str, end_str),
    }


# --------------- Facilitator Notes ---------------

@app.get("/api/projects/{project_id}/standup/facilitator-notes")
async def list_facilitator_notes(project_id: str, date: str | None = Query(None),
                                 user: dict = Depends(get_current_user)):
    await _require_project(project_id)
    await _require_role(user, project_id, PROJECT_ADMIN_ROLES)
    day_str = format_date_only(_parse_day(date)) if date else None
    return await db.list_facilitator_notes(project_id, date=day_str)


@app.post("/api/projects/{project_id}/standup/facilitator-notes")
async def create_facilitator_note(project_id: str, body: FacilitatorNoteCreate,
                                  user: dict = Depends(get_current_user)):
    await _require_project(project_id)
    await _require_role(user, project_id, PROJECT_ADMIN_ROLES)
    day = _parse_day(body.date)

    if body.entry_id:
        entry = await db.get_standup_entry(body.entry_id)
        if not entry or entry["project_id"] != project_id:
            raise HTTPException(status_code=404, detail="Entry not found")

    return await db.create_facilitator_note(
        project_id, format_date_only(day), user["id"], body.body.strip(), entry_id=body.entry_id,
    )


@app.patch("/api/projects/{project_id}/standup/facilitator-notes/{note_id}")
async def resolve_facilitator_note(project_id: str, note_id: str, body: FacilitatorNoteUpdate,
                                   user: dict = Depends(get_current_user)):
    await _require_project(project_id)
    await _require_role(user, project_id, PROJECT_ADMIN_ROLES)

    note = await db.get_facilitator_note(note_id)
    if not note or note["project_id"] != project_id:
        raise HTTPException(status_code=404, detail="Note not found")

    return await db.set_facilitator_note_resolved(note_id, body.resolved)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
