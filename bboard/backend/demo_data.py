"""Demo project for --demo mode and the API's first start.

A small payments team with one day of stand-ups: a blocked dependency, a
vague update, a missing update and a PO entry. No API keys needed; seeds
directly into the local SQLite database.
"""

from datetime import date, datetime, time, timedelta, timezone

import database as db
from standup_window import format_date_only

DEMO_PROJECT_ID = "demo-payments"
DEMO_PROJECT_NAME = "Payments Platform"

DEMO_USERS: list[dict] = [
    {"id": "demo-priya", "name": "Priya Raman", "email": "priya@bboard.local", "role": "PO"},
    {"id": "demo-marco", "name": "Marco Silva", "email": "marco@bboard.local", "role": "DEV"},
    {"id": "demo-lena", "name": "Lena Park", "email": "lena@bboard.local", "role": "DEV"},
    {"id": "demo-sam", "name": "Sam Okafor", "email": None, "role": "QA"},
]

DEMO_ISSUES: list[dict] = [
    {"id": "demo-pay-101", "key": "PAY-101", "title": "Verify Stripe webhook signatures", "assignee_id": "demo-marco", "status": "IN_PROGRESS"},
    {"id": "demo-pay-102", "key": "PAY-102", "title": "Post webhook events to the ledger", "assignee_id": "demo-marco", "status": "TODO"},
    {"id": "demo-pay-103", "key": "PAY-103", "title": "Refund flow acceptance criteria", "assignee_id": "demo-priya", "status": "IN_REVIEW"},
    {"id": "demo-pay-104", "key": "PAY-104", "title": "Payout reconciliation report", "assignee_id": None, "status": "TODO"},
]

DEMO_RESEARCH: list[dict] = [
    {"id": "demo-res-7", "key": "RES-7", "title": "Compare ledger idempotency strategies", "assignee_id": "demo-lena", "status": "IN_PROGRESS"},
]

# Entries for the demo day, keyed by user id. created_days_ago backdates the entry
# so persisting-blocker KPIs have something to count.
DEMO_ENTRIES: dict[str, dict] = {
    "demo-priya": {
        "progress_since_yesterday": "Reviewed the refund flow acceptance criteria with the legal team",
        "summary_today": "Finalize the sprint goal wording and groom the payout reconciliation epic",
        "is_complete": True,
        "issue_ids": ["demo-pay-103"],
    },
    "demo-marco": {
        "progress_since_yesterday": "Finished Stripe webhook signature verification and added retry handling",
        "summary_today": "Wire webhook events into the ledger service and write integration tests",
        "blockers": "Waiting on security approval for the production webhook secret",
        "dependencies": "Platform team needs to provision the staging event queue",
        "is_complete": True,
        "issue_ids": ["demo-pay-101", "demo-pay-102"],
        "created_days_ago": 3,
    },
    "demo-lena": {
        "progress_since_yesterday": "Same as yesterday",
        "summary_today": "Continue task",
        "is_complete": False,
    },
    "demo-sam": {
        "is_complete": False,
    },
}


async def seed_demo_project(day: date | None = None) -> dict:
    """Create the demo project and its stand-ups for day (default: today, UTC).

    Safe to call repeatedly: reference data is only created once and entries
    are upserted.
    """
    day = day or datetime.now(timezone.utc).date()
    day_str = format_date_only(day)

    project = await db.get_project(DEMO_PROJECT_ID)
    if not project:
        project = await db.create_project(DEMO_PROJECT_NAME, project_id=DEMO_PROJECT_ID)
        for user in DEMO_USERS:
            if not await db.get_user(user["id"]):
                await db.create_user(user["name"], user["email"], user["role"], user_id=user["id"])
            await db.add_project_member(DEMO_PROJECT_ID, user["id"], user["role"])
        for issue in DEMO_ISSUES:
            await db.create_issue(
                DEMO_PROJECT_ID, issue["title"], key=issue["key"], assignee_id=issue["assignee_id"],
                status=issue["status"], issue_id=issue["id"],
            )
        for item in DEMO_RESEARCH:
            await db.create_research_item(
                DEMO_PROJECT_ID, item["title"], key=item["key"], assignee_id=item["assignee_id"],
                status=item["status"], item_id=item["id"],
            )

    day_start = datetime.combine(day, time(9, 0), tzinfo=timezone.utc)
    for user_id, entry in DEMO_ENTRIES.items():
        created_at = day_start - timedelta(days=entry.get("created_days_ago", 0))
        await db.upsert_standup_entry(
            DEMO_PROJECT_ID,
            user_id,
            day_str,
            summary_today=entry.get("summary_today"),
            progress_since_yesterday=entry.get("progress_since_yesterday"),
            blockers=entry.get("blockers"),
            dependencies=entry.get("dependencies"),
            is_complete=entry.get("is_complete", False),
            issue_ids=entry.get("issue_ids", []),
            research_ids=entry.get("research_ids", []),
            created_at=created_at.isoformat(),
        )

    notes = await db.list_facilitator_notes(DEMO_PROJECT_ID, date=day_str)
    if not notes:
        note = await db.create_facilitator_note(
            DEMO_PROJECT_ID, day_str, "demo-priya",
            "Chased security for the webhook secret review",
            created_at=(day_start - timedelta(days=2)).isoformat(),
        )
        await db.set_facilitator_note_resolved(
            note["id"], True, resolved_at=(day_start - timedelta(hours=6)).isoformat(),
        )

    return project
