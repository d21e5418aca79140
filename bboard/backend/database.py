"""SQLite database schema and CRUD operations using aiosqlite."""

import json
import uuid
from datetime import datetime, timezone

import aiosqlite

from config import settings

DB_PATH = settings.DB_PATH

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    name TEXT,
    email TEXT,
    role TEXT NOT NULL DEFAULT 'DEV',
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS project_members (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    role TEXT NOT NULL DEFAULT 'DEV',
    UNIQUE(project_id, user_id)
);

CREATE TABLE IF NOT EXISTS issues (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    key TEXT,
    title TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'TODO',
    assignee_id TEXT REFERENCES users(id)
);

CREATE TABLE IF NOT EXISTS research_items (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    key TEXT,
    title TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'BACKLOG',
    assignee_id TEXT REFERENCES users(id)
);

CREATE TABLE IF NOT EXISTS standup_entries (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    date TEXT NOT NULL,
    summary_today TEXT,
    progress_since_yesterday TEXT,
    blockers TEXT,
    dependencies TEXT,
    notes TEXT,
    is_complete INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(project_id, user_id, date)
);

CREATE TABLE IF NOT EXISTS standup_entry_issues (
    entry_id TEXT NOT NULL REFERENCES standup_entries(id) ON DELETE CASCADE,
    issue_id TEXT NOT NULL REFERENCES issues(id) ON DELETE CASCADE,
    PRIMARY KEY (entry_id, issue_id)
);

CREATE TABLE IF NOT EXISTS standup_entry_research (
    entry_id TEXT NOT NULL REFERENCES standup_entries(id) ON DELETE CASCADE,
    research_item_id TEXT NOT NULL REFERENCES research_items(id) ON DELETE CASCADE,
    PRIMARY KEY (entry_id, research_item_id)
);

CREATE TABLE IF NOT EXISTS standup_summaries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    date TEXT NOT NULL,
    summary TEXT NOT NULL,
    highlights TEXT,
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(project_id, date)
);

CREATE TABLE IF NOT EXISTS ai_summary_versions (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    summary_id TEXT NOT NULL,
    date TEXT NOT NULL,
    version INTEGER NOT NULL,
    model TEXT NOT NULL,
    prompt_version TEXT NOT NULL,
    input_hash TEXT NOT NULL,
    output_json TEXT NOT NULL,
    metadata_json TEXT,
    created_by TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(summary_id, version)
);

CREATE TABLE IF NOT EXISTS ai_validation_flags (
    id TEXT PRIMARY KEY,
    summary_version_id TEXT NOT NULL REFERENCES ai_summary_versions(id) ON DELETE CASCADE,
    flag_type TEXT NOT NULL,
    details_json TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS ai_feedback (
    id TEXT PRIMARY KEY,
    summary_version_id TEXT NOT NULL REFERENCES ai_summary_versions(id) ON DELETE CASCADE,
    section_type TEXT NOT NULL,
    bullet_id TEXT NOT NULL DEFAULT '',
    feedback_type TEXT NOT NULL,
    comment TEXT,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(summary_version_id, user_id, section_type, bullet_id)
);

CREATE TABLE IF NOT EXISTS events (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    summary_version_id TEXT,
    client_event_id TEXT,
    metadata_json TEXT,
    created_at TEXT NOT NULL,
    UNIQUE(project_id, client_event_id)
);

CREATE TABLE IF NOT EXISTS kpi_daily (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    date TEXT NOT NULL,
    metrics_json TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(project_id, date)
);

CREATE TABLE IF NOT EXISTS standup_quality_daily (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    date TEXT NOT NULL,
    quality_score INTEGER NOT NULL,
    metrics_json TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(project_id, date)
);

CREATE TABLE IF NOT EXISTS standup_action_states (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    date TEXT NOT NULL,
    action_id TEXT NOT NULL,
    state TEXT NOT NULL DEFAULT 'OPEN',
    snooze_until TEXT,
    summary_version INTEGER,
    client_event_id TEXT,
    metadata_json TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(project_id, user_id, date, action_id)
);

CREATE TABLE IF NOT EXISTS standup_entry_clarifications (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    entry_id TEXT NOT NULL REFERENCES standup_entries(id) ON DELETE CASCADE,
    question_id TEXT NOT NULL,
    answer TEXT,
    status TEXT NOT NULL DEFAULT 'ANSWERED',
    dismissed_until TEXT,
    created_by_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(entry_id, question_id)
);

CREATE TABLE IF NOT EXISTS facilitator_notes (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    date TEXT NOT NULL,
    entry_id TEXT REFERENCES standup_entries(id) ON DELETE SET NULL,
    author_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    body TEXT NOT NULL,
    resolved INTEGER NOT NULL DEFAULT 0,
    resolved_at TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_entries_project_date ON standup_entries(project_id, date);
CREATE INDEX IF NOT EXISTS idx_versions_summary ON ai_summary_versions(summary_id);
CREATE INDEX IF NOT EXISTS idx_flags_version ON ai_validation_flags(summary_version_id);
CREATE INDEX IF NOT EXISTS idx_events_project_created ON events(project_id, created_at);
"""


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _decode(row: aiosqlite.Row | None, *json_fields: str) -> dict | None:
    """Row to dict, parsing the given JSON text columns."""
    if row is None:
        return None
    data = dict(row)
    for field in json_fields:
        if data.get(field) is not None:
            data[field] = json.loads(data[field])
    return data


async def get_db() -> aiosqlite.Connection:
    """Open a database connection with row factory enabled."""
    db = await aiosqlite.connect(DB_PATH)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA journal_mode=WAL")
    await db.execute("PRAGMA foreign_keys=ON")
    return db


async def init_db() -> None:
    """Initialize database schema."""
    db = await get_db()
    try:
        await db.executescript(SCHEMA)
        await db.commit()
    finally:
        await db.close()


# --------------- Users & Projects ---------------

async def create_user(name: str | None, email: str | None, role: str = "DEV",
                      user_id: str | None = None) -> dict:
    user_id = user_id or _new_id()
    db = await get_db()
    try:
        await db.execute(
            "INSERT INTO users (id, name, email, role) VALUES (?, ?, ?, ?)",
            (user_id, name, email, role),
        )
        await db.commit()
        row = await (await db.execute("SELECT * FROM users WHERE id = ?", (user_id,))).fetchone()
        return dict(row)
    finally:
        await db.close()


async def get_user(user_id: str) -> dict | None:
    db = await get_db()
    try:
        row = await (await db.execute("SELECT * FROM users WHERE id = ?", (user_id,))).fetchone()
        return dict(row) if row else None
    finally:
        await db.close()


async def create_project(name: str, project_id: str | None = None) -> dict:
    project_id = project_id or _new_id()
    db = await get_db()
    try:
        await db.execute("INSERT INTO projects (id, name) VALUES (?, ?)", (project_id, name))
        await db.commit()
        row = await (await db.execute("SELECT * FROM projects WHERE id = ?", (project_id,))).fetchone()
        return dict(row)
    finally:
        await db.close()


async def get_project(project_id: str) -> dict | None:
    db = await get_db()
    try:
        row = await (await db.execute("SELECT * FROM projects WHERE id = ?", (project_id,))).fetchone()
        return dict(row) if row else None
    finally:
        await db.close()


async def add_project_member(project_id: str, user_id: str, role: str = "DEV") -> dict:
    db = await get_db()
    try:
        await db.execute(
            """INSERT INTO project_members (project_id, user_id, role) VALUES (?, ?, ?)
               ON CONFLICT(project_id, user_id) DO UPDATE SET role = excluded.role""",
            (project_id, user_id, role),
        )
        await db.commit()
        row = await (await db.execute(
            "SELECT * FROM project_members WHERE project_id = ? AND user_id = ?",
            (project_id, user_id),
        )).fetchone()
        return dict(row)
    finally:
        await db.close()


async def get_project_member(project_id: str, user_id: str) -> dict | None:
    db = await get_db()
    try:
        row = await (await db.execute(
            "SELECT * FROM project_members WHERE project_id = ? AND user_id = ?",
            (project_id, user_id),
        )).fetchone()
        return dict(row) if row else None
    finally:
        await db.close()


async def list_project_members(project_id: str) -> list[dict]:
    """Project members joined with their user record."""
    db = await get_db()
    try:
        rows = await (await db.execute(
            """SELECT pm.project_id, pm.user_id, pm.role,
                      u.name AS user_name, u.email AS user_email, u.role AS user_role
               FROM project_members pm JOIN users u ON u.id = pm.user_id
               WHERE pm.project_id = ?
               ORDER BY pm.id""",
            (project_id,),
        )).fetchall()
        return [dict(r) for r in rows]
    finally:
        await db.close()


async def count_project_members(project_id: str) -> int:
    db = await get_db()
    try:
        row = await (await db.execute(
            "SELECT COUNT(*) FROM project_members WHERE project_id = ?", (project_id,),
        )).fetchone()
        return int(row[0])
    finally:
        await db.close()


# --------------- Work items ---------------

async def create_issue(project_id: str, title: str, key: str | None = None,
                       assignee_id: str | None = None, status: str = "TODO",
                       issue_id: str | None = None) -> dict:
    issue_id = issue_id or _new_id()
    db = await get_db()
    try:
        await db.execute(
            "INSERT INTO issues (id, project_id, key, title, status, assignee_id) VALUES (?, ?, ?, ?, ?, ?)",
            (issue_id, project_id, key, title, status, assignee_id),
        )
        await db.commit()
        row = await (await db.execute("SELECT * FROM issues WHERE id = ?", (issue_id,))).fetchone()
        return dict(row)
    finally:
        await db.close()


async def create_research_item(project_id: str, title: str, key: str | None = None,
                               assignee_id: str | None = None, status: str = "BACKLOG",
                               item_id: str | None = None) -> dict:
    item_id = item_id or _new_id()
    db = await get_db()
    try:
        await db.execute(
            "INSERT INTO research_items (id, project_id, key, title, status, assignee_id) VALUES (?, ?, ?, ?, ?, ?)",
            (item_id, project_id, key, title, status, assignee_id),
        )
        await db.commit()
        row = await (await db.execute("SELECT * FROM research_items WHERE id = ?", (item_id,))).fetchone()
        return dict(row)
    finally:
        await db.close()


# --------------- Standup Entries ---------------

async def upsert_standup_entry(
    project_id: str,
    user_id: str,
    date: str,
    *,
    summary_today: str | None = None,
    progress_since_yesterday: str | None = None,
    blockers: str | None = None,
    dependencies: str | None = None,
    notes: str | None = None,
    is_complete: bool = False,
    issue_ids: list[str] | None = None,
    research_ids: list[str] | None = None,
    created_at: str | None = None,
) -> dict:
    """Create or replace a member's entry for a date, including its work links."""
    now = _now()
    db = await get_db()
    try:
        existing = await (await db.execute(
            "SELECT id FROM standup_entries WHERE project_id = ? AND user_id = ? AND date = ?",
            (project_id, user_id, date),
        )).fetchone()
        if existing:
            entry_id = existing["id"]
            await db.execute(
                """UPDATE standup_entries
                   SET summary_today = ?, progress_since_yesterday = ?, blockers = ?,
                       dependencies = ?, notes = ?, is_complete = ?, updated_at = ?
                   WHERE id = ?""",
                (summary_today, progress_since_yesterday, blockers, dependencies, notes,
                 int(is_complete), now, entry_id),
            )
        else:
            entry_id = _new_id()
            await db.execute(
                """INSERT INTO standup_entries
                   (id, project_id, user_id, date, summary_today, progress_since_yesterday,
                    blockers, dependencies, notes, is_complete, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (entry_id, project_id, user_id, date, summary_today, progress_since_yesterday,
                 blockers, dependencies, notes, int(is_complete), created_at or now, now),
            )

        if issue_ids is not None:
            await db.execute("DELETE FROM standup_entry_issues WHERE entry_id = ?", (entry_id,))
            await db.executemany(
                "INSERT OR IGNORE INTO standup_entry_issues (entry_id, issue_id) VALUES (?, ?)",
                [(entry_id, issue_id) for issue_id in issue_ids],
            )
        if research_ids is not None:
            await db.execute("DELETE FROM standup_entry_research WHERE entry_id = ?", (entry_id,))
            await db.executemany(
                "INSERT OR IGNORE INTO standup_entry_research (entry_id, research_item_id) VALUES (?, ?)",
                [(entry_id, item_id) for item_id in research_ids],
            )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    finally:
        await db.close()

    return await get_standup_entry(entry_id)


async def _load_entry_links(db: aiosqlite.Connection, entry_ids: list[str]) -> tuple[dict, dict]:
    issues: dict[str, list[dict]] = {entry_id: [] for entry_id in entry_ids}
    research: dict[str, list[dict]] = {entry_id: [] for entry_id in entry_ids}
    if not entry_ids:
        return issues, research

    placeholders = ",".join("?" for _ in entry_ids)
    issue_rows = await (await db.execute(
        f"""SELECT l.entry_id, i.id, i.key, i.title, i.status, i.assignee_id
            FROM standup_entry_issues l JOIN issues i ON i.id = l.issue_id
            WHERE l.entry_id IN ({placeholders})
            ORDER BY i.key, i.id""",
        entry_ids,
    )).fetchall()
    for row in issue_rows:
        item = dict(row)
        issues[item.pop("entry_id")].append(item)

    research_rows = await (await db.execute(
        f"""SELECT l.entry_id, r.id, r.key, r.title, r.status, r.assignee_id
            FROM standup_entry_research l JOIN research_items r ON r.id = l.research_item_id
            WHERE l.entry_id IN ({placeholders})
            ORDER BY r.key, r.id""",
        entry_ids,
    )).fetchall()
    for row in research_rows:
        item = dict(row)
        research[item.pop("entry_id")].append(item)

    return issues, research


_ENTRY_SELECT = """
    SELECT e.*, u.name AS user_name, u.email AS user_email, u.role AS user_role
    FROM standup_entries e JOIN users u ON u.id = e.user_id
"""


def _shape_entry(row: aiosqlite.Row, issues: dict, research: dict) -> dict:
    data = dict(row)
    data["user"] = {
        "id": data["user_id"],
        "name": data.pop("user_name"),
        "email": data.pop("user_email"),
        "role": data.pop("user_role"),
    }
    data["is_complete"] = bool(data["is_complete"])
    data["issues"] = issues.get(data["id"], [])
    data["research"] = research.get(data["id"], [])
    return data


async def get_standup_entry(entry_id: str) -> dict | None:
    db = await get_db()
    try:
        row = await (await db.execute(_ENTRY_SELECT + " WHERE e.id = ?", (entry_id,))).fetchone()
        if not row:
            return None
        issues, research = await _load_entry_links(db, [entry_id])
        return _shape_entry(row, issues, research)
    finally:
        await db.close()


async def get_user_standup_entry(project_id: str, user_id: str, date: str) -> dict | None:
    db = await get_db()
    try:
        row = await (await db.execute(
            _ENTRY_SELECT + " WHERE e.project_id = ? AND e.user_id = ? AND e.date = ?",
            (project_id, user_id, date),
        )).fetchone()
        if not row:
            return None
        issues, research = await _load_entry_links(db, [row["id"]])
        return _shape_entry(row, issues, research)
    finally:
        await db.close()


async def list_standup_entries(project_id: str, date: str) -> list[dict]:
    """All entries for a project day with user and linked work, newest update first."""
    db = await get_db()
    try:
        rows = await (await db.execute(
            _ENTRY_SELECT + " WHERE e.project_id = ? AND e.date = ? ORDER BY e.updated_at DESC, e.id",
            (project_id, date),
        )).fetchall()
        issues, research = await _load_entry_links(db, [r["id"] for r in rows])
        return [_shape_entry(r, issues, research) for r in rows]
    finally:
        await db.close()


async def list_user_standup_entries(project_id: str, user_id: str,
                                    start: str | None = None, end: str | None = None) -> list[dict]:
    """A member's entries between two inclusive dates, newest day first."""
    db = await get_db()
    try:
        query = _ENTRY_SELECT + " WHERE e.project_id = ? AND e.user_id = ?"
        params: list = [project_id, user_id]
        if start:
            query += " AND e.date >= ?"
            params.append(start)
        if end:
            query += " AND e.date <= ?"
            params.append(end)
        query += " ORDER BY e.date DESC"
        rows = await (await db.execute(query, params)).fetchall()
        issues, research = await _load_entry_links(db, [r["id"] for r in rows])
        return [_shape_entry(r, issues, research) for r in rows]
    finally:
        await db.close()


# --------------- Summaries ---------------

async def upsert_standup_summary(project_id: str, date: str, summary: str,
                                 highlights: str | None) -> dict:
    db = await get_db()
    try:
        await db.execute(
            """INSERT INTO standup_summaries (project_id, date, summary, highlights, updated_at)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(project_id, date) DO UPDATE SET
                   summary = excluded.summary,
                   highlights = excluded.highlights,
                   updated_at = excluded.updated_at""",
            (project_id, date, summary, highlights, _now()),
        )
        await db.commit()
        row = await (await db.execute(
            "SELECT * FROM standup_summaries WHERE project_id = ? AND date = ?", (project_id, date),
        )).fetchone()
        return dict(row)
    finally:
        await db.close()


async def get_standup_summary(project_id: str, date: str) -> dict | None:
    db = await get_db()
    try:
        row = await (await db.execute(
            "SELECT * FROM standup_summaries WHERE project_id = ? AND date = ?", (project_id, date),
        )).fetchone()
        return dict(row) if row else None
    finally:
        await db.close()


async def create_summary_version(
    project_id: str,
    summary_id: str,
    date: str,
    model: str,
    prompt_version: str,
    input_hash: str,
    output_json: dict,
    created_by: str,
    metadata_json: dict | None = None,
) -> dict:
    """Insert the next version for summary_id (max + 1)."""
    version_id = _new_id()
    db = await get_db()
    try:
        row = await (await db.execute(
            "SELECT COALESCE(MAX(version), 0) FROM ai_summary_versions WHERE summary_id = ?",
            (summary_id,),
        )).fetchone()
        version = int(row[0]) + 1
        await db.execute(
            """INSERT INTO ai_summary_versions
               (id, project_id, summary_id, date, version, model, prompt_version,
                input_hash, output_json, metadata_json, created_by)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (version_id, project_id, summary_id, date, version, model, prompt_version,
             input_hash, json.dumps(output_json),
             json.dumps(metadata_json) if metadata_json is not None else None, created_by),
        )
        await db.commit()
        row = await (await db.execute(
            "SELECT * FROM ai_summary_versions WHERE id = ?", (version_id,),
        )).fetchone()
        return _decode(row, "output_json", "metadata_json")
    finally:
        await db.close()


async def get_latest_summary_version(summary_id: str) -> dict | None:
    db = await get_db()
    try:
        row = await (await db.execute(
            "SELECT * FROM ai_summary_versions WHERE summary_id = ? ORDER BY version DESC LIMIT 1",
            (summary_id,),
        )).fetchone()
        return _decode(row, "output_json", "metadata_json")
    finally:
        await db.close()


async def get_summary_version(version_id: str) -> dict | None:
    db = await get_db()
    try:
        row = await (await db.execute(
            "SELECT * FROM ai_summary_versions WHERE id = ?", (version_id,),
        )).fetchone()
        return _decode(row, "output_json", "metadata_json")
    finally:
        await db.close()


async def replace_validation_flags(summary_version_id: str, flags: list[dict]) -> list[dict]:
    """Delete and recreate all flags for a version in one transaction."""
    db = await get_db()
    try:
        await db.execute(
            "DELETE FROM ai_validation_flags WHERE summary_version_id = ?", (summary_version_id,),
        )
        await db.executemany(
            """INSERT INTO ai_validation_flags (id, summary_version_id, flag_type, details_json)
               VALUES (?, ?, ?, ?)""",
            [
                (_new_id(), summary_version_id, flag["flag_type"], json.dumps(flag.get("details")))
                for flag in flags
            ],
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    finally:
        await db.close()
    return await list_validation_flags(summary_version_id)


async def list_validation_flags(summary_version_id: str) -> list[dict]:
    db = await get_db()
    try:
        rows = await (await db.execute(
            "SELECT * FROM ai_validation_flags WHERE summary_version_id = ? ORDER BY flag_type",
            (summary_version_id,),
        )).fetchall()
        return [_decode(r, "details_json") for r in rows]
    finally:
        await db.close()


async def count_validation_flags_by_day(project_id: str, start: str, end: str) -> dict[str, int]:
    """Flag counts keyed by the summary date of the version they were raised on."""
    db = await get_db()
    try:
        rows = await (await db.execute(
            """SELECT v.date, COUNT(*) AS flag_count
               FROM ai_validation_flags f JOIN ai_summary_versions v ON v.id = f.summary_version_id
               WHERE v.project_id = ? AND v.date >= ? AND v.date <= ?
               GROUP BY v.date ORDER BY v.date""",
            (project_id, start, end),
        )).fetchall()
        return {r["date"]: r["flag_count"] for r in rows}
    finally:
        await db.close()


# --------------- Feedback ---------------

async def upsert_feedback(
    summary_version_id: str,
    section_type: str,
    bullet_id: str | None,
    feedback_type: str,
    comment: str | None,
    user_id: str,
    project_id: str,
) -> dict:
    bullet_id = bullet_id or ""
    db = await get_db()
    try:
        await db.execute(
            """INSERT INTO ai_feedback
               (id, summary_version_id, section_type, bullet_id, feedback_type, comment, user_id, project_id)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(summary_version_id, user_id, section_type, bullet_id) DO UPDATE SET
                   feedback_type = excluded.feedback_type,
                   comment = excluded.comment,
                   updated_at = datetime('now')""",
            (_new_id(), summary_version_id, section_type, bullet_id, feedback_type, comment,
             user_id, project_id),
        )
        await db.commit()
        row = await (await db.execute(
            """SELECT * FROM ai_feedback
               WHERE summary_version_id = ? AND user_id = ? AND section_type = ? AND bullet_id = ?""",
            (summary_version_id, user_id, section_type, bullet_id),
        )).fetchone()
        return dict(row)
    finally:
        await db.close()


async def list_feedback(project_id: str, limit: int = 200) -> list[dict]:
    db = await get_db()
    try:
        rows = await (await db.execute(
            "SELECT * FROM ai_feedback WHERE project_id = ? ORDER BY created_at DESC LIMIT ?",
            (project_id, limit),
        )).fetchall()
        return [dict(r) for r in rows]
    finally:
        await db.close()


async def count_feedback_by_day(project_id: str, start: str, end: str) -> dict[str, dict[str, int]]:
    """Feedback counts per UTC creation day and type, between two inclusive dates."""
    db = await get_db()
    try:
        rows = await (await db.execute(
            """SELECT substr(created_at, 1, 10) AS day, feedback_type, COUNT(*) AS feedback_count
               FROM ai_feedback
               WHERE project_id = ? AND substr(created_at, 1, 10) BETWEEN ? AND ?
               GROUP BY day, feedback_type ORDER BY day""",
            (project_id, start, end),
        )).fetchall()
    finally:
        await db.close()

    by_day: dict[str, dict[str, int]] = {}
    for row in rows:
        counts = by_day.setdefault(row["day"], {"USEFUL": 0, "INCORRECT": 0, "NEEDS_IMPROVEMENT": 0})
        counts[row["feedback_type"]] = row["feedback_count"]
    return by_day


# --------------- Events & KPIs ---------------

async def create_event(
    type: str,
    project_id: str,
    user_id: str,
    summary_version_id: str | None = None,
    client_event_id: str | None = None,
    metadata_json: dict | None = None,
    created_at: str | None = None,
) -> dict | None:
    """Insert an event. Returns None when client_event_id was already recorded."""
    event_id = _new_id()
    db = await get_db()
    try:
        try:
            await db.execute(
                """INSERT INTO events
                   (id, type, user_id, project_id, summary_version_id, client_event_id, metadata_json, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (event_id, type, user_id, project_id, summary_version_id, client_event_id,
                 json.dumps(metadata_json) if metadata_json is not None else None,
                 created_at or _now()),
            )
            await db.commit()
        except aiosqlite.IntegrityError:
            if client_event_id:
                return None
            raise
        row = await (await db.execute("SELECT * FROM events WHERE id = ?", (event_id,))).fetchone()
        return _decode(row, "metadata_json")
    finally:
        await db.close()


async def list_events(project_id: str, type: str | None = None,
                      start: str | None = None, end: str | None = None) -> list[dict]:
    """Events joined with the user's global role, filtered by [start, end)."""
    db = await get_db()
    try:
        query = """SELECT ev.*, u.role AS user_role
                   FROM events ev JOIN users u ON u.id = ev.user_id
                   WHERE ev.project_id = ?"""
        params: list = [project_id]
        if type:
            query += " AND ev.type = ?"
            params.append(type)
        if start:
            query += " AND ev.created_at >= ?"
            params.append(start)
        if end:
            query += " AND ev.created_at < ?"
            params.append(end)
        query += " ORDER BY ev.created_at"
        rows = await (await db.execute(query, params)).fetchall()
        return [_decode(r, "metadata_json") for r in rows]
    finally:
        await db.close()


async def upsert_kpi_daily(project_id: str, date: str, metrics: dict) -> None:
    db = await get_db()
    try:
        await db.execute(
            """INSERT INTO kpi_daily (project_id, date, metrics_json, updated_at) VALUES (?, ?, ?, ?)
               ON CONFLICT(project_id, date) DO UPDATE SET
                   metrics_json = excluded.metrics_json, updated_at = excluded.updated_at""",
            (project_id, date, json.dumps(metrics), _now()),
        )
        await db.commit()
    finally:
        await db.close()


async def get_kpi_daily(project_id: str, date: str) -> dict | None:
    db = await get_db()
    try:
        row = await (await db.execute(
            "SELECT * FROM kpi_daily WHERE project_id = ? AND date = ?", (project_id, date),
        )).fetchone()
        return _decode(row, "metrics_json")
    finally:
        await db.close()


async def list_kpi_daily(project_id: str, start: str, end: str) -> list[dict]:
    db = await get_db()
    try:
        rows = await (await db.execute(
            "SELECT * FROM kpi_daily WHERE project_id = ? AND date >= ? AND date <= ? ORDER BY date",
            (project_id, start, end),
        )).fetchall()
        return [_decode(r, "metrics_json") for r in rows]
    finally:
        await db.close()


async def upsert_quality_daily(project_id: str, date: str, quality_score: int, metrics: dict) -> None:
    db = await get_db()
    try:
        await db.execute(
            """INSERT INTO standup_quality_daily (project_id, date, quality_score, metrics_json, updated_at)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(project_id, date) DO UPDATE SET
                   quality_score = excluded.quality_score,
                   metrics_json = excluded.metrics_json,
                   updated_at = excluded.updated_at""",
            (project_id, date, quality_score, json.dumps(metrics), _now()),
        )
        await db.commit()
    finally:
        await db.close()


async def get_quality_daily(project_id: str, date: str) -> dict | None:
    db = await get_db()
    try:
        row = await (await db.execute(
            "SELECT * FROM standup_quality_daily WHERE project_id = ? AND date = ?", (project_id, date),
        )).fetchone()
        return _decode(row, "metrics_json")
    finally:
        await db.close()


# --------------- Action states ---------------

async def upsert_action_state(
    project_id: str,
    user_id: str,
    date: str,
    action_id: str,
    state: str,
    snooze_until: str | None = None,
    summary_version: int | None = None,
    client_event_id: str | None = None,
) -> dict:
    metadata = json.dumps({"project_id": project_id, "user_id": user_id, "action_id": action_id})
    db = await get_db()
    try:
        await db.execute(
            """INSERT INTO standup_action_states
               (project_id, user_id, date, action_id, state, snooze_until, summary_version,
                client_event_id, metadata_json, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(project_id, user_id, date, action_id) DO UPDATE SET
                   state = excluded.state,
                   snooze_until = excluded.snooze_until,
                   summary_version = excluded.summary_version,
                   client_event_id = excluded.client_event_id,
                   metadata_json = excluded.metadata_json,
                   updated_at = excluded.updated_at""",
            (project_id, user_id, date, action_id, state, snooze_until, summary_version,
             client_event_id, metadata, _now()),
        )
        await db.commit()
        row = await (await db.execute(
            """SELECT * FROM standup_action_states
               WHERE project_id = ? AND user_id = ? AND date = ? AND action_id = ?""",
            (project_id, user_id, date, action_id),
        )).fetchone()
        return _decode(row, "metadata_json")
    finally:
        await db.close()


async def list_action_states(project_id: str, user_id: str, date: str) -> list[dict]:
    db = await get_db()
    try:
        rows = await (await db.execute(
            """SELECT * FROM standup_action_states
               WHERE project_id = ? AND user_id = ? AND date = ?
               ORDER BY updated_at DESC""",
            (project_id, user_id, date),
        )).fetchall()
        return [_decode(r, "metadata_json") for r in rows]
    finally:
        await db.close()


# --------------- Clarifications ---------------

async def upsert_clarification(
    project_id: str,
    entry_id: str,
    question_id: str,
    answer: str | None,
    status: str,
    dismissed_until: str | None,
    created_by_id: str,
) -> dict:
    db = await get_db()
    try:
        await db.execute(
            """INSERT INTO standup_entry_clarifications
               (id, project_id, entry_id, question_id, answer, status, dismissed_until, created_by_id)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(entry_id, question_id) DO UPDATE SET
                   answer = excluded.answer,
                   status = excluded.status,
                   dismissed_until = excluded.dismissed_until,
                   created_by_id = excluded.created_by_id,
                   updated_at = datetime('now')""",
            (_new_id(), project_id, entry_id, question_id, answer, status, dismissed_until,
             created_by_id),
        )
        await db.commit()
        row = await (await db.execute(
            "SELECT * FROM standup_entry_clarifications WHERE entry_id = ? AND question_id = ?",
            (entry_id, question_id),
        )).fetchone()
        return dict(row)
    finally:
        await db.close()


async def list_clarifications(project_id: str, entry_ids: list[str]) -> list[dict]:
    if not entry_ids:
        return []
    placeholders = ",".join("?" for _ in entry_ids)
    db = await get_db()
    try:
        rows = await (await db.execute(
            f"""SELECT * FROM standup_entry_clarifications
                WHERE project_id = ? AND entry_id IN ({placeholders})
                ORDER BY created_at DESC""",
            [project_id, *entry_ids],
        )).fetchall()
        return [dict(r) for r in rows]
    finally:
        await db.close()


# --------------- Facilitator notes ---------------

async def create_facilitator_note(project_id: str, date: str, author_id: str, body: str,
                                  entry_id: str | None = None,
                                  created_at: str | None = None) -> dict:
    note_id = _new_id()
    db = await get_db()
    try:
        await db.execute(
            """INSERT INTO facilitator_notes (id, project_id, date, entry_id, author_id, body, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (note_id, project_id, date, entry_id, author_id, body, created_at or _now()),
        )
        await db.commit()
        row = await (await db.execute("SELECT * FROM facilitator_notes WHERE id = ?", (note_id,))).fetchone()
        return dict(row)
    finally:
        await db.close()


async def set_facilitator_note_resolved(note_id: str, resolved: bool,
                                        resolved_at: str | None = None) -> dict | None:
    db = await get_db()
    try:
        await db.execute(
            "UPDATE facilitator_notes SET resolved = ?, resolved_at = ? WHERE id = ?",
            (int(resolved), (resolved_at or _now()) if resolved else None, note_id),
        )
        await db.commit()
        row = await (await db.execute("SELECT * FROM facilitator_notes WHERE id = ?", (note_id,))).fetchone()
        return dict(row) if row else None
    finally:
        await db.close()


async def get_facilitator_note(note_id: str) -> dict | None:
    db = await get_db()
    try:
        row = await (await db.execute("SELECT * FROM facilitator_notes WHERE id = ?", (note_id,))).fetchone()
        return dict(row) if row else None
    finally:
        await db.close()


async def list_facilitator_notes(project_id: str, date: str | None = None,
                                 created_before: str | None = None) -> list[dict]:
    db = await get_db()
    try:
        query = "SELECT * FROM facilitator_notes WHERE project_id = ?"
        params: list = [project_id]
        if date:
            query += " AND date = ?"
            params.append(date)
        if created_before:
            query += " AND created_at < ?"
            params.append(created_before)
        query += " ORDER BY created_at DESC"
        rows = await (await db.execute(query, params)).fetchall()
        return [dict(r) for r in rows]
    finally:
        await db.close()
