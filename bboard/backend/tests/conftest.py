"""Shared fixtures for B Board backend tests."""

import os
import sys
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio

# Ensure backend is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

STANDUP_DATE = "2026-02-16"
PROJECT_ID = "proj-1"


@pytest.fixture(autouse=True)
async def test_db(tmp_path):
    """Patch DB_PATH to a per-test temp file, init schema, clean after."""
    import database as db_module

    db_path = str(tmp_path / "test.db")
    original = db_module.DB_PATH
    db_module.DB_PATH = db_path

    await db_module.init_db()
    yield

    db_module.DB_PATH = original


@pytest.fixture(autouse=True)
def offline_settings(monkeypatch):
    """No model or SMTP credentials unless a test opts in."""
    from config import settings

    monkeypatch.setattr(settings, "ANTHROPIC_API_KEY", "")
    monkeypatch.setattr(settings, "SMTP_HOST", "")
    monkeypatch.setattr(settings, "AI_MODEL_DEFAULT", "sonnet")
    monkeypatch.setattr(settings, "AI_MODEL_FALLBACK", "haiku")


@pytest.fixture
def ai_enabled(monkeypatch):
    from config import settings

    monkeypatch.setattr(settings, "ANTHROPIC_API_KEY", "test-key")


@pytest.fixture
def mock_chat_json(ai_enabled):
    """Patch ai_client.chat_json to prevent Claude API calls."""
    with patch("ai_client.chat_json", new_callable=AsyncMock) as mock:
        yield mock


@pytest_asyncio.fixture
async def async_client():
    """HTTPX async client wired to the FastAPI app without invoking lifespan."""
    import httpx
    from main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def seeded_project():
    """Project with a PO, two devs, a global admin (not a member) and an outsider."""
    import database as db

    users = {
        "admin": await db.create_user("Ada Admin", "ada@example.com", "ADMIN", user_id="user-admin"),
        "po": await db.create_user("Pat PO", "pat@example.com", "PO", user_id="user-po"),
        "dev": await db.create_user("Dana Dev", "dana@example.com", "DEV", user_id="user-dev"),
        "dev2": await db.create_user("Quinn Dev", None, "DEV", user_id="user-dev2"),
        "outsider": await db.create_user("Olly Outside", "olly@example.com", "DEV", user_id="user-outsider"),
    }
    project = await db.create_project("Checkout", project_id=PROJECT_ID)
    await db.add_project_member(PROJECT_ID, "user-po", "PO")
    await db.add_project_member(PROJECT_ID, "user-dev", "DEV")
    await db.add_project_member(PROJECT_ID, "user-dev2", "DEV")
    issue = await db.create_issue(PROJECT_ID, "Checkout API integration", key="ISS-1",
                                  assignee_id="user-dev", issue_id="issue-1")
    research = await db.create_research_item(PROJECT_ID, "Payment provider comparison", key="RES-1",
                                             item_id="research-1")
    return {"project": project, "users": users, "issue": issue, "research": research}


@pytest_asyncio.fixture
async def seeded_entries(seeded_project):
    """Three entries for STANDUP_DATE: linked progress, a PO-approval blocker, and a vague update."""
    import database as db

    dev = await db.upsert_standup_entry(
        PROJECT_ID, "user-dev", STANDUP_DATE,
        progress_since_yesterday="Completed checkout API integration with the payment gateway",
        summary_today="Write integration tests for the checkout API retry logic",
        is_complete=True,
        issue_ids=["issue-1"],
    )
    po = await db.upsert_standup_entry(
        PROJECT_ID, "user-po", STANDUP_DATE,
        progress_since_yesterday="Reviewed refund acceptance criteria with legal",
        summary_today="Prepare the sprint review agenda and stakeholder notes",
        blockers="Need PO approval from finance to proceed with refunds rollout",
        is_complete=True,
        research_ids=["research-1"],
    )
    dev2 = await db.upsert_standup_entry(
        PROJECT_ID, "user-dev2", STANDUP_DATE,
        progress_since_yesterday="Same as yesterday",
        summary_today="Continue task",
        dependencies="Waiting on API approval",
    )
    return {"dev": dev, "po": po, "dev2": dev2}
