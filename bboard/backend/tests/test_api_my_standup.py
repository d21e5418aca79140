"""Tests for personal standup history and the member view."""

import pytest_asyncio

import database as db

ADMIN = {"X-User-Id": "user-admin"}
PO = {"X-User-Id": "user-po"}
DEV = {"X-User-Id": "user-dev"}

MY_URL = "/api/projects/proj-1/standup/my"
MY_LIST_URL = "/api/projects/proj-1/standup/my/list"
USER_VIEW_URL = "/api/projects/proj-1/standup/user-view"


@pytest_asyncio.fixture
async def dev_history(seeded_entries):
    """Dana's Friday and Sunday entries before the Monday seeded one."""
    friday = await db.upsert_standup_entry("proj-1", "user-dev", "2026-02-13",
                                           summary_today="Spike the payment gateway retries")
    sunday = await db.upsert_standup_entry("proj-1", "user-dev", "2026-02-15",
                                           summary_today="Weekend hotfix for the checkout banner")
    return {"friday": friday, "sunday": sunday, "monday": seeded_entries["dev"]}


class TestMyStandup:
    async def test_entry_with_previous_standup_day(self, async_client, dev_history):
        resp = await async_client.get(MY_URL, params={"date": "2026-02-16"}, headers=DEV)
        assert resp.status_code == 200
        data = resp.json()

        assert data["user_id"] == "user-dev"
        assert data["entry"]["id"] == dev_history["monday"]["id"]
        assert data["entry"]["issue_ids"] == ["issue-1"]
        # Monday looks back to Friday, past the weekend entry
        assert data["previous_date"] == "2026-02-13"
        assert data["previous_entry"]["id"] == dev_history["friday"]["id"]

    async def test_missing_entries(self, async_client, seeded_project):
        resp = await async_client.get(MY_URL, params={"date": "2026-02-18"}, headers=DEV)
        assert resp.json() == {
            "user_id": "user-dev",
            "date": "2026-02-18",
            "entry": None,
            "previous_date": "2026-02-17",
            "previous_entry": None,
        }

    async def test_invalid_date(self, async_client, seeded_project):
        resp = await async_client.get(MY_URL, params={"date": "someday"}, headers=DEV)
        assert resp.status_code == 400

    async def test_admin_views_member(self, async_client, dev_history):
        resp = await async_client.get(MY_URL, params={"date": "2026-02-16", "userId": "user-dev"}, headers=ADMIN)
        assert resp.status_code == 200
        assert resp.json()["entry"]["id"] == dev_history["monday"]["id"]

    async def test_admin_views_non_member(self, async_client, seeded_project):
        resp = await async_client.get(MY_URL, params={"date": "2026-02-16", "userId": "user-outsider"},
                                      headers=ADMIN)
        assert resp.status_code == 404

    async def test_other_member_forbidden_for_non_admin(self, async_client, dev_history):
        resp = await async_client.get(MY_URL, params={"date": "2026-02-16", "userId": "user-dev"}, headers=PO)
        assert resp.status_code == 403

    async def test_outsider_forbidden(self, async_client, seeded_project):
        resp = await async_client.get(MY_URL, params={"date": "2026-02-16"},
                                      headers={"X-User-Id": "user-outsider"})
        assert resp.status_code == 403


class TestMyStandupList:
    async def test_range_newest_first(self, async_client, dev_history):
        resp = await async_client.get(MY_LIST_URL, params={"startDate": "2026-02-13", "endDate": "2026-02-15"},
                                      headers=DEV)
        assert resp.status_code == 200
        assert [entry["date"] for entry in resp.json()] == ["2026-02-15", "2026-02-13"]

    async def test_open_ended_range(self, async_client, dev_history):
        resp = await async_client.get(MY_LIST_URL, params={"startDate": "2026-02-14"}, headers=DEV)
        assert [entry["date"] for entry in resp.json()] == ["2026-02-16", "2026-02-15"]

        resp = await async_client.get(MY_LIST_URL, params={"endDate": "2026-02-13"}, headers=DEV)
        assert [entry["id"] for entry in resp.json()] == [dev_history["friday"]["id"]]

    async def test_only_callers_entries(self, async_client, dev_history):
        resp = await async_client.get(MY_LIST_URL, params={"startDate": "2026-02-01"}, headers=PO)
        assert [entry["user_id"] for entry in resp.json()] == ["user-po"]

    async def test_requires_a_bound(self, async_client, seeded_project):
        resp = await async_client.get(MY_LIST_URL, headers=DEV)
        assert resp.status_code == 400

    async def test_invalid_bound(self, async_client, seeded_project):
        resp = await async_client.get(MY_LIST_URL, params={"startDate": "last month"}, headers=DEV)
        assert resp.status_code == 400


class TestUserView:
    async def test_today_and_calendar_yesterday(self, async_client, dev_history):
        resp = await async_client.get(USER_VIEW_URL, params={"userId": "user-dev", "date": "2026-02-16"},
                                      headers=PO)
        assert resp.status_code == 200
        data = resp.json()

        assert data["user"] == {"id": "user-dev", "name": "Dana Dev"}
        assert data["today"]["id"] == dev_history["monday"]["id"]
        assert data["yesterday"]["id"] == dev_history["sunday"]["id"]

    async def test_requires_user_id(self, async_client, seeded_project):
        resp = await async_client.get(USER_VIEW_URL, params={"date": "2026-02-16"}, headers=PO)
        assert resp.status_code == 400

    async def test_non_member(self, async_client, seeded_project):
        resp = await async_client.get(USER_VIEW_URL, params={"userId": "user-outsider", "date": "2026-02-16"},
                                      headers=PO)
        assert resp.status_code == 404

    async def test_dev_forbidden(self, async_client, seeded_project):
        resp = await async_client.get(USER_VIEW_URL, params={"userId": "user-dev2", "date": "2026-02-16"},
                                      headers=DEV)
        assert resp.status_code == 403
