"""Tests for clarifications, events, KPIs and facilitator notes."""

import database as db

PO = {"X-User-Id": "user-po"}
DEV = {"X-User-Id": "user-dev"}
DEV2 = {"X-User-Id": "user-dev2"}

CLARIFICATIONS_URL = "/api/projects/proj-1/standup/clarifications"
NOTES_URL = "/api/projects/proj-1/standup/facilitator-notes"


class TestClarifications:
    async def test_author_answers(self, async_client, seeded_entries):
        resp = await async_client.post(CLARIFICATIONS_URL, headers=DEV2, json={
            "entry_id": seeded_entries["dev2"]["id"],
            "question_id": "question_aaaaaaaaaaaa",
            "answer": "  Waiting on Priya from security  ",
        })
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ANSWERED"
        assert data["answer"] == "Waiting on Priya from security"

        events = await db.list_events("proj-1", type="ClarificationSubmitted")
        assert events[0]["metadata_json"]["question_id"] == "question_aaaaaaaaaaaa"

    async def test_po_dismisses_with_default_date(self, async_client, seeded_entries):
        resp = await async_client.post(CLARIFICATIONS_URL, headers=PO, json={
            "entry_id": seeded_entries["dev2"]["id"],
            "question_id": "question_bbbbbbbbbbbb",
            "status": "DISMISSED",
            "answer": "ignored",
        })
        data = resp.json()
        assert data["dismissed_until"] == "2026-02-16"
        assert data["answer"] is None

    async def test_answer_required(self, async_client, seeded_entries):
        resp = await async_client.post(CLARIFICATIONS_URL, headers=DEV2, json={
            "entry_id": seeded_entries["dev2"]["id"],
            "question_id": "question_aaaaaaaaaaaa",
            "answer": "   ",
        })
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Answer is required"

    async def test_other_dev_forbidden(self, async_client, seeded_entries):
        resp = await async_client.post(CLARIFICATIONS_URL, headers=DEV, json={
            "entry_id": seeded_entries["dev2"]["id"],
            "question_id": "question_aaaaaaaaaaaa",
            "answer": "Not mine to answer",
        })
        assert resp.status_code == 403

    async def test_unknown_entry(self, async_client, seeded_entries):
        resp = await async_client.post(CLARIFICATIONS_URL, headers=PO, json={
            "entry_id": "missing",
            "question_id": "question_aaaaaaaaaaaa",
            "answer": "x",
        })
        assert resp.status_code == 404

    async def test_answered_question_drops_from_summary(self, async_client, seeded_entries):
        summary = (await async_client.get("/api/projects/proj-1/standup/summary",
                                          params={"date": "2026-02-16"}, headers=PO)).json()
        question = next(q for q in summary["summary_json"]["open_questions"]
                        if q["ask_to_user_id"] == "user-dev2")

        await async_client.post(CLARIFICATIONS_URL, headers=DEV2, json={
            "entry_id": question["entry_id"],
            "question_id": question["id"],
            "answer": "Linked to ISS-1 now",
        })
        refreshed = (await async_client.get("/api/projects/proj-1/standup/summary",
                                            params={"date": "2026-02-16", "forceRefresh": "true"},
                                            headers=PO)).json()

        assert question["id"] not in {q["id"] for q in refreshed["summary_json"]["open_questions"]}
        assert refreshed["clarifications"][0]["question_id"] == question["id"]


class TestEvents:
    async def test_record_and_dedupe(self, async_client, seeded_project):
        body = {"type": "SummaryViewed", "client_event_id": "view-1", "metadata": {"surface": "dashboard"}}
        first = await async_client.post("/api/projects/proj-1/standup/events", headers=PO, json=body)
        second = await async_client.post("/api/projects/proj-1/standup/events", headers=PO, json=body)

        assert first.json()["recorded"] is True
        assert first.json()["event"]["metadata_json"] == {"surface": "dashboard"}
        assert second.json() == {"recorded": False, "event": None}

    async def test_outsider_forbidden(self, async_client, seeded_project):
        resp = await async_client.post("/api/projects/proj-1/standup/events",
                                       headers={"X-User-Id": "user-outsider"}, json={"type": "SummaryViewed"})
        assert resp.status_code == 403


class TestKpi:
    async def test_compute(self, async_client, seeded_entries):
        await db.create_event("SummaryViewed", "proj-1", "user-po", created_at="2026-02-16T08:00:00+00:00")
        resp = await async_client.post("/api/projects/proj-1/standup/kpi", params={"date": "2026-02-16"},
                                       headers=PO)
        assert resp.status_code == 200
        metrics = resp.json()["metrics"]
        assert metrics["standup_compliance_percent"] == 100.0
        assert metrics["blockers_opened_today"] == 1
        assert metrics["po_engagement_views_per_day"] == 1

    async def test_dev_forbidden(self, async_client, seeded_project):
        resp = await async_client.post("/api/projects/proj-1/standup/kpi", params={"date": "2026-02-16"},
                                       headers=DEV)
        assert resp.status_code == 403


class TestFacilitatorNotes:
    async def test_create_list_resolve(self, async_client, seeded_entries):
        resp = await async_client.post(NOTES_URL, headers=PO, json={
            "date": "2026-02-16",
            "body": "  Chase finance sign-off  ",
            "entry_id": seeded_entries["po"]["id"],
        })
        assert resp.status_code == 200
        note = resp.json()
        assert note["body"] == "Chase finance sign-off"

        listed = await async_client.get(NOTES_URL, params={"date": "2026-02-16"}, headers=PO)
        assert [n["id"] for n in listed.json()] == [note["id"]]

        resolved = await async_client.patch(f"{NOTES_URL}/{note['id']}", headers=PO, json={"resolved": True})
        assert resolved.json()["resolved"] == 1
        assert resolved.json()["resolved_at"] is not None

    async def test_unknown_note(self, async_client, seeded_project):
        resp = await async_client.patch(f"{NOTES_URL}/missing", headers=PO, json={"resolved": True})
        assert resp.status_code == 404

    async def test_entry_must_belong_to_project(self, async_client, seeded_project):
        resp = await async_client.post(NOTES_URL, headers=PO, json={
            "date": "2026-02-16", "body": "x", "entry_id": "missing",
        })
        assert resp.status_code == 404

    async def test_dev_forbidden(self, async_client, seeded_project):
        resp = await async_client.get(NOTES_URL, headers=DEV)
        assert resp.status_code == 403
