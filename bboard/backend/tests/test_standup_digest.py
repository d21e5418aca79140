"""Tests for digest rendering."""

import pytest

from standup_digest import as_percent, render_digest, truncate_line, week_of

SOURCE = {
    "date": "2026-02-16",
    "generated_at": "2026-02-16T09:12:00.000Z",
    "summary_json": {
        "overall_progress": "Team completed core API integration and validated smoke tests across service boundaries.",
        "achievements": [
            {"id": "a-3", "text": "Zebra migration delivered", "linked_work_ids": ["BB-30"]},
            {"id": "a-1", "text": "Alpha endpoint stabilized", "linked_work_ids": ["BB-10"]},
            {"id": "a-2", "text": "Beta caching tuned", "linked_work_ids": ["BB-20"]},
            {"id": "a-4", "text": "Zulu extra win should not appear in stakeholder digest",
             "linked_work_ids": ["BB-40"]},
        ],
        "blockers": [
            {"id": "b-2", "text": "Medium risk around canary rollback", "linked_work_ids": ["OPS-6"]},
            {"id": "b-1", "text": "Critical vendor firewall delay", "linked_work_ids": ["OPS-1"]},
            {"id": "b-3", "text": "Third risk line for cap checks", "linked_work_ids": ["OPS-7"]},
            {"id": "b-4", "text": "Zulu risk should be trimmed for stakeholder output", "linked_work_ids": ["OPS-8"]},
        ],
        "dependencies": [],
        "assignment_gaps": [],
        "actions_required": [
            {"id": "ac-2", "title": "Schedule rollback drill", "reason": "Canary rollback confidence is low",
             "linked_work_ids": ["OPS-6"], "severity": "med", "due": "2026-02-18"},
            {"id": "ac-1",
             "title": "Escalate vendor firewall decision immediately with an intentionally long title "
                      "that should be truncated in compact mode",
             "reason": "Traffic still blocked from staging environment",
             "linked_work_ids": ["OPS-1"], "severity": "high", "due": "2026-02-17"},
            {"id": "ac-3", "title": "Confirm owner for follow-up", "reason": "Owner unclear",
             "linked_work_ids": ["OPS-2"], "severity": "low", "due": "2026-02-20"},
            {"id": "ac-4", "title": "Fourth action should be hidden in stakeholder digest",
             "reason": "Cap guardrail", "linked_work_ids": ["OPS-9"], "severity": "low", "due": "2026-02-22"},
        ],
        "open_questions": [
            {"id": "q-2", "question_text": "Can Ops approve emergency exception?",
             "source_entry_ids": ["e-2"], "priority": "high"},
            {"id": "q-1", "question_text": "Who owns post-deploy verification?",
             "source_entry_ids": ["e-1"], "priority": "med"},
        ],
    },
    "summary_rendered": {
        "overall_progress": "Team completed core API integration and validated smoke tests across service boundaries.",
    },
    "signals": {
        "quality_score": 88,
        "metrics": {
            "completion_rate": 0.75,
            "missing_linked_work_rate": 0.2,
            "missing_blockers_rate": 0.1,
            "vague_update_rate": 0,
        },
    },
}


class TestStakeholderDigest:
    def test_guardrails_and_order(self):
        lines = render_digest("stakeholder", SOURCE, include_references=True).split("\n")

        assert len(lines) == 5
        assert lines[0] == "Stakeholder Digest — As of 2026-02-16"
        assert "Alpha endpoint stabilized" in lines[2]
        assert "Zulu extra win should not appear" not in lines[2]
        assert "Zulu risk should be trimmed" not in lines[3]
        assert "Escalate vendor firewall decision" in lines[4]
        assert "Fourth action should be hidden" not in lines[4]
        assert all(len(line) <= 160 for line in lines)

    def test_empty_summary(self):
        lines = render_digest("stakeholder", {"date": "2026-02-16"}).split("\n")
        assert lines[1] == "Progress: No summary available."
        assert lines[2] == "Wins: None reported"


class TestTeamDetailedDigest:
    def test_section_order_and_references(self):
        digest = render_digest("team-detailed", SOURCE, include_references=True)

        action_center = digest.index("Action Center")
        open_questions = digest.index("Open Questions")
        signals = digest.index("Signals")
        full_summary = digest.index("Full Summary")

        assert action_center < open_questions < signals < full_summary
        assert "refs: OPS-1" in digest
        assert "- Completion rate: 75%" in digest
        assert "- Data quality score: 88" in digest

    def test_copy_formatting(self):
        source = {
            **SOURCE,
            "summary_json": {
                **SOURCE["summary_json"],
                "achievements": [{"id": "x", "text": "Done   with   extra   spaces", "linked_work_ids": []}],
            },
        }
        digest = render_digest("team-detailed", source)

        assert "\n\n\n" not in digest
        assert all(line == line.rstrip() for line in digest.split("\n"))
        assert "Done with extra spaces" in digest

    def test_visible_actions_take_precedence(self):
        digest = render_digest("team-detailed", {**SOURCE, "visible_actions": []})
        assert "Action Center\n- None reported" in digest


class TestSprintSnapshot:
    def test_time_context(self):
        digest = render_digest("sprint-snapshot", SOURCE)

        assert "# Sprint Snapshot — Week of 2026-02-16" in digest
        assert "Generated on 2026-02-16 09:12 UTC" in digest
        for heading in ("## Progress", "## Wins", "## Risks / Blockers", "## Actions Needed"):
            assert heading in digest

    def test_named_sprint(self):
        digest = render_digest("sprint-snapshot", {**SOURCE, "sprint_name": "Sprint 14",
                                                   "sprint_date_range": "2026-02-09 to 2026-02-20"})
        assert digest.startswith("# Sprint Snapshot — Sprint 14 (2026-02-16)")
        assert "Date range: 2026-02-09 to 2026-02-20" in digest


class TestHelpers:
    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            render_digest("weekly", SOURCE)

    def test_truncate_line(self):
        assert truncate_line("abcdefghij", 5) == "abcd…"
        assert truncate_line("  a   b ", 5) == "a b"

    def test_as_percent(self):
        assert as_percent(0.125) == "13%"
        assert as_percent(None) == "n/a"
        assert as_percent(True) == "n/a"

    def test_week_of(self):
        assert week_of("2026-02-19") == "2026-02-16"
        assert week_of("soon") == "soon"
