"""Tests for deterministic action generation."""

import hashlib

from action_generation import (
    MAX_ACTIONS,
    canonical_text,
    create_stable_action_id,
    generate_actions_required,
    infer_dependency_owner,
    with_generated_actions,
)
from models import ActionItem, StandupEntry, StandupSummaryV1, SummaryBullet, User, WorkItem


def make_entry(entry_id, user_id, role="DEV", today="Ship the checkout flow end to end", progress="Progress made",
               issues=None):
    return StandupEntry(
        id=entry_id,
        project_id="project-1",
        user_id=user_id,
        date="2026-02-13",
        summary_today=today,
        progress_since_yesterday=progress,
        user=User(id=user_id, name=user_id.title(), role=role),
        issues=issues or [],
    )


def make_summary(**sections):
    return StandupSummaryV1(
        summary_id="project-1:2026-02-13",
        project_id="project-1",
        date="2026-02-13",
        overall_progress="Progress looks good.",
        **sections,
    )


ENTRIES = [
    make_entry("entry-1", "dev-a"),
    make_entry("entry-2", "dev-b", today="", progress=""),
    make_entry("entry-3", "po-1", role="PO",
               issues=[WorkItem(id="issue-7", key="PAY-7", assignee_id="ops-1")]),
]


class TestCanonicalText:
    def test_strips_name_prefix_and_punctuation(self):
        assert canonical_text("Dev A: Need PO approval!") == "need po approval"

    def test_collapses_whitespace(self):
        assert canonical_text("  Waiting   on  infra ") == "waiting on infra"


class TestGenerateActionsRequired:
    def test_merges_duplicate_blockers_and_assigns_lead(self):
        summary = make_summary(blockers=[
            SummaryBullet(id="b1", text="Dev A: Need PO approval to proceed with billing API rollout.",
                          source_entry_ids=["entry-1"]),
            SummaryBullet(id="b2", text="Dev B: Need PO approval to proceed with billing API rollout.",
                          source_entry_ids=["entry-3"]),
        ])

        actions = generate_actions_required(summary, ENTRIES)
        decisions = [a for a in actions if a.action_type == "UNBLOCK_DECISION"]

        assert len(decisions) == 1
        assert decisions[0].severity == "high"
        assert decisions[0].owner_user_id == "po-1"
        assert decisions[0].source_entry_ids == ["entry-1", "entry-3"]
        assert actions[0].action_type == "UNBLOCK_DECISION"

    def test_scope_blocker_is_clarify_scope(self):
        summary = make_summary(blockers=[
            SummaryBullet(id="b1", text="Unclear scope for the refunds epic", source_entry_ids=["entry-1"]),
        ])
        actions = generate_actions_required(summary, ENTRIES)
        assert actions[0].action_type == "CLARIFY_SCOPE"
        assert actions[0].title == "Clarify scope to unblock work"

    def test_stuck_blocker_adds_escalation(self):
        summary = make_summary(blockers=[
            SummaryBullet(id="b1", text="Build server is stuck on flaky tests", source_entry_ids=["entry-1"]),
        ])
        actions = generate_actions_required(summary, ENTRIES)
        blocker_actions = [a for a in actions if "entry-1" in a.source_entry_ids]

        assert [(a.action_type, a.severity) for a in blocker_actions] == [
            ("ESCALATE_BLOCKER", "high"),
            ("FOLLOW_UP_STATUS", "med"),
        ]

    def test_dependency_targets_linked_assignee(self):
        summary = make_summary(dependencies=[
            SummaryBullet(id="d1", text="Waiting on the ops team for queue access",
                          source_entry_ids=["entry-3"], linked_work_ids=["PAY-7"]),
        ])
        actions = generate_actions_required(summary, ENTRIES)
        help_action = next(a for a in actions if a.action_type == "REQUEST_HELP")

        assert help_action.target_user_id == "ops-1"
        assert help_action.owner_user_id == "po-1"

    def test_assignment_gap_becomes_assign_owner(self):
        summary = make_summary(assignment_gaps=[
            SummaryBullet(id="g1", text="Dev-A has no linked issues or research items.",
                          source_entry_ids=["entry-1"]),
        ])
        actions = generate_actions_required(summary, ENTRIES)
        assert any(a.action_type == "ASSIGN_OWNER" and a.owner_user_id == "po-1" for a in actions)

    def test_missing_update_follow_up(self):
        actions = generate_actions_required(make_summary(), ENTRIES)

        assert len(actions) == 1
        assert actions[0].action_type == "FOLLOW_UP_STATUS"
        assert actions[0].severity == "low"
        assert actions[0].target_user_id == "dev-b"
        assert actions[0].reason == "Dev-B has not submitted a standup update."

    def test_ids_are_stable(self):
        summary = make_summary(blockers=[
            SummaryBullet(id="b1", text="Blocked on staging credentials", source_entry_ids=["entry-1"]),
        ])
        first = [a.id for a in generate_actions_required(summary, ENTRIES)]
        second = [a.id for a in generate_actions_required(summary, ENTRIES)]

        assert first == second
        assert all(action_id.startswith("action_") and len(action_id) == 19 for action_id in first)

    def test_capped(self):
        blockers = [
            SummaryBullet(id=f"b{i}", text=f"Blocked on vendor ticket number {i}", source_entry_ids=["entry-1"])
            for i in range(20)
        ]
        actions = generate_actions_required(make_summary(blockers=blockers), ENTRIES)
        assert len(actions) == MAX_ACTIONS


class TestWithGeneratedActions:
    def test_keeps_model_actions(self):
        model_action = ActionItem(
            title="  Confirm   rollout date ",
            owner_user_id="po-1",
            action_type="CLARIFY_SCOPE",
            reason="Release train moved",
            source_entry_ids=["entry-3", "entry-3"],
        )
        summary = with_generated_actions(make_summary(actions_required=[model_action]), ENTRIES)

        assert len(summary.actions_required) == 1
        action = summary.actions_required[0]
        assert action.title == "Confirm rollout date"
        assert action.source_entry_ids == ["entry-3"]
        assert action.id == create_stable_action_id(summary.summary_id, model_action)

    def test_generates_when_missing(self):
        summary = with_generated_actions(make_summary(), ENTRIES)
        assert [a.action_type for a in summary.actions_required] == ["FOLLOW_UP_STATUS"]


class TestHelpers:
    def test_infer_dependency_owner_by_id_or_key(self):
        assert infer_dependency_owner(ENTRIES, ["issue-7"]) == "ops-1"
        assert infer_dependency_owner(ENTRIES, ["PAY-7"]) == "ops-1"
        assert infer_dependency_owner(ENTRIES, ["PAY-99"]) is None

    def test_stable_id_hashes_unescaped_utf8(self):
        action = ActionItem(title="Escalar bloqueo de pagos en São Paulo", owner_user_id="po-1",
                            action_type="ESCALATE_BLOCKER", reason="Bloqueado desde ayer",
                            linked_work_ids=["PAY-7"])

        payload = (
            '{"summaryId":"project-1:2026-02-13","action_type":"ESCALATE_BLOCKER","owner_user_id":"po-1",'
            '"target_user_id":"","title":"Escalar bloqueo de pagos en São Paulo","reason":"Bloqueado desde ayer",'
            '"due":"today","severity":"med","source_entry_ids":[],"linked_work_ids":["PAY-7"]}'
        )
        expected = hashlib.sha256(payload.encode("utf-8")).hexdigest()[:12]
        assert create_stable_action_id("project-1:2026-02-13", action) == f"action_{expected}"
