"""Derive ranked, deduplicated "actions required" from a structured standup summary."""

import hashlib
import json
import re

from models import ActionItem, StandupEntry, StandupSummaryV1, SummaryBullet

ACTION_TYPES = (
    "UNBLOCK_DECISION",
    "REQUEST_HELP",
    "FOLLOW_UP_STATUS",
    "ASSIGN_OWNER",
    "ESCALATE_BLOCKER",
    "CLARIFY_SCOPE",
)
ACTION_DUE_VALUES = ("today", "tomorrow")
MAX_ACTIONS = 15

SEVERITY_WEIGHT = {"high": 3, "med": 2, "low": 1}
OWNER_CANDIDATE_ROLES = ("ADMIN", "PO")
LEAD_OWNED_TYPES = {
    "UNBLOCK_DECISION",
    "ESCALATE_BLOCKER",
    "CLARIFY_SCOPE",
    "FOLLOW_UP_STATUS",
    "ASSIGN_OWNER",
}

_DECISION_PATTERN = re.compile(r"\b(po|product owner|decision|approve|approval|scope)\b", re.IGNORECASE)
_SCOPE_PATTERN = re.compile(r"\bscope\b", re.IGNORECASE)
_ESCALATION_PATTERN = re.compile(r"\b(blocked|stuck|urgent|critical|escalate|escalation)\b", re.IGNORECASE)


def normalize_array_values(values: list[str]) -> list[str]:
    return sorted({value.strip() for value in values if value and value.strip()})


def trim_text(value: str) -> str:
    return re.sub(r"\s+", " ", value.strip())


def canonical_text(value: str) -> str:
    """Lowercased, punctuation-free text without a leading "Name: " prefix."""
    text = re.sub(r"^[^:]{2,40}:\s*", "", trim_text(value))
    text = re.sub(r"[^a-z0-9\s]", "", text.lower())
    return re.sub(r"\s+", " ", text).strip()


def create_stable_action_id(summary_id: str, action: ActionItem) -> str:
    stable_payload = json.dumps(
        {
            "summaryId": summary_id,
            "action_type": action.action_type,
            "owner_user_id": action.owner_user_id,
            "target_user_id": action.target_user_id or "",
            "title": trim_text(action.title),
            "reason": trim_text(action.reason),
            "due": action.due,
            "severity": action.severity,
            "source_entry_ids": normalize_array_values(action.source_entry_ids),
            "linked_work_ids": normalize_array_values(action.linked_work_ids),
        },
        separators=(",", ":"),
        ensure_ascii=False,
    )
    digest = hashlib.sha256(stable_payload.encode("utf-8")).hexdigest()[:12]
    return f"action_{digest}"


def to_action(summary_id: str, action: ActionItem) -> ActionItem:
    """Normalize text and evidence lists and assign the content-derived id."""
    return action.model_copy(
        update={
            "title": trim_text(action.title),
            "reason": trim_text(action.reason),
            "source_entry_ids": normalize_array_values(action.source_entry_ids),
            "linked_work_ids": normalize_array_values(action.linked_work_ids),
            "id": create_stable_action_id(summary_id, action),
        }
    )


def infer_dependency_owner(entries: list[StandupEntry], linked_work_ids: list[str]) -> str | None:
    """Assignee of the first linked issue/research item whose id or key is referenced."""
    wanted = {work_id.strip() for work_id in linked_work_ids if work_id.strip()}

    for entry in entries:
        for items in (entry.issues, entry.research):
            for item in items:
                if item.id in wanted or (item.key and item.key in wanted):
                    if item.assignee_id:
                        return item.assignee_id
                    break
    return None


def find_project_lead_user_id(entries: list[StandupEntry]) -> str | None:
    for entry in entries:
        if entry.user.role in OWNER_CANDIDATE_ROLES:
            return entry.user_id
    return entries[0].user_id if entries else None


def pick_owner_user_id(action_type: str, source_owner_user_id: str, entries: list[StandupEntry]) -> str:
    lead_user_id = find_project_lead_user_id(entries)
    if not lead_user_id:
        return source_owner_user_id
    if action_type in LEAD_OWNED_TYPES:
        return lead_user_id
    return source_owner_user_id


def merge_actions(summary_id: str, actions: list[ActionItem]) -> list[ActionItem]:
    """Collapse actions with the same type and canonical reason, keeping the strongest signal."""
    merged: dict[str, ActionItem] = {}

    for action in actions:
        key = f"{action.action_type}:{canonical_text(action.reason) or canonical_text(action.title)}"
        existing = merged.get(key)
        if existing is None:
            merged[key] = action
            continue

        next_severity = (
            action.severity
            if SEVERITY_WEIGHT[action.severity] > SEVERITY_WEIGHT[existing.severity]
            else existing.severity
        )
        next_due = existing.due if existing.due == "today" or action.due != "today" else "today"

        merged[key] = to_action(
            summary_id,
            existing.model_copy(
                update={
                    "severity": next_severity,
                    "due": next_due,
                    "source_entry_ids": [*existing.source_entry_ids, *action.source_entry_ids],
                    "linked_work_ids": [*existing.linked_work_ids, *action.linked_work_ids],
                }
            ),
        )

    return list(merged.values())


def _due_score(value: str) -> int:
    if value == "today":
        return 0
    if value == "tomorrow":
        return 1
    return 2


def rank_actions(actions: list[ActionItem]) -> list[ActionItem]:
    return sorted(
        actions,
        key=lambda a: (
            -SEVERITY_WEIGHT[a.severity],
            _due_score(a.due),
            0 if a.action_type in ("UNBLOCK_DECISION", "CLARIFY_SCOPE") else 1,
            -(len(a.source_entry_ids) + len(a.linked_work_ids)),
            a.id,
        ),
    )


def _source_owner(bullet: SummaryBullet, entry_by_id: dict[str, StandupEntry],
                  entries: list[StandupEntry]) -> str | None:
    source_entry = entry_by_id.get(bullet.source_entry_ids[0]) if bullet.source_entry_ids else None
    if source_entry:
        return source_entry.user_id
    return entries[0].user_id if entries else None


def generate_actions_required(summary: StandupSummaryV1, entries: list[StandupEntry]) -> list[ActionItem]:
    candidates: list[ActionItem] = []
    entry_by_id = {entry.id: entry for entry in entries}
    summary_id = summary.summary_id

    for blocker in summary.blockers:
        source_owner = _source_owner(blocker, entry_by_id, entries)
        if not source_owner:
            continue

        is_decision_or_po = bool(_DECISION_PATTERN.search(blocker.text))
        if is_decision_or_po:
            action_type = "CLARIFY_SCOPE" if _SCOPE_PATTERN.search(blocker.text) else "UNBLOCK_DECISION"
        else:
            action_type = "FOLLOW_UP_STATUS"

        title = {
            "CLARIFY_SCOPE": "Clarify scope to unblock work",
            "UNBLOCK_DECISION": "Unblock decision on blocker",
            "FOLLOW_UP_STATUS": "Follow up on blocker status",
        }[action_type]

        candidates.append(to_action(summary_id, ActionItem(
            title=title,
            owner_user_id=pick_owner_user_id(action_type, source_owner, entries),
            target_user_id=None,
            action_type=action_type,
            reason=blocker.text or "A blocker was reported and needs a same-day update.",
            due="today",
            severity="high" if is_decision_or_po else "med",
            source_entry_ids=blocker.source_entry_ids,
            linked_work_ids=blocker.linked_work_ids,
        )))

        if _ESCALATION_PATTERN.search(blocker.text):
            candidates.append(to_action(summary_id, ActionItem(
                title="Escalate critical blocker",
                owner_user_id=pick_owner_user_id("ESCALATE_BLOCKER", source_owner, entries),
                target_user_id=None,
                action_type="ESCALATE_BLOCKER",
                reason=blocker.text,
                due="today",
                severity="high",
                source_entry_ids=blocker.source_entry_ids,
                linked_work_ids=blocker.linked_work_ids,
            )))

    for dependency in summary.dependencies:
        source_owner = _source_owner(dependency, entry_by_id, entries)
        if not source_owner:
            continue

        candidates.append(to_action(summary_id, ActionItem(
            title="Request help on dependency",
            owner_user_id=pick_owner_user_id("REQUEST_HELP", source_owner, entries),
            target_user_id=infer_dependency_owner(entries, dependency.linked_work_ids),
            action_type="REQUEST_HELP",
            reason=dependency.text or "Dependency requires coordination to proceed.",
            due="today",
            severity="med",
            source_entry_ids=dependency.source_entry_ids,
            linked_work_ids=dependency.linked_work_ids,
        )))

    for gap in summary.assignment_gaps:
        source_owner = _source_owner(gap, entry_by_id, entries)
        if not source_owner:
            continue

        candidates.append(to_action(summary_id, ActionItem(
            title="Assign a clear owner",
            owner_user_id=pick_owner_user_id("ASSIGN_OWNER", source_owner, entries),
            target_user_id=None,
            action_type="ASSIGN_OWNER",
            reason=gap.text or "Workstream has no clear owner.",
            due="today",
            severity="med",
            source_entry_ids=gap.source_entry_ids,
            linked_work_ids=gap.linked_work_ids,
        )))

    for entry in entries:
        if (entry.summary_today or "").strip() or (entry.progress_since_yesterday or "").strip():
            continue

        candidates.append(to_action(summary_id, ActionItem(
            title="Follow up on missing standup",
            owner_user_id=pick_owner_user_id("FOLLOW_UP_STATUS", entry.user_id, entries),
            target_user_id=entry.user_id,
            action_type="FOLLOW_UP_STATUS",
            reason=f"{entry.user.display_name} has not submitted a standup update.",
            due="today",
            severity="low",
            source_entry_ids=[entry.id],
            linked_work_ids=[item.id for item in entry.linked_work],
        )))

    deduped = merge_actions(summary_id, candidates)
    return rank_actions(deduped)[:MAX_ACTIONS]


def normalize_action_items(summary_id: str, actions: list[ActionItem]) -> list[ActionItem]:
    return [to_action(summary_id, action) for action in actions]


def with_generated_actions(summary: StandupSummaryV1, entries: list[StandupEntry]) -> StandupSummaryV1:
    """Keep model-provided actions when present, otherwise derive them from the summary."""
    actions = summary.actions_required or generate_actions_required(summary, entries)
    return summary.model_copy(
        update={"actions_required": rank_actions(normalize_action_items(summary.summary_id, actions))}
    )
