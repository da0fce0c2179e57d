"""
Review-and-lock lifecycle tests for goals and action plans.

Covers:
  • request_review / cancel_review / leader_review edges
  • ownership and reviewer-role checks
  • edit scopes (full / status_and_progress / progress_only / none)
  • goal delete guard
  • action plan deadline-change sub-workflow (3-change cap)
  • audit rows for successful commands only
"""

from datetime import date, datetime, timezone

import pytest

from conftest import make_goal, make_plan
from goaltrack.core.exceptions import (
    DeadlineChangeLimitExceeded,
    InvalidTransition,
    PermissionDenied,
    ValidationError,
)
from goaltrack.models import db
from goaltrack.models.audit import AuditLog
from goaltrack.models.goal import Goal
from goaltrack.services.permission import Actor
from goaltrack.services.review_lifecycle import (
    REVIEW_TRANSITIONS,
    apply_action_plan_transition,
    apply_goal_transition,
    compute_edit_scope,
    review_state,
    validate_review_transition,
)

NOW = datetime(2025, 2, 10, 9, 30, tzinfo=timezone.utc)


def _audit_count(entity_id, action):
    return AuditLog.query.filter_by(entity_id=entity_id, action=action).count()


# ═══════════════════════════════════════════════════════════════════════════
# 1 · Review request / cancel
# ═══════════════════════════════════════════════════════════════════════════

class TestRequestReview:

    def test_request_locks_goal(self, goal, member):
        apply_goal_transition(goal, "request_review", member, now=NOW)
        assert goal.is_locked is True
        assert goal.review_status == "pending"
        assert review_state(goal) == "pending_review"
        assert _audit_count(goal.id, "goal.request_review") == 1

    def test_request_twice_rejected(self, goal, member):
        apply_goal_transition(goal, "request_review", member)
        with pytest.raises(InvalidTransition):
            apply_goal_transition(goal, "request_review", member)
        assert _audit_count(goal.id, "goal.request_review") == 1

    def test_non_owner_cannot_request(self, goal, other_member):
        with pytest.raises(PermissionDenied):
            apply_goal_transition(goal, "request_review", other_member)
        assert goal.is_locked is False

    def test_leader_cannot_request_for_someone_else(self, goal, leader):
        with pytest.raises(PermissionDenied):
            apply_goal_transition(goal, "request_review", leader)

    def test_rerequest_after_rejection(self, goal, member, leader):
        apply_goal_transition(goal, "request_review", member)
        apply_goal_transition(goal, "leader_review", leader, {"outcome": "rejected"})
        assert review_state(goal) == "rejected_unlocked"
        apply_goal_transition(goal, "request_review", member)
        assert review_state(goal) == "pending_review"

    def test_cancel_unlocks(self, goal, member):
        apply_goal_transition(goal, "request_review", member)
        apply_goal_transition(goal, "cancel_review", member)
        assert goal.is_locked is False
        assert goal.review_status == "cancelled"
        assert review_state(goal) == "unlocked"

    def test_cancel_twice_rejected(self, goal, member):
        apply_goal_transition(goal, "request_review", member)
        apply_goal_transition(goal, "cancel_review", member)
        with pytest.raises(InvalidTransition):
            apply_goal_transition(goal, "cancel_review", member)

    def test_cancel_without_request_rejected(self, goal, member):
        with pytest.raises(InvalidTransition):
            apply_goal_transition(goal, "cancel_review", member)

    def test_unknown_command(self, goal, member):
        with pytest.raises(InvalidTransition) as exc_info:
            apply_goal_transition(goal, "approve_everything", member)
        assert "unknown command" in exc_info.value.message


# ═══════════════════════════════════════════════════════════════════════════
# 2 · Leader decisions
# ═══════════════════════════════════════════════════════════════════════════

class TestLeaderReview:

    @pytest.fixture()
    def pending_goal(self, goal, member):
        apply_goal_transition(goal, "request_review", member)
        return goal

    def test_approve_keeps_lock_and_starts_goal(self, pending_goal, leader):
        apply_goal_transition(pending_goal, "leader_review", leader,
                              {"outcome": "approved", "notes": "Looks solid"}, now=NOW)
        assert pending_goal.is_locked is True
        assert pending_goal.review_status == "approved"
        assert pending_goal.status == "in_progress"
        assert pending_goal.leader_review_notes == "Looks solid"
        assert pending_goal.reviewed_by == leader.id
        assert pending_goal.approved_at == NOW
        assert review_state(pending_goal) == "approved_locked"

    def test_approved_goal_stays_locked(self, pending_goal, member, leader):
        apply_goal_transition(pending_goal, "leader_review", leader, {"outcome": "approved"})
        for command in ("request_review", "cancel_review", "delete"):
            with pytest.raises(InvalidTransition):
                apply_goal_transition(pending_goal, command, member)
        assert pending_goal.is_locked is True

    def test_approve_does_not_touch_started_goal(self, member, leader):
        g = make_goal(member, status="in_progress", progress=30)
        apply_goal_transition(g, "request_review", member)
        apply_goal_transition(g, "leader_review", leader, {"outcome": "approved"})
        assert g.status == "in_progress"
        assert g.progress == 30

    def test_reject_unlocks(self, pending_goal, leader):
        apply_goal_transition(pending_goal, "leader_review", leader,
                              {"outcome": "rejected", "notes": "Too vague"}, now=NOW)
        assert pending_goal.is_locked is False
        assert pending_goal.review_status == "rejected"
        assert pending_goal.rejected_at == NOW
        assert pending_goal.status == "not_started"

    def test_pending_outcome_defers(self, pending_goal, leader):
        apply_goal_transition(pending_goal, "leader_review", leader, {"outcome": "pending"})
        assert review_state(pending_goal) == "pending_review"
        assert pending_goal.reviewed_by == leader.id

    @pytest.mark.parametrize("review_status", [None, "rejected", "cancelled"])
    def test_lock_without_pending_status_is_not_reviewable(self, member, leader, review_status):
        g = make_goal(member, is_locked=True, review_status=review_status)
        assert review_state(g) == "unlocked"
        with pytest.raises(InvalidTransition):
            apply_goal_transition(g, "leader_review", leader, {"outcome": "approved"})
        with pytest.raises(InvalidTransition):
            apply_goal_transition(g, "cancel_review", member)
        with pytest.raises(InvalidTransition):
            apply_goal_transition(g, "request_review", member)
        with pytest.raises(InvalidTransition):
            apply_goal_transition(g, "delete", member)
        assert g.is_locked is True
        assert g.review_status == review_status

    def test_member_cannot_review(self, pending_goal, member):
        with pytest.raises(PermissionDenied):
            apply_goal_transition(pending_goal, "leader_review", member, {"outcome": "approved"})

    def test_manager_can_review(self, pending_goal):
        manager = Actor(id="mgr-1", role="manager")
        apply_goal_transition(pending_goal, "leader_review", manager, {"outcome": "approved"})
        assert pending_goal.review_status == "approved"

    def test_bad_outcome(self, pending_goal, leader):
        with pytest.raises(ValidationError):
            apply_goal_transition(pending_goal, "leader_review", leader, {"outcome": "maybe"})
        assert pending_goal.review_status == "pending"

    def test_review_requires_pending(self, goal, leader):
        with pytest.raises(InvalidTransition):
            apply_goal_transition(goal, "leader_review", leader, {"outcome": "approved"})


# ═══════════════════════════════════════════════════════════════════════════
# 3 · Edit scopes
# ═══════════════════════════════════════════════════════════════════════════

class TestEditScope:

    @pytest.mark.parametrize("status,is_locked,review_status,expected", [
        ("not_started", False, None, "full"),
        ("draft", False, "rejected", "full"),
        ("in_progress", False, None, "status_and_progress"),
        ("in_progress", False, "cancelled", "status_and_progress"),
        ("not_started", True, "pending", "none"),
        ("in_progress", True, "approved", "progress_only"),
        ("cancelled", False, None, "none"),
        ("cancelled", True, "approved", "none"),
    ])
    def test_scope_table(self, status, is_locked, review_status, expected):
        assert compute_edit_scope(status, is_locked, review_status) == expected

    def test_full_edit(self, goal, member):
        apply_goal_transition(goal, "edit", member, {"fields": {
            "name": "  Ship billing v2 ", "progress": 10, "time_bound": "2025-06-30",
        }})
        assert goal.name == "Ship billing v2"
        assert goal.progress == 10
        assert goal.time_bound == date(2025, 6, 30)
        assert _audit_count(goal.id, "goal.edit") == 1

    def test_pending_goal_not_editable(self, goal, member):
        apply_goal_transition(goal, "request_review", member)
        with pytest.raises(InvalidTransition) as exc_info:
            apply_goal_transition(goal, "edit", member, {"fields": {"progress": 5}})
        assert exc_info.value.details["edit_scope"] == "none"
        assert goal.progress == 0

    def test_approved_goal_progress_only(self, member, leader):
        g = make_goal(member, status="in_progress", is_locked=True, review_status="approved")
        apply_goal_transition(g, "edit", member, {"fields": {"progress": 45}})
        assert g.progress == 45
        with pytest.raises(InvalidTransition) as exc_info:
            apply_goal_transition(g, "edit", member, {"fields": {"name": "Renamed", "progress": 50}})
        assert exc_info.value.details["rejected_fields"] == ["name"]
        assert g.progress == 45

    def test_started_goal_status_and_progress(self, member):
        g = make_goal(member, status="in_progress")
        apply_goal_transition(g, "edit", member, {"fields": {"status": "completed", "progress": 100}})
        assert g.status == "completed"
        with pytest.raises(InvalidTransition):
            apply_goal_transition(g, "edit", member, {"fields": {"start_date": "2025-02-01"}})

    def test_progress_out_of_range(self, goal, member):
        with pytest.raises(ValidationError) as exc_info:
            apply_goal_transition(goal, "edit", member, {"fields": {"progress": 140}})
        assert "progress" in exc_info.value.details
        assert goal.progress == 0

    def test_deadline_before_start(self, goal, member):
        with pytest.raises(ValidationError):
            apply_goal_transition(goal, "edit", member, {"fields": {"time_bound": "2024-12-01"}})

    def test_empty_edit(self, goal, member):
        with pytest.raises(ValidationError):
            apply_goal_transition(goal, "edit", member, {"fields": {}})

    def test_plan_edit_on_approved_plan(self, goal, member):
        p = make_plan(goal, status="in_progress", is_locked=True, review_status="approved")
        apply_action_plan_transition(p, "edit", member, {"fields": {
            "status": "completed", "evidence_link": "https://git.example.com/pr/7",
        }})
        assert p.status == "completed"
        with pytest.raises(InvalidTransition):
            apply_action_plan_transition(p, "edit", member, {"fields": {"end_date": "2025-05-01"}})

    @pytest.mark.parametrize("target", ["not_started", "draft"])
    def test_started_goal_cannot_return_to_unstarted(self, member, target):
        g = make_goal(member, status="in_progress", progress=40)
        with pytest.raises(InvalidTransition) as exc_info:
            apply_goal_transition(g, "edit", member, {"fields": {"status": target}})
        assert exc_info.value.details == {
            "edit_scope": "status_and_progress", "rejected_fields": ["status"],
        }
        assert g.status == "in_progress"
        with pytest.raises(InvalidTransition):
            apply_goal_transition(g, "edit", member, {"fields": {"time_bound": "2030-01-01"}})
        with pytest.raises(InvalidTransition):
            apply_goal_transition(g, "delete", member)

    def test_started_plan_cannot_return_to_not_started(self, goal, member):
        p = make_plan(goal, status="in_progress")
        with pytest.raises(InvalidTransition) as exc_info:
            apply_action_plan_transition(p, "edit", member, {"fields": {"status": "not_started"}})
        assert exc_info.value.details["rejected_fields"] == ["status"]
        assert p.status == "in_progress"
        apply_action_plan_transition(p, "edit", member, {"fields": {"status": "blocked"}})
        assert p.status == "blocked"

    def test_pending_deadline_freezes_plan_status(self, plan, member):
        apply_action_plan_transition(plan, "propose_deadline", member, {"new_date": "2025-03-15"})
        with pytest.raises(InvalidTransition) as exc_info:
            apply_action_plan_transition(plan, "edit", member, {"fields": {"status": "completed"}})
        assert exc_info.value.details["edit_scope"] == "none"
        assert plan.status == "not_started"
        apply_action_plan_transition(plan, "propose_deadline", member, {"new_date": "2025-03-20"})
        assert plan.deadline_change_count == 2
        assert plan.request_deadline_date == date(2025, 3, 20)

    def test_pending_review_freezes_plan_status(self, plan, member):
        apply_action_plan_transition(plan, "request_review", member)
        with pytest.raises(InvalidTransition) as exc_info:
            apply_action_plan_transition(plan, "edit", member, {"fields": {"status": "in_progress"}})
        assert exc_info.value.details["edit_scope"] == "none"
        apply_action_plan_transition(plan, "propose_deadline", member, {"new_date": "2025-03-15"})
        assert plan.deadline_change_count == 1


# ═══════════════════════════════════════════════════════════════════════════
# 4 · Delete
# ═══════════════════════════════════════════════════════════════════════════

class TestDelete:

    def test_delete_allowed_when_unlocked(self, goal, member):
        result = validate_review_transition(goal, "delete")
        assert result["valid"] is True
        apply_goal_transition(goal, "delete", member)
        assert _audit_count(goal.id, "goal.delete") == 1

    def test_delete_blocked_while_pending(self, goal, member):
        apply_goal_transition(goal, "request_review", member)
        with pytest.raises(InvalidTransition):
            apply_goal_transition(goal, "delete", member)

    def test_delete_blocked_once_started(self, member):
        g = make_goal(member, status="in_progress")
        with pytest.raises(InvalidTransition):
            apply_goal_transition(g, "delete", member)

    def test_plans_have_no_delete_command(self, plan, member):
        assert "action_plan" not in REVIEW_TRANSITIONS["delete"]["entities"]
        with pytest.raises(InvalidTransition):
            apply_action_plan_transition(plan, "delete", member)


# ═══════════════════════════════════════════════════════════════════════════
# 5 · Deadline change sub-workflow
# ═══════════════════════════════════════════════════════════════════════════

class TestProposeDeadline:

    def test_proposal_locks_plan(self, plan, member):
        apply_action_plan_transition(plan, "propose_deadline", member, {"new_date": "2025-03-15"})
        assert plan.request_deadline_date == date(2025, 3, 15)
        assert plan.deadline_change_count == 1
        assert plan.is_locked is True
        assert plan.review_status == "pending"
        assert plan.end_date == date(2025, 2, 28)

    def test_fourth_proposal_fails(self, plan, member):
        for day in ("2025-03-10", "2025-03-20", "2025-03-30"):
            apply_action_plan_transition(plan, "propose_deadline", member, {"new_date": day})
        assert plan.deadline_change_count == 3
        with pytest.raises(DeadlineChangeLimitExceeded) as exc_info:
            apply_action_plan_transition(plan, "propose_deadline", member, {"new_date": "2025-04-10"})
        assert exc_info.value.details == {"deadline_change_count": 3, "limit": 3}
        assert plan.deadline_change_count == 3
        assert plan.request_deadline_date == date(2025, 3, 30)
        assert _audit_count(plan.id, "action_plan.propose_deadline") == 3

    def test_proposal_before_start_rejected(self, plan, member):
        with pytest.raises(ValidationError):
            apply_action_plan_transition(plan, "propose_deadline", member, {"new_date": "2024-12-31"})
        assert plan.deadline_change_count == 0
        assert plan.request_deadline_date is None

    def test_missing_date(self, plan, member):
        with pytest.raises(ValidationError):
            apply_action_plan_transition(plan, "propose_deadline", member, {})

    def test_approval_applies_deadline(self, plan, member, leader):
        apply_action_plan_transition(plan, "propose_deadline", member, {"new_date": "2025-03-15"})
        apply_action_plan_transition(plan, "leader_review", leader, {"outcome": "approved"})
        assert plan.end_date == date(2025, 3, 15)
        assert plan.request_deadline_date is None
        assert plan.deadline_change_count == 1

    def test_rejection_discards_request(self, plan, member, leader):
        apply_action_plan_transition(plan, "propose_deadline", member, {"new_date": "2025-03-15"})
        apply_action_plan_transition(plan, "leader_review", leader, {"outcome": "rejected"})
        assert plan.end_date == date(2025, 2, 28)
        assert plan.request_deadline_date is None
        assert plan.is_locked is False
        assert plan.deadline_change_count == 1

    def test_cancel_does_not_refund(self, plan, member):
        apply_action_plan_transition(plan, "propose_deadline", member, {"new_date": "2025-03-15"})
        apply_action_plan_transition(plan, "cancel_review", member)
        assert plan.request_deadline_date is None
        assert plan.deadline_change_count == 1

    def test_goal_has_no_deadline_command(self, goal, member):
        with pytest.raises(InvalidTransition):
            apply_goal_transition(goal, "propose_deadline", member, {"new_date": "2025-04-01"})

    def test_other_member_cannot_propose(self, plan, other_member):
        with pytest.raises(PermissionDenied):
            apply_action_plan_transition(plan, "propose_deadline", other_member,
                                         {"new_date": "2025-03-15"})


# ═══════════════════════════════════════════════════════════════════════════
# 6 · Audit
# ═══════════════════════════════════════════════════════════════════════════

class TestAudit:

    def test_failed_command_not_audited(self, goal, other_member):
        with pytest.raises(PermissionDenied):
            apply_goal_transition(goal, "request_review", other_member)
        assert AuditLog.query.filter_by(entity_id=goal.id).count() == 0

    def test_diff_records_lock(self, goal, member):
        apply_goal_transition(goal, "request_review", member)
        log = AuditLog.query.filter_by(entity_id=goal.id, action="goal.request_review").one()
        assert log.actor == member.id
        assert log.diff["is_locked"] == {"old": False, "new": True}
        assert log.diff["review_status"] == {"old": None, "new": "pending"}

    def test_unsaved_goal_transitions_without_audit(self):
        owner = Actor(id="u-1")
        g = Goal(id="g-1", user_id="u-1", name="Draft", status="draft",
                 start_date=date(2025, 1, 1), time_bound=date(2025, 3, 31),
                 is_locked=False, review_status=None)
        apply_goal_transition(g, "request_review", owner)
        assert g.is_locked is True
        assert db.session.query(AuditLog).count() == 0
