"""
Review Lifecycle Service

Drives the review-and-lock workflow shared by goals and action plans:
  - Transition validation (REVIEW_TRANSITIONS over the derived review state)
  - Ownership / role checks (goaltrack.services.permission)
  - Member edit scopes (which fields an owner may change right now)
  - Action plan deadline-change sub-workflow (capped at MAX_DEADLINE_CHANGES)
  - Audit trail via write_audit when the entity is attached to a session

Review states (derived from review_status + is_locked):
  unlocked ──request_review──▶ pending_review ──leader_review(approved)──▶ approved_locked
                                    │  ▲                 │
                        cancel_review  propose_deadline  leader_review(rejected)
                                    ▼                    ▼
                               unlocked           rejected_unlocked

Commands: request_review, cancel_review, leader_review, edit, delete (goal),
propose_deadline (action plan).

Usage:
    from goaltrack.services.review_lifecycle import apply_goal_transition

    apply_goal_transition(goal, "request_review", actor)
    apply_action_plan_transition(plan, "propose_deadline", actor, {"new_date": "2025-09-30"})
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import inspect as sa_inspect

from goaltrack.core.exceptions import (
    DeadlineChangeLimitExceeded,
    DomainError,
    InvalidTransition,
    ValidationError,
)
from goaltrack.models.audit import write_audit
from goaltrack.models.goal import (
    ACTION_PLAN_UNSTARTED_STATUSES,
    GOAL_UNSTARTED_STATUSES,
    MAX_DEADLINE_CHANGES,
    REVIEW_OUTCOMES,
)
from goaltrack.services.goal_service import (
    ACTION_PLAN_TEXT_FIELDS,
    GOAL_TEXT_FIELDS,
    clean_action_plan_fields,
    clean_goal_fields,
)
from goaltrack.services.permission import check_permission
from goaltrack.utils.helpers import parse_date

logger = logging.getLogger(__name__)

REVIEW_STATES = ("unlocked", "pending_review", "approved_locked", "rejected_unlocked")

_UNLOCKED = ["unlocked", "rejected_unlocked"]

# Command → allowed review states and the entity types that accept it
REVIEW_TRANSITIONS = {
    "request_review": {"from": _UNLOCKED, "entities": {"goal", "action_plan"}},
    "cancel_review": {"from": ["pending_review"], "entities": {"goal", "action_plan"}},
    "leader_review": {"from": ["pending_review"], "entities": {"goal", "action_plan"}},
    "edit": {"from": list(REVIEW_STATES), "entities": {"goal", "action_plan"}},
    "delete": {"from": _UNLOCKED, "entities": {"goal"}},
    "propose_deadline": {"from": list(REVIEW_STATES), "entities": {"action_plan"}},
}

EDIT_SCOPES = ("full", "status_and_progress", "progress_only", "none")

GOAL_EDIT_FIELDS = {
    "full": set(GOAL_TEXT_FIELDS) | {
        "type", "duration_type", "year", "start_date", "time_bound",
        "status", "progress", "weight",
    },
    "status_and_progress": {"status", "progress"},
    "progress_only": {"progress"},
    "none": set(),
}

# An action plan has no numeric progress; status and evidence stand in for it
ACTION_PLAN_EDIT_FIELDS = {
    "full": set(ACTION_PLAN_TEXT_FIELDS) | {"start_date", "end_date", "status"},
    "status_and_progress": {"status", "evidence_link"},
    "progress_only": {"status", "evidence_link"},
    "none": set(),
}

_EDIT_FIELDS = {"goal": GOAL_EDIT_FIELDS, "action_plan": ACTION_PLAN_EDIT_FIELDS}
_CLEANERS = {"goal": clean_goal_fields, "action_plan": clean_action_plan_fields}

# Statuses an owner may only set while the entity is still fully editable
_UNSTARTED = {"goal": GOAL_UNSTARTED_STATUSES, "action_plan": ACTION_PLAN_UNSTARTED_STATUSES}

_REVIEW_FIELDS = (
    "status", "is_locked", "review_status", "leader_review_notes", "reviewed_by",
    "reviewed_at", "approved_at", "rejected_at",
    "request_deadline_date", "deadline_change_count",
)


# ── State derivation ─────────────────────────────────────────────────────


def review_state(entity) -> str:
    """Collapse (review_status, is_locked) into one of REVIEW_STATES.

    Only a locked row whose review_status is pending counts as pending_review.
    Any other locked row that is not approved falls back to unlocked, and
    _request_review / _delete still refuse it because of the lock.
    """
    if entity.is_locked and entity.review_status == "pending":
        return "pending_review"
    if entity.is_locked and entity.review_status == "approved":
        return "approved_locked"
    if not entity.is_locked and entity.review_status == "rejected":
        return "rejected_unlocked"
    return "unlocked"


def compute_edit_scope(status, is_locked, review_status) -> str:
    """Which member edits are allowed right now.

    pending review → none; cancelled → none; approved → progress_only;
    unlocked and not yet started → full; unlocked and started →
    status_and_progress.
    """
    if is_locked and review_status != "approved":
        return "none"
    if status == "cancelled":
        return "none"
    if is_locked:
        return "progress_only"
    if status in GOAL_UNSTARTED_STATUSES:
        return "full"
    return "status_and_progress"


def describe_review(entity) -> dict:
    return {
        "review_state": review_state(entity),
        "edit_scope": compute_edit_scope(entity.status, bool(entity.is_locked), entity.review_status),
    }


def validate_review_transition(entity, command: str) -> dict:
    """
    Validate whether a command is valid for the entity's current review state.

    Returns:
        {"valid": bool, "from": str, "reason": str|None}
    """
    state = review_state(entity)
    rule = REVIEW_TRANSITIONS.get(command)
    if not rule or entity.ENTITY_TYPE not in rule["entities"]:
        return {"valid": False, "from": state,
                "reason": f"Unknown command for {entity.ENTITY_TYPE}: {command}"}
    if state not in rule["from"]:
        return {"valid": False, "from": state,
                "reason": f"Cannot '{command}' from review state '{state}'"}
    return {"valid": True, "from": state, "reason": None}


# ── Command handlers ─────────────────────────────────────────────────────


def _request_review(entity, actor, payload, now):
    if entity.review_status == "approved":
        raise InvalidTransition(entity.ENTITY_TYPE, entity.id, "request_review", "already approved")
    if entity.is_locked:
        raise InvalidTransition(entity.ENTITY_TYPE, entity.id, "request_review", "already locked")
    entity.is_locked = True
    entity.review_status = "pending"


def _cancel_review(entity, actor, payload, now):
    entity.is_locked = False
    entity.review_status = "cancelled"
    if entity.ENTITY_TYPE == "action_plan":
        # The consumed deadline change is not refunded
        entity.request_deadline_date = None


def _leader_review(entity, actor, payload, now):
    outcome = (payload.get("outcome") or "").strip().lower()
    if outcome not in REVIEW_OUTCOMES:
        raise ValidationError(
            f"outcome must be one of {sorted(REVIEW_OUTCOMES)}",
            details={"outcome": payload.get("outcome")},
        )

    if "notes" in payload:
        entity.leader_review_notes = payload.get("notes") or None
    entity.reviewed_by = actor.id
    entity.reviewed_at = now

    if outcome == "approved":
        entity.review_status = "approved"
        entity.is_locked = True
        entity.approved_at = now
        if entity.ENTITY_TYPE == "goal" and entity.status in GOAL_UNSTARTED_STATUSES:
            entity.status = "in_progress"
        if entity.ENTITY_TYPE == "action_plan" and entity.request_deadline_date:
            entity.end_date = entity.request_deadline_date
            entity.request_deadline_date = None
    elif outcome == "rejected":
        entity.review_status = "rejected"
        entity.is_locked = False
        entity.rejected_at = now
        if entity.ENTITY_TYPE == "action_plan":
            entity.request_deadline_date = None
    # "pending": decision deferred, lock and any deadline request stay


def _edit(entity, actor, payload, now):
    fields = payload.get("fields") if isinstance(payload.get("fields"), dict) else payload
    if not fields:
        raise ValidationError("No fields to edit")

    scope = compute_edit_scope(entity.status, bool(entity.is_locked), entity.review_status)
    allowed = _EDIT_FIELDS[entity.ENTITY_TYPE][scope]
    rejected = sorted(set(fields) - allowed)
    if rejected:
        raise InvalidTransition(
            entity.ENTITY_TYPE, entity.id, "edit",
            f"fields not editable with scope '{scope}'",
            details={"edit_scope": scope, "rejected_fields": rejected},
        )

    cleaned = _CLEANERS[entity.ENTITY_TYPE](fields, current=entity)
    new_status = cleaned.get("status")
    if (scope != "full" and new_status != entity.status
            and new_status in _UNSTARTED[entity.ENTITY_TYPE]):
        raise InvalidTransition(
            entity.ENTITY_TYPE, entity.id, "edit",
            f"cannot move a started {entity.ENTITY_TYPE} back to '{new_status}'",
            details={"edit_scope": scope, "rejected_fields": ["status"]},
        )
    for key, value in cleaned.items():
        setattr(entity, key, value)


def _delete(entity, actor, payload, now):
    if entity.is_locked:
        raise InvalidTransition("goal", entity.id, "delete", "goal is locked")
    if entity.status not in GOAL_UNSTARTED_STATUSES:
        raise InvalidTransition(
            "goal", entity.id, "delete", f"goal already {entity.status}")


def _propose_deadline(entity, actor, payload, now):
    used = entity.deadline_change_count or 0
    if used >= MAX_DEADLINE_CHANGES:
        raise DeadlineChangeLimitExceeded(entity.id, used, MAX_DEADLINE_CHANGES)

    raw = payload.get("new_date", payload.get("request_deadline_date"))
    new_date = parse_date(raw)
    if new_date is None:
        raise ValidationError("new_date is required (YYYY-MM-DD)", details={"new_date": raw})
    if entity.start_date and new_date < entity.start_date:
        raise ValidationError(
            "new_date must be on or after start_date",
            details={"new_date": new_date.isoformat(),
                     "start_date": entity.start_date.isoformat()},
        )

    entity.request_deadline_date = new_date
    entity.deadline_change_count = used + 1
    entity.review_status = "pending"
    entity.is_locked = True


_HANDLERS = {
    "request_review": _request_review,
    "cancel_review": _cancel_review,
    "leader_review": _leader_review,
    "edit": _edit,
    "delete": _delete,
    "propose_deadline": _propose_deadline,
}


# ── Audit ────────────────────────────────────────────────────────────────


def _snapshot(entity, command) -> dict:
    fields = list(_REVIEW_FIELDS)
    if command == "edit":
        fields += sorted(_EDIT_FIELDS[entity.ENTITY_TYPE]["full"])
    return {f: getattr(entity, f, None) for f in fields if hasattr(entity, f)}


def _diff(before: dict, after: dict) -> dict:
    return {
        key: {"old": before[key], "new": after[key]}
        for key in before
        if before[key] != after[key]
    }


def record_transition(entity, command: str, actor_id, diff: dict):
    """Append the audit row for a successful command.

    Detached entities (plain objects, unsaved rows) are not audited.
    """
    state = sa_inspect(entity, raiseerr=False)
    if state is None or state.session is None:
        return None
    return write_audit(
        entity_type=entity.ENTITY_TYPE,
        entity_id=entity.id,
        action=f"{entity.ENTITY_TYPE}.{command}",
        actor=str(actor_id),
        diff=diff,
    )


# ── Entry points ─────────────────────────────────────────────────────────


def _apply(entity, command: str, actor, payload: dict | None, now: datetime | None):
    entity_type = entity.ENTITY_TYPE
    payload = payload or {}
    now = now or datetime.now(timezone.utc)
    log_extra = {f"{entity_type}_id": entity.id, "command": command,
                 "user_id": getattr(actor, "id", None)}

    try:
        # 1. Known command for this entity type
        rule = REVIEW_TRANSITIONS.get(command)
        if not rule or entity_type not in rule["entities"]:
            raise InvalidTransition(entity_type, entity.id, command, "unknown command")

        # 2. Permission check
        check_permission(actor, command, entity)

        # 3. Validate transition
        validation = validate_review_transition(entity, command)
        if not validation["valid"]:
            raise InvalidTransition(entity_type, entity.id, command, validation["reason"])

        # 4. Execute
        before = _snapshot(entity, command)
        _HANDLERS[command](entity, actor, payload, now)
        diff = _diff(before, _snapshot(entity, command))
    except DomainError as exc:
        logger.warning("%s %s rejected: %s", entity_type, entity.id, exc.message, extra=log_extra)
        raise

    # 5. Audit log
    record_transition(entity, command, actor.id, diff)
    logger.info(
        "%s %s: %s by %s (%s → %s)", entity_type, entity.id, command, actor.id,
        validation["from"], review_state(entity), extra=log_extra,
    )
    return entity


def apply_goal_transition(goal, command: str, actor, payload: dict | None = None,
                          now: datetime | None = None):
    """
    Execute a review-lifecycle command on a goal.

    Args:
        goal: Goal instance (or any object with the reviewable attributes)
        command: request_review | cancel_review | leader_review | edit | delete
        actor: object with ``id`` and ``role`` (a User or permission.Actor)
        payload: command arguments (leader_review: outcome / notes; edit: fields)
        now: clock override for review timestamps

    Returns:
        The same goal, mutated in place. ``delete`` only validates; the caller
        removes the row.

    Raises:
        InvalidTransition, PermissionDenied, ValidationError
    """
    if goal.ENTITY_TYPE != "goal":
        raise ValidationError(f"Expected a goal, got {goal.ENTITY_TYPE}")
    return _apply(goal, command, actor, payload, now)


def apply_action_plan_transition(plan, command: str, actor, payload: dict | None = None,
                                 now: datetime | None = None):
    """Execute a review-lifecycle command on an action plan.

    Same contract as ``apply_goal_transition``; accepts ``propose_deadline``
    (payload ``new_date``) instead of ``delete``.
    """
    if plan.ENTITY_TYPE != "action_plan":
        raise ValidationError(f"Expected an action plan, got {plan.ENTITY_TYPE}")
    return _apply(plan, command, actor, payload, now)
