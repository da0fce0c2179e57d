"""
Role and ownership checks for lifecycle commands.

Two kinds of commands exist:
  - owner commands: only the member who owns the goal (or the goal an action
    plan / verification request belongs to) may issue them, whatever their role
  - reviewer commands: only leaders and managers may issue them

Usage:
    from goaltrack.services.permission import check_permission

    check_permission(actor, "request_review", goal)      # raises PermissionDenied
    if has_permission(actor, "leader_review"):
        ...
"""

from dataclasses import dataclass

from goaltrack.core.exceptions import PermissionDenied
from goaltrack.models.team import REVIEWER_ROLES

OWNER_ACTIONS = {
    "request_review",
    "cancel_review",
    "edit",
    "propose_deadline",
    "delete",
    "create_action_plan",
    "create_weekly_report",
    "submit_verification",
    "cancel_verification",
}

REVIEWER_ACTIONS = {
    "leader_review",
    "lead_feedback",
    "review_verification",
}

ROLE_PERMISSIONS = {
    "member": OWNER_ACTIONS,
    "leader": OWNER_ACTIONS | REVIEWER_ACTIONS,
    "manager": OWNER_ACTIONS | REVIEWER_ACTIONS,
}


@dataclass(frozen=True)
class Actor:
    """Who issues a command. ``User`` rows satisfy the same shape."""

    id: str
    role: str = "member"
    team_id: str | None = None


def has_permission(actor, action: str, entity=None) -> bool:
    try:
        check_permission(actor, action, entity)
    except PermissionDenied:
        return False
    return True


def check_permission(actor, action: str, entity=None) -> None:
    """Raise PermissionDenied unless *actor* may run *action* on *entity*.

    Ownership is only checked for owner commands and only when an entity is
    given; its ``owner_id`` must equal ``actor.id``.
    """
    actor_id = getattr(actor, "id", None)
    role = getattr(actor, "role", None)
    if actor is None or actor_id is None:
        raise PermissionDenied(None, action, "no actor")

    allowed = ROLE_PERMISSIONS.get(role, set())
    if action not in allowed:
        if action in REVIEWER_ACTIONS:
            raise PermissionDenied(
                actor_id, action,
                f"requires one of roles {sorted(REVIEWER_ROLES)}, got '{role}'",
            )
        raise PermissionDenied(actor_id, action, f"role '{role}' is not allowed")

    if action in OWNER_ACTIONS and entity is not None:
        owner_id = getattr(entity, "owner_id", None)
        if owner_id != actor_id:
            raise PermissionDenied(actor_id, action, "only the owner may do this")
