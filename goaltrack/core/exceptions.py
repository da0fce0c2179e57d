"""
Platform-wide exception hierarchy.

Every service raises one of these types. Each carries a machine-readable
``kind`` and a human message, and serialises with ``to_dict()`` so callers
(blueprints, the insights aggregator) can report it as a structured result
instead of a crash.

Usage:
    from goaltrack.core.exceptions import InvalidTransition, ValidationError

    raise InvalidTransition("goal", goal.id, "request_review", "already locked")
    raise ValidationError("progress must be between 0 and 100", details={"progress": 140})
"""


class DomainError(Exception):
    """Base class for every business-rule failure raised by the core."""

    kind = "DomainError"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        result = {"kind": self.kind, "message": self.message}
        if self.details:
            result["details"] = self.details
        return result


class NotFoundError(DomainError):
    """Raised when a requested entity does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Goal", "ActionPlan").
        resource_id: The id that was looked up.
    """

    kind = "NotFound"

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(DomainError):
    """Raised when input is malformed or out of range.

    Malformed dates, progress / weight outside 0-100, rubric scores outside
    0-5, missing required fields.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    kind = "ValidationError"


class InvalidTransition(DomainError):
    """Raised when a lifecycle command is not allowed from the current state.

    Args:
        entity_type: "goal", "action_plan" or "verification_request".
        entity_id: Id of the entity the command targeted.
        command: The rejected command.
        reason: Why it was rejected.
    """

    kind = "InvalidTransition"

    def __init__(
        self,
        entity_type: str,
        entity_id: str | None,
        command: str,
        reason: str,
        details: dict | None = None,
    ) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.command = command
        self.reason = reason
        msg = f"Cannot '{command}' {entity_type} {entity_id}: {reason}"
        super().__init__(msg, details)


class DeadlineChangeLimitExceeded(InvalidTransition):
    """Raised when an action plan has already used all deadline changes."""

    kind = "DeadlineChangeLimitExceeded"

    def __init__(self, entity_id: str | None, used: int, limit: int) -> None:
        super().__init__(
            "action_plan", entity_id, "propose_deadline",
            f"deadline already changed {used}/{limit} times",
            details={"deadline_change_count": used, "limit": limit},
        )


class PermissionDenied(DomainError):
    """Raised when the actor's role or ownership does not allow a command."""

    kind = "PermissionDenied"

    def __init__(self, actor_id: str | None, command: str, reason: str) -> None:
        self.actor_id = actor_id
        self.command = command
        super().__init__(f"User {actor_id} may not '{command}': {reason}")


class DivisionEdgeCase(DomainError):
    """Zero-length schedule window.

    Never raised by the health evaluator (the branch is guarded); kept as a
    named kind so guarded evaluations can be reported alongside real errors.
    """

    kind = "DivisionEdgeCase"
