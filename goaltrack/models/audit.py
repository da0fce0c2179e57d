"""
Goal Tracking Platform
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for lifecycle commands.
"""

import json
from datetime import datetime, timezone

from goaltrack.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {
    "goal", "action_plan", "weekly_report", "verification_request",
}

AUDIT_ACTIONS = {
    # Creation
    "goal.create",
    "action_plan.create",
    # Review lifecycle (goal + action plan)
    "goal.request_review",
    "goal.cancel_review",
    "goal.leader_review",
    "goal.edit",
    "goal.delete",
    "action_plan.request_review",
    "action_plan.cancel_review",
    "action_plan.leader_review",
    "action_plan.edit",
    "action_plan.propose_deadline",
    # Weekly reports
    "weekly_report.create",
    "weekly_report.lead_feedback",
    # Verification
    "verification_request.submit",
    "verification_request.review",
    "verification_request.cancel",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every lifecycle command.

    One row per command. ``diff_json`` carries the old→new snapshot of the
    fields the command changed.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_actor", "actor"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="goal | action_plan | weekly_report | verification_request",
    )
    entity_id = db.Column(db.String(36), nullable=False)
    action = db.Column(
        db.String(60), nullable=False,
        comment="goal.request_review | action_plan.propose_deadline | …",
    )
    actor = db.Column(db.String(150), nullable=False, default="system")
    diff_json = db.Column(db.Text, default="{}", comment="JSON: {field: {old, new}}")
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id: str,
    action: str,
    actor: str = "system",
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AuditLog instance.
    """
    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
