"""
Goal Tracking Platform
Organisation models.

Models:
    - Team: a group of members led by one or more leaders.
    - User: member / leader / manager identity (authentication lives elsewhere).
"""

from goaltrack.models import _utcnow, _uuid, db

# ── Constants ────────────────────────────────────────────────────────────────

USER_ROLES = {"member", "leader", "manager"}

REVIEWER_ROLES = {"leader", "manager"}


class Team(db.Model):
    """Organisational team; insights roll up per team."""

    __tablename__ = "teams"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(120), nullable=False, unique=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    members = db.relationship("User", back_populates="team", lazy="select")

    def to_dict(self):
        return {"id": self.id, "name": self.name}

    def __repr__(self):
        return f"<Team {self.name}>"


class User(db.Model):
    """A member, leader or manager. Role drives the review capabilities."""

    __tablename__ = "users"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    email = db.Column(db.String(255), nullable=False, unique=True)
    name = db.Column(db.String(150), nullable=True)
    role = db.Column(
        db.String(20), nullable=False, default="member",
        comment="member | leader | manager",
    )
    team_id = db.Column(
        db.String(36), db.ForeignKey("teams.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "role IN ('member','leader','manager')",
            name="ck_user_role",
        ),
    )

    team = db.relationship("Team", back_populates="members")

    @property
    def is_reviewer(self) -> bool:
        return self.role in REVIEWER_ROLES

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "team_id": self.team_id,
            "team_name": self.team.name if self.team else None,
        }

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"
