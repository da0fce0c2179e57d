"""
Goal Tracking Platform
Goal domain models.

Models:
    - Goal:                 yearly SMART objective owned by a member
    - ActionPlan:           time-boxed activity under a goal
    - WeeklyReport:         member progress note against an action plan
    - GoalProgressSnapshot: weekly progress history used for delta metrics

Architecture:
    User ──1:N──▶ Goal ──1:N──▶ ActionPlan ──1:N──▶ WeeklyReport
    Goal ──1:N──▶ GoalProgressSnapshot

Lifecycle states:
    Goal:        draft | not_started → in_progress → completed | cancelled
    ActionPlan:  not_started → in_progress → completed | blocked
    Review:      (none) → pending → approved | rejected | cancelled
"""

from goaltrack.models import _utcnow, _uuid, db

# ── Constants ────────────────────────────────────────────────────────────────

GOAL_STATUSES = {"draft", "not_started", "in_progress", "completed", "cancelled"}

GOAL_UNSTARTED_STATUSES = {"draft", "not_started"}

GOAL_CLOSED_STATUSES = {"completed", "cancelled"}

GOAL_TYPES = {"hard", "soft"}

GOAL_DURATION_TYPES = {"quarter", "half_year"}

ACTION_PLAN_STATUSES = {"not_started", "in_progress", "completed", "blocked"}

ACTION_PLAN_UNSTARTED_STATUSES = {"not_started"}

REVIEW_STATUSES = {"pending", "approved", "rejected", "cancelled"}

REVIEW_OUTCOMES = {"approved", "rejected", "pending"}

MAX_DEADLINE_CHANGES = 3


# ═════════════════════════════════════════════════════════════════════════════
# Reviewable capability
# ═════════════════════════════════════════════════════════════════════════════


class ReviewableMixin:
    """
    Status / lock / review columns shared by Goal and ActionPlan.

    Both entities go through the same request → leader decision cycle, so the
    transition engine in ``goaltrack.services.review_lifecycle`` only talks to
    these attributes.
    """

    ENTITY_TYPE = "reviewable"

    is_locked = db.Column(
        db.Boolean, nullable=False, default=False,
        comment="True while a review is pending or after approval",
    )
    review_status = db.Column(
        db.String(20), nullable=True,
        comment="pending | approved | rejected | cancelled | NULL (never requested)",
    )
    leader_review_notes = db.Column(db.Text, nullable=True)
    reviewed_by = db.Column(db.String(36), nullable=True, comment="Reviewer user id")
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def review_dict(self) -> dict:
        return {
            "is_locked": bool(self.is_locked),
            "review_status": self.review_status,
            "leader_review_notes": self.leader_review_notes,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "rejected_at": self.rejected_at.isoformat() if self.rejected_at else None,
        }


# ═════════════════════════════════════════════════════════════════════════════
# 1. Goal
# ═════════════════════════════════════════════════════════════════════════════


class Goal(ReviewableMixin, db.Model):
    """
    Yearly SMART goal. ``time_bound`` is the deadline; ``progress`` is a
    member-reported percentage (0-100).
    """

    __tablename__ = "goals"
    ENTITY_TYPE = "goal"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    team_id = db.Column(
        db.String(36), db.ForeignKey("teams.id", ondelete="SET NULL"),
        nullable=True, index=True,
        comment="Owner team at creation time (denormalised for rollups)",
    )
    year = db.Column(db.Integer, nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    type = db.Column(db.String(10), default="soft", comment="hard | soft")
    skill = db.Column(db.String(255), default="")
    duration_type = db.Column(db.String(20), default="quarter", comment="quarter | half_year")

    # SMART
    specific = db.Column(db.Text, default="")
    measurable = db.Column(db.Text, default="")
    achievable = db.Column(db.Text, default="")
    relevant = db.Column(db.Text, default="")
    success_metric = db.Column(db.Text, default="")

    start_date = db.Column(db.Date, nullable=False)
    time_bound = db.Column(db.Date, nullable=False, comment="Deadline")

    status = db.Column(
        db.String(20), nullable=False, default="not_started",
        comment="draft | not_started | in_progress | completed | cancelled",
    )
    progress = db.Column(db.Integer, nullable=False, default=0)
    weight = db.Column(db.Integer, nullable=False, default=0)

    risk = db.Column(db.Text, default="")
    dependencies = db.Column(db.Text, default="")
    notes = db.Column(db.Text, default="")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('draft','not_started','in_progress','completed','cancelled')",
            name="ck_goal_status",
        ),
        db.CheckConstraint("progress >= 0 AND progress <= 100", name="ck_goal_progress"),
        db.Index("idx_goal_user_year", "user_id", "year"),
        db.Index("idx_goal_team_year", "team_id", "year"),
    )

    owner = db.relationship("User", foreign_keys=[user_id])
    action_plans = db.relationship(
        "ActionPlan", backref="goal", lazy="select",
        cascade="all, delete-orphan", order_by="ActionPlan.start_date",
    )

    @property
    def owner_id(self):
        return self.user_id

    def to_dict(self, include_children=False):
        result = {
            "id": self.id,
            "user_id": self.user_id,
            "team_id": self.team_id,
            "year": self.year,
            "name": self.name,
            "type": self.type,
            "skill": self.skill,
            "duration_type": self.duration_type,
            "specific": self.specific,
            "measurable": self.measurable,
            "achievable": self.achievable,
            "relevant": self.relevant,
            "success_metric": self.success_metric,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "time_bound": self.time_bound.isoformat() if self.time_bound else None,
            "status": self.status,
            "progress": self.progress,
            "weight": self.weight,
            "risk": self.risk,
            "dependencies": self.dependencies,
            "notes": self.notes,
            **self.review_dict(),
        }
        if include_children:
            result["action_plans"] = [p.to_dict() for p in self.action_plans]
        return result

    def __repr__(self):
        return f"<Goal {self.id}: {self.name[:40] if self.name else ''}>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. ActionPlan
# ═════════════════════════════════════════════════════════════════════════════


class ActionPlan(ReviewableMixin, db.Model):
    """
    Concrete activity under a goal. Has no numeric progress; its status is the
    progress proxy. Deadline moves go through ``request_deadline_date`` and are
    capped at MAX_DEADLINE_CHANGES.
    """

    __tablename__ = "action_plans"
    ENTITY_TYPE = "action_plan"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    goal_id = db.Column(
        db.String(36), db.ForeignKey("goals.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    activity = db.Column(db.Text, nullable=False)
    owner = db.Column(db.String(150), default="")
    resources = db.Column(db.Text, default="")
    expected_outcome = db.Column(db.Text, default="")
    evidence_link = db.Column(db.String(500), default="")

    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    status = db.Column(
        db.String(20), nullable=False, default="not_started",
        comment="not_started | in_progress | completed | blocked",
    )

    # Deadline change sub-workflow
    request_deadline_date = db.Column(
        db.Date, nullable=True,
        comment="Proposed end_date awaiting leader decision",
    )
    deadline_change_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('not_started','in_progress','completed','blocked')",
            name="ck_action_plan_status",
        ),
        db.CheckConstraint(
            "deadline_change_count >= 0 AND deadline_change_count <= 3",
            name="ck_action_plan_deadline_changes",
        ),
    )

    weekly_reports = db.relationship(
        "WeeklyReport", backref="action_plan", lazy="select",
        cascade="all, delete-orphan", order_by="WeeklyReport.date",
    )

    @property
    def owner_id(self):
        return self.goal.user_id if self.goal else None

    def to_dict(self, include_reports=False):
        result = {
            "id": self.id,
            "goal_id": self.goal_id,
            "activity": self.activity,
            "owner": self.owner,
            "resources": self.resources,
            "expected_outcome": self.expected_outcome,
            "evidence_link": self.evidence_link,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "status": self.status,
            "request_deadline_date": (
                self.request_deadline_date.isoformat() if self.request_deadline_date else None
            ),
            "deadline_change_count": self.deadline_change_count or 0,
            **self.review_dict(),
        }
        if include_reports:
            result["weekly_reports"] = [r.to_dict() for r in self.weekly_reports]
        return result

    def __repr__(self):
        return f"<ActionPlan {self.id}: {self.activity[:40] if self.activity else ''}>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. WeeklyReport
# ═════════════════════════════════════════════════════════════════════════════


class WeeklyReport(db.Model):
    """Weekly progress note. Only ``lead_feedback`` may change after creation."""

    __tablename__ = "weekly_reports"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    action_plan_id = db.Column(
        db.String(36), db.ForeignKey("action_plans.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    date = db.Column(db.Date, nullable=False, index=True)
    summary = db.Column(db.Text, default="")
    work_done = db.Column(db.Text, default="")
    blockers_challenges = db.Column(db.Text, default="")
    next_week_plan = db.Column(db.Text, default="")
    lead_feedback = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "action_plan_id": self.action_plan_id,
            "date": self.date.isoformat() if self.date else None,
            "summary": self.summary,
            "work_done": self.work_done,
            "blockers_challenges": self.blockers_challenges,
            "next_week_plan": self.next_week_plan,
            "lead_feedback": self.lead_feedback,
        }

    def __repr__(self):
        return f"<WeeklyReport {self.id} @ {self.date}>"


# ═════════════════════════════════════════════════════════════════════════════
# 4. GoalProgressSnapshot
# ═════════════════════════════════════════════════════════════════════════════


class GoalProgressSnapshot(db.Model):
    """Point-in-time goal progress; one row per (goal, snapshot_date)."""

    __tablename__ = "goal_progress_history"
    __table_args__ = (
        db.UniqueConstraint("goal_id", "snapshot_date", name="uq_goal_progress_date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    goal_id = db.Column(
        db.String(36), db.ForeignKey("goals.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    snapshot_date = db.Column(db.Date, nullable=False, index=True)
    progress = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "goal_id": self.goal_id,
            "snapshot_date": self.snapshot_date.isoformat(),
            "progress": self.progress,
        }
