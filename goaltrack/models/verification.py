"""
Goal Tracking Platform
Skill verification models.

Models:
    - VerificationTemplate: reusable rubric (criteria + required evidence)
    - VerificationRequest:  member ask for leader-graded proof of a skill
    - VerificationReview:   the leader's decision and rubric scores

A request copies the template rubric into ``rubric_snapshot`` at submission so
later template edits do not change how an open request is graded.
"""

from goaltrack.models import _utcnow, _uuid, db

# ── Constants ────────────────────────────────────────────────────────────────

VERIFICATION_STATUSES = {"pending", "reviewed", "cancelled"}

VERIFICATION_TERMINAL_STATUSES = {"reviewed", "cancelled"}

VERIFICATION_RESULTS = {"pass", "needs_work", "fail"}

SCORING_TYPES = {"rubric", "passfail"}

MIN_CRITERION_SCORE = 0
MAX_CRITERION_SCORE = 5


class VerificationTemplate(db.Model):
    """Rubric template selectable by members when requesting verification."""

    __tablename__ = "verification_templates"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False, unique=True)
    category = db.Column(db.String(100), nullable=True)
    scoring_type = db.Column(db.String(20), nullable=False, default="rubric")
    criteria = db.Column(
        db.JSON, default=list,
        comment='[{"id": "c1", "label": "...", "description": "...", "weight": 1}]',
    )
    required_evidence = db.Column(
        db.JSON, default=list,
        comment='[{"type": "repo", "label": "...", "required": true}]',
    )
    minimum_bar = db.Column(db.JSON, nullable=True, comment="Display-only pass threshold")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "scoring_type": self.scoring_type,
            "criteria": self.criteria or [],
            "required_evidence": self.required_evidence or [],
            "minimum_bar": self.minimum_bar,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<VerificationTemplate {self.name}>"


class VerificationRequest(db.Model):
    """Pending → reviewed | cancelled. Terminal states are final."""

    __tablename__ = "verification_requests"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    requester_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    goal_id = db.Column(
        db.String(36), db.ForeignKey("goals.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    action_plan_id = db.Column(
        db.String(36), db.ForeignKey("action_plans.id", ondelete="SET NULL"),
        nullable=True,
    )
    template_id = db.Column(
        db.String(36), db.ForeignKey("verification_templates.id", ondelete="SET NULL"),
        nullable=True,
    )
    scope = db.Column(db.Text, nullable=False)
    evidence_links = db.Column(db.JSON, default=list)
    member_notes = db.Column(db.Text, nullable=True)
    rubric_snapshot = db.Column(db.JSON, default=dict)
    status = db.Column(
        db.String(20), nullable=False, default="pending",
        comment="pending | reviewed | cancelled",
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending','reviewed','cancelled')",
            name="ck_verification_request_status",
        ),
    )

    requester = db.relationship("User", foreign_keys=[requester_id])
    goal = db.relationship("Goal", foreign_keys=[goal_id])
    template = db.relationship("VerificationTemplate", foreign_keys=[template_id])
    reviews = db.relationship(
        "VerificationReview", backref="request", lazy="select",
        cascade="all, delete-orphan", order_by="VerificationReview.reviewed_at.desc()",
    )

    @property
    def owner_id(self):
        return self.requester_id

    @property
    def active_review(self):
        return self.reviews[0] if self.reviews else None

    def to_dict(self, include_reviews=False):
        result = {
            "id": self.id,
            "requester_id": self.requester_id,
            "goal_id": self.goal_id,
            "action_plan_id": self.action_plan_id,
            "template_id": self.template_id,
            "scope": self.scope,
            "evidence_links": list(self.evidence_links or []),
            "member_notes": self.member_notes,
            "rubric_snapshot": self.rubric_snapshot or {},
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_reviews:
            result["verification_reviews"] = [r.to_dict() for r in self.reviews]
        return result

    def __repr__(self):
        return f"<VerificationRequest {self.id} [{self.status}]>"


class VerificationReview(db.Model):
    """Leader decision. The score summary is advisory; ``result`` is chosen by the leader."""

    __tablename__ = "verification_reviews"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    request_id = db.Column(
        db.String(36), db.ForeignKey("verification_requests.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    leader_id = db.Column(db.String(36), nullable=False)
    result = db.Column(db.String(20), nullable=False, comment="pass | needs_work | fail")
    scores = db.Column(db.JSON, default=dict, comment="criterion id → 0..5")
    score_summary = db.Column(db.JSON, default=dict, comment="weighted / max_weighted / avg_on_5")
    leader_feedback = db.Column(db.Text, nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "result IN ('pass','needs_work','fail')",
            name="ck_verification_review_result",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "request_id": self.request_id,
            "leader_id": self.leader_id,
            "result": self.result,
            "scores": self.scores or {},
            "score_summary": self.score_summary or {},
            "leader_feedback": self.leader_feedback,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
        }
