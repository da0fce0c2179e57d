"""
Rubric scoring engine and verification request lifecycle tests.

Covers:
  • score_rubric weighting, defaults and validation
  • effective_rubric snapshot → template fallback
  • evidence checklist
  • submit / review / cancel verification requests
  • default template seeding
"""

from types import SimpleNamespace

import pytest

from goaltrack.core.exceptions import (
    InvalidTransition,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from goaltrack.models import db
from goaltrack.models.audit import AuditLog
from goaltrack.models.verification import VerificationTemplate
from goaltrack.services.rubric import (
    build_rubric_snapshot,
    cancel_verification_request,
    effective_rubric,
    evidence_checklist,
    normalize_criteria,
    review_verification_request,
    score_rubric,
    seed_default_templates,
    submit_verification_request,
)

CRITERIA = [
    {"id": "c1", "label": "Correctness", "weight": 2},
    {"id": "c2", "label": "Clarity", "weight": 1},
]

EVIDENCE = [
    {"type": "repo", "label": "Repository", "required": True},
    {"type": "recording", "label": "Demo", "required": False},
]


def _make_template(name="Walkthrough", criteria=None, required_evidence=None, **kw):
    t = VerificationTemplate(
        name=name,
        scoring_type=kw.pop("scoring_type", "rubric"),
        criteria=CRITERIA if criteria is None else criteria,
        required_evidence=EVIDENCE if required_evidence is None else required_evidence,
        minimum_bar=kw.pop("minimum_bar", {"avg_on_5": 3}),
        **kw,
    )
    db.session.add(t)
    db.session.flush()
    return t


# ═══════════════════════════════════════════════════════════════════════════
# 1 · Scoring
# ═══════════════════════════════════════════════════════════════════════════

class TestScoreRubric:

    def test_weighted_average(self):
        criteria = [{"weight": 1}, {"weight": 2}]
        result = score_rubric(criteria, {"c1": 3, "c2": 4})
        assert result == {"weighted": 11, "max_weighted": 15, "avg_on_5": 3.67}

    def test_missing_score_counts_zero(self):
        result = score_rubric(CRITERIA, {"c1": 5})
        assert result["weighted"] == 10
        assert result["max_weighted"] == 15
        assert result["avg_on_5"] == 3.33

    def test_zero_weight_counts_as_one(self):
        result = score_rubric([{"id": "a", "weight": 0}], {"a": 4})
        assert result == {"weighted": 4, "max_weighted": 5, "avg_on_5": 4.0}

    def test_no_criteria(self):
        assert score_rubric([], {}) == {"weighted": 0, "max_weighted": 0, "avg_on_5": 0}

    @pytest.mark.parametrize("bad", [6, -1, 2.5, "three", True])
    def test_out_of_range_score(self, bad):
        with pytest.raises(ValidationError):
            score_rubric(CRITERIA, {"c1": bad})

    def test_numeric_strings_accepted(self):
        assert score_rubric(CRITERIA, {"c1": "5", "c2": "5"})["avg_on_5"] == 5.0

    def test_half_up_rounding(self):
        # 25 / 40 * 5 = 3.125
        criteria = [{"id": "a", "weight": 3}, {"id": "b", "weight": 5}]
        result = score_rubric(criteria, {"a": 0, "b": 5})
        assert result["weighted"] == 25
        assert result["max_weighted"] == 40
        assert result["avg_on_5"] == 3.13

    def test_normalize_defaults(self):
        assert normalize_criteria([{}, {"id": "x", "weight": "heavy"}]) == [
            {"id": "c1", "label": "Criteria 1", "description": "", "weight": 1},
            {"id": "x", "label": "Criteria 2", "description": "", "weight": 1},
        ]
        assert normalize_criteria("not a list") == []


# ═══════════════════════════════════════════════════════════════════════════
# 2 · Rubric resolution & evidence
# ═══════════════════════════════════════════════════════════════════════════

class TestEffectiveRubric:

    def test_snapshot_wins_over_template(self):
        template = SimpleNamespace(criteria=[{"id": "t1"}], required_evidence=[], scoring_type="rubric")
        request = SimpleNamespace(
            rubric_snapshot={"criteria": [{"id": "s1", "weight": 2}], "minimum_bar": {"avg_on_5": 4}},
            template=template,
        )
        rubric = effective_rubric(request)
        assert [c["id"] for c in rubric["criteria"]] == ["s1"]
        assert rubric["minimum_bar"] == {"avg_on_5": 4}

    def test_empty_snapshot_falls_back_to_template(self):
        template = SimpleNamespace(criteria=CRITERIA, required_evidence=EVIDENCE,
                                   scoring_type="rubric", minimum_bar={"avg_on_5": 3})
        request = SimpleNamespace(rubric_snapshot={}, template=template)
        rubric = effective_rubric(request)
        assert [c["id"] for c in rubric["criteria"]] == ["c1", "c2"]
        assert rubric["required_evidence"] == EVIDENCE
        assert rubric["minimum_bar"] is None

    def test_no_template_no_snapshot(self):
        rubric = effective_rubric(SimpleNamespace(rubric_snapshot=None, template=None))
        assert rubric["criteria"] == []
        assert rubric["required_evidence"] == []

    def test_snapshot_of_missing_template(self):
        assert build_rubric_snapshot(None) == {}

    def test_checklist_attached_when_links_exist(self):
        result = evidence_checklist(EVIDENCE, ["https://git.example.com/repo"])
        assert [i["status"] for i in result["items"]] == ["attached", "optional"]
        assert result["required_count"] == 1
        assert result["complete"] is True

    def test_checklist_missing_without_links(self):
        result = evidence_checklist(EVIDENCE, ["", None])
        assert [i["status"] for i in result["items"]] == ["missing", "optional"]
        assert result["links_count"] == 0
        assert result["complete"] is False


# ═══════════════════════════════════════════════════════════════════════════
# 3 · Request lifecycle
# ═══════════════════════════════════════════════════════════════════════════

class TestVerificationRequests:

    def test_submit_snapshots_template(self, goal, member):
        t = _make_template()
        vr = submit_verification_request(member, goal, {
            "scope": "Billing service rewrite",
            "evidence_links": ["https://git.example.com/billing/pull/12"],
            "template_id": t.id,
        })
        assert vr.status == "pending"
        assert vr.rubric_snapshot["criteria"] == CRITERIA
        assert vr.rubric_snapshot["template_id"] == t.id
        assert AuditLog.query.filter_by(entity_id=vr.id, action="verification_request.submit").count() == 1

    def test_template_edit_does_not_change_snapshot(self, goal, member):
        t = _make_template()
        vr = submit_verification_request(member, goal, {
            "scope": "Billing", "evidence_links": ["https://x"], "template_id": t.id,
        })
        t.criteria = [{"id": "new", "weight": 10}]
        db.session.flush()
        assert [c["id"] for c in effective_rubric(vr)["criteria"]] == ["c1", "c2"]

    def test_submit_requires_scope_and_evidence(self, goal, member):
        t = _make_template()
        with pytest.raises(ValidationError) as exc_info:
            submit_verification_request(member, goal, {"scope": " ", "template_id": t.id})
        assert set(exc_info.value.details) == {"scope", "evidence_links"}

    def test_unknown_template(self, goal, member):
        with pytest.raises(NotFoundError):
            submit_verification_request(member, goal, {"scope": "x", "template_id": "nope"})

    def test_foreign_action_plan_rejected(self, goal, member, plan):
        with pytest.raises(ValidationError):
            submit_verification_request(member, goal, {"scope": "x", "action_plan_id": "other-plan"})
        vr = submit_verification_request(member, goal, {"scope": "x", "action_plan_id": plan.id})
        assert vr.action_plan_id == plan.id

    def test_only_owner_submits(self, goal, other_member):
        with pytest.raises(PermissionDenied):
            submit_verification_request(other_member, goal, {"scope": "x"})

    def test_leader_review(self, goal, member, leader):
        t = _make_template()
        vr = submit_verification_request(member, goal, {
            "scope": "Billing", "evidence_links": ["https://x"], "template_id": t.id,
        })
        review = review_verification_request(vr, leader, "pass", {"c1": 4, "c2": 3},
                                             feedback="  Nice work ")
        assert vr.status == "reviewed"
        assert review.scores == {"c1": 4, "c2": 3}
        assert review.score_summary == {"weighted": 11, "max_weighted": 15, "avg_on_5": 3.67}
        assert review.leader_feedback == "Nice work"
        assert vr.active_review is review

    def test_result_is_leaders_choice(self, goal, member, leader):
        vr = submit_verification_request(member, goal, {"scope": "x"})
        review = review_verification_request(vr, leader, "needs_work", {})
        assert review.result == "needs_work"
        assert review.score_summary["avg_on_5"] == 0

    def test_member_cannot_review(self, goal, member):
        vr = submit_verification_request(member, goal, {"scope": "x"})
        with pytest.raises(PermissionDenied):
            review_verification_request(vr, member, "pass")

    def test_bad_result(self, goal, member, leader):
        vr = submit_verification_request(member, goal, {"scope": "x"})
        with pytest.raises(ValidationError):
            review_verification_request(vr, leader, "excellent")
        assert vr.status == "pending"

    def test_terminal_states_are_final(self, goal, member, leader):
        vr = submit_verification_request(member, goal, {"scope": "x"})
        cancel_verification_request(vr, member)
        assert vr.status == "cancelled"
        with pytest.raises(InvalidTransition):
            cancel_verification_request(vr, member)
        with pytest.raises(InvalidTransition):
            review_verification_request(vr, leader, "pass")

    def test_other_member_cannot_cancel(self, goal, member, other_member):
        vr = submit_verification_request(member, goal, {"scope": "x"})
        with pytest.raises(PermissionDenied):
            cancel_verification_request(vr, other_member)


# ═══════════════════════════════════════════════════════════════════════════
# 4 · Seeding
# ═══════════════════════════════════════════════════════════════════════════

class TestSeedTemplates:

    def test_seed_is_idempotent(self):
        assert seed_default_templates() == 3
        assert seed_default_templates() == 0
        names = {t.name for t in VerificationTemplate.query.all()}
        assert "Certification" in names
