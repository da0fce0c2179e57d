"""
Rubric Scoring Engine — skill verification requests.

Transaction policy: functions use flush(), never commit().
Caller (route handler) is responsible for db.session.commit().

Pure helpers:
  normalize_criteria, effective_rubric, score_rubric, evidence_checklist,
  build_rubric_snapshot

Request lifecycle (pending → reviewed | cancelled):
  submit_verification_request, review_verification_request,
  cancel_verification_request

The engine reports a weighted score only; the leader picks the result
(pass / needs_work / fail). ``minimum_bar`` is shown to the leader, never
enforced.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from goaltrack.core.exceptions import InvalidTransition, NotFoundError, ValidationError
from goaltrack.models import db
from goaltrack.models.audit import write_audit
from goaltrack.models.verification import (
    MAX_CRITERION_SCORE,
    MIN_CRITERION_SCORE,
    VERIFICATION_RESULTS,
    VerificationRequest,
    VerificationReview,
    VerificationTemplate,
)
from goaltrack.services.permission import check_permission

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Scoring
# ═════════════════════════════════════════════════════════════════════════════


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def normalize_criteria(raw) -> list[dict]:
    """Fill in defaults for a criteria list.

    Missing ids become ``c<n>``, missing labels ``Criteria <n>`` (1-based
    position), and a weight that is not a finite number becomes 1. Anything
    that is not a list yields no criteria.
    """
    if not isinstance(raw, list):
        return []
    normalized = []
    for idx, item in enumerate(raw):
        item = item if isinstance(item, dict) else {}
        weight = item.get("weight")
        normalized.append({
            "id": str(item.get("id") or f"c{idx + 1}"),
            "label": str(item.get("label") or f"Criteria {idx + 1}"),
            "description": item.get("description") if isinstance(item.get("description"), str) else "",
            "weight": weight if _is_number(weight) else 1,
        })
    return normalized


def _coerce_score(criterion_id: str, value) -> int:
    if isinstance(value, bool):
        raise ValidationError(
            f"Score for {criterion_id} must be an integer 0-5", details={criterion_id: value})
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(
            f"Score for {criterion_id} must be an integer 0-5", details={criterion_id: value})
    if (not math.isfinite(number) or number != int(number)
            or not MIN_CRITERION_SCORE <= number <= MAX_CRITERION_SCORE):
        raise ValidationError(
            f"Score for {criterion_id} must be an integer 0-5", details={criterion_id: value})
    return int(number)


def clean_scores(criteria: list[dict], scores: dict | None) -> dict[str, int]:
    """Validated scores for the criteria that were actually scored."""
    scores = scores or {}
    if not isinstance(scores, dict):
        raise ValidationError("scores must be an object keyed by criterion id")
    return {
        c["id"]: _coerce_score(c["id"], scores[c["id"]])
        for c in criteria
        if c["id"] in scores and scores[c["id"]] is not None
    }


def _round2(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def score_rubric(criteria, scores: dict | None) -> dict:
    """
    Weighted rubric score.

    weighted     = Σ score_i × weight_i
    max_weighted = Σ 5 × weight_i
    avg_on_5     = weighted / max_weighted × 5, rounded to 2 places (0 when
                   max_weighted is 0)

    A zero weight counts as 1 and an unscored criterion counts as 0.

    Raises:
        ValidationError: a score is not an integer in 0..5.
    """
    criteria = normalize_criteria(criteria)
    cleaned = clean_scores(criteria, scores)

    weighted = 0
    max_weighted = 0
    for c in criteria:
        weight = c["weight"] or 1
        weighted += cleaned.get(c["id"], 0) * weight
        max_weighted += MAX_CRITERION_SCORE * weight

    avg = _round2(weighted / max_weighted * MAX_CRITERION_SCORE) if max_weighted > 0 else 0
    return {"weighted": weighted, "max_weighted": max_weighted, "avg_on_5": avg}


# ═════════════════════════════════════════════════════════════════════════════
# Rubric resolution & evidence
# ═════════════════════════════════════════════════════════════════════════════


def build_rubric_snapshot(template: VerificationTemplate | None) -> dict:
    """Frozen copy of a template's rubric, stored on the request at submission."""
    if template is None:
        return {}
    return {
        "template_id": template.id,
        "name": template.name,
        "scoring_type": template.scoring_type,
        "criteria": list(template.criteria or []),
        "required_evidence": list(template.required_evidence or []),
        "minimum_bar": template.minimum_bar,
    }


def effective_rubric(request, template: VerificationTemplate | None = None) -> dict:
    """Rubric to grade *request* with.

    Criteria and required evidence come from the snapshot, each falling back
    to the live template when its snapshot part is empty. ``minimum_bar``
    only ever comes from the snapshot.
    """
    snapshot = request.rubric_snapshot if isinstance(request.rubric_snapshot, dict) else {}
    template = template if template is not None else getattr(request, "template", None)

    criteria = snapshot.get("criteria")
    if not (isinstance(criteria, list) and criteria):
        criteria = template.criteria if template is not None else []

    required_evidence = snapshot.get("required_evidence")
    if not (isinstance(required_evidence, list) and required_evidence):
        required_evidence = template.required_evidence if template is not None else []

    return {
        "criteria": normalize_criteria(criteria),
        "required_evidence": list(required_evidence or []),
        "minimum_bar": snapshot.get("minimum_bar"),
        "scoring_type": snapshot.get("scoring_type")
        or (template.scoring_type if template is not None else "rubric"),
    }


def required_evidence_count(required_evidence) -> int:
    return sum(
        1 for item in required_evidence or []
        if isinstance(item, dict) and item.get("required") is not False
    )


def evidence_checklist(required_evidence, evidence_links) -> dict:
    """Attached / missing status per required evidence item.

    Optional items (``required: false``) are listed but never missing.
    """
    links = [link for link in evidence_links or [] if link]
    has_links = bool(links)
    items = []
    for item in required_evidence or []:
        if not isinstance(item, dict):
            continue
        required = item.get("required") is not False
        if not required:
            status = "optional"
        else:
            status = "attached" if has_links else "missing"
        items.append({
            "type": item.get("type"),
            "label": item.get("label"),
            "required": required,
            "status": status,
        })
    needed = required_evidence_count(required_evidence)
    return {
        "items": items,
        "required_count": needed,
        "links_count": len(links),
        "complete": len(links) >= needed,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Request lifecycle
# ═════════════════════════════════════════════════════════════════════════════


def _clean_links(raw) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("evidence_links must be a list", details={"evidence_links": raw})
    return [str(link).strip() for link in raw if link and str(link).strip()]


def submit_verification_request(actor, goal, data: dict,
                                template: VerificationTemplate | None = None) -> VerificationRequest:
    """
    Open a verification request on *actor*'s goal.

    Rules:
      - scope is required
      - with a template, at least as many evidence links as the template has
        required evidence items
      - an action plan, if given, must belong to the goal
      - the template rubric is copied into ``rubric_snapshot``

    Returns:
        VerificationRequest instance (already flushed).
    """
    check_permission(actor, "submit_verification", goal)
    data = data or {}

    errors = {}
    scope = (data.get("scope") or "").strip()
    if not scope:
        errors["scope"] = "scope is required"
    links = _clean_links(data.get("evidence_links"))

    if template is None and data.get("template_id"):
        template = db.session.get(VerificationTemplate, data["template_id"])
        if template is None:
            raise NotFoundError("VerificationTemplate", data["template_id"])

    if template is not None:
        needed = required_evidence_count(template.required_evidence)
        if len(links) < needed:
            errors["evidence_links"] = f"at least {needed} evidence link(s) required"

    action_plan_id = data.get("action_plan_id") or None
    if action_plan_id and action_plan_id not in {p.id for p in goal.action_plans}:
        errors["action_plan_id"] = "action plan does not belong to this goal"

    if errors:
        raise ValidationError("Invalid verification request", details=errors)

    request = VerificationRequest(
        requester_id=actor.id,
        goal_id=goal.id,
        action_plan_id=action_plan_id,
        template_id=template.id if template is not None else None,
        scope=scope,
        evidence_links=links,
        member_notes=(data.get("member_notes") or "").strip() or None,
        rubric_snapshot=build_rubric_snapshot(template),
        status="pending",
    )
    db.session.add(request)
    db.session.flush()

    write_audit(
        entity_type="verification_request", entity_id=request.id,
        action="verification_request.submit", actor=actor.id,
        diff={"status": {"old": None, "new": "pending"}},
    )
    logger.info("Verification request %s submitted", request.id,
                extra={"verification_request_id": request.id, "goal_id": goal.id})
    return request


def _ensure_pending(request, command: str):
    if request.status != "pending":
        raise InvalidTransition(
            "verification_request", request.id, command, f"request is {request.status}")


def review_verification_request(request, actor, result: str, scores: dict | None = None,
                                feedback: str | None = None,
                                now: datetime | None = None) -> VerificationReview:
    """Record the leader's decision on a pending request.

    Returns:
        VerificationReview instance (already flushed).

    Raises:
        PermissionDenied, InvalidTransition, ValidationError
    """
    check_permission(actor, "review_verification")
    _ensure_pending(request, "review")

    result = (result or "").strip().lower()
    if result not in VERIFICATION_RESULTS:
        raise ValidationError(
            f"result must be one of {sorted(VERIFICATION_RESULTS)}", details={"result": result})

    rubric = effective_rubric(request)
    cleaned = clean_scores(rubric["criteria"], scores)
    summary = score_rubric(rubric["criteria"], cleaned)

    review = VerificationReview(
        request_id=request.id,
        leader_id=actor.id,
        result=result,
        scores=cleaned,
        score_summary=summary,
        leader_feedback=(feedback or "").strip() or None,
        reviewed_at=now or datetime.now(timezone.utc),
    )
    request.reviews.append(review)
    request.status = "reviewed"
    db.session.add(review)
    db.session.flush()

    write_audit(
        entity_type="verification_request", entity_id=request.id,
        action="verification_request.review", actor=actor.id,
        diff={"status": {"old": "pending", "new": "reviewed"}, "result": {"old": None, "new": result}},
    )
    logger.info("Verification request %s reviewed: %s (avg %s/5)", request.id, result,
                summary["avg_on_5"], extra={"verification_request_id": request.id, "outcome": result})
    return review


def cancel_verification_request(request, actor) -> VerificationRequest:
    """Owner withdraws a pending request. Terminal afterwards."""
    check_permission(actor, "cancel_verification", request)
    _ensure_pending(request, "cancel")

    request.status = "cancelled"
    db.session.flush()

    write_audit(
        entity_type="verification_request", entity_id=request.id,
        action="verification_request.cancel", actor=actor.id,
        diff={"status": {"old": "pending", "new": "cancelled"}},
    )
    return request


# ═════════════════════════════════════════════════════════════════════════════
# Seed templates
# ═════════════════════════════════════════════════════════════════════════════


def seed_default_templates():
    """
    Insert the default verification templates.
    Safe to run multiple times — skips templates whose name already exists.

    Call this from the Flask CLI command.
    """
    created = 0
    for t in _get_default_templates():
        exists = VerificationTemplate.query.filter_by(name=t["name"]).first()
        if not exists:
            db.session.add(VerificationTemplate(**t))
            created += 1

    if created > 0:
        db.session.flush()
        logger.info("Seeded %d verification templates", created)

    return created


def _get_default_templates() -> list[dict]:
    return [
        {
            "name": "Technical Skill: Project Walkthrough",
            "category": "technical",
            "scoring_type": "rubric",
            "criteria": [
                {"id": "c1", "label": "Correctness", "description": "Solution works for the stated scope", "weight": 2},
                {"id": "c2", "label": "Code quality", "description": "Readable, tested, idiomatic", "weight": 1},
                {"id": "c3", "label": "Explanation", "description": "Can explain trade-offs made", "weight": 1},
            ],
            "required_evidence": [
                {"type": "repo", "label": "Repository or pull request link", "required": True},
                {"type": "recording", "label": "Walkthrough recording", "required": False},
            ],
            "minimum_bar": {"avg_on_5": 3},
            "is_active": True,
        },
        {
            "name": "Certification",
            "category": "certification",
            "scoring_type": "passfail",
            "criteria": [],
            "required_evidence": [
                {"type": "certificate", "label": "Certificate link", "required": True},
            ],
            "minimum_bar": None,
            "is_active": True,
        },
        {
            "name": "Soft Skill: Presentation",
            "category": "soft",
            "scoring_type": "rubric",
            "criteria": [
                {"id": "c1", "label": "Structure", "weight": 1},
                {"id": "c2", "label": "Clarity", "weight": 1},
                {"id": "c3", "label": "Audience engagement", "weight": 1},
            ],
            "required_evidence": [
                {"type": "slides", "label": "Slides", "required": True},
                {"type": "feedback", "label": "Audience feedback", "required": True},
            ],
            "minimum_bar": {"avg_on_5": 3},
            "is_active": True,
        },
    ]
