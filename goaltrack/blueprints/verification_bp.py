"""
Verification Blueprint — rubric scoring and verification request decisions.

Endpoints:
    GET    /api/v1/verification-templates               active templates
    GET    /api/v1/verification-requests/<id>           request + effective rubric + evidence
    POST   /api/v1/verification-requests/<id>/review    leader decision
           Body: { "actor_id", "result": "pass|needs_work|fail", "scores": {...}, "leader_feedback" }
    POST   /api/v1/verification-requests/<id>/cancel    owner withdraws
           Body: { "actor_id" }
    POST   /api/v1/rubric/score                         stateless score preview
           Body: { "criteria": [...], "scores": {...} }

Requests are created from the goals blueprint.
"""

import logging

from flask import Blueprint, jsonify, request

from goaltrack.core.exceptions import DomainError
from goaltrack.models import db
from goaltrack.models.verification import VerificationRequest, VerificationTemplate
from goaltrack.services import rubric
from goaltrack.utils.errors import E, api_domain_error, api_error
from goaltrack.utils.helpers import db_commit_or_error, get_or_404, parse_now, resolve_actor

logger = logging.getLogger(__name__)

verification_bp = Blueprint("verification", __name__, url_prefix="/api/v1")


@verification_bp.route("/verification-templates", methods=["GET"])
def list_templates():
    templates = (
        VerificationTemplate.query
        .filter_by(is_active=True)
        .order_by(VerificationTemplate.name)
        .all()
    )
    return jsonify([t.to_dict() for t in templates])


@verification_bp.route("/verification-requests/<request_id>", methods=["GET"])
def get_verification_request(request_id):
    vr, err = get_or_404(VerificationRequest, request_id, label="Verification request")
    if err:
        return err
    rubric_view = rubric.effective_rubric(vr)
    return jsonify({
        **vr.to_dict(include_reviews=True),
        "effective_rubric": rubric_view,
        "evidence": rubric.evidence_checklist(rubric_view["required_evidence"], vr.evidence_links),
    })


@verification_bp.route("/verification-requests/<request_id>/review", methods=["POST"])
def review_verification_request(request_id):
    vr, err = get_or_404(VerificationRequest, request_id, label="Verification request")
    if err:
        return err
    data = request.get_json(silent=True) or {}
    actor, err = resolve_actor(data.get("actor_id"))
    if err:
        return err
    if not data.get("result"):
        return api_error(E.VALIDATION_REQUIRED, "result is required")

    try:
        now = parse_now(data.get("now"))
        review = rubric.review_verification_request(
            vr, actor, data.get("result"),
            scores=data.get("scores"),
            feedback=data.get("leader_feedback"),
            now=now,
        )
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))
    except DomainError as exc:
        db.session.rollback()
        return api_domain_error(exc)

    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"request": vr.to_dict(), "review": review.to_dict()}), 201


@verification_bp.route("/verification-requests/<request_id>/cancel", methods=["POST"])
def cancel_verification_request(request_id):
    vr, err = get_or_404(VerificationRequest, request_id, label="Verification request")
    if err:
        return err
    data = request.get_json(silent=True) or {}
    actor, err = resolve_actor(data.get("actor_id"))
    if err:
        return err

    try:
        rubric.cancel_verification_request(vr, actor)
    except DomainError as exc:
        db.session.rollback()
        return api_domain_error(exc)

    err = db_commit_or_error()
    if err:
        return err
    return jsonify(vr.to_dict())


@verification_bp.route("/rubric/score", methods=["POST"])
def score():
    data = request.get_json(silent=True) or {}
    try:
        result = rubric.score_rubric(data.get("criteria") or [], data.get("scores") or {})
    except DomainError as exc:
        return api_domain_error(exc)
    return jsonify(result)
