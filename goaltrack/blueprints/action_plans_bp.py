"""
Action Plans Blueprint.

Endpoints:
    GET    /api/v1/action-plans/<id>                  plan + weekly reports + review state
    POST   /api/v1/action-plans/<id>/transitions      review lifecycle / deadline command
           Body: { "command": "...", "actor_id": "...", "payload": {...} }
    GET    /api/v1/action-plans/<id>/health?now=      health tier
    POST   /api/v1/action-plans/<id>/weekly-reports   log a weekly report
    POST   /api/v1/weekly-reports/<id>/lead-feedback  leader feedback on a report
"""

import logging

from flask import Blueprint, jsonify, request

from goaltrack.core.exceptions import DomainError
from goaltrack.models import db
from goaltrack.models.goal import ActionPlan, WeeklyReport
from goaltrack.services import goal_service
from goaltrack.services.health import assess_action_plan
from goaltrack.services.review_lifecycle import apply_action_plan_transition, describe_review
from goaltrack.utils.errors import E, api_domain_error, api_error
from goaltrack.utils.helpers import db_commit_or_error, get_or_404, parse_now, resolve_actor

logger = logging.getLogger(__name__)

action_plans_bp = Blueprint("action_plans", __name__, url_prefix="/api/v1")


def _plan_payload(plan: ActionPlan, include_reports=False) -> dict:
    return {**plan.to_dict(include_reports=include_reports), **describe_review(plan)}


@action_plans_bp.route("/action-plans/<plan_id>", methods=["GET"])
def get_action_plan(plan_id):
    plan, err = get_or_404(ActionPlan, plan_id, label="Action plan")
    if err:
        return err
    return jsonify(_plan_payload(plan, include_reports=True))


@action_plans_bp.route("/action-plans/<plan_id>/transitions", methods=["POST"])
def transition_action_plan(plan_id):
    plan, err = get_or_404(ActionPlan, plan_id, label="Action plan")
    if err:
        return err

    data = request.get_json(silent=True) or {}
    command = (data.get("command") or "").strip()
    if not command:
        return api_error(E.VALIDATION_REQUIRED, "command is required")
    actor, err = resolve_actor(data.get("actor_id"))
    if err:
        return err

    try:
        now = parse_now(data.get("now"))
        apply_action_plan_transition(plan, command, actor, data.get("payload") or {}, now=now)
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))
    except DomainError as exc:
        db.session.rollback()
        return api_domain_error(exc)

    err = db_commit_or_error()
    if err:
        return err
    return jsonify(_plan_payload(plan))


@action_plans_bp.route("/action-plans/<plan_id>/health", methods=["GET"])
def action_plan_health(plan_id):
    plan, err = get_or_404(ActionPlan, plan_id, label="Action plan")
    if err:
        return err
    try:
        now = parse_now(request.args.get("now"))
        assessment = assess_action_plan(plan, plan.weekly_reports, now)
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))
    except DomainError as exc:
        return api_domain_error(exc)
    return jsonify({"action_plan_id": plan.id, "now": now.isoformat(), **assessment.to_dict()})


@action_plans_bp.route("/action-plans/<plan_id>/weekly-reports", methods=["POST"])
def create_weekly_report(plan_id):
    plan, err = get_or_404(ActionPlan, plan_id, label="Action plan")
    if err:
        return err
    data = request.get_json(silent=True) or {}
    actor, err = resolve_actor(data.pop("actor_id", None))
    if err:
        return err

    try:
        report = goal_service.create_weekly_report(plan, actor, data)
    except DomainError as exc:
        db.session.rollback()
        return api_domain_error(exc)

    err = db_commit_or_error()
    if err:
        return err
    return jsonify(report.to_dict()), 201


@action_plans_bp.route("/weekly-reports/<report_id>/lead-feedback", methods=["POST"])
def lead_feedback(report_id):
    report, err = get_or_404(WeeklyReport, report_id, label="Weekly report")
    if err:
        return err
    data = request.get_json(silent=True) or {}
    actor, err = resolve_actor(data.get("actor_id"))
    if err:
        return err

    try:
        goal_service.amend_lead_feedback(report, actor, data.get("lead_feedback"))
    except DomainError as exc:
        db.session.rollback()
        return api_domain_error(exc)

    err = db_commit_or_error()
    if err:
        return err
    return jsonify(report.to_dict())
