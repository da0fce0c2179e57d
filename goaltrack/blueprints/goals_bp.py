"""
Goals Blueprint.

Endpoints:
    GET    /api/v1/goals?year=&user_id=&team_id=&status=   list goals (paginated)
    POST   /api/v1/goals                               create a goal
    GET    /api/v1/goals/<id>                          goal + action plans + review state
    POST   /api/v1/goals/<id>/transitions              review lifecycle command
           Body: { "command": "...", "actor_id": "...", "payload": {...} }
    GET    /api/v1/goals/<id>/health?now=              health tier
    POST   /api/v1/goals/<id>/action-plans             add an action plan
    POST   /api/v1/goals/<id>/verification-requests    request skill verification

Layer contract:
    - Blueprint: parse input, resolve actor, call service, commit, return JSON.
    - Business rules (locks, ownership, scopes) live in the services.
"""

import logging

from flask import Blueprint, jsonify, request

from goaltrack.blueprints import paginate_query
from goaltrack.core.exceptions import DomainError
from goaltrack.models import db
from goaltrack.models.goal import Goal
from goaltrack.services import goal_service, rubric
from goaltrack.services.health import assess_goal
from goaltrack.services.review_lifecycle import apply_goal_transition, describe_review
from goaltrack.utils.errors import E, api_domain_error, api_error
from goaltrack.utils.helpers import db_commit_or_error, get_or_404, parse_now, resolve_actor

logger = logging.getLogger(__name__)

goals_bp = Blueprint("goals", __name__, url_prefix="/api/v1")


def _goal_payload(goal: Goal, include_children=False) -> dict:
    return {**goal.to_dict(include_children=include_children), **describe_review(goal)}


@goals_bp.route("/goals", methods=["GET"])
def list_goals():
    query = Goal.query
    for field in ("user_id", "team_id", "status"):
        if request.args.get(field):
            query = query.filter(getattr(Goal, field) == request.args[field])
    if request.args.get("year"):
        try:
            query = query.filter(Goal.year == int(request.args["year"]))
        except ValueError:
            return api_error(E.VALIDATION_INVALID, "year must be an integer")

    items, total = paginate_query(query.order_by(Goal.start_date, Goal.created_at))
    return jsonify({"items": [_goal_payload(g) for g in items], "total": total})


@goals_bp.route("/goals", methods=["POST"])
def create_goal():
    data = request.get_json(silent=True) or {}
    actor, err = resolve_actor(data.pop("actor_id", None))
    if err:
        return err

    try:
        goal = goal_service.create_goal(actor, data)
    except DomainError as exc:
        db.session.rollback()
        return api_domain_error(exc)

    err = db_commit_or_error()
    if err:
        return err
    return jsonify(_goal_payload(goal)), 201


@goals_bp.route("/goals/<goal_id>", methods=["GET"])
def get_goal(goal_id):
    goal, err = get_or_404(Goal, goal_id)
    if err:
        return err
    return jsonify(_goal_payload(goal, include_children=True))


@goals_bp.route("/goals/<goal_id>/transitions", methods=["POST"])
def transition_goal(goal_id):
    """Run one review lifecycle command.

    409 on an invalid transition, 403 on ownership / role, 422 on bad payload.
    ``delete`` removes the goal once the lifecycle allows it.
    """
    goal, err = get_or_404(Goal, goal_id)
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
        apply_goal_transition(goal, command, actor, data.get("payload") or {}, now=now)
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))
    except DomainError as exc:
        db.session.rollback()
        return api_domain_error(exc)

    if command == "delete":
        db.session.delete(goal)
        err = db_commit_or_error()
        if err:
            return err
        return jsonify({"deleted": True, "id": goal_id})

    err = db_commit_or_error()
    if err:
        return err
    return jsonify(_goal_payload(goal))


@goals_bp.route("/goals/<goal_id>/health", methods=["GET"])
def goal_health(goal_id):
    goal, err = get_or_404(Goal, goal_id)
    if err:
        return err
    try:
        now = parse_now(request.args.get("now"))
        assessment = assess_goal(goal, now)
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))
    except DomainError as exc:
        return api_domain_error(exc)
    return jsonify({"goal_id": goal.id, "now": now.isoformat(), **assessment.to_dict()})


@goals_bp.route("/goals/<goal_id>/action-plans", methods=["POST"])
def create_action_plan(goal_id):
    goal, err = get_or_404(Goal, goal_id)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    actor, err = resolve_actor(data.pop("actor_id", None))
    if err:
        return err

    try:
        plan = goal_service.create_action_plan(goal, actor, data)
    except DomainError as exc:
        db.session.rollback()
        return api_domain_error(exc)

    err = db_commit_or_error()
    if err:
        return err
    return jsonify({**plan.to_dict(), **describe_review(plan)}), 201


@goals_bp.route("/goals/<goal_id>/verification-requests", methods=["POST"])
def create_verification_request(goal_id):
    goal, err = get_or_404(Goal, goal_id)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    actor, err = resolve_actor(data.pop("actor_id", None))
    if err:
        return err

    try:
        vr = rubric.submit_verification_request(actor, goal, data)
    except DomainError as exc:
        db.session.rollback()
        return api_domain_error(exc)

    err = db_commit_or_error()
    if err:
        return err
    return jsonify(vr.to_dict()), 201
