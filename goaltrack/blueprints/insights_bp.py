"""
Insights Blueprint — leader / manager analytics.

Endpoints:
    GET    /api/v1/insights?year=&team_id=&user_id=&weeks=&now=
    POST   /api/v1/insights/progress-snapshots     capture weekly progress history
           Body: { "year": 2025, "team_id": optional, "snapshot_date": optional }
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from goaltrack.core.exceptions import DomainError
from goaltrack.models.goal import Goal
from goaltrack.services.insight_loader import capture_progress_snapshot, insights_for_scope
from goaltrack.services.insights import InsightWindow
from goaltrack.utils.errors import E, api_domain_error, api_error
from goaltrack.utils.helpers import db_commit_or_error, parse_date, parse_now

logger = logging.getLogger(__name__)

insights_bp = Blueprint("insights", __name__, url_prefix="/api/v1")


def _int_arg(value, name):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"'{name}' must be an integer")


@insights_bp.route("/insights", methods=["GET"])
def get_insights():
    """Aggregated insights for a year, optionally narrowed to a team or member."""
    args = request.args
    if not args.get("year"):
        return api_error(E.VALIDATION_REQUIRED, "year is required")

    cfg = current_app.config
    try:
        year = _int_arg(args.get("year"), "year")
        weeks = _int_arg(args.get("weeks", cfg["INSIGHTS_DEFAULT_WEEKS"]), "weeks")
        now = parse_now(args.get("now"))
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))

    if not 1 <= weeks <= cfg["INSIGHTS_MAX_WEEKS"]:
        return api_error(
            E.VALIDATION_INVALID,
            f"weeks must be between 1 and {cfg['INSIGHTS_MAX_WEEKS']}",
        )

    try:
        window = InsightWindow(
            year=year, now=now, weeks=weeks,
            team_id=args.get("team_id") or None,
            user_id=args.get("user_id") or None,
            top_n=cfg["INSIGHTS_TOP_N"],
        )
        bundle = insights_for_scope(window)
    except DomainError as exc:
        return api_domain_error(exc)
    return jsonify(bundle.to_dict())


@insights_bp.route("/insights/progress-snapshots", methods=["POST"])
def capture_snapshots():
    data = request.get_json(silent=True) or {}
    if not data.get("year"):
        return api_error(E.VALIDATION_REQUIRED, "year is required")
    try:
        year = _int_arg(data.get("year"), "year")
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))

    snapshot_date = parse_date(data.get("snapshot_date")) if data.get("snapshot_date") else None
    if data.get("snapshot_date") and snapshot_date is None:
        return api_error(E.VALIDATION_INVALID, "snapshot_date is not a valid date")
    snapshot_date = snapshot_date or parse_now(None).date()

    query = Goal.query.filter(Goal.year == year)
    if data.get("team_id"):
        query = query.filter(Goal.team_id == data["team_id"])
    count = capture_progress_snapshot(query.all(), snapshot_date)

    err = db_commit_or_error()
    if err:
        return err
    logger.info("Captured %d progress snapshots for %s", count, snapshot_date)
    return jsonify({"captured": count, "snapshot_date": snapshot_date.isoformat()}), 201
