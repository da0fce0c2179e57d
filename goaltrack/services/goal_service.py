"""Goal service layer: payload validation, creation and weekly reports.

Transaction policy: functions use flush() for ID generation, never commit().
Caller (route handler) is responsible for db.session.commit().

Operations:
- Field cleaners for goal / action plan / weekly report payloads
- Deadline derivation from a duration type (quarter / half_year)
- Goal and action plan creation (unlocked, never reviewed)
- Weekly report creation and leader feedback amendment

Review / lock transitions live in ``goaltrack.services.review_lifecycle``;
the cleaners here are shared with its ``edit`` command.
"""

from __future__ import annotations

import calendar
import logging
from datetime import date, timedelta

from goaltrack.core.exceptions import InvalidTransition, ValidationError
from goaltrack.models import db
from goaltrack.models.audit import write_audit
from goaltrack.models.goal import (
    ACTION_PLAN_STATUSES,
    GOAL_CLOSED_STATUSES,
    GOAL_DURATION_TYPES,
    GOAL_STATUSES,
    GOAL_TYPES,
    GOAL_UNSTARTED_STATUSES,
    ActionPlan,
    Goal,
    WeeklyReport,
)
from goaltrack.services.permission import check_permission
from goaltrack.utils.helpers import parse_date

logger = logging.getLogger(__name__)

GOAL_TEXT_FIELDS = (
    "name", "skill", "specific", "measurable", "achievable", "relevant",
    "success_metric", "risk", "dependencies", "notes",
)

ACTION_PLAN_TEXT_FIELDS = ("activity", "owner", "resources", "expected_outcome", "evidence_link")

WEEKLY_REPORT_TEXT_FIELDS = ("summary", "work_done", "blockers_challenges", "next_week_plan")


# ── Field cleaners ───────────────────────────────────────────────────────


def _clean_text(value):
    if isinstance(value, str):
        return value.strip()
    return "" if value is None else str(value)


def _coerce_percent(value, field_name: str, errors: dict):
    """Integer in [0, 100]; bools and fractional numbers are rejected."""
    message = f"{field_name} must be an integer between 0 and 100"
    if isinstance(value, bool):
        errors[field_name] = message
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        errors[field_name] = message
        return None
    if number != number or number != int(number) or not 0 <= number <= 100:
        errors[field_name] = message
        return None
    return int(number)


def _coerce_date(value, field_name: str, errors: dict, *, required: bool = False):
    if value in (None, ""):
        if required:
            errors[field_name] = f"{field_name} is required"
        return None
    parsed = parse_date(value)
    if parsed is None:
        errors[field_name] = f"{field_name} is not a valid date (YYYY-MM-DD)"
    return parsed


def _check_window(start: date | None, end: date | None, end_field: str, errors: dict):
    if start and end and end < start:
        errors[end_field] = f"{end_field} must be on or after start_date"


def _check_choice(data: dict, field_name: str, choices, cleaned: dict, errors: dict):
    if field_name not in data:
        return
    if data[field_name] not in choices:
        errors[field_name] = f"{field_name} must be one of {sorted(choices)}"
    else:
        cleaned[field_name] = data[field_name]


def clean_goal_fields(data: dict, *, current=None, creating: bool = False) -> dict:
    """Validate the goal fields present in *data* and return coerced values.

    ``current`` is the goal being edited; its dates are used to check the
    start / deadline ordering when only one side changes. Keys that are not
    goal fields are ignored.
    """
    errors: dict[str, str] = {}
    cleaned: dict = {}

    for field_name in GOAL_TEXT_FIELDS:
        if field_name in data:
            cleaned[field_name] = _clean_text(data[field_name])

    if creating and not cleaned.get("name"):
        errors["name"] = "Goal title is required"
    elif "name" in cleaned and not cleaned["name"]:
        errors["name"] = "Goal title cannot be empty"

    _check_choice(data, "type", GOAL_TYPES, cleaned, errors)
    _check_choice(data, "duration_type", GOAL_DURATION_TYPES, cleaned, errors)
    _check_choice(data, "status", GOAL_STATUSES, cleaned, errors)

    for field_name in ("progress", "weight"):
        if field_name in data:
            value = _coerce_percent(data[field_name], field_name, errors)
            if value is not None:
                cleaned[field_name] = value

    if "year" in data:
        try:
            cleaned["year"] = int(data["year"])
        except (TypeError, ValueError):
            errors["year"] = "year must be an integer"

    if creating or "start_date" in data:
        cleaned["start_date"] = _coerce_date(
            data.get("start_date"), "start_date", errors, required=True)
    if creating or "time_bound" in data:
        cleaned["time_bound"] = _coerce_date(
            data.get("time_bound"), "time_bound", errors, required=True)

    start = cleaned.get("start_date", getattr(current, "start_date", None))
    end = cleaned.get("time_bound", getattr(current, "time_bound", None))
    _check_window(start, end, "time_bound", errors)

    if errors:
        raise ValidationError("Invalid goal fields", details=errors)
    return cleaned


def clean_action_plan_fields(data: dict, *, current=None, creating: bool = False) -> dict:
    """Validate the action plan fields present in *data*."""
    errors: dict[str, str] = {}
    cleaned: dict = {}

    for field_name in ACTION_PLAN_TEXT_FIELDS:
        if field_name in data:
            cleaned[field_name] = _clean_text(data[field_name])

    if creating and not cleaned.get("activity"):
        errors["activity"] = "activity is required"
    elif "activity" in cleaned and not cleaned["activity"]:
        errors["activity"] = "activity cannot be empty"

    _check_choice(data, "status", ACTION_PLAN_STATUSES, cleaned, errors)

    if creating or "start_date" in data:
        cleaned["start_date"] = _coerce_date(
            data.get("start_date"), "start_date", errors, required=True)
    if creating or "end_date" in data:
        cleaned["end_date"] = _coerce_date(
            data.get("end_date"), "end_date", errors, required=True)

    start = cleaned.get("start_date", getattr(current, "start_date", None))
    end = cleaned.get("end_date", getattr(current, "end_date", None))
    _check_window(start, end, "end_date", errors)

    if errors:
        raise ValidationError("Invalid action plan fields", details=errors)
    return cleaned


def clean_weekly_report_fields(data: dict) -> dict:
    errors: dict[str, str] = {}
    cleaned: dict = {"date": _coerce_date(data.get("date"), "date", errors, required=True)}
    for field_name in WEEKLY_REPORT_TEXT_FIELDS:
        cleaned[field_name] = _clean_text(data.get(field_name))

    if not (cleaned["summary"] or cleaned["work_done"]):
        errors["summary"] = "A weekly report needs a summary or work done"

    if errors:
        raise ValidationError("Invalid weekly report", details=errors)
    return cleaned


# ── Deadline derivation ──────────────────────────────────────────────────


def compute_deadline(duration_type: str, start: date) -> date:
    """Deadline implied by a duration type.

    quarter    → last day of the calendar quarter containing *start*
    half_year  → start + 6 months - 1 day (day clamped to the target month)
    """
    if start is None:
        raise ValidationError("start_date is required", details={"start_date": "required"})
    if duration_type == "quarter":
        last_month = ((start.month - 1) // 3 + 1) * 3
        return date(start.year, last_month, calendar.monthrange(start.year, last_month)[1])
    if duration_type == "half_year":
        month_index = start.month - 1 + 6
        year, month = start.year + month_index // 12, month_index % 12 + 1
        day = min(start.day, calendar.monthrange(year, month)[1])
        return date(year, month, day) - timedelta(days=1)
    raise ValidationError(
        f"Unknown duration_type: {duration_type}",
        details={"duration_type": f"must be one of {sorted(GOAL_DURATION_TYPES)}"},
    )


# ── Creation ─────────────────────────────────────────────────────────────


def create_goal(actor, data: dict) -> Goal:
    """Create a goal owned by *actor*.

    ``time_bound`` is derived from ``duration_type`` when omitted; ``year``
    defaults to the start year. New goals start as ``not_started`` (or
    ``draft`` when asked) and are unlocked with no review status.

    Returns:
        Goal instance (already flushed).
    """
    data = dict(data or {})
    status = data.pop("status", None) or "not_started"
    if status not in GOAL_UNSTARTED_STATUSES:
        raise ValidationError(
            "A new goal must start as draft or not_started",
            details={"status": f"must be one of {sorted(GOAL_UNSTARTED_STATUSES)}"},
        )

    if not data.get("time_bound") and data.get("start_date"):
        start = parse_date(data["start_date"])
        if start is not None:
            data["time_bound"] = compute_deadline(data.get("duration_type") or "quarter", start)

    cleaned = clean_goal_fields(data, creating=True)
    cleaned.setdefault("year", cleaned["start_date"].year)

    goal = Goal(
        user_id=actor.id,
        team_id=getattr(actor, "team_id", None),
        status=status,
        is_locked=False,
        review_status=None,
        **cleaned,
    )
    db.session.add(goal)
    db.session.flush()

    write_audit(
        entity_type="goal", entity_id=goal.id, action="goal.create",
        actor=actor.id, diff={"status": {"old": None, "new": status}},
    )
    logger.info("Goal created: %s", goal.id, extra={"goal_id": goal.id, "user_id": actor.id})
    return goal


def create_action_plan(goal: Goal, actor, data: dict) -> ActionPlan:
    """Add an action plan to an open goal owned by *actor*.

    Returns:
        ActionPlan instance (already flushed).
    """
    check_permission(actor, "create_action_plan", goal)
    if goal.status in GOAL_CLOSED_STATUSES:
        raise InvalidTransition(
            "goal", goal.id, "create_action_plan", f"goal is {goal.status}")

    cleaned = clean_action_plan_fields(data or {}, creating=True)
    cleaned.setdefault("status", "not_started")

    plan = ActionPlan(
        goal_id=goal.id,
        is_locked=False,
        review_status=None,
        deadline_change_count=0,
        **cleaned,
    )
    goal.action_plans.append(plan)
    db.session.add(plan)
    db.session.flush()

    write_audit(
        entity_type="action_plan", entity_id=plan.id, action="action_plan.create",
        actor=actor.id, diff={"goal_id": {"old": None, "new": goal.id}},
    )
    logger.info("Action plan created: %s", plan.id,
                extra={"goal_id": goal.id, "action_plan_id": plan.id})
    return plan


# ── Weekly reports ───────────────────────────────────────────────────────


def create_weekly_report(plan: ActionPlan, actor, data: dict) -> WeeklyReport:
    """Log a weekly report against *plan*. Reports are immutable afterwards."""
    check_permission(actor, "create_weekly_report", plan)
    cleaned = clean_weekly_report_fields(data or {})

    report = WeeklyReport(action_plan_id=plan.id, **cleaned)
    plan.weekly_reports.append(report)
    db.session.add(report)
    db.session.flush()

    write_audit(
        entity_type="weekly_report", entity_id=report.id, action="weekly_report.create",
        actor=actor.id, diff={"date": {"old": None, "new": cleaned["date"]}},
    )
    return report


def amend_lead_feedback(report: WeeklyReport, actor, feedback) -> WeeklyReport:
    """Set the leader's feedback; the only field of a report that may change."""
    check_permission(actor, "lead_feedback")
    old = report.lead_feedback
    report.lead_feedback = _clean_text(feedback) or None
    db.session.flush()

    write_audit(
        entity_type="weekly_report", entity_id=report.id, action="weekly_report.lead_feedback",
        actor=actor.id, diff={"lead_feedback": {"old": old, "new": report.lead_feedback}},
    )
    return report
