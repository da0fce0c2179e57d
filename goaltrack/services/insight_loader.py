"""
Insight loader — fetches what ``compute_insights`` consumes.

Transaction policy: ``capture_progress_snapshot`` uses flush(), never commit().

One scope load eager-loads goals → action plans → weekly reports, then
weekly-report presence for the current week comes from a single grouped
query instead of one query per action plan.
"""

from datetime import date

from sqlalchemy import and_, case, func
from sqlalchemy.orm import selectinload

from goaltrack.models import db
from goaltrack.models.goal import ActionPlan, Goal, GoalProgressSnapshot, WeeklyReport
from goaltrack.models.team import User
from goaltrack.models.verification import VerificationRequest
from goaltrack.services.insights import InsightWindow, compute_insights


def load_scope(window: InsightWindow):
    """Goals (with plans and reports) and members for the window's scope."""
    query = (
        Goal.query
        .options(
            selectinload(Goal.owner).selectinload(User.team),
            selectinload(Goal.action_plans).selectinload(ActionPlan.weekly_reports),
        )
        .filter(Goal.year == window.year)
    )
    members_query = User.query.options(selectinload(User.team))
    if window.team_id:
        query = query.filter(Goal.team_id == window.team_id)
        members_query = members_query.filter(User.team_id == window.team_id)
    if window.user_id:
        query = query.filter(Goal.user_id == window.user_id)
        members_query = members_query.filter(User.id == window.user_id)

    goals = query.order_by(Goal.created_at, Goal.id).all()
    members = members_query.order_by(User.email).all()
    return goals, members


def load_weekly_report_stats(plan_ids, week_start: date, week_end: date) -> dict:
    """
    ``{action_plan_id: {"last_report_date", "has_report_in_range"}}`` for
    every id in *plan_ids*; plans without reports map to (None, False).
    """
    plan_ids = list(plan_ids)
    stats = {pid: {"last_report_date": None, "has_report_in_range": False} for pid in plan_ids}
    if not plan_ids:
        return stats

    in_range = case(
        (and_(WeeklyReport.date >= week_start, WeeklyReport.date <= week_end), 1),
        else_=0,
    )
    rows = (
        db.session.query(
            WeeklyReport.action_plan_id,
            func.max(WeeklyReport.date),
            func.sum(in_range),
        )
        .filter(WeeklyReport.action_plan_id.in_(plan_ids))
        .group_by(WeeklyReport.action_plan_id)
        .all()
    )
    for plan_id, last_date, in_range_count in rows:
        stats[plan_id] = {
            "last_report_date": last_date,
            "has_report_in_range": bool(in_range_count),
        }
    return stats


def load_progress_history(goal_ids, as_of: date) -> dict:
    """``{goal_id: [{"snapshot_date", "progress"}, ...]}`` up to *as_of*, oldest first."""
    goal_ids = list(goal_ids)
    if not goal_ids:
        return {}
    rows = (
        GoalProgressSnapshot.query
        .filter(GoalProgressSnapshot.goal_id.in_(goal_ids))
        .filter(GoalProgressSnapshot.snapshot_date <= as_of)
        .order_by(GoalProgressSnapshot.goal_id, GoalProgressSnapshot.snapshot_date)
        .all()
    )
    history: dict[str, list] = {}
    for row in rows:
        history.setdefault(row.goal_id, []).append(
            {"snapshot_date": row.snapshot_date, "progress": row.progress}
        )
    return history


def capture_progress_snapshot(goals, snapshot_date: date) -> int:
    """
    Record each goal's current progress for *snapshot_date*.

    UPSERT semantics: an existing (goal_id, snapshot_date) row is overwritten.
    Returns the number of goals captured.
    """
    goals = list(goals)
    if not goals:
        return 0
    existing = {
        row.goal_id: row
        for row in GoalProgressSnapshot.query.filter(
            GoalProgressSnapshot.goal_id.in_([g.id for g in goals]),
            GoalProgressSnapshot.snapshot_date == snapshot_date,
        )
    }
    for goal in goals:
        row = existing.get(goal.id)
        if row is not None:
            row.progress = goal.progress or 0
        else:
            db.session.add(GoalProgressSnapshot(
                goal_id=goal.id, snapshot_date=snapshot_date, progress=goal.progress or 0,
            ))
    db.session.flush()
    return len(goals)


def load_verification_requests(goal_ids):
    goal_ids = list(goal_ids)
    if not goal_ids:
        return []
    return VerificationRequest.query.filter(VerificationRequest.goal_id.in_(goal_ids)).all()


def insights_for_scope(window: InsightWindow):
    """Load everything for *window* and run the aggregator."""
    goals, members = load_scope(window)
    goal_ids = [g.id for g in goals]
    plan_ids = [p.id for g in goals for p in g.action_plans]

    stats = load_weekly_report_stats(plan_ids, window.week_start, window.week_end)
    history = load_progress_history(goal_ids, window.today)
    requests = load_verification_requests(goal_ids)

    return compute_insights(
        goals, stats, window,
        progress_history=history or None,
        verification_requests=requests,
        members=members,
    )
