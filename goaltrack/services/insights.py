"""
Insights Engine — leader / manager analytics over goals, action plans and
weekly reports.

Read-only: takes already-loaded entities (see ``insight_loader``) and derives
rollups for a trailing window of N weeks ending with the week containing
``now``. Weeks run Monday 00:00 → Sunday 23:59:59.999999.

Metrics:
  - overdue goals / action plans
  - action plans missing this week's weekly report
  - pending deadline-change requests
  - weekly report activity: reports in window, weeks with activity, streak,
    top blockers
  - evidence rate (completed plans with an evidence link)
  - progress delta against the snapshot one week back
  - goal health distribution, review and verification counts
  - per-member / per-team rollups, top-N boards, weekly activity trends

A malformed entity never aborts the batch: it is listed in ``skipped`` and
left out of the metric it broke.

Usage:
    from goaltrack.services.insights import InsightWindow, compute_insights

    window = InsightWindow(year=2025, now=now, weeks=4, team_id=team.id)
    bundle = compute_insights(goals, report_stats, window, members=users)
    bundle.to_dict()
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from goaltrack.core.exceptions import DomainError, ValidationError
from goaltrack.models.goal import GOAL_CLOSED_STATUSES
from goaltrack.services.health import HealthTier, evaluate_goal_health, goal_progress
from goaltrack.utils.helpers import parse_date

logger = logging.getLogger(__name__)

MISSING_REPORT_PLAN_STATUSES = {"in_progress", "blocked"}

PROGRESS_DELTA_LOOKBACK_DAYS = 7


# ═════════════════════════════════════════════════════════════════════════════
# Week helpers
# ═════════════════════════════════════════════════════════════════════════════

def _aware(value) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    raise ValidationError(f"Not a date or datetime: {value!r}")


def start_of_week(value) -> datetime:
    """Monday 00:00 of the week containing *value*."""
    dt = _aware(value)
    monday = dt - timedelta(days=dt.weekday())
    return monday.replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_week(value) -> datetime:
    """Sunday 23:59:59.999999 of the week containing *value*."""
    return start_of_week(value) + timedelta(days=7, microseconds=-1)


def _safe_ratio(numerator: int, denominator: int) -> float:
    """Zero-safe ratio in [0, 1]."""
    return round(numerator / denominator, 2) if denominator else 0.0


def _avg(values: list) -> float:
    return round(sum(values) / len(values), 1) if values else 0.0


# ═════════════════════════════════════════════════════════════════════════════
# Data classes
# ═════════════════════════════════════════════════════════════════════════════

@dataclass
class InsightWindow:
    """Scope + trailing window. ``weeks`` counts the current week."""
    year: int
    now: datetime
    weeks: int = 4
    team_id: str | None = None
    user_id: str | None = None
    top_n: int = 5

    def __post_init__(self):
        self.now = _aware(self.now)
        if not isinstance(self.weeks, int) or self.weeks < 1:
            raise ValidationError("weeks must be a positive integer", details={"weeks": self.weeks})

    @property
    def today(self) -> date:
        return self.now.date()

    @property
    def week_start(self) -> date:
        return start_of_week(self.now).date()

    @property
    def week_end(self) -> date:
        return end_of_week(self.now).date()

    @property
    def start(self) -> date:
        return self.week_start - timedelta(weeks=self.weeks - 1)

    @property
    def week_starts(self) -> list[date]:
        """Monday of every week in the window, oldest first."""
        return [self.start + timedelta(weeks=i) for i in range(self.weeks)]

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.week_end

    def to_dict(self) -> dict:
        return {"from": self.start.isoformat(), "to": self.week_end.isoformat(), "weeks": self.weeks}


@dataclass
class SkippedEntity:
    entity_type: str
    entity_id: str | None
    metric: str
    kind: str
    message: str

    def to_dict(self) -> dict:
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "metric": self.metric,
            "kind": self.kind,
            "message": self.message,
        }


@dataclass
class InsightBundle:
    """Everything a leader / manager dashboard needs for one scope."""
    window: InsightWindow
    goals: dict = field(default_factory=dict)
    action_plans: dict = field(default_factory=dict)
    weekly_reports: dict = field(default_factory=dict)
    progress_delta: float | None = None
    verifications: dict = field(default_factory=dict)
    overdue_goals: list[dict] = field(default_factory=list)
    overdue_action_plans: list[dict] = field(default_factory=list)
    missing_reports: list[dict] = field(default_factory=list)
    pending_deadline_requests: list[dict] = field(default_factory=list)
    per_member: list[dict] = field(default_factory=list)
    per_team: list[dict] = field(default_factory=list)
    top: dict = field(default_factory=dict)
    trends: dict = field(default_factory=dict)
    skipped: list[SkippedEntity] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "year": self.window.year,
            "team_id": self.window.team_id,
            "user_id": self.window.user_id,
            "window": self.window.to_dict(),
            "goals": self.goals,
            "action_plans": self.action_plans,
            "weekly_reports": self.weekly_reports,
            "progress_delta": self.progress_delta,
            "verifications": self.verifications,
            "overdue_goals": self.overdue_goals,
            "overdue_action_plans": self.overdue_action_plans,
            "missing_reports": self.missing_reports,
            "pending_deadline_requests": self.pending_deadline_requests,
            "per_member": self.per_member,
            "per_team": self.per_team,
            "top": self.top,
            "trends": self.trends,
            "skipped": [s.to_dict() for s in self.skipped],
        }


# ═════════════════════════════════════════════════════════════════════════════
# Internal accumulators
# ═════════════════════════════════════════════════════════════════════════════

class _Skips:
    """Collects per-metric failures instead of raising."""

    def __init__(self):
        self.items: list[SkippedEntity] = []

    def guard(self, entity_type: str, entity, metric: str, fn, *args):
        try:
            return fn(*args)
        except DomainError as exc:
            entity_id = getattr(entity, "id", None)
            self.items.append(SkippedEntity(entity_type, entity_id, metric, exc.kind, exc.message))
            logger.warning("Insights skipped %s %s for %s: %s", entity_type, entity_id, metric,
                           exc.message, extra={f"{entity_type}_id": entity_id})
            return None


def _iso(value) -> str | None:
    day = parse_date(value)
    return day.isoformat() if day else None


def _required_date(entity, field_name: str) -> date:
    value = parse_date(getattr(entity, field_name, None))
    if value is None:
        raise ValidationError(f"{field_name} is missing or malformed")
    return value


def _new_member_bucket(info: dict) -> dict:
    return {
        **info,
        "_progress": [],
        "_report_dates": [],
        "goals": {"total": 0, "approved": 0, "pending": 0, "overdue": 0, "progress_avg": 0.0},
        "action_plans": {
            "total": 0, "overdue": 0, "completed": 0,
            "completed_with_evidence": 0, "evidence_rate": 0.0,
        },
        "weekly_reports": {"reports_in_window": 0, "weeks_with_activity": 0, "streak_weeks": 0},
        "verifications": {"pending": 0, "reviewed": 0},
        "progress_delta": None,
        "_deltas": [],
        "missing_reports": 0,
        "active_this_week": False,
    }


def _member_info(user) -> dict:
    if isinstance(user, dict):
        return {
            "user_id": user.get("id") or user.get("user_id"),
            "name": user.get("name"),
            "email": user.get("email"),
            "team_id": user.get("team_id"),
            "team_name": user.get("team_name"),
        }
    team = getattr(user, "team", None)
    return {
        "user_id": user.id,
        "name": getattr(user, "name", None),
        "email": getattr(user, "email", None),
        "team_id": getattr(user, "team_id", None),
        "team_name": getattr(team, "name", None),
    }


def _goal_member_info(goal) -> dict:
    owner = getattr(goal, "owner", None)
    if owner is not None:
        return _member_info(owner)
    return {"user_id": goal.user_id, "name": None, "email": None,
            "team_id": goal.team_id, "team_name": None}


def _in_scope(goal, window: InsightWindow) -> bool:
    if goal.year != window.year:
        return False
    if window.team_id and goal.team_id != window.team_id:
        return False
    if window.user_id and goal.user_id != window.user_id:
        return False
    return True


def _history_points(points) -> list[tuple[date, int]]:
    result = []
    for p in points or []:
        if isinstance(p, dict):
            raw_date, progress = p.get("snapshot_date"), p.get("progress")
        else:
            raw_date, progress = getattr(p, "snapshot_date", None), getattr(p, "progress", None)
        day = parse_date(raw_date)
        if day is None or progress is None:
            raise ValidationError("Malformed progress snapshot")
        try:
            result.append((day, int(progress)))
        except (TypeError, ValueError) as exc:
            raise ValidationError("Malformed progress snapshot") from exc
    return result


def _goal_progress_delta(goal, points, as_of: date) -> int | None:
    """Current progress minus the latest snapshot at least a week old."""
    baseline_day = as_of - timedelta(days=PROGRESS_DELTA_LOOKBACK_DAYS)
    older = [p for p in _history_points(points) if p[0] <= baseline_day]
    if not older:
        return None
    _, baseline = max(older, key=lambda p: p[0])
    return goal_progress(goal) - baseline


def _streak(report_weeks: set[date], window: InsightWindow) -> int:
    streak = 0
    for week in reversed(window.week_starts):
        if week not in report_weeks:
            break
        streak += 1
    return streak


def _top(members: list[dict], key: str, n: int, *, include=lambda m: True) -> list[dict]:
    """Member rollup rows ranked by *key*, each with the ranked number as ``value``."""
    eligible = [m for m in members if include(m) and m[key] is not None]
    ranked = sorted(eligible, key=lambda m: m[key], reverse=True)
    return [{**m, "value": m[key]} for m in ranked[:n]]


# ═════════════════════════════════════════════════════════════════════════════
# Core aggregation
# ═════════════════════════════════════════════════════════════════════════════

def compute_insights(
    goals,
    weekly_report_stats: dict | None,
    window: InsightWindow,
    *,
    progress_history: dict | None = None,
    verification_requests=None,
    members=None,
) -> InsightBundle:
    """
    Aggregate every insight metric for the goals in *window*'s scope.

    Args:
        goals: Goal rows with ``action_plans`` and their ``weekly_reports``
            reachable (eager-loaded by the caller).
        weekly_report_stats: ``{action_plan_id: {"last_report_date",
            "has_report_in_range"}}`` for the current week; plans missing
            from the map fall back to their nested reports.
        window: scope and trailing window.
        progress_history: ``{goal_id: [snapshot, ...]}``; ``None`` leaves
            ``progress_delta`` unset.
        verification_requests: requests to count, optional.
        members: users in scope; defaults to the owners of *goals*.

    Returns:
        InsightBundle (read-only derivation; inputs are not modified).
    """
    stats = weekly_report_stats or {}
    skips = _Skips()
    today, week_start, week_end = window.today, window.week_start, window.week_end
    bundle = InsightBundle(window=window)

    scoped_goals = [g for g in goals or [] if _in_scope(g, window)]

    # ── Members ──────────────────────────────────────────────────────
    buckets: dict[str, dict] = {}
    for user in members or []:
        info = _member_info(user)
        if window.team_id and info["team_id"] != window.team_id:
            continue
        if window.user_id and info["user_id"] != window.user_id:
            continue
        buckets.setdefault(info["user_id"], _new_member_bucket(info))
    for goal in scoped_goals:
        if goal.user_id not in buckets:
            buckets[goal.user_id] = _new_member_bucket(_goal_member_info(goal))

    # ── Goals, plans, reports ────────────────────────────────────────
    health_counts = {tier.value: 0 for tier in HealthTier}
    org_progress: list[int] = []
    org_plans = {"total": 0, "overdue": 0, "completed": 0, "completed_with_evidence": 0}
    org_report_dates: list[date] = []
    blockers: Counter = Counter()
    deltas: list[int] = []

    for goal in scoped_goals:
        member = buckets[goal.user_id]
        member["goals"]["total"] += 1
        if goal.review_status == "approved":
            member["goals"]["approved"] += 1
        elif goal.review_status == "pending":
            member["goals"]["pending"] += 1
        progress = skips.guard("goal", goal, "progress", goal_progress, goal)
        if progress is not None:
            member["_progress"].append(progress)
            org_progress.append(progress)

        tier = skips.guard("goal", goal, "health", evaluate_goal_health, goal, window.now)
        if tier is not None:
            health_counts[tier.value] += 1

        deadline = skips.guard("goal", goal, "overdue", _required_date, goal, "time_bound")
        if deadline is not None and deadline < today and goal.status not in GOAL_CLOSED_STATUSES:
            member["goals"]["overdue"] += 1
            bundle.overdue_goals.append({
                "goal_id": goal.id, "user_id": goal.user_id, "name": goal.name,
                "time_bound": deadline.isoformat(), "status": goal.status,
            })

        if progress_history is not None and goal.id in progress_history:
            delta = skips.guard("goal", goal, "progress_delta", _goal_progress_delta,
                                goal, progress_history[goal.id], today)
            if delta is not None:
                member["_deltas"].append(delta)
                deltas.append(delta)

        for plan in goal.action_plans or []:
            plans = member["action_plans"]
            plans["total"] += 1
            org_plans["total"] += 1
            if plan.status == "completed":
                plans["completed"] += 1
                org_plans["completed"] += 1
                if (plan.evidence_link or "").strip():
                    plans["completed_with_evidence"] += 1
                    org_plans["completed_with_evidence"] += 1
            else:
                end = skips.guard("action_plan", plan, "overdue", _required_date, plan, "end_date")
                if end is not None and end < today:
                    plans["overdue"] += 1
                    org_plans["overdue"] += 1
                    bundle.overdue_action_plans.append({
                        "action_plan_id": plan.id, "goal_id": goal.id, "user_id": goal.user_id,
                        "end_date": end.isoformat(), "status": plan.status,
                    })

            if plan.request_deadline_date and plan.review_status == "pending":
                bundle.pending_deadline_requests.append({
                    "action_plan_id": plan.id, "goal_id": goal.id, "user_id": goal.user_id,
                    "end_date": _iso(plan.end_date),
                    "request_deadline_date": _iso(plan.request_deadline_date),
                    "deadline_change_count": plan.deadline_change_count or 0,
                })

            reports = list(plan.weekly_reports or [])
            for report in reports:
                day = skips.guard("weekly_report", report, "activity",
                                  _required_date, report, "date")
                if day is None or not window.contains(day):
                    continue
                member["_report_dates"].append(day)
                org_report_dates.append(day)
                text = (report.blockers_challenges or "").strip()
                if text:
                    blockers[text] += 1

            if goal.status == "in_progress" and plan.status in MISSING_REPORT_PLAN_STATUSES:
                start = skips.guard("action_plan", plan, "missing_report",
                                    _required_date, plan, "start_date")
                if start is not None and start <= week_end:
                    plan_stats = stats.get(plan.id)
                    if plan_stats is not None:
                        has_report = bool(plan_stats.get("has_report_in_range"))
                        last = plan_stats.get("last_report_date")
                    else:
                        dates = [parse_date(r.date) for r in reports if parse_date(r.date)]
                        has_report = any(week_start <= d <= week_end for d in dates)
                        last = max(dates) if dates else None
                    if not has_report:
                        member["missing_reports"] += 1
                        bundle.missing_reports.append({
                            "action_plan_id": plan.id, "goal_id": goal.id,
                            "user_id": goal.user_id, "activity": plan.activity,
                            "last_report_date": _iso(last),
                        })

    # ── Verifications ────────────────────────────────────────────────
    verif_counts = {"pending": 0, "reviewed": 0}
    for vr in verification_requests or []:
        status = vr.get("status") if isinstance(vr, dict) else vr.status
        requester = vr.get("requester_id") if isinstance(vr, dict) else vr.requester_id
        if status not in verif_counts:
            continue
        if window.user_id and requester != window.user_id:
            continue
        if requester not in buckets and (window.team_id or window.user_id):
            continue
        verif_counts[status] += 1
        if requester in buckets:
            buckets[requester]["verifications"][status] += 1

    # ── Per-member finalisation ──────────────────────────────────────
    per_member = []
    weekly_active: dict[date, set] = {w: set() for w in window.week_starts}
    for user_id, m in buckets.items():
        report_weeks = {start_of_week(d).date() for d in m["_report_dates"]}
        for w in report_weeks:
            weekly_active.setdefault(w, set()).add(user_id)
        m["weekly_reports"] = {
            "reports_in_window": len(m["_report_dates"]),
            "weeks_with_activity": len(report_weeks),
            "streak_weeks": _streak(report_weeks, window),
        }
        m["active_this_week"] = week_start in report_weeks
        m["goals"]["progress_avg"] = _avg(m["_progress"])
        plans = m["action_plans"]
        plans["evidence_rate"] = _safe_ratio(plans["completed_with_evidence"], plans["completed"])
        m["progress_delta"] = _avg(m["_deltas"]) if m["_deltas"] else None
        m["streak_weeks"] = m["weekly_reports"]["streak_weeks"]
        m["evidence_rate"] = plans["evidence_rate"]
        per_member.append({k: v for k, v in m.items() if not k.startswith("_")})

    # ── Org-level summaries ──────────────────────────────────────────
    org_weeks = {start_of_week(d).date() for d in org_report_dates}
    bundle.goals = {
        "total": len(scoped_goals),
        "approved": sum(m["goals"]["approved"] for m in per_member),
        "pending": sum(m["goals"]["pending"] for m in per_member),
        "overdue": len(bundle.overdue_goals),
        "progress_avg": _avg(org_progress),
        "health": health_counts,
    }
    bundle.action_plans = {
        **org_plans,
        "evidence_rate": _safe_ratio(org_plans["completed_with_evidence"], org_plans["completed"]),
        "missing_report_this_week": len(bundle.missing_reports),
        "pending_deadline_requests": len(bundle.pending_deadline_requests),
    }
    bundle.weekly_reports = {
        "reports_in_window": len(org_report_dates),
        "weeks_with_activity": len(org_weeks),
        "streak_weeks": _streak(org_weeks, window),
        "top_blockers": [
            {"text": text, "count": count} for text, count in blockers.most_common(window.top_n)
        ],
    }
    bundle.progress_delta = _avg(deltas) if deltas else None
    bundle.verifications = verif_counts

    # ── Per-team rollup ──────────────────────────────────────────────
    teams: dict[Any, dict] = {}
    for m in per_member:
        t = teams.setdefault(m["team_id"], {
            "team_id": m["team_id"], "team_name": m["team_name"],
            "members_total": 0, "members_with_goal": 0, "goals_total": 0,
            "_progress": [], "_active": 0, "overdue_action_plans": 0,
            "missing_reports": 0, "verifications_pending": 0,
        })
        t["team_name"] = t["team_name"] or m["team_name"]
        t["members_total"] += 1
        if m["goals"]["total"]:
            t["members_with_goal"] += 1
        t["goals_total"] += m["goals"]["total"]
        t["_progress"].extend(buckets[m["user_id"]]["_progress"])
        t["_active"] += 1 if m["active_this_week"] else 0
        t["overdue_action_plans"] += m["action_plans"]["overdue"]
        t["missing_reports"] += m["missing_reports"]
        t["verifications_pending"] += m["verifications"]["pending"]
    bundle.per_team = [
        {
            **{k: v for k, v in t.items() if not k.startswith("_")},
            "progress_avg": _avg(t["_progress"]),
            "active_rate_this_week": _safe_ratio(t["_active"], t["members_total"]),
        }
        for t in teams.values()
    ]
    bundle.per_member = per_member

    # ── Boards & trends ──────────────────────────────────────────────
    n = window.top_n
    bundle.top = {
        "activity_streak": _top(per_member, "streak_weeks", n),
        "evidence_rate": _top(per_member, "evidence_rate", n,
                              include=lambda m: m["action_plans"]["completed"] > 0),
        "progress_delta": _top(per_member, "progress_delta", n),
    }
    member_count = len(per_member)
    bundle.trends = {
        "weeks": [
            {
                "week": week.isoformat(),
                "active_members": len(weekly_active.get(week, ())),
                "active_rate": _safe_ratio(len(weekly_active.get(week, ())), member_count),
            }
            for week in window.week_starts
        ],
    }

    bundle.skipped = skips.items
    logger.info(
        "Insights computed: year=%s goals=%d members=%d skipped=%d",
        window.year, len(scoped_goals), member_count, len(skips.items),
        extra={"team_id": window.team_id, "user_id": window.user_id},
    )
    return bundle
