"""
Health / risk evaluation for goals and action plans.

Compares where an entity should be by now (share of its schedule elapsed)
with where it is (goal progress, or a status-based stand-in for action plans)
and labels the gap as on_track / at_risk / high_risk.

All thresholds live in HEALTH_THRESHOLDS. ``now`` is always passed in.

Usage:
    from goaltrack.services.health import evaluate_goal_health

    tier = evaluate_goal_health(goal, now)           # HealthTier.AT_RISK
    assess_action_plan(plan, plan.weekly_reports, now).to_dict()
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any

from goaltrack.core.exceptions import DivisionEdgeCase, ValidationError
from goaltrack.utils.helpers import parse_date


class HealthTier(str, Enum):
    ON_TRACK = "on_track"
    AT_RISK = "at_risk"
    HIGH_RISK = "high_risk"


HEALTH_THRESHOLDS: dict[str, Any] = {
    # Gap between expected and actual progress, in percentage points
    "high_risk_gap": 20,
    "at_risk_gap": 10,

    # Stale weekly report penalty (action plans only)
    "stale_report_days": 14,
    "stale_report_penalty": 10,
    "stale_min_expected_pct": 20,

    # Action plans carry no numeric progress; status stands in for it
    "status_progress": {
        "in_progress": 50,
        "blocked": 20,
        "not_started": 0,
    },
}


@dataclass
class HealthAssessment:
    """A tier plus the numbers that produced it."""
    tier: HealthTier
    expected_progress: int | None = None
    actual_progress: int | None = None
    reason: str | None = None
    notes: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "tier": self.tier.value,
            "expected_progress": self.expected_progress,
            "actual_progress": self.actual_progress,
            "reason": self.reason,
            "notes": self.notes,
        }


# ── Helpers ──────────────────────────────────────────────────────────────


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _as_datetime(value) -> datetime:
    """Dates become midnight UTC; naive datetimes are taken as UTC."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _require_date(entity, field_name: str) -> date:
    value = parse_date(getattr(entity, field_name, None))
    if value is None:
        raise ValidationError(
            f"{field_name} is missing or malformed",
            details={"field": field_name, "entity_id": getattr(entity, "id", None)},
        )
    return value


def expected_progress(start, end, now, notes: list | None = None) -> int:
    """Share of the [start, end] window elapsed at *now*, as 0-100.

    A zero or negative window counts as fully elapsed once *now* reaches the
    end and not at all before.
    """
    start_dt, end_dt, now_dt = _as_datetime(start), _as_datetime(end), _as_datetime(now)
    total = (end_dt - start_dt).total_seconds()
    if total <= 0:
        if notes is not None:
            notes.append(DivisionEdgeCase(
                "Schedule window has no length",
                details={"start": start_dt.isoformat(), "end": end_dt.isoformat()},
            ).to_dict())
        return 100 if now_dt >= end_dt else 0
    elapsed = (now_dt - start_dt).total_seconds()
    return max(0, min(100, round_half_up(elapsed / total * 100)))


def classify_gap(actual: int, expected: int) -> HealthTier:
    if actual < expected - HEALTH_THRESHOLDS["high_risk_gap"]:
        return HealthTier.HIGH_RISK
    if actual < expected - HEALTH_THRESHOLDS["at_risk_gap"]:
        return HealthTier.AT_RISK
    return HealthTier.ON_TRACK


def _report_date(report):
    raw = report.get("date") if isinstance(report, dict) else getattr(report, "date", None)
    return parse_date(raw)


def last_report_date(weekly_reports) -> date | None:
    dates = [d for d in (_report_date(r) for r in weekly_reports or []) if d is not None]
    return max(dates) if dates else None


# ── Goal ─────────────────────────────────────────────────────────────────


def goal_progress(goal) -> int:
    """Stored progress as an int in 0-100; unset counts as 0."""
    value = getattr(goal, "progress", None)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 100:
        raise ValidationError(
            "progress must be an integer between 0 and 100",
            details={"field": "progress", "entity_id": getattr(goal, "id", None)},
        )
    return value


def assess_goal(goal, now) -> HealthAssessment:
    start = _require_date(goal, "start_date")
    end = _require_date(goal, "time_bound")
    actual = goal_progress(goal)
    notes: list[dict] = []
    expected = expected_progress(start, end, now, notes)
    return HealthAssessment(
        tier=classify_gap(actual, expected),
        expected_progress=expected,
        actual_progress=actual,
        notes=notes,
    )


def evaluate_goal_health(goal, now) -> HealthTier:
    """Tier for a goal: progress against the elapsed share of start_date → time_bound."""
    return assess_goal(goal, now).tier


# ── Action plan ──────────────────────────────────────────────────────────


def assess_action_plan(plan, weekly_reports, now) -> HealthAssessment:
    """
    1. completed → on_track; end_date before today → high_risk
    2. status-based progress, minus the stale penalty when the latest report
       is older than the stale window and the plan should be past the
       minimum expected share
    3. same gap thresholds as goals
    """
    if plan.status == "completed":
        return HealthAssessment(tier=HealthTier.ON_TRACK, reason="completed")

    start = _require_date(plan, "start_date")
    end = _require_date(plan, "end_date")
    now_dt = _as_datetime(now)
    if end < now_dt.date():
        return HealthAssessment(tier=HealthTier.HIGH_RISK, reason="overdue")

    notes: list[dict] = []
    expected = expected_progress(start, end, now_dt, notes)
    status_progress = HEALTH_THRESHOLDS["status_progress"].get(plan.status, 0)

    penalty = 0
    last = last_report_date(weekly_reports)
    if last is not None:
        days_since = math.floor((now_dt - _as_datetime(last)).total_seconds() / 86400)
        if (days_since > HEALTH_THRESHOLDS["stale_report_days"]
                and expected > HEALTH_THRESHOLDS["stale_min_expected_pct"]):
            penalty = HEALTH_THRESHOLDS["stale_report_penalty"]
    effective = max(0, status_progress - penalty)

    return HealthAssessment(
        tier=classify_gap(effective, expected),
        expected_progress=expected,
        actual_progress=effective,
        reason="stale_reports" if penalty else None,
        notes=notes,
    )


def evaluate_action_plan_health(plan, weekly_reports, now) -> HealthTier:
    """Tier for an action plan given its weekly reports."""
    return assess_action_plan(plan, weekly_reports, now).tier
