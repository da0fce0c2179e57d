"""
Shared pytest fixtures for the Goal Tracking test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - team, member, other_member, leader: committed users
    - goal, plan: committed goal and action plan owned by ``member``
"""

from datetime import date

import pytest

from goaltrack import create_app
from goaltrack.models import db as _db
from goaltrack.models.goal import ActionPlan, Goal
from goaltrack.models.team import Team, User


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── ORM factories ────────────────────────────────────────────────────────


def make_team(name="Platform"):
    t = Team(name=name)
    _db.session.add(t)
    _db.session.flush()
    return t


def make_user(email, role="member", team=None, name=None):
    u = User(email=email, name=name or email.split("@")[0], role=role,
             team_id=team.id if team else None)
    _db.session.add(u)
    _db.session.flush()
    return u


def make_goal(user, **kw):
    """Goal row at any state (bypasses the creation rules)."""
    g = Goal(
        user_id=user.id,
        team_id=kw.pop("team_id", user.team_id),
        year=kw.pop("year", 2025),
        name=kw.pop("name", "Ship the billing service"),
        start_date=kw.pop("start_date", date(2025, 1, 1)),
        time_bound=kw.pop("time_bound", date(2025, 3, 31)),
        status=kw.pop("status", "not_started"),
        progress=kw.pop("progress", 0),
        is_locked=kw.pop("is_locked", False),
        review_status=kw.pop("review_status", None),
        **kw,
    )
    _db.session.add(g)
    _db.session.flush()
    return g


def make_plan(goal, **kw):
    p = ActionPlan(
        goal_id=goal.id,
        activity=kw.pop("activity", "Write the integration tests"),
        start_date=kw.pop("start_date", date(2025, 1, 6)),
        end_date=kw.pop("end_date", date(2025, 2, 28)),
        status=kw.pop("status", "not_started"),
        is_locked=kw.pop("is_locked", False),
        review_status=kw.pop("review_status", None),
        deadline_change_count=kw.pop("deadline_change_count", 0),
        **kw,
    )
    goal.action_plans.append(p)
    _db.session.add(p)
    _db.session.flush()
    return p


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def team():
    t = make_team()
    _db.session.commit()
    return t


@pytest.fixture()
def member(team):
    u = make_user("ada@example.com", team=team)
    _db.session.commit()
    return u


@pytest.fixture()
def other_member(team):
    u = make_user("linus@example.com", team=team)
    _db.session.commit()
    return u


@pytest.fixture()
def leader(team):
    u = make_user("grace@example.com", role="leader", team=team)
    _db.session.commit()
    return u


@pytest.fixture()
def goal(member):
    g = make_goal(member)
    _db.session.commit()
    return g


@pytest.fixture()
def plan(goal):
    p = make_plan(goal)
    _db.session.commit()
    return p
