"""
Goal Tracking Platform
SQLAlchemy extension instance shared by every model module.

Usage:
    from goaltrack.models import db
"""

import uuid
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)
