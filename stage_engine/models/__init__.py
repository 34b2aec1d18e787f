"""
Stage Lifecycle Engine
Shared SQLAlchemy instance and model helpers.
"""

import uuid

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def new_id() -> str:
    """Opaque primary key for engine records (uuid4 hex)."""
    return uuid.uuid4().hex
