"""
Stage Lifecycle Engine
Blueprint registry.
"""

from flask import request


def current_actor():
    """Best-effort acting user for attribution (authorization happens upstream)."""
    return (
        request.headers.get("X-User", "")
        or request.headers.get("X-Forwarded-User", "")
        or "system"
    )
