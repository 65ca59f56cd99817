"""
Notifications blueprint package.

Exposes notifications_bp for app factory registration; routes live in routes.py.
"""

from __future__ import annotations

from .routes import notifications_bp  # noqa: F401
