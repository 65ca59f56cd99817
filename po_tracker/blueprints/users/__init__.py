"""
Users blueprint package.

Exposes users_bp for app factory registration; routes live in routes.py.
"""

from __future__ import annotations

from .routes import users_bp  # noqa: F401
