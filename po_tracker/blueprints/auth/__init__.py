"""
Auth blueprint package.

Exposes auth_bp for app factory registration; routes live in routes.py.
"""

from __future__ import annotations

from .routes import auth_bp  # noqa: F401
