"""
Budgets blueprint package.

Exposes budgets_bp for app factory registration; routes live in routes.py.
"""

from __future__ import annotations

from .routes import budgets_bp  # noqa: F401
