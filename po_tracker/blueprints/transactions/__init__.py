"""
Transactions blueprint package.

Exposes transactions_bp for app factory registration; routes live in routes.py.
"""

from __future__ import annotations

from .routes import transactions_bp  # noqa: F401
