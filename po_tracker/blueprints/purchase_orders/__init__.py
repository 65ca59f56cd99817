"""
Purchase orders blueprint package.

Exposes purchase_orders_bp for app factory registration; routes live in routes.py.
"""

from __future__ import annotations

from .routes import purchase_orders_bp  # noqa: F401
