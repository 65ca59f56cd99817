"""
Access control at the HTTP boundary.

Key rules:
- The UI is never trusted; every permission check is server-side.
- Routes convert Flask-Login's current_user into an explicit Actor and hand it
  to the core, which re-checks roles on its own.
- guest_readonly_guard() blocks POST/PUT/PATCH/DELETE for guests.
  Wire it via app.before_request in the app factory.
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable

from flask import request
from flask_login import current_user

from .errors import PermissionDenied
from .roles import Actor, ROLE_GUEST, require_any_role

MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

# Mutating endpoints a guest may still call
GUEST_ALLOWED_ENDPOINTS = {
    "auth.login",
    "auth.logout",
    "notifications.mark_read",
    "notifications.mark_all_read",
}


def current_actor() -> Actor:
    """Build the Actor for the logged-in user (login_required must run first)."""
    return Actor(
        user_id=current_user.id,
        display_name=current_user.display_name,
        role=current_user.role,
        roles=frozenset(current_user.roles or []),
    )


def guest_readonly_guard() -> None:
    """Global guard: guests cannot mutate data."""
    if request.method not in MUTATING_METHODS:
        return None
    if not current_user.is_authenticated:
        return None
    if current_user.role != ROLE_GUEST:
        return None
    if (request.endpoint or "").strip() in GUEST_ALLOWED_ENDPOINTS:
        return None
    raise PermissionDenied("Guest access is read-only")


def roles_required(*role_names: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Decorator factory: the current user must hold at least one of ``role_names``.

    Usage:
        @bp.route("/users")
        @login_required
        @roles_required(ROLE_ADMIN)
        def list_users(): ...
    """
    def decorator(view_func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view_func)
        def wrapper(*args: Any, **kwargs: Any):
            require_any_role(current_actor(), *role_names, action=f"access {request.path}")
            return view_func(*args, **kwargs)

        return wrapper

    return decorator
