"""
User management (admin only), plus first-admin bootstrap.

Role combinations are validated by po_tracker.roles.validate_roles: the primary
role must be known, additional roles are staff roles given as separate list
elements, and guest is never combined with anything.
"""

from __future__ import annotations

import logging
from typing import Optional

from .audit import log_action, serialize_model
from .errors import NotFound, PermissionDenied, ValidationError
from .extensions import db
from .models import User
from .roles import Actor, ROLE_ADMIN, require_any_role, validate_roles

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound("User", user_id)
    return user


def list_users() -> list[User]:
    return User.query.order_by(User.display_name.asc(), User.email.asc()).all()


def _new_user(email: str, display_name: str, password: str, role: str, roles=None) -> User:
    email = (email or "").strip().lower()
    display_name = (display_name or "").strip()
    if not email or "@" not in email:
        raise ValidationError("A valid email is required", field="email")
    if not display_name:
        raise ValidationError("Display name is required", field="display_name")
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters", field="password"
        )
    if User.query.filter_by(email=email).first():
        raise ValidationError(f"A user with email {email} already exists", field="email")

    role, extra = validate_roles(role, roles)
    user = User(email=email, display_name=display_name, role=role, roles=extra, is_active=True)
    user.set_password(password)
    return user


def create_user(actor: Actor, data: dict) -> User:
    require_any_role(actor, ROLE_ADMIN, action="manage users")
    user = _new_user(
        data.get("email"),
        data.get("display_name"),
        data.get("password"),
        data.get("role"),
        data.get("roles"),
    )
    db.session.add(user)
    db.session.flush()
    log_action(user, "CREATE", actor=actor, after=serialize_model(user))
    db.session.commit()
    logger.info("User %s created with role %s by %s", user.email, user.role, actor.display_name)
    return user


def update_user(actor: Actor, user_id: int, data: dict) -> User:
    """Change display name, roles or active flag. Admins cannot demote or deactivate themselves."""
    require_any_role(actor, ROLE_ADMIN, action="manage users")
    user = get_user(user_id)
    before = serialize_model(user)

    if "display_name" in data:
        name = (data.get("display_name") or "").strip()
        if not name:
            raise ValidationError("Display name is required", field="display_name")
        user.display_name = name

    if "role" in data or "roles" in data:
        role, extra = validate_roles(data.get("role", user.role), data.get("roles", user.roles))
        if user.id == actor.user_id and ROLE_ADMIN not in ({role} | set(extra)):
            raise PermissionDenied("You cannot remove your own admin role")
        user.role = role
        user.roles = extra

    if "is_active" in data:
        active = bool(data.get("is_active"))
        if user.id == actor.user_id and not active:
            raise PermissionDenied("You cannot deactivate your own account")
        user.is_active = active

    db.session.flush()
    log_action(user, "UPDATE", actor=actor, before=before, after=serialize_model(user))
    db.session.commit()
    return user


def create_admin(email: str, display_name: str, password: str) -> User:
    """CLI helper: create an admin without an acting user."""
    user = _new_user(email, display_name, password, ROLE_ADMIN)
    db.session.add(user)
    db.session.commit()
    logger.info("Admin %s created", user.email)
    return user


def seed_first_admin(email: str, display_name: str, password: str) -> Optional[User]:
    """Create the first admin only while no user exists; returns None otherwise."""
    if User.query.first() is not None:
        return None
    return create_admin(email, display_name, password)
