"""
Authentication routes.

Provides:
- POST /auth/login        {"email", "password"}
- POST /auth/logout
- GET  /auth/me
- GET  /auth/csrf-token   token to send back as X-CSRFToken
- POST /auth/seed-admin   first-admin bootstrap, only while no user exists

Rules:
- Only active users may log in.
- Credentials are validated via the password hash.
"""

from flask import Blueprint, jsonify
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf

from ...errors import PermissionDenied, ValidationError
from ...models import User
from ...users import seed_first_admin
from .. import json_body

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


# ============================================================
# LOGIN / LOGOUT
# ============================================================

@auth_bp.route("/login", methods=["POST"])
def login():
    data = json_body()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password):
        raise ValidationError("Invalid email or password")
    if not user.is_active:
        raise PermissionDenied("This account is inactive")

    login_user(user)
    return jsonify(user.to_dict())


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"status": "logged_out"})


@auth_bp.route("/me")
@login_required
def me():
    return jsonify(current_user.to_dict())


@auth_bp.route("/csrf-token")
def csrf_token():
    return jsonify({"csrf_token": generate_csrf()})


# ============================================================
# BOOTSTRAP
# ============================================================

@auth_bp.route("/seed-admin", methods=["POST"])
def seed_admin():
    """Create the first admin. Refused once any user exists."""
    data = json_body()
    user = seed_first_admin(data.get("email"), data.get("display_name"), data.get("password"))
    if user is None:
        raise PermissionDenied("An administrator already exists")
    return jsonify(user.to_dict()), 201
