"""
User management (admin only).

- GET   /users
- POST  /users           {"email", "display_name", "password", "role", "roles": [...]}
- PATCH /users/<id>      {"display_name"?, "role"?, "roles"?, "is_active"?}

Audit: CREATE / UPDATE logged by the service.
"""

from flask import Blueprint, jsonify
from flask_login import login_required

from ... import users as user_service
from ...roles import ROLE_ADMIN
from ...security import current_actor, roles_required
from .. import json_body

users_bp = Blueprint("users", __name__, url_prefix="/users")


@users_bp.route("", methods=["GET"])
@login_required
@roles_required(ROLE_ADMIN)
def list_users():
    return jsonify([u.to_dict() for u in user_service.list_users()])


@users_bp.route("", methods=["POST"])
@login_required
@roles_required(ROLE_ADMIN)
def create_user():
    user = user_service.create_user(current_actor(), json_body())
    return jsonify(user.to_dict()), 201


@users_bp.route("/<int:user_id>", methods=["PATCH"])
@login_required
@roles_required(ROLE_ADMIN)
def update_user(user_id: int):
    user = user_service.update_user(current_actor(), user_id, json_body())
    return jsonify(user.to_dict())
