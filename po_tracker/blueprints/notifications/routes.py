"""
Notification routes (derived per request for the logged-in user).

- GET  /notifications
- GET  /notifications/count
- POST /notifications/read       {"ids": [...]}
- POST /notifications/read-all
"""

from flask import Blueprint, jsonify
from flask_login import current_user, login_required

from ... import notifications as notification_service
from ...errors import ValidationError
from .. import json_body

notifications_bp = Blueprint("notifications", __name__, url_prefix="/notifications")


@notifications_bp.route("", methods=["GET"])
@login_required
def list_notifications():
    return jsonify([n.to_dict() for n in notification_service.notifications_for_user(current_user)])


@notifications_bp.route("/count", methods=["GET"])
@login_required
def count():
    return jsonify({"unread": notification_service.unread_count(current_user)})


@notifications_bp.route("/read", methods=["POST"])
@login_required
def mark_read():
    ids = json_body().get("ids")
    if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
        raise ValidationError("ids must be a list of notification ids", field="ids")
    notification_service.mark_read(current_user, ids)
    return jsonify({"unread": notification_service.unread_count(current_user)})


@notifications_bp.route("/read-all", methods=["POST"])
@login_required
def mark_all_read():
    notification_service.mark_all_read(current_user)
    return jsonify({"unread": 0})
