"""
Dashboard: PO counts, purchased spend, recent activity and the budget summary.
"""

from flask import Blueprint, jsonify
from flask_login import login_required

from ...budgets import budget_summary
from ...purchase_orders import dashboard_stats

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/dashboard")


@dashboard_bp.route("", methods=["GET"])
@login_required
def dashboard():
    data = dashboard_stats()
    data["budgets"] = budget_summary()
    return jsonify(data)
