"""
Budget routes.

- GET   /budgets                 per-org rows + totals (any logged-in user)
- GET   /budgets/export          .xlsx "Budget Summary"
- POST  /budgets                 create sub-organization (admin)
- PATCH /budgets/<id>            update name / allocated / spent (admin)
- POST  /budgets/recalculate     {"include_provisional": bool} (admin)
"""

from flask import Blueprint, jsonify, send_file
from flask_login import login_required

from ... import budgets as budget_service
from ...export import export_budgets
from ...roles import ROLE_ADMIN
from ...security import current_actor, roles_required
from ...utils import utcnow
from .. import json_body

budgets_bp = Blueprint("budgets", __name__, url_prefix="/budgets")


@budgets_bp.route("", methods=["GET"])
@login_required
def list_budgets():
    return jsonify(budget_service.budget_summary())


@budgets_bp.route("/export", methods=["GET"])
@login_required
def export_budget_summary():
    return send_file(
        export_budgets(budget_service.list_sub_orgs()),
        mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        as_attachment=True,
        download_name=f"budget-summary-{utcnow():%Y-%m-%d}.xlsx",
    )


@budgets_bp.route("", methods=["POST"])
@login_required
@roles_required(ROLE_ADMIN)
def create_sub_org():
    data = json_body()
    org = budget_service.create_sub_org(current_actor(), data.get("name"), data.get("budget_allocated"))
    return jsonify(org.to_dict()), 201


@budgets_bp.route("/<int:sub_org_id>", methods=["PATCH"])
@login_required
@roles_required(ROLE_ADMIN)
def update_sub_org(sub_org_id: int):
    org = budget_service.update_sub_org(current_actor(), sub_org_id, json_body())
    return jsonify(org.to_dict())


@budgets_bp.route("/recalculate", methods=["POST"])
@login_required
@roles_required(ROLE_ADMIN)
def recalculate():
    data = json_body()
    budget_service.recalculate_budgets(include_provisional=bool(data.get("include_provisional")))
    return jsonify(budget_service.budget_summary())
