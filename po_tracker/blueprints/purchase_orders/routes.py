"""
Purchase order routes.

- GET    /purchase-orders?mine=1&status=...
- GET    /purchase-orders/queue                       purchaser queue
- GET    /purchase-orders/export                      .xlsx
- GET    /purchase-orders/<id>
- POST   /purchase-orders                             create (director/admin)
- PUT    /purchase-orders/<id>                        edit draft/declined, "submit": true resubmits
- POST   /purchase-orders/<id>/transition             {"status", "comment"}
- POST   /purchase-orders/<id>/line-items/<item_id>   {"purchased": true|false}
- DELETE /purchase-orders/<id>

SECURITY NOTE:
- Role and ownership checks happen in po_tracker.workflow; routes only
  require a login.
"""

from flask import Blueprint, jsonify, request, send_file
from flask_login import login_required

from ... import purchase_orders as po_service
from ...errors import ValidationError
from ...export import export_pos
from ...roles import ROLE_ADMIN, ROLE_PURCHASER
from ...security import current_actor, roles_required
from ...utils import utcnow
from ...workflow import allowed_targets
from .. import json_body

purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/purchase-orders")

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _truthy(value) -> bool:
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


# ---------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------

@purchase_orders_bp.route("", methods=["GET"])
@login_required
def list_purchase_orders():
    pos = po_service.list_pos(
        current_actor(),
        mine=_truthy(request.args.get("mine")),
        status=(request.args.get("status") or "").strip() or None,
    )
    return jsonify([po.to_dict(include_lines=False) for po in pos])


@purchase_orders_bp.route("/queue", methods=["GET"])
@login_required
@roles_required(ROLE_PURCHASER, ROLE_ADMIN)
def purchaser_queue():
    return jsonify([po.to_dict() for po in po_service.purchaser_queue()])


@purchase_orders_bp.route("/export", methods=["GET"])
@login_required
def export_purchase_orders():
    pos = po_service.list_pos(current_actor(), status=(request.args.get("status") or "").strip() or None)
    return send_file(
        export_pos(pos),
        mimetype=XLSX_MIMETYPE,
        as_attachment=True,
        download_name=f"purchase-orders-{utcnow():%Y-%m-%d}.xlsx",
    )


@purchase_orders_bp.route("/<int:po_id>", methods=["GET"])
@login_required
def get_purchase_order(po_id: int):
    po = po_service.get_po(po_id)
    data = po.to_dict()
    data["allowed_transitions"] = allowed_targets(po.status, current_actor())
    return jsonify(data)


# ---------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------

@purchase_orders_bp.route("", methods=["POST"])
@login_required
def create_purchase_order():
    po = po_service.create_po(current_actor(), json_body())
    return jsonify(po.to_dict()), 201


@purchase_orders_bp.route("/<int:po_id>", methods=["PUT"])
@login_required
def edit_purchase_order(po_id: int):
    po = po_service.edit_po(current_actor(), po_id, json_body())
    return jsonify(po.to_dict())


@purchase_orders_bp.route("/<int:po_id>/transition", methods=["POST"])
@login_required
def transition_purchase_order(po_id: int):
    data = json_body()
    status = (data.get("status") or "").strip()
    if not status:
        raise ValidationError("status is required", field="status")
    po = po_service.apply_transition(current_actor(), po_id, status, comment=data.get("comment"))
    return jsonify(po.to_dict())


@purchase_orders_bp.route("/<int:po_id>/line-items/<int:item_id>", methods=["POST"])
@login_required
def mark_line_item(po_id: int, item_id: int):
    data = json_body()
    po = po_service.mark_line_item(current_actor(), po_id, item_id, _truthy(data.get("purchased", True)))
    return jsonify(po.to_dict())


@purchase_orders_bp.route("/<int:po_id>", methods=["DELETE"])
@login_required
def delete_purchase_order(po_id: int):
    po_service.delete_po(current_actor(), po_id)
    return jsonify({"status": "deleted", "id": po_id})
