"""
Transaction routes.

- GET    /transactions?sub_org_id=
- POST   /transactions/import          multipart "file" (.xlsx / .csv)
- PATCH  /transactions/<id>/allocation {"organizations": [...]} or {"sub_org_id"}
- PATCH  /transactions/<id>            receipt_url / receipt_file_name / notes
- PUT    /transactions/<id>/link       {"po_id"} or {"links": [{"po_id", "amount"}, ...]}
- DELETE /transactions/<id>/link
- DELETE /transactions/<id>            admin only
"""

from io import BytesIO

from flask import Blueprint, jsonify, request
from flask_login import login_required

from ... import transactions as txn_service
from ...errors import ValidationError
from ...roles import ROLE_ADMIN, ROLE_PURCHASER
from ...security import current_actor, roles_required
from ...utils import parse_optional_int
from .. import json_body

transactions_bp = Blueprint("transactions", __name__, url_prefix="/transactions")


@transactions_bp.route("", methods=["GET"])
@login_required
def list_transactions():
    sub_org_id = parse_optional_int(request.args.get("sub_org_id"))
    return jsonify([t.to_dict() for t in txn_service.list_transactions(sub_org_id)])


@transactions_bp.route("/import", methods=["POST"])
@login_required
@roles_required(ROLE_ADMIN, ROLE_PURCHASER)
def import_transactions():
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise ValidationError("An .xlsx or .csv file is required", field="file")

    rows = txn_service.read_transaction_rows(BytesIO(upload.read()), upload.filename)
    result = txn_service.import_transactions(rows, current_actor())
    return jsonify(result.to_dict())


@transactions_bp.route("/<int:transaction_id>/allocation", methods=["PATCH"])
@login_required
@roles_required(ROLE_ADMIN, ROLE_PURCHASER)
def allocate(transaction_id: int):
    txn = txn_service.allocate_transaction(current_actor(), transaction_id, json_body())
    return jsonify(txn.to_dict())


@transactions_bp.route("/<int:transaction_id>", methods=["PATCH"])
@login_required
@roles_required(ROLE_ADMIN, ROLE_PURCHASER)
def update_details(transaction_id: int):
    txn = txn_service.update_details(current_actor(), transaction_id, json_body())
    return jsonify(txn.to_dict())


@transactions_bp.route("/<int:transaction_id>/link", methods=["PUT"])
@login_required
@roles_required(ROLE_ADMIN, ROLE_PURCHASER)
def link_po(transaction_id: int):
    data = json_body()
    if "links" in data:
        txn = txn_service.link_pos(current_actor(), transaction_id, data.get("links"))
        return jsonify(txn.to_dict())
    if data.get("po_id") is None:
        raise ValidationError("po_id or links is required", field="po_id")
    txn = txn_service.link_po(current_actor(), transaction_id, data.get("po_id"))
    return jsonify(txn.to_dict())


@transactions_bp.route("/<int:transaction_id>/link", methods=["DELETE"])
@login_required
@roles_required(ROLE_ADMIN, ROLE_PURCHASER)
def unlink_po(transaction_id: int):
    txn = txn_service.link_po(current_actor(), transaction_id, None)
    return jsonify(txn.to_dict())


@transactions_bp.route("/<int:transaction_id>", methods=["DELETE"])
@login_required
@roles_required(ROLE_ADMIN)
def delete_transaction(transaction_id: int):
    txn_service.delete_transaction(current_actor(), transaction_id)
    return jsonify({"status": "deleted", "id": transaction_id})
