"""
Purchase order service.

Owns every database read/write for purchase orders. The lifecycle rules live in
po_tracker.workflow and the allocation math in po_tracker.allocation; this
module loads rows, calls them with an explicit Actor, audits and commits.

IMPORTANT:
- Totals are re-derived from the line items on every write, and the allocation
  is re-derived for the new total, so neither is ever stale.
- A PO whose total exceeds the remaining budget of a target sub-organization
  cannot be submitted without an over-budget justification.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from .allocation import (
    AllocationTarget,
    allocate,
    build_allocation,
    read_allocations,
    reallocate,
    targets_from_payload,
    write_allocations,
)
from .audit import log_action, serialize_model
from .budgets import get_sub_org, sub_org_name
from .errors import NotFound, ValidationError
from .extensions import db
from .models import LineItem, PurchaseOrder
from .roles import Actor
from .utils import money, parse_decimal, parse_optional_int, short_ref, utcnow
from .workflow import (
    ALL_STATUSES,
    PURCHASING_STATUSES,
    STATUS_APPROVED,
    STATUS_DECLINED,
    STATUS_PENDING_APPROVAL,
    STATUS_PENDING_PURCHASE,
    STATUS_PURCHASED,
    ensure_can_delete,
    ensure_can_edit,
    initial_status,
    set_line_item_purchased,
    transition,
    validate_transition,
)

logger = logging.getLogger(__name__)

RECENT_ACTIVITY_LIMIT = 5


def _snapshot(po: PurchaseOrder) -> dict:
    data = serialize_model(po)
    data["organizations"] = [a.to_dict() for a in read_allocations(po)]
    data["line_item_count"] = len(po.line_items)
    return data


def get_po(po_id: int) -> PurchaseOrder:
    po = db.session.get(PurchaseOrder, po_id)
    if po is None:
        raise NotFound("Purchase order", po_id)
    return po


# ---------------------------------------------------------------------
# Input parsing
# ---------------------------------------------------------------------
def _text(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_line_items(entries) -> list[LineItem]:
    """
    Build LineItem rows from JSON entries.

    An entry is kept only if it has a vendor, an item name, quantity > 0 and
    unit price > 0 (blank form rows are dropped). At least one must remain.
    """
    if not isinstance(entries, list):
        raise ValidationError("line_items must be a list", field="line_items")

    items = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        vendor = _text(entry.get("vendor"))
        item_name = _text(entry.get("item_name"))
        quantity = parse_decimal(entry.get("quantity"))
        unit_price = parse_decimal(entry.get("unit_price"))
        if not vendor or not item_name or quantity is None or unit_price is None:
            continue
        # both columns hold two decimal places; total_price is derived from the stored values
        quantity, unit_price = money(quantity), money(unit_price)
        if quantity <= 0 or unit_price <= 0:
            continue
        items.append(
            LineItem(
                position=len(items),
                vendor=vendor,
                item_name=item_name,
                sku=_text(entry.get("sku")),
                quantity=quantity,
                unit_price=unit_price,
                link=_text(entry.get("link")),
                notes=_text(entry.get("notes")),
                is_purchased=False,
            )
        )

    if not items:
        raise ValidationError(
            "At least one line item with vendor, item name, quantity and unit price is required",
            field="line_items",
        )
    return items


def _requested_allocation(data: dict, total):
    """Allocation from 'organizations' (split) or 'sub_org_id' (single). None if neither given."""
    if data.get("organizations"):
        targets, by_amount = targets_from_payload(data["organizations"], sub_org_name)
        return build_allocation(total, targets, by_amount)

    sub_org_id = parse_optional_int(data.get("sub_org_id"))
    if sub_org_id is not None:
        return allocate(total, [AllocationTarget(sub_org_id, sub_org_name(sub_org_id))])
    return None


def check_over_budget(po: PurchaseOrder) -> None:
    """Require a justification when any share exceeds its sub-org's remaining budget."""
    if po.over_budget_justification:
        return
    for alloc in read_allocations(po):
        org = get_sub_org(alloc.sub_org_id)
        if alloc.allocated_amount > org.remaining:
            raise ValidationError(
                f"This purchase order exceeds the remaining budget of {org.name} "
                f"(${org.remaining}); an over-budget justification is required",
                field="over_budget_justification",
            )


# ---------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------
def create_po(actor: Actor, data: dict, now: Optional[datetime] = None) -> PurchaseOrder:
    status = initial_status(_text(data.get("status")), actor)

    name = _text(data.get("name"))
    if not name:
        raise ValidationError("Name is required", field="name")

    now = now or utcnow()
    po = PurchaseOrder(
        name=name,
        creator_id=actor.user_id,
        creator_name=actor.display_name,
        status=status,
        special_request=_text(data.get("special_request")),
        over_budget_justification=_text(data.get("over_budget_justification")),
        created_at=now,
        updated_at=now,
    )
    po.line_items = parse_line_items(data.get("line_items"))
    po.recalc_totals()

    allocations = _requested_allocation(data, po.total_amount)
    if not allocations:
        raise ValidationError("At least one sub-organization is required", field="organizations")
    write_allocations(po, allocations)

    if status == STATUS_PENDING_APPROVAL:
        check_over_budget(po)

    db.session.add(po)
    db.session.flush()
    log_action(po, "CREATE", actor=actor, after=_snapshot(po))
    db.session.commit()

    logger.info("%s created by %s (status=%s, total=%s)", short_ref(po.id), actor.display_name, status, po.total_amount)
    return po


def edit_po(actor: Actor, po_id: int, data: dict, now: Optional[datetime] = None) -> PurchaseOrder:
    """
    Edit a draft or declined PO. With data["submit"] the PO is resubmitted for approval.

    admin_comments from a previous decline are kept.
    """
    po = get_po(po_id)
    ensure_can_edit(po, actor)
    before = _snapshot(po)
    previous = read_allocations(po)

    if "name" in data:
        name = _text(data.get("name"))
        if not name:
            raise ValidationError("Name is required", field="name")
        po.name = name
    if "special_request" in data:
        po.special_request = _text(data.get("special_request"))
    if "over_budget_justification" in data:
        po.over_budget_justification = _text(data.get("over_budget_justification"))
    if "line_items" in data:
        po.line_items = parse_line_items(data.get("line_items"))
    po.recalc_totals()

    allocations = _requested_allocation(data, po.total_amount)
    if allocations is None:
        allocations = reallocate(po.total_amount, previous)
    write_allocations(po, allocations)

    now = now or utcnow()
    po.updated_at = now
    if data.get("submit"):
        check_over_budget(po)
        transition(po, STATUS_PENDING_APPROVAL, actor, now=now)

    db.session.flush()
    log_action(po, "UPDATE", actor=actor, before=before, after=_snapshot(po))
    db.session.commit()
    return po


def apply_transition(
    actor: Actor,
    po_id: int,
    to_status: str,
    comment: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PurchaseOrder:
    po = get_po(po_id)
    before = _snapshot(po)
    from_status = po.status

    validate_transition(po, to_status, actor, comment)
    if to_status == STATUS_PENDING_APPROVAL:
        check_over_budget(po)
    transition(po, to_status, actor, comment=comment, now=now)

    db.session.flush()
    log_action(po, "STATUS", actor=actor, before=before, after=_snapshot(po))
    db.session.commit()

    logger.info("%s moved %s -> %s by %s", short_ref(po.id), from_status, to_status, actor.display_name)
    return po


def mark_line_item(actor: Actor, po_id: int, line_item_id: int, purchased: bool, now: Optional[datetime] = None):
    po = get_po(po_id)
    before = _snapshot(po)
    set_line_item_purchased(po, line_item_id, purchased, actor, now=now)

    db.session.flush()
    log_action(po, "UPDATE", actor=actor, before=before, after=_snapshot(po))
    db.session.commit()
    return po


def delete_po(actor: Actor, po_id: int) -> None:
    """Irreversible. Transactions linked to the PO keep their PO links."""
    po = get_po(po_id)
    ensure_can_delete(po, actor)
    before = _snapshot(po)

    log_action(po, "DELETE", actor=actor, before=before)
    db.session.delete(po)
    db.session.commit()
    logger.info("%s deleted by %s", short_ref(po_id), actor.display_name)


# ---------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------
def list_pos(actor: Actor, mine: bool = False, status: Optional[str] = None) -> list[PurchaseOrder]:
    query = PurchaseOrder.query
    if mine:
        query = query.filter(PurchaseOrder.creator_id == actor.user_id)
    if status:
        if status not in ALL_STATUSES:
            raise ValidationError(f"Unknown status '{status}'", field="status")
        query = query.filter(PurchaseOrder.status == status)
    return query.order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc()).all()


def purchaser_queue() -> list[PurchaseOrder]:
    """Approved and in-progress POs, most recently updated first."""
    return (
        PurchaseOrder.query.filter(PurchaseOrder.status.in_(sorted(PURCHASING_STATUSES)))
        .order_by(PurchaseOrder.updated_at.desc(), PurchaseOrder.id.desc())
        .all()
    )


def recent_pos(limit: int) -> list[PurchaseOrder]:
    return (
        PurchaseOrder.query.order_by(PurchaseOrder.updated_at.desc(), PurchaseOrder.id.desc())
        .limit(limit)
        .all()
    )


def relative_time(timestamp: Optional[datetime], now: datetime) -> str:
    if timestamp is None:
        return ""
    minutes = int((now - timestamp).total_seconds() // 60)
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes} minutes ago"
    if minutes < 1440:
        return f"{minutes // 60} hours ago"
    return f"{minutes // 1440} days ago"


_ACTIVITY_VERBS = {
    "draft": "was saved as a draft",
    STATUS_PENDING_APPROVAL: "was submitted for approval",
    STATUS_APPROVED: "was approved",
    STATUS_DECLINED: "was declined",
    STATUS_PENDING_PURCHASE: "is being purchased",
    STATUS_PURCHASED: "was purchased",
}


def dashboard_stats(now: Optional[datetime] = None) -> dict:
    """Counts, purchased spend and the most recent activity."""
    now = now or utcnow()
    pos = PurchaseOrder.query.all()

    total_spent = sum(
        (money(po.total_amount) for po in pos if po.status == STATUS_PURCHASED),
        Decimal("0.00"),
    )
    recent = sorted(pos, key=lambda po: (po.updated_at or po.created_at, po.id), reverse=True)
    activity = [
        {
            "po_id": po.id,
            "name": po.name,
            "status": po.status,
            "message": f"{po.name} {_ACTIVITY_VERBS.get(po.status, 'was updated')}",
            "timestamp": (po.updated_at or po.created_at).isoformat(),
            "relative_time": relative_time(po.updated_at or po.created_at, now),
        }
        for po in recent[:RECENT_ACTIVITY_LIMIT]
    ]

    return {
        "total_pos": len(pos),
        "pending_approval": sum(1 for po in pos if po.status == STATUS_PENDING_APPROVAL),
        "approved": sum(1 for po in pos if po.status == STATUS_APPROVED),
        "declined": sum(1 for po in pos if po.status == STATUS_DECLINED),
        "total_spent": str(money(total_spent)),
        "recent_activity": activity,
    }
