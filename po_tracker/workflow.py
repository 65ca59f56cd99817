"""
PO lifecycle engine.

    draft -> pending_approval -> approved -> pending_purchase -> purchased
                   |    ^
                   v    |
                 declined

Every status change goes through :func:`transition`. The request is fully
validated (state, role, ownership, decline reason) before the PO is touched,
so a rejected request leaves the PO unchanged.

IMPORTANT:
- purchased is terminal.
- Only admins approve/decline; only purchasers purchase.
- Submitting (draft/declined -> pending_approval) is reserved to the creator.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .errors import InvalidTransition, NotFound, PermissionDenied, ValidationError
from .roles import (
    Actor,
    CREATOR_ROLES,
    ROLE_ADMIN,
    ROLE_PURCHASER,
    require_any_role,
)
from .utils import utcnow

STATUS_DRAFT = "draft"
STATUS_PENDING_APPROVAL = "pending_approval"
STATUS_APPROVED = "approved"
STATUS_DECLINED = "declined"
STATUS_PENDING_PURCHASE = "pending_purchase"
STATUS_PURCHASED = "purchased"

ALL_STATUSES = (
    STATUS_DRAFT,
    STATUS_PENDING_APPROVAL,
    STATUS_APPROVED,
    STATUS_DECLINED,
    STATUS_PENDING_PURCHASE,
    STATUS_PURCHASED,
)
EDITABLE_STATUSES = frozenset({STATUS_DRAFT, STATUS_DECLINED})
PURCHASING_STATUSES = frozenset({STATUS_APPROVED, STATUS_PENDING_PURCHASE})

DEFAULT_PURCHASED_NOTE = "Marked as purchased by purchaser"
DEFAULT_PURCHASE_STARTED_NOTE = "Purchase in progress"


@dataclass(frozen=True)
class TransitionRule:
    roles: frozenset
    creator_only: bool = False
    requires_reason: bool = False


TRANSITIONS: dict[tuple[str, str], TransitionRule] = {
    (STATUS_DRAFT, STATUS_PENDING_APPROVAL): TransitionRule(CREATOR_ROLES, creator_only=True),
    (STATUS_DECLINED, STATUS_PENDING_APPROVAL): TransitionRule(CREATOR_ROLES, creator_only=True),
    (STATUS_PENDING_APPROVAL, STATUS_APPROVED): TransitionRule(frozenset({ROLE_ADMIN})),
    (STATUS_PENDING_APPROVAL, STATUS_DECLINED): TransitionRule(frozenset({ROLE_ADMIN}), requires_reason=True),
    (STATUS_APPROVED, STATUS_PENDING_PURCHASE): TransitionRule(frozenset({ROLE_PURCHASER})),
    (STATUS_APPROVED, STATUS_PURCHASED): TransitionRule(frozenset({ROLE_PURCHASER})),
    (STATUS_PENDING_PURCHASE, STATUS_PURCHASED): TransitionRule(frozenset({ROLE_PURCHASER})),
}

# Statuses a PO may be created in
INITIAL_STATUSES = frozenset({STATUS_DRAFT, STATUS_PENDING_APPROVAL})


def allowed_targets(current_status: str, actor: Actor) -> list[str]:
    """Statuses the actor could request from ``current_status`` (ownership not checked)."""
    return [
        to_status
        for (from_status, to_status), rule in TRANSITIONS.items()
        if from_status == current_status and actor.effective_roles & rule.roles
    ]


def is_creator(po, actor: Actor) -> bool:
    return po.creator_id is not None and po.creator_id == actor.user_id


def _clean(comment: Optional[str]) -> Optional[str]:
    if comment is None:
        return None
    comment = str(comment).strip()
    return comment or None


def validate_transition(po, to_status: str, actor: Actor, comment: Optional[str] = None) -> TransitionRule:
    """Raise unless ``actor`` may move ``po`` to ``to_status``. Does not mutate."""
    rule = TRANSITIONS.get((po.status, to_status))
    if rule is None or not (actor.effective_roles & rule.roles):
        raise InvalidTransition(po.status, to_status, actor.role_label)
    if rule.creator_only and not is_creator(po, actor):
        raise PermissionDenied("Only the creator of this purchase order can submit it for approval")
    if rule.requires_reason and _clean(comment) is None:
        raise ValidationError("A reason is required to decline a purchase order", field="comment")
    return rule


def transition(po, to_status: str, actor: Actor, comment: Optional[str] = None, now: Optional[datetime] = None):
    """Apply a status change with its side effects and return the PO."""
    validate_transition(po, to_status, actor, comment)

    now = now or utcnow()
    comment = _clean(comment)

    if to_status == STATUS_APPROVED:
        po.approved_at = now
        po.approved_by_id = actor.user_id
        po.approved_by_name = actor.display_name
        if comment:
            po.admin_comments = comment
    elif to_status == STATUS_DECLINED:
        po.admin_comments = comment
    elif to_status == STATUS_PENDING_PURCHASE:
        po.purchaser_comments = comment or po.purchaser_comments or DEFAULT_PURCHASE_STARTED_NOTE
    elif to_status == STATUS_PURCHASED:
        po.purchased_at = now
        po.purchased_by_id = actor.user_id
        po.purchased_by_name = actor.display_name
        po.purchaser_comments = comment or DEFAULT_PURCHASED_NOTE
    # resubmission keeps the previous admin_comments

    po.status = to_status
    po.updated_at = now
    return po


def initial_status(requested: Optional[str], actor: Actor) -> str:
    """Status for a newly created PO; creation is reserved to directors/admins."""
    require_any_role(actor, *sorted(CREATOR_ROLES), action="create purchase orders")
    status = requested or STATUS_PENDING_APPROVAL
    if status not in INITIAL_STATUSES:
        raise InvalidTransition("(new)", status, actor.role_label)
    return status


def ensure_can_edit(po, actor: Actor) -> None:
    if not is_creator(po, actor):
        raise PermissionDenied("Only the creator can edit this purchase order")
    if po.status not in EDITABLE_STATUSES:
        raise ValidationError(
            f"Purchase orders can only be edited while draft or declined (status is {po.status})",
            field="status",
        )


def ensure_can_delete(po, actor: Actor) -> None:
    if is_creator(po, actor) or actor.has_role(ROLE_ADMIN):
        return
    raise PermissionDenied("Only the creator or an admin can delete this purchase order")


def set_line_item_purchased(po, line_item_id: int, purchased: bool, actor: Actor, now: Optional[datetime] = None):
    """
    Toggle a line item's purchased checkbox.

    Checking the first item on an approved PO moves it to pending_purchase.
    """
    require_any_role(actor, ROLE_PURCHASER, action="update purchase progress")
    if po.status not in PURCHASING_STATUSES:
        raise InvalidTransition(po.status, STATUS_PENDING_PURCHASE, actor.role_label)

    line = next((li for li in po.line_items if li.id == line_item_id), None)
    if line is None:
        raise NotFound("Line item", line_item_id)

    now = now or utcnow()
    line.is_purchased = bool(purchased)
    if purchased and po.status == STATUS_APPROVED:
        transition(po, STATUS_PENDING_PURCHASE, actor, now=now)
    else:
        po.updated_at = now
    return po
