"""
Sub-organization budgets.

- CRUD for sub-organizations (admin only).
- Idempotent seeding of the default sub-organization list.
- recalculate_budgets(): the explicit batch that rewrites budget_spent.

IMPORTANT:
- budget_spent is never incremented in place. It is always recomputed from the
  full transaction set, so running the batch twice yields the same result and a
  partially failed run is repaired by running it again.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from .audit import log_action, serialize_model
from .errors import NotFound, ValidationError
from .extensions import db
from .models import PurchaseOrder, SubOrganization, Transaction
from .reconciliation import compute_spent, utilization
from .roles import Actor, ROLE_ADMIN, require_any_role
from .utils import money, parse_decimal
from .workflow import STATUS_PURCHASED

logger = logging.getLogger(__name__)


DEFAULT_SUB_ORGS = [
    # name, budget_allocated
    ("Outreach", Decimal("8000")),
    ("Marketing", Decimal("6000")),
    ("FTC 1002", Decimal("12000")),
    ("FTC 11347", Decimal("10000")),
    ("FRC", Decimal("15000")),
    ("Operations", Decimal("9000")),
    ("Fundraising", Decimal("4000")),
    ("Miscellaneous", Decimal("3000")),
    ("Equipment", Decimal("7500")),
    ("Travel", Decimal("5000")),
    ("Training", Decimal("2500")),
    ("Community Events", Decimal("4500")),
]


def get_sub_org(sub_org_id: int) -> SubOrganization:
    org = db.session.get(SubOrganization, sub_org_id)
    if org is None:
        raise NotFound("Sub-organization", sub_org_id)
    return org


def sub_org_name(sub_org_id: int) -> str:
    return get_sub_org(sub_org_id).name


def list_sub_orgs() -> list[SubOrganization]:
    return SubOrganization.query.order_by(SubOrganization.name.asc()).all()


def _budget_value(value, field: str) -> Decimal:
    amount = parse_decimal(value)
    if amount is None:
        raise ValidationError(f"{field} must be a number", field=field)
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative", field=field)
    return money(amount)


def create_sub_org(actor: Actor, name: str, budget_allocated) -> SubOrganization:
    require_any_role(actor, ROLE_ADMIN, action="create sub-organizations")
    name = (name or "").strip()
    if not name:
        raise ValidationError("Name is required", field="name")
    if SubOrganization.query.filter_by(name=name).first():
        raise ValidationError(f"Sub-organization '{name}' already exists", field="name")

    org = SubOrganization(
        name=name,
        budget_allocated=_budget_value(budget_allocated, "budget_allocated"),
        budget_spent=Decimal("0.00"),
    )
    db.session.add(org)
    db.session.flush()
    log_action(org, "CREATE", actor=actor, after=serialize_model(org))
    db.session.commit()
    logger.info("Sub-organization %s created by %s", org.name, actor.display_name)
    return org


def update_sub_org(actor: Actor, sub_org_id: int, data: dict) -> SubOrganization:
    """Update name/budget_allocated and, as an admin correction, budget_spent."""
    require_any_role(actor, ROLE_ADMIN, action="update budgets")
    org = get_sub_org(sub_org_id)
    before = serialize_model(org)

    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Name is required", field="name")
        clash = SubOrganization.query.filter(SubOrganization.name == name, SubOrganization.id != org.id).first()
        if clash:
            raise ValidationError(f"Sub-organization '{name}' already exists", field="name")
        org.name = name
    if "budget_allocated" in data:
        org.budget_allocated = _budget_value(data.get("budget_allocated"), "budget_allocated")
    if "budget_spent" in data:
        org.budget_spent = _budget_value(data.get("budget_spent"), "budget_spent")

    db.session.flush()
    log_action(org, "UPDATE", actor=actor, before=before, after=serialize_model(org))
    db.session.commit()
    return org


def seed_default_sub_orgs() -> int:
    """Create the default sub-organizations that don't exist yet. Returns how many were added."""
    existing = {name for (name,) in db.session.query(SubOrganization.name).all()}
    added = 0
    for name, budget in DEFAULT_SUB_ORGS:
        if name in existing:
            continue
        db.session.add(SubOrganization(name=name, budget_allocated=budget, budget_spent=Decimal("0.00")))
        added += 1
    db.session.commit()
    logger.info("Seeded %d default sub-organizations", added)
    return added


def recalculate_budgets(include_provisional: bool = False) -> dict[int, Decimal]:
    """
    Rewrite budget_spent for every sub-organization from the stored data.

    Transactions are authoritative. With include_provisional, purchased POs that
    no transaction links to are added on top.
    """
    orgs = SubOrganization.query.all()
    transactions = Transaction.query.all()
    purchased = (
        PurchaseOrder.query.filter_by(status=STATUS_PURCHASED).all() if include_provisional else []
    )

    spent = compute_spent(
        [org.id for org in orgs],
        transactions,
        purchased_pos=purchased,
        include_provisional=include_provisional,
    )

    changed = 0
    for org in orgs:
        if money(org.budget_spent) != spent[org.id]:
            changed += 1
        org.budget_spent = spent[org.id]
    db.session.commit()

    logger.info(
        "Recalculated budgets for %d sub-organizations (%d changed, provisional=%s)",
        len(orgs),
        changed,
        include_provisional,
    )
    return spent


def budget_summary() -> dict:
    """Totals across all sub-organizations plus the per-org rows."""
    orgs = list_sub_orgs()
    allocated = sum((money(o.budget_allocated) for o in orgs), Decimal("0.00"))
    spent = sum((money(o.budget_spent) for o in orgs), Decimal("0.00"))
    return {
        "total_allocated": str(money(allocated)),
        "total_spent": str(money(spent)),
        "total_remaining": str(money(allocated - spent)),
        "utilization": round(utilization(spent, allocated), 2),
        "sub_organizations": [o.to_dict() for o in orgs],
    }
