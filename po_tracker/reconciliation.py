"""
Reconciliation / spend aggregation.

Transactions are the authoritative record of spend. A purchased PO only counts
as *provisional* spend while no transaction links to it (a share of a
multi-PO link counts), and only when the caller asks for it, so the same
expenditure is never counted twice.

budget_spent on SubOrganization is a cached figure. It is rewritten by the
explicit recalculation batch (po_tracker.budgets.recalculate_budgets), which is
idempotent: rerunning it repairs any drift left by a failed run.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from .allocation import HUNDRED, read_allocations
from .utils import money, short_ref, to_decimal

LEVEL_OVER = "over"
LEVEL_CRITICAL = "critical"
LEVEL_WARNING = "warning"


@dataclass(frozen=True)
class Share:
    """One sub-organization's part of a transaction debit."""

    sub_org_id: int
    sub_org_name: str
    amount: Decimal
    percentage: Decimal

    def to_dict(self) -> dict:
        return {
            "sub_org_id": self.sub_org_id,
            "sub_org_name": self.sub_org_name,
            "amount": str(money(self.amount)),
            "percentage": float(self.percentage),
        }


def transaction_shares(txn) -> list[Share]:
    """Split allocation rows, else the legacy single org with the full debit, else nothing."""
    rows = list(txn.allocation_rows or [])
    if rows:
        return [Share(r.sub_org_id, r.sub_org_name, money(r.amount), to_decimal(r.percentage)) for r in rows]
    if txn.sub_org_id is not None:
        return [Share(txn.sub_org_id, txn.sub_org_name or "", money(txn.debit_amount), HUNDRED)]
    return []


@dataclass(frozen=True)
class POLink:
    """Part of a transaction debit attributed to one purchase order."""

    po_id: int
    po_name: str
    amount: Decimal
    percentage: Decimal

    def to_dict(self) -> dict:
        return {
            "po_id": self.po_id,
            "po_name": self.po_name,
            "amount": str(money(self.amount)),
            "percentage": float(self.percentage),
        }


def read_po_links(txn) -> list[POLink]:
    """Link rows, else the legacy linked_po_id as one link for the whole debit, else nothing."""
    rows = list(txn.po_link_rows or [])
    if rows:
        return [POLink(r.po_id, r.po_name, money(r.amount), to_decimal(r.percentage)) for r in rows]
    if txn.linked_po_id is not None:
        name = txn.linked_po_name or short_ref(txn.linked_po_id)
        return [POLink(txn.linked_po_id, name, money(txn.debit_amount), HUNDRED)]
    return []


def compute_spent(
    sub_org_ids: Iterable[int],
    transactions: Iterable,
    purchased_pos: Iterable = (),
    include_provisional: bool = False,
) -> dict[int, Decimal]:
    """Spent-to-date per sub-organization id."""
    spent = {sub_org_id: Decimal("0.00") for sub_org_id in sub_org_ids}
    linked_po_ids = set()

    for txn in transactions:
        linked_po_ids.update(link.po_id for link in read_po_links(txn))
        for share in transaction_shares(txn):
            if share.sub_org_id in spent:
                spent[share.sub_org_id] += share.amount

    if include_provisional:
        for po in purchased_pos:
            if po.id in linked_po_ids:
                continue
            for alloc in read_allocations(po):
                if alloc.sub_org_id in spent:
                    spent[alloc.sub_org_id] += alloc.allocated_amount

    return {sub_org_id: money(amount) for sub_org_id, amount in spent.items()}


def utilization(spent, allocated) -> float:
    """spent / allocated * 100; 0 when nothing is allocated."""
    allocated = to_decimal(allocated)
    if allocated <= 0:
        return 0.0
    return float(to_decimal(spent) / allocated * HUNDRED)


@dataclass(frozen=True)
class AlertPolicy:
    warning: float = 75.0
    critical: float = 90.0

    @classmethod
    def from_config(cls, config) -> "AlertPolicy":
        return cls(
            warning=float(config.get("BUDGET_WARNING_PERCENT", cls.warning)),
            critical=float(config.get("BUDGET_CRITICAL_PERCENT", cls.critical)),
        )

    def level(self, spent, allocated) -> Optional[str]:
        pct = utilization(spent, allocated)
        if pct > 100:
            return LEVEL_OVER
        if pct > self.critical:
            return LEVEL_CRITICAL
        if pct > self.warning:
            return LEVEL_WARNING
        return None


@dataclass(frozen=True)
class BudgetAlert:
    level: str
    sub_org_id: int
    sub_org_name: str
    utilization: float
    over_by: Decimal


def budget_alerts(sub_orgs: Iterable, policy: Optional[AlertPolicy] = None) -> list[BudgetAlert]:
    """Classify every sub-organization against the alert policy."""
    policy = policy or AlertPolicy()
    alerts = []
    for org in sub_orgs:
        level = policy.level(org.budget_spent, org.budget_allocated)
        if level is None:
            continue
        alerts.append(
            BudgetAlert(
                level=level,
                sub_org_id=org.id,
                sub_org_name=org.name,
                utilization=utilization(org.budget_spent, org.budget_allocated),
                over_by=money(to_decimal(org.budget_spent) - to_decimal(org.budget_allocated)),
            )
        )
    return alerts
