"""
Budget allocation.

Splits a PO (or transaction) total across one or more sub-organizations.

Rules:
- Amounts are rounded to cents; the last entry absorbs the rounding remainder
  so the allocation always sums exactly to the total.
- Percentage is derived from the rounded amount (0 when the total is 0).
- One entry per sub-organization.

Storage:
- Allocations are always handled as a list here. Legacy rows that only carry
  sub_org_id/sub_org_name are read as a single 100% entry, and a single-entry
  list is mirrored back into those legacy columns on write.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from .errors import ValidationError
from .utils import money, parse_decimal, parse_optional_int, to_decimal

EPSILON = Decimal("0.01")
HUNDRED = Decimal("100")
PERCENT_PLACES = Decimal("0.0001")


@dataclass(frozen=True)
class Allocation:
    sub_org_id: int
    sub_org_name: str
    allocated_amount: Decimal
    percentage: Decimal

    def to_dict(self) -> dict:
        return {
            "sub_org_id": self.sub_org_id,
            "sub_org_name": self.sub_org_name,
            "allocated_amount": str(money(self.allocated_amount)),
            "percentage": float(self.percentage),
        }


@dataclass(frozen=True)
class AllocationTarget:
    """A requested share: sub-org plus an optional percentage or amount."""

    sub_org_id: int
    sub_org_name: str
    percentage: Optional[Decimal] = None
    amount: Optional[Decimal] = None


def _percentage_of(amount: Decimal, total: Decimal) -> Decimal:
    if total == 0:
        return Decimal("0")
    return (amount / total * HUNDRED).quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP)


def _check_targets(targets: list[AllocationTarget]) -> None:
    if not targets:
        raise ValidationError("At least one sub-organization is required", field="organizations")
    seen = set()
    for t in targets:
        if t.sub_org_id in seen:
            raise ValidationError(
                f"Sub-organization {t.sub_org_name or t.sub_org_id} is listed more than once",
                field="organizations",
            )
        seen.add(t.sub_org_id)


def allocate(total, targets: Iterable[AllocationTarget]) -> list[Allocation]:
    """
    Split ``total`` by percentage.

    If no target carries a percentage the total is split evenly. Otherwise
    every target must carry one and they must sum to 100.
    """
    targets = list(targets)
    _check_targets(targets)
    total = money(total)
    if total < 0:
        raise ValidationError("Total cannot be negative", field="total_amount")

    given = [t.percentage for t in targets if t.percentage is not None]
    if not given:
        share = HUNDRED / len(targets)
        percentages = [share] * len(targets)
    else:
        if len(given) != len(targets):
            raise ValidationError(
                "Either every sub-organization or none must carry a percentage",
                field="organizations",
            )
        percentages = [to_decimal(p) for p in given]
        for p in percentages:
            if p < 0 or p > HUNDRED:
                raise ValidationError("Percentages must be between 0 and 100", field="organizations")
        if abs(sum(percentages) - HUNDRED) > EPSILON:
            raise ValidationError(
                f"Percentages must sum to 100 (got {sum(percentages)})",
                field="organizations",
            )

    result = []
    running = Decimal("0.00")
    for index, (target, pct) in enumerate(zip(targets, percentages)):
        if index == len(targets) - 1:
            amount = money(total - running)
        else:
            amount = money(total * pct / HUNDRED)
            running += amount
        result.append(
            Allocation(
                sub_org_id=target.sub_org_id,
                sub_org_name=target.sub_org_name,
                allocated_amount=amount,
                percentage=_percentage_of(amount, total),
            )
        )
    return result


def allocate_amounts(total, targets: Iterable[AllocationTarget]) -> list[Allocation]:
    """Accept explicit per-org amounts; they must sum to ``total`` within a cent."""
    targets = list(targets)
    _check_targets(targets)
    total = money(total)

    amounts = []
    for t in targets:
        if t.amount is None:
            raise ValidationError(
                f"Missing amount for sub-organization {t.sub_org_name or t.sub_org_id}",
                field="organizations",
            )
        amount = money(t.amount)
        if amount < 0:
            raise ValidationError("Allocated amounts cannot be negative", field="organizations")
        amounts.append(amount)

    if abs(sum(amounts) - total) > EPSILON:
        raise ValidationError(
            f"Allocated amounts ({money(sum(amounts))}) must equal the total ({total})",
            field="organizations",
        )

    # absorb sub-cent drift into the last entry so the sum is exact
    amounts[-1] = money(total - sum(amounts[:-1]))

    return [
        Allocation(t.sub_org_id, t.sub_org_name, amount, _percentage_of(amount, total))
        for t, amount in zip(targets, amounts)
    ]


def reallocate(new_total, existing: list[Allocation]) -> list[Allocation]:
    """Re-derive an allocation for a new total keeping the previous percentages."""
    if not existing:
        return []
    if len(existing) == 1:
        only = existing[0]
        return allocate(new_total, [AllocationTarget(only.sub_org_id, only.sub_org_name)])

    percentages = [a.percentage for a in existing]
    if sum(percentages) == 0:
        # previous total was zero: fall back to an even split
        targets = [AllocationTarget(a.sub_org_id, a.sub_org_name) for a in existing]
    else:
        # normalize rounding drift in the stored percentages
        scale = HUNDRED / sum(percentages)
        targets = [
            AllocationTarget(a.sub_org_id, a.sub_org_name, percentage=a.percentage * scale)
            for a in existing
        ]
        drift = HUNDRED - sum(t.percentage for t in targets)
        last = targets[-1]
        targets[-1] = AllocationTarget(last.sub_org_id, last.sub_org_name, percentage=last.percentage + drift)
    return allocate(new_total, targets)


def targets_from_payload(entries, name_lookup) -> tuple[list[AllocationTarget], bool]:
    """
    Build targets from JSON entries like {"sub_org_id": 1, "percentage": 40}
    or {"sub_org_id": 1, "amount": "120.00"}.

    ``name_lookup(sub_org_id)`` returns the sub-org name or raises NotFound.
    Returns (targets, by_amount).
    """
    if not isinstance(entries, list):
        raise ValidationError("organizations must be a list", field="organizations")

    targets = []
    by_amount = False
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValidationError("Each organization entry must be an object", field="organizations")
        sub_org_id = parse_optional_int(entry.get("sub_org_id"))
        if sub_org_id is None:
            raise ValidationError("sub_org_id is required", field="organizations")

        percentage = entry.get("percentage")
        amount = entry.get("amount", entry.get("allocated_amount"))
        pct_value = parse_decimal(percentage) if percentage is not None else None
        amount_value = parse_decimal(amount) if amount is not None else None
        if percentage is not None and pct_value is None:
            raise ValidationError("percentage must be a number", field="organizations")
        if amount is not None and amount_value is None:
            raise ValidationError("amount must be a number", field="organizations")
        if amount_value is not None:
            by_amount = True

        targets.append(
            AllocationTarget(
                sub_org_id=sub_org_id,
                sub_org_name=name_lookup(sub_org_id),
                percentage=pct_value,
                amount=amount_value,
            )
        )

    if by_amount and any(t.amount is None for t in targets):
        raise ValidationError("Either every organization or none must carry an amount", field="organizations")
    return targets, by_amount


def build_allocation(total, targets: list[AllocationTarget], by_amount: bool) -> list[Allocation]:
    if by_amount:
        return allocate_amounts(total, targets)
    return allocate(total, targets)


# ---------------------------------------------------------------------
# Storage adapter (purchase orders)
# ---------------------------------------------------------------------
def read_allocations(po) -> list[Allocation]:
    """Normalized allocation list for a PurchaseOrder, legacy form included."""
    rows = list(po.allocation_rows or [])
    if rows:
        return [
            Allocation(r.sub_org_id, r.sub_org_name, money(r.allocated_amount), to_decimal(r.percentage))
            for r in rows
        ]
    if po.sub_org_id is not None:
        return [Allocation(po.sub_org_id, po.sub_org_name or "", money(po.total_amount), HUNDRED)]
    return []


def write_allocations(po, allocations: list[Allocation]) -> None:
    """Store allocation rows and mirror a single-entry list into the legacy columns."""
    from .models import POAllocation

    po.allocation_rows = [
        POAllocation(
            position=index,
            sub_org_id=a.sub_org_id,
            sub_org_name=a.sub_org_name,
            allocated_amount=money(a.allocated_amount),
            percentage=a.percentage,
        )
        for index, a in enumerate(allocations)
    ]
    if len(allocations) == 1:
        po.sub_org_id = allocations[0].sub_org_id
        po.sub_org_name = allocations[0].sub_org_name
    else:
        po.sub_org_id = None
        po.sub_org_name = None
