"""
Unit tests for budget allocation and its storage adapter.
"""
from decimal import Decimal

import pytest

from po_tracker.allocation import (
    Allocation,
    AllocationTarget,
    allocate,
    allocate_amounts,
    read_allocations,
    reallocate,
    targets_from_payload,
    write_allocations,
)
from po_tracker.errors import NotFound, ValidationError


def _targets(*ids, percentages=None):
    percentages = percentages or [None] * len(ids)
    return [AllocationTarget(i, f"Org {i}", percentage=p) for i, p in zip(ids, percentages)]


@pytest.mark.unit
class TestAllocate:

    def test_single_target_takes_everything(self):
        (only,) = allocate(Decimal("150.00"), _targets(1))
        assert only.allocated_amount == Decimal("150.00")
        assert only.percentage == Decimal("100")

    def test_even_split_last_absorbs_remainder(self):
        result = allocate(Decimal("100.00"), _targets(1, 2, 3))
        assert [a.allocated_amount for a in result] == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
        assert sum(a.allocated_amount for a in result) == Decimal("100.00")

    def test_percentages(self):
        result = allocate(Decimal("250.00"), _targets(1, 2, percentages=[Decimal("60"), Decimal("40")]))
        assert [a.allocated_amount for a in result] == [Decimal("150.00"), Decimal("100.00")]
        assert [a.percentage for a in result] == [Decimal("60.0000"), Decimal("40.0000")]

    @pytest.mark.parametrize("total", ["0.01", "0.05", "10.00", "99.99", "1234.57"])
    def test_sum_is_exact(self, total):
        result = allocate(Decimal(total), _targets(1, 2, 3, percentages=[Decimal("33.3"), Decimal("33.3"), Decimal("33.4")]))
        assert sum(a.allocated_amount for a in result) == Decimal(total)

    def test_zero_total(self):
        result = allocate(Decimal("0"), _targets(1, 2))
        assert all(a.allocated_amount == Decimal("0.00") for a in result)
        assert all(a.percentage == Decimal("0") for a in result)

    def test_percentages_must_sum_to_100(self):
        with pytest.raises(ValidationError):
            allocate(Decimal("100"), _targets(1, 2, percentages=[Decimal("50"), Decimal("40")]))

    def test_mixed_percentages_rejected(self):
        with pytest.raises(ValidationError):
            allocate(Decimal("100"), _targets(1, 2, percentages=[Decimal("100"), None]))

    def test_duplicate_sub_org_rejected(self):
        with pytest.raises(ValidationError):
            allocate(Decimal("100"), _targets(1, 1))

    def test_empty_rejected(self):
        with pytest.raises(ValidationError):
            allocate(Decimal("100"), [])

    def test_negative_percentage_rejected(self):
        with pytest.raises(ValidationError):
            allocate(Decimal("100"), _targets(1, 2, percentages=[Decimal("120"), Decimal("-20")]))


@pytest.mark.unit
class TestAllocateAmounts:

    def test_amounts_must_match_total(self):
        targets = [AllocationTarget(1, "A", amount=Decimal("60")), AllocationTarget(2, "B", amount=Decimal("30"))]
        with pytest.raises(ValidationError):
            allocate_amounts(Decimal("100"), targets)

    def test_within_a_cent(self):
        targets = [AllocationTarget(1, "A", amount=Decimal("60.00")), AllocationTarget(2, "B", amount=Decimal("39.99"))]
        result = allocate_amounts(Decimal("100.00"), targets)
        assert result[-1].allocated_amount == Decimal("40.00")
        assert sum(a.allocated_amount for a in result) == Decimal("100.00")

    def test_missing_amount(self):
        with pytest.raises(ValidationError):
            allocate_amounts(Decimal("100"), [AllocationTarget(1, "A")])


@pytest.mark.unit
class TestReallocate:

    def test_keeps_percentages(self):
        previous = allocate(Decimal("100.00"), _targets(1, 2, percentages=[Decimal("75"), Decimal("25")]))
        result = reallocate(Decimal("200.00"), previous)
        assert [a.allocated_amount for a in result] == [Decimal("150.00"), Decimal("50.00")]

    def test_thirds_stay_exact(self):
        previous = allocate(Decimal("100.00"), _targets(1, 2, 3))
        result = reallocate(Decimal("301.00"), previous)
        assert sum(a.allocated_amount for a in result) == Decimal("301.00")

    def test_from_zero_total_splits_evenly(self):
        previous = allocate(Decimal("0"), _targets(1, 2))
        result = reallocate(Decimal("10.00"), previous)
        assert [a.allocated_amount for a in result] == [Decimal("5.00"), Decimal("5.00")]

    def test_single(self):
        result = reallocate(Decimal("42.00"), [Allocation(1, "A", Decimal("10.00"), Decimal("100"))])
        assert result == [Allocation(1, "A", Decimal("42.00"), Decimal("100.0000"))]


@pytest.mark.unit
class TestPayloadAndStorage:

    def test_targets_from_payload(self):
        targets, by_amount = targets_from_payload(
            [{"sub_org_id": 1, "percentage": 40}, {"sub_org_id": "2", "percentage": "60"}],
            lambda sub_org_id: f"Org {sub_org_id}",
        )
        assert by_amount is False
        assert [t.sub_org_name for t in targets] == ["Org 1", "Org 2"]
        assert targets[1].percentage == Decimal("60")

    def test_targets_from_payload_unknown_org(self):
        def lookup(sub_org_id):
            raise NotFound("Sub-organization", sub_org_id)

        with pytest.raises(NotFound):
            targets_from_payload([{"sub_org_id": 99}], lookup)

    def test_legacy_reads_as_single_full_allocation(self, po_factory):
        po = po_factory(total="80.00")
        po.sub_org_id = 7
        po.sub_org_name = "Travel"
        (alloc,) = read_allocations(po)
        assert alloc == Allocation(7, "Travel", Decimal("80.00"), Decimal("100"))

    def test_single_entry_mirrors_legacy_columns(self, po_factory):
        po = po_factory(total="80.00")
        write_allocations(po, allocate(Decimal("80.00"), _targets(7)))
        assert po.sub_org_id == 7
        assert po.sub_org_name == "Org 7"

        legacy = po_factory(total="80.00", po_id=2)
        legacy.sub_org_id = 7
        legacy.sub_org_name = "Org 7"
        assert [a.to_dict() for a in read_allocations(po)] == [a.to_dict() for a in read_allocations(legacy)]

    def test_split_clears_legacy_columns(self, po_factory):
        po = po_factory(total="80.00")
        po.sub_org_id = 7
        write_allocations(po, allocate(Decimal("80.00"), _targets(7, 8)))
        assert po.sub_org_id is None
        assert len(read_allocations(po)) == 2
