"""
Excel exports (openpyxl).

PO export sheets:
- "PO Summary": one row per PO
- "Line Items": one row per line item
- "Budget Allocation": one row per sub-organization share, only when at least
  one PO is split across several sub-organizations

Budget export: "Budget Summary", sorted by utilization (highest first).

Allocations are read through po_tracker.allocation.read_allocations, so legacy
single-org POs and single-entry lists export identically.
"""

from __future__ import annotations

from io import BytesIO
from typing import Iterable

from openpyxl import Workbook
from openpyxl.styles import Font

from .allocation import read_allocations
from .reconciliation import utilization
from .utils import money, short_ref

PO_SUMMARY_HEADERS = [
    "PO", "Name", "Status", "Creator", "Sub-Organizations", "Total Amount",
    "Created", "Approved", "Purchased", "Admin Comments", "Purchaser Comments",
]
LINE_ITEM_HEADERS = [
    "PO", "Vendor", "Item", "SKU", "Quantity", "Unit Price", "Total", "Purchased", "Link", "Notes",
]
ALLOCATION_HEADERS = ["PO", "Name", "Sub-Organization", "Percentage", "Allocated Amount"]
BUDGET_HEADERS = ["Sub-Organization", "Allocated", "Spent", "Remaining", "Utilization %"]


def _header(sheet, headers: list[str]) -> None:
    sheet.append(headers)
    for cell in sheet[1]:
        cell.font = Font(bold=True)


def _date(value):
    return value.strftime("%Y-%m-%d") if value else ""


def _to_bytes(wb: Workbook) -> BytesIO:
    buffer = BytesIO()
    wb.save(buffer)
    buffer.seek(0)
    return buffer


def build_po_workbook(pos: Iterable) -> Workbook:
    pos = list(pos)
    wb = Workbook()

    summary = wb.active
    summary.title = "PO Summary"
    _header(summary, PO_SUMMARY_HEADERS)

    lines = wb.create_sheet("Line Items")
    _header(lines, LINE_ITEM_HEADERS)

    split_rows = []
    for po in pos:
        allocations = read_allocations(po)
        ref = short_ref(po.id)
        summary.append([
            ref,
            po.name,
            po.status,
            po.creator_name or "",
            ", ".join(a.sub_org_name for a in allocations),
            float(money(po.total_amount)),
            _date(po.created_at),
            _date(po.approved_at),
            _date(po.purchased_at),
            po.admin_comments or "",
            po.purchaser_comments or "",
        ])
        for line in po.line_items:
            lines.append([
                ref,
                line.vendor,
                line.item_name,
                line.sku or "",
                float(line.quantity),
                float(money(line.unit_price)),
                float(money(line.total_price)),
                "Yes" if line.is_purchased else "No",
                line.link or "",
                line.notes or "",
            ])
        if len(allocations) > 1:
            split_rows.extend(
                [ref, po.name, a.sub_org_name, float(a.percentage), float(money(a.allocated_amount))]
                for a in allocations
            )

    if split_rows:
        allocation_sheet = wb.create_sheet("Budget Allocation")
        _header(allocation_sheet, ALLOCATION_HEADERS)
        for row in split_rows:
            allocation_sheet.append(row)

    return wb


def export_pos(pos: Iterable) -> BytesIO:
    return _to_bytes(build_po_workbook(pos))


def build_budget_workbook(sub_orgs: Iterable) -> Workbook:
    rows = sorted(
        sub_orgs,
        key=lambda o: utilization(o.budget_spent, o.budget_allocated),
        reverse=True,
    )
    wb = Workbook()
    sheet = wb.active
    sheet.title = "Budget Summary"
    _header(sheet, BUDGET_HEADERS)
    for org in rows:
        sheet.append([
            org.name,
            float(money(org.budget_allocated)),
            float(money(org.budget_spent)),
            float(org.remaining),
            round(utilization(org.budget_spent, org.budget_allocated), 2),
        ])
    return wb


def export_budgets(sub_orgs: Iterable) -> BytesIO:
    return _to_bytes(build_budget_workbook(sub_orgs))
