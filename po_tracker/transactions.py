"""
Transaction service: bulk import, allocation, receipts and PO links.

Import rules (per row, rows processed in order, a bad row never aborts the batch):
- status must be "posted" (case-insensitive)
- debit must parse and be > 0
- description must be non-empty and not already stored (nor earlier in the same file)
- post date comes from "postDate" / "post date"; missing or unparseable -> now

Only transactions (never purchase orders) are authoritative spend; see
po_tracker.reconciliation.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, BinaryIO, Iterable, Optional

from openpyxl import load_workbook

from .allocation import EPSILON, HUNDRED, PERCENT_PLACES, build_allocation, targets_from_payload
from .audit import log_action, serialize_model
from .budgets import sub_org_name
from .errors import NotFound, ValidationError
from .extensions import db
from .models import Transaction, TransactionAllocation, TransactionPOLink
from .purchase_orders import get_po
from .reconciliation import read_po_links, transaction_shares
from .roles import Actor, ROLE_ADMIN, TRANSACTION_ROLES, require_any_role
from .utils import money, parse_datetime, parse_decimal, parse_optional_int, short_ref, utcnow

logger = logging.getLogger(__name__)

POSTED = "posted"
# spreadsheet row number carried on each row read from a file
ROW_KEY = "_row"
_POST_DATE_KEYS = ("postdate", "post date", "post_date")


def get_transaction(transaction_id: int) -> Transaction:
    txn = db.session.get(Transaction, transaction_id)
    if txn is None:
        raise NotFound("Transaction", transaction_id)
    return txn


def _require_transaction_role(actor: Actor, action: str) -> None:
    require_any_role(actor, *sorted(TRANSACTION_ROLES), action=action)


# ---------------------------------------------------------------------
# Reading spreadsheets
# ---------------------------------------------------------------------
def _normalize_header(value: Any) -> str:
    if value is None:
        return ""
    return re.sub(r"\s+", " ", str(value)).strip().lower()


def _rows_from_matrix(matrix: Iterable[Iterable[Any]]) -> list[dict]:
    rows = iter(matrix)
    header = next(rows, None)
    if header is None:
        return []
    keys = [_normalize_header(cell) for cell in header]

    result = []
    for number, values in enumerate(rows, start=2):
        values = list(values)
        if all(v is None or (isinstance(v, str) and not v.strip()) for v in values):
            continue
        row = {key: values[i] if i < len(values) else None for i, key in enumerate(keys) if key}
        row[ROW_KEY] = number
        result.append(row)
    return result


def read_transaction_rows(stream: BinaryIO, filename: str) -> list[dict]:
    """
    Read an uploaded .xlsx or .csv into dicts keyed by lower-cased header.

    xlsx uses the first sheet; formula cells are read as their cached values.
    """
    name = (filename or "").lower()
    if name.endswith(".xlsx"):
        wb = load_workbook(stream, read_only=True, data_only=True)
        try:
            sheet = wb.worksheets[0]
            return _rows_from_matrix(sheet.iter_rows(values_only=True))
        finally:
            wb.close()
    if name.endswith(".csv"):
        text = io.TextIOWrapper(stream, encoding="utf-8-sig", newline="")
        try:
            return _rows_from_matrix(csv.reader(text))
        finally:
            text.detach()
    raise ValidationError("Only .xlsx and .csv files can be imported", field="file")


# ---------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------
@dataclass
class ImportResult:
    processed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"processed": self.processed, "skipped": self.skipped, "errors": list(self.errors)}


@dataclass(frozen=True)
class ParsedRow:
    description: str
    debit_amount: Any
    post_date: datetime
    status: str


def parse_row(row: dict, now: datetime) -> tuple[Optional[ParsedRow], Optional[str]]:
    """
    Validate one spreadsheet row.

    Returns (ParsedRow, None) when accepted, (None, None) for a row that is
    silently skipped (not posted, no debit), and (None, message) for malformed data.
    """
    status = str(row.get("status") or "").strip()
    if status.lower() != POSTED:
        return None, None

    raw_debit = row.get("debit")
    debit = parse_decimal(raw_debit)
    if debit is None:
        if raw_debit is None or str(raw_debit).strip() == "":
            return None, None
        return None, f"invalid debit amount {raw_debit!r}"
    if debit <= 0:
        return None, None

    description = str(row.get("description") or "").strip()
    if not description:
        return None, "missing description"

    raw_date = next((row[k] for k in _POST_DATE_KEYS if row.get(k) not in (None, "")), None)
    post_date = parse_datetime(raw_date) if raw_date is not None else None
    if raw_date is not None and post_date is None:
        return None, f"invalid post date {raw_date!r}"

    return ParsedRow(description, money(debit), post_date or now, POSTED), None


def import_transactions(rows: Iterable[dict], actor: Optional[Actor] = None, now: Optional[datetime] = None) -> ImportResult:
    """
    Import posted debits, skipping duplicates by description.

    actor is None for the CLI import.
    """
    if actor is not None:
        _require_transaction_role(actor, "import transactions")

    now = now or utcnow()
    result = ImportResult()
    existing = {d for (d,) in db.session.query(Transaction.description).all()}

    for index, row in enumerate(rows, start=2):  # row 1 is the header
        parsed, error = parse_row(row, now)
        if parsed is None:
            result.skipped += 1
            if error:
                result.errors.append(f"Row {row.get(ROW_KEY, index)}: {error}")
            continue
        if parsed.description in existing:
            result.skipped += 1
            continue

        db.session.add(
            Transaction(
                post_date=parsed.post_date,
                description=parsed.description,
                debit_amount=parsed.debit_amount,
                status=parsed.status,
                created_at=now,
                updated_at=now,
            )
        )
        existing.add(parsed.description)
        result.processed += 1

    db.session.commit()
    logger.info(
        "Transaction import: %d processed, %d skipped, %d errors",
        result.processed,
        result.skipped,
        len(result.errors),
    )
    return result


# ---------------------------------------------------------------------
# Single-transaction updates
# ---------------------------------------------------------------------
def allocate_transaction(actor: Actor, transaction_id: int, data: dict) -> Transaction:
    """
    Allocate a transaction's debit: {"organizations": [...]} for a split,
    {"sub_org_id": n} for a single sub-org, or neither to clear it.
    """
    _require_transaction_role(actor, "allocate transactions")
    txn = get_transaction(transaction_id)
    before = serialize_model(txn)

    if data.get("organizations"):
        targets, by_amount = targets_from_payload(data["organizations"], sub_org_name)
    else:
        sub_org_id = parse_optional_int(data.get("sub_org_id"))
        if sub_org_id is None:
            targets, by_amount = [], False
        else:
            targets, by_amount = targets_from_payload([{"sub_org_id": sub_org_id}], sub_org_name)

    if not targets:
        txn.allocation_rows = []
        txn.sub_org_id = None
        txn.sub_org_name = None
    else:
        allocations = build_allocation(txn.debit_amount, targets, by_amount)
        txn.allocation_rows = [
            TransactionAllocation(
                position=index,
                sub_org_id=a.sub_org_id,
                sub_org_name=a.sub_org_name,
                amount=a.allocated_amount,
                percentage=a.percentage,
            )
            for index, a in enumerate(allocations)
        ]
        single = allocations[0] if len(allocations) == 1 else None
        txn.sub_org_id = single.sub_org_id if single else None
        txn.sub_org_name = single.sub_org_name if single else None

    txn.updated_at = utcnow()
    db.session.flush()
    after = serialize_model(txn)
    after["allocations"] = [s.to_dict() for s in transaction_shares(txn)]
    log_action(txn, "UPDATE", actor=actor, before=before, after=after)
    db.session.commit()
    return txn


def update_details(actor: Actor, transaction_id: int, data: dict) -> Transaction:
    """Attach or remove receipt URL / file name and notes (None or "" clears)."""
    _require_transaction_role(actor, "update transactions")
    txn = get_transaction(transaction_id)
    before = serialize_model(txn)

    for key in ("receipt_url", "receipt_file_name", "notes"):
        if key in data:
            value = data.get(key)
            value = str(value).strip() if value is not None else None
            setattr(txn, key, value or None)

    txn.updated_at = utcnow()
    db.session.flush()
    log_action(txn, "UPDATE", actor=actor, before=before, after=serialize_model(txn))
    db.session.commit()
    return txn


def _po_link_amounts(debit: Decimal, amounts: list[Optional[Decimal]]) -> list[Decimal]:
    """Even split when no amount is given, else amounts that sum to the debit within a cent."""
    if all(a is None for a in amounts):
        share = money(debit / len(amounts))
        result = [share] * (len(amounts) - 1)
        return result + [money(debit - sum(result))]
    if any(a is None for a in amounts):
        raise ValidationError("Either every PO link or none must carry an amount", field="links")

    result = [money(a) for a in amounts]
    if any(a <= 0 for a in result):
        raise ValidationError("Linked amounts must be greater than zero", field="links")
    if abs(sum(result) - debit) > EPSILON:
        raise ValidationError(
            f"Linked amounts ({money(sum(result))}) must equal the transaction amount ({debit})",
            field="links",
        )
    # absorb sub-cent drift into the last link so the sum is exact
    result[-1] = money(debit - sum(result[:-1]))
    return result


def link_pos(actor: Actor, transaction_id: int, entries) -> Transaction:
    """
    Replace the purchase orders a transaction's debit is attributed to.

    entries look like [{"po_id": 3, "amount": "40.00"}, {"po_id": 7, "amount": "42.50"}].
    Without amounts the debit is split evenly; an empty list unlinks. A single
    link is mirrored into linked_po_id/linked_po_name.
    """
    _require_transaction_role(actor, "link transactions")
    txn = get_transaction(transaction_id)
    if not isinstance(entries, list):
        raise ValidationError("links must be a list", field="links")
    before = serialize_model(txn)
    before["po_links"] = [link.to_dict() for link in read_po_links(txn)]

    pos, amounts = [], []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValidationError("Each link must be an object", field="links")
        po_id = parse_optional_int(entry.get("po_id"))
        if po_id is None:
            raise ValidationError("po_id must be an integer", field="links")
        if any(po.id == po_id for po in pos):
            raise ValidationError(f"{short_ref(po_id)} is linked more than once", field="links")
        raw_amount = entry.get("amount")
        amount = parse_decimal(raw_amount) if raw_amount is not None else None
        if raw_amount is not None and amount is None:
            raise ValidationError("amount must be a number", field="links")
        pos.append(get_po(po_id))
        amounts.append(amount)

    debit = money(txn.debit_amount)
    shares = _po_link_amounts(debit, amounts) if pos else []
    txn.po_link_rows = [
        TransactionPOLink(
            position=index,
            po_id=po.id,
            po_name=po.name,
            amount=amount,
            percentage=(amount / debit * HUNDRED).quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP),
        )
        for index, (po, amount) in enumerate(zip(pos, shares))
    ]
    single = pos[0] if len(pos) == 1 else None
    txn.linked_po_id = single.id if single else None
    txn.linked_po_name = single.name if single else None

    txn.updated_at = utcnow()
    db.session.flush()
    after = serialize_model(txn)
    after["po_links"] = [link.to_dict() for link in read_po_links(txn)]
    log_action(txn, "UPDATE", actor=actor, before=before, after=after)
    db.session.commit()
    logger.info("Transaction %s linked to %d purchase order(s)", transaction_id, len(pos))
    return txn


def link_po(actor: Actor, transaction_id: int, po_id) -> Transaction:
    """Link a transaction's whole debit to one PO, or unlink it when po_id is None."""
    if po_id is None:
        return link_pos(actor, transaction_id, [])
    if parse_optional_int(po_id) is None:
        raise ValidationError("po_id must be an integer", field="po_id")
    return link_pos(actor, transaction_id, [{"po_id": po_id}])


def delete_transaction(actor: Actor, transaction_id: int) -> None:
    require_any_role(actor, ROLE_ADMIN, action="delete transactions")
    txn = get_transaction(transaction_id)
    log_action(txn, "DELETE", actor=actor, before=serialize_model(txn))
    db.session.delete(txn)
    db.session.commit()
    logger.info("Transaction %s deleted by %s", transaction_id, actor.display_name)


# ---------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------
def list_transactions(sub_org_id: Optional[int] = None) -> list[Transaction]:
    txns = Transaction.query.order_by(Transaction.post_date.desc(), Transaction.id.desc()).all()
    if sub_org_id is None:
        return txns
    return [t for t in txns if any(s.sub_org_id == sub_org_id for s in transaction_shares(t))]


def recent_transactions(limit: int) -> list[Transaction]:
    return (
        Transaction.query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(limit)
        .all()
    )
