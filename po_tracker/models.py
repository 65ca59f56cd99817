"""
PO Tracker – Domain Models

Tables mirror the four collections of the purchasing workflow:
- users
- sub_organizations (budget buckets)
- purchase_orders (+ po_line_items, po_allocations)
- transactions (+ transaction_allocations, transaction_po_links)

plus per-user notification read-state and the audit trail.

IMPORTANT:
- Allocation has two storage shapes. Legacy rows only carry sub_org_id/sub_org_name
  (implying 100%). Split rows live in po_allocations / transaction_allocations.
  Read and write them through po_tracker.allocation / po_tracker.reconciliation adapters only.
- PO links have the same two shapes: legacy linked_po_id/linked_po_name (the whole
  debit) or rows in transaction_po_links. Read them through reconciliation.read_po_links.
- PO ids on transactions are plain values: deleting a PO leaves them dangling.
"""

from __future__ import annotations

from decimal import Decimal

from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from .extensions import db
from .utils import isoformat, money, utcnow


def _amount(value) -> str:
    """Money as a JSON-safe string with two decimals."""
    return str(money(value))


# ---------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------
class User(UserMixin, db.Model):
    """System login user. ``role`` is primary, ``roles`` holds additional staff roles."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    display_name = db.Column(db.String(255), nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(20), nullable=False, index=True)
    roles = db.Column(db.JSON, nullable=False, default=list)

    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @property
    def effective_roles(self) -> set[str]:
        return {self.role} | set(self.roles or [])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "display_name": self.display_name,
            "role": self.role,
            "roles": list(self.roles or []),
            "is_active": self.is_active,
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<User {self.email}>"


class UserNotificationPref(db.Model):
    """Per-user read state: {notification_id: true}."""

    __tablename__ = "user_notification_prefs"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    read_notifications = db.Column(db.JSON, nullable=False, default=dict)

    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship("User", backref=db.backref("notification_pref", uselist=False, cascade="all, delete"))


# ---------------------------------------------------------------------
# Budgets
# ---------------------------------------------------------------------
class SubOrganization(db.Model):
    """Budget bucket. budget_spent is derived and only eventually consistent."""

    __tablename__ = "sub_organizations"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False, unique=True, index=True)
    budget_allocated = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    budget_spent = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    @property
    def remaining(self) -> Decimal:
        return money(money(self.budget_allocated) - money(self.budget_spent))

    def to_dict(self) -> dict:
        from .reconciliation import utilization

        return {
            "id": self.id,
            "name": self.name,
            "budget_allocated": _amount(self.budget_allocated),
            "budget_spent": _amount(self.budget_spent),
            "remaining": _amount(self.remaining),
            "utilization": round(utilization(self.budget_spent, self.budget_allocated), 2),
        }

    def __repr__(self):
        return f"<SubOrganization {self.name}>"


# ---------------------------------------------------------------------
# Purchase orders
# ---------------------------------------------------------------------
class PurchaseOrder(db.Model):
    __tablename__ = "purchase_orders"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)

    creator_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    creator_name = db.Column(db.String(255))

    # legacy single-organization allocation
    sub_org_id = db.Column(db.Integer, nullable=True, index=True)
    sub_org_name = db.Column(db.String(120), nullable=True)

    status = db.Column(db.String(30), nullable=False, index=True)

    special_request = db.Column(db.Text, nullable=True)
    over_budget_justification = db.Column(db.Text, nullable=True)
    admin_comments = db.Column(db.Text, nullable=True)
    purchaser_comments = db.Column(db.Text, nullable=True)
    receipt_url = db.Column(db.String(1024), nullable=True)

    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    approved_by_id = db.Column(db.Integer, nullable=True)
    approved_by_name = db.Column(db.String(255), nullable=True)
    purchased_by_id = db.Column(db.Integer, nullable=True)
    purchased_by_name = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, index=True)
    approved_at = db.Column(db.DateTime, nullable=True)
    purchased_at = db.Column(db.DateTime, nullable=True)

    line_items = db.relationship(
        "LineItem",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="LineItem.position",
    )

    allocation_rows = db.relationship(
        "POAllocation",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="POAllocation.position",
    )

    def recalc_totals(self):
        """Re-derive every line total and the PO total (sum of rounded line totals)."""
        total = Decimal("0.00")
        for line in self.line_items:
            line.total_price = line.compute_total()
            total += line.total_price
        self.total_amount = money(total)

    def to_dict(self, include_lines: bool = True) -> dict:
        from .allocation import read_allocations

        data = {
            "id": self.id,
            "name": self.name,
            "creator_id": self.creator_id,
            "creator_name": self.creator_name,
            "status": self.status,
            "organizations": [a.to_dict() for a in read_allocations(self)],
            "total_amount": _amount(self.total_amount),
            "special_request": self.special_request,
            "over_budget_justification": self.over_budget_justification,
            "admin_comments": self.admin_comments,
            "purchaser_comments": self.purchaser_comments,
            "receipt_url": self.receipt_url,
            "approved_by_id": self.approved_by_id,
            "approved_by_name": self.approved_by_name,
            "purchased_by_id": self.purchased_by_id,
            "purchased_by_name": self.purchased_by_name,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
            "approved_at": isoformat(self.approved_at),
            "purchased_at": isoformat(self.purchased_at),
        }
        if include_lines:
            data["line_items"] = [line.to_dict() for line in self.line_items]
        return data

    def __repr__(self):
        return f"<PurchaseOrder {self.id} {self.status}>"


class LineItem(db.Model):
    __tablename__ = "po_line_items"

    id = db.Column(db.Integer, primary_key=True)

    po_id = db.Column(
        db.Integer,
        db.ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = db.Column(db.Integer, nullable=False, default=0)

    vendor = db.Column(db.String(255), nullable=False)
    item_name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(120), nullable=True)
    quantity = db.Column(db.Numeric(12, 2), nullable=False, default=1)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    link = db.Column(db.String(1024), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    total_price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    is_purchased = db.Column(db.Boolean, nullable=False, default=False)

    purchase_order = db.relationship("PurchaseOrder", back_populates="line_items")

    def compute_total(self) -> Decimal:
        if not self.quantity or not self.unit_price:
            return Decimal("0.00")
        return money(Decimal(str(self.quantity)) * Decimal(str(self.unit_price)))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "vendor": self.vendor,
            "item_name": self.item_name,
            "sku": self.sku,
            "quantity": str(self.quantity),
            "unit_price": _amount(self.unit_price),
            "link": self.link,
            "notes": self.notes,
            "total_price": _amount(self.total_price),
            "is_purchased": bool(self.is_purchased),
        }


class POAllocation(db.Model):
    """One sub-organization share of a PO total."""

    __tablename__ = "po_allocations"

    id = db.Column(db.Integer, primary_key=True)

    po_id = db.Column(
        db.Integer,
        db.ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = db.Column(db.Integer, nullable=False, default=0)

    sub_org_id = db.Column(db.Integer, nullable=False, index=True)
    sub_org_name = db.Column(db.String(120), nullable=False)
    allocated_amount = db.Column(db.Numeric(12, 2), nullable=False)
    percentage = db.Column(db.Numeric(7, 4), nullable=False)

    purchase_order = db.relationship("PurchaseOrder", back_populates="allocation_rows")


# ---------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------
class Transaction(db.Model):
    """Imported ledger entry. description is the natural dedup key."""

    __tablename__ = "transactions"

    id = db.Column(db.Integer, primary_key=True)

    post_date = db.Column(db.DateTime, nullable=False, index=True)
    description = db.Column(db.String(512), nullable=False, unique=True, index=True)
    debit_amount = db.Column(db.Numeric(12, 2), nullable=False)
    status = db.Column(db.String(50), nullable=False, default="posted")

    # legacy single-organization allocation
    sub_org_id = db.Column(db.Integer, nullable=True, index=True)
    sub_org_name = db.Column(db.String(120), nullable=True)

    receipt_url = db.Column(db.String(1024), nullable=True)
    receipt_file_name = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    linked_po_id = db.Column(db.Integer, nullable=True, index=True)
    linked_po_name = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    allocation_rows = db.relationship(
        "TransactionAllocation",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionAllocation.position",
    )
    po_link_rows = db.relationship(
        "TransactionPOLink",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionPOLink.position",
    )

    def to_dict(self) -> dict:
        from .reconciliation import read_po_links, transaction_shares

        return {
            "id": self.id,
            "post_date": isoformat(self.post_date),
            "description": self.description,
            "debit_amount": _amount(self.debit_amount),
            "status": self.status,
            "allocations": [share.to_dict() for share in transaction_shares(self)],
            "receipt_url": self.receipt_url,
            "receipt_file_name": self.receipt_file_name,
            "notes": self.notes,
            "linked_po_id": self.linked_po_id,
            "linked_po_name": self.linked_po_name,
            "po_links": [link.to_dict() for link in read_po_links(self)],
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<Transaction {self.description!r} {self.debit_amount}>"


class TransactionAllocation(db.Model):
    __tablename__ = "transaction_allocations"

    id = db.Column(db.Integer, primary_key=True)

    transaction_id = db.Column(
        db.Integer,
        db.ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = db.Column(db.Integer, nullable=False, default=0)

    sub_org_id = db.Column(db.Integer, nullable=False, index=True)
    sub_org_name = db.Column(db.String(120), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    percentage = db.Column(db.Numeric(7, 4), nullable=False)

    transaction = db.relationship("Transaction", back_populates="allocation_rows")


class TransactionPOLink(db.Model):
    """Part of a transaction debit attributed to one purchase order."""

    __tablename__ = "transaction_po_links"

    id = db.Column(db.Integer, primary_key=True)

    transaction_id = db.Column(
        db.Integer,
        db.ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = db.Column(db.Integer, nullable=False, default=0)

    po_id = db.Column(db.Integer, nullable=False, index=True)
    po_name = db.Column(db.String(255), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    percentage = db.Column(db.Numeric(7, 4), nullable=False)

    transaction = db.relationship("Transaction", back_populates="po_link_rows")


# ---------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------
class AuditLog(db.Model):
    """Who did what to which entity, with before/after snapshots."""

    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    username_snapshot = db.Column(db.String(255), nullable=True)

    entity_type = db.Column(db.String(50), nullable=False, index=True)
    entity_id = db.Column(db.Integer, nullable=False, index=True)

    action = db.Column(db.String(30), nullable=False, index=True)

    before_data = db.Column(db.Text, nullable=True)
    after_data = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
