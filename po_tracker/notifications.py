"""
Notification deriver.

Notifications are never stored. They are recomputed from a snapshot of recent
POs, all sub-organizations and recent transactions, for the roles a user holds.
Only the per-user read state ({notification_id: true}) is persisted.

derive_notifications() is pure: for the same inputs and the same ``now`` it
returns the same list, in the same order.

IMPORTANT:
- Ids are derived from content (e.g. "po-12-approved", "pending-approval").
  A recurring aggregate reuses its id, so marking it read also hides the next
  occurrence until the id changes.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Iterable, Optional

from flask import current_app

from .budgets import list_sub_orgs
from .extensions import db
from .models import UserNotificationPref
from .purchase_orders import recent_pos
from .reconciliation import (
    LEVEL_CRITICAL,
    LEVEL_OVER,
    AlertPolicy,
    budget_alerts,
)
from .roles import ROLE_ADMIN, ROLE_DIRECTOR, ROLE_PURCHASER
from .transactions import recent_transactions
from .utils import money, short_ref, to_decimal, utcnow
from .workflow import (
    STATUS_APPROVED,
    STATUS_DECLINED,
    STATUS_PENDING_APPROVAL,
    STATUS_PURCHASED,
)

TYPE_PO_STATUS = "po_status"
TYPE_BUDGET_ALERT = "budget_alert"
TYPE_SYSTEM = "system"
TYPE_TRANSACTION = "transaction"

PRIORITY_HIGH = "high"
PRIORITY_MEDIUM = "medium"
PRIORITY_LOW = "low"
PRIORITY_RANK = {PRIORITY_HIGH: 3, PRIORITY_MEDIUM: 2, PRIORITY_LOW: 1}

DIRECTOR_PO_LIMIT = 5


@dataclass(frozen=True)
class Notification:
    id: str
    type: str
    title: str
    message: str
    timestamp: datetime
    priority: str
    action_url: Optional[str] = None
    roles: tuple = ()
    is_read: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "priority": self.priority,
            "action_url": self.action_url,
            "roles": list(self.roles),
            "is_read": self.is_read,
        }


@dataclass(frozen=True)
class NotificationSettings:
    po_window: timedelta = timedelta(hours=24)
    transaction_window: timedelta = timedelta(hours=24)
    purchased_window: timedelta = timedelta(hours=72)
    policy: AlertPolicy = field(default_factory=AlertPolicy)

    @classmethod
    def from_config(cls, config) -> "NotificationSettings":
        return cls(
            po_window=timedelta(hours=float(config.get("NOTIFICATION_PO_WINDOW_HOURS", 24))),
            transaction_window=timedelta(hours=float(config.get("NOTIFICATION_TRANSACTION_WINDOW_HOURS", 24))),
            purchased_window=timedelta(hours=float(config.get("NOTIFICATION_PURCHASED_WINDOW_HOURS", 72))),
            policy=AlertPolicy.from_config(config),
        )


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


def _format_money(amount) -> str:
    return f"${money(amount):,.2f}"


# ---------------------------------------------------------------------
# Generators
# ---------------------------------------------------------------------
def budget_alert_notifications(sub_orgs, now: datetime, settings: NotificationSettings, role: str) -> list[Notification]:
    result = []
    for alert in budget_alerts(sub_orgs, settings.policy):
        if alert.level == LEVEL_OVER:
            result.append(
                Notification(
                    id=f"budget-over-{alert.sub_org_id}",
                    type=TYPE_BUDGET_ALERT,
                    title="Budget Exceeded",
                    message=f"{alert.sub_org_name} is over budget by {_format_money(alert.over_by)}",
                    timestamp=now,
                    priority=PRIORITY_HIGH,
                    action_url="/budgets",
                    roles=(role,),
                )
            )
        elif alert.level == LEVEL_CRITICAL:
            result.append(
                Notification(
                    id=f"budget-critical-{alert.sub_org_id}",
                    type=TYPE_BUDGET_ALERT,
                    title="Budget Critical",
                    message=f"{alert.sub_org_name} has used {alert.utilization:.0f}% of budget",
                    timestamp=now,
                    priority=PRIORITY_HIGH,
                    action_url="/budgets",
                    roles=(role,),
                )
            )
        else:
            result.append(
                Notification(
                    id=f"budget-warning-{alert.sub_org_id}",
                    type=TYPE_BUDGET_ALERT,
                    title="Budget Warning",
                    message=f"{alert.sub_org_name} has used {alert.utilization:.0f}% of budget",
                    timestamp=now,
                    priority=PRIORITY_MEDIUM,
                    action_url="/budgets",
                    roles=(role,),
                )
            )
    return result


def director_notifications(pos, sub_orgs, transactions, now, settings) -> list[Notification]:
    result = []
    updates = [po for po in pos if po.status in (STATUS_APPROVED, STATUS_DECLINED, STATUS_PURCHASED)]
    for po in updates[:DIRECTOR_PO_LIMIT]:
        timestamp = po.updated_at or now
        if now - timestamp >= settings.po_window:
            continue
        result.append(
            Notification(
                id=f"po-{po.id}-{po.status}",
                type=TYPE_PO_STATUS,
                title=f"PO {po.status.capitalize()}",
                message=f"{short_ref(po.id)} has been {po.status}",
                timestamp=timestamp,
                priority=PRIORITY_HIGH if po.status == STATUS_DECLINED else PRIORITY_MEDIUM,
                action_url=f"/purchase-orders/{po.id}",
                roles=(ROLE_DIRECTOR,),
            )
        )
    result.extend(budget_alert_notifications(sub_orgs, now, settings, ROLE_DIRECTOR))
    return result


def admin_notifications(pos, sub_orgs, transactions, now, settings) -> list[Notification]:
    result = []
    pending = [po for po in pos if po.status == STATUS_PENDING_APPROVAL]
    if pending:
        result.append(
            Notification(
                id="pending-approval",
                type=TYPE_PO_STATUS,
                title="POs Pending Approval",
                message=f"{_plural(len(pending), 'purchase order')} awaiting your approval",
                timestamp=now,
                priority=PRIORITY_HIGH,
                action_url="/purchase-orders?status=pending_approval",
                roles=(ROLE_ADMIN,),
            )
        )

    result.extend(budget_alert_notifications(sub_orgs, now, settings, ROLE_ADMIN))

    uploaded = [t for t in transactions if t.created_at and now - t.created_at < settings.transaction_window]
    if uploaded:
        result.append(
            Notification(
                id="recent-transactions",
                type=TYPE_TRANSACTION,
                title="New Transactions Uploaded",
                message=f"{_plural(len(uploaded), 'new transaction')} uploaded",
                timestamp=now,
                priority=PRIORITY_MEDIUM,
                action_url="/transactions",
                roles=(ROLE_ADMIN,),
            )
        )
    return result


def purchaser_notifications(pos, sub_orgs, transactions, now, settings) -> list[Notification]:
    result = []
    ready = [po for po in pos if po.status == STATUS_APPROVED]
    if ready:
        total = sum((to_decimal(po.total_amount) for po in ready), to_decimal(0))
        result.append(
            Notification(
                id="ready-for-purchase",
                type=TYPE_PO_STATUS,
                title="POs Ready for Purchase",
                message=f"{_plural(len(ready), 'PO')} ready for purchase (Total: {_format_money(total)})",
                timestamp=now,
                priority=PRIORITY_HIGH,
                action_url="/purchase-orders/queue",
                roles=(ROLE_PURCHASER,),
            )
        )

    for po in pos:
        if po.status != STATUS_PURCHASED or po.purchased_at is None:
            continue
        if now - po.purchased_at >= settings.purchased_window:
            continue
        result.append(
            Notification(
                id=f"purchased-{po.id}",
                type=TYPE_PO_STATUS,
                title="PO Purchased",
                message=f"{short_ref(po.id)} completed - Don't forget to upload receipts",
                timestamp=po.purchased_at,
                priority=PRIORITY_MEDIUM,
                action_url="/transactions",
                roles=(ROLE_PURCHASER,),
            )
        )
    return result


GENERATORS = (
    (ROLE_DIRECTOR, director_notifications),
    (ROLE_ADMIN, admin_notifications),
    (ROLE_PURCHASER, purchaser_notifications),
)


def derive_notifications(
    pos: Iterable,
    sub_orgs: Iterable,
    transactions: Iterable,
    roles: Iterable[str],
    read_state: Optional[dict] = None,
    now: Optional[datetime] = None,
    settings: Optional[NotificationSettings] = None,
) -> list[Notification]:
    """
    Notifications for a user holding ``roles``.

    Generators run in a fixed role order; a repeated id keeps the first
    notification (with the roles of every duplicate), then the list is sorted
    by priority and timestamp, newest first.
    """
    now = now or utcnow()
    settings = settings or NotificationSettings()
    read_state = read_state or {}
    pos, sub_orgs, transactions = list(pos), list(sub_orgs), list(transactions)
    held = set(roles)

    merged: dict[str, Notification] = {}
    for role, generator in GENERATORS:
        if role not in held:
            continue
        for note in generator(pos, sub_orgs, transactions, now, settings):
            first = merged.get(note.id)
            if first is None:
                merged[note.id] = note
            elif role not in first.roles:
                merged[note.id] = replace(first, roles=first.roles + (role,))

    result = [replace(n, is_read=bool(read_state.get(n.id))) for n in merged.values()]
    result.sort(key=lambda n: (PRIORITY_RANK[n.priority], n.timestamp), reverse=True)
    return result


# ---------------------------------------------------------------------
# Service side (loads the snapshot and the read state)
# ---------------------------------------------------------------------
def _read_state(user_id: int) -> dict:
    pref = UserNotificationPref.query.filter_by(user_id=user_id).first()
    return dict(pref.read_notifications or {}) if pref else {}


def notifications_for_user(user, now: Optional[datetime] = None) -> list[Notification]:
    config = current_app.config
    return derive_notifications(
        recent_pos(int(config.get("NOTIFICATION_RECENT_PO_LIMIT", 20))),
        list_sub_orgs(),
        recent_transactions(int(config.get("NOTIFICATION_RECENT_TRANSACTION_LIMIT", 10))),
        user.effective_roles,
        read_state=_read_state(user.id),
        now=now,
        settings=NotificationSettings.from_config(config),
    )


def unread_count(user, now: Optional[datetime] = None) -> int:
    return sum(1 for n in notifications_for_user(user, now=now) if not n.is_read)


def mark_read(user, notification_ids: Iterable[str]) -> dict:
    """Mark ids as read; the JSON column is reassigned so the change is detected."""
    pref = UserNotificationPref.query.filter_by(user_id=user.id).first()
    if pref is None:
        pref = UserNotificationPref(user_id=user.id, read_notifications={})
        db.session.add(pref)

    state = dict(pref.read_notifications or {})
    for notification_id in notification_ids:
        state[str(notification_id)] = True
    pref.read_notifications = state
    db.session.commit()
    return state


def mark_all_read(user, now: Optional[datetime] = None) -> dict:
    return mark_read(user, [n.id for n in notifications_for_user(user, now=now)])
