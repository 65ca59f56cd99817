"""
Audit trail helpers.

Captures WHO did WHAT to WHICH entity, with BEFORE/AFTER snapshots.

IMPORTANT:
- log_action() only ADDS an AuditLog row to the current session. The calling
  service owns the transaction (flush -> log_action -> commit).
- The actor is passed explicitly; CLI commands log with actor=None.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from flask import has_request_context, request

from .extensions import db
from .models import AuditLog
from .roles import Actor


def _safe_value(value: Any) -> Any:
    """JSON-safe snapshot value: JSON columns stay structured, everything else is str()."""
    if value is None or isinstance(value, (bool, int, str, list, dict)):
        return value
    return str(value)


def serialize_model(instance: Any) -> Dict[str, Any]:
    """
    Snapshot a model instance from its table columns.

    Relationships are not followed; pass extra keys explicitly when needed.
    """
    return {
        column.name: _safe_value(getattr(instance, column.name))
        for column in instance.__table__.columns
        if column.name != "password_hash"
    }


def log_action(
    entity: Any,
    action: str,
    *,
    actor: Optional[Actor] = None,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Add an AuditLog entry to the current session.

    entity must already have an id (flush first for new rows).

    SECURITY NOTE:
    - request.remote_addr is as Flask sees it; behind a proxy configure ProxyFix.
    """
    entity_id = getattr(entity, "id", None)
    if entity_id is None:
        raise ValueError("log_action entity must have an 'id' attribute (after flush).")

    entry = AuditLog(
        user_id=actor.user_id if actor else None,
        username_snapshot=actor.display_name if actor else None,
        entity_type=entity.__class__.__name__,
        entity_id=int(entity_id),
        action=str(action),
        before_data=json.dumps(before, ensure_ascii=False) if before else None,
        after_data=json.dumps(after, ensure_ascii=False) if after else None,
        ip_address=request.remote_addr if has_request_context() else None,
    )
    db.session.add(entry)
