"""
Typed exceptions for the PO tracker core.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer answers with, so callers catch by type instead of parsing messages:

    POTrackerError (base)
    +-- InvalidTransition   status change not allowed from state/actor (409)
    +-- ValidationError     malformed input, missing decline reason,
    |                       allocation not summing to the total (400)
    +-- NotFound            id does not resolve (404)
    +-- PermissionDenied    actor lacks the role/ownership required (403)
"""

from __future__ import annotations


class POTrackerError(Exception):
    """Base class for all domain errors."""

    code = "PO_TRACKER_ERROR"
    http_status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class InvalidTransition(POTrackerError):
    """A PO status change that the lifecycle does not allow."""

    code = "INVALID_TRANSITION"
    http_status = 409

    def __init__(self, current_status: str, requested_status: str, actor_role: str):
        self.current_status = current_status
        self.requested_status = requested_status
        self.actor_role = actor_role
        super().__init__(
            f"Cannot move purchase order from '{current_status}' to "
            f"'{requested_status}' as {actor_role}"
        )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(
            current_status=self.current_status,
            requested_status=self.requested_status,
            actor_role=self.actor_role,
        )
        return data


class ValidationError(POTrackerError):
    code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        return data


class NotFound(POTrackerError):
    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class PermissionDenied(POTrackerError):
    code = "PERMISSION_DENIED"
    http_status = 403
