"""
Role & permission model.

A user has one primary ``role`` and an optional set of additional ``roles``.
The effective set is {role} | roles. Guest is exclusive: it is only ever a
primary role and never combined with staff roles.

Core operations never read ambient login state. They receive an explicit
:class:`Actor` built at the HTTP/CLI boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from .errors import PermissionDenied, ValidationError

ROLE_DIRECTOR = "director"
ROLE_ADMIN = "admin"
ROLE_PURCHASER = "purchaser"
ROLE_GUEST = "guest"

ALL_ROLES = (ROLE_DIRECTOR, ROLE_ADMIN, ROLE_PURCHASER, ROLE_GUEST)
STAFF_ROLES = frozenset({ROLE_DIRECTOR, ROLE_ADMIN, ROLE_PURCHASER})

# Who may create purchase orders
CREATOR_ROLES = frozenset({ROLE_DIRECTOR, ROLE_ADMIN})
# Who may import/allocate/annotate transactions
TRANSACTION_ROLES = frozenset({ROLE_ADMIN, ROLE_PURCHASER})


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of a core operation."""

    user_id: Optional[int]
    display_name: str
    role: str
    roles: frozenset = field(default_factory=frozenset)

    @property
    def effective_roles(self) -> frozenset:
        return frozenset({self.role}) | frozenset(self.roles)

    @property
    def is_guest(self) -> bool:
        return self.role == ROLE_GUEST

    @property
    def role_label(self) -> str:
        """Stable text for error messages, e.g. 'admin+director'."""
        return "+".join(sorted(self.effective_roles))

    def has_role(self, role_name: str) -> bool:
        return role_name in self.effective_roles

    def has_any_role(self, *role_names: str) -> bool:
        return any(self.has_role(name) for name in role_names)


def validate_roles(role: str, roles: Iterable[str] | None = None) -> tuple[str, list[str]]:
    """
    Validate a primary role plus additional roles.

    Returns the normalized (role, sorted additional roles). The primary role is
    dropped from the additional list if repeated there.
    """
    role = (role or "").strip().lower()
    if role not in ALL_ROLES:
        raise ValidationError(
            f"Primary role '{role}' is invalid. Role must be one of: {', '.join(ALL_ROLES)}",
            field="role",
        )

    extra = []
    for name in roles or []:
        if not isinstance(name, str):
            raise ValidationError("Each additional role must be a string", field="roles")
        if "," in name:
            raise ValidationError(
                f"Found comma-separated role '{name}'. Use separate list elements.",
                field="roles",
            )
        name = name.strip().lower()
        if name not in STAFF_ROLES:
            raise ValidationError(
                f"Additional role '{name}' is invalid. Roles must be one of: "
                f"{', '.join(sorted(STAFF_ROLES))}",
                field="roles",
            )
        if name != role and name not in extra:
            extra.append(name)

    if role == ROLE_GUEST and extra:
        raise ValidationError("Guest access cannot be combined with staff roles", field="roles")

    return role, sorted(extra)


def require_any_role(actor: Actor, *role_names: str, action: str = "perform this action") -> None:
    """Raise PermissionDenied unless the actor holds at least one of the roles."""
    if not actor.has_any_role(*role_names):
        raise PermissionDenied(
            f"Role {actor.role_label} may not {action} (requires {' or '.join(role_names)})"
        )
