"""
Unit tests for role validation and the Actor object.
"""
import pytest

from po_tracker.errors import PermissionDenied, ValidationError
from po_tracker.roles import Actor, require_any_role, validate_roles


@pytest.mark.unit
class TestValidateRoles:

    def test_primary_only(self):
        assert validate_roles("director") == ("director", [])

    def test_normalizes_and_drops_repeated_primary(self):
        assert validate_roles(" Admin ", ["purchaser", "ADMIN", "director", "purchaser"]) == (
            "admin", ["director", "purchaser"],
        )

    def test_unknown_primary(self):
        with pytest.raises(ValidationError) as excinfo:
            validate_roles("owner")
        assert excinfo.value.field == "role"

    def test_comma_separated_rejected(self):
        with pytest.raises(ValidationError):
            validate_roles("admin", ["director,purchaser"])

    def test_guest_is_exclusive(self):
        assert validate_roles("guest") == ("guest", [])
        with pytest.raises(ValidationError):
            validate_roles("guest", ["director"])
        with pytest.raises(ValidationError):
            validate_roles("admin", ["guest"])


@pytest.mark.unit
class TestActor:

    def test_effective_roles(self):
        actor = Actor(1, "Morgan", "director", frozenset({"purchaser"}))
        assert actor.effective_roles == {"director", "purchaser"}
        assert actor.has_role("purchaser")
        assert not actor.has_role("admin")
        assert actor.role_label == "director+purchaser"

    def test_require_any_role(self):
        require_any_role(Actor(1, "A", "admin"), "admin", "purchaser")
        with pytest.raises(PermissionDenied):
            require_any_role(Actor(1, "G", "guest"), "admin")
