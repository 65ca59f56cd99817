"""
Unit tests for the PO lifecycle engine.
"""
from datetime import datetime
from itertools import product

import pytest

from po_tracker.errors import InvalidTransition, NotFound, PermissionDenied, ValidationError
from po_tracker.roles import ALL_ROLES, Actor
from po_tracker.workflow import (
    ALL_STATUSES,
    DEFAULT_PURCHASED_NOTE,
    TRANSITIONS,
    allowed_targets,
    ensure_can_delete,
    ensure_can_edit,
    initial_status,
    set_line_item_purchased,
    transition,
)

NOW = datetime(2024, 6, 1, 12, 0, 0)

CREATOR = Actor(1, "Dana Director", "director")
OTHER_DIRECTOR = Actor(2, "Drew Director", "director")
ADMIN = Actor(3, "Alex Admin", "admin")
PURCHASER = Actor(4, "Pat Purchaser", "purchaser")
GUEST = Actor(5, "Gale Guest", "guest")


@pytest.mark.unit
class TestTransitionTable:
    """Every (from, role, to) triple either applies or raises InvalidTransition."""

    @pytest.mark.parametrize("from_status,role,to_status", list(product(ALL_STATUSES, ALL_ROLES, ALL_STATUSES)))
    def test_triple(self, po_factory, from_status, role, to_status):
        po = po_factory(status=from_status, creator_id=1)
        actor = Actor(1, "Same User", role)
        rule = TRANSITIONS.get((from_status, to_status))

        if rule is not None and role in rule.roles:
            result = transition(po, to_status, actor, comment="wrong vendor", now=NOW)
            assert result is po
            assert po.status == to_status
            assert po.updated_at == NOW
        else:
            with pytest.raises(InvalidTransition) as excinfo:
                transition(po, to_status, actor, comment="wrong vendor", now=NOW)
            assert po.status == from_status
            assert excinfo.value.current_status == from_status
            assert excinfo.value.requested_status == to_status

    def test_purchased_is_terminal(self):
        for (from_status, _to), _rule in TRANSITIONS.items():
            assert from_status != "purchased"

    def test_no_decline_from_draft_or_approved(self):
        assert ("draft", "declined") not in TRANSITIONS
        assert ("approved", "declined") not in TRANSITIONS

    def test_allowed_targets(self):
        assert set(allowed_targets("pending_approval", ADMIN)) == {"approved", "declined"}
        assert set(allowed_targets("approved", PURCHASER)) == {"pending_purchase", "purchased"}
        assert allowed_targets("pending_approval", GUEST) == []


@pytest.mark.unit
class TestTransitionSideEffects:

    def test_submit_requires_creator(self, po_factory):
        po = po_factory(status="draft", creator_id=CREATOR.user_id)
        with pytest.raises(PermissionDenied):
            transition(po, "pending_approval", OTHER_DIRECTOR, now=NOW)
        assert po.status == "draft"

    def test_approve_records_attribution(self, po_factory):
        po = po_factory(status="pending_approval")
        transition(po, "approved", ADMIN, comment="  looks good ", now=NOW)
        assert po.status == "approved"
        assert po.approved_at == NOW
        assert po.approved_by_id == ADMIN.user_id
        assert po.approved_by_name == "Alex Admin"
        assert po.admin_comments == "looks good"

    @pytest.mark.parametrize("reason", [None, "", "   ", "\n\t"])
    def test_decline_requires_reason(self, po_factory, reason):
        po = po_factory(status="pending_approval")
        with pytest.raises(ValidationError):
            transition(po, "declined", ADMIN, comment=reason, now=NOW)
        assert po.status == "pending_approval"
        assert po.admin_comments is None
        assert po.updated_at is None

    def test_decline_stores_reason(self, po_factory):
        po = po_factory(status="pending_approval")
        transition(po, "declined", ADMIN, comment="wrong vendor", now=NOW)
        assert po.status == "declined"
        assert po.admin_comments == "wrong vendor"

    def test_resubmit_keeps_decline_comment(self, po_factory):
        po = po_factory(status="pending_approval", creator_id=CREATOR.user_id)
        transition(po, "declined", ADMIN, comment="wrong vendor", now=NOW)
        transition(po, "pending_approval", CREATOR, now=NOW)
        assert po.status == "pending_approval"
        assert po.admin_comments == "wrong vendor"

    def test_purchase_defaults_comment(self, po_factory):
        po = po_factory(status="approved")
        transition(po, "purchased", PURCHASER, now=NOW)
        assert po.purchased_at == NOW
        assert po.purchased_by_id == PURCHASER.user_id
        assert po.purchaser_comments == DEFAULT_PURCHASED_NOTE

    def test_purchase_with_comment(self, po_factory):
        po = po_factory(status="pending_purchase")
        transition(po, "purchased", PURCHASER, comment="Ordered on Amazon", now=NOW)
        assert po.purchaser_comments == "Ordered on Amazon"

    def test_additional_role_counts(self, po_factory):
        multi = Actor(9, "Morgan Multi", "director", frozenset({"purchaser"}))
        po = po_factory(status="approved")
        transition(po, "purchased", multi, now=NOW)
        assert po.status == "purchased"

    def test_error_reports_role_label(self, po_factory):
        po = po_factory(status="draft")
        with pytest.raises(InvalidTransition) as excinfo:
            transition(po, "approved", Actor(9, "M", "director", frozenset({"purchaser"})), now=NOW)
        assert excinfo.value.actor_role == "director+purchaser"


@pytest.mark.unit
class TestCreationAndPermissions:

    def test_initial_status_defaults_to_pending(self):
        assert initial_status(None, CREATOR) == "pending_approval"
        assert initial_status("draft", ADMIN) == "draft"

    @pytest.mark.parametrize("actor", [PURCHASER, GUEST])
    def test_only_directors_and_admins_create(self, actor):
        with pytest.raises(PermissionDenied):
            initial_status("draft", actor)

    def test_cannot_create_approved(self):
        with pytest.raises(InvalidTransition):
            initial_status("approved", ADMIN)

    def test_edit_only_creator_and_editable_status(self, po_factory):
        ensure_can_edit(po_factory(status="draft", creator_id=1), CREATOR)
        ensure_can_edit(po_factory(status="declined", creator_id=1), CREATOR)
        with pytest.raises(PermissionDenied):
            ensure_can_edit(po_factory(status="draft", creator_id=1), ADMIN)
        with pytest.raises(ValidationError):
            ensure_can_edit(po_factory(status="approved", creator_id=1), CREATOR)

    def test_delete_creator_or_admin(self, po_factory):
        po = po_factory(status="approved", creator_id=1)
        ensure_can_delete(po, CREATOR)
        ensure_can_delete(po, ADMIN)
        with pytest.raises(PermissionDenied):
            ensure_can_delete(po, OTHER_DIRECTOR)
        with pytest.raises(PermissionDenied):
            ensure_can_delete(po, PURCHASER)


@pytest.mark.unit
class TestLineItemProgress:

    def test_first_check_moves_to_pending_purchase(self, po_factory):
        po = po_factory(status="approved")
        set_line_item_purchased(po, 10, True, PURCHASER, now=NOW)
        assert po.line_items[0].is_purchased is True
        assert po.status == "pending_purchase"
        assert po.purchaser_comments

    def test_second_check_keeps_status(self, po_factory):
        po = po_factory(status="approved")
        set_line_item_purchased(po, 10, True, PURCHASER, now=NOW)
        set_line_item_purchased(po, 11, True, PURCHASER, now=NOW)
        assert po.status == "pending_purchase"
        assert all(li.is_purchased for li in po.line_items)

    def test_uncheck_on_approved_does_not_transition(self, po_factory):
        po = po_factory(status="approved")
        set_line_item_purchased(po, 10, False, PURCHASER, now=NOW)
        assert po.status == "approved"

    def test_requires_purchaser(self, po_factory):
        with pytest.raises(PermissionDenied):
            set_line_item_purchased(po_factory(status="approved"), 10, True, ADMIN, now=NOW)

    def test_requires_purchasing_status(self, po_factory):
        with pytest.raises(InvalidTransition):
            set_line_item_purchased(po_factory(status="pending_approval"), 10, True, PURCHASER, now=NOW)

    def test_unknown_line_item(self, po_factory):
        with pytest.raises(NotFound):
            set_line_item_purchased(po_factory(status="approved"), 999, True, PURCHASER, now=NOW)
