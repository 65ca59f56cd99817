"""
Pytest configuration and shared fixtures for the PO Tracker test suite.

Database fixtures run in their own short app context and hand back plain
values (ids, emails), so HTTP tests never share a context (or a logged-in
user) with the fixtures. Service-level tests request ``app_ctx``.
"""
from decimal import Decimal
from types import SimpleNamespace

import pytest

from po_tracker import create_app
from po_tracker.extensions import db
from po_tracker.models import LineItem, PurchaseOrder, SubOrganization, User
from po_tracker.roles import Actor

PASSWORD = "password123"

USER_SPECS = {
    "director": ("director@example.com", "Dana Director", "director", []),
    "director2": ("director2@example.com", "Drew Director", "director", []),
    "admin": ("admin@example.com", "Alex Admin", "admin", []),
    "purchaser": ("purchaser@example.com", "Pat Purchaser", "purchaser", []),
    "guest": ("guest@example.com", "Gale Guest", "guest", []),
    "multi": ("multi@example.com", "Morgan Multi", "director", ["purchaser"]),
}


@pytest.fixture
def app():
    """Application on an in-memory SQLite database with the schema created."""
    app = create_app("config.TestConfig")
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def app_ctx(app):
    """Push an app context for tests that call services directly."""
    with app.app_context():
        yield app


@pytest.fixture
def users(app):
    """One user per role, plus a second director and a director+purchaser."""
    created = {}
    with app.app_context():
        for key, (email, name, role, roles) in USER_SPECS.items():
            user = User(email=email, display_name=name, role=role, roles=list(roles), is_active=True)
            user.set_password(PASSWORD)
            db.session.add(user)
            created[key] = user
        db.session.commit()
        return {
            key: SimpleNamespace(id=u.id, email=u.email, display_name=u.display_name,
                                 role=u.role, roles=list(u.roles))
            for key, u in created.items()
        }


@pytest.fixture
def sub_orgs(app):
    """Two sub-organizations with room in their budgets; returns ids."""
    with app.app_context():
        outreach = SubOrganization(name="Outreach", budget_allocated=Decimal("8000.00"), budget_spent=Decimal("0.00"))
        marketing = SubOrganization(name="Marketing", budget_allocated=Decimal("6000.00"), budget_spent=Decimal("0.00"))
        db.session.add_all([outreach, marketing])
        db.session.commit()
        return {"outreach": outreach.id, "marketing": marketing.id}


@pytest.fixture
def actors(users):
    return {
        key: Actor(u.id, u.display_name, u.role, frozenset(u.roles))
        for key, u in users.items()
    }


@pytest.fixture
def login(app, users):
    """Factory: a fresh test client logged in as the given user key."""
    def _login(key: str):
        client = app.test_client()
        response = client.post(
            "/auth/login",
            json={"email": users[key].email, "password": PASSWORD},
        )
        assert response.status_code == 200, response.get_json()
        return client

    return _login


def make_po(status="draft", creator_id=1, total="100.00", po_id=1, lines=None):
    """Transient PurchaseOrder for unit tests (never added to a session)."""
    po = PurchaseOrder(
        id=po_id,
        name="Robot parts",
        creator_id=creator_id,
        creator_name="Creator",
        status=status,
        total_amount=Decimal(total),
    )
    po.line_items = lines if lines is not None else [
        LineItem(id=10, position=0, vendor="Acme", item_name="Motor", quantity=Decimal("2"),
                 unit_price=Decimal("50.00"), is_purchased=False),
        LineItem(id=11, position=1, vendor="Acme", item_name="Wheel", quantity=Decimal("4"),
                 unit_price=Decimal("12.50"), is_purchased=False),
    ]
    return po


@pytest.fixture
def po_factory():
    return make_po


@pytest.fixture
def po_payload(sub_orgs):
    """Valid create payload allocated to Outreach only (total 150.00)."""
    return {
        "name": "Robot parts",
        "status": "pending_approval",
        "sub_org_id": sub_orgs["outreach"],
        "line_items": [
            {"vendor": "Acme", "item_name": "Motor", "quantity": 2, "unit_price": "50.00"},
            {"vendor": "Acme", "item_name": "Wheel", "quantity": 4, "unit_price": "12.50"},
        ],
    }
