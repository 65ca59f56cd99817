"""
Integration tests for transaction import, allocation, PO links and budget recalculation.
"""
import io
from decimal import Decimal

import pytest
from openpyxl import load_workbook

from po_tracker.budgets import recalculate_budgets, seed_default_sub_orgs, DEFAULT_SUB_ORGS
from po_tracker.extensions import db
from po_tracker.models import SubOrganization, Transaction
from po_tracker.transactions import import_transactions

BANK_CSV = (
    b"Status,Debit,Description,Post Date\n"
    b"Posted,120.00,HOME DEPOT #123,2024-05-01\n"
    b"posted,80.00,AMAZON MKTPLACE,2024-05-02\n"
    b"Pending,15.00,COFFEE SHOP,2024-05-03\n"
    b"Posted,0,REFUND ADJ,2024-05-03\n"
    b"Posted,-4.00,CREDIT,2024-05-03\n"
    b"Posted,80.00,AMAZON MKTPLACE,2024-05-04\n"
    b"Posted,abc,BROKEN ROW,2024-05-04\n"
)


def _import(client, data=BANK_CSV, filename="bank.csv"):
    return client.post(
        "/transactions/import",
        data={"file": (io.BytesIO(data), filename)},
        content_type="multipart/form-data",
    )


def _transactions(client):
    return {t["description"]: t for t in client.get("/transactions").get_json()}


@pytest.mark.integration
class TestImport:

    def test_import_counts(self, login):
        response = _import(login("admin"))
        assert response.status_code == 200
        body = response.get_json()
        assert body["processed"] == 2
        assert body["skipped"] == 5
        assert body["errors"] == ["Row 8: invalid debit amount 'abc'"]

    def test_reimport_is_idempotent(self, login):
        admin = login("admin")
        _import(admin)
        body = _import(admin).get_json()
        assert body["processed"] == 0
        assert body["skipped"] == 7
        assert len(admin.get("/transactions").get_json()) == 2

    def test_director_cannot_import(self, login):
        assert _import(login("director")).status_code == 403

    def test_rejects_other_formats(self, login):
        response = _import(login("purchaser"), b"%PDF", "statement.pdf")
        assert response.status_code == 400

    def test_service_import_without_actor(self, app_ctx):
        rows = [{"status": "posted", "debit": "10", "description": "CLI ROW"}]
        result = import_transactions(rows)
        assert result.to_dict() == {"processed": 1, "skipped": 0, "errors": []}


@pytest.mark.integration
class TestAllocationAndLinks:

    def test_split_allocation_and_recalculate(self, login, sub_orgs):
        admin = login("admin")
        _import(admin)
        txns = _transactions(admin)

        response = admin.patch(f"/transactions/{txns['HOME DEPOT #123']['id']}/allocation", json={
            "organizations": [
                {"sub_org_id": sub_orgs["outreach"], "amount": "90.00"},
                {"sub_org_id": sub_orgs["marketing"], "amount": "30.00"},
            ],
        })
        assert response.status_code == 200, response.get_json()
        assert [a["amount"] for a in response.get_json()["allocations"]] == ["90.00", "30.00"]

        response = admin.patch(f"/transactions/{txns['AMAZON MKTPLACE']['id']}/allocation",
                               json={"sub_org_id": sub_orgs["outreach"]})
        assert response.get_json()["allocations"][0]["percentage"] == 100.0

        first = admin.post("/budgets/recalculate", json={}).get_json()
        second = admin.post("/budgets/recalculate", json={}).get_json()
        assert first == second
        spent = {o["name"]: o["budget_spent"] for o in first["sub_organizations"]}
        assert spent == {"Outreach": "170.00", "Marketing": "30.00"}
        assert first["total_spent"] == "200.00"

        by_org = admin.get(f"/transactions?sub_org_id={sub_orgs['marketing']}").get_json()
        assert [t["description"] for t in by_org] == ["HOME DEPOT #123"]

    def test_split_amounts_must_match(self, login, sub_orgs):
        admin = login("admin")
        _import(admin)
        txn = _transactions(admin)["HOME DEPOT #123"]
        response = admin.patch(f"/transactions/{txn['id']}/allocation", json={
            "organizations": [
                {"sub_org_id": sub_orgs["outreach"], "amount": "90.00"},
                {"sub_org_id": sub_orgs["marketing"], "amount": "10.00"},
            ],
        })
        assert response.status_code == 400

    def test_receipt_notes_and_link(self, login, po_payload):
        director, purchaser = login("director"), login("purchaser")
        po = director.post("/purchase-orders", json=po_payload).get_json()
        _import(purchaser)
        txn = _transactions(purchaser)["AMAZON MKTPLACE"]

        body = purchaser.patch(f"/transactions/{txn['id']}", json={
            "receipt_url": "https://files.example.com/r/1.pdf",
            "receipt_file_name": "1.pdf",
            "notes": "Motors",
        }).get_json()
        assert body["receipt_file_name"] == "1.pdf"
        assert body["notes"] == "Motors"

        body = purchaser.put(f"/transactions/{txn['id']}/link", json={"po_id": po["id"]}).get_json()
        assert body["linked_po_id"] == po["id"]
        assert body["linked_po_name"] == "Robot parts"

        assert purchaser.put(f"/transactions/{txn['id']}/link", json={"po_id": 9999}).status_code == 404

        body = purchaser.delete(f"/transactions/{txn['id']}/link").get_json()
        assert body["linked_po_id"] is None

        body = purchaser.patch(f"/transactions/{txn['id']}", json={"receipt_url": ""}).get_json()
        assert body["receipt_url"] is None

    def test_link_split_across_purchase_orders(self, login, po_payload):
        director, purchaser = login("director"), login("purchaser")
        first = director.post("/purchase-orders", json=po_payload).get_json()
        second = director.post("/purchase-orders", json=dict(po_payload, name="Robot tools")).get_json()
        _import(purchaser)
        txn = _transactions(purchaser)["HOME DEPOT #123"]
        url = f"/transactions/{txn['id']}/link"

        body = purchaser.put(url, json={"links": [
            {"po_id": first["id"], "amount": "90.00"},
            {"po_id": second["id"], "amount": "30.00"},
        ]}).get_json()
        assert [(l["po_name"], l["amount"], l["percentage"]) for l in body["po_links"]] == [
            ("Robot parts", "90.00", 75.0), ("Robot tools", "30.00", 25.0),
        ]
        assert body["linked_po_id"] is None

        body = purchaser.put(url, json={"links": [{"po_id": first["id"]}, {"po_id": second["id"]}]}).get_json()
        assert [l["amount"] for l in body["po_links"]] == ["60.00", "60.00"]

        body = purchaser.put(url, json={"po_id": second["id"]}).get_json()
        assert body["linked_po_id"] == second["id"]
        assert [(l["po_id"], l["amount"]) for l in body["po_links"]] == [(second["id"], "120.00")]

        body = purchaser.put(url, json={"links": []}).get_json()
        assert body["po_links"] == []
        assert body["linked_po_id"] is None

    @pytest.mark.parametrize("links", [
        [{"amount": "90.00"}, {"amount": "20.00"}],
        [{"amount": "90.00"}, {}],
        [{"amount": "120.00"}, {"amount": "0"}],
        [{"amount": "NaN"}, {"amount": "120.00"}],
    ])
    def test_link_amounts_validated(self, login, po_payload, links):
        director, purchaser = login("director"), login("purchaser")
        pos = [
            director.post("/purchase-orders", json=dict(po_payload, name=f"PO {i}")).get_json()
            for i in range(len(links))
        ]
        _import(purchaser)
        txn = _transactions(purchaser)["HOME DEPOT #123"]
        payload = [dict(entry, po_id=po["id"]) for entry, po in zip(links, pos)]

        response = purchaser.put(f"/transactions/{txn['id']}/link", json={"links": payload})
        assert response.status_code == 400
        assert response.get_json()["field"] == "links"
        assert _transactions(purchaser)["HOME DEPOT #123"]["po_links"] == []

    def test_duplicate_po_link_rejected(self, login, po_payload):
        director, purchaser = login("director"), login("purchaser")
        po = director.post("/purchase-orders", json=po_payload).get_json()
        _import(purchaser)
        txn = _transactions(purchaser)["HOME DEPOT #123"]
        response = purchaser.put(f"/transactions/{txn['id']}/link", json={"links": [
            {"po_id": po["id"], "amount": "60.00"},
            {"po_id": po["id"], "amount": "60.00"},
        ]})
        assert response.status_code == 400

    def test_legacy_link_reads_as_single_link(self, app, login):
        admin = login("admin")
        _import(admin)
        with app.app_context():
            txn = Transaction.query.filter_by(description="AMAZON MKTPLACE").one()
            txn.linked_po_id = 77
            db.session.commit()

        (link,) = _transactions(admin)["AMAZON MKTPLACE"]["po_links"]
        assert link == {"po_id": 77, "po_name": "PO #000077", "amount": "80.00", "percentage": 100.0}

    def test_deleted_po_leaves_dangling_link(self, login, po_payload):
        director, admin = login("director"), login("admin")
        po = director.post("/purchase-orders", json=po_payload).get_json()
        _import(admin)
        txn = _transactions(admin)["AMAZON MKTPLACE"]
        admin.put(f"/transactions/{txn['id']}/link", json={"po_id": po["id"]})

        assert director.delete(f"/purchase-orders/{po['id']}").status_code == 200
        assert _transactions(admin)["AMAZON MKTPLACE"]["linked_po_id"] == po["id"]

    def test_only_admin_deletes(self, login):
        admin, purchaser = login("admin"), login("purchaser")
        _import(admin)
        txn = _transactions(admin)["AMAZON MKTPLACE"]
        assert purchaser.delete(f"/transactions/{txn['id']}").status_code == 403
        assert admin.delete(f"/transactions/{txn['id']}").status_code == 200
        assert "AMAZON MKTPLACE" not in _transactions(admin)


@pytest.mark.integration
class TestProvisionalSpend:

    def test_purchased_po_counts_only_until_linked(self, login, po_payload, sub_orgs, app):
        director, admin, purchaser = login("director"), login("admin"), login("purchaser")
        po = director.post("/purchase-orders", json=po_payload).get_json()
        admin.post(f"/purchase-orders/{po['id']}/transition", json={"status": "approved"})
        purchaser.post(f"/purchase-orders/{po['id']}/transition", json={"status": "purchased"})

        with app.app_context():
            assert recalculate_budgets()[sub_orgs["outreach"]] == Decimal("0.00")
            assert recalculate_budgets(include_provisional=True)[sub_orgs["outreach"]] == Decimal("150.00")

        _import(admin)
        txn = _transactions(admin)["HOME DEPOT #123"]
        admin.patch(f"/transactions/{txn['id']}/allocation", json={"sub_org_id": sub_orgs["outreach"]})
        admin.put(f"/transactions/{txn['id']}/link", json={"po_id": po["id"]})

        with app.app_context():
            spent = recalculate_budgets(include_provisional=True)
            assert spent[sub_orgs["outreach"]] == Decimal("120.00")
            assert db.session.get(SubOrganization, sub_orgs["outreach"]).budget_spent == Decimal("120.00")


@pytest.mark.integration
class TestBudgets:

    def test_seed_is_idempotent(self, app_ctx):
        assert seed_default_sub_orgs() == len(DEFAULT_SUB_ORGS)
        assert seed_default_sub_orgs() == 0
        assert SubOrganization.query.count() == len(DEFAULT_SUB_ORGS)

    def test_admin_manages_sub_orgs(self, login, sub_orgs):
        admin = login("admin")
        response = admin.post("/budgets", json={"name": "Travel", "budget_allocated": "5000"})
        assert response.status_code == 201
        assert response.get_json()["budget_allocated"] == "5000.00"

        assert admin.post("/budgets", json={"name": "Travel", "budget_allocated": "1"}).status_code == 400

        body = admin.patch(f"/budgets/{sub_orgs['outreach']}", json={"budget_spent": "7600"}).get_json()
        assert body["remaining"] == "400.00"
        assert body["utilization"] == 95.0

        assert login("director").patch(f"/budgets/{sub_orgs['outreach']}", json={"budget_allocated": 1}).status_code == 403

    def test_budget_export_sorted_by_utilization(self, login, sub_orgs):
        admin = login("admin")
        admin.patch(f"/budgets/{sub_orgs['marketing']}", json={"budget_spent": "3000"})
        response = admin.get("/budgets/export")
        wb = load_workbook(io.BytesIO(response.data))
        sheet = wb["Budget Summary"]
        assert [row[0] for row in sheet.iter_rows(min_row=2, values_only=True)] == ["Marketing", "Outreach"]
