"""
Stock order workflow tests.

    Draft → PendingApproval → Approved → AwaitingPick → ReadyForCollection → Collected
    PendingApproval → Draft (reject), any pre-Collected state → Cancelled

Covers numbering, pricing, the reserve-on-approve / issue-on-collect
stock effects, reservation release on cancel, invalid transitions (409),
permission guards and tenant isolation.
"""

from datetime import date
from decimal import Decimal

import pytest

from siteops.models import db
from siteops.models.core import Site
from siteops.models.stock import BayLocation, Product, StockLevel, StockLocation, StockTransaction

BASE = "/api/v1/stock-orders"

ORDER_PERMS = ("StockManagement.View", "StockManagement.CreateOrders", "StockManagement.ApproveOrders")


# ═════════════════════════════════════════════════════════════════════════════
# ORM Helper Factories
# ═════════════════════════════════════════════════════════════════════════════


def _site(tenant, code="DUB-01"):
    s = Site(tenant_id=tenant.id, site_code=code, site_name=f"Site {code}", is_active=True)
    db.session.add(s)
    db.session.flush()
    return s


def _location(tenant, code="WH-MAIN"):
    loc = StockLocation(tenant_id=tenant.id, location_code=code, location_name="Main Warehouse",
                        location_type="Warehouse", is_active=True)
    db.session.add(loc)
    db.session.flush()
    return loc


def _product(tenant, code, rate="12.50"):
    p = Product(tenant_id=tenant.id, product_code=code, product_name=f"Product {code}",
                unit_type="Each", base_rate=Decimal(rate), cost_price=Decimal("8.00"),
                reorder_level=2, is_active=True)
    db.session.add(p)
    db.session.flush()
    return p


def _level(tenant, product, location, on_hand, reserved=0, bay=None):
    lvl = StockLevel(tenant_id=tenant.id, product_id=product.id, location_id=location.id,
                     quantity_on_hand=on_hand, quantity_reserved=reserved, quantity_on_order=0,
                     bay_location_id=bay.id if bay else None)
    db.session.add(lvl)
    db.session.flush()
    return lvl


@pytest.fixture()
def stock(default_tenant):
    """A site, a warehouse and two stocked products (10 and 3 on hand)."""
    site = _site(default_tenant)
    loc = _location(default_tenant)
    bolts = _product(default_tenant, "BOLT-M10", "12.50")
    plaster = _product(default_tenant, "PLAS-25KG", "9.99")
    bolts_level = _level(default_tenant, bolts, loc, 10)
    plaster_level = _level(default_tenant, plaster, loc, 3)
    db.session.commit()
    return {
        "site": site, "location": loc,
        "bolts": bolts, "plaster": plaster,
        "bolts_level": bolts_level, "plaster_level": plaster_level,
    }


@pytest.fixture()
def headers(auth_headers):
    return auth_headers(*ORDER_PERMS)


def _create(client, headers, stock, lines=None, **extra):
    payload = {
        "site_id": stock["site"].id,
        "source_location_id": stock["location"].id,
        "lines": lines if lines is not None else [{"product_id": stock["bolts"].id, "quantity": 4}],
        **extra,
    }
    return client.post(BASE, json=payload, headers=headers)


def _order_at(client, headers, stock, status, lines=None):
    """Drive a new order through the API up to ``status``."""
    res = _create(client, headers, stock, lines=lines)
    assert res.status_code == 201, res.get_json()
    oid = res.get_json()["id"]
    path = {
        "Draft": [],
        "PendingApproval": ["submit"],
        "Approved": ["submit", "approve"],
        "AwaitingPick": ["submit", "approve", "awaiting-pick"],
        "ReadyForCollection": ["submit", "approve", "ready-for-collection"],
        "Collected": ["submit", "approve", "collect"],
        "Cancelled": ["cancel"],
    }[status]
    for action in path:
        r = client.post(f"{BASE}/{oid}/{action}", headers=headers)
        assert r.status_code == 200, (action, r.get_json())
    return oid


def _level_row(level):
    return db.session.get(StockLevel, level.id)


# ═════════════════════════════════════════════════════════════════════════════
# Create / edit
# ═════════════════════════════════════════════════════════════════════════════


class TestCreateOrder:
    def test_create_prices_lines_and_numbers_per_day(self, client, headers, stock):
        first = _create(client, headers, stock)
        second = _create(client, headers, stock)

        assert first.status_code == 201
        body = first.get_json()
        stem = f"SO-{date.today():%Y%m%d}-"
        assert body["order_number"] == f"{stem}001"
        assert second.get_json()["order_number"] == f"{stem}002"
        assert body["status"] == "Draft"
        assert body["order_total"] == 50.0
        assert body["lines"][0]["unit_price"] == 12.5
        assert body["site_name"] == "Site DUB-01"
        assert first.headers["Location"].endswith(f"{BASE}/{body['id']}")

    def test_create_without_lines_is_rejected(self, client, headers, stock):
        res = _create(client, headers, stock, lines=[])
        assert res.status_code == 400

    def test_create_with_zero_quantity_is_rejected(self, client, headers, stock):
        res = _create(client, headers, stock, lines=[{"product_id": stock["bolts"].id, "quantity": 0}])
        assert res.status_code == 400

    def test_create_with_unknown_site_is_404(self, client, headers, stock):
        res = client.post(BASE, json={
            "site_id": 9999, "source_location_id": stock["location"].id,
            "lines": [{"product_id": stock["bolts"].id, "quantity": 1}],
        }, headers=headers)
        assert res.status_code == 404

    def test_update_replaces_lines_in_draft(self, client, headers, stock):
        oid = _order_at(client, headers, stock, "Draft")
        res = client.put(f"{BASE}/{oid}", json={
            "lines": [{"product_id": stock["plaster"].id, "quantity": 2}],
            "notes": "Deliver to gate B",
        }, headers=headers)
        assert res.status_code == 200
        body = res.get_json()
        assert len(body["lines"]) == 1
        assert body["lines"][0]["product_code"] == "PLAS-25KG"
        assert body["order_total"] == pytest.approx(19.98)
        assert body["notes"] == "Deliver to gate B"

    def test_update_outside_draft_is_rejected(self, client, headers, stock):
        oid = _order_at(client, headers, stock, "PendingApproval")
        res = client.put(f"{BASE}/{oid}", json={"notes": "late edit"}, headers=headers)
        assert res.status_code == 400

    def test_delete_draft_then_404(self, client, headers, stock):
        oid = _order_at(client, headers, stock, "Draft")
        assert client.delete(f"{BASE}/{oid}", headers=headers).status_code == 204
        assert client.get(f"{BASE}/{oid}", headers=headers).status_code == 404

    def test_list_filters_by_status(self, client, headers, stock):
        _order_at(client, headers, stock, "Draft")
        _order_at(client, headers, stock, "PendingApproval")
        res = client.get(f"{BASE}?status=PendingApproval", headers=headers)
        assert res.status_code == 200
        body = res.get_json()
        assert body["total"] == 1
        assert body["items"][0]["status"] == "PendingApproval"

    def test_list_rejects_unknown_status(self, client, headers, stock):
        assert client.get(f"{BASE}?status=Shipped", headers=headers).status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# Approve / reject
# ═════════════════════════════════════════════════════════════════════════════


class TestApproval:
    def test_approve_reserves_stock(self, client, headers, stock):
        oid = _order_at(client, headers, stock, "PendingApproval")
        res = client.post(f"{BASE}/{oid}/approve", headers=headers)

        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "Approved"
        assert body["approved_by"].startswith("Test ")
        assert body["approved_date"] is not None
        level = _level_row(stock["bolts_level"])
        assert level.quantity_reserved == 4
        assert level.quantity_on_hand == 10
        assert level.quantity_available == 6

    def test_shortfall_on_one_line_reserves_nothing(self, client, headers, stock):
        lines = [
            {"product_id": stock["bolts"].id, "quantity": 2},
            {"product_id": stock["plaster"].id, "quantity": 5},
        ]
        oid = _order_at(client, headers, stock, "PendingApproval", lines=lines)
        res = client.post(f"{BASE}/{oid}/approve", headers=headers)

        assert res.status_code == 400
        assert "PLAS-25KG" in res.get_json()["error"]
        assert res.get_json()["details"]["available"] == 3
        assert _level_row(stock["bolts_level"]).quantity_reserved == 0
        assert client.get(f"{BASE}/{oid}", headers=headers).get_json()["status"] == "PendingApproval"

    def test_duplicate_product_lines_are_checked_together(self, client, headers, stock):
        lines = [
            {"product_id": stock["bolts"].id, "quantity": 6},
            {"product_id": stock["bolts"].id, "quantity": 6},
        ]
        oid = _order_at(client, headers, stock, "PendingApproval", lines=lines)
        res = client.post(f"{BASE}/{oid}/approve", headers=headers)
        assert res.status_code == 400
        assert res.get_json()["details"]["requested"] == 12

    def test_existing_reservations_reduce_availability(self, client, headers, stock):
        _order_at(client, headers, stock, "Approved")          # holds 4 of 10
        lines = [{"product_id": stock["bolts"].id, "quantity": 7}]
        oid = _order_at(client, headers, stock, "PendingApproval", lines=lines)
        assert client.post(f"{BASE}/{oid}/approve", headers=headers).status_code == 400

    def test_product_without_level_cannot_be_approved(self, client, headers, stock, default_tenant):
        ghost = _product(default_tenant, "GHOST-1")
        db.session.commit()
        oid = _order_at(client, headers, stock, "PendingApproval",
                        lines=[{"product_id": ghost.id, "quantity": 1}])
        assert client.post(f"{BASE}/{oid}/approve", headers=headers).status_code == 400

    def test_approve_draft_is_invalid_transition(self, client, headers, stock):
        oid = _order_at(client, headers, stock, "Draft")
        res = client.post(f"{BASE}/{oid}/approve", headers=headers)
        assert res.status_code == 409
        assert res.get_json()["details"] == {"current_status": "Draft", "target_status": "Approved"}

    def test_reject_returns_to_draft_with_reason(self, client, headers, stock):
        oid = _order_at(client, headers, stock, "PendingApproval")
        res = client.post(f"{BASE}/{oid}/reject", json={"reason": "Wrong site"}, headers=headers)
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "Draft"
        assert "Wrong site" in body["notes"]
        assert body["notes"].startswith("Rejected by ")

    def test_reject_requires_reason(self, client, headers, stock):
        oid = _order_at(client, headers, stock, "PendingApproval")
        res = client.post(f"{BASE}/{oid}/reject", json={"reason": "  "}, headers=headers)
        assert res.status_code == 400

    def test_rejected_order_can_be_resubmitted(self, client, headers, stock):
        oid = _order_at(client, headers, stock, "PendingApproval")
        client.post(f"{BASE}/{oid}/reject", json={"reason": "Fix quantity"}, headers=headers)
        res = client.post(f"{BASE}/{oid}/submit", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["status"] == "PendingApproval"


# ═════════════════════════════════════════════════════════════════════════════
# Pick / collect / cancel
# ═════════════════════════════════════════════════════════════════════════════


class TestFulfilment:
    def test_collect_issues_stock_and_writes_ledger(self, client, headers, stock):
        oid = _order_at(client, headers, stock, "Approved")
        res = client.post(f"{BASE}/{oid}/collect", headers=headers)

        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "Collected"
        assert body["collected_date"] is not None
        assert body["lines"][0]["quantity_issued"] == 4

        level = _level_row(stock["bolts_level"])
        assert level.quantity_on_hand == 6
        assert level.quantity_reserved == 0

        txns = StockTransaction.query.filter_by(reference_type="StockOrder", reference_id=oid).all()
        assert len(txns) == 1
        assert txns[0].transaction_type == "OrderIssue"
        assert txns[0].quantity == -4
        assert txns[0].transaction_number.startswith(f"TXN-{date.today():%Y%m%d}-")

    def test_full_pick_path(self, client, headers, stock):
        oid = _order_at(client, headers, stock, "AwaitingPick")
        assert client.post(f"{BASE}/{oid}/ready-for-collection", headers=headers).status_code == 200
        res = client.post(f"{BASE}/{oid}/collect", headers=headers)
        assert res.status_code == 200
        assert _level_row(stock["bolts_level"]).quantity_on_hand == 6

    def test_collect_from_awaiting_pick_is_invalid(self, client, headers, stock):
        oid = _order_at(client, headers, stock, "AwaitingPick")
        res = client.post(f"{BASE}/{oid}/collect", headers=headers)
        assert res.status_code == 409
        assert "ReadyForCollection" in res.get_json()["error"]

    def test_collect_when_stock_was_adjusted_away(self, client, headers, stock):
        oid = _order_at(client, headers, stock, "Approved")
        level = _level_row(stock["bolts_level"])
        level.quantity_on_hand = 4
        level.quantity_reserved = 4
        db.session.commit()
        res =client.post(f"{BASE}/{oid}/collect", headers=headers)
        assert res.status_code == 200
        assert _level_row(stock["bolts_level"]).quantity_on_hand == 0

    def test_awaiting_pick_requires_approved(self, client, headers, stock):
        oid = _order_at(client, headers, stock, "PendingApproval")
        assert client.post(f"{BASE}/{oid}/awaiting-pick", headers=headers).status_code == 409

    @pytest.mark.parametrize("status", ["Approved", "AwaitingPick", "ReadyForCollection"])
    def test_cancel_releases_reservation(self, client, headers, stock, status):
        oid = _order_at(client, headers, stock, status)
        assert _level_row(stock["bolts_level"]).quantity_reserved == 4

        res = client.post(f"{BASE}/{oid}/cancel", json={"reason": "Site closed"}, headers=headers)
        assert res.status_code == 200
        assert res.get_json()["status"] == "Cancelled"
        assert "Site closed" in res.get_json()["notes"]
        assert _level_row(stock["bolts_level"]).quantity_reserved == 0

    def test_cancel_pending_touches_no_stock(self, client, headers, stock, default_tenant):
        # Someone else's reservation must survive this cancel.
        stock["bolts_level"].quantity_reserved = 3
        db.session.commit()
        oid = _order_at(client, headers, stock, "PendingApproval")
        assert client.post(f"{BASE}/{oid}/cancel", headers=headers).status_code == 200
        assert _level_row(stock["bolts_level"]).quantity_reserved == 3

    @pytest.mark.parametrize("status", ["Collected", "Cancelled"])
    def test_terminal_orders_cannot_be_cancelled(self, client, headers, stock, status):
        oid = _order_at(client, headers, stock, status)
        assert client.post(f"{BASE}/{oid}/cancel", headers=headers).status_code == 409

    def test_docket_sorts_lines_by_bay(self, client, headers, stock, default_tenant):
        loc = stock["location"]
        bay_b = BayLocation(tenant_id=default_tenant.id, stock_location_id=loc.id, bay_code="B-02", is_active=True)
        bay_a = BayLocation(tenant_id=default_tenant.id, stock_location_id=loc.id, bay_code="A-01", is_active=True)
        db.session.add_all([bay_a, bay_b])
        db.session.flush()
        stock["bolts_level"].bay_location_id = bay_b.id
        stock["plaster_level"].bay_location_id = bay_a.id
        unbayed = _product(default_tenant, "AAA-TAPE")
        _level(default_tenant, unbayed, loc, 50)
        db.session.commit()

        lines = [
            {"product_id": unbayed.id, "quantity": 1},
            {"product_id": stock["bolts"].id, "quantity": 1},
            {"product_id": stock["plaster"].id, "quantity": 1},
        ]
        oid = _order_at(client, headers, stock, "Approved", lines=lines)
        res = client.get(f"{BASE}/{oid}/docket", headers=headers)

        assert res.status_code == 200
        body = res.get_json()
        assert [ln["bay_code"] for ln in body["lines"]] == ["A-01", "B-02", None]
        assert body["source_location_code"] == "WH-MAIN"


# ═════════════════════════════════════════════════════════════════════════════
# Guards
# ═════════════════════════════════════════════════════════════════════════════


class TestGuards:
    def test_requires_token(self, client, stock):
        assert client.get(BASE).status_code == 401

    def test_view_only_user_cannot_create(self, client, auth_headers, stock):
        res = _create(client, auth_headers("StockManagement.View"), stock)
        assert res.status_code == 403
        assert res.get_json()["required"] == "StockManagement.CreateOrders"

    def test_requester_cannot_approve(self, client, auth_headers, stock):
        requester = auth_headers("StockManagement.View", "StockManagement.CreateOrders")
        oid = _order_at(client, requester, stock, "PendingApproval")
        assert client.post(f"{BASE}/{oid}/approve", headers=requester).status_code == 403

    def test_admin_role_bypasses_permission_checks(self, client, admin_headers, stock):
        oid = _order_at(client, admin_headers, stock, "Approved")
        assert client.get(f"{BASE}/{oid}", headers=admin_headers).status_code == 200

    def test_other_tenant_sees_404(self, client, headers, auth_headers, stock, other_tenant):
        oid = _order_at(client, headers, stock, "Draft")
        outsider = auth_headers(*ORDER_PERMS, tenant=other_tenant)
        assert client.get(f"{BASE}/{oid}", headers=outsider).status_code == 404
        assert client.post(f"{BASE}/{oid}/submit", headers=outsider).status_code == 404
        assert client.get(BASE, headers=outsider).get_json()["total"] == 0
