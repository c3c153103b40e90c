"""
Proposals: pricing roll-up, workflow and revisions.

    Draft → Submitted → UnderReview → Approved → Won / Lost
    Submitted / UnderReview → Rejected → (revision) Draft

All money is Decimal rounded to 2 dp with ROUND_HALF_EVEN.
"""

from datetime import date
from decimal import Decimal

import pytest

from siteops.models import db
from siteops.models.core import Company, Contact
from siteops.models.proposals import Proposal
from siteops.models.stock import Product
from siteops.services import proposal_service

BASE = "/api/v1/proposals"

ESTIMATOR = (
    "Proposals.View", "Proposals.Create", "Proposals.Edit", "Proposals.Delete",
    "Proposals.Submit", "Proposals.Approve", "Proposals.ViewCostings",
)


def _company(tenant, code="ACME"):
    c = Company(tenant_id=tenant.id, company_code=code, company_name=f"{code} Developments",
                company_type="Customer", is_active=True)
    db.session.add(c)
    db.session.commit()
    return c


def _contact(tenant, company, first_name="Niamh"):
    ct = Contact(tenant_id=tenant.id, company_id=company.id, first_name=first_name, last_name="Byrne")
    db.session.add(ct)
    db.session.commit()
    return ct


@pytest.fixture()
def company(default_tenant):
    return _company(default_tenant)


@pytest.fixture()
def headers(auth_headers):
    return auth_headers(*ESTIMATOR)


SECTIONS = [
    {"section_name": "Groundworks", "line_items": [
        {"description": "Excavate foundations", "quantity": 10, "unit_price": "25.00", "unit_cost": "15.00"},
    ]},
    {"section_name": "Drainage", "line_items": [
        {"description": "Install gully", "quantity": 2, "unit_price": "100.00", "unit_cost": "60.00"},
    ]},
]


def _create(client, headers, company, **extra):
    payload = {"company_id": company.id, "project_name": "Riverside Apartments", **extra}
    res = client.post(BASE, json=payload, headers=headers)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _advance(client, headers, pid, *actions):
    body = {
        "reject": {"reason": "Too expensive"},
        "lose": {"reason": "Went with competitor"},
    }
    for action in actions:
        res = client.post(f"{BASE}/{pid}/{action}", json=body.get(action, {}), headers=headers)
        assert res.status_code == 200, (action, res.get_json())
    return res.get_json()


# ── Pricing ──────────────────────────────────────────────────────────────


class TestPricing:
    def test_number_and_defaults(self, client, headers, company):
        body = _create(client, headers, company)
        assert body["proposal_number"] == f"PROP-{date.today().year}-0001"
        assert body["version"] == 1
        assert body["status"] == "Draft"
        assert body["vat_rate"] == 23.0
        assert body["company_name"] == "ACME Developments"

    def test_rolls_totals_up_through_sections(self, client, headers, company):
        body = _create(client, headers, company, sections=SECTIONS, discount_percent=10, vat_rate="13.5")

        assert [s["section_total"] for s in body["sections"]] == [250.0, 200.0]
        assert body["subtotal"] == 450.0
        assert body["discount_amount"] == 45.0
        assert body["net_total"] == 405.0
        assert body["vat_amount"] == 54.68
        assert body["grand_total"] == 459.68
        assert body["total_cost"] == 270.0
        assert body["total_margin"] == 135.0
        assert body["margin_percent"] == 33.33

    def test_vat_rounds_half_to_even(self, client, headers, company):
        body = _create(client, headers, company, sections=[{
            "section_name": "Prelims",
            "line_items": [{"description": "Site setup", "quantity": 1, "unit_price": "11.50"}],
        }])
        # 11.50 × 23% = 2.645
        assert body["vat_amount"] == 2.64
        assert body["grand_total"] == 14.14

    def test_costings_hidden_without_permission(self, client, auth_headers, company):
        h = auth_headers("Proposals.View", "Proposals.Create")
        body = _create(client, h, company, sections=SECTIONS)
        assert "total_cost" not in body
        assert "margin_percent" not in body
        assert "unit_cost" not in body["sections"][0]["line_items"][0]
        assert body["grand_total"] > 0

    def test_product_line_defaults_from_catalogue(self, client, headers, company, default_tenant):
        product = Product(tenant_id=default_tenant.id, product_code="RAD-600", product_name="Radiator 600mm",
                          unit_type="Each", base_rate=Decimal("85.00"), cost_price=Decimal("52.00"))
        db.session.add(product)
        db.session.commit()
        body = _create(client, headers, company, sections=[{"section_name": "Heating"}])
        sid = body["sections"][0]["id"]

        res = client.post(f"{BASE}/{body['id']}/sections/{sid}/items",
                          json={"product_id": product.id, "quantity": 4}, headers=headers)
        assert res.status_code == 200
        item = res.get_json()["sections"][0]["line_items"][0]
        assert item["description"] == "Radiator 600mm"
        assert item["product_code"] == "RAD-600"
        assert item["line_total"] == 340.0
        assert item["line_margin"] == 132.0
        assert res.get_json()["subtotal"] == 340.0

    def test_editing_a_line_reprices_proposal(self, client, headers, company):
        body = _create(client, headers, company, sections=SECTIONS, vat_rate=0)
        item_id = body["sections"][0]["line_items"][0]["id"]
        res = client.put(f"{BASE}/{body['id']}/items/{item_id}", json={"quantity": 20}, headers=headers)
        assert res.status_code == 200
        assert res.get_json()["subtotal"] == 700.0

    def test_deleting_a_section_reprices_proposal(self, client, headers, company):
        body = _create(client, headers, company, sections=SECTIONS, vat_rate=0)
        sid = body["sections"][1]["id"]
        res = client.delete(f"{BASE}/{body['id']}/sections/{sid}", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["grand_total"] == 250.0
        assert len(res.get_json()["sections"]) == 1

    @pytest.mark.parametrize("field,value", [
        ("vat_rate", 101), ("discount_percent", -1), ("vat_rate", "NaN"), ("discount_percent", "Infinity"),
    ])
    def test_rates_must_be_percentages(self, client, headers, company, field, value):
        res = client.post(BASE, json={"company_id": company.id, "project_name": "X", field: value},
                          headers=headers)
        assert res.status_code == 400

    def test_non_finite_line_price_rejected(self, client, headers, company):
        res = client.post(BASE, json={
            "company_id": company.id, "project_name": "X",
            "sections": [{"section_name": "Roofing", "line_items": [
                {"description": "Slates", "quantity": 5, "unit_price": "Infinity"},
            ]}],
        }, headers=headers)
        assert res.status_code == 400
        assert res.get_json()["details"] == {"unit_price": "Infinity"}
        assert Proposal.query.count() == 0

    def test_contact_must_belong_to_company(self, client, headers, company, default_tenant):
        stranger = _contact(default_tenant, _company(default_tenant, "OTHER"))
        res = client.post(BASE, json={
            "company_id": company.id, "project_name": "X", "primary_contact_id": stranger.id,
        }, headers=headers)
        assert res.status_code == 400

    def test_valid_until_before_proposal_date(self, client, headers, company):
        res = client.post(BASE, json={
            "company_id": company.id, "project_name": "X",
            "proposal_date": "2026-03-10", "valid_until_date": "2026-03-01",
        }, headers=headers)
        assert res.status_code == 400


# ── Workflow ─────────────────────────────────────────────────────────────


class TestWorkflow:
    def test_submit_review_approve_win(self, client, headers, company):
        pid = _create(client, headers, company, sections=SECTIONS)["id"]
        _advance(client, headers, pid, "submit", "review")
        approved = _advance(client, headers, pid, "approve")
        assert approved["status"] == "Approved"
        assert approved["approved_by"].startswith("Test ")

        res = client.post(f"{BASE}/{pid}/win", json={"won_date": "2026-10-01"}, headers=headers)
        assert res.status_code == 200
        assert res.get_json()["status"] == "Won"
        assert res.get_json()["won_date"] == "2026-10-01"

    def test_submit_needs_line_items(self, client, headers, company):
        pid = _create(client, headers, company, sections=[{"section_name": "Empty"}])["id"]
        res = client.post(f"{BASE}/{pid}/submit", headers=headers)
        assert res.status_code == 400
        assert res.get_json()["details"] == {"empty_sections": ["Empty"]}

    def test_submit_needs_a_section(self, client, headers, company):
        pid = _create(client, headers, company)["id"]
        assert client.post(f"{BASE}/{pid}/submit", headers=headers).status_code == 400

    def test_cannot_edit_after_submit(self, client, headers, company):
        pid = _create(client, headers, company, sections=SECTIONS)["id"]
        _advance(client, headers, pid, "submit")
        res = client.put(f"{BASE}/{pid}", json={"project_name": "Changed"}, headers=headers)
        assert res.status_code == 400

    def test_lose_requires_reason(self, client, headers, company):
        pid = _create(client, headers, company, sections=SECTIONS)["id"]
        _advance(client, headers, pid, "submit", "approve")
        assert client.post(f"{BASE}/{pid}/lose", json={}, headers=headers).status_code == 400
        lost = _advance(client, headers, pid, "lose")
        assert lost["status"] == "Lost"
        assert lost["won_lost_reason"] == "Went with competitor"

    def test_win_from_draft_is_invalid(self, client, headers, company):
        pid = _create(client, headers, company, sections=SECTIONS)["id"]
        assert client.post(f"{BASE}/{pid}/win", headers=headers).status_code == 409

    def test_submit_permission_required(self, client, auth_headers, company):
        h = auth_headers("Proposals.View", "Proposals.Create")
        pid = _create(client, h, company, sections=SECTIONS)["id"]
        assert client.post(f"{BASE}/{pid}/submit", headers=h).status_code == 403


# ── Revisions & expiry ───────────────────────────────────────────────────


class TestRevisions:
    def test_revision_copies_content_into_new_draft(self, client, headers, company):
        original = _create(client, headers, company, sections=SECTIONS)
        _advance(client, headers, original["id"], "submit", "reject")

        res = client.post(f"{BASE}/{original['id']}/revisions", json={"notes": "Value engineered"},
                          headers=headers)
        assert res.status_code == 201
        rev = res.get_json()
        assert rev["status"] == "Draft"
        assert rev["version"] == 2
        assert rev["parent_proposal_id"] == original["id"]
        assert rev["proposal_number"] != original["proposal_number"]
        assert rev["grand_total"] == original["grand_total"]
        assert [s["section_name"] for s in rev["sections"]] == ["Groundworks", "Drainage"]
        assert "Value engineered" in rev["notes"]

    def test_revision_of_revision_links_to_root(self, client, headers, company):
        root = _create(client, headers, company, sections=SECTIONS)
        _advance(client, headers, root["id"], "submit", "reject")
        v2 = client.post(f"{BASE}/{root['id']}/revisions", headers=headers).get_json()
        _advance(client, headers, v2["id"], "submit", "reject")
        v3 = client.post(f"{BASE}/{v2['id']}/revisions", headers=headers).get_json()

        assert v3["version"] == 3
        assert v3["parent_proposal_id"] == root["id"]
        chain = client.get(f"{BASE}/{v3['id']}/revisions", headers=headers).get_json()
        assert [p["version"] for p in chain["items"]] == [1, 2, 3]

    def test_cannot_revise_a_draft(self, client, headers, company):
        pid = _create(client, headers, company)["id"]
        assert client.post(f"{BASE}/{pid}/revisions", headers=headers).status_code == 409

    def test_expire_proposals(self, client, headers, company):
        stale = _create(client, headers, company, sections=SECTIONS,
                        proposal_date="2020-01-01", valid_until_date="2020-01-31")
        open_ended = _create(client, headers, company, sections=SECTIONS, proposal_date="2020-01-01")
        won = _create(client, headers, company, sections=SECTIONS,
                      proposal_date="2020-01-01", valid_until_date="2020-01-31")
        _advance(client, headers, won["id"], "submit", "approve", "win")

        assert proposal_service.expire_proposals(today=date(2020, 2, 1)) == 1
        db.session.commit()

        assert db.session.get(Proposal, stale["id"]).status == "Expired"
        assert db.session.get(Proposal, open_ended["id"]).status == "Draft"
        assert db.session.get(Proposal, won["id"]).status == "Won"
