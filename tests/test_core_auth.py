"""
Request pipeline and core records.

Covers bearer-token checks, tenant resolution, and the shared
site / employee / company / contact registers.
"""

from siteops.models import db
from siteops.models.auth import Tenant
from siteops.models.core import Site
from siteops.services.jwt_service import generate_access_token


def _headers_for(user_id, tenant_id, **kw):
    return {"Authorization": f"Bearer {generate_access_token(user_id, tenant_id, [], **kw)}"}


class TestHealth:
    def test_health_is_public(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_live_checks_database(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"


class TestAuthentication:
    def test_missing_token(self, client):
        res = client.get("/api/v1/sites")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHORIZED"

    def test_malformed_token(self, client):
        res = client.get("/api/v1/sites", headers={"Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "Invalid token"

    def test_expired_token(self, client, make_user):
        user = make_user()
        res = client.get("/api/v1/sites", headers=_headers_for(user.id, user.tenant_id, expires_in=-30))
        assert res.status_code == 401
        assert res.get_json()["error"] == "Token has expired"

    def test_token_without_tenant(self, client, make_user):
        user = make_user()
        assert client.get("/api/v1/sites", headers=_headers_for(user.id, None)).status_code == 403

    def test_deactivated_tenant(self, client, auth_headers, default_tenant):
        headers = auth_headers()
        default_tenant.is_active = False
        db.session.commit()
        res = client.get("/api/v1/sites", headers=headers)
        assert res.status_code == 403
        assert res.get_json()["error"] == "Tenant account is deactivated"

    def test_user_from_another_tenant(self, client, make_user, other_tenant):
        user = make_user()
        assert client.get("/api/v1/sites", headers=_headers_for(user.id, other_tenant.id)).status_code == 403

    def test_unknown_tenant(self, client, make_user):
        user = make_user()
        missing = (db.session.query(db.func.max(Tenant.id)).scalar() or 0) + 100
        assert client.get("/api/v1/sites", headers=_headers_for(user.id, missing)).status_code == 403

    def test_inactive_user(self, client, make_user, auth_headers):
        user = make_user()
        headers = auth_headers(user=user)
        user.is_active = False
        db.session.commit()
        assert client.get("/api/v1/sites", headers=headers).status_code == 403


class TestRequestGuards:
    def test_non_json_body_rejected(self, client, auth_headers):
        res = client.post("/api/v1/sites", data="site_code=S1", headers={
            **auth_headers("Core.ManageSites"), "Content-Type": "application/x-www-form-urlencoded",
        })
        assert res.status_code == 415


class TestSites:
    def test_create_list_update_delete(self, client, auth_headers):
        h = auth_headers("Core.ManageSites")
        res = client.post("/api/v1/sites", json={"site_code": "DUB-01", "site_name": "Docklands"}, headers=h)
        assert res.status_code == 201
        site = res.get_json()
        assert res.headers["Location"].endswith(f"/api/v1/sites/{site['id']}")

        client.post("/api/v1/sites", json={"site_code": "CRK-01", "site_name": "Cork Quay", "city": "Cork"},
                    headers=h)
        listing = client.get("/api/v1/sites?search=cork", headers=h).get_json()
        assert [s["site_code"] for s in listing["items"]] == ["CRK-01"]

        res = client.put(f"/api/v1/sites/{site['id']}", json={"site_name": "Docklands Tower"}, headers=h)
        assert res.get_json()["site_name"] == "Docklands Tower"

        assert client.delete(f"/api/v1/sites/{site['id']}", headers=h).status_code == 204
        assert client.get(f"/api/v1/sites/{site['id']}", headers=h).status_code == 404

    def test_site_code_unique(self, client, auth_headers):
        h = auth_headers("Core.ManageSites")
        client.post("/api/v1/sites", json={"site_code": "DUB-01", "site_name": "A"}, headers=h)
        res = client.post("/api/v1/sites", json={"site_code": "DUB-01", "site_name": "B"}, headers=h)
        assert res.status_code == 409

    def test_missing_fields(self, client, auth_headers):
        res = client.post("/api/v1/sites", json={"site_code": "  "}, headers=auth_headers("Core.ManageSites"))
        assert res.status_code == 400
        assert set(res.get_json()["details"]) == {"site_code", "site_name"}

    def test_manage_permission_required(self, client, auth_headers):
        res = client.post("/api/v1/sites", json={"site_code": "X", "site_name": "Y"}, headers=auth_headers())
        assert res.status_code == 403
        assert res.get_json()["required"] == "Core.ManageSites"

    def test_sites_are_tenant_scoped(self, client, auth_headers, other_tenant):
        site = client.post("/api/v1/sites", json={"site_code": "DUB-01", "site_name": "A"},
                           headers=auth_headers("Core.ManageSites")).get_json()
        outsider = auth_headers(tenant=other_tenant)
        assert client.get(f"/api/v1/sites/{site['id']}", headers=outsider).status_code == 404
        assert client.get("/api/v1/sites", headers=outsider).get_json()["total"] == 0

    def test_negative_limit_returns_one_row(self, client, auth_headers, default_tenant):
        db.session.add_all([
            Site(tenant_id=default_tenant.id, site_code=f"S-{n}", site_name=f"Site {n}") for n in range(3)
        ])
        db.session.commit()
        body = client.get("/api/v1/sites?limit=-1", headers=auth_headers()).get_json()
        assert body["total"] == 3
        assert len(body["items"]) == 1


class TestEmployees:
    def test_me_resolves_linked_employee(self, client, make_user, auth_headers):
        user = make_user(first_name="Niamh")
        h = auth_headers("Core.ManageEmployees")
        res = client.post("/api/v1/employees", json={
            "employee_code": "E-1", "first_name": "Niamh", "last_name": "Byrne",
            "user_id": user.id, "start_date": "2025-03-01",
        }, headers=h)
        assert res.status_code == 201

        me = client.get("/api/v1/employees/me", headers=auth_headers(user=user))
        assert me.status_code == 200
        assert me.get_json()["employee_code"] == "E-1"

    def test_me_without_employee_is_404(self, client, auth_headers):
        assert client.get("/api/v1/employees/me", headers=auth_headers()).status_code == 404

    def test_login_linked_to_one_employee(self, client, make_user, auth_headers):
        user = make_user()
        h = auth_headers("Core.ManageEmployees")
        base = {"first_name": "A", "last_name": "B", "user_id": user.id}
        assert client.post("/api/v1/employees", json={**base, "employee_code": "E-1"}, headers=h).status_code == 201
        assert client.post("/api/v1/employees", json={**base, "employee_code": "E-2"}, headers=h).status_code == 409

    def test_foreign_user_rejected(self, client, make_user, auth_headers, other_tenant):
        stranger = make_user(tenant=other_tenant)
        res = client.post("/api/v1/employees", json={
            "employee_code": "E-1", "first_name": "A", "last_name": "B", "user_id": stranger.id,
        }, headers=auth_headers("Core.ManageEmployees"))
        assert res.status_code == 400

    def test_delete_deactivates(self, client, auth_headers):
        h = auth_headers("Core.ManageEmployees")
        emp = client.post("/api/v1/employees", json={
            "employee_code": "E-1", "first_name": "A", "last_name": "B",
        }, headers=h).get_json()
        assert client.delete(f"/api/v1/employees/{emp['id']}", headers=h).status_code == 204
        assert client.get("/api/v1/employees", headers=h).get_json()["total"] == 0


class TestCompaniesAndContacts:
    def _company(self, client, h):
        res = client.post("/api/v1/companies", json={
            "company_code": "ACME", "company_name": "Acme Developments", "company_type": "Customer",
        }, headers=h)
        assert res.status_code == 201
        return res.get_json()

    def test_single_primary_contact(self, client, auth_headers):
        h = auth_headers("Core.ManageCompanies")
        company = self._company(client, h)
        first = client.post("/api/v1/contacts", json={
            "company_id": company["id"], "first_name": "Orla", "last_name": "Keane", "is_primary": True,
        }, headers=h).get_json()
        client.post("/api/v1/contacts", json={
            "company_id": company["id"], "first_name": "Liam", "last_name": "Doyle", "is_primary": True,
        }, headers=h)

        contacts = client.get(f"/api/v1/contacts?company_id={company['id']}", headers=h).get_json()["items"]
        primaries = {c["last_name"]: c["is_primary"] for c in contacts}
        assert primaries == {"Doyle": True, "Keane": False}
        assert client.get(f"/api/v1/contacts/{first['id']}", headers=h).get_json()["is_primary"] is False

    def test_deleting_company_removes_contacts(self, client, auth_headers):
        h = auth_headers("Core.ManageCompanies")
        company = self._company(client, h)
        contact = client.post("/api/v1/contacts", json={
            "company_id": company["id"], "first_name": "Orla", "last_name": "Keane",
        }, headers=h).get_json()

        assert client.delete(f"/api/v1/companies/{company['id']}", headers=h).status_code == 204
        assert client.get(f"/api/v1/contacts/{contact['id']}", headers=h).status_code == 404

    def test_contact_needs_company_in_tenant(self, client, auth_headers):
        res = client.post("/api/v1/contacts", json={
            "company_id": 9999, "first_name": "A", "last_name": "B",
        }, headers=auth_headers("Core.ManageCompanies"))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"
