"""
Tenant administration: users, roles, permission catalogue.
"""

import pytest

from siteops.models import db
from siteops.models.auth import Role
from siteops.services import permission_service

BASE = "/api/v1/admin"


@pytest.fixture()
def seeded():
    permission_service.seed_permissions()


@pytest.fixture()
def h(auth_headers, seeded):
    return auth_headers("Core.ManageUsers", "Core.ManageRoles")


def _system_role(name):
    return Role.query.filter(Role.tenant_id.is_(None), Role.name == name).first()


class TestUsers:
    def test_create_and_get(self, client, h):
        res = client.post(f"{BASE}/users", json={
            "email": " Kate.Ryan@Example.com ", "first_name": "Kate", "last_name": "Ryan",
            "role_ids": [_system_role("SiteManager").id],
        }, headers=h)
        assert res.status_code == 201
        user = res.get_json()
        assert user["email"] == "kate.ryan@example.com"
        assert user["roles"] == ["SiteManager"]

        detail = client.get(f"{BASE}/users/{user['id']}", headers=h).get_json()
        assert detail["permissions"] == ["StockManagement.CreateOrders", "StockManagement.View"]

    def test_duplicate_email(self, client, h):
        client.post(f"{BASE}/users", json={"email": "kate@example.com"}, headers=h)
        res = client.post(f"{BASE}/users", json={"email": "KATE@example.com"}, headers=h)
        assert res.status_code == 409

    def test_search(self, client, h):
        client.post(f"{BASE}/users", json={"email": "kate@example.com", "last_name": "Ryan"}, headers=h)
        body = client.get(f"{BASE}/users?search=ryan", headers=h).get_json()
        assert [u["email"] for u in body["items"]] == ["kate@example.com"]

    def test_other_tenant_user_is_404(self, client, h, make_user, other_tenant):
        stranger = make_user(tenant=other_tenant)
        assert client.get(f"{BASE}/users/{stranger.id}", headers=h).status_code == 404

    def test_manage_users_required(self, client, auth_headers):
        res = client.get(f"{BASE}/users", headers=auth_headers("Core.ManageRoles"))
        assert res.status_code == 403
        assert res.get_json()["required"] == "Core.ManageUsers"


class TestRoles:
    def test_create_custom_role(self, client, h):
        res = client.post(f"{BASE}/roles", json={
            "name": "Estimator", "description": "Prices jobs",
            "permissions": ["Proposals.View", "Proposals.Create"],
        }, headers=h)
        assert res.status_code == 201
        role = res.get_json()
        assert role["is_system"] is False
        assert role["permissions"] == ["Proposals.Create", "Proposals.View"]

        names = [r["name"] for r in client.get(f"{BASE}/roles", headers=h).get_json()["roles"]]
        assert "Estimator" in names
        assert "Admin" in names

    @pytest.mark.parametrize("name", ["Admin", "Finance"])
    def test_system_role_names_reserved(self, client, h, name):
        assert client.post(f"{BASE}/roles", json={"name": name}, headers=h).status_code == 409

    def test_duplicate_role_name(self, client, h):
        client.post(f"{BASE}/roles", json={"name": "Estimator"}, headers=h)
        assert client.post(f"{BASE}/roles", json={"name": "Estimator"}, headers=h).status_code == 409

    def test_unknown_permission(self, client, h):
        res = client.post(f"{BASE}/roles", json={"name": "Odd", "permissions": ["Core.Launch"]}, headers=h)
        assert res.status_code == 400
        assert res.get_json()["details"] == {"unknown": ["Core.Launch"]}

    def test_permissions_must_be_a_list(self, client, h):
        res = client.post(f"{BASE}/roles", json={"name": "Odd", "permissions": "Core.Admin"}, headers=h)
        assert res.status_code == 400

    def test_roles_of_other_tenants_hidden(self, client, h, auth_headers, other_tenant):
        client.post(f"{BASE}/roles", json={"name": "Estimator"}, headers=h)
        outsider = auth_headers("Core.ManageRoles", tenant=other_tenant)
        names = [r["name"] for r in client.get(f"{BASE}/roles", headers=outsider).get_json()["roles"]]
        assert "Estimator" not in names


class TestRoleAssignment:
    def test_set_roles_changes_access(self, client, h, make_user, auth_headers):
        user = make_user()
        headers = auth_headers(user=user)
        assert client.get("/api/v1/proposals", headers=headers).status_code == 403

        res = client.put(f"{BASE}/users/{user.id}/roles",
                         json={"role_ids": [_system_role("Finance").id]}, headers=h)
        assert res.status_code == 200
        assert res.get_json()["roles"] == ["Finance"]
        assert client.get("/api/v1/proposals", headers=headers).status_code == 200

        client.put(f"{BASE}/users/{user.id}/roles", json={"role_ids": []}, headers=h)
        assert client.get("/api/v1/proposals", headers=headers).status_code == 403

    def test_role_from_other_tenant_rejected(self, client, h, make_user, other_tenant):
        foreign = Role(tenant_id=other_tenant.id, name="Theirs", is_system=False)
        db.session.add(foreign)
        db.session.commit()
        user = make_user()
        res = client.put(f"{BASE}/users/{user.id}/roles", json={"role_ids": [foreign.id]}, headers=h)
        assert res.status_code == 400
        assert res.get_json()["details"] == {"role_ids": [foreign.id]}

    def test_role_ids_must_be_a_list(self, client, h, make_user):
        user = make_user()
        res = client.put(f"{BASE}/users/{user.id}/roles", json={"role_ids": 3}, headers=h)
        assert res.status_code == 400


def test_permission_catalogue_grouped_by_module(client, h):
    body = client.get(f"{BASE}/permissions", headers=h).get_json()["permissions"]
    assert set(body) == {"Core", "Proposals", "Rams", "StockManagement", "ToolboxTalks"}
    assert "Rams.Approve" in [p["codename"] for p in body["Rams"]]
