"""
Shared pytest fixtures for the SiteOps test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - default_tenant: Pre-created Tenant entity
    - make_user: factory for a tenant user holding given permissions
    - auth_headers: factory for Bearer headers of such a user
    - admin_headers: Bearer headers of a user in the system Admin role

Rows created directly through the ORM must be committed before an API
call: request error handlers roll the shared session back.
"""

import itertools

import pytest

from siteops import create_app
from siteops.models import db as _db
from siteops.models.auth import Permission, Role, RolePermission, Tenant, User, UserRole
from siteops.services import permission_service
from siteops.services.jwt_service import generate_access_token

_user_seq = itertools.count(1)


def _ensure_default_tenant():
    t = Tenant.query.filter_by(slug="test-default").first()
    if not t:
        t = Tenant(name="Test Default", slug="test-default", is_active=True)
        _db.session.add(t)
        _db.session.commit()
    return t


def _permission(codename):
    perm = Permission.query.filter_by(codename=codename).first()
    if perm is None:
        module = codename.split(".", 1)[0]
        perm = Permission(codename=codename, module=module, description=codename)
        _db.session.add(perm)
        _db.session.flush()
    return perm


def token_for(user):
    """Access token for ``user`` as the API would see it."""
    return generate_access_token(user.id, user.tenant_id, user.role_names, name=user.full_name)


def bearer(user):
    return {"Authorization": f"Bearer {token_for(user)}"}


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        # ids are reused after every recreate; cached permissions would leak.
        permission_service.invalidate_all_cache()
        _ensure_default_tenant()
        yield
        permission_service.invalidate_all_cache()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def default_tenant():
    """Return the auto-created default test tenant."""
    return Tenant.query.filter_by(slug="test-default").first()


@pytest.fixture()
def other_tenant():
    t = Tenant(name="Other Builders", slug="other-builders", is_active=True)
    _db.session.add(t)
    _db.session.commit()
    return t


# ── Auth fixtures ────────────────────────────────────────────────────────


@pytest.fixture()
def make_user(default_tenant):
    """Factory: ``make_user("StockManagement.View", tenant=t)`` → committed User."""

    def _make(*codenames, tenant=None, first_name="Test", last_name=None, email=None):
        tenant = tenant or default_tenant
        n = next(_user_seq)
        user = User(
            tenant_id=tenant.id,
            email=email or f"user{n}@example.com",
            first_name=first_name,
            last_name=last_name or f"User{n}",
            is_active=True,
        )
        _db.session.add(user)
        _db.session.flush()
        if codenames:
            role = Role(tenant_id=tenant.id, name=f"test-role-{n}", is_system=False)
            _db.session.add(role)
            _db.session.flush()
            for code in codenames:
                _db.session.add(RolePermission(role_id=role.id, permission_id=_permission(code).id))
            _db.session.add(UserRole(user_id=user.id, role_id=role.id))
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def auth_headers(make_user):
    """Factory: Bearer headers for a fresh user holding ``codenames``."""

    def _headers(*codenames, tenant=None, user=None):
        return bearer(user or make_user(*codenames, tenant=tenant))

    return _headers


@pytest.fixture()
def admin_user(make_user):
    permission_service.seed_permissions()
    user = make_user(first_name="Ada", last_name="Admin")
    admin = Role.query.filter(Role.tenant_id.is_(None), Role.name == permission_service.ADMIN_ROLE).first()
    _db.session.add(UserRole(user_id=user.id, role_id=admin.id))
    _db.session.commit()
    return user


@pytest.fixture()
def admin_headers(admin_user):
    return bearer(admin_user)
