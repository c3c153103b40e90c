"""Core records service: sites, employees, companies, contacts, users.

Transaction policy: functions flush(), the route handler commits.
"""
import logging

from sqlalchemy import or_

from siteops.core.exceptions import ConflictError, NotFoundError, ValidationError
from siteops.models import db
from siteops.models.auth import User
from siteops.models.core import Company, Contact, Employee, Site
from siteops.services import permission_service
from siteops.utils.helpers import apply_fields, get_tenant_record, require_fields

logger = logging.getLogger(__name__)

SITE_FIELDS = (
    "site_code", "site_name", "address", "city", "postal_code", "company_id",
    "site_manager_id", "latitude", "longitude", "is_active",
)
EMPLOYEE_FIELDS = (
    "employee_code", "first_name", "last_name", "email", "phone", "job_title",
    "department", "primary_site_id", "user_id", "preferred_language", "start_date",
    "is_active",
)
COMPANY_FIELDS = (
    "company_code", "company_name", "trading_name", "company_type", "email",
    "phone", "address", "vat_number", "is_active",
)
CONTACT_FIELDS = ("first_name", "last_name", "job_title", "email", "phone", "is_primary")


def _search(query, term, *columns):
    if not term:
        return query
    like = f"%{term.strip()}%"
    return query.filter(or_(*[c.ilike(like) for c in columns]))


def _ensure_unique(model, column, value, tenant_id, exclude_id=None):
    q = model.active_for_tenant(tenant_id).filter(column == value)
    if exclude_id is not None:
        q = q.filter(model.id != exclude_id)
    if q.first():
        raise ConflictError(model.__name__, column.key, value)


# ── Sites ────────────────────────────────────────────────────────────────────


def list_sites(tenant_id, search=None, active_only=False):
    q = _search(Site.active_for_tenant(tenant_id), search, Site.site_code, Site.site_name, Site.city)
    if active_only:
        q = q.filter(Site.is_active.is_(True))
    return q.order_by(Site.site_name)


def _check_site_refs(tenant_id, data):
    if data.get("company_id") is not None:
        get_tenant_record(Company, data["company_id"], tenant_id)
    if data.get("site_manager_id") is not None:
        get_tenant_record(Employee, data["site_manager_id"], tenant_id, label="Site manager")


def create_site(tenant_id, data, user=None):
    require_fields(data, "site_code", "site_name")
    _ensure_unique(Site, Site.site_code, data["site_code"].strip(), tenant_id)
    _check_site_refs(tenant_id, data)
    site = Site(tenant_id=tenant_id, created_by=user)
    apply_fields(site, data, SITE_FIELDS)
    db.session.add(site)
    db.session.flush()
    return site


def update_site(tenant_id, site_id, data):
    site = get_tenant_record(Site, site_id, tenant_id)
    if data.get("site_code"):
        _ensure_unique(Site, Site.site_code, data["site_code"].strip(), tenant_id, site.id)
    _check_site_refs(tenant_id, data)
    apply_fields(site, data, SITE_FIELDS)
    db.session.flush()
    return site


def delete_site(tenant_id, site_id):
    site = get_tenant_record(Site, site_id, tenant_id)
    site.soft_delete()
    db.session.flush()


# ── Employees ────────────────────────────────────────────────────────────────


def list_employees(tenant_id, search=None, site_id=None, active_only=False):
    q = _search(
        Employee.active_for_tenant(tenant_id), search,
        Employee.employee_code, Employee.first_name, Employee.last_name, Employee.email,
    )
    if site_id:
        q = q.filter(Employee.primary_site_id == site_id)
    if active_only:
        q = q.filter(Employee.is_active.is_(True))
    return q.order_by(Employee.last_name, Employee.first_name)


def _check_employee_refs(tenant_id, data, employee_id=None):
    if data.get("primary_site_id") is not None:
        get_tenant_record(Site, data["primary_site_id"], tenant_id)
    if data.get("user_id") is not None:
        user = db.session.get(User, data["user_id"])
        if user is None or user.tenant_id != tenant_id:
            raise ValidationError("user_id does not refer to a user in this tenant")
        clash = Employee.active_for_tenant(tenant_id).filter(Employee.user_id == user.id)
        if employee_id is not None:
            clash = clash.filter(Employee.id != employee_id)
        if clash.first():
            raise ConflictError("Employee", "user_id", str(user.id))


def create_employee(tenant_id, data, user=None):
    require_fields(data, "employee_code", "first_name", "last_name")
    _ensure_unique(Employee, Employee.employee_code, data["employee_code"].strip(), tenant_id)
    _check_employee_refs(tenant_id, data)
    emp = Employee(tenant_id=tenant_id, created_by=user)
    apply_fields(emp, data, EMPLOYEE_FIELDS, dates=("start_date",))
    db.session.add(emp)
    db.session.flush()
    return emp


def update_employee(tenant_id, employee_id, data):
    emp = get_tenant_record(Employee, employee_id, tenant_id)
    if data.get("employee_code"):
        _ensure_unique(Employee, Employee.employee_code, data["employee_code"].strip(), tenant_id, emp.id)
    _check_employee_refs(tenant_id, data, emp.id)
    apply_fields(emp, data, EMPLOYEE_FIELDS, dates=("start_date",))
    db.session.flush()
    return emp


def delete_employee(tenant_id, employee_id):
    emp = get_tenant_record(Employee, employee_id, tenant_id)
    emp.soft_delete()
    emp.is_active = False
    db.session.flush()


def employee_for_user(tenant_id, user_id):
    """The employee record linked to a login, or NotFoundError."""
    emp = Employee.active_for_tenant(tenant_id).filter(Employee.user_id == user_id).first()
    if emp is None:
        raise NotFoundError(resource="Employee", resource_id=f"user:{user_id}", tenant_id=tenant_id)
    return emp


# ── Companies & contacts ─────────────────────────────────────────────────────


def list_companies(tenant_id, search=None, company_type=None):
    q = _search(
        Company.active_for_tenant(tenant_id), search,
        Company.company_code, Company.company_name, Company.trading_name,
    )
    if company_type:
        q = q.filter(Company.company_type == company_type)
    return q.order_by(Company.company_name)


def create_company(tenant_id, data, user=None):
    require_fields(data, "company_code", "company_name")
    _ensure_unique(Company, Company.company_code, data["company_code"].strip(), tenant_id)
    company = Company(tenant_id=tenant_id, created_by=user)
    apply_fields(company, data, COMPANY_FIELDS)
    db.session.add(company)
    db.session.flush()
    return company


def update_company(tenant_id, company_id, data):
    company = get_tenant_record(Company, company_id, tenant_id)
    if data.get("company_code"):
        _ensure_unique(Company, Company.company_code, data["company_code"].strip(), tenant_id, company.id)
    apply_fields(company, data, COMPANY_FIELDS)
    db.session.flush()
    return company


def delete_company(tenant_id, company_id):
    company = get_tenant_record(Company, company_id, tenant_id)
    company.soft_delete()
    for contact in company.contacts.filter_by(deleted_at=None).all():
        contact.soft_delete()
    db.session.flush()


def list_contacts(tenant_id, company_id=None, search=None):
    q = _search(
        Contact.active_for_tenant(tenant_id), search,
        Contact.first_name, Contact.last_name, Contact.email,
    )
    if company_id:
        q = q.filter(Contact.company_id == company_id)
    return q.order_by(Contact.last_name, Contact.first_name)


def _clear_other_primaries(contact):
    if contact.is_primary:
        Contact.query.filter(
            Contact.company_id == contact.company_id,
            Contact.id != contact.id,
            Contact.is_primary.is_(True),
        ).update({"is_primary": False}, synchronize_session="fetch")


def create_contact(tenant_id, data, user=None):
    require_fields(data, "company_id", "first_name", "last_name")
    company = get_tenant_record(Company, data["company_id"], tenant_id)
    contact = Contact(tenant_id=tenant_id, company_id=company.id, created_by=user)
    apply_fields(contact, data, CONTACT_FIELDS)
    db.session.add(contact)
    db.session.flush()
    _clear_other_primaries(contact)
    return contact


def update_contact(tenant_id, contact_id, data):
    contact = get_tenant_record(Contact, contact_id, tenant_id)
    if "company_id" in data:
        contact.company_id = get_tenant_record(Company, data["company_id"], tenant_id).id
    apply_fields(contact, data, CONTACT_FIELDS)
    db.session.flush()
    _clear_other_primaries(contact)
    return contact


def delete_contact(tenant_id, contact_id):
    contact = get_tenant_record(Contact, contact_id, tenant_id)
    contact.soft_delete()
    db.session.flush()


# ── Users ────────────────────────────────────────────────────────────────────


def list_users(tenant_id, search=None):
    q = _search(User.query.filter_by(tenant_id=tenant_id), search, User.email, User.first_name, User.last_name)
    return q.order_by(User.email)


def get_user(tenant_id, user_id):
    return get_tenant_record(User, user_id, tenant_id)


def create_user(tenant_id, data):
    require_fields(data, "email")
    email = data["email"].strip().lower()
    if User.query.filter_by(tenant_id=tenant_id, email=email).first():
        raise ConflictError("User", "email", email)
    user = User(
        tenant_id=tenant_id,
        email=email,
        first_name=data.get("first_name"),
        last_name=data.get("last_name"),
        is_active=data.get("is_active", True),
    )
    db.session.add(user)
    db.session.flush()
    if data.get("role_ids"):
        permission_service.set_user_roles(user, data["role_ids"])
    logger.info("User %s created", email, extra={"tenant_id": tenant_id})
    return user
