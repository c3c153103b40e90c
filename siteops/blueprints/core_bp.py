"""
Core records blueprint: sites, employees, companies, contacts.

Endpoints:
    SITES      /api/v1/sites                 GET, POST
               /api/v1/sites/<id>            GET, PUT, DELETE
    EMPLOYEES  /api/v1/employees             GET, POST
               /api/v1/employees/<id>        GET, PUT, DELETE
               /api/v1/employees/me          GET
    COMPANIES  /api/v1/companies             GET, POST
               /api/v1/companies/<id>        GET, PUT, DELETE
    CONTACTS   /api/v1/contacts              GET, POST
               /api/v1/contacts/<id>         GET, PUT, DELETE

Reads need an authenticated tenant user; writes need Core.Manage*.
"""

import logging

from flask import Blueprint, g, jsonify, request, url_for

from siteops.blueprints import created, current_user_name, paginate_query, query_flag, request_data
from siteops.middleware.permission_required import require_permission
from siteops.middleware.tenant_context import current_tenant_id
from siteops.models.core import Company, Contact, Employee, Site
from siteops.services import core_service
from siteops.utils.errors import register_error_handlers
from siteops.utils.helpers import db_commit_or_error, get_tenant_record

logger = logging.getLogger(__name__)

core_bp = Blueprint("core", __name__, url_prefix="/api/v1")
register_error_handlers(core_bp)


def _list(query):
    items, total = paginate_query(query)
    return jsonify({"items": [i.to_dict() for i in items], "total": total})


# ═══════════════════════════════════════════════════════════════════════════
#  SITES
# ═══════════════════════════════════════════════════════════════════════════

@core_bp.route("/sites", methods=["GET"])
def list_sites():
    return _list(core_service.list_sites(
        current_tenant_id(),
        search=request.args.get("search"),
        active_only=query_flag("active_only"),
    ))


@core_bp.route("/sites/<int:site_id>", methods=["GET"])
def get_site(site_id):
    return jsonify(get_tenant_record(Site, site_id, current_tenant_id()).to_dict())


@core_bp.route("/sites", methods=["POST"])
@require_permission("Core.ManageSites")
def create_site():
    site = core_service.create_site(current_tenant_id(), request_data(), current_user_name())
    err = db_commit_or_error()
    if err:
        return err
    return created(site.to_dict(), url_for("core.get_site", site_id=site.id))


@core_bp.route("/sites/<int:site_id>", methods=["PUT"])
@require_permission("Core.ManageSites")
def update_site(site_id):
    site = core_service.update_site(current_tenant_id(), site_id, request_data())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(site.to_dict())


@core_bp.route("/sites/<int:site_id>", methods=["DELETE"])
@require_permission("Core.ManageSites")
def delete_site(site_id):
    core_service.delete_site(current_tenant_id(), site_id)
    err = db_commit_or_error()
    if err:
        return err
    return "", 204


# ═══════════════════════════════════════════════════════════════════════════
#  EMPLOYEES
# ═══════════════════════════════════════════════════════════════════════════

@core_bp.route("/employees", methods=["GET"])
def list_employees():
    return _list(core_service.list_employees(
        current_tenant_id(),
        search=request.args.get("search"),
        site_id=request.args.get("site_id", type=int),
        active_only=query_flag("active_only"),
    ))


@core_bp.route("/employees/me", methods=["GET"])
def my_employee_record():
    return jsonify(core_service.employee_for_user(current_tenant_id(), g.jwt_user_id).to_dict())


@core_bp.route("/employees/<int:employee_id>", methods=["GET"])
def get_employee(employee_id):
    return jsonify(get_tenant_record(Employee, employee_id, current_tenant_id()).to_dict())


@core_bp.route("/employees", methods=["POST"])
@require_permission("Core.ManageEmployees")
def create_employee():
    emp = core_service.create_employee(current_tenant_id(), request_data(), current_user_name())
    err = db_commit_or_error()
    if err:
        return err
    return created(emp.to_dict(), url_for("core.get_employee", employee_id=emp.id))


@core_bp.route("/employees/<int:employee_id>", methods=["PUT"])
@require_permission("Core.ManageEmployees")
def update_employee(employee_id):
    emp = core_service.update_employee(current_tenant_id(), employee_id, request_data())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(emp.to_dict())


@core_bp.route("/employees/<int:employee_id>", methods=["DELETE"])
@require_permission("Core.ManageEmployees")
def delete_employee(employee_id):
    core_service.delete_employee(current_tenant_id(), employee_id)
    err = db_commit_or_error()
    if err:
        return err
    return "", 204


# ═══════════════════════════════════════════════════════════════════════════
#  COMPANIES
# ═══════════════════════════════════════════════════════════════════════════

@core_bp.route("/companies", methods=["GET"])
def list_companies():
    return _list(core_service.list_companies(
        current_tenant_id(),
        search=request.args.get("search"),
        company_type=request.args.get("company_type"),
    ))


@core_bp.route("/companies/<int:company_id>", methods=["GET"])
def get_company(company_id):
    return jsonify(get_tenant_record(Company, company_id, current_tenant_id()).to_dict())


@core_bp.route("/companies", methods=["POST"])
@require_permission("Core.ManageCompanies")
def create_company():
    company = core_service.create_company(current_tenant_id(), request_data(), current_user_name())
    err = db_commit_or_error()
    if err:
        return err
    return created(company.to_dict(), url_for("core.get_company", company_id=company.id))


@core_bp.route("/companies/<int:company_id>", methods=["PUT"])
@require_permission("Core.ManageCompanies")
def update_company(company_id):
    company = core_service.update_company(current_tenant_id(), company_id, request_data())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(company.to_dict())


@core_bp.route("/companies/<int:company_id>", methods=["DELETE"])
@require_permission("Core.ManageCompanies")
def delete_company(company_id):
    core_service.delete_company(current_tenant_id(), company_id)
    err = db_commit_or_error()
    if err:
        return err
    return "", 204


# ═══════════════════════════════════════════════════════════════════════════
#  CONTACTS
# ═══════════════════════════════════════════════════════════════════════════

@core_bp.route("/contacts", methods=["GET"])
def list_contacts():
    return _list(core_service.list_contacts(
        current_tenant_id(),
        company_id=request.args.get("company_id", type=int),
        search=request.args.get("search"),
    ))


@core_bp.route("/contacts/<int:contact_id>", methods=["GET"])
def get_contact(contact_id):
    return jsonify(get_tenant_record(Contact, contact_id, current_tenant_id()).to_dict())


@core_bp.route("/contacts", methods=["POST"])
@require_permission("Core.ManageCompanies")
def create_contact():
    contact = core_service.create_contact(current_tenant_id(), request_data(), current_user_name())
    err = db_commit_or_error()
    if err:
        return err
    return created(contact.to_dict(), url_for("core.get_contact", contact_id=contact.id))


@core_bp.route("/contacts/<int:contact_id>", methods=["PUT"])
@require_permission("Core.ManageCompanies")
def update_contact(contact_id):
    contact = core_service.update_contact(current_tenant_id(), contact_id, request_data())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(contact.to_dict())


@core_bp.route("/contacts/<int:contact_id>", methods=["DELETE"])
@require_permission("Core.ManageCompanies")
def delete_contact(contact_id):
    core_service.delete_contact(current_tenant_id(), contact_id)
    err = db_commit_or_error()
    if err:
        return err
    return "", 204
