"""
Stock orders blueprint: site requisitions and their workflow.

Endpoints:
    /api/v1/stock-orders                               GET, POST
    /api/v1/stock-orders/<id>                          GET, PUT, DELETE
    /api/v1/stock-orders/<id>/submit                   POST
    /api/v1/stock-orders/<id>/approve                  POST
    /api/v1/stock-orders/<id>/reject                   POST   {reason}
    /api/v1/stock-orders/<id>/awaiting-pick            POST
    /api/v1/stock-orders/<id>/ready-for-collection     POST
    /api/v1/stock-orders/<id>/collect                  POST
    /api/v1/stock-orders/<id>/cancel                   POST   {reason?}
    /api/v1/stock-orders/<id>/docket                   GET
"""

import logging

from flask import Blueprint, jsonify, request, url_for

from siteops.blueprints import created, current_user_name, paginate_query, request_data
from siteops.middleware.permission_required import require_permission
from siteops.middleware.tenant_context import current_tenant_id
from siteops.services import stock_order_service
from siteops.utils.errors import register_error_handlers
from siteops.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

stock_orders_bp = Blueprint("stock_orders", __name__, url_prefix="/api/v1/stock-orders")
register_error_handlers(stock_orders_bp)


def _respond(order):
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(order.to_dict())


@stock_orders_bp.route("", methods=["GET"])
@require_permission("StockManagement.View")
def list_orders():
    q = stock_order_service.list_orders(
        current_tenant_id(),
        status=request.args.get("status"),
        site_id=request.args.get("site_id", type=int),
        search=request.args.get("search"),
    )
    orders, total = paginate_query(q)
    return jsonify({"items": [o.to_dict(include_lines=False) for o in orders], "total": total})


@stock_orders_bp.route("/<int:order_id>", methods=["GET"])
@require_permission("StockManagement.View")
def get_order(order_id):
    return jsonify(stock_order_service.get_order(current_tenant_id(), order_id).to_dict())


@stock_orders_bp.route("", methods=["POST"])
@require_permission("StockManagement.CreateOrders")
def create_order():
    order = stock_order_service.create_order(current_tenant_id(), request_data(), current_user_name())
    err = db_commit_or_error()
    if err:
        return err
    return created(order.to_dict(), url_for("stock_orders.get_order", order_id=order.id))


@stock_orders_bp.route("/<int:order_id>", methods=["PUT"])
@require_permission("StockManagement.CreateOrders")
def update_order(order_id):
    return _respond(stock_order_service.update_order(current_tenant_id(), order_id, request_data()))


@stock_orders_bp.route("/<int:order_id>", methods=["DELETE"])
@require_permission("StockManagement.CreateOrders")
def delete_order(order_id):
    stock_order_service.delete_order(current_tenant_id(), order_id)
    err = db_commit_or_error()
    if err:
        return err
    return "", 204


# ── Workflow ─────────────────────────────────────────────────────────────────

@stock_orders_bp.route("/<int:order_id>/submit", methods=["POST"])
@require_permission("StockManagement.CreateOrders")
def submit_order(order_id):
    return _respond(stock_order_service.submit_order(current_tenant_id(), order_id))


@stock_orders_bp.route("/<int:order_id>/approve", methods=["POST"])
@require_permission("StockManagement.ApproveOrders")
def approve_order(order_id):
    return _respond(stock_order_service.approve_order(current_tenant_id(), order_id, current_user_name()))


@stock_orders_bp.route("/<int:order_id>/reject", methods=["POST"])
@require_permission("StockManagement.ApproveOrders")
def reject_order(order_id):
    reason = request_data().get("reason")
    return _respond(stock_order_service.reject_order(current_tenant_id(), order_id, current_user_name(), reason))


@stock_orders_bp.route("/<int:order_id>/awaiting-pick", methods=["POST"])
@require_permission("StockManagement.ApproveOrders")
def mark_awaiting_pick(order_id):
    return _respond(stock_order_service.mark_awaiting_pick(current_tenant_id(), order_id))


@stock_orders_bp.route("/<int:order_id>/ready-for-collection", methods=["POST"])
@require_permission("StockManagement.ApproveOrders")
def mark_ready_for_collection(order_id):
    return _respond(stock_order_service.mark_ready_for_collection(current_tenant_id(), order_id))


@stock_orders_bp.route("/<int:order_id>/collect", methods=["POST"])
@require_permission("StockManagement.ApproveOrders")
def collect_order(order_id):
    return _respond(stock_order_service.collect_order(current_tenant_id(), order_id, current_user_name()))


@stock_orders_bp.route("/<int:order_id>/cancel", methods=["POST"])
@require_permission("StockManagement.CreateOrders")
def cancel_order(order_id):
    reason = request_data().get("reason")
    return _respond(stock_order_service.cancel_order(
        current_tenant_id(), order_id, reason=reason, cancelled_by=current_user_name(),
    ))


@stock_orders_bp.route("/<int:order_id>/docket", methods=["GET"])
@require_permission("StockManagement.View")
def get_docket(order_id):
    return jsonify(stock_order_service.get_docket(current_tenant_id(), order_id))
