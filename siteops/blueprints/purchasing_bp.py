"""
Purchasing blueprint: purchase orders and goods receipts.

Endpoints:
    /api/v1/purchasing/purchase-orders                  GET, POST
    /api/v1/purchasing/purchase-orders/<id>             GET, PUT, DELETE
    /api/v1/purchasing/purchase-orders/<id>/confirm     POST
    /api/v1/purchasing/purchase-orders/<id>/cancel      POST
    /api/v1/purchasing/goods-receipts                   GET, POST
    /api/v1/purchasing/goods-receipts/<id>              GET
"""

import logging

from flask import Blueprint, jsonify, request, url_for

from siteops.blueprints import created, current_user_name, paginate_query, request_data
from siteops.middleware.permission_required import require_permission
from siteops.middleware.tenant_context import current_tenant_id
from siteops.services import purchase_order_service
from siteops.utils.errors import register_error_handlers
from siteops.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

purchasing_bp = Blueprint("purchasing", __name__, url_prefix="/api/v1/purchasing")
register_error_handlers(purchasing_bp)


def _respond(po):
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(po.to_dict())


@purchasing_bp.route("/purchase-orders", methods=["GET"])
@require_permission("StockManagement.View")
def list_purchase_orders():
    q = purchase_order_service.list_purchase_orders(
        current_tenant_id(),
        status=request.args.get("status"),
        supplier_id=request.args.get("supplier_id", type=int),
        search=request.args.get("search"),
    )
    items, total = paginate_query(q)
    return jsonify({"items": [po.to_dict(include_lines=False) for po in items], "total": total})


@purchasing_bp.route("/purchase-orders/<int:po_id>", methods=["GET"])
@require_permission("StockManagement.View")
def get_purchase_order(po_id):
    return jsonify(purchase_order_service.get_purchase_order(current_tenant_id(), po_id).to_dict())


@purchasing_bp.route("/purchase-orders", methods=["POST"])
@require_permission("StockManagement.ManageSuppliers")
def create_purchase_order():
    po = purchase_order_service.create_purchase_order(current_tenant_id(), request_data(), current_user_name())
    err = db_commit_or_error()
    if err:
        return err
    return created(po.to_dict(), url_for("purchasing.get_purchase_order", po_id=po.id))


@purchasing_bp.route("/purchase-orders/<int:po_id>", methods=["PUT"])
@require_permission("StockManagement.ManageSuppliers")
def update_purchase_order(po_id):
    return _respond(purchase_order_service.update_purchase_order(current_tenant_id(), po_id, request_data()))


@purchasing_bp.route("/purchase-orders/<int:po_id>", methods=["DELETE"])
@require_permission("StockManagement.ManageSuppliers")
def delete_purchase_order(po_id):
    purchase_order_service.delete_purchase_order(current_tenant_id(), po_id)
    err = db_commit_or_error()
    if err:
        return err
    return "", 204


@purchasing_bp.route("/purchase-orders/<int:po_id>/confirm", methods=["POST"])
@require_permission("StockManagement.ManageSuppliers")
def confirm_purchase_order(po_id):
    return _respond(purchase_order_service.confirm_purchase_order(current_tenant_id(), po_id))


@purchasing_bp.route("/purchase-orders/<int:po_id>/cancel", methods=["POST"])
@require_permission("StockManagement.ManageSuppliers")
def cancel_purchase_order(po_id):
    return _respond(purchase_order_service.cancel_purchase_order(current_tenant_id(), po_id))


# ── Goods receipts ───────────────────────────────────────────────────────────

@purchasing_bp.route("/goods-receipts", methods=["GET"])
@require_permission("StockManagement.View")
def list_goods_receipts():
    q = purchase_order_service.list_goods_receipts(
        current_tenant_id(),
        supplier_id=request.args.get("supplier_id", type=int),
        purchase_order_id=request.args.get("purchase_order_id", type=int),
    )
    items, total = paginate_query(q)
    return jsonify({"items": [grn.to_dict() for grn in items], "total": total})


@purchasing_bp.route("/goods-receipts/<int:grn_id>", methods=["GET"])
@require_permission("StockManagement.View")
def get_goods_receipt(grn_id):
    return jsonify(purchase_order_service.get_goods_receipt(current_tenant_id(), grn_id).to_dict())


@purchasing_bp.route("/goods-receipts", methods=["POST"])
@require_permission("StockManagement.ReceiveGoods")
def create_goods_receipt():
    grn = purchase_order_service.create_goods_receipt(current_tenant_id(), request_data(), current_user_name())
    err = db_commit_or_error()
    if err:
        return err
    return created(grn.to_dict(), url_for("purchasing.get_goods_receipt", grn_id=grn.id))
