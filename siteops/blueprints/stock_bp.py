"""
Stock & warehouse blueprint: master data, levels and the movement ledger.

Endpoints:
    CATEGORIES   /api/v1/stock/categories                 GET, POST
                 /api/v1/stock/categories/<id>            GET, PUT, DELETE
    SUPPLIERS    /api/v1/stock/suppliers                  GET, POST
                 /api/v1/stock/suppliers/<id>             GET, PUT, DELETE
    PRODUCTS     /api/v1/stock/products                   GET, POST
                 /api/v1/stock/products/<id>              GET, PUT, DELETE
    LOCATIONS    /api/v1/stock/locations                  GET, POST
                 /api/v1/stock/locations/<id>             GET, PUT, DELETE
                 /api/v1/stock/locations/<id>/bays        GET, POST
                 /api/v1/stock/bays/<id>                  PUT, DELETE
    LEVELS       /api/v1/stock/levels                     GET
                 /api/v1/stock/levels/low-stock           GET
                 /api/v1/stock/levels/<id>/bay            PATCH
    LEDGER       /api/v1/stock/transactions               GET
                 /api/v1/stock/transactions/<id>          GET
                 /api/v1/stock/adjustments                POST
    STOCKTAKES   /api/v1/stock/stocktakes                 GET, POST
                 /api/v1/stock/stocktakes/<id>            GET, DELETE
                 /api/v1/stock/stocktakes/<id>/start      POST
                 /api/v1/stock/stocktakes/<id>/lines/<id> PUT
                 /api/v1/stock/stocktakes/<id>/complete   POST
                 /api/v1/stock/stocktakes/<id>/cancel     POST
"""

import logging

from flask import Blueprint, jsonify, request, url_for

from siteops.blueprints import created, current_user_name, paginate_query, query_flag, request_data
from siteops.middleware.permission_required import current_user_can, require_any_permission, require_permission
from siteops.middleware.tenant_context import current_tenant_id
from siteops.models.stock import Category, Product, StockLocation, StockTransaction, Supplier
from siteops.services import stock_service, stocktake_service
from siteops.utils.errors import register_error_handlers
from siteops.utils.helpers import db_commit_or_error, get_tenant_record

logger = logging.getLogger(__name__)

stock_bp = Blueprint("stock", __name__, url_prefix="/api/v1/stock")
register_error_handlers(stock_bp)

VIEW = "StockManagement.View"
MANAGE_PRODUCTS = "StockManagement.ManageProducts"
MANAGE_SUPPLIERS = "StockManagement.ManageSuppliers"
STOCKTAKE = "StockManagement.Stocktake"


def _commit(payload, status=200):
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(payload), status


def _deleted():
    err = db_commit_or_error()
    if err:
        return err
    return "", 204


# ═══════════════════════════════════════════════════════════════════════════
#  CATEGORIES
# ═══════════════════════════════════════════════════════════════════════════

@stock_bp.route("/categories", methods=["GET"])
@require_permission(VIEW)
def list_categories():
    items, total = paginate_query(stock_service.list_categories(current_tenant_id(), request.args.get("search")))
    return jsonify({"items": [c.to_dict() for c in items], "total": total})


@stock_bp.route("/categories/<int:category_id>", methods=["GET"])
@require_permission(VIEW)
def get_category(category_id):
    return jsonify(get_tenant_record(Category, category_id, current_tenant_id()).to_dict())


@stock_bp.route("/categories", methods=["POST"])
@require_permission(MANAGE_PRODUCTS)
def create_category():
    cat = stock_service.create_category(current_tenant_id(), request_data(), current_user_name())
    err = db_commit_or_error()
    if err:
        return err
    return created(cat.to_dict(), url_for("stock.get_category", category_id=cat.id))


@stock_bp.route("/categories/<int:category_id>", methods=["PUT"])
@require_permission(MANAGE_PRODUCTS)
def update_category(category_id):
    cat = stock_service.update_category(current_tenant_id(), category_id, request_data())
    return _commit(cat.to_dict())


@stock_bp.route("/categories/<int:category_id>", methods=["DELETE"])
@require_permission(MANAGE_PRODUCTS)
def delete_category(category_id):
    stock_service.delete_category(current_tenant_id(), category_id)
    return _deleted()


# ═══════════════════════════════════════════════════════════════════════════
#  SUPPLIERS
# ═══════════════════════════════════════════════════════════════════════════

@stock_bp.route("/suppliers", methods=["GET"])
@require_permission(VIEW)
def list_suppliers():
    q = stock_service.list_suppliers(
        current_tenant_id(), request.args.get("search"), active_only=query_flag("active_only"),
    )
    items, total = paginate_query(q)
    return jsonify({"items": [s.to_dict() for s in items], "total": total})


@stock_bp.route("/suppliers/<int:supplier_id>", methods=["GET"])
@require_permission(VIEW)
def get_supplier(supplier_id):
    return jsonify(get_tenant_record(Supplier, supplier_id, current_tenant_id()).to_dict())


@stock_bp.route("/suppliers", methods=["POST"])
@require_permission(MANAGE_SUPPLIERS)
def create_supplier():
    sup = stock_service.create_supplier(current_tenant_id(), request_data(), current_user_name())
    err = db_commit_or_error()
    if err:
        return err
    return created(sup.to_dict(), url_for("stock.get_supplier", supplier_id=sup.id))


@stock_bp.route("/suppliers/<int:supplier_id>", methods=["PUT"])
@require_permission(MANAGE_SUPPLIERS)
def update_supplier(supplier_id):
    sup = stock_service.update_supplier(current_tenant_id(), supplier_id, request_data())
    return _commit(sup.to_dict())


@stock_bp.route("/suppliers/<int:supplier_id>", methods=["DELETE"])
@require_permission(MANAGE_SUPPLIERS)
def delete_supplier(supplier_id):
    stock_service.delete_supplier(current_tenant_id(), supplier_id)
    return _deleted()


# ═══════════════════════════════════════════════════════════════════════════
#  PRODUCTS
# ═══════════════════════════════════════════════════════════════════════════

def _product_dict(product):
    return product.to_dict(include_costings=current_user_can("StockManagement.ViewCostings"))


@stock_bp.route("/products", methods=["GET"])
@require_permission(VIEW)
def list_products():
    q = stock_service.list_products(
        current_tenant_id(),
        search=request.args.get("search"),
        category_id=request.args.get("category_id", type=int),
        active_only=query_flag("active_only"),
    )
    items, total = paginate_query(q)
    return jsonify({"items": [_product_dict(p) for p in items], "total": total})


@stock_bp.route("/products/<int:product_id>", methods=["GET"])
@require_permission(VIEW)
def get_product(product_id):
    return jsonify(_product_dict(get_tenant_record(Product, product_id, current_tenant_id())))


@stock_bp.route("/products", methods=["POST"])
@require_permission(MANAGE_PRODUCTS)
def create_product():
    product = stock_service.create_product(current_tenant_id(), request_data(), current_user_name())
    err = db_commit_or_error()
    if err:
        return err
    return created(_product_dict(product), url_for("stock.get_product", product_id=product.id))


@stock_bp.route("/products/<int:product_id>", methods=["PUT"])
@require_permission(MANAGE_PRODUCTS)
def update_product(product_id):
    product = stock_service.update_product(current_tenant_id(), product_id, request_data())
    return _commit(_product_dict(product))


@stock_bp.route("/products/<int:product_id>", methods=["DELETE"])
@require_permission(MANAGE_PRODUCTS)
def delete_product(product_id):
    stock_service.delete_product(current_tenant_id(), product_id)
    return _deleted()


# ═══════════════════════════════════════════════════════════════════════════
#  LOCATIONS & BAYS
# ═══════════════════════════════════════════════════════════════════════════

@stock_bp.route("/locations", methods=["GET"])
@require_permission(VIEW)
def list_locations():
    items, total = paginate_query(stock_service.list_locations(current_tenant_id(), request.args.get("search")))
    return jsonify({"items": [loc.to_dict() for loc in items], "total": total})


@stock_bp.route("/locations/<int:location_id>", methods=["GET"])
@require_permission(VIEW)
def get_location(location_id):
    return jsonify(get_tenant_record(StockLocation, location_id, current_tenant_id()).to_dict())


@stock_bp.route("/locations", methods=["POST"])
@require_permission(MANAGE_PRODUCTS)
def create_location():
    loc = stock_service.create_location(current_tenant_id(), request_data(), current_user_name())
    err = db_commit_or_error()
    if err:
        return err
    return created(loc.to_dict(), url_for("stock.get_location", location_id=loc.id))


@stock_bp.route("/locations/<int:location_id>", methods=["PUT"])
@require_permission(MANAGE_PRODUCTS)
def update_location(location_id):
    loc = stock_service.update_location(current_tenant_id(), location_id, request_data())
    return _commit(loc.to_dict())


@stock_bp.route("/locations/<int:location_id>", methods=["DELETE"])
@require_permission(MANAGE_PRODUCTS)
def delete_location(location_id):
    stock_service.delete_location(current_tenant_id(), location_id)
    return _deleted()


@stock_bp.route("/locations/<int:location_id>/bays", methods=["GET"])
@require_permission(VIEW)
def list_bays(location_id):
    bays = stock_service.list_bays(current_tenant_id(), location_id)
    return jsonify({"items": [b.to_dict() for b in bays], "total": len(bays)})


@stock_bp.route("/locations/<int:location_id>/bays", methods=["POST"])
@require_permission(MANAGE_PRODUCTS)
def create_bay(location_id):
    bay = stock_service.create_bay(current_tenant_id(), location_id, request_data(), current_user_name())
    err = db_commit_or_error()
    if err:
        return err
    return created(bay.to_dict(), url_for("stock.list_bays", location_id=location_id))


@stock_bp.route("/bays/<int:bay_id>", methods=["PUT"])
@require_permission(MANAGE_PRODUCTS)
def update_bay(bay_id):
    bay = stock_service.update_bay(current_tenant_id(), bay_id, request_data())
    return _commit(bay.to_dict())


@stock_bp.route("/bays/<int:bay_id>", methods=["DELETE"])
@require_permission(MANAGE_PRODUCTS)
def delete_bay(bay_id):
    stock_service.delete_bay(current_tenant_id(), bay_id)
    return _deleted()


# ═══════════════════════════════════════════════════════════════════════════
#  LEVELS
# ═══════════════════════════════════════════════════════════════════════════

@stock_bp.route("/levels", methods=["GET"])
@require_permission(VIEW)
def list_levels():
    q = stock_service.list_levels(
        current_tenant_id(),
        location_id=request.args.get("location_id", type=int),
        product_id=request.args.get("product_id", type=int),
    )
    items, total = paginate_query(q)
    return jsonify({"items": [lvl.to_dict() for lvl in items], "total": total})


@stock_bp.route("/levels/low-stock", methods=["GET"])
@require_permission(VIEW)
def low_stock():
    levels = stock_service.low_stock(current_tenant_id(), request.args.get("location_id", type=int))
    return jsonify({"items": [lvl.to_dict() for lvl in levels], "total": len(levels)})


@stock_bp.route("/levels/<int:level_id>/bay", methods=["PATCH"])
@require_permission(MANAGE_PRODUCTS)
def set_level_bay(level_id):
    data = request_data()
    level = stock_service.set_level_bay(current_tenant_id(), level_id, data.get("bay_location_id"))
    return _commit(level.to_dict())


# ═══════════════════════════════════════════════════════════════════════════
#  LEDGER & ADJUSTMENTS
# ═══════════════════════════════════════════════════════════════════════════

@stock_bp.route("/transactions", methods=["GET"])
@require_permission(VIEW)
def list_transactions():
    q = stock_service.list_transactions(
        current_tenant_id(),
        product_id=request.args.get("product_id", type=int),
        location_id=request.args.get("location_id", type=int),
        txn_type=request.args.get("transaction_type"),
    )
    items, total = paginate_query(q)
    return jsonify({"items": [t.to_dict() for t in items], "total": total})


@stock_bp.route("/transactions/<int:txn_id>", methods=["GET"])
@require_permission(VIEW)
def get_transaction(txn_id):
    return jsonify(get_tenant_record(StockTransaction, txn_id, current_tenant_id()).to_dict())


@stock_bp.route("/adjustments", methods=["POST"])
@require_any_permission("StockManagement.Stocktake", "StockManagement.Admin")
def adjust_stock():
    level, txn = stock_service.adjust_stock(current_tenant_id(), request_data(), current_user_name())
    err = db_commit_or_error()
    if err:
        return err
    return created(
        {"level": level.to_dict(), "transaction": txn.to_dict()},
        url_for("stock.get_transaction", txn_id=txn.id),
    )


# ═══════════════════════════════════════════════════════════════════════════
#  STOCKTAKES
# ═══════════════════════════════════════════════════════════════════════════

@stock_bp.route("/stocktakes", methods=["GET"])
@require_permission(STOCKTAKE)
def list_stocktakes():
    q = stocktake_service.list_stocktakes(
        current_tenant_id(),
        location_id=request.args.get("location_id", type=int),
        status=request.args.get("status"),
    )
    items, total = paginate_query(q)
    return jsonify({"items": [st.to_dict(include_lines=False) for st in items], "total": total})


@stock_bp.route("/stocktakes/<int:stocktake_id>", methods=["GET"])
@require_permission(STOCKTAKE)
def get_stocktake(stocktake_id):
    return jsonify(stocktake_service.get_stocktake(current_tenant_id(), stocktake_id).to_dict())


@stock_bp.route("/stocktakes", methods=["POST"])
@require_permission(STOCKTAKE)
def create_stocktake():
    stocktake = stocktake_service.create_stocktake(current_tenant_id(), request_data(), current_user_name())
    err = db_commit_or_error()
    if err:
        return err
    return created(stocktake.to_dict(), url_for("stock.get_stocktake", stocktake_id=stocktake.id))


@stock_bp.route("/stocktakes/<int:stocktake_id>/start", methods=["POST"])
@require_permission(STOCKTAKE)
def start_stocktake(stocktake_id):
    return _commit(stocktake_service.start_stocktake(current_tenant_id(), stocktake_id).to_dict())


@stock_bp.route("/stocktakes/<int:stocktake_id>/lines/<int:line_id>", methods=["PUT"])
@require_permission(STOCKTAKE)
def count_stocktake_line(stocktake_id, line_id):
    line = stocktake_service.count_line(current_tenant_id(), stocktake_id, line_id, request_data())
    return _commit(line.to_dict())


@stock_bp.route("/stocktakes/<int:stocktake_id>/complete", methods=["POST"])
@require_permission(STOCKTAKE)
def complete_stocktake(stocktake_id):
    stocktake = stocktake_service.complete_stocktake(current_tenant_id(), stocktake_id, current_user_name())
    return _commit(stocktake.to_dict())


@stock_bp.route("/stocktakes/<int:stocktake_id>/cancel", methods=["POST"])
@require_permission(STOCKTAKE)
def cancel_stocktake(stocktake_id):
    return _commit(stocktake_service.cancel_stocktake(current_tenant_id(), stocktake_id).to_dict())


@stock_bp.route("/stocktakes/<int:stocktake_id>", methods=["DELETE"])
@require_permission(STOCKTAKE)
def delete_stocktake(stocktake_id):
    stocktake_service.delete_stocktake(current_tenant_id(), stocktake_id)
    return _deleted()
