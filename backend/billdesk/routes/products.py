# Overview: Flask API routes for catalog lookups; parses input and returns JSON responses.

"""
Product lookup routes.

Read-only: the catalog is seeded through the CLI, and stock moves only
through invoice items.

SECURITY: All routes require authentication.
- Search, barcode lookup and detail are open to every cashier
- The low-stock report is admin only
"""
from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_admin, require_auth
from ..errors import BillingError
from ..services import catalog_service
from ..validation import parse_bool_arg
from .invoices import error_response

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products_route():
    """
    List or search products.

    Query params:
    - search: str (optional) - matches name or barcode
    - include_inactive: bool (optional) - default false
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    try:
        result = catalog_service.list_products(
            search=request.args.get("search"),
            include_inactive=parse_bool_arg(request.args.get("include_inactive")),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200

    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/low-stock")
@require_auth
@require_admin
def low_stock_route():
    try:
        products = catalog_service.list_low_stock()
        return jsonify({
            "products": [p.to_dict() for p in products],
            "count": len(products),
        }), 200

    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list low-stock products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/code/<path:code>")
@require_auth
def product_by_code_route(code: str):
    """Barcode lookup."""
    try:
        product = catalog_service.find_by_code(code)
        return jsonify({"product": product.to_dict()}), 200

    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to look up product by code")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        product = catalog_service.get_product(product_id)
        return jsonify({"product": product.to_dict()}), 200

    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get product")
        return jsonify({"error": "Internal server error"}), 500
