# Overview: Flask API routes for admin operations; parses input and returns JSON responses.

"""
Admin routes for invoice review.

Provides endpoints for:
- The verification queue (pending, unverified invoices)
- Browsing one cashier's invoices

All endpoints require an authenticated admin.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import BillingError
from ..extensions import db
from ..models import User
from ..decorators import require_auth, require_admin
from .invoices import error_response, filters_from_args, invoice_service

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.get("/invoices/pending")
@require_auth
@require_admin
def pending_invoices_route():
    """Invoices awaiting verification, newest first."""
    try:
        invoices = invoice_service().verification.list_pending()
        return jsonify({
            "invoices": [invoice.to_dict() for invoice in invoices],
            "count": len(invoices),
        }), 200

    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list pending invoices")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.get("/users/<int:user_id>/invoices")
@require_auth
@require_admin
def user_invoices_route(user_id: int):
    """
    Page through one user's invoices.

    Query params: page, limit, status, start_date, end_date, include_abandoned
    """
    try:
        user = db.session.get(User, user_id)
        if not user:
            return jsonify({"error": "User not found"}), 404

        filters = filters_from_args(request.args)
        filters.user_id = user_id

        page = invoice_service().list_invoices(
            g.actor,
            filters,
            page=request.args.get("page", default=1, type=int),
            limit=request.args.get("limit", type=int),
            mine=False,
        )
        body = page.to_dict()
        body["user"] = user.to_dict()
        return jsonify(body), 200

    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list user invoices")
        return jsonify({"error": "Internal server error"}), 500
