# Overview: Flask API routes for billing invoices; parses input and returns JSON responses.

"""Invoice API routes. Business rules live in the invoice and verification services."""

from flask import Blueprint, current_app, g, jsonify, request

from ..errors import BillingError, ValidationError
from ..extensions import db
from ..models import Invoice, InvoiceItem
from ..decorators import require_admin, require_auth
from ..services.concurrency import run_with_retry
from ..services.invoice_service import CUSTOMER_FIELDS, InvoiceFilters, InvoiceService
from ..validation import (
    ModelValidationPolicy,
    enforce_rules_invoice_completion,
    enforce_rules_invoice_item,
    parse_bool_arg,
    parse_datetime_arg,
    validate_payload,
)

ADD_ITEM_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "quantity", "discount", "discount_type"},
    required_on_create={"product_id", "quantity"},
)

UPDATE_ITEM_POLICY = ModelValidationPolicy(
    writable_fields={"quantity", "discount", "discount_type"},
    required_on_create={"quantity"},
)

COMPLETE_POLICY = ModelValidationPolicy(
    writable_fields=set(CUSTOMER_FIELDS) | {"payment_method", "notes"},
)

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def invoice_service() -> InvoiceService:
    return InvoiceService.from_config(db.session, current_app.config)


def error_response(exc: BillingError):
    return jsonify(exc.to_dict()), exc.status_code


def filters_from_args(args) -> InvoiceFilters:
    return InvoiceFilters(
        status=args.get("status") or None,
        user_id=args.get("user_id", type=int),
        start_date=parse_datetime_arg("start_date", args.get("start_date")),
        end_date=parse_datetime_arg("end_date", args.get("end_date"), end_of_day=True),
        include_completed=parse_bool_arg(args.get("include_completed")),
        include_abandoned=parse_bool_arg(args.get("include_abandoned")),
    )


@invoices_bp.post("/create")
@require_auth
def create_or_get_invoice_route():
    """
    Return the active draft for the caller's billing session, or open a new one.

    A duplicate request racing on the same session is retried: the loser
    finds the winner's draft on the next attempt.
    """
    try:
        service = invoice_service()
        result = run_with_retry(lambda: service.get_or_create_draft(g.actor))

        remaining = result.time_remaining
        body = {
            "message": "New invoice created" if result.created else "Active invoice found",
            "invoice": result.invoice.to_dict(),
            "time_remaining_ms": int(remaining.total_seconds() * 1000) if remaining is not None else None,
        }
        return jsonify(body), 201 if result.created else 200

    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create or get invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/items")
@require_auth
def add_item_route(invoice_id: int):
    """Add a product to a draft invoice (merges into an existing line)."""
    try:
        patch = validate_payload(
            model=InvoiceItem,
            payload=request.get_json(silent=True),
            policy=ADD_ITEM_POLICY,
            partial=False,
        )
        enforce_rules_invoice_item(patch)

        invoice, item = invoice_service().add_item(
            g.actor,
            invoice_id,
            patch["product_id"],
            patch["quantity"],
            discount=patch.get("discount") or 0,
            discount_type=patch.get("discount_type") or "amount",
        )
        return jsonify({"invoice": invoice.to_dict(), "item": item.to_dict()}), 201

    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add invoice item")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.patch("/<int:invoice_id>/items/<int:item_id>")
@require_auth
def update_item_route(invoice_id: int, item_id: int):
    """Change a line's quantity or discount; stock moves by the difference."""
    try:
        patch = validate_payload(
            model=InvoiceItem,
            payload=request.get_json(silent=True),
            policy=UPDATE_ITEM_POLICY,
            partial=False,
        )
        enforce_rules_invoice_item(patch)

        invoice, item = invoice_service().update_item(
            g.actor,
            invoice_id,
            item_id,
            patch["quantity"],
            discount=patch.get("discount"),
            discount_type=patch.get("discount_type"),
        )
        return jsonify({"invoice": invoice.to_dict(), "item": item.to_dict()}), 200

    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update invoice item")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.delete("/<int:invoice_id>/items/<int:item_id>")
@require_auth
def remove_item_route(invoice_id: int, item_id: int):
    """Remove a line and restore its stock."""
    try:
        invoice = invoice_service().remove_item(g.actor, invoice_id, item_id)
        return jsonify({"message": "Item removed from invoice", "invoice": invoice.to_dict()}), 200

    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove invoice item")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.put("/<int:invoice_id>/complete")
@require_auth
def complete_invoice_route(invoice_id: int):
    """Submit a draft for admin verification."""
    try:
        patch = validate_payload(
            model=Invoice,
            payload=request.get_json(silent=True),
            policy=COMPLETE_POLICY,
            partial=True,
        )
        enforce_rules_invoice_completion(patch)

        invoice = invoice_service().complete(
            g.actor,
            invoice_id,
            customer={k: v for k, v in patch.items() if k in CUSTOMER_FIELDS},
            payment_method=patch.get("payment_method") or "cash",
            notes=patch.get("notes"),
        )
        return jsonify({
            "message": "Invoice completed successfully. Awaiting admin verification.",
            "invoice": invoice.to_dict(),
        }), 200

    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/my-invoices")
@require_auth
def my_invoices_route():
    """
    List the caller's invoices.

    Query params: page, limit, status, start_date, end_date,
    include_completed, include_abandoned
    """
    try:
        page = invoice_service().list_invoices(
            g.actor,
            filters_from_args(request.args),
            page=request.args.get("page", default=1, type=int),
            limit=request.args.get("limit", type=int),
            mine=True,
        )
        return jsonify(page.to_dict()), 200

    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/all")
@require_auth
@require_admin
def all_invoices_route():
    """Admin-wide invoice listing; accepts user_id in addition to the my-invoices filters."""
    try:
        page = invoice_service().list_invoices(
            g.actor,
            filters_from_args(request.args),
            page=request.args.get("page", default=1, type=int),
            limit=request.args.get("limit", type=int),
            mine=False,
        )
        return jsonify(page.to_dict()), 200

    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list all invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
@require_auth
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service().get_invoice(g.actor, invoice_id)
        return jsonify({"invoice": invoice.to_dict()}), 200

    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.put("/<int:invoice_id>/verify")
@require_auth
@require_admin
def verify_invoice_route(invoice_id: int):
    """Approve (completed) or reject (cancelled) a pending invoice."""
    try:
        data = request.get_json(silent=True) or {}
        if "approved" not in data:
            raise ValidationError("approved required")

        invoice = invoice_service().verification.verify(
            g.actor,
            invoice_id,
            approved=data.get("approved"),
            notes=data.get("notes"),
        )
        return jsonify({
            "message": f"Invoice {'approved' if invoice.admin_verified else 'rejected'} successfully",
            "invoice": invoice.to_dict(),
        }), 200

    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to verify invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/print")
@require_auth
def print_invoice_route(invoice_id: int):
    """Record a print of a submitted invoice and return the data the renderer needs."""
    try:
        invoice = invoice_service().record_print(g.actor, invoice_id)
        return jsonify({"invoice": invoice.to_dict()}), 200

    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record invoice print")
        return jsonify({"error": "Internal server error"}), 500
