"""
Invoice Service - session-scoped draft invoices

WHY: A cashier assembles one draft invoice per billing session. Every item
change reserves or releases catalog stock, prices the line and recomputes
the invoice totals as one unit of work, so stock, items and totals can never
disagree after a commit.

RULES:
- At most one live draft per (user, billing session), backed by a partial
  unique index. A lost race surfaces as ConflictError; callers may retry.
- Draft mutations require the owner and an open session window. A lapsed
  window is recorded (is_session_expired=True) in the same unit of work that
  noticed it, then SessionExpiredError is raised.
- Totals are always rebuilt from the current items, never patched.
- Submission hands the invoice to the verification state machine.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import and_, not_

from ..errors import (
    NotFoundError,
    PermissionDeniedError,
    SessionExpiredError,
    StateTransitionError,
    ValidationError,
)
from ..models import Invoice, InvoiceItem, Product, User
from ..models.invoices import (
    DISCOUNT_AMOUNT,
    INVOICE_STATUS_COMPLETED,
    INVOICE_STATUS_DRAFT,
    INVOICE_STATUSES,
    PAYMENT_METHODS,
    PAYMENT_STATUS_PAID,
)
from . import line_pricing
from .concurrency import lock_for_update, unit_of_work
from .session_clock import Actor, SessionClock
from .session_service import grant_billing_session
from .stock_ledger import StockLedger
from .verification_service import VerificationService

CUSTOMER_FIELDS = ("customer_name", "customer_phone", "customer_email", "customer_address")


@dataclass
class DraftResult:
    invoice: Invoice
    created: bool
    # None when the actor is not bound by a session window (admins)
    time_remaining: timedelta | None


@dataclass
class InvoiceFilters:
    status: str | None = None
    user_id: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    include_completed: bool = False
    include_abandoned: bool = False


@dataclass
class InvoicePage:
    invoices: list = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 10

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def to_dict(self) -> dict:
        return {
            "invoices": [invoice.to_dict() for invoice in self.invoices],
            "pagination": {
                "current_page": self.page,
                "total_pages": self.total_pages,
                "total_items": self.total,
                "items_per_page": self.limit,
            },
        }


def _apply_amounts(item: InvoiceItem, amounts: line_pricing.LineAmounts) -> None:
    item.line_total = amounts.line_total
    item.gst_amount = amounts.gst_amount
    item.total_amount = amounts.total_amount


class InvoiceService:
    def __init__(
        self,
        session,
        clock: SessionClock | None = None,
        ledger: StockLedger | None = None,
        verification: VerificationService | None = None,
        page_size: int = 10,
        page_size_max: int = 100,
    ):
        self.session = session
        self.clock = clock or SessionClock()
        self.ledger = ledger or StockLedger(session)
        self.verification = verification or VerificationService(session, self.ledger, now=self.clock.now)
        self.page_size = page_size
        self.page_size_max = page_size_max

    @classmethod
    def from_config(cls, session, config) -> "InvoiceService":
        clock = SessionClock.from_config(config)
        ledger = StockLedger(session)
        verification = VerificationService(
            session,
            ledger,
            restore_stock_on_cancel=config.get("RESTORE_STOCK_ON_CANCEL", False),
            now=clock.now,
        )
        return cls(
            session,
            clock=clock,
            ledger=ledger,
            verification=verification,
            page_size=config.get("INVOICE_PAGE_SIZE", 10),
            page_size_max=config.get("INVOICE_PAGE_SIZE_MAX", 100),
        )

    # ------------------------------------------------------------------
    # Loading helpers (run inside a unit of work)
    # ------------------------------------------------------------------

    def _load_owned_draft(self, actor: Actor, invoice_id: int) -> Invoice:
        invoice = lock_for_update(
            self.session.query(Invoice).filter_by(id=invoice_id, user_id=actor.user_id)
        ).first()
        if not invoice:
            raise NotFoundError("Invoice not found or not accessible", details={"invoice_id": invoice_id})
        if invoice.status != INVOICE_STATUS_DRAFT:
            raise StateTransitionError(
                f"Cannot modify invoice in {invoice.status} status",
                details={"invoice_id": invoice_id, "status": invoice.status},
            )
        return invoice

    def _load_item(self, invoice: Invoice, item_id: int) -> InvoiceItem:
        item = self.session.query(InvoiceItem).filter_by(id=item_id, invoice_id=invoice.id).first()
        if not item:
            raise NotFoundError("Invoice item not found", details={"item_id": item_id})
        return item

    @staticmethod
    def _session_expired(invoice_id: int) -> SessionExpiredError:
        return SessionExpiredError(
            "Cannot modify items. Session expired or invoice is not in draft status",
            details={"invoice_id": invoice_id},
        )

    def _recalculate(self, invoice: Invoice) -> Invoice:
        self.session.flush()
        items = self.session.query(InvoiceItem).filter_by(invoice_id=invoice.id).all()
        invoice.subtotal, invoice.total_gst, invoice.total_amount = line_pricing.sum_totals(items)
        return invoice

    @staticmethod
    def _positive_quantity(quantity) -> Decimal:
        quantity = line_pricing.to_decimal(quantity, "quantity", line_pricing.QUANTITY_PLACES)
        if quantity <= 0:
            raise ValidationError("quantity must be greater than zero")
        return quantity

    # ------------------------------------------------------------------
    # Draft lifecycle
    # ------------------------------------------------------------------

    def get_or_create_draft(self, actor: Actor) -> DraftResult:
        """
        Return the live draft for the actor's billing session, creating one if needed.

        A draft whose window lapsed is marked expired and replaced. Non-admin
        actors without an open session get SessionExpiredError; admins
        without a session are granted one.
        """
        now = self.clock.now()
        bypass = self.clock.bypasses_session(actor)

        with unit_of_work(self.session):
            session_id = actor.session_id
            if not session_id and bypass:
                user = self.session.query(User).filter_by(id=actor.user_id).first()
                if not user:
                    raise NotFoundError("User not found", details={"user_id": actor.user_id})
                session_id = grant_billing_session(user, now=now, window=self.clock.window)
            else:
                self.clock.require_open_session(actor, now)

            draft = lock_for_update(
                self.session.query(Invoice).filter_by(
                    user_id=actor.user_id,
                    session_id=session_id,
                    status=INVOICE_STATUS_DRAFT,
                    is_session_expired=False,
                )
            ).first()

            if draft is not None and (bypass or self.clock.is_active(draft, now)):
                result = DraftResult(
                    invoice=draft,
                    created=False,
                    time_remaining=None if bypass else self.clock.time_remaining(draft, now),
                )
            else:
                if draft is not None:
                    draft.is_session_expired = True
                    # Frees the active-draft slot before the insert below.
                    self.session.flush()

                invoice = Invoice(
                    user_id=actor.user_id,
                    session_id=session_id,
                    session_start_time=now,
                    session_end_time=self.clock.session_end_for(now),
                    is_session_expired=False,
                )
                self.session.add(invoice)
                self.session.flush()
                result = DraftResult(
                    invoice=invoice,
                    created=True,
                    time_remaining=None if bypass else self.clock.window,
                )

        return result

    def add_item(
        self,
        actor: Actor,
        invoice_id: int,
        product_id: int,
        quantity,
        discount=0,
        discount_type: str = DISCOUNT_AMOUNT,
    ) -> tuple[Invoice, InvoiceItem]:
        """
        Add a product to a draft, merging into the existing line for that product.

        Only the added quantity is reserved. A merged line keeps its original
        snapshot and takes the discount from this request.
        """
        quantity = self._positive_quantity(quantity)
        now = self.clock.now()

        with unit_of_work(self.session):
            invoice = self._load_owned_draft(actor, invoice_id)
            expired = self.clock.expire_if_elapsed(invoice, actor, now)
            if not expired:
                product = self.session.query(Product).filter_by(id=product_id).first()
                if not product:
                    raise NotFoundError("Product not found", details={"product_id": product_id})

                item = self.session.query(InvoiceItem).filter_by(
                    invoice_id=invoice.id, product_id=product.id
                ).first()
                if item is None:
                    item = InvoiceItem(
                        product_id=product.id,
                        product_name=product.name,
                        product_code=product.barcode,
                        hsn_code=product.hsn_code,
                        unit=product.unit,
                        unit_price=product.sales_price,
                        mrp=product.mrp,
                        gst_rate=product.gst_rate,
                    )
                    new_quantity = quantity
                else:
                    new_quantity = Decimal(item.quantity) + quantity

                amounts = line_pricing.compute(new_quantity, item.unit_price, discount, discount_type, item.gst_rate)
                self.ledger.reserve(product.id, quantity)

                item.quantity = new_quantity
                item.discount = line_pricing.to_decimal(discount, "discount")
                item.discount_type = discount_type
                _apply_amounts(item, amounts)
                if item.invoice is None:
                    invoice.items.append(item)

                self._recalculate(invoice)

        if expired:
            raise self._session_expired(invoice_id)
        return invoice, item

    def update_item(
        self,
        actor: Actor,
        invoice_id: int,
        item_id: int,
        quantity,
        discount=None,
        discount_type: str | None = None,
    ) -> tuple[Invoice, InvoiceItem]:
        """Set a line's quantity (and optionally its discount). Stock moves by the delta only."""
        quantity = self._positive_quantity(quantity)
        now = self.clock.now()

        with unit_of_work(self.session):
            invoice = self._load_owned_draft(actor, invoice_id)
            expired = self.clock.expire_if_elapsed(invoice, actor, now)
            if not expired:
                item = self._load_item(invoice, item_id)
                discount = item.discount if discount is None else discount
                discount_type = discount_type or item.discount_type

                amounts = line_pricing.compute(quantity, item.unit_price, discount, discount_type, item.gst_rate)
                self.ledger.apply_delta(item.product_id, item.quantity, quantity)

                item.quantity = quantity
                item.discount = line_pricing.to_decimal(discount, "discount")
                item.discount_type = discount_type
                _apply_amounts(item, amounts)

                self._recalculate(invoice)

        if expired:
            raise self._session_expired(invoice_id)
        return invoice, item

    def remove_item(self, actor: Actor, invoice_id: int, item_id: int) -> Invoice:
        """Delete a line and put its full quantity back on the shelf."""
        now = self.clock.now()

        with unit_of_work(self.session):
            invoice = self._load_owned_draft(actor, invoice_id)
            expired = self.clock.expire_if_elapsed(invoice, actor, now)
            if not expired:
                item = self._load_item(invoice, item_id)
                self.ledger.release(item.product_id, item.quantity)
                invoice.items.remove(item)
                self._recalculate(invoice)

        if expired:
            raise self._session_expired(invoice_id)
        return invoice

    def recalculate_totals(self, invoice_id: int) -> Invoice:
        """Rebuild subtotal/total_gst/total_amount from the current items. Idempotent."""
        with unit_of_work(self.session):
            invoice = lock_for_update(self.session.query(Invoice).filter_by(id=invoice_id)).first()
            if not invoice:
                raise NotFoundError("Invoice not found", details={"invoice_id": invoice_id})
            self._recalculate(invoice)
        return invoice

    def complete(
        self,
        actor: Actor,
        invoice_id: int,
        customer: dict | None = None,
        payment_method: str = "cash",
        notes: str | None = None,
    ) -> Invoice:
        """
        Submit a draft for admin verification (draft -> pending).

        Requires at least one item. Closes the billing window on the invoice
        and marks it paid.
        """
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")
        now = self.clock.now()

        with unit_of_work(self.session):
            invoice = self._load_owned_draft(actor, invoice_id)
            expired = self.clock.expire_if_elapsed(invoice, actor, now)
            if not expired:
                if not invoice.items:
                    raise StateTransitionError(
                        "Cannot complete invoice without items",
                        details={"invoice_id": invoice_id},
                    )

                for key in CUSTOMER_FIELDS:
                    if customer and key in customer:
                        setattr(invoice, key, customer[key])
                invoice.payment_method = payment_method
                if notes is not None:
                    invoice.notes = notes

                self.verification.submit(invoice)
                invoice.payment_status = PAYMENT_STATUS_PAID
                invoice.session_end_time = now
                invoice.is_session_expired = True

        if expired:
            raise self._session_expired(invoice_id)
        return invoice

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_invoice(self, actor: Actor, invoice_id: int) -> Invoice:
        invoice = self.session.query(Invoice).filter_by(id=invoice_id).first()
        if not invoice or (not actor.is_admin and invoice.user_id != actor.user_id):
            raise NotFoundError("Invoice not found", details={"invoice_id": invoice_id})
        return invoice

    def list_invoices(
        self,
        actor: Actor,
        filters: InvoiceFilters | None = None,
        page: int = 1,
        limit: int | None = None,
        mine: bool = True,
    ) -> InvoicePage:
        """
        Page through invoices, newest first.

        mine=True lists the actor's own invoices and hides admin-verified or
        completed ones unless a status is given or include_completed is set.
        mine=False is the admin-wide view, optionally filtered by user_id.
        Abandoned drafts are hidden from both unless include_abandoned is set.
        """
        filters = filters or InvoiceFilters()
        limit = self.page_size if limit is None else limit
        if page < 1:
            raise ValidationError("page must be 1 or greater")
        if limit < 1 or limit > self.page_size_max:
            raise ValidationError(f"limit must be between 1 and {self.page_size_max}")
        if filters.status and filters.status not in INVOICE_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(INVOICE_STATUSES)}")

        query = self.session.query(Invoice)
        if mine:
            query = query.filter(Invoice.user_id == actor.user_id)
            if not filters.status and not filters.include_completed:
                query = query.filter(
                    Invoice.admin_verified.is_(False),
                    Invoice.status != INVOICE_STATUS_COMPLETED,
                )
        else:
            if not actor.is_admin:
                raise PermissionDeniedError("Access denied. Admin role required.")
            if filters.user_id is not None:
                query = query.filter(Invoice.user_id == filters.user_id)

        if filters.status:
            query = query.filter(Invoice.status == filters.status)
        if not filters.include_abandoned:
            query = query.filter(
                not_(and_(Invoice.status == INVOICE_STATUS_DRAFT, Invoice.is_session_expired.is_(True)))
            )
        if filters.start_date is not None:
            query = query.filter(Invoice.created_at >= filters.start_date)
        if filters.end_date is not None:
            query = query.filter(Invoice.created_at <= filters.end_date)

        total = query.count()
        invoices = (
            query.order_by(Invoice.created_at.desc(), Invoice.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
            .all()
        )
        return InvoicePage(invoices=invoices, total=total, page=page, limit=limit)

    def record_print(self, actor: Actor, invoice_id: int) -> Invoice:
        """
        Bookkeeping for the document renderer: bump print_count and stamp
        last_printed_at. Monetary fields and status are never touched.
        """
        with unit_of_work(self.session):
            invoice = lock_for_update(self.session.query(Invoice).filter_by(id=invoice_id)).first()
            if not invoice or (not actor.is_admin and invoice.user_id != actor.user_id):
                raise NotFoundError("Invoice not found", details={"invoice_id": invoice_id})
            if invoice.status == INVOICE_STATUS_DRAFT:
                raise StateTransitionError(
                    "Only submitted invoices can be printed",
                    details={"invoice_id": invoice_id, "status": invoice.status},
                )
            invoice.print_count = (invoice.print_count or 0) + 1
            invoice.last_printed_at = self.clock.now()
        return invoice
