"""
Invoice Verification State Machine

LIFECYCLE:
1. draft      - cashier assembling the invoice (initial)
2. pending    - submitted by the cashier, awaiting admin decision
3. completed  - approved by an admin (terminal)
4. cancelled  - rejected by an admin (terminal)

There is no edge back to draft or pending. A draft whose billing session
lapsed before submission stays draft forever ("abandoned"); it is not a
state of its own, listings simply hide it.

Open policy: rejecting an invoice does not return its stock to the shelf
unless RESTORE_STOCK_ON_CANCEL is enabled.
"""

from __future__ import annotations

import logging

from ..errors import NotFoundError, PermissionDeniedError, StateTransitionError, ValidationError
from ..models import Invoice
from ..models.invoices import (
    INVOICE_STATUS_CANCELLED,
    INVOICE_STATUS_COMPLETED,
    INVOICE_STATUS_DRAFT,
    INVOICE_STATUS_PENDING,
)
from billdesk.time_utils import utcnow
from .concurrency import lock_for_update, unit_of_work
from .stock_ledger import StockLedger

logger = logging.getLogger(__name__)

TRANSITIONS = {
    INVOICE_STATUS_DRAFT: frozenset({INVOICE_STATUS_PENDING}),
    INVOICE_STATUS_PENDING: frozenset({INVOICE_STATUS_COMPLETED, INVOICE_STATUS_CANCELLED}),
    INVOICE_STATUS_COMPLETED: frozenset(),
    INVOICE_STATUS_CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({INVOICE_STATUS_COMPLETED, INVOICE_STATUS_CANCELLED})


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


class VerificationService:
    def __init__(self, session, ledger: StockLedger | None = None, restore_stock_on_cancel: bool = False, now=utcnow):
        self.session = session
        self.ledger = ledger or StockLedger(session)
        self.restore_stock_on_cancel = restore_stock_on_cancel
        self._now = now

    def transition(self, invoice: Invoice, target: str) -> Invoice:
        if not can_transition(invoice.status, target):
            raise StateTransitionError(
                f"Cannot move invoice from {invoice.status} to {target}",
                details={"invoice_id": invoice.id, "status": invoice.status, "target": target},
            )
        invoice.status = target
        return invoice

    def submit(self, invoice: Invoice) -> Invoice:
        """draft -> pending. Runs inside the caller's unit of work."""
        return self.transition(invoice, INVOICE_STATUS_PENDING)

    def verify(self, actor, invoice_id: int, approved: bool, notes: str | None = None) -> Invoice:
        """
        Admin decision on a pending invoice.

        Sets admin_verified, verified_by, verified_at and the terminal status
        in one unit of work.
        """
        if not actor.is_admin:
            raise PermissionDeniedError("Access denied. Admin role required.")
        if not isinstance(approved, bool):
            raise ValidationError("approved must be a boolean")

        with unit_of_work(self.session):
            invoice = lock_for_update(self.session.query(Invoice).filter_by(id=invoice_id)).first()
            if not invoice:
                raise NotFoundError("Invoice not found", details={"invoice_id": invoice_id})

            target = INVOICE_STATUS_COMPLETED if approved else INVOICE_STATUS_CANCELLED
            self.transition(invoice, target)

            invoice.admin_verified = approved
            invoice.verified_by = actor.user_id
            invoice.verified_at = self._now()
            if notes:
                invoice.verification_notes = notes

            if not approved and self.restore_stock_on_cancel:
                for item in invoice.items:
                    self.ledger.release(item.product_id, item.quantity)

        logger.info(
            "Invoice %s %s by admin %s",
            invoice.invoice_number,
            "approved" if approved else "rejected",
            actor.user_id,
        )
        return invoice

    def list_pending(self) -> list[Invoice]:
        return (
            self.session.query(Invoice)
            .filter(Invoice.status == INVOICE_STATUS_PENDING, Invoice.admin_verified.is_(False))
            .order_by(Invoice.created_at.desc(), Invoice.id.desc())
            .all()
        )
