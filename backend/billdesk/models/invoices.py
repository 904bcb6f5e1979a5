from __future__ import annotations

import uuid

from ..extensions import db
from billdesk.time_utils import to_utc_z, utcnow

INVOICE_STATUS_DRAFT = "draft"
INVOICE_STATUS_PENDING = "pending"
INVOICE_STATUS_COMPLETED = "completed"
INVOICE_STATUS_CANCELLED = "cancelled"
INVOICE_STATUSES = (
    INVOICE_STATUS_DRAFT,
    INVOICE_STATUS_PENDING,
    INVOICE_STATUS_COMPLETED,
    INVOICE_STATUS_CANCELLED,
)

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUS_CANCELLED = "cancelled"

PAYMENT_METHODS = ("cash", "card", "upi", "cheque", "credit")

DISCOUNT_AMOUNT = "amount"
DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_TYPES = (DISCOUNT_AMOUNT, DISCOUNT_PERCENTAGE)


def _money(value):
    return None if value is None else str(value)


def generate_invoice_number() -> str:
    return f"INV-{utcnow():%Y%m%d%H%M%S}-{uuid.uuid4().hex[:6].upper()}"


class Invoice(db.Model):
    """
    Invoice document opened by a billing session.

    LIFECYCLE: draft -> pending -> completed | cancelled. A draft is mutable
    by its owner while the session window is open; once pending only the
    verification step may touch it.

    TOTALS: subtotal/total_gst/total_amount are derived from the current
    items and are only ever overwritten wholesale by a recalculation.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.Index("ix_invoices_user_session_status", "user_id", "session_id", "status"),
        db.Index("ix_invoices_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(64), nullable=False, unique=True, default=generate_invoice_number)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    session_id = db.Column(db.String(64), nullable=False)

    # Customer details (captured on completion)
    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_address = db.Column(db.Text, nullable=True)

    # Derived totals
    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_gst = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    payment_method = db.Column(db.String(16), nullable=False, default="cash")
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING)
    status = db.Column(db.String(16), nullable=False, default=INVOICE_STATUS_DRAFT, index=True)

    # Verification audit trail
    admin_verified = db.Column(db.Boolean, nullable=False, default=False)
    verified_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Billing session window
    session_start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    session_end_time = db.Column(db.DateTime(timezone=True), nullable=False)
    is_session_expired = db.Column(db.Boolean, nullable=False, default=False)

    notes = db.Column(db.Text, nullable=True)
    # Admin remark recorded with the verification decision
    verification_notes = db.Column(db.Text, nullable=True)

    # Document renderer bookkeeping
    print_count = db.Column(db.Integer, nullable=False, default=0)
    last_printed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    user = db.relationship(
        "User",
        foreign_keys=[user_id],
        backref=db.backref("invoices", lazy=True, cascade="all, delete-orphan", passive_deletes=True),
    )
    verifier = db.relationship("User", foreign_keys=[verified_by])
    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="InvoiceItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_abandoned(self) -> bool:
        """Draft whose session lapsed before completion; never listed by default."""
        return self.status == INVOICE_STATUS_DRAFT and bool(self.is_session_expired)

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number!r} status={self.status}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_email": self.customer_email,
            "customer_address": self.customer_address,
            "subtotal": _money(self.subtotal),
            "total_gst": _money(self.total_gst),
            "total_amount": _money(self.total_amount),
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "status": self.status,
            "admin_verified": self.admin_verified,
            "verified_by": self.verified_by,
            "verified_at": to_utc_z(self.verified_at) if self.verified_at else None,
            "session_start_time": to_utc_z(self.session_start_time),
            "session_end_time": to_utc_z(self.session_end_time),
            "is_session_expired": self.is_session_expired,
            "is_abandoned": self.is_abandoned,
            "notes": self.notes,
            "verification_notes": self.verification_notes,
            "print_count": self.print_count,
            "last_printed_at": to_utc_z(self.last_printed_at) if self.last_printed_at else None,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


# One active draft per (user, billing session). Expired drafts stay in
# status=draft forever, so the constraint only covers live ones.
db.Index(
    "uq_invoices_active_draft",
    Invoice.user_id,
    Invoice.session_id,
    unique=True,
    sqlite_where=db.and_(Invoice.status == INVOICE_STATUS_DRAFT, Invoice.is_session_expired == db.false()),
    postgresql_where=db.and_(Invoice.status == INVOICE_STATUS_DRAFT, Invoice.is_session_expired == db.false()),
)


class InvoiceItem(db.Model):
    """
    Line item on an invoice.

    SNAPSHOT: product name/code/price/gst are copied from the catalog when
    the line is created. Derived amounts are written from the line pricing
    step before every flush, never computed by the store.
    """
    __tablename__ = "invoice_items"
    __table_args__ = (
        db.UniqueConstraint("invoice_id", "product_id", name="uq_invoice_items_invoice_product"),
        db.CheckConstraint("quantity > 0", name="ck_invoice_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)

    # Product snapshot
    product_name = db.Column(db.String(200), nullable=False)
    product_code = db.Column(db.String(64), nullable=True)
    hsn_code = db.Column(db.String(20), nullable=True)
    unit = db.Column(db.String(20), nullable=False, default="pcs")
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)
    mrp = db.Column(db.Numeric(10, 2), nullable=False)
    gst_rate = db.Column(db.Numeric(5, 2), nullable=False, default=0)

    quantity = db.Column(db.Numeric(10, 3), nullable=False)
    discount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    discount_type = db.Column(db.String(16), nullable=False, default=DISCOUNT_AMOUNT)

    # Derived amounts
    gst_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    line_total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    invoice = db.relationship("Invoice", back_populates="items")
    # No cascade from Product: deleting a product with historical lines fails.
    product = db.relationship("Product", backref=db.backref("invoice_items", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_code": self.product_code,
            "hsn_code": self.hsn_code,
            "unit": self.unit,
            "unit_price": _money(self.unit_price),
            "mrp": _money(self.mrp),
            "gst_rate": _money(self.gst_rate),
            "quantity": _money(self.quantity),
            "discount": _money(self.discount),
            "discount_type": self.discount_type,
            "gst_amount": _money(self.gst_amount),
            "line_total": _money(self.line_total),
            "total_amount": _money(self.total_amount),
            "created_at": to_utc_z(self.created_at),
        }
