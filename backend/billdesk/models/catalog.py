from __future__ import annotations

from ..extensions import db
from billdesk.time_utils import to_utc_z


def _money(value):
    return None if value is None else str(value)


class Product(db.Model):
    """
    Product catalog entry.

    STOCK: stock_quantity is a stored, mutable quantity. Only the stock
    ledger writes it, always under a row lock and the optimistic version
    check below. Invoice items snapshot name/code/price/gst at add time, so
    editing a product never rewrites historical invoices.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        db.CheckConstraint("gst_rate >= 0 AND gst_rate <= 100", name="ck_products_gst_rate_range"),
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    barcode = db.Column(db.String(64), nullable=True, unique=True)
    hsn_code = db.Column(db.String(20), nullable=True)
    unit = db.Column(db.String(20), nullable=False, default="pcs")

    mrp = db.Column(db.Numeric(10, 2), nullable=False)
    sales_price = db.Column(db.Numeric(10, 2), nullable=False)
    gst_rate = db.Column(db.Numeric(5, 2), nullable=False, default=0)

    stock_quantity = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    min_stock_level = db.Column(db.Numeric(12, 3), nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low_stock(self) -> bool:
        return self.stock_quantity <= self.min_stock_level

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "barcode": self.barcode,
            "hsn_code": self.hsn_code,
            "unit": self.unit,
            "mrp": _money(self.mrp),
            "sales_price": _money(self.sales_price),
            "gst_rate": _money(self.gst_rate),
            "stock_quantity": _money(self.stock_quantity),
            "min_stock_level": _money(self.min_stock_level),
            "is_low_stock": self.is_low_stock,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
