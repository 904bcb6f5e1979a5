# Overview: Service-layer stock arithmetic for catalog products.

"""
Stock Ledger

Invariants:
- stock_quantity never goes below zero at a commit point.
- Every reservation locks the product row (SELECT ... FOR UPDATE) and the
  write is version-checked (Product.version_id), so two concurrent
  reservations cannot both pass the availability check and oversell.
- The ledger never commits. Stock moves and the matching invoice item
  write belong to the caller's unit of work and roll back together.
- Quantity updates move stock by the delta only; a reduction never
  re-checks availability against the full new quantity.
"""

from __future__ import annotations

from decimal import Decimal

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..models import Product
from .concurrency import lock_for_update
from .line_pricing import QUANTITY_PLACES, ZERO, to_decimal


class StockLedger:
    def __init__(self, session):
        self.session = session

    def _locked_product(self, product_id: int) -> Product:
        product = lock_for_update(self.session.query(Product).filter_by(id=product_id)).first()
        if not product:
            raise NotFoundError("Product not found", details={"product_id": product_id})
        return product

    def reserve(self, product_id: int, delta) -> Decimal:
        """Take `delta` units off the shelf. Returns the new stock quantity."""
        delta = to_decimal(delta, "quantity", QUANTITY_PLACES)
        if delta <= ZERO:
            raise ValidationError("Reservation quantity must be greater than zero")

        product = self._locked_product(product_id)
        if not product.is_active:
            raise ValidationError("Product is not active", details={"product_id": product_id})

        on_hand = Decimal(product.stock_quantity)
        if on_hand < delta:
            raise InsufficientStockError(product_id=product_id, requested=delta, available=on_hand)

        product.stock_quantity = on_hand - delta
        self.session.flush()
        return product.stock_quantity

    def release(self, product_id: int, delta) -> Decimal:
        """Put `delta` units back. Succeeds for any existing product, active or not."""
        delta = to_decimal(delta, "quantity", QUANTITY_PLACES)
        if delta <= ZERO:
            raise ValidationError("Release quantity must be greater than zero")

        product = self._locked_product(product_id)
        product.stock_quantity = Decimal(product.stock_quantity) + delta
        self.session.flush()
        return product.stock_quantity

    def apply_delta(self, product_id: int, old_quantity, new_quantity) -> Decimal | None:
        """
        Move stock for a line whose quantity changes from old to new.

        Reserves only a positive delta and releases a negative one. Returns
        the new stock quantity, or None when nothing moved.
        """
        delta = to_decimal(new_quantity, "quantity") - to_decimal(old_quantity, "quantity")
        if delta > ZERO:
            return self.reserve(product_id, delta)
        if delta < ZERO:
            return self.release(product_id, -delta)
        return None
