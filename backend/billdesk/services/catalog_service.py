# backend/billdesk/services/catalog_service.py
"""
Catalog Service (read side)

Cashiers look products up here to find the product_id an invoice line
needs. Stock is only ever written by the stock ledger; nothing in this
module mutates a product.
"""
from __future__ import annotations

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Product

DEFAULT_PER_PAGE = 20
MAX_PER_PAGE = 100


def list_products(
    search: str | None = None,
    include_inactive: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Product listing with optional search and pagination.

    Args:
        search: case-insensitive substring of name or barcode
        include_inactive: also list retired products
        page: Page number (1-indexed). If None, returns all items.
        per_page: Items per page (default 20, max 100)

    Returns:
        Dict with 'items', 'count', and pagination metadata if paginated.
    """
    query = db.session.query(Product)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        query = query.filter(db.or_(Product.name.ilike(pattern), Product.barcode.ilike(pattern)))
    query = query.order_by(Product.name.asc(), Product.id.asc())

    if page is None:
        products = query.all()
        return {
            "items": [p.to_dict() for p in products],
            "count": len(products),
        }

    if page < 1:
        raise ValidationError("page must be at least 1")
    per_page = min(per_page or DEFAULT_PER_PAGE, MAX_PER_PAGE)
    if per_page < 1:
        raise ValidationError("per_page must be at least 1")

    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    products = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def find_by_code(code: str) -> Product:
    """Exact barcode lookup, as a scanner at the till would send it."""
    code = (code or "").strip()
    if not code:
        raise ValidationError("code is required")
    product = db.session.query(Product).filter_by(barcode=code).first()
    if not product:
        raise NotFoundError("Product not found", details={"code": code})
    return product


def list_low_stock() -> list[Product]:
    """Active products at or below their reorder level, emptiest first."""
    return (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            Product.stock_quantity <= Product.min_stock_level,
        )
        .order_by(Product.stock_quantity.asc(), Product.name.asc())
        .all()
    )
