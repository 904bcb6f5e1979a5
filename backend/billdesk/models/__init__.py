from .auth import User, SessionToken
from .catalog import Product
from .invoices import Invoice, InvoiceItem

__all__ = [
    'User', 'SessionToken',
    'Product',
    'Invoice', 'InvoiceItem',
]
