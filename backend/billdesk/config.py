# backend/billdesk/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/billdesk.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///billdesk.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Billing session window (a draft invoice is editable for this long)
    BILLING_SESSION_MINUTES = int(os.environ.get("BILLING_SESSION_MINUTES", "20"))

    # Bearer token lifetime, independent of the billing window
    AUTH_TOKEN_HOURS = int(os.environ.get("AUTH_TOKEN_HOURS", "24"))

    # When an admin rejects a submitted invoice, put its stock back on the shelf
    RESTORE_STOCK_ON_CANCEL = _env_flag("RESTORE_STOCK_ON_CANCEL", False)

    INVOICE_PAGE_SIZE = int(os.environ.get("INVOICE_PAGE_SIZE", "10"))
    INVOICE_PAGE_SIZE_MAX = int(os.environ.get("INVOICE_PAGE_SIZE_MAX", "100"))
