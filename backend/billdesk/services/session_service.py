# Overview: Service-layer operations for login sessions and billing sessions.

"""
Session Token and Billing Session Service

WHY: The billing core trusts an auth collaborator to hand it
(user_id, role, session_id, session_expiry) for every request. This module
is that collaborator: it issues bearer tokens at login, opens a billing
session on the user, and turns a token back into an Actor.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Absolute timeout (AUTH_TOKEN_HOURS)
- Revocable on logout

BILLING SESSIONS:
- A cashier login opens a fresh billing session (uuid) valid for the
  billing window. The previous session id stops matching, so drafts opened
  under it can no longer be edited.
- Admins get no billing session at login; one is granted on demand.
"""

import hashlib
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from ..extensions import db
from ..models import SessionToken, User
from billdesk.time_utils import utcnow
from .session_clock import Actor, DEFAULT_SESSION_MINUTES


DEFAULT_TOKEN_LIFETIME = timedelta(hours=24)


@dataclass
class SessionContext:
    """Session context returned by validate_session."""
    user: User
    token: SessionToken
    actor: Actor


def generate_token() -> str:
    """
    Generate cryptographically secure random token.

    Returns 64-character hex string (32 bytes of entropy).
    This is the plaintext token sent to client (never stored).
    """
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """Hash token for database storage using SHA-256."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def grant_billing_session(user: User, now: datetime | None = None, window: timedelta | None = None) -> str:
    """
    Open a new billing session on the user row and return its id.

    Does not commit; the caller's unit of work persists it.
    """
    now = now or utcnow()
    window = window or timedelta(minutes=DEFAULT_SESSION_MINUTES)
    user.session_id = uuid.uuid4().hex
    user.session_expiry = now + window
    return user.session_id


def create_session(
    user: User,
    billing_window: timedelta | None = None,
    token_lifetime: timedelta = DEFAULT_TOKEN_LIFETIME,
) -> tuple[SessionToken, str]:
    """
    Create new bearer token for user.

    Cashiers get a fresh billing session; admins keep whatever they have.
    Returns (session_record, plaintext_token).
    """
    now = utcnow()
    if not user.is_admin:
        grant_billing_session(user, now=now, window=billing_window)

    plaintext_token = generate_token()
    token = SessionToken(
        user_id=user.id,
        token_hash=hash_token(plaintext_token),
        billing_session_id=user.session_id,
        created_at=now,
        last_used_at=now,
        expires_at=now + token_lifetime,
        is_revoked=False,
    )
    user.last_login_at = now

    db.session.add(token)
    db.session.commit()

    return token, plaintext_token


def validate_session(token: str) -> SessionContext | None:
    """
    Validate bearer token and return SessionContext if valid.

    Returns None if the token is unknown, expired, revoked, or the user is
    deactivated. The actor's session_id is None when the billing session
    captured by the token is no longer the user's current one (a newer login
    replaced it); the billing core then reports SessionExpiredError.
    """
    token_hash = hash_token(token)
    now = utcnow()

    record = db.session.query(SessionToken).filter_by(
        token_hash=token_hash,
        is_revoked=False
    ).first()

    if not record:
        return None

    if record.expires_at < now:
        return None

    user = record.user
    if not user or not user.is_active:
        record.is_revoked = True
        record.revoked_at = now
        record.revoked_reason = "User account deactivated"
        db.session.commit()
        return None

    session_id = user.session_id
    if not user.is_admin and record.billing_session_id != user.session_id:
        session_id = None

    actor = Actor(
        user_id=user.id,
        role=user.role,
        session_id=session_id,
        session_expiry=user.session_expiry,
    )

    record.last_used_at = now
    db.session.commit()

    return SessionContext(user=user, token=record, actor=actor)


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """
    Revoke session token.

    Returns True if session was revoked, False if not found.
    """
    record = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not record:
        return False

    record.is_revoked = True
    record.revoked_at = utcnow()
    record.revoked_reason = reason

    db.session.commit()
    return True
