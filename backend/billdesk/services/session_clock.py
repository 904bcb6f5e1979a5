"""
Billing session clock.

WHY: A draft invoice is editable only inside a fixed window that starts when
the draft is created. Expiry is lazy: nothing runs in the background, the
window is checked whenever an invoice is read in a context that cares, and
the sticky is_session_expired flag is written in that same unit of work.

POLICY: Admin actors bypass every session check. That decision lives here
(bypasses_session) and nowhere else.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..errors import SessionExpiredError
from ..models.auth import ROLE_ADMIN
from billdesk.time_utils import utcnow

DEFAULT_SESSION_MINUTES = 20


@dataclass(frozen=True)
class Actor:
    """Identity supplied by the auth collaborator for one request."""
    user_id: int
    role: str
    session_id: Optional[str] = None
    session_expiry: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


class SessionClock:
    def __init__(self, window: timedelta | None = None, now: Callable[[], datetime] = utcnow):
        self.window = window or timedelta(minutes=DEFAULT_SESSION_MINUTES)
        self._now = now

    @classmethod
    def from_config(cls, config) -> "SessionClock":
        minutes = config.get("BILLING_SESSION_MINUTES", DEFAULT_SESSION_MINUTES)
        return cls(window=timedelta(minutes=minutes))

    def now(self) -> datetime:
        return self._now()

    def session_end_for(self, start: datetime) -> datetime:
        return start + self.window

    @staticmethod
    def bypasses_session(actor: Actor) -> bool:
        return actor.is_admin

    def is_active(self, invoice, now: datetime | None = None) -> bool:
        now = now or self.now()
        return now < invoice.session_end_time and not invoice.is_session_expired

    def time_remaining(self, invoice, now: datetime | None = None) -> timedelta:
        now = now or self.now()
        if invoice.is_session_expired:
            return timedelta(0)
        return max(invoice.session_end_time - now, timedelta(0))

    def require_open_session(self, actor: Actor, now: datetime | None = None) -> None:
        """Non-admin actors must carry a live billing session from the auth collaborator."""
        if self.bypasses_session(actor):
            return
        now = now or self.now()
        if not actor.session_id:
            raise SessionExpiredError("Session expired. Please login again.")
        if actor.session_expiry is not None and actor.session_expiry <= now:
            raise SessionExpiredError(
                "Session expired. Please login again.",
                details={"session_id": actor.session_id},
            )

    def login_time_remaining(self, actor: Actor, now: datetime | None = None) -> timedelta | None:
        """
        Time left on the actor's login billing session.

        None for actors not bound by a window. Raises SessionExpiredError
        when the session is gone, like require_open_session.
        """
        if self.bypasses_session(actor):
            return None
        now = now or self.now()
        self.require_open_session(actor, now)
        if actor.session_expiry is None:
            return None
        return max(actor.session_expiry - now, timedelta(0))

    def expire_if_elapsed(self, invoice, actor: Actor, now: datetime | None = None) -> bool:
        """
        Return True when the invoice's window is closed for this actor.

        Flips is_session_expired on the (already loaded, locked) invoice when
        the window has elapsed or the actor's session id no longer matches
        the one the draft was opened under; the caller's unit of work persists it. The
        flag is never cleared.
        """
        if self.bypasses_session(actor):
            return False
        now = now or self.now()
        if invoice.is_session_expired:
            return True
        # A newer login replaced the session this draft was opened under.
        if now >= invoice.session_end_time or actor.session_id != invoice.session_id:
            invoice.is_session_expired = True
            return True
        return False
