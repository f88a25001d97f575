"""Session-ticket bookkeeping for QuickBooks Online Edition.

A session ticket expires 1 hour after its last use, or 24 hours after
it was first issued, whichever comes first. Both deadlines are kept
10 seconds short of the gateway's so that a request sent just before
expiry is not rejected in flight.

Expiry is checked lazily: nothing runs in the background, a session
simply stops being valid once the clock passes its deadline.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from .errors import InvalidSessionError

logger = logging.getLogger(__name__)

SESSION_EXPIRE_AFTER_ISSUE = 24 * 60 * 60 - 10
SESSION_EXPIRE_AFTER_USE = 1 * 60 * 60 - 10


def redact(ticket: str | None) -> str:
    """Render a ticket for logs, keeping only its last 4 characters."""
    if not ticket:
        return "<none>"
    if len(ticket) <= 4:
        return "****"
    return f"****{ticket[-4:]}"


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """The three values needed to restore a session later."""

    ticket: str
    issue_expiration: float
    use_expiration: float


class SessionManager:
    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        expire_after_issue: float = SESSION_EXPIRE_AFTER_ISSUE,
        expire_after_use: float = SESSION_EXPIRE_AFTER_USE,
    ) -> None:
        self._clock = clock
        self.expire_after_issue = expire_after_issue
        self.expire_after_use = expire_after_use
        self._ticket: str | None = None
        self._issue_expiration: float | None = None
        self._use_expiration: float | None = None

    @property
    def session_ticket(self) -> str | None:
        return self._ticket

    @property
    def session_issue_expiration(self) -> float | None:
        return self._issue_expiration

    @property
    def session_use_expiration(self) -> float | None:
        return self._use_expiration

    @property
    def session_expiration(self) -> float | None:
        """The earlier of the issue and use deadlines."""
        if self._issue_expiration is None or self._use_expiration is None:
            return None
        return min(self._issue_expiration, self._use_expiration)

    def now(self) -> float:
        return self._clock()

    def set_session(
        self,
        ticket: str | None,
        issue_expiration: float | None = None,
        use_expiration: float | None = None,
    ) -> None:
        """Install a session, replacing any current one.

        Omitted expirations are computed from the current time. Only
        None means "omitted"; an explicit 0 is kept as a timestamp.
        """
        if not ticket:
            raise InvalidSessionError("Invalid session ticket")

        now = self._clock()
        if issue_expiration is None:
            issue_expiration = now + self.expire_after_issue
        if use_expiration is None:
            use_expiration = now + self.expire_after_use

        self._issue_expiration = issue_expiration
        self._use_expiration = use_expiration
        self._ticket = ticket
        logger.debug(
            f"Session {redact(ticket)} installed, expires at {self.session_expiration}"
        )

    def valid_session(self) -> bool:
        if not self._ticket:
            return False
        expiration = self.session_expiration
        return expiration is not None and self._clock() <= expiration

    def clear_session(self) -> None:
        if self._ticket:
            logger.info(f"Clearing session {redact(self._ticket)}")
        self._ticket = None
        self._issue_expiration = None
        self._use_expiration = None

    def touch(self) -> None:
        """Push the use deadline forward after a successful request."""
        self._use_expiration = self._clock() + self.expire_after_use

    def snapshot(self) -> SessionSnapshot | None:
        if (
            not self._ticket
            or self._issue_expiration is None
            or self._use_expiration is None
        ):
            return None
        return SessionSnapshot(
            ticket=self._ticket,
            issue_expiration=self._issue_expiration,
            use_expiration=self._use_expiration,
        )

    def restore(self, snapshot: SessionSnapshot) -> None:
        self.set_session(
            snapshot.ticket, snapshot.issue_expiration, snapshot.use_expiration
        )
