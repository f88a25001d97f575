"""QuickBooks Online Edition (QBOE) gateway client.

Wraps qbXML requests in the sign-on envelope QBOE expects, posting them
over mutually-authenticated HTTPS. Sessions are managed automatically:
the connection ticket is exchanged for a session ticket when none is
valid, and every successful request extends the session's use window.

Example::

    qb = QBOEClient(QBOEConfig(
        application_login="abc", app_id="1234",
        cert_file="client.crt", key_file="client.key",
        connection_ticket="xyz",
    ))
    rsp = qb.make_request([{"_tag": "CompanyQueryRq"}])

Not thread-safe: a client reads then writes its session on every
request, so callers sharing one instance must serialize access.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

from .config import QBOEConfig
from .errors import (
    AcquisitionFailedError,
    ConfigurationError,
    MissingConnectionTicketError,
    RequestFailedError,
)
from .qbxml import format_xml, parse_xml, time2iso
from .session import SessionManager, SessionSnapshot, redact
from .transport import HTTPSTransport, TransportResponse, subject_pattern

logger = logging.getLogger(__name__)

QBXML_CONTENT_TYPE = "application/x-qbxml"


class QBOEClient:
    def __init__(
        self,
        config: QBOEConfig,
        *,
        transport: Any | None = None,
        session_manager: SessionManager | None = None,
    ) -> None:
        self._config = config
        self._transport = transport or HTTPSTransport(
            timeout_seconds=config.timeout_seconds
        )
        if not getattr(self._transport, "supports_subject_check", False):
            raise ConfigurationError(
                "The transport must verify the server certificate subject"
            )
        self._expected_subject = subject_pattern(config.hostname)
        self._session = session_manager or SessionManager()
        self._connection_ticket = config.connection_ticket

    @classmethod
    def from_env(cls) -> "QBOEClient":
        return cls(QBOEConfig.from_env())

    @property
    def config(self) -> QBOEConfig:
        return self._config

    # Connection ticket -------------------------------------------------

    @property
    def connection_ticket(self) -> str | None:
        return self._connection_ticket

    @connection_ticket.setter
    def connection_ticket(self, ticket: str | None) -> None:
        # A session belongs to the connection that opened it.
        self._connection_ticket = ticket
        self.clear_session()

    # Session -----------------------------------------------------------

    @property
    def session_ticket(self) -> str | None:
        return self._session.session_ticket

    @property
    def session_issue_expiration(self) -> float | None:
        return self._session.session_issue_expiration

    @property
    def session_use_expiration(self) -> float | None:
        return self._session.session_use_expiration

    @property
    def session_expiration(self) -> float | None:
        return self._session.session_expiration

    def set_session(
        self,
        ticket: str | None,
        issue_expiration: float | None = None,
        use_expiration: float | None = None,
    ) -> None:
        """Provide a session ticket, e.g. one saved from an earlier run.

        Save `session_ticket`, `session_issue_expiration` and
        `session_use_expiration` (or `session_snapshot()`), and hand
        them back here later. Omitted expirations are computed from now.
        """
        self._session.set_session(ticket, issue_expiration, use_expiration)

    def session_snapshot(self) -> SessionSnapshot | None:
        return self._session.snapshot()

    def restore_session(self, snapshot: SessionSnapshot) -> None:
        self._session.restore(snapshot)

    def valid_session(self) -> bool:
        return self._session.valid_session()

    def clear_session(self) -> None:
        """Forget the current session; the next request opens a new one."""
        self._session.clear_session()

    def acquire_session(self) -> None:
        """Exchange the connection ticket for a new session ticket.

        Called automatically by `make_request` when needed.
        """
        if not self._connection_ticket:
            raise MissingConnectionTicketError()

        cfg = self._config
        xml_out = format_xml(
            {
                "SignonMsgsRq": {
                    "SignonAppCertRq": {
                        "ClientDateTime": time2iso(self._session.now()),
                        "ApplicationLogin": cfg.application_login,
                        "ConnectionTicket": self._connection_ticket,
                        "Language": cfg.language,
                        "AppID": cfg.app_id,
                        "AppVer": cfg.app_ver,
                    }
                }
            },
            version=cfg.version,
        )

        rsp = self.post_request(xml_out)
        if not rsp.ok:
            raise AcquisitionFailedError(rsp.status_code, rsp.reason)

        data = parse_xml(rsp.content)
        signon = data.get("SignonMsgsRs") or {}
        cert_rs = signon.get("SignonAppCertRs") if isinstance(signon, dict) else None
        ticket = cert_rs.get("SessionTicket") if isinstance(cert_rs, dict) else None

        self._session.set_session(ticket)
        logger.info(f"Acquired QBOE session {redact(ticket)}")

    # Requests ----------------------------------------------------------

    def post_request(self, xml: bytes) -> TransportResponse:
        """Low-level POST of a qbXML document to the gateway."""
        cfg = self._config
        logger.debug(f"POST {cfg.url} ({len(xml)} bytes)")
        rsp = self._transport.post(
            cfg.url,
            xml,
            headers={"Content-Type": QBXML_CONTENT_TYPE},
            cert_file=cfg.cert_file,
            key_file=cfg.key_file,
            ca_file=cfg.ca_file,
            expected_subject=self._expected_subject,
        )
        logger.debug(f"Response {rsp.status_line} ({len(rsp.content)} bytes)")
        return rsp

    def make_request(
        self, request: Mapping[str, Any] | Sequence[Mapping[str, Any]]
    ) -> dict[str, Any]:
        """Send a qbXML request and return the parsed response.

        A list is shorthand for ``{"QBXMLMsgsRq": request}``. When the
        request has no ``SignonMsgsRq``, one is added from the current
        session, acquiring a session first if there is no valid one.
        The caller's mapping is not modified.
        """
        if isinstance(request, Mapping):
            req = dict(request)
        else:
            req = {"QBXMLMsgsRq": list(request)}

        if "SignonMsgsRq" not in req:
            if not self.valid_session():
                self.acquire_session()
            cfg = self._config
            req["SignonMsgsRq"] = {
                "SignonTicketRq": {
                    "ClientDateTime": time2iso(self._session.now()),
                    "SessionTicket": self._session.session_ticket,
                    "Language": cfg.language,
                    "AppID": cfg.app_id,
                    "AppVer": cfg.app_ver,
                }
            }

        xml_out = format_xml(req, version=self._config.version)
        rsp = self.post_request(xml_out)
        if not rsp.ok:
            raise RequestFailedError(rsp.status_code, rsp.reason)

        self._session.touch()
        return parse_xml(rsp.content)
