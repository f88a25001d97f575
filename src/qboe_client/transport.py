"""HTTPS transport for the QBOE gateway.

The gateway requires a client certificate, and the client must make
sure it is talking to Intuit: the server certificate has to chain to
the configured CA *and* carry the expected subject. The subject is
checked as soon as the TLS handshake completes, before any part of the
request is written, so a ticket never reaches an impostor. Client
identity is passed on every call, so two clients in the same process
never share TLS material.
"""

from __future__ import annotations

import logging
import re
import ssl
from dataclasses import dataclass
from typing import Any, Mapping, Pattern

import requests
from requests.adapters import HTTPAdapter
from urllib3.connection import HTTPSConnection
from urllib3.connectionpool import HTTPSConnectionPool

logger = logging.getLogger(__name__)

_SUBJECT_SHORT_NAMES = {
    "countryName": "C",
    "stateOrProvinceName": "ST",
    "localityName": "L",
    "organizationName": "O",
    "organizationalUnitName": "OU",
    "commonName": "CN",
}


@dataclass(frozen=True, slots=True)
class TransportResponse:
    status_code: int
    reason: str
    content: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def status_line(self) -> str:
        return f"{self.status_code} {self.reason}".strip()


def subject_pattern(hostname: str) -> Pattern[str]:
    """Subject an Intuit gateway certificate for `hostname` must carry."""
    return re.compile(
        r"^/C=US/ST=[^/=]*/L=[^/=]*/O=Intuit/OU=[^/=]*/CN="
        + re.escape(hostname)
        + r"$"
    )


def format_subject(peercert: Mapping[str, Any] | None) -> str | None:
    """Render the subject of an `ssl.SSLSocket.getpeercert()` dict."""
    if not peercert or "subject" not in peercert:
        return None
    parts = []
    for rdn in peercert["subject"]:
        for name, value in rdn:
            parts.append(f"/{_SUBJECT_SHORT_NAMES.get(name, name)}={value}")
    return "".join(parts)


class SubjectCheckingConnection(HTTPSConnection):
    """HTTPS connection that refuses peers with an unexpected subject."""

    expected_subject: Pattern[str] | None = None

    def connect(self) -> None:
        super().connect()
        if self.expected_subject is None:
            return
        subject = format_subject(self.sock.getpeercert())
        if subject is None or not self.expected_subject.match(subject):
            self.close()
            raise ssl.CertificateError(f"Bad SSL certificate subject: {subject}")


class SubjectCheckingAdapter(HTTPAdapter):
    __attrs__ = HTTPAdapter.__attrs__ + ["expected_subject"]

    def __init__(self, expected_subject: Pattern[str] | None = None, **kwargs: Any) -> None:
        # init_poolmanager runs inside HTTPAdapter.__init__.
        self.expected_subject = expected_subject
        super().__init__(**kwargs)

    def init_poolmanager(self, connections, maxsize, block=False, **pool_kwargs):
        super().init_poolmanager(connections, maxsize, block=block, **pool_kwargs)
        connection_cls = type(
            "SubjectCheckingConnection",
            (SubjectCheckingConnection,),
            {"expected_subject": self.expected_subject},
        )
        pool_cls = type(
            "SubjectCheckingConnectionPool",
            (HTTPSConnectionPool,),
            {"ConnectionCls": connection_cls},
        )
        self.poolmanager.pool_classes_by_scheme = {
            **self.poolmanager.pool_classes_by_scheme,
            "https": pool_cls,
        }


class HTTPSTransport:
    supports_subject_check = True

    def __init__(
        self,
        *,
        timeout_seconds: int = 30,
        session: requests.Session | None = None,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._session = session or requests.Session()
        self._adapters: dict[str, SubjectCheckingAdapter] = {}

    def _mount(self, url: str, expected_subject: Pattern[str] | None) -> None:
        adapter = self._adapters.get(url)
        if adapter is not None and adapter.expected_subject == expected_subject:
            return
        if adapter is not None:
            adapter.close()
        adapter = SubjectCheckingAdapter(expected_subject)
        self._session.mount(url, adapter)
        self._adapters[url] = adapter

    def post(
        self,
        url: str,
        body: bytes,
        *,
        headers: Mapping[str, str],
        cert_file: str,
        key_file: str,
        ca_file: str,
        expected_subject: Pattern[str] | None = None,
    ) -> TransportResponse:
        """POST `body` and return the outcome.

        Failures to complete the exchange (connection errors, a peer
        certificate with the wrong subject) come back as a 500 response
        describing the problem rather than as an exception.
        """
        self._mount(url, expected_subject)
        try:
            resp = self._session.post(
                url,
                data=body,
                headers=dict(headers),
                cert=(cert_file, key_file),
                verify=ca_file,
                timeout=self._timeout_seconds,
            )
        except requests.RequestException as e:
            logger.warning(f"POST {url} failed: {e}")
            return TransportResponse(500, str(e))

        return TransportResponse(resp.status_code, resp.reason or "", resp.content)
