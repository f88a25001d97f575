"""Construction-time configuration for the QBOE gateway client.

All fields are immutable once built. `QBOEConfig.from_env` mirrors the
way the QBO connectors read their credentials: `.env` is loaded first
(without overriding exported variables), then `QBOE_*` variables are read.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field

import requests.certs
from dotenv import find_dotenv, load_dotenv

from .errors import ConfigurationError

DEFAULT_URL = "https://webapps.quickbooks.com/j/AppGateway"
# Highest qbXML version QuickBooks Online Edition accepts.
DEFAULT_QBXML_VERSION = "6.0"
DEFAULT_TIMEOUT_SECONDS = 30

_HOSTNAME_RE = re.compile(r"^https://([^/:]+)(?::\d+)?/")


def default_ca_file() -> str:
    """Path of the CA bundle shipped with the HTTP stack."""
    return requests.certs.where()


@dataclass(frozen=True, slots=True)
class QBOEConfig:
    cert_file: str
    key_file: str
    application_login: str
    app_id: str
    url: str = DEFAULT_URL
    ca_file: str = field(default_factory=default_ca_file)
    app_ver: str = "1"
    language: str = "English"
    version: str = DEFAULT_QBXML_VERSION
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    connection_ticket: str | None = None

    def __post_init__(self) -> None:
        for name in ("cert_file", "key_file", "application_login", "app_id"):
            if not getattr(self, name):
                raise ConfigurationError(f"Missing required configuration: {name}")
        if not self.ca_file:
            raise ConfigurationError("Missing required configuration: ca_file")
        if not _HOSTNAME_RE.match(self.url or ""):
            raise ConfigurationError(f"No hostname in URL: {self.url}")

    @property
    def hostname(self) -> str:
        match = _HOSTNAME_RE.match(self.url)
        if match is None:
            raise ConfigurationError(f"No hostname in URL: {self.url}")
        return match.group(1)

    @classmethod
    def from_env(cls) -> "QBOEConfig":
        load_dotenv(find_dotenv(usecwd=True), override=False)

        def _require(name: str) -> str:
            value = os.environ.get(name)
            if not value:
                raise ConfigurationError(f"Missing env var {name}")
            return value

        timeout_raw = os.environ.get(
            "QBOE_HTTP_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS)
        )
        try:
            timeout_seconds = int(timeout_raw)
        except ValueError:
            raise ConfigurationError(
                f"QBOE_HTTP_TIMEOUT_SECONDS must be an integer, got {timeout_raw!r}"
            ) from None

        return cls(
            cert_file=_require("QBOE_CERT_FILE"),
            key_file=_require("QBOE_KEY_FILE"),
            application_login=_require("QBOE_APPLICATION_LOGIN"),
            app_id=_require("QBOE_APP_ID"),
            url=os.environ.get("QBOE_URL") or DEFAULT_URL,
            ca_file=os.environ.get("QBOE_CA_FILE") or default_ca_file(),
            app_ver=os.environ.get("QBOE_APP_VER") or "1",
            language=os.environ.get("QBOE_LANGUAGE") or "English",
            version=os.environ.get("QBOE_QBXML_VERSION") or DEFAULT_QBXML_VERSION,
            timeout_seconds=timeout_seconds,
            connection_ticket=os.environ.get("QBOE_CONNECTION_TICKET") or None,
        )
