"""Client for the QuickBooks Online Edition qbXML gateway."""

from __future__ import annotations

from .client import QBOEClient
from .config import QBOEConfig
from .errors import (
    AcquisitionFailedError,
    ConfigurationError,
    InvalidSessionError,
    MissingConnectionTicketError,
    QBOEError,
    RequestFailedError,
    ResponseFormatError,
    TransportStatusError,
)
from .qbxml import format_xml, parse_xml
from .session import SessionManager, SessionSnapshot
from .transport import HTTPSTransport, TransportResponse

__version__ = "0.1.0"

__all__ = [
    "QBOEClient",
    "QBOEConfig",
    "SessionManager",
    "SessionSnapshot",
    "HTTPSTransport",
    "TransportResponse",
    "format_xml",
    "parse_xml",
    # Errors
    "QBOEError",
    "ConfigurationError",
    "InvalidSessionError",
    "MissingConnectionTicketError",
    "TransportStatusError",
    "AcquisitionFailedError",
    "RequestFailedError",
    "ResponseFormatError",
]
