"""Exception types for the QBOE client."""

from __future__ import annotations


class QBOEError(Exception):
    """Base exception for all QBOE client errors."""


class ConfigurationError(QBOEError, ValueError):
    """The client cannot be built from the supplied configuration."""


class InvalidSessionError(QBOEError, ValueError):
    """An empty session ticket was supplied."""


class MissingConnectionTicketError(QBOEError):
    """A session was needed but no connection ticket has been set."""

    def __init__(self) -> None:
        super().__init__("The connection_ticket has not been set")


class ResponseFormatError(QBOEError):
    """The gateway answered with something that is not a qbXML document."""


class TransportStatusError(QBOEError):
    """An HTTP exchange with the gateway did not succeed."""

    prefix = "HTTP exchange failed"

    def __init__(self, status_code: int, reason: str) -> None:
        self.status_code = status_code
        self.reason = reason
        super().__init__(f"{self.prefix}: {self.status_line}")

    @property
    def status_line(self) -> str:
        return f"{self.status_code} {self.reason}".strip()


class AcquisitionFailedError(TransportStatusError):
    prefix = "Unable to get session ticket"


class RequestFailedError(TransportStatusError):
    prefix = "Request failed"
