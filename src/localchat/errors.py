"""Exception hierarchy for localchat.

``StreamError`` and its subclasses are terminal failures of a single chat
stream or health probe.  Cancellation is not an error and has no exception.
"""

from __future__ import annotations


class LocalChatError(Exception):
    """Base class for all localchat errors."""


class StreamError(LocalChatError):
    """Terminal failure of the current stream."""


class ServerError(StreamError):
    """The server reported an error, either in an envelope or a non-2xx body."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProtocolError(StreamError):
    """A mid-stream record could not be decoded."""

    def __init__(self, message: str, record: str = "") -> None:
        super().__init__(message)
        self.record = record


class TransportError(StreamError):
    """The endpoint could not be talked to."""


class ConnectionTimeoutError(TransportError):
    """The request timed out."""


class EndpointUnreachableError(TransportError):
    """Network failure, or the endpoint answered with a non-success status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
