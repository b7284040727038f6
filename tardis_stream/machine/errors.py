"""
Custom exceptions for the normalized streaming client.

Exception hierarchy:
- StreamError (base)
  - InvalidRequestError: Bad request options, detected before any I/O
  - ConnectError: WebSocket connection or upgrade failure (incl. timeout)
  - ProtocolError: Server rejected the subscription or sent an incompatible frame
  - MalformedFrameError: Frame is not structured data
  - DecodeError: Recognized frame type with missing/invalid fields
  - TransportError: Mid-stream read failure or abnormal close
  - ConfigurationError: Invalid session configuration

Non-fatal errors (MalformedFrameError, DecodeError) are yielded as items of a
session's message sequence; fatal ones are yielded last.
"""

from __future__ import annotations

from typing import Any, Optional


class StreamError(Exception):
    """Base exception for all streaming client errors."""

    #: Whether the error ends the session it was produced by.
    fatal: bool = True

    def __init__(
        self,
        message: str,
        *,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.component = component
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.component:
            parts.append(f"[component={self.component}]")
        if self.details:
            parts.append(f"[details={self.details}]")
        return " ".join(parts)


class InvalidRequestError(StreamError):
    """Raised when request options are invalid."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.field = field
        self.value = value
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, component=component, details=details)


class ConnectError(StreamError):
    """Raised when the WebSocket connection cannot be established."""

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.url = url
        details = details or {}
        if url:
            details["url"] = url
        super().__init__(message, component=component, details=details)


class ProtocolError(StreamError):
    """Raised when the server rejects a subscription or violates the protocol."""

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status = status
        details = details or {}
        if status is not None:
            details["status"] = status
        super().__init__(message, component=component, details=details)


class MalformedFrameError(StreamError):
    """Raised when a frame cannot be parsed as structured data."""

    fatal = False

    def __init__(
        self,
        message: str,
        *,
        raw_data: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.raw_data = raw_data
        # Don't include raw_data in details to avoid log spam
        super().__init__(message, component=component, details=details)


class DecodeError(StreamError):
    """Raised when a recognized frame has missing or invalid fields."""

    fatal = False

    def __init__(
        self,
        message: str,
        *,
        message_type: Optional[str] = None,
        field: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message_type = message_type
        self.field = field
        details = details or {}
        if message_type:
            details["message_type"] = message_type
        if field:
            details["field"] = field
        super().__init__(message, component=component, details=details)


class TransportError(StreamError):
    """Raised when the connection fails or closes abnormally mid-stream."""

    def __init__(
        self,
        message: str,
        *,
        close_code: Optional[int] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.close_code = close_code
        details = details or {}
        if close_code is not None:
            details["close_code"] = close_code
        super().__init__(message, component=component, details=details)


class ConfigurationError(StreamError):
    """Raised when configuration is invalid."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.field = field
        self.value = value
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, component=component, details=details)
