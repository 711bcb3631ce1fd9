"""
Error types raised by PolyBook.

None of these are fatal to the process: the worst outcome is a stale or empty
book until the next snapshot or reconnect.
"""

from __future__ import annotations


class PolybookError(Exception):
    """Base class for all PolyBook errors."""


class FetchError(PolybookError):
    """A REST request failed (network error, timeout or non-success status)."""

    def __init__(self, message: str, url: str | None = None, status: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class ParseError(PolybookError):
    """A stream frame could not be decoded."""


class TransportError(PolybookError):
    """The streaming connection failed."""


class TransportClosed(TransportError):
    """The streaming connection was closed by the remote end."""


class CredentialsError(PolybookError):
    """User-channel credentials are missing or could not be derived."""
