"""
Exception hierarchy for the chat load-test harness.

Only two failure classes ever abort an actor's iteration: authentication
failures and an explicit request for a transport exception via
``ConnectionResult.require()``.  Everything else (server error frames,
unparsable frames, missing acknowledgements) degrades into the result
objects so the calling scenario decides what is fatal.
"""

from __future__ import annotations


class HarnessError(Exception):
    """Base class for every error raised by :mod:`chatload`."""


class AuthFailure(HarnessError):
    """
    Session acquisition failed and will not be retried by the harness.

    Attributes:
        status_code: HTTP status of the response that caused the failure,
            or ``None`` for network-level errors.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class InvalidCredentials(AuthFailure):
    """Login was rejected with a 400/401 ``{"status": "error"}`` envelope."""


class TransportFailure(HarnessError):
    """The WebSocket transport could not be established or was lost."""


class InvalidTransition(HarnessError):
    """A connection state change that the lifecycle does not allow."""

    def __init__(self, current, requested):
        super().__init__(f"Cannot move from {current.value} to {requested.value}")
        self.current = current
        self.requested = requested


class FrameParseError(HarnessError, ValueError):
    """An inbound frame is not a JSON object with a string ``action`` tag."""
