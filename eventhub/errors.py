"""Typed failures raised by the EventHub core operations."""

from __future__ import annotations


class EventHubError(Exception):
    """Base class; ``status_code`` is the HTTP status the API responds with."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(EventHubError):
    """Missing or invalid input, or an operation not allowed in the current state."""

    status_code = 400


class UnauthorizedError(EventHubError):
    """No caller identity, or the bearer token is unknown."""

    status_code = 401


class ForbiddenError(EventHubError):
    """Caller is authenticated but lacks the role or ownership required."""

    status_code = 403


class NotFoundError(EventHubError):
    status_code = 404
