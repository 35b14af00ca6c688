"""Failure taxonomy shared by the offline queue and the session manager."""
from __future__ import annotations

import asyncio
from typing import Optional

import httplib2
from googleapiclient.errors import HttpError


VALIDATION_STATUS = {400, 404, 409, 410, 412, 422}
AUTH_STATUS = {401, 403}


class BackendError(Exception):
    """Base class for failures reported by a backend call."""

    kind = "backend_error"
    retryable = True

    def __init__(self, message: str = "", *, status: Optional[int] = None):
        super().__init__(message or self.kind)
        self.status = status


class NetworkUnavailable(BackendError):
    """The device could not reach the backend; nothing was attempted."""

    kind = "network_unavailable"


class AuthInvalid(BackendError):
    """The access token was rejected."""

    kind = "auth_invalid"
    retryable = False


class ValidationFailed(BackendError):
    """The backend rejected the payload; replaying it cannot succeed."""

    kind = "validation_failed"
    retryable = False


class ServerError(BackendError):
    kind = "server_error"


class InvalidToken(ValueError):
    """A token could not be decoded or its signature did not verify."""


def _http_status(exc: HttpError) -> int:
    status = getattr(exc, "resp", None) and getattr(exc.resp, "status", None)
    return int(status or 0)


def from_http_error(exc: HttpError) -> BackendError:
    code = _http_status(exc)
    message = str(exc)
    if code in AUTH_STATUS:
        return AuthInvalid(message, status=code)
    if code in VALIDATION_STATUS:
        return ValidationFailed(message, status=code)
    return ServerError(message, status=code or None)


def classify_exception(exc: BaseException) -> BackendError:
    """Map anything a backend handler raised onto the taxonomy."""

    if isinstance(exc, BackendError):
        return exc
    if isinstance(exc, HttpError):
        return from_http_error(exc)
    if isinstance(exc, (httplib2.HttpLib2Error, OSError, asyncio.TimeoutError)):
        return NetworkUnavailable(str(exc) or type(exc).__name__)
    return ServerError(str(exc) or type(exc).__name__)


__all__ = [
    "AUTH_STATUS",
    "AuthInvalid",
    "BackendError",
    "InvalidToken",
    "NetworkUnavailable",
    "ServerError",
    "VALIDATION_STATUS",
    "ValidationFailed",
    "classify_exception",
    "from_http_error",
]
