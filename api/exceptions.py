"""Custom exception classes for structured error handling."""

from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base application error with an associated HTTP status code."""

    status_code: int = 500

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(message)


class BadRequestError(AppError):
    status_code = 400


class UnauthorizedError(AppError):
    status_code = 401


class ConfigError(AppError):
    """Configuration is present but semantically invalid."""

    status_code = 500


class UpstreamError(AppError):
    """A Systeme call failed on every route variant.

    ``status`` is the upstream HTTP status, or None when no response was
    received (timeout, connection error).
    """

    status_code = 502

    def __init__(
        self,
        message: str = "Upstream error",
        status: int | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.body = body

    @property
    def transient(self) -> bool:
        return self.status is None or self.status == 429 or self.status >= 500


class UpstreamUnavailableError(UpstreamError):
    """Every path to a contact (lookup, create, fallback) was exhausted."""

    status_code = 503
