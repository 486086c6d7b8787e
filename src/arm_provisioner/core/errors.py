"""Errors raised by provider collaborators."""

from __future__ import annotations

from typing import ClassVar


class ProviderError(Exception):
    """Base exception for failed provider calls.

    ``kind`` is a stable label used in apply reports.
    """

    kind: ClassVar[str] = "provider"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class TransientError(ProviderError):
    """Throttling, timeouts and server-side failures. Retried with backoff."""

    kind = "transient"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, code=code)
        self.retry_after = retry_after


class ProviderValidationError(ProviderError):
    """The provider rejected a property value. Never retried."""

    kind = "validation"


class ConflictError(ProviderError):
    """Concurrent modification detected (ETag mismatch, conflicting operation)."""

    kind = "conflict"
