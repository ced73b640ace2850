"""Deterministic failure classification for the retry policy.

Typed exceptions decide first. Providers that report quota, credential or
lookup problems inside 200/500 bodies are caught by the message patterns.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

from gentask.core.exceptions import (
    ArchiveError,
    ConfigurationError,
    IntegrityError,
    InvalidRequestError,
    OrchestratorError,
    ProviderError,
    RemoteGenerationError,
    RemoteTaskNotFoundError,
    ResourceExhaustedError,
    TaskTimeoutError,
    TransportError,
)
from gentask.core.models.task import FailureKind

_QUOTA_PATTERNS: tuple[str, ...] = (
    "insufficient credits",
    "insufficient balance",
    "insufficient quota",
    "quota exceeded",
    "out of credits",
    "payment required",
)
_AUTH_PATTERNS: tuple[str, ...] = (
    "your_piapi_api_key_here",
    "invalid api key",
    "api key is not configured",
    "unauthorized",
    "forbidden",
)
_NOT_FOUND_PATTERNS: tuple[str, ...] = (
    "failed to find task",
    "task not found",
    "no such task",
)

_TERMINAL_BY_STATUS: dict[int, FailureKind] = {
    400: FailureKind.validation,
    401: FailureKind.configuration,
    402: FailureKind.resource_exhausted,
    403: FailureKind.configuration,
    404: FailureKind.not_found,
    413: FailureKind.validation,
    422: FailureKind.validation,
}


@dataclass(slots=True, frozen=True)
class FailureClassification:
    """Normalized failure classification result."""

    terminal: bool
    kind: FailureKind
    reason: str
    matched_pattern: Optional[str] = None


def _message(exc: BaseException) -> str:
    if isinstance(exc, OrchestratorError):
        return exc.message
    return str(exc) or type(exc).__name__


def _first_match(haystack: str, patterns: tuple[str, ...]) -> Optional[str]:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None


def _by_text(reason: str, diagnostic: Optional[str]) -> Optional[FailureClassification]:
    haystack = f"{reason}\n{diagnostic or ''}".lower()
    for patterns, kind in (
        (_QUOTA_PATTERNS, FailureKind.resource_exhausted),
        (_AUTH_PATTERNS, FailureKind.configuration),
        (_NOT_FOUND_PATTERNS, FailureKind.not_found),
    ):
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return FailureClassification(True, kind, reason, pattern)
    return None


def classify_failure(exc: BaseException) -> FailureClassification:
    """Map an exception onto (terminal, kind, reason)."""
    reason = _message(exc)
    diagnostic = getattr(exc, "diagnostic", None)

    if isinstance(exc, TaskTimeoutError):
        return FailureClassification(True, FailureKind.timeout, reason)
    if isinstance(exc, ConfigurationError):
        return FailureClassification(True, FailureKind.configuration, reason)
    if isinstance(exc, InvalidRequestError):
        return FailureClassification(True, FailureKind.validation, reason)
    if isinstance(exc, ResourceExhaustedError):
        return FailureClassification(True, FailureKind.resource_exhausted, reason)
    if isinstance(exc, RemoteTaskNotFoundError):
        return FailureClassification(True, FailureKind.not_found, reason)
    if isinstance(exc, IntegrityError):
        return FailureClassification(True, FailureKind.integrity, reason)
    if isinstance(exc, ArchiveError):
        return FailureClassification(True, FailureKind.archive, reason)
    if isinstance(exc, RemoteGenerationError):
        return _by_text(reason, diagnostic) or FailureClassification(
            True, FailureKind.remote_failure, reason
        )

    if isinstance(exc, TransportError):
        return FailureClassification(False, FailureKind.transport, reason)
    if isinstance(exc, ProviderError):
        body = exc.body or diagnostic
        if exc.status in _TERMINAL_BY_STATUS:
            return FailureClassification(True, _TERMINAL_BY_STATUS[exc.status], reason)
        by_text = _by_text(reason, body)
        if by_text is not None:
            return by_text
        if exc.status is None or exc.status == 429 or exc.status >= 500:
            return FailureClassification(False, FailureKind.transport, reason)
        return FailureClassification(True, FailureKind.remote_failure, reason)

    if isinstance(exc, (asyncio.TimeoutError, ConnectionError)):
        return FailureClassification(False, FailureKind.transport, reason)

    return FailureClassification(True, FailureKind.internal, reason)


def is_transient(exc: BaseException) -> bool:
    return not classify_failure(exc).terminal
