import asyncio

import pytest

from gentask.core.exceptions import (
    ArchiveError,
    IntegrityError,
    InvalidRequestError,
    ProviderError,
    ProviderUnavailableError,
    RemoteGenerationError,
    RemoteTaskNotFoundError,
    ResourceExhaustedError,
    StorageError,
    TaskTimeoutError,
    TransportError,
)
from gentask.core.managers.failure_classifier import classify_failure, is_transient
from gentask.core.models.task import FailureKind


@pytest.mark.parametrize(
    "exc, kind",
    [
        (TaskTimeoutError("t-1", 1801.0, 1800), FailureKind.timeout),
        (ProviderUnavailableError("API key is not configured"), FailureKind.configuration),
        (InvalidRequestError("prompt rejected"), FailureKind.validation),
        (ResourceExhaustedError("quota exhausted"), FailureKind.resource_exhausted),
        (RemoteTaskNotFoundError("remote-9"), FailureKind.not_found),
        (IntegrityError("size mismatch"), FailureKind.integrity),
        (StorageError("bucket missing", status=404), FailureKind.archive),
        (ArchiveError("download failed"), FailureKind.archive),
        (RemoteGenerationError("NSFW content"), FailureKind.remote_failure),
        (ProviderError("bad request", status=400), FailureKind.validation),
        (ProviderError("who are you", status=401), FailureKind.configuration),
        (ProviderError("pay up", status=402), FailureKind.resource_exhausted),
        (ProviderError("gone", status=404), FailureKind.not_found),
        (ProviderError("teapot", status=418), FailureKind.remote_failure),
        (KeyError("boom"), FailureKind.internal),
    ],
)
def test_terminal_failures(exc, kind):
    classification = classify_failure(exc)
    assert classification.terminal is True
    assert classification.kind == kind


@pytest.mark.parametrize(
    "exc",
    [
        TransportError("timed out", status=504),
        TransportError("connection reset", status=502),
        ProviderError("upstream exploded", status=500),
        ProviderError("slow down", status=429),
        ProviderError("no status"),
        asyncio.TimeoutError(),
        ConnectionResetError("peer reset"),
    ],
)
def test_transient_failures(exc):
    classification = classify_failure(exc)
    assert classification.terminal is False
    assert classification.kind == FailureKind.transport
    assert is_transient(exc)


def test_quota_text_in_server_error_is_terminal():
    # Some providers report exhausted credits as HTTP 500
    exc = ProviderError(
        "Generation service returned an error",
        status=500,
        body='{"message": "Insufficient credits for this task"}',
    )
    classification = classify_failure(exc)
    assert classification.terminal is True
    assert classification.kind == FailureKind.resource_exhausted
    assert classification.matched_pattern == "insufficient credits"


def test_remote_failure_text_is_matched():
    exc = RemoteGenerationError("failed to find task remote-7")
    classification = classify_failure(exc)
    assert classification.kind == FailureKind.not_found


def test_reason_is_the_human_message():
    exc = TransportError("The request to the remote service timed out.", status=504, diagnostic="x")
    assert classify_failure(exc).reason == "The request to the remote service timed out."
