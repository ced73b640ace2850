"""Reduce heterogeneous provider status payloads to a NormalizedStatus.

Providers wrap the same information in different envelopes. Each envelope
strategy below contributes the mappings ("layers") where status, progress,
URLs and error text may live; the normalizer then searches those layers in
order:

1. FlatEnvelope: the payload itself
2. DataEnvelope: a ``data`` object around the payload
3. NestedOutputEnvelope: ``output`` / ``outputs`` objects (or first list item)
4. WorksResourceEnvelope: ``works[0]`` and its ``resource`` object

``normalize`` never raises; anything it cannot interpret is ``processing``.
"""

from __future__ import annotations

import math
from typing import Any, Iterable, List, Mapping, Optional, Protocol, Sequence

from gentask.core.models.remote_status import NormalizedStatus
from gentask.core.models.task import TaskStatus
from gentask.core.settings import logger

SUCCESS_TOKENS = frozenset(
    {"completed", "complete", "success", "succeeded", "successful", "finished", "done", "99"}
)
FAILURE_TOKENS = frozenset(
    {"failed", "failure", "error", "errored", "cancelled", "canceled", "aborted", "rejected", "expired"}
)
QUEUE_TOKENS = frozenset(
    {"pending", "queued", "waiting", "submitted", "created", "staged", "accepted"}
)

RESULT_URL_KEYS = (
    "video_url",
    "output_url",
    "outputUrl",
    "result_url",
    "url",
    "resourceWithoutWatermark",
    "resource",
)
THUMBNAIL_KEYS = ("thumbnail_url", "thumbnailUrl", "cover")
STATUS_KEYS = ("status", "state")
PROGRESS_KEYS = ("progress", "percent", "percentage")
ERROR_KEYS = ("error", "error_message", "failure_reason")
MESSAGE_KEYS = ("message", "detail")

PENDING_URL_PROGRESS = 95


class EnvelopeStrategy(Protocol):
    def layers(self, raw: Mapping[str, Any]) -> List[Mapping[str, Any]]:
        ...


def _first_mapping(value: Any) -> Optional[Mapping[str, Any]]:
    if isinstance(value, Mapping):
        return value
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)) and value:
        head = value[0]
        if isinstance(head, Mapping):
            return head
    return None


class FlatEnvelope:
    def layers(self, raw: Mapping[str, Any]) -> List[Mapping[str, Any]]:
        return [raw]


class DataEnvelope:
    def layers(self, raw: Mapping[str, Any]) -> List[Mapping[str, Any]]:
        data = raw.get("data")
        return [data] if isinstance(data, Mapping) else []


class NestedOutputEnvelope:
    def __init__(self, inner: Iterable[EnvelopeStrategy]):
        self._inner = list(inner)

    def layers(self, raw: Mapping[str, Any]) -> List[Mapping[str, Any]]:
        found: List[Mapping[str, Any]] = []
        for strategy in self._inner:
            for layer in strategy.layers(raw):
                for key in ("output", "outputs"):
                    nested = _first_mapping(layer.get(key))
                    if nested is not None:
                        found.append(nested)
        return found


class WorksResourceEnvelope:
    def __init__(self, inner: Iterable[EnvelopeStrategy]):
        self._inner = list(inner)

    def layers(self, raw: Mapping[str, Any]) -> List[Mapping[str, Any]]:
        found: List[Mapping[str, Any]] = []
        for strategy in self._inner:
            for layer in strategy.layers(raw):
                work = _first_mapping(layer.get("works"))
                if work is None:
                    continue
                resource = work.get("resource")
                if isinstance(resource, Mapping):
                    found.append(resource)
                found.append(work)
        return found


def _token(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, str)):
        token = str(value).strip().lower()
        return token or None
    return None


def parse_progress(value: Any) -> Optional[int]:
    """Accept ints, floats and strings like ``"40%"``; clamp to 0..100."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        text = value.strip().rstrip("%").strip()
        try:
            value = float(text)
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or math.isnan(value) or math.isinf(value):
        return None
    return max(0, min(100, int(round(value))))


def _url_of(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    if isinstance(value, Mapping):
        for key in ("resourceWithoutWatermark", "resource", "url"):
            nested = value.get(key)
            if isinstance(nested, str) and nested.strip():
                return nested.strip()
    return None


def _error_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    if isinstance(value, Mapping):
        message = value.get("message") or value.get("detail")
        if isinstance(message, str) and message.strip():
            return message.strip()
    return None


def _failure_message(value: Any) -> Optional[str]:
    text = _error_text(value)
    # envelopes often carry a generic "success" message next to the failure
    if text is None or text.lower() in SUCCESS_TOKENS or text.lower() == "ok":
        return None
    return text


class StatusNormalizer:
    def __init__(self, envelopes: Optional[Sequence[EnvelopeStrategy]] = None):
        if envelopes is None:
            base: List[EnvelopeStrategy] = [FlatEnvelope(), DataEnvelope()]
            envelopes = [
                *base,
                NestedOutputEnvelope(base),
                WorksResourceEnvelope(base),
            ]
        self._envelopes = list(envelopes)

    def _layers(self, raw: Mapping[str, Any]) -> List[Mapping[str, Any]]:
        layers: List[Mapping[str, Any]] = []
        for envelope in self._envelopes:
            layers.extend(envelope.layers(raw))
        return layers

    @staticmethod
    def _first(layers: List[Mapping[str, Any]], keys: Sequence[str], convert) -> Any:
        for layer in layers:
            for key in keys:
                if key in layer:
                    converted = convert(layer[key])
                    if converted is not None:
                        return converted
        return None

    def normalize(self, raw: Any) -> NormalizedStatus:
        if not isinstance(raw, Mapping):
            return NormalizedStatus(status=TaskStatus.processing)
        try:
            return self._normalize(raw)
        except Exception as exc:
            logger.warning(f"[normalizer] could not interpret status payload err={exc}")
            return NormalizedStatus(status=TaskStatus.processing)

    def _normalize(self, raw: Mapping[str, Any]) -> NormalizedStatus:
        layers = self._layers(raw)
        token = self._first(layers, STATUS_KEYS, _token)
        progress = self._first(layers, PROGRESS_KEYS, parse_progress)
        result_url = self._first(layers, RESULT_URL_KEYS, _url_of)
        thumbnail_url = self._first(layers, THUMBNAIL_KEYS, _url_of)

        if token in SUCCESS_TOKENS:
            if result_url:
                return NormalizedStatus(
                    status=TaskStatus.completed,
                    progress=100,
                    result_url=result_url,
                    thumbnail_url=thumbnail_url,
                    raw_status=token,
                )
            return NormalizedStatus(
                status=TaskStatus.pending_url,
                progress=PENDING_URL_PROGRESS,
                thumbnail_url=thumbnail_url,
                raw_status=token,
            )

        if token in FAILURE_TOKENS:
            error_text = self._first(layers, ERROR_KEYS, _error_text) or self._first(
                layers, MESSAGE_KEYS, _failure_message
            )
            return NormalizedStatus(
                status=TaskStatus.failed,
                progress=progress,
                error_text=error_text or f"Remote task reported status '{token}'",
                raw_status=token,
            )

        status = TaskStatus.pending if token in QUEUE_TOKENS else TaskStatus.processing
        return NormalizedStatus(
            status=status,
            progress=progress,
            thumbnail_url=thumbnail_url,
            raw_status=token,
        )


_default = StatusNormalizer()


def normalize(raw: Any) -> NormalizedStatus:
    """Normalize a raw provider status payload with the default envelopes."""
    return _default.normalize(raw)
