"""HTTP adapter for a PiAPI-style video generation service.

This is the only module that knows the provider's wire format:

* ``POST {base}/api/v1/task`` with ``{"model", "task_type", "input"}`` and an
  ``x-api-key`` header creates a task; the id comes back as
  ``data.task_id`` (or a top-level ``task_id``).
* ``GET {base}/api/v1/task/{id}`` returns the status payload, handed to the
  status normalizer untouched.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Optional

from gentask.core.exceptions import (
    InvalidRequestError,
    ProviderError,
    ProviderUnavailableError,
    RemoteTaskNotFoundError,
    ResourceExhaustedError,
)
from gentask.core.interfaces.generation_client import GenerationClientPort
from gentask.core.interfaces.http_client import HttpClientPort
from gentask.core.models.generation import GenerationRequest, TaskKind
from gentask.core.models.remote_status import RawStatus
from gentask.core.settings import logger

TASK_TYPES: Dict[TaskKind, str] = {
    TaskKind.text_to_video: "txt2video-14b",
    TaskKind.image_to_video: "img2video-14b",
}

_PLACEHOLDER_KEY = re.compile(r"^(your[_-].*|.*_here|changeme|xxx+)$", re.IGNORECASE)
_QUOTA_TEXT = re.compile(r"insufficient (credit|balance|quota)|quota exceeded|out of credits", re.IGNORECASE)
_NOT_FOUND_TEXT = re.compile(r"(failed to find|task not found|no such task)", re.IGNORECASE)
_AUTH_TEXT = re.compile(r"invalid api key|api key is not configured|unauthori[sz]ed|forbidden", re.IGNORECASE)


def is_placeholder_credential(api_key: Optional[str]) -> bool:
    if api_key is None:
        return True
    key = api_key.strip()
    return not key or bool(_PLACEHOLDER_KEY.match(key))


def _message_of(body: Any) -> str:
    """Best-effort error text from a provider response body."""
    if isinstance(body, str):
        return body[:500]
    if not isinstance(body, dict):
        return ""
    for key in ("message", "error", "detail"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
        if isinstance(value, dict) and isinstance(value.get("message"), str):
            return value["message"]
    data = body.get("data")
    if isinstance(data, dict):
        return _message_of(data)
    return ""


class PiApiGenerationClient(GenerationClientPort):
    def __init__(
        self,
        http_client: HttpClientPort,
        base_url: str,
        api_key: Optional[str],
        model: str = "Qubico/wanx",
        request_timeout: float = 30.0,
    ) -> None:
        self._http = http_client
        self._base = base_url.rstrip("/")
        self._api_key = api_key
        self._model = model
        self._timeout = request_timeout

    def _headers(self) -> Dict[str, str]:
        if is_placeholder_credential(self._api_key):
            raise ProviderUnavailableError(
                "Generation service API key is not configured",
                diagnostic="missing or placeholder credential",
            )
        return {"x-api-key": self._api_key.strip(), "Content-Type": "application/json"}

    def _payload(self, request: GenerationRequest) -> Dict[str, Any]:
        task_input: Dict[str, Any] = {
            "prompt": request.prompt,
            "aspect_ratio": request.aspect_ratio.value,
        }
        if request.negative_prompt:
            task_input["negative_prompt"] = request.negative_prompt
        if request.kind == TaskKind.image_to_video and request.image_url is not None:
            task_input["image"] = str(request.image_url)
        return {
            "model": self._model,
            "task_type": TASK_TYPES[request.kind],
            "input": task_input,
        }

    async def submit(self, request: GenerationRequest) -> str:
        headers = self._headers()
        url = f"{self._base}/api/v1/task"
        payload = self._payload(request)
        logger.debug(f"[provider:submit] url={url} task_type={payload['task_type']}")

        resp = await self._http.post(url, json=payload, timeout=self._timeout, headers=headers)
        status = resp.get("status") or 0
        body = resp.get("body")
        message = _message_of(body)

        if status >= 400 or (isinstance(body, dict) and body.get("code") not in (None, 0, 200)):
            self._raise_for_submit(status, message, body)

        remote_id = None
        if isinstance(body, dict):
            data = body.get("data")
            if isinstance(data, dict):
                remote_id = data.get("task_id")
            remote_id = remote_id or body.get("task_id")
        if not remote_id:
            raise ProviderError(
                "Generation service response did not contain a task id",
                status=502,
                body=str(body)[:500],
            )
        logger.info(f"[provider:submit] created remote_task_id={remote_id}")
        return str(remote_id)

    def _raise_for_submit(self, status: int, message: str, body: Any) -> None:
        detail = message or f"HTTP {status}"
        if status in (401, 403) or _AUTH_TEXT.search(message):
            raise ProviderUnavailableError(
                f"Generation service rejected the credentials: {detail}",
                diagnostic=f"status={status}",
            )
        if status == 402 or _QUOTA_TEXT.search(message):
            raise ResourceExhaustedError(
                f"Generation service quota exhausted: {detail}",
                diagnostic=f"status={status}",
            )
        if status in (400, 422):
            raise InvalidRequestError(
                f"Generation service rejected the request: {detail}",
                diagnostic=f"status={status}",
            )
        raise ProviderError(
            f"Generation service returned an error: {detail}",
            status=status if status >= 400 else 502,
            body=str(body)[:500],
        )

    async def fetch_status(self, remote_task_id: str) -> RawStatus:
        headers = self._headers()
        url = f"{self._base}/api/v1/task/{remote_task_id}"
        try:
            body = await self._http.get(url, timeout=self._timeout, headers=headers)
        except ProviderError as exc:
            if exc.status == 404:
                raise RemoteTaskNotFoundError(remote_task_id, diagnostic=exc.body) from exc
            if exc.status in (401, 403):
                raise ProviderUnavailableError(
                    "Generation service rejected the credentials",
                    diagnostic=f"status={exc.status}",
                ) from exc
            self._raise_for_status_text(remote_task_id, exc.body or "", exc.status)
            raise

        if isinstance(body, dict) and body.get("code") not in (None, 0, 200):
            self._raise_for_status_text(remote_task_id, _message_of(body), body.get("code"))
        return body

    def _raise_for_status_text(self, remote_task_id: str, message: str, code: Any) -> None:
        """Map lookup, quota and credential errors reported inside a status body."""
        if _NOT_FOUND_TEXT.search(message):
            raise RemoteTaskNotFoundError(remote_task_id, diagnostic=message)
        if _QUOTA_TEXT.search(message):
            raise ResourceExhaustedError(
                f"Generation service quota exhausted: {message}",
                diagnostic=f"code={code}",
            )
        if _AUTH_TEXT.search(message):
            raise ProviderUnavailableError(
                f"Generation service rejected the credentials: {message}",
                diagnostic=f"code={code}",
            )
