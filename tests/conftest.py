"""Shared fakes and fixtures for orchestrator tests.

Fakes replay scripted responses; the last scripted item repeats forever so
loops can be driven without counting calls exactly.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from gentask.adapters.object_storage_inmemory import InMemoryObjectStorage
from gentask.adapters.retry_tenacity import TenacityRetryAdapter
from gentask.adapters.task_repository_inmemory import InMemoryTaskRepository
from gentask.core.config import OrchestratorConfig
from gentask.core.interfaces.generation_client import GenerationClientPort
from gentask.core.interfaces.http_client import HttpClientPort
from gentask.core.managers.orchestrator import TaskOrchestrator
from gentask.core.models.artifact import DownloadedArtifact
from gentask.core.models.generation import GenerationRequest

VIDEO_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"v" * 1024
TMP_VIDEO_URL = "https://tmp.provider.test/x.mp4"


def _next(script: List[Any]) -> Any:
    item = script.pop(0) if len(script) > 1 else script[0]
    if isinstance(item, BaseException):
        raise item
    return item


class ScriptedGenerationClient(GenerationClientPort):
    def __init__(self, statuses=None, submit_results=None, fetch_delay: float = 0.0):
        self.statuses: List[Any] = list(statuses or [{"status": "processing"}])
        self.submit_results: List[Any] = list(submit_results or ["remote-1"])
        self.fetch_delay = fetch_delay
        self.submit_calls = 0
        self.fetch_calls = 0
        self.submitted: List[GenerationRequest] = []

    async def submit(self, request: GenerationRequest) -> str:
        self.submit_calls += 1
        self.submitted.append(request)
        return _next(self.submit_results)

    async def fetch_status(self, remote_task_id: str):
        self.fetch_calls += 1
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        return _next(self.statuses)


class FakeDownloadClient(HttpClientPort):
    """HttpClientPort serving downloads from a url -> script mapping."""

    def __init__(self, downloads: Optional[Dict[str, List[Any]]] = None):
        self.downloads: Dict[str, List[Any]] = downloads or {
            TMP_VIDEO_URL: [DownloadedArtifact(data=VIDEO_BYTES, content_type="video/mp4")]
        }
        self.download_calls: List[str] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False

    async def close(self) -> None:
        pass

    async def get(self, url, timeout=None, headers=None):
        raise NotImplementedError

    async def post(self, url, json=None, data=None, timeout=None, headers=None):
        raise NotImplementedError

    async def head(self, url, timeout=None, headers=None):
        raise NotImplementedError

    async def download(self, url, timeout=None, max_bytes=None, on_progress=None) -> DownloadedArtifact:
        self.download_calls.append(url)
        if url not in self.downloads:
            raise AssertionError(f"unexpected download {url}")
        artifact = _next(self.downloads[url])
        if on_progress is not None:
            await on_progress(artifact.size, artifact.declared_length)
        return artifact


class RawBodyServer:
    """Loopback HTTP server answering every GET with ``body``.

    ``declared_length`` goes out as Content-Length unchanged, so a value
    larger than the body simulates a connection cut mid-download.
    """

    def __init__(self, body: bytes, declared_length: Optional[int] = None, content_type: str = "video/mp4"):
        self.body = body
        self.declared_length = len(body) if declared_length is None else declared_length
        self.content_type = content_type
        self.hits = 0
        self.url = ""

    async def __aenter__(self):
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        port = self._server.sockets[0].getsockname()[1]
        self.url = f"http://127.0.0.1:{port}/artifact.mp4"
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self._server.close()
        await self._server.wait_closed()
        return False

    async def _handle(self, reader, writer):
        self.hits += 1
        await reader.readuntil(b"\r\n\r\n")
        head = (
            "HTTP/1.1 200 OK\r\n"
            f"Content-Type: {self.content_type}\r\n"
            f"Content-Length: {self.declared_length}\r\n"
            "Connection: close\r\n\r\n"
        )
        writer.write(head.encode("ascii") + self.body)
        await writer.drain()
        writer.close()


@pytest.fixture
def config():
    return OrchestratorConfig(
        poll_interval=0.01,
        poll_timeout=5.0,
        request_timeout=1.0,
        max_retries=3,
        retry_delay=0,
        archive_retry_base_wait=0,
        archive_retry_max_wait=0,
    )


@pytest.fixture
def repo():
    return InMemoryTaskRepository()


@pytest.fixture
def storage():
    return InMemoryObjectStorage("https://cdn.test/storage")


@pytest.fixture
def client():
    return ScriptedGenerationClient()


@pytest.fixture
def http():
    return FakeDownloadClient()


@pytest.fixture
def text_request():
    return GenerationRequest(prompt="a red fox running through snow")


@pytest.fixture
async def make_orchestrator(repo, storage, http, config):
    created: List[TaskOrchestrator] = []

    def factory(client: GenerationClientPort, cfg: Optional[OrchestratorConfig] = None, **kwargs):
        orchestrator = TaskOrchestrator(
            repository=kwargs.pop("repository", repo),
            client=client,
            storage=kwargs.pop("storage", storage),
            http_client=kwargs.pop("http_client", http),
            config=cfg or config,
            retry_port=TenacityRetryAdapter(),
            **kwargs,
        )
        created.append(orchestrator)
        return orchestrator

    yield factory
    for orchestrator in created:
        await orchestrator.shutdown()
