import asyncio

import aiohttp
import pytest
from aioresponses import aioresponses

from gentask.adapters.aiohttp_client_adapter import AioHttpClientAdapter
from gentask.core.exceptions import IntegrityError, ProviderError, TransportError

from conftest import RawBodyServer

"""
Tests for AioHttpClientAdapter behavior.

Each test verifies how the adapter maps upstream responses and errors onto
the domain exceptions the failure classifier understands:
- non-JSON bodies on GET -> ProviderError 502
- HTTP error statuses on GET/download -> ProviderError with the same status
- timeouts -> TransportError 504, connection errors -> TransportError 502
- POST/HEAD return the status instead of raising, so callers map it
- downloads stream into memory and stop at ``max_bytes`` (413)
- a body cut short of its Content-Length -> IntegrityError
"""


@pytest.mark.asyncio
async def test_get_json_response():
    url = "http://provider.test/api/v1/task/abc"
    with aioresponses() as m:
        m.get(url, payload={"data": {"status": "processing"}}, status=200)

        async with AioHttpClientAdapter() as client:
            data = await client.get(url)
            assert data == {"data": {"status": "processing"}}


@pytest.mark.asyncio
async def test_get_non_json_response_raises_provider_error():
    url = "http://provider.test/bad"
    with aioresponses() as m:
        m.get(url, body="<html>error</html>", status=200, headers={"Content-Type": "text/html"})

        async with AioHttpClientAdapter() as client:
            with pytest.raises(ProviderError) as excinfo:
                await client.get(url)
            assert excinfo.value.status == 502
            assert "<html>" in excinfo.value.body


@pytest.mark.asyncio
async def test_get_http_error_keeps_status_and_body():
    url = "http://provider.test/missing"
    with aioresponses() as m:
        m.get(url, status=404, body='{"message": "failed to find task"}')

        async with AioHttpClientAdapter() as client:
            with pytest.raises(ProviderError) as excinfo:
                await client.get(url)
            assert excinfo.value.status == 404
            assert "failed to find task" in excinfo.value.body
            assert not isinstance(excinfo.value, TransportError)


@pytest.mark.asyncio
async def test_get_timeout_raises_transport_error():
    url = "http://provider.test/slow"
    with aioresponses() as m:
        m.get(url, exception=asyncio.TimeoutError())

        async with AioHttpClientAdapter() as client:
            with pytest.raises(TransportError) as excinfo:
                await client.get(url)
            assert excinfo.value.status == 504


@pytest.mark.asyncio
async def test_get_connection_error_raises_transport_error():
    url = "http://provider.test/down"
    with aioresponses() as m:
        m.get(url, exception=aiohttp.ClientConnectionError("refused"))

        async with AioHttpClientAdapter() as client:
            with pytest.raises(TransportError) as excinfo:
                await client.get(url)
            assert excinfo.value.status == 502
            assert "refused" in excinfo.value.diagnostic


@pytest.mark.asyncio
async def test_post_returns_status_without_raising():
    url = "http://provider.test/api/v1/task"
    with aioresponses() as m:
        m.post(url, status=402, payload={"code": 402, "message": "insufficient credits"})

        async with AioHttpClientAdapter() as client:
            resp = await client.post(url, json={"model": "m"})
            assert resp["status"] == 402
            assert resp["body"]["message"] == "insufficient credits"


@pytest.mark.asyncio
async def test_post_text_body_is_returned_as_string():
    url = "http://storage.test/storage/v1/object/bucket/a.mp4"
    with aioresponses() as m:
        m.post(url, status=200, body="stored", headers={"Content-Type": "text/plain"})

        async with AioHttpClientAdapter() as client:
            resp = await client.post(url, data=b"bytes")
            assert resp["status"] == 200
            assert resp["body"] == "stored"


@pytest.mark.asyncio
async def test_head_returns_headers():
    url = "http://storage.test/storage/v1/object/public/bucket/a.mp4"
    with aioresponses() as m:
        m.head(url, status=200, headers={"Content-Length": "2048"})

        async with AioHttpClientAdapter() as client:
            resp = await client.head(url)
            assert resp["status"] == 200
            headers = {k.lower(): v for k, v in resp["headers"].items()}
            assert headers["content-length"] == "2048"


@pytest.mark.asyncio
async def test_download_returns_bytes_and_content_type():
    url = "http://tmp.provider.test/x.mp4"
    with aioresponses() as m:
        m.get(url, status=200, body=b"\x00video-bytes", headers={"Content-Type": "video/mp4"})

        async with AioHttpClientAdapter() as client:
            artifact = await client.download(url)
            assert artifact.data == b"\x00video-bytes"
            assert artifact.size == len(b"\x00video-bytes")
            assert artifact.content_type == "video/mp4"


@pytest.mark.asyncio
async def test_download_over_limit_is_rejected():
    url = "http://tmp.provider.test/huge.mp4"
    with aioresponses() as m:
        m.get(url, status=200, body=b"v" * 2048, headers={"Content-Type": "video/mp4"})

        async with AioHttpClientAdapter() as client:
            with pytest.raises(ProviderError) as excinfo:
                await client.download(url, max_bytes=1024)
            assert excinfo.value.status == 413


@pytest.mark.asyncio
async def test_download_http_error_keeps_status():
    url = "http://tmp.provider.test/expired.mp4"
    with aioresponses() as m:
        m.get(url, status=403)

        async with AioHttpClientAdapter() as client:
            with pytest.raises(ProviderError) as excinfo:
                await client.download(url)
            assert excinfo.value.status == 403


@pytest.mark.asyncio
async def test_calls_without_session_fail_fast():
    client = AioHttpClientAdapter()
    with pytest.raises(RuntimeError):
        await client.get("http://provider.test/")


@pytest.mark.asyncio
async def test_download_cut_short_of_content_length_is_integrity_error():
    async with RawBodyServer(b"0123456789", declared_length=1000) as server:
        async with AioHttpClientAdapter() as client:
            with pytest.raises(IntegrityError) as excinfo:
                await client.download(server.url)
    assert not isinstance(excinfo.value, TransportError)
    assert excinfo.value.diagnostic


@pytest.mark.asyncio
async def test_download_reports_progress_per_chunk():
    body = b"c" * (200 * 1024)
    seen = []

    async def on_progress(received, declared):
        seen.append((received, declared))

    async with RawBodyServer(body) as server:
        async with AioHttpClientAdapter() as client:
            artifact = await client.download(server.url, on_progress=on_progress)

    assert artifact.declared_length == len(body)
    assert seen[-1] == (len(body), len(body))
    received = [r for r, _ in seen]
    assert received == sorted(received)
