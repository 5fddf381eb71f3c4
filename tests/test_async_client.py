from __future__ import annotations

import asyncio

import httpx
import pytest

from conftest import Recorder, make_async_client
from rayhttp import RayConfigurationError, RayDecodeError, RayStatusError, RayTransportError
from rayhttp.options import with_body_s, with_method, with_proxy, with_retry_times, with_url


def test_async_get_json_fills_destination() -> None:
    recorder = Recorder(httpx.Response(200, content=b'{"key":"value"}'))

    async def run() -> dict:
        data: dict = {}
        async with make_async_client(recorder) as client:
            await client.get_json("http://h", data, {"q": "1"})
        return data

    assert asyncio.run(run()) == {"key": "value"}
    assert str(recorder.requests[0].url) == "http://h?q=1"


def test_async_retry_budget_and_body_replay() -> None:
    recorder = Recorder(httpx.ConnectError("refused"), httpx.Response(500), httpx.Response(503))

    async def run() -> None:
        async with make_async_client(recorder) as client:
            opts = client.new_options(
                with_url("http://h"),
                with_method("PUT"),
                with_body_s("payload"),
                with_retry_times(3),
            )
            await client.do_retry(opts)

    with pytest.raises(RayStatusError) as excinfo:
        asyncio.run(run())

    assert recorder.calls == 3
    assert excinfo.value.status_code == 503
    assert [request.content for request in recorder.requests] == [b"payload"] * 3


def test_async_transport_failure_surfaces_last_error() -> None:
    recorder = Recorder(httpx.ConnectError("refused"))

    async def run() -> None:
        async with make_async_client(recorder, retry_times=2) as client:
            await client.get("http://h")

    with pytest.raises(RayTransportError) as excinfo:
        asyncio.run(run())

    assert recorder.calls == 2
    assert excinfo.value.sites == ["rayhttp.request.do.request", "rayhttp.request.get.do"]


def test_async_empty_url_is_rejected() -> None:
    recorder = Recorder(httpx.Response(200))

    async def run() -> None:
        async with make_async_client(recorder) as client:
            await client.do(client.new_options())

    with pytest.raises(RayConfigurationError):
        asyncio.run(run())
    assert recorder.calls == 0


def test_async_logger_granularity_matches_sync_client() -> None:
    attempt_errors: list = []
    call_errors: list = []

    async def run() -> None:
        recorder = Recorder(httpx.Response(500), httpx.Response(200))
        async with make_async_client(recorder, logger=lambda o, e: attempt_errors.append(e)) as client:
            await client.do_retry(client.new_options(with_url("http://h"), with_retry_times(2)))
        recorder = Recorder(httpx.Response(500), httpx.Response(200))
        async with make_async_client(recorder, logger=lambda o, e: call_errors.append(e), retry_times=2) as client:
            await client.post_raw("http://h", {"a": 1})

    asyncio.run(run())

    assert len(attempt_errors) == 2
    assert isinstance(attempt_errors[0], RayStatusError)
    assert call_errors == [None]


def test_async_do_stream() -> None:
    recorder = Recorder(httpx.Response(200, content=b"one\ntwo\n"))
    lines: list[str] = []

    async def handler(stream) -> None:
        async for line in stream:
            lines.append(line)

    async def run() -> None:
        async with make_async_client(recorder) as client:
            await client.do_stream(client.new_options(with_url("http://h")), handler)

    asyncio.run(run())
    assert lines == ["one", "two"]


def test_async_do_json_decode_error_keeps_raw_body() -> None:
    recorder = Recorder(httpx.Response(200, content=b"oops"))

    async def run() -> None:
        async with make_async_client(recorder) as client:
            await client.do_json(client.new_options(with_url("http://h")))

    with pytest.raises(RayDecodeError) as excinfo:
        asyncio.run(run())

    assert recorder.calls == 1
    assert excinfo.value.site == "rayhttp.request.dojson.unmarshal"
    assert excinfo.value.body == "oops"


def test_async_do_json_fills_mapping() -> None:
    recorder = Recorder(httpx.Response(200, content=b'{"message": "hi"}'))

    async def run() -> dict:
        data: dict = {}
        async with make_async_client(recorder) as client:
            await client.do_json(client.new_options(with_url("http://h")), data)
        return data

    assert asyncio.run(run()) == {"message": "hi"}


def test_async_post_form_and_post_form_json() -> None:
    recorder = Recorder(httpx.Response(200, content=b"done"), httpx.Response(200, content=b'{"ok": true}'))

    async def run() -> tuple[bytes, dict]:
        async with make_async_client(recorder) as client:
            body = await client.post_form("http://h", {"b": "2", "a": "x y"})
            decoded = await client.post_form_json("http://h", "raw=1", query={"q": "1"})
        return body, decoded

    body, decoded = asyncio.run(run())

    assert body == b"done"
    assert decoded == {"ok": True}
    first, second = recorder.requests
    assert first.method == "POST"
    assert first.content == b"a=x+y&b=2"
    assert first.headers["content-type"] == "application/x-www-form-urlencoded"
    assert second.content == b"raw=1"
    assert str(second.url) == "http://h?q=1"


def test_async_post_form_json_error_sites_trace_the_call() -> None:
    recorder = Recorder(httpx.Response(500, content=b"boom"))

    async def run() -> None:
        async with make_async_client(recorder, retry_times=1) as client:
            await client.post_form_json("http://h", {"a": "1"})

    with pytest.raises(RayStatusError) as excinfo:
        asyncio.run(run())

    assert excinfo.value.sites == [
        "rayhttp.request.do.resp.code",
        "rayhttp.request.postform.do",
        "rayhttp.request.postformjson",
    ]


def test_async_request_proxy_wins_over_default(monkeypatch) -> None:
    direct = Recorder(httpx.Response(200))
    proxied = Recorder(httpx.Response(200, content=b"via proxy"))
    used: list[str] = []

    def fake_proxy_client(proxy: str) -> httpx.AsyncClient:
        used.append(proxy)
        return httpx.AsyncClient(transport=httpx.MockTransport(proxied))

    async def run() -> bytes:
        async with make_async_client(direct, proxy="http://default:3128") as client:
            monkeypatch.setattr(client, "_proxy_client", fake_proxy_client)
            body = await client.do(client.new_options(with_url("http://h"), with_proxy("http://request:8080")))
            await client.get("http://h")
        return body

    assert asyncio.run(run()) == b"via proxy"
    assert used == ["http://request:8080", "http://default:3128"]
    assert direct.calls == 0
    assert proxied.calls == 2


def test_async_invalid_proxy_is_a_configuration_error() -> None:
    recorder = Recorder(httpx.Response(200))

    async def run() -> None:
        async with make_async_client(recorder) as client:
            await client.do_retry(client.new_options(with_url("http://h"), with_proxy("ftp://proxy"), with_retry_times(3)))

    with pytest.raises(RayConfigurationError) as excinfo:
        asyncio.run(run())

    assert recorder.calls == 0
    assert excinfo.value.site == "rayhttp.request.do.proxy.parse"


class _AsyncChunks(httpx.AsyncByteStream):
    def __init__(self, *chunks: bytes) -> None:
        self.chunks = chunks

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk


def test_async_undecodable_body_is_a_retried_transport_error() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, headers={"Content-Encoding": "gzip"}, stream=_AsyncChunks(b"not gzip"))

    async def run() -> None:
        async with make_async_client(handler, retry_times=2) as client:
            await client.do_retry(client.new_options(with_url("http://h")))

    with pytest.raises(RayTransportError) as excinfo:
        asyncio.run(run())

    assert len(requests) == 2
    assert excinfo.value.site == "rayhttp.request.do.resp.body.readall"
    assert isinstance(excinfo.value.cause, httpx.DecodingError)
