from __future__ import annotations

import asyncio
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Iterator

import pytest

from rayhttp import AsyncRayClient, RayClient, RayTimeoutError
from rayhttp.options import with_retry_times, with_timeout, with_url


class TrickleHandler(BaseHTTPRequestHandler):
    """Declares the whole body up front, then sends it one byte at a time."""

    body = b"1\n2\n3\n4\n"
    interval = 0.4

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        pass

    def do_GET(self) -> None:  # noqa: N802
        self.send_response(200)
        self.send_header("Content-Length", str(len(self.body)))
        self.end_headers()
        self.wfile.flush()
        try:
            for i in range(len(self.body)):
                time.sleep(self.interval)
                self.wfile.write(self.body[i : i + 1])
                self.wfile.flush()
        except OSError:
            # The client gave up first.
            return


class _Server(ThreadingHTTPServer):
    block_on_close = False


@pytest.fixture
def trickle_url() -> Iterator[str]:
    server = _Server(("127.0.0.1", 0), TrickleHandler)
    thread = threading.Thread(target=server.serve_forever)
    thread.daemon = True
    thread.start()
    host, port = server.server_address[0], server.server_address[1]
    yield f"http://{host}:{port}/slow"
    server.shutdown()
    server.server_close()


def test_slow_body_is_cut_off_at_the_attempt_deadline(trickle_url: str) -> None:
    with RayClient(logger=None) as client:
        opts = client.new_options(with_url(trickle_url), with_timeout(1), with_retry_times(1))
        started = time.monotonic()
        with pytest.raises(RayTimeoutError) as excinfo:
            client.do_retry(opts)
        elapsed = time.monotonic() - started

    assert elapsed < 2.5
    assert excinfo.value.site == "rayhttp.request.do.resp.body.readall"


def test_slow_stream_is_cut_off_at_the_deadline(trickle_url: str) -> None:
    lines: list[str] = []

    def handler(stream) -> None:
        for line in stream:
            lines.append(line)

    with RayClient(logger=None) as client:
        opts = client.new_options(with_url(trickle_url), with_timeout(1))
        started = time.monotonic()
        with pytest.raises(RayTimeoutError) as excinfo:
            client.do_stream(opts, handler)
        elapsed = time.monotonic() - started

    assert elapsed < 2.5
    assert lines == ["1"]
    assert excinfo.value.site == "rayhttp.request.dostream.resp.read"


def test_async_slow_body_is_cut_off_at_the_attempt_deadline(trickle_url: str) -> None:
    async def run() -> None:
        async with AsyncRayClient(logger=None) as client:
            await client.do_retry(client.new_options(with_url(trickle_url), with_timeout(1), with_retry_times(1)))

    started = time.monotonic()
    with pytest.raises(RayTimeoutError) as excinfo:
        asyncio.run(run())
    elapsed = time.monotonic() - started

    assert elapsed < 2.5
    assert excinfo.value.site == "rayhttp.request.do.resp.body.readall"


def test_async_slow_stream_is_cut_off_at_the_deadline(trickle_url: str) -> None:
    async def handler(stream) -> None:
        async for _ in stream:
            pass

    async def run() -> None:
        async with AsyncRayClient(logger=None) as client:
            await client.do_stream(client.new_options(with_url(trickle_url), with_timeout(1)), handler)

    started = time.monotonic()
    with pytest.raises(RayTimeoutError) as excinfo:
        asyncio.run(run())
    elapsed = time.monotonic() - started

    assert elapsed < 2.5
    assert excinfo.value.site == "rayhttp.request.dostream.resp.read"
