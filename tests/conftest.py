from __future__ import annotations

from typing import Callable

import httpx
import pytest

import rayhttp.api as api
from rayhttp import AsyncRayClient, RayClient


Handler = Callable[[httpx.Request], httpx.Response]


class Recorder:
    """Mock transport handler that replays scripted responses and records requests."""

    def __init__(self, *responses: httpx.Response | Exception) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        # The last scripted outcome repeats once the script runs out.
        outcome = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome.status_code, content=outcome.content, headers=outcome.headers)

    @property
    def calls(self) -> int:
        return len(self.requests)


def make_client(handler: Handler, **kwargs) -> RayClient:
    kwargs.setdefault("logger", None)
    return RayClient(httpx_client=httpx.Client(transport=httpx.MockTransport(handler)), **kwargs)


def make_async_client(handler: Handler, **kwargs) -> AsyncRayClient:
    kwargs.setdefault("logger", None)
    return AsyncRayClient(httpx_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)), **kwargs)


@pytest.fixture(autouse=True)
def _isolated_defaults(monkeypatch):
    for name in ("RAYHTTP_TIMEOUT", "RAYHTTP_RETRY_TIMES", "RAYHTTP_PROXY"):
        monkeypatch.delenv(name, raising=False)
    api.set_default_client(None)
    yield
    client = api._default_client
    if client is not None:
        client.close()
    api.set_default_client(None)
