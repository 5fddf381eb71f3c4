"""Module-level request functions bound to a process-wide default client.

The defaults are meant to be set once at startup. They are shared and
unsynchronised, so changing them while requests are in flight is racy.
"""

from __future__ import annotations

from typing import Any, Mapping

from .client import RayClient, StreamHandler
from .logger import LoggerHandle
from .options import OptionHandle, Options


_default_client: RayClient | None = None


def default_client() -> RayClient:
    global _default_client
    if _default_client is None:
        _default_client = RayClient()
    return _default_client


def set_default_client(client: RayClient | None) -> None:
    """Replace the client behind the module-level functions."""
    global _default_client
    _default_client = client


def set_default_retry_times_and_timeout(timeout: int, retry_times: int) -> None:
    """Reset the default timeout (seconds) and total attempt budget.

    ``retry_times`` counts the initial request too and is clamped to at least 1.
    """
    default_client().set_retry_times_and_timeout(timeout, retry_times)


def set_default_proxy(proxy: str) -> None:
    default_client().set_proxy(proxy)


def set_global_logger(logger: LoggerHandle | None) -> None:
    default_client().set_logger(logger)


def new_options(*handles: OptionHandle) -> Options:
    return default_client().new_options(*handles)


def do(opts: Options) -> bytes:
    return default_client().do(opts)


def do_retry(opts: Options) -> bytes:
    return default_client().do_retry(opts)


def do_json(opts: Options, data: Any = None) -> Any:
    return default_client().do_json(opts, data)


def do_stream(opts: Options, handler: StreamHandler) -> None:
    default_client().do_stream(opts, handler)


def get(url: str, query: Any = None, headers: Mapping[str, str] | None = None) -> bytes:
    return default_client().get(url, query, headers)


def get_json(url: str, data: Any = None, query: Any = None, headers: Mapping[str, str] | None = None) -> Any:
    return default_client().get_json(url, data, query, headers)


def post_form(url: str, body: Any, query: Any = None, headers: Mapping[str, str] | None = None) -> bytes:
    return default_client().post_form(url, body, query, headers)


def post_form_json(
    url: str,
    body: Any,
    data: Any = None,
    query: Any = None,
    headers: Mapping[str, str] | None = None,
) -> Any:
    return default_client().post_form_json(url, body, data, query, headers)


def post_raw(url: str, body: Any, query: Any = None, headers: Mapping[str, str] | None = None) -> bytes:
    return default_client().post_raw(url, body, query, headers)


def post_raw_json(
    url: str,
    body: Any,
    data: Any = None,
    query: Any = None,
    headers: Mapping[str, str] | None = None,
) -> Any:
    return default_client().post_raw_json(url, body, data, query, headers)
