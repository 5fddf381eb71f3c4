"""Per-request options and the builders that fill them."""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Callable, Mapping

from .logger import LoggerHandle, std_logger


DEFAULT_TIMEOUT = 3
DEFAULT_RETRY_TIMES = 2


@dataclass
class Defaults:
    """Values applied to every request that does not override them.

    ``retry_times`` counts total attempts, so the default of 2 means one
    initial request plus one retry.
    """

    timeout: int = DEFAULT_TIMEOUT
    retry_times: int = DEFAULT_RETRY_TIMES
    proxy: str = ""
    logger: LoggerHandle | None = std_logger

    def set_retry_times_and_timeout(self, timeout: int, retry_times: int) -> None:
        self.timeout = timeout
        self.retry_times = max(1, retry_times)

    def set_proxy(self, proxy: str) -> None:
        self.proxy = proxy or ""

    def set_logger(self, logger: LoggerHandle | None) -> None:
        self.logger = logger


@dataclass
class Options:
    url: str = ""
    method: str = "GET"
    query: Any = None
    headers: dict[str, str] | None = None
    body: BinaryIO | None = None
    content_type: str = ""
    timeout: int = DEFAULT_TIMEOUT
    retry_times: int = DEFAULT_RETRY_TIMES
    proxy: str = ""
    logger: LoggerHandle | None = field(default=None, repr=False)


OptionHandle = Callable[[Options], None]


def new_options(*handles: OptionHandle, defaults: Defaults | None = None) -> Options:
    """Build options from defaults, then apply each handle in order."""
    defaults = defaults or Defaults()
    opts = Options(method="GET", timeout=defaults.timeout, retry_times=defaults.retry_times)
    for handle in handles:
        handle(opts)
    return opts


def with_url(url: str) -> OptionHandle:
    def apply(opts: Options) -> None:
        opts.url = url

    return apply


def with_method(method: str) -> OptionHandle:
    def apply(opts: Options) -> None:
        opts.method = method

    return apply


def with_query(query: Any) -> OptionHandle:
    """Set the query: a raw string, a mapping, a pydantic model or a dataclass."""

    def apply(opts: Options) -> None:
        opts.query = query

    return apply


def with_header(headers: Mapping[str, str]) -> OptionHandle:
    """Merge headers into the options; later values overwrite earlier keys."""

    def apply(opts: Options) -> None:
        merged = dict(opts.headers or {})
        merged.update(headers)
        opts.headers = merged

    return apply


def with_body(body: bytes | str | BinaryIO) -> OptionHandle:
    """Buffer ``body`` into a seekable stream so retries can resend it."""

    def apply(opts: Options) -> None:
        if isinstance(body, str):
            data = body.encode()
        elif isinstance(body, (bytes, bytearray)):
            data = bytes(body)
        else:
            data = body.read()
            if isinstance(data, str):
                data = data.encode()
        opts.body = io.BytesIO(data)

    return apply


def with_body_s(body: str) -> OptionHandle:
    def apply(opts: Options) -> None:
        opts.body = io.BytesIO(body.encode())

    return apply


def with_content_type(content_type: str) -> OptionHandle:
    def apply(opts: Options) -> None:
        opts.content_type = content_type

    return apply


def with_timeout(timeout: int) -> OptionHandle:
    def apply(opts: Options) -> None:
        opts.timeout = timeout

    return apply


def with_retry_times(times: int) -> OptionHandle:
    def apply(opts: Options) -> None:
        opts.retry_times = times

    return apply


def with_proxy(proxy: str) -> OptionHandle:
    def apply(opts: Options) -> None:
        opts.proxy = proxy

    return apply


def with_logger(logger: LoggerHandle | None) -> OptionHandle:
    def apply(opts: Options) -> None:
        opts.logger = logger

    return apply
