"""Convenience HTTP requests with retries, proxies and request tracing."""

from .api import (
    default_client,
    do,
    do_json,
    do_retry,
    do_stream,
    get,
    get_json,
    new_options,
    post_form,
    post_form_json,
    post_raw,
    post_raw_json,
    set_default_client,
    set_default_proxy,
    set_default_retry_times_and_timeout,
    set_global_logger,
)
from .client import AsyncRayClient, RayClient
from .exceptions import (
    RayBodyRewindError,
    RayConfigurationError,
    RayDecodeError,
    RayError,
    RayStatusError,
    RayTimeoutError,
    RayTransportError,
)
from .logger import LoggerHandle, format_trace, std_logger
from .options import (
    Defaults,
    OptionHandle,
    Options,
    with_body,
    with_body_s,
    with_content_type,
    with_header,
    with_logger,
    with_method,
    with_proxy,
    with_query,
    with_retry_times,
    with_timeout,
    with_url,
)
from .query import encode

__version__ = "0.1.0"

__all__ = [
    "AsyncRayClient",
    "Defaults",
    "LoggerHandle",
    "OptionHandle",
    "Options",
    "RayBodyRewindError",
    "RayClient",
    "RayConfigurationError",
    "RayDecodeError",
    "RayError",
    "RayStatusError",
    "RayTimeoutError",
    "RayTransportError",
    "default_client",
    "do",
    "do_json",
    "do_retry",
    "do_stream",
    "encode",
    "format_trace",
    "get",
    "get_json",
    "new_options",
    "post_form",
    "post_form_json",
    "post_raw",
    "post_raw_json",
    "set_default_client",
    "set_default_proxy",
    "set_default_retry_times_and_timeout",
    "set_global_logger",
    "std_logger",
    "with_body",
    "with_body_s",
    "with_content_type",
    "with_header",
    "with_logger",
    "with_method",
    "with_proxy",
    "with_query",
    "with_retry_times",
    "with_timeout",
    "with_url",
]
