"""Request trace hook."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from .security import mask_proxy_url, sanitize_headers

if TYPE_CHECKING:
    from .options import Options


LoggerHandle = Callable[["Options", "BaseException | None"], object]

trace_logger = logging.getLogger("rayhttp.trace")


def _body_snapshot(opts: "Options") -> str:
    # Reading must leave the stream rewound for the next attempt.
    opts.body.seek(0)
    data = opts.body.read()
    opts.body.seek(0)
    return data.decode(errors="replace")


def format_trace(opts: "Options", err: BaseException | None = None) -> str:
    """Render the multi-line trace written by :func:`std_logger`."""
    lines = ["rayhttp trace"]
    if opts.url:
        lines.append(f"url:{opts.url}")
    if opts.method:
        lines.append(f"method:{opts.method}")
    if opts.retry_times:
        lines.append(f"retry:{opts.retry_times}")
    if opts.timeout:
        lines.append(f"timeout:{opts.timeout}")
    if opts.content_type:
        lines.append(f"content-type:{opts.content_type}")
    if opts.query is not None:
        lines.append(f"query:{opts.query!r}")
    if opts.headers is not None:
        lines.append(f"header:{sanitize_headers(opts.headers)!r}")
    if opts.proxy:
        lines.append(f"proxy:{mask_proxy_url(opts.proxy)}")
    if err is not None:
        lines.append(f"error:{err}")
    if opts.body is not None:
        lines.append(f"body:{_body_snapshot(opts)}")
    lines.append(f"time:{datetime.now():%Y-%m-%d %H:%M:%S}")
    return "\n".join(lines)


def std_logger(opts: "Options", err: BaseException | None = None) -> None:
    """Default hook: write the request trace to the ``rayhttp.trace`` logger."""
    trace_logger.info(format_trace(opts, err))
