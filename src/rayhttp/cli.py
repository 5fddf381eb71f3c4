"""Command line entry point for one-off requests."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Sequence

from .client import RayClient
from .exceptions import RayError
from .options import (
    OptionHandle,
    with_body_s,
    with_content_type,
    with_header,
    with_method,
    with_proxy,
    with_query,
    with_retry_times,
    with_timeout,
    with_url,
)


def _parse_pairs(values: Sequence[str], sep: str, what: str) -> dict[str, str]:
    pairs: dict[str, str] = {}
    for raw in values:
        key, found, value = raw.partition(sep)
        if not found or not key.strip():
            raise argparse.ArgumentTypeError(f"invalid {what} {raw!r}, expected NAME{sep}VALUE")
        pairs[key.strip()] = value.strip()
    return pairs


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rayhttp", description="Send an HTTP request with retries.")
    parser.add_argument("url")
    parser.add_argument("-X", "--method", default="GET")
    parser.add_argument("-q", "--query", action="append", default=[], metavar="KEY=VALUE")
    parser.add_argument("-H", "--header", action="append", default=[], metavar="NAME: VALUE")
    parser.add_argument("-d", "--data", help="request body")
    parser.add_argument("--content-type", default="")
    parser.add_argument("--json", action="store_true", help="pretty-print a JSON response")
    parser.add_argument("--timeout", type=int)
    parser.add_argument("--retry-times", type=int)
    parser.add_argument("--proxy", default="")
    parser.add_argument("--trace", action="store_true", help="log the request trace to stderr")
    return parser


def _handles(args: argparse.Namespace) -> list[OptionHandle]:
    handles = [with_url(args.url), with_method(args.method.upper())]
    if args.query:
        handles.append(with_query(_parse_pairs(args.query, "=", "query")))
    if args.header:
        handles.append(with_header(_parse_pairs(args.header, ":", "header")))
    if args.data is not None:
        handles.append(with_body_s(args.data))
    if args.content_type:
        handles.append(with_content_type(args.content_type))
    if args.timeout is not None:
        handles.append(with_timeout(args.timeout))
    if args.retry_times is not None:
        handles.append(with_retry_times(args.retry_times))
    if args.proxy:
        handles.append(with_proxy(args.proxy))
    return handles


def _main(argv: Sequence[str] | None = None, *, client: RayClient | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        handles = _handles(args)
    except argparse.ArgumentTypeError as exc:
        parser.error(str(exc))

    if args.trace:
        logging.basicConfig(stream=sys.stderr, level=logging.INFO, format="%(message)s")

    owned = client is None
    client = client or RayClient()
    try:
        body = client.do_retry(client.new_options(*handles))
    except RayError as exc:
        print(f"request failed: {exc}", file=sys.stderr)
        return 1
    finally:
        if owned:
            client.close()

    if args.json:
        try:
            print(json.dumps(json.loads(body), indent=2, ensure_ascii=False))
        except ValueError as exc:
            print(f"response is not JSON: {exc}", file=sys.stderr)
            return 1
        return 0

    sys.stdout.write(body.decode(errors="replace"))
    return 0


def main() -> None:
    raise SystemExit(_main())
