"""Synchronous and asynchronous request clients."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from contextlib import nullcontext
from typing import Any, AsyncIterator, Awaitable, Callable, Iterator, Mapping, MutableMapping

import httpx
from pydantic import BaseModel

from .exceptions import (
    RayBodyRewindError,
    RayConfigurationError,
    RayDecodeError,
    RayError,
    RayStatusError,
    RayTimeoutError,
    RayTransportError,
)
from .logger import LoggerHandle, std_logger
from .options import (
    DEFAULT_RETRY_TIMES,
    DEFAULT_TIMEOUT,
    Defaults,
    OptionHandle,
    Options,
    new_options,
    with_body_s,
    with_content_type,
    with_header,
    with_method,
    with_query,
    with_url,
)
from .query import encode
from .security import mask_proxy_url


log = logging.getLogger("rayhttp")

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
JSON_CONTENT_TYPE = "application/json"

StreamHandler = Callable[[Iterator[str]], object]
AsyncStreamHandler = Callable[[AsyncIterator[str]], Awaitable[object]]

_RETRYABLE = (RayTransportError, RayStatusError)


def _int_from_env(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise RayConfigurationError(
            f"{name} must be an integer, got {raw!r}",
            site="rayhttp.client.env",
            cause=exc,
        ) from exc


def _request_handles(url: str, query: Any, headers: Any, *, site: str) -> list[OptionHandle]:
    handles = [with_url(url)]
    if query is not None:
        handles.append(with_query(query))
    if headers is not None:
        if not isinstance(headers, Mapping) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in headers.items()
        ):
            raise RayConfigurationError(
                f"header params type error, not a mapping of str to str,[header:]{headers!r}",
                site=site,
            )
        handles.append(with_header(headers))
    return handles


def _form_body(body: Any, *, site: str) -> str:
    if isinstance(body, str):
        return body
    try:
        return encode(body)
    except RayError as exc:
        exc.with_site(site)
        raise


def _json_body(body: Any, *, site: str) -> str:
    if isinstance(body, str):
        return body
    if isinstance(body, BaseModel):
        return body.model_dump_json(by_alias=True)
    try:
        return json.dumps(body)
    except (TypeError, ValueError) as exc:
        raise RayConfigurationError(f"body is not JSON serializable: {exc}", site=site, cause=exc) from exc


def _decode_json(body: bytes, data: Any = None, *, site: str) -> Any:
    """Decode ``body`` and fill ``data`` when it is a mapping, list or model class."""
    text = body.decode(errors="replace")
    try:
        if isinstance(data, type) and issubclass(data, BaseModel):
            return data.model_validate_json(body)
        decoded = json.loads(body)
    except ValueError as exc:
        raise RayDecodeError(f"{exc}, body:{text}", site=site, body=text, cause=exc) from exc

    if data is None:
        return decoded
    if isinstance(data, MutableMapping):
        if not isinstance(decoded, Mapping):
            raise RayDecodeError(f"expected a JSON object, body:{text}", site=site, body=text)
        data.update(decoded)
    elif isinstance(data, list):
        if not isinstance(decoded, list):
            raise RayDecodeError(f"expected a JSON array, body:{text}", site=site, body=text)
        data.extend(decoded)
    else:
        raise RayConfigurationError(
            f"unsupported decode destination {type(data).__name__}",
            site=site,
        )
    return decoded


def _transport_error(exc: httpx.RequestError, site: str) -> RayTransportError:
    # Covers decoding and redirect failures too, so they retry like network errors.
    if isinstance(exc, httpx.TimeoutException):
        return RayTimeoutError(f"request timed out: {exc}", site=site, cause=exc)
    return RayTransportError(f"{type(exc).__name__}: {exc}", site=site, cause=exc)


class _BaseRayClient:
    default_timeout = DEFAULT_TIMEOUT
    default_retry_times = DEFAULT_RETRY_TIMES

    def __init__(
        self,
        *,
        timeout: int | None = None,
        retry_times: int | None = None,
        proxy: str | None = None,
        logger: LoggerHandle | None = std_logger,
        timeout_env_var: str = "RAYHTTP_TIMEOUT",
        retry_times_env_var: str = "RAYHTTP_RETRY_TIMES",
        proxy_env_var: str = "RAYHTTP_PROXY",
    ) -> None:
        if timeout is None:
            timeout = _int_from_env(timeout_env_var)
        if retry_times is None:
            retry_times = _int_from_env(retry_times_env_var)
        self.defaults = Defaults(
            timeout=self.default_timeout if timeout is None else timeout,
            retry_times=max(1, self.default_retry_times if retry_times is None else retry_times),
            proxy=proxy if proxy is not None else os.getenv(proxy_env_var, ""),
            logger=logger,
        )
        self._client_kwargs = {"trust_env": False}

    def set_retry_times_and_timeout(self, timeout: int, retry_times: int) -> None:
        """Reset defaults for subsequent calls; ``retry_times`` below 1 becomes 1."""
        self.defaults.set_retry_times_and_timeout(timeout, retry_times)

    def set_proxy(self, proxy: str) -> None:
        self.defaults.set_proxy(proxy)

    def set_logger(self, logger: LoggerHandle | None) -> None:
        self.defaults.set_logger(logger)

    def new_options(self, *handles: OptionHandle) -> Options:
        return new_options(*handles, defaults=self.defaults)

    @staticmethod
    def _resolve_url(opts: Options, site: str) -> str:
        if not opts.url:
            raise RayConfigurationError("invalid url, url:", site=site)
        query = opts.query
        if query is None:
            return opts.url
        if not isinstance(query, str):
            try:
                query = encode(query)
            except RayError as exc:
                exc.with_site(f"{site}.query.encode")
                raise
        if not query:
            return opts.url
        return f"{opts.url}?{query}"

    @staticmethod
    def _deadline(opts: Options) -> float | None:
        """Wall-clock instant by which the attempt must finish; ``None`` for no timeout."""
        if opts.timeout > 0:
            return time.monotonic() + opts.timeout
        return None

    @staticmethod
    def _remaining(deadline: float | None, site: str) -> float | None:
        if deadline is None:
            return None
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise RayTimeoutError("request exceeded its deadline", site=site)
        return remaining

    @staticmethod
    def _timeout(remaining: float | None) -> httpx.Timeout:
        return httpx.Timeout(remaining)

    @staticmethod
    def _headers(opts: Options) -> list[tuple[str, str]]:
        headers = list((opts.headers or {}).items())
        if opts.content_type:
            headers.append(("Content-Type", opts.content_type))
        return headers

    @staticmethod
    def _content(opts: Options) -> bytes | None:
        if opts.body is None:
            return None
        return opts.body.read()

    def _proxy(self, opts: Options) -> str:
        return opts.proxy or self.defaults.proxy

    def _proxy_client_kwargs(self, proxy: str) -> dict[str, Any]:
        # Proxied traffic skips TLS verification; direct connections never do.
        return {**self._client_kwargs, "proxy": proxy, "verify": False}

    def _client_for(self, opts: Options, site: str):
        proxy = self._proxy(opts)
        if not proxy:
            return nullcontext(self._httpx)
        log.debug("routing %s %s through proxy %s", opts.method, opts.url, mask_proxy_url(proxy))
        try:
            return self._proxy_client(proxy)
        except (ValueError, httpx.InvalidURL) as exc:
            raise RayConfigurationError(
                f"invalid proxy {mask_proxy_url(proxy)}: {exc}",
                site=f"{site}.proxy.parse",
                cause=exc,
            ) from exc

    def _build_request(
        self,
        client: httpx.Client | httpx.AsyncClient,
        opts: Options,
        url: str,
        site: str,
        remaining: float | None,
    ) -> httpx.Request:
        content = self._content(opts)
        try:
            return client.build_request(
                opts.method,
                url,
                content=content,
                headers=self._headers(opts),
                timeout=self._timeout(remaining),
            )
        except (httpx.InvalidURL, ValueError) as exc:
            # Header values httpx cannot encode raise UnicodeEncodeError, a ValueError.
            raise RayConfigurationError(
                f"invalid request {opts.method} {url!r}: {exc}",
                site=f"{site}.request.new",
                cause=exc,
            ) from exc

    @staticmethod
    def _check_status(status_code: int, body: bytes, site: str) -> None:
        if status_code != 200:
            raise RayStatusError(status_code, body.decode(errors="replace"), site=f"{site}.resp.code")

    def _emit(self, opts: Options, err: BaseException | None) -> None:
        """Invoke the request logger; its failures never reach the caller."""
        logger = opts.logger if opts.logger is not None else self.defaults.logger
        if logger is None:
            return
        try:
            logger(opts, err)
        except Exception:
            log.debug("request logger failed for %s %s", opts.method, opts.url, exc_info=True)

    @staticmethod
    def _rewind(opts: Options) -> None:
        if opts.body is None:
            return
        try:
            opts.body.seek(0)
        except (OSError, ValueError) as exc:
            raise RayBodyRewindError(
                f"failed to rewind request body: {exc}",
                site="rayhttp.request.doretry.body.seek",
                cause=exc,
            ) from exc

    @staticmethod
    def _log_retry(opts: Options, attempt: int, exc: RayError) -> None:
        log.debug(
            "attempt %d/%d for %s %s failed, retrying: %s",
            attempt,
            opts.retry_times,
            opts.method,
            opts.url,
            exc,
        )

    @staticmethod
    def _get_handles(url: str, query: Any, headers: Any, site: str) -> list[OptionHandle]:
        return _request_handles(url, query, headers, site=f"{site}.option")

    @staticmethod
    def _post_form_handles(url: str, body: Any, query: Any, headers: Any, site: str) -> list[OptionHandle]:
        handles = _request_handles(url, query, headers, site=f"{site}.option")
        handles.append(with_method("POST"))
        if body is not None:
            handles.append(with_body_s(_form_body(body, site=f"{site}.body.encode")))
            handles.append(with_content_type(FORM_CONTENT_TYPE))
        return handles

    @staticmethod
    def _post_raw_handles(url: str, body: Any, query: Any, headers: Any, site: str) -> list[OptionHandle]:
        handles = _request_handles(url, query, headers, site=f"{site}.option")
        handles.append(with_method("POST"))
        if body is not None:
            handles.append(with_body_s(_json_body(body, site=f"{site}.body.marshal")))
            handles.append(with_content_type(JSON_CONTENT_TYPE))
        return handles


class RayClient(_BaseRayClient):
    """Synchronous client."""

    def __init__(
        self,
        *,
        timeout: int | None = None,
        retry_times: int | None = None,
        proxy: str | None = None,
        logger: LoggerHandle | None = std_logger,
        httpx_client: httpx.Client | None = None,
    ) -> None:
        super().__init__(timeout=timeout, retry_times=retry_times, proxy=proxy, logger=logger)
        self._httpx = httpx_client or httpx.Client(**self._client_kwargs)

    def __enter__(self) -> "RayClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._httpx.close()

    def _proxy_client(self, proxy: str) -> httpx.Client:
        return httpx.Client(**self._proxy_client_kwargs(proxy))

    def _send(
        self,
        client: httpx.Client,
        opts: Options,
        url: str,
        site: str,
        deadline: float | None,
    ) -> httpx.Response:
        # httpx timeouts apply per phase, so each one is clipped to what is left.
        request = self._build_request(client, opts, url, site, self._remaining(deadline, f"{site}.request"))
        try:
            return client.send(request, stream=True)
        except httpx.RequestError as exc:
            raise _transport_error(exc, f"{site}.request") from exc

    def _read(self, response: httpx.Response, deadline: float | None, site: str) -> bytes:
        chunks = []
        try:
            for chunk in response.iter_bytes():
                chunks.append(chunk)
                self._remaining(deadline, site)
        except httpx.RequestError as exc:
            raise _transport_error(exc, site) from exc
        return b"".join(chunks)

    def _lines(self, response: httpx.Response, deadline: float | None, site: str) -> Iterator[str]:
        for line in response.iter_lines():
            self._remaining(deadline, site)
            yield line

    def _attempt(self, opts: Options, *, log_attempt: bool, site: str = "rayhttp.request.do") -> bytes:
        url = self._resolve_url(opts, site)
        deadline = self._deadline(opts)
        try:
            with self._client_for(opts, site) as client:
                response = self._send(client, opts, url, site, deadline)
                try:
                    body = self._read(response, deadline, f"{site}.resp.body.readall")
                finally:
                    response.close()
                self._check_status(response.status_code, body, site)
        except RayConfigurationError:
            raise
        except RayError as exc:
            if log_attempt:
                self._emit(opts, exc)
            raise
        if log_attempt:
            self._emit(opts, None)
        return body

    def _retry(self, opts: Options, *, log_attempt: bool) -> bytes:
        attempt = 0
        while True:
            attempt += 1
            try:
                return self._attempt(opts, log_attempt=log_attempt)
            except _RETRYABLE as exc:
                if attempt >= opts.retry_times:
                    raise
                self._log_retry(opts, attempt, exc)
            self._rewind(opts)

    def _call(self, handles: list[OptionHandle], site: str) -> bytes:
        opts = self.new_options(*handles)
        try:
            body = self._retry(opts, log_attempt=False)
        except RayConfigurationError as exc:
            exc.with_site(site)
            raise
        except RayError as exc:
            self._emit(opts, exc)
            exc.with_site(site)
            raise
        self._emit(opts, None)
        return body

    def do(self, opts: Options) -> bytes:
        """Perform a single attempt and return the buffered response body.

        The request logger runs once for this attempt, success or failure.
        """
        return self._attempt(opts, log_attempt=True)

    def do_retry(self, opts: Options) -> bytes:
        """Attempt up to ``opts.retry_times`` times, rewinding the body in between.

        Transport and status failures are retried alike; configuration errors
        are raised immediately. The last attempt's error is raised when the
        budget runs out. The request logger runs once per attempt.
        """
        return self._retry(opts, log_attempt=True)

    def do_json(self, opts: Options, data: Any = None) -> Any:
        try:
            body = self.do_retry(opts)
        except RayError as exc:
            exc.with_site("rayhttp.request.dojson")
            raise
        return _decode_json(body, data, site="rayhttp.request.dojson.unmarshal")

    def do_stream(self, opts: Options, handler: StreamHandler) -> None:
        """Send one request and hand the open response lines to ``handler``.

        There is no retry: the handler may already have consumed part of the
        stream when a failure happens.
        """
        site = "rayhttp.request.dostream"
        deadline = self._deadline(opts)
        try:
            url = self._resolve_url(opts, site)
            with self._client_for(opts, site) as client:
                response = self._send(client, opts, url, site, deadline)
                try:
                    if response.status_code != 200:
                        self._check_status(response.status_code, self._read(response, deadline, f"{site}.resp.read"), site)
                    handler(self._lines(response, deadline, f"{site}.resp.read"))
                except httpx.RequestError as exc:
                    raise _transport_error(exc, f"{site}.resp.read") from exc
                except RayError as exc:
                    if exc.site is None or not exc.site.startswith(site):
                        exc.with_site(f"{site}.handfn")
                    raise
                except Exception as exc:
                    raise RayError(f"stream handler failed: {exc}", site=f"{site}.handfn", cause=exc) from exc
                finally:
                    response.close()
        except RayConfigurationError:
            raise
        except RayError as exc:
            self._emit(opts, exc)
            raise
        self._emit(opts, None)

    def get(self, url: str, query: Any = None, headers: Mapping[str, str] | None = None) -> bytes:
        handles = self._get_handles(url, query, headers, "rayhttp.request.get")
        return self._call(handles, "rayhttp.request.get.do")

    def get_json(
        self,
        url: str,
        data: Any = None,
        query: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        try:
            body = self.get(url, query, headers)
        except RayError as exc:
            exc.with_site("rayhttp.request.getjson.get")
            raise
        return _decode_json(body, data, site="rayhttp.request.getjson.unmarshal")

    def post_form(self, url: str, body: Any, query: Any = None, headers: Mapping[str, str] | None = None) -> bytes:
        handles = self._post_form_handles(url, body, query, headers, "rayhttp.request.postform")
        return self._call(handles, "rayhttp.request.postform.do")

    def post_form_json(
        self,
        url: str,
        body: Any,
        data: Any = None,
        query: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        try:
            buf = self.post_form(url, body, query, headers)
        except RayError as exc:
            exc.with_site("rayhttp.request.postformjson")
            raise
        return _decode_json(buf, data, site="rayhttp.request.postformjson.unmarshal")

    def post_raw(self, url: str, body: Any, query: Any = None, headers: Mapping[str, str] | None = None) -> bytes:
        handles = self._post_raw_handles(url, body, query, headers, "rayhttp.request.postraw")
        return self._call(handles, "rayhttp.request.postraw.do")

    def post_raw_json(
        self,
        url: str,
        body: Any,
        data: Any = None,
        query: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        try:
            buf = self.post_raw(url, body, query, headers)
        except RayError as exc:
            exc.with_site("rayhttp.request.postrawjson")
            raise
        return _decode_json(buf, data, site="rayhttp.request.postrawjson.unmarshal")


class AsyncRayClient(_BaseRayClient):
    """Asynchronous client."""

    def __init__(
        self,
        *,
        timeout: int | None = None,
        retry_times: int | None = None,
        proxy: str | None = None,
        logger: LoggerHandle | None = std_logger,
        httpx_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(timeout=timeout, retry_times=retry_times, proxy=proxy, logger=logger)
        self._httpx = httpx_client or httpx.AsyncClient(**self._client_kwargs)

    async def __aenter__(self) -> "AsyncRayClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._httpx.aclose()

    def _proxy_client(self, proxy: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(**self._proxy_client_kwargs(proxy))

    @staticmethod
    async def _within_deadline(exchange: Awaitable[Any], opts: Options, site: str) -> Any:
        """Await ``exchange``, cancelling it once ``opts.timeout`` seconds have passed."""
        if opts.timeout <= 0:
            return await exchange
        try:
            return await asyncio.wait_for(exchange, opts.timeout)
        except asyncio.TimeoutError as exc:
            raise RayTimeoutError(
                f"request exceeded its {opts.timeout}s deadline",
                site=site,
                cause=exc,
            ) from exc

    async def _send(self, client: httpx.AsyncClient, opts: Options, url: str, site: str) -> httpx.Response:
        remaining = float(opts.timeout) if opts.timeout > 0 else None
        request = self._build_request(client, opts, url, site, remaining)
        try:
            return await client.send(request, stream=True)
        except httpx.RequestError as exc:
            raise _transport_error(exc, f"{site}.request") from exc

    async def _exchange(self, opts: Options, url: str, site: str) -> tuple[int, bytes]:
        async with self._client_for(opts, site) as client:
            response = await self._send(client, opts, url, site)
            try:
                body = await response.aread()
            except httpx.RequestError as exc:
                raise _transport_error(exc, f"{site}.resp.body.readall") from exc
            finally:
                await response.aclose()
        return response.status_code, body

    async def _attempt(self, opts: Options, *, log_attempt: bool, site: str = "rayhttp.request.do") -> bytes:
        url = self._resolve_url(opts, site)
        try:
            status_code, body = await self._within_deadline(
                self._exchange(opts, url, site), opts, f"{site}.resp.body.readall"
            )
            self._check_status(status_code, body, site)
        except RayConfigurationError:
            raise
        except RayError as exc:
            if log_attempt:
                self._emit(opts, exc)
            raise
        if log_attempt:
            self._emit(opts, None)
        return body

    async def _retry(self, opts: Options, *, log_attempt: bool) -> bytes:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._attempt(opts, log_attempt=log_attempt)
            except _RETRYABLE as exc:
                if attempt >= opts.retry_times:
                    raise
                self._log_retry(opts, attempt, exc)
            self._rewind(opts)

    async def _call(self, handles: list[OptionHandle], site: str) -> bytes:
        opts = self.new_options(*handles)
        try:
            body = await self._retry(opts, log_attempt=False)
        except RayConfigurationError as exc:
            exc.with_site(site)
            raise
        except RayError as exc:
            self._emit(opts, exc)
            exc.with_site(site)
            raise
        self._emit(opts, None)
        return body

    async def do(self, opts: Options) -> bytes:
        return await self._attempt(opts, log_attempt=True)

    async def do_retry(self, opts: Options) -> bytes:
        return await self._retry(opts, log_attempt=True)

    async def do_json(self, opts: Options, data: Any = None) -> Any:
        try:
            body = await self.do_retry(opts)
        except RayError as exc:
            exc.with_site("rayhttp.request.dojson")
            raise
        return _decode_json(body, data, site="rayhttp.request.dojson.unmarshal")

    async def _stream(self, opts: Options, url: str, handler: AsyncStreamHandler, site: str) -> None:
        async with self._client_for(opts, site) as client:
            response = await self._send(client, opts, url, site)
            try:
                if response.status_code != 200:
                    self._check_status(response.status_code, await response.aread(), site)
                await handler(response.aiter_lines())
            except httpx.RequestError as exc:
                raise _transport_error(exc, f"{site}.resp.read") from exc
            except RayError as exc:
                if exc.site is None or not exc.site.startswith(site):
                    exc.with_site(f"{site}.handfn")
                raise
            except Exception as exc:
                raise RayError(f"stream handler failed: {exc}", site=f"{site}.handfn", cause=exc) from exc
            finally:
                await response.aclose()

    async def do_stream(self, opts: Options, handler: AsyncStreamHandler) -> None:
        site = "rayhttp.request.dostream"
        try:
            url = self._resolve_url(opts, site)
            await self._within_deadline(self._stream(opts, url, handler, site), opts, f"{site}.resp.read")
        except RayConfigurationError:
            raise
        except RayError as exc:
            self._emit(opts, exc)
            raise
        self._emit(opts, None)

    async def get(self, url: str, query: Any = None, headers: Mapping[str, str] | None = None) -> bytes:
        handles = self._get_handles(url, query, headers, "rayhttp.request.get")
        return await self._call(handles, "rayhttp.request.get.do")

    async def get_json(
        self,
        url: str,
        data: Any = None,
        query: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        try:
            body = await self.get(url, query, headers)
        except RayError as exc:
            exc.with_site("rayhttp.request.getjson.get")
            raise
        return _decode_json(body, data, site="rayhttp.request.getjson.unmarshal")

    async def post_form(self, url: str, body: Any, query: Any = None, headers: Mapping[str, str] | None = None) -> bytes:
        handles = self._post_form_handles(url, body, query, headers, "rayhttp.request.postform")
        return await self._call(handles, "rayhttp.request.postform.do")

    async def post_form_json(
        self,
        url: str,
        body: Any,
        data: Any = None,
        query: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        try:
            buf = await self.post_form(url, body, query, headers)
        except RayError as exc:
            exc.with_site("rayhttp.request.postformjson")
            raise
        return _decode_json(buf, data, site="rayhttp.request.postformjson.unmarshal")

    async def post_raw(self, url: str, body: Any, query: Any = None, headers: Mapping[str, str] | None = None) -> bytes:
        handles = self._post_raw_handles(url, body, query, headers, "rayhttp.request.postraw")
        return await self._call(handles, "rayhttp.request.postraw.do")

    async def post_raw_json(
        self,
        url: str,
        body: Any,
        data: Any = None,
        query: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        try:
            buf = await self.post_raw(url, body, query, headers)
        except RayError as exc:
            exc.with_site("rayhttp.request.postrawjson")
            raise
        return _decode_json(buf, data, site="rayhttp.request.postrawjson.unmarshal")
