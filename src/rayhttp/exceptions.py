"""rayhttp exceptions."""

from __future__ import annotations


class RayError(Exception):
    """Base exception for all rayhttp failures.

    ``sites`` is the trail of call-site identifiers the error passed through,
    innermost first, so a failure can be traced to the originating operation
    without a stack trace.
    """

    def __init__(
        self,
        message: str,
        *,
        site: str | None = None,
        status_code: int | None = None,
        body: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.sites: list[str] = [site] if site else []
        self.status_code = status_code
        self.body = body
        self.cause = cause

    @property
    def site(self) -> str | None:
        return self.sites[0] if self.sites else None

    def with_site(self, site: str) -> "RayError":
        """Record an outer call site and return the same error for re-raising."""
        self.sites.append(site)
        return self

    def __str__(self) -> str:
        parts = list(reversed(self.sites))
        parts.append(self.message)
        return ": ".join(parts)


class RayConfigurationError(RayError):
    """Raised for invalid call configuration; never retried."""


class RayTransportError(RayError):
    """Raised for transport-level failures like DNS, TCP and TLS errors."""


class RayTimeoutError(RayTransportError):
    """Raised when an attempt exceeds its timeout."""


class RayStatusError(RayError):
    """Raised for any response status other than 200."""

    def __init__(self, status_code: int, body: str, *, site: str | None = None) -> None:
        super().__init__(
            f"[code]{status_code},[body]\n{body}",
            site=site,
            status_code=status_code,
            body=body,
        )


class RayDecodeError(RayError):
    """Raised when a response body cannot be decoded as JSON."""


class RayBodyRewindError(RayError):
    """Raised when the request body cannot be rewound before a retry."""
