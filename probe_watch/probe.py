from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from urllib.parse import urlsplit

import httpx

from probe_watch import __version__
from probe_watch.models import EndpointCheck, Job, ProbeOutcome


DEFAULT_USER_AGENT = f"probe-watch v{__version__}"


class SetupError(ValueError):
    """A job cannot be probed with the configured client policy."""


@dataclass(frozen=True)
class ClientSettings:
    # The log column for elapsed milliseconds is six wide, so keep this below 999s.
    request_timeout: float = 30.0
    pool_idle_timeout: float = 5.0
    https_only: bool = True
    user_agent: str = DEFAULT_USER_AGENT


def validate_job(job: Job, *, https_only: bool = True) -> None:
    for check in job.checks:
        where = f"{job.name}/{check.name}"
        try:
            parts = urlsplit(check.url)
            # httpx is stricter than urlsplit (ports, brackets, control characters).
            httpx.URL(check.url).port
        except (httpx.InvalidURL, ValueError) as e:
            raise SetupError(f"{where}: invalid URL {check.url!r}: {e}") from e
        if not parts.scheme or not parts.netloc:
            raise SetupError(f"{where}: not an absolute URL: {check.url!r}")
        if https_only and parts.scheme.lower() != "https":
            raise SetupError(f"{where}: HTTPS is required, got {check.url!r}")
        if parts.scheme.lower() not in ("http", "https"):
            raise SetupError(f"{where}: unsupported scheme {parts.scheme!r}")


async def _refuse_plaintext(request: httpx.Request) -> None:
    # Also covers redirect hops, which never pass through validate_job.
    if request.url.scheme != "https":
        raise httpx.UnsupportedProtocol(f"Refusing plaintext request to {request.url}", request=request)


def build_client(
    job: Job,
    settings: ClientSettings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    validate_job(job, https_only=settings.https_only)

    event_hooks: dict[str, list] = {"request": [], "response": []}
    if settings.https_only:
        event_hooks["request"].append(_refuse_plaintext)

    return httpx.AsyncClient(
        follow_redirects=True,
        max_redirects=int(job.max_redirects),
        # Per phase limits; execute_probe enforces the overall deadline.
        timeout=httpx.Timeout(settings.request_timeout),
        limits=httpx.Limits(keepalive_expiry=settings.pool_idle_timeout),
        headers={"User-Agent": settings.user_agent},
        event_hooks=event_hooks,
        transport=transport,
    )


async def _fetch_status(check: EndpointCheck, client: httpx.AsyncClient) -> int:
    # Headers are enough; the body is never downloaded.
    async with client.stream("GET", check.url) as resp:
        return resp.status_code


async def execute_probe(
    check: EndpointCheck,
    client: httpx.AsyncClient,
    *,
    deadline: float | None = None,
) -> ProbeOutcome:
    """
    One GET. ``deadline`` bounds the whole request including redirect hops and
    defaults to the client's read timeout.
    """
    if deadline is None:
        deadline = client.timeout.read

    status_code: int | None
    error: str | None = None

    started = time.perf_counter()
    try:
        status_code = await asyncio.wait_for(_fetch_status(check, client), timeout=deadline)
        duration = time.perf_counter() - started
    except httpx.HTTPStatusError as e:
        duration = time.perf_counter() - started
        status_code = e.response.status_code
        error = f"{type(e).__name__}: {e}"
    except httpx.HTTPError as e:
        duration = time.perf_counter() - started
        status_code = None
        error = f"{type(e).__name__}: {e}"
    except asyncio.TimeoutError:
        duration = time.perf_counter() - started
        status_code = None
        error = f"TimeoutError: no response within {deadline}s"

    return ProbeOutcome(
        timestamp=int(time.time()),
        duration=duration,
        status_code=status_code,
        error=error,
    )
