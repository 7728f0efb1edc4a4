"""Bounded, redirect-following HTTP fetcher.

Every hop is re-validated against the SSRF guard, redirects are followed by
hand (never by the transport), each attempt runs under its own deadline and
the body is streamed with a hard byte ceiling. All failures come back as a
``FetchResult`` carrying a ``FetchError`` code; nothing is raised for
ordinary network outcomes.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from urllib.parse import urljoin

import httpx

from ingest.config import settings
from ingest.core.executor import run_blocking
from ingest.core.metrics import (
    fetch_bytes_total,
    fetch_duration_seconds,
    fetch_requests_total,
)
from ingest.core.rate_limiter import check_rate_limit
from ingest.schemas.fetch import (
    HTTP_ERROR,
    INVALID_URL,
    NETWORK_ERROR,
    REDIRECT_LOOP,
    ROBOTS_BLOCKED,
    SIZE_LIMIT,
    TIMEOUT,
    TOO_MANY_REDIRECTS,
    FetchOptions,
    FetchResult,
)
from ingest.services.charset import decode_body
from ingest.services.robots import get_robots_rules, is_path_allowed
from ingest.services.url_guard import redact_url, validate_url

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
}


@dataclass(frozen=True)
class _Redirect:
    location: str
    status_code: int


async def _attempt(
    client: httpx.AsyncClient,
    url: str,
    options: FetchOptions,
    chain: list[str],
) -> FetchResult | _Redirect:
    """One GET with transport redirects disabled. Caller enforces the deadline."""
    ceiling = options.byte_ceiling
    headers = {**DEFAULT_HEADERS, "User-Agent": options.user_agent}

    async with client.stream(
        "GET", url, headers=headers, follow_redirects=False, timeout=options.timeout_seconds
    ) as response:
        status = response.status_code

        if 300 <= status < 400:
            location = response.headers.get("location")
            if not location:
                return FetchResult.failure(
                    url, HTTP_ERROR, "Redirect without location header", chain, status
                )
            return _Redirect(location=location, status_code=status)

        if not response.is_success:
            return FetchResult.failure(
                url, HTTP_ERROR, f"HTTP {status}: {response.reason_phrase}", chain, status
            )

        declared = response.headers.get("content-length", "").strip()
        if declared.isdigit() and int(declared) > ceiling:
            return FetchResult.failure(
                url,
                SIZE_LIMIT,
                f"Content too large: {declared} bytes (max: {ceiling})",
                chain,
            )

        chunks: list[bytes] = []
        total = 0
        async for chunk in response.aiter_bytes():
            total += len(chunk)
            if total > ceiling:
                fetch_bytes_total.inc(total)
                # Leaving the context manager closes the connection mid-stream
                return FetchResult.failure(
                    url, SIZE_LIMIT, f"Content exceeded {ceiling} bytes during download", chain
                )
            chunks.append(chunk)
        content_type = response.headers.get("content-type")

    fetch_bytes_total.inc(total)
    decoded = await run_blocking(decode_body, b"".join(chunks), content_type)
    return FetchResult(
        success=True,
        html=decoded.text,
        url=url,
        redirect_chain=tuple(chain),
        charset=decoded.charset,
        charset_confident=decoded.confident,
        content_type=content_type,
        bytes_read=total,
    )


async def _follow(
    client: httpx.AsyncClient, start_url: str, options: FetchOptions
) -> FetchResult:
    chain: list[str] = []
    visited: set[str] = set()
    current = start_url

    while True:
        if current in visited:
            return FetchResult.failure(current, REDIRECT_LOOP, "Redirect loop detected", chain)
        visited.add(current)

        check = validate_url(current)
        if not check.valid:
            message = check.error if not chain else f"Redirect target rejected: {check.error}"
            return FetchResult.failure(current, check.code, message, chain)

        try:
            outcome = await asyncio.wait_for(
                _attempt(client, current, options, chain),
                timeout=options.timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return FetchResult.failure(
                current, TIMEOUT, f"Request timed out after {options.timeout_ms}ms", chain
            )
        except httpx.InvalidURL as e:
            return FetchResult.failure(current, INVALID_URL, str(e), chain)
        except httpx.HTTPError as e:
            return FetchResult.failure(
                current, NETWORK_ERROR, str(e) or type(e).__name__, chain
            )

        if isinstance(outcome, FetchResult):
            return outcome

        if not options.follow_redirects:
            return FetchResult.failure(
                current,
                HTTP_ERROR,
                f"HTTP {outcome.status_code}: redirect not followed",
                chain,
                outcome.status_code,
            )

        chain.append(current)
        current = urljoin(current, outcome.location)
        if len(chain) > settings.MAX_REDIRECTS:
            return FetchResult.failure(
                current,
                TOO_MANY_REDIRECTS,
                f"Exceeded {settings.MAX_REDIRECTS} redirects",
                chain,
            )


async def _fetch(
    url: str,
    options: FetchOptions,
    client_id: str | None,
    store,
    client: httpx.AsyncClient,
) -> FetchResult:
    check = validate_url(url)
    if not check.valid:
        return FetchResult.failure(url, check.code, check.error)

    domain = check.url.hostname

    if client_id:
        limit = await check_rate_limit(client_id, domain, store=store)
        if not limit.allowed:
            return FetchResult(success=False, url=url, error=limit.error)

    if options.check_robots:
        rules = await get_robots_rules(domain, store=store, client=client)
        if not is_path_allowed(check.url.path or "/", rules):
            return FetchResult.failure(url, ROBOTS_BLOCKED, "Blocked by robots.txt")

    return await _follow(client, url, options)


async def fetch_url(
    url: str,
    options: FetchOptions | None = None,
    client_id: str | None = None,
    *,
    store=None,
    client: httpx.AsyncClient | None = None,
) -> FetchResult:
    """
    Fetch *url* under the full set of guards.

    Order: URL validation, rate limit (only with *client_id*), robots.txt
    (unless ``check_robots`` is off), then the redirect loop. *store* is the
    shared key-value store (defaults to the Redis singleton) and *client* an
    httpx.AsyncClient to reuse; one is created per call when omitted.
    """
    options = options or FetchOptions()
    start = time.monotonic()

    if client is None:
        async with httpx.AsyncClient() as own_client:
            result = await _fetch(url, options, client_id, store, own_client)
    else:
        result = await _fetch(url, options, client_id, store, client)

    elapsed = time.monotonic() - start
    fetch_duration_seconds.observe(elapsed)
    outcome = "success" if result.success else result.error.code
    fetch_requests_total.labels(outcome=outcome).inc()

    if result.success:
        logger.debug(
            f"Fetched {redact_url(result.url)} ({result.bytes_read} bytes, "
            f"{len(result.redirect_chain)} redirects, {elapsed:.2f}s)"
        )
    else:
        logger.info(
            f"Fetch failed for {redact_url(url)}: {result.error.code} {result.error.message}"
        )
    return result
