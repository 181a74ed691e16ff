"""Upstream fetching with manual redirect handling.

Redirects are followed here rather than by httpx so that every hop can be
logged and the chain capped; some IPTV origins bounce through several
load-balancer hosts before serving anything.
"""

import logging
from typing import AsyncIterator, NamedTuple, Optional
from urllib.parse import urljoin

import httpx

from .config import StreamConfig
from .errors import RedirectMissingLocation, TooManyRedirects, UpstreamError

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = {301, 302, 303, 307, 308}


class FetchResult(NamedTuple):
    response: httpx.Response
    url: str
    hops: int


def create_client(config: StreamConfig) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        headers=config.request_headers(),
        timeout=httpx.Timeout(config.timeout_seconds),
        follow_redirects=False,
    )


async def _error_body(response: httpx.Response, limit: int) -> str:
    try:
        await response.aread()
        return response.text[:limit]
    except (httpx.HTTPError, UnicodeDecodeError):
        return ""


async def fetch_with_redirects(
    client: httpx.AsyncClient,
    url: str,
    config: StreamConfig,
) -> FetchResult:
    """GET ``url``, following up to ``config.max_redirects`` redirects by hand.

    Returns the final response unread (streaming); the caller closes it.
    Raises ``RedirectMissingLocation``, ``TooManyRedirects`` or
    ``UpstreamError``; transport errors propagate as ``httpx.HTTPError``.
    """
    headers = config.request_headers()
    current = url
    hops = 0
    while True:
        request = client.build_request("GET", current, headers=headers)
        response = await client.send(request, stream=True, follow_redirects=False)

        if response.status_code in REDIRECT_STATUSES:
            location = response.headers.get("location")
            await response.aclose()
            if not location:
                raise RedirectMissingLocation(current, response.status_code)
            if hops >= config.max_redirects:
                logger.warning("Giving up on %s after %d redirects", url, hops)
                raise TooManyRedirects(url, config.max_redirects)
            hops += 1
            next_url = urljoin(current, location)
            logger.debug("Redirect %d: %s -> %s (%d)", hops, current, next_url, response.status_code)
            current = next_url
            continue

        if not response.is_success:
            body = await _error_body(response, config.error_body_limit)
            await response.aclose()
            logger.warning("Upstream %s returned %d", current, response.status_code)
            raise UpstreamError(response.status_code, body)

        if hops:
            logger.info("Fetched %s after %d redirect(s)", current, hops)
        return FetchResult(response, current, hops)


async def iter_body(response: httpx.Response, chunk_size: Optional[int] = None) -> AsyncIterator[bytes]:
    """Stream a response body, closing it even when the consumer goes away."""
    try:
        async for chunk in response.aiter_bytes(chunk_size=chunk_size):
            yield chunk
    finally:
        await response.aclose()
