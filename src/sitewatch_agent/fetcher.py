"""HTTP retrieval and HTML/feed classification of tracked resources."""

import logging
import re
import time
from dataclasses import dataclass, field
from urllib.parse import urlsplit, urlunsplit

import httpx

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; SiteWatchAgent/1.0; +https://github.com/sitewatch-agent)"
NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}
DEFAULT_TIMEOUT = 30.0
CACHE_BUSTER_PARAM = "_cb"

# Substrings of the raw URL that mark an RSS/Atom resource (case-sensitive)
FEED_URL_MARKERS = (".xml", "/rss", "/feed", "/atom")

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


class InvalidUrlError(Exception):
    """Raised when user input cannot be turned into an absolute URL."""


class FetchError(Exception):
    """Raised when the origin answers with a non-2xx status."""

    def __init__(self, status: int, status_text: str = "") -> None:
        self.status = status
        self.status_text = status_text
        super().__init__(f"Failed to fetch website: {status} {status_text}".rstrip())


class NetworkError(Exception):
    """Raised on transport-level failures (DNS, TLS, timeout)."""


@dataclass
class FetchResult:
    """Raw response of a resource fetch."""

    url: str
    status: int
    body: str
    is_feed_like: bool
    headers: dict[str, str] = field(default_factory=dict)


def normalize_url(url: str) -> str:
    """Prepend https:// when the scheme is missing and validate the result.

    Raises:
        InvalidUrlError: If the URL has no host or contains whitespace.
    """
    candidate = (url or "").strip()
    if not _SCHEME_RE.match(candidate):
        candidate = f"https://{candidate}"

    try:
        parts = urlsplit(candidate)
        hostname = parts.hostname
    except ValueError:
        raise InvalidUrlError(f"Invalid URL: {url!r}")
    if not hostname or any(ch.isspace() for ch in candidate):
        raise InvalidUrlError(f"Invalid URL: {url!r}")
    return candidate


def is_feed_like(url: str, content_type: str = "") -> bool:
    """Classify a resource as RSS/Atom by content type or URL shape."""
    if "xml" in content_type.lower():
        return True
    return any(marker in url for marker in FEED_URL_MARKERS)


def add_cache_buster(url: str, now_ms: int | None = None) -> str:
    """Append a timestamp query parameter, keeping any existing query."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    parts = urlsplit(url)
    buster = f"{CACHE_BUSTER_PARAM}={now_ms}"
    query = f"{parts.query}&{buster}" if parts.query else buster
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


async def fetch(
    url: str,
    client: httpx.AsyncClient | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> FetchResult:
    """Fetch a resource with cache-defeating headers.

    Args:
        url: URL as entered by the user; normalized before use.
        client: Shared client. A short-lived one is created when omitted.
        timeout: Per-request timeout in seconds.

    Returns:
        FetchResult with the decoded body and its feed classification.

    Raises:
        InvalidUrlError: If the URL cannot be normalized.
        FetchError: On a non-2xx response.
        NetworkError: On DNS, TLS, connection or timeout failures.
    """
    normalized = normalize_url(url)
    request_url = add_cache_buster(normalized)
    headers = {"User-Agent": USER_AGENT, **NO_CACHE_HEADERS}

    if client is None:
        async with httpx.AsyncClient(follow_redirects=True, timeout=timeout) as own_client:
            return await _get(own_client, normalized, request_url, headers, timeout)
    return await _get(client, normalized, request_url, headers, timeout)


async def _get(
    client: httpx.AsyncClient,
    normalized: str,
    request_url: str,
    headers: dict[str, str],
    timeout: float,
) -> FetchResult:
    try:
        response = await client.get(
            request_url, headers=headers, follow_redirects=True, timeout=timeout
        )
    except httpx.InvalidURL as e:
        raise InvalidUrlError(f"Invalid URL: {normalized!r}") from e
    except httpx.TransportError as e:
        raise NetworkError(f"Could not reach {normalized}: {e}") from e

    if not response.is_success:
        raise FetchError(response.status_code, response.reason_phrase)

    content_type = response.headers.get("content-type", "")
    logger.debug("Fetched %s (%d, %s)", normalized, response.status_code, content_type)
    return FetchResult(
        url=normalized,
        status=response.status_code,
        body=response.text,
        is_feed_like=is_feed_like(normalized, content_type),
        headers=dict(response.headers),
    )
