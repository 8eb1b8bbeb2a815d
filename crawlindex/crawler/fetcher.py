"""
Web page fetcher: one bounded HTTP GET per call, classified into a fetch outcome.
"""

import asyncio
import aiohttp
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Optional, Dict, Tuple
from urllib.parse import urldefrag, urljoin, urlparse
from dataclasses import dataclass
from aiohttp import ClientSession, ClientTimeout, ClientError


class OutcomeKind(Enum):
    """How a single crawl attempt for a URL ended."""
    SUCCESS = "success"
    DISALLOWED = "disallowed"
    NOT_FOUND = "not_found"
    TRANSIENT_FAILURE = "transient_failure"
    UNSUPPORTED_CONTENT_TYPE = "unsupported_content_type"


# Statuses worth another attempt later.
TRANSIENT_STATUSES = {408, 425, 429}

REDIRECT_STATUSES = {301, 302, 303, 307, 308}
MAX_REDIRECTS = 10

READ_CHUNK_SIZE = 8192


@dataclass
class FetchResult:
    """Outcome of one GET: the body on success, the reason otherwise."""
    url: str
    kind: OutcomeKind
    status_code: int = 0
    content: bytes = b''
    content_type: Optional[str] = None
    final_url: Optional[str] = None
    error: Optional[str] = None
    fetch_time: float = 0.0

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @property
    def base_url(self) -> str:
        """URL that relative links on the page resolve against."""
        return self.final_url or self.url


def classify_status(status: int) -> OutcomeKind:
    """Map the HTTP status of a final (non-redirect) response to an outcome kind."""
    if 200 <= status < 300:
        return OutcomeKind.SUCCESS
    if status in TRANSIENT_STATUSES or status >= 500:
        return OutcomeKind.TRANSIENT_FAILURE
    return OutcomeKind.NOT_FOUND


def decode_text(content: bytes, charset: Optional[str]) -> str:
    """Decode a body with its declared charset, falling back to utf-8 for unknown ones."""
    try:
        return content.decode(charset or 'utf-8', errors='replace')
    except LookupError:
        return content.decode('utf-8', errors='replace')


class BodyTooLarge(Exception):
    """The response body exceeds the configured size limit."""
    pass


class WebFetcher:
    """
    Shared aiohttp session for crawl fetches and robots.txt lookups, with a
    cap on concurrent requests, a total per-request timeout and a body size
    limit.
    """

    def __init__(self, user_agent: str, request_timeout: int = 30,
                 max_concurrent_requests: int = 10,
                 max_content_bytes: int = 10 * 1024 * 1024):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.max_concurrent_requests = max_concurrent_requests
        self.max_content_bytes = max_content_bytes

        self.logger = logging.getLogger(__name__)

        self.session: Optional[ClientSession] = None
        self.semaphore = asyncio.Semaphore(max_concurrent_requests)

        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'total_bytes_downloaded': 0
        }

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Open the HTTP session."""
        if self.session is not None:
            return
        self.session = aiohttp.ClientSession(
            timeout=ClientTimeout(total=self.request_timeout),
            headers={'User-Agent': self.user_agent},
            connector=aiohttp.TCPConnector(
                limit=self.max_concurrent_requests * 2,
                limit_per_host=10,
                ttl_dns_cache=300
            )
        )
        self.logger.info(f"HTTP session opened (timeout {self.request_timeout}s, "
                         f"{self.max_concurrent_requests} concurrent requests)")

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.info("HTTP session closed")

    async def fetch(self, url: str,
                    may_follow: Optional[Callable[[str], Awaitable[bool]]] = None) -> FetchResult:
        """
        GET ``url`` and classify the response.

        Redirects are followed one hop at a time, at most ``MAX_REDIRECTS``
        of them. When ``may_follow`` is given every hop target is checked
        with it first, and a refused hop ends the fetch as ``DISALLOWED``
        without requesting the target.

        Never raises for network or HTTP problems: the returned
        ``FetchResult.kind`` tells the caller whether to use, retry or drop
        the page.
        """
        if self.session is None:
            await self.start()

        started = time.monotonic()
        current = url
        for _ in range(MAX_REDIRECTS + 1):
            result, location = await self._fetch_hop(url, current)
            if location is None:
                break
            if urlparse(location).scheme not in ('http', 'https'):
                result = FetchResult(url, OutcomeKind.NOT_FOUND, final_url=location,
                                     error=f"Redirect to unsupported URL {location}")
                break
            if may_follow is not None and not await may_follow(location):
                self.logger.debug(f"Not following redirect from {current} to {location}")
                result = FetchResult(url, OutcomeKind.DISALLOWED, final_url=location,
                                     error=f"Redirect to disallowed URL {location}")
                break
            current = location
        else:
            self.logger.warning(f"Too many redirects fetching {url}")
            result = FetchResult(url, OutcomeKind.NOT_FOUND, final_url=current,
                                 error=f"More than {MAX_REDIRECTS} redirects")

        result.fetch_time = time.monotonic() - started
        if result.ok:
            self.stats['successful_requests'] += 1
            self.stats['total_bytes_downloaded'] += len(result.content)
        elif result.kind is not OutcomeKind.DISALLOWED:
            self.stats['failed_requests'] += 1
        return result

    async def _fetch_hop(self, url: str, current: str) -> Tuple[Optional[FetchResult], Optional[str]]:
        """
        One request without following redirects.

        Returns:
            (result, None) when the response is final, (None, target) when it
            redirects to ``target``
        """
        async with self.semaphore:
            self.stats['total_requests'] += 1
            try:
                async with self.session.get(current, allow_redirects=False) as response:
                    location = response.headers.get('Location')
                    if response.status in REDIRECT_STATUSES and location:
                        return None, urldefrag(urljoin(current, location))[0]
                    return await self._read_response(url, response), None
            except asyncio.TimeoutError:
                self.logger.warning(f"Timeout fetching {current}")
                return FetchResult(url, OutcomeKind.TRANSIENT_FAILURE, error="Request timeout"), None
            except aiohttp.InvalidURL as e:
                self.logger.warning(f"Cannot fetch {current}: {e}")
                return FetchResult(url, OutcomeKind.NOT_FOUND, error=f"Unfetchable URL: {e}"), None
            except ClientError as e:
                self.logger.warning(f"Client error fetching {current}: {e}")
                return FetchResult(url, OutcomeKind.TRANSIENT_FAILURE, error=f"Client error: {e}"), None

    async def _read_response(self, url: str, response: aiohttp.ClientResponse) -> FetchResult:
        content_type = response.headers.get('content-type')
        final_url = str(response.url)

        def result(kind: OutcomeKind, error: Optional[str] = None, content: bytes = b'') -> FetchResult:
            return FetchResult(url, kind, response.status, content, content_type, final_url, error)

        if response.headers.get('cf-mitigated', '').lower() == 'challenge':
            self.logger.debug(f"Bot challenge served for {url}, skipping")
            return result(OutcomeKind.DISALLOWED, "Bot challenge")

        kind = classify_status(response.status)
        if kind is not OutcomeKind.SUCCESS:
            return result(kind, f"HTTP {response.status}")

        try:
            content = await self._read_body(response)
        except BodyTooLarge as e:
            self.logger.warning(f"Skipping {url}: {e}")
            return result(OutcomeKind.UNSUPPORTED_CONTENT_TYPE, str(e))

        self.logger.debug(f"Fetched {url}: {response.status} ({len(content)} bytes)")
        return result(OutcomeKind.SUCCESS, content=content)

    async def fetch_text(self, url: str) -> Tuple[int, str]:
        """
        GET a small text resource such as robots.txt.

        Returns:
            (status code, decoded body); the body is empty for non-2xx or
            oversized responses

        Raises:
            aiohttp.ClientError, asyncio.TimeoutError
        """
        if self.session is None:
            await self.start()

        async with self.semaphore:
            async with self.session.get(url) as response:
                if not 200 <= response.status < 300:
                    return response.status, ''
                try:
                    content = await self._read_body(response)
                except BodyTooLarge:
                    return response.status, ''
                return response.status, decode_text(content, response.charset)

    async def _read_body(self, response: aiohttp.ClientResponse) -> bytes:
        """Stream the body, stopping as soon as it passes the size limit."""
        declared = response.content_length
        if declared is not None and declared > self.max_content_bytes:
            raise BodyTooLarge(f"Content-Length {declared} exceeds {self.max_content_bytes} bytes")

        body = bytearray()
        async for chunk in response.content.iter_chunked(READ_CHUNK_SIZE):
            body.extend(chunk)
            if len(body) > self.max_content_bytes:
                raise BodyTooLarge(f"Body exceeds {self.max_content_bytes} bytes")
        return bytes(body)

    def get_stats(self) -> Dict[str, int]:
        return self.stats.copy()
