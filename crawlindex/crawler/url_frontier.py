"""
Crawl task model, per-run visited set and per-site politeness bookkeeping.
"""

import asyncio
import logging
import time
from typing import Dict, Set
from urllib.parse import urlsplit, urlunsplit
from dataclasses import dataclass
from collections import defaultdict


DEFAULT_PORTS = {'http': 80, 'https': 443}


def normalize_url(url: str) -> str:
    """
    Normalize a URL for deduplication and indexing.

    Lowercases scheme and host, strips default ports and the fragment,
    and turns an empty path into '/'.

    Raises:
        ValueError: if the URL has no scheme or host
    """
    parsed = urlsplit(url.strip())
    scheme = parsed.scheme.lower()
    if not scheme or not parsed.hostname:
        raise ValueError(f"Not an absolute URL: {url!r}")

    host = parsed.hostname.lower()
    if ':' in host:
        host = f"[{host}]"
    port = parsed.port
    netloc = host if port is None or port == DEFAULT_PORTS.get(scheme) else f"{host}:{port}"
    if parsed.username:
        userinfo = parsed.username if parsed.password is None else f"{parsed.username}:{parsed.password}"
        netloc = f"{userinfo}@{netloc}"

    return urlunsplit((scheme, netloc, parsed.path or '/', parsed.query, ''))


def site_authority(url: str) -> str:
    """Return scheme://host[:port] for a URL, the key for per-site state."""
    parsed = urlsplit(url)
    scheme = parsed.scheme.lower()
    host = (parsed.hostname or '').lower()
    if ':' in host:
        host = f"[{host}]"
    port = parsed.port
    if port is None or port == DEFAULT_PORTS.get(scheme):
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


@dataclass(frozen=True)
class CrawlTask:
    """A URL waiting to be crawled, with its place in the crawl tree."""
    url: str
    origin: str
    depth: int
    remaining_depth: int

    @classmethod
    def seed(cls, origin: str, max_depth: int) -> 'CrawlTask':
        """Create the depth-0 task that starts a crawl run."""
        return cls(url=origin, origin=origin, depth=0, remaining_depth=max_depth)

    @property
    def follows_links(self) -> bool:
        return self.remaining_depth > 0

    def child(self, url: str) -> 'CrawlTask':
        """Create the task for a link discovered on this task's page."""
        if not self.follows_links:
            raise ValueError(f"Links are not followed from depth {self.depth}: {self.url}")
        return CrawlTask(
            url=url,
            origin=self.origin,
            depth=self.depth + 1,
            remaining_depth=self.remaining_depth - 1
        )


class VisitedSet:
    """
    URLs already enqueued or fetched within one crawl run.

    ``add`` is the single check-and-insert point: it returns True only for
    the first caller to present a given URL.
    """

    def __init__(self):
        self._urls: Set[str] = set()
        self._lock = asyncio.Lock()

    async def add(self, url: str) -> bool:
        async with self._lock:
            if url in self._urls:
                return False
            self._urls.add(url)
            return True

    def __contains__(self, url: str) -> bool:
        return url in self._urls

    def __len__(self) -> int:
        return len(self._urls)


class PolitenessGate:
    """
    Spaces out requests to the same site.

    Each site authority has its own lock, so only one worker at a time can
    claim the next request slot for that site.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.domain_last_access: Dict[str, float] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def wait(self, url: str, delay: float):
        """Sleep until ``delay`` seconds have passed since the last request to the URL's site."""
        authority = site_authority(url)
        if delay <= 0:
            self.domain_last_access[authority] = time.monotonic()
            return

        async with self._locks[authority]:
            last_access = self.domain_last_access.get(authority)
            if last_access is not None:
                remaining = delay - (time.monotonic() - last_access)
                if remaining > 0:
                    self.logger.debug(f"Waiting {remaining:.2f}s before next request to {authority}")
                    await asyncio.sleep(remaining)
            self.domain_last_access[authority] = time.monotonic()
