"""Shared fixtures: an in-memory index and a scripted fake web."""

from typing import Dict, List, Optional, Set, Tuple, Union

import pytest

from crawlindex.crawler.fetcher import FetchResult, OutcomeKind
from crawlindex.storage.search_index import IndexStoreError, SearchIndex
from crawlindex.utils.config import Config, CrawlerConfig


def html_page(*links: str, body: str = "", title: str = "") -> bytes:
    """Build a small HTML document linking to ``links``."""
    anchors = "".join(f'<a href="{link}">{link}</a>' for link in links)
    return (
        f"<!DOCTYPE html><html><head><title>{title}</title></head>"
        f"<body><p>{body}</p>{anchors}</body></html>"
    ).encode("utf-8")


Page = Union[FetchResult, Tuple[str, bytes]]


class FakeWeb:
    """Stands in for WebFetcher: serves scripted responses and records every request.

    ``pages`` maps URL to either ``(content_type, body)`` or a list of
    FetchResults consumed one per request (the last one repeats).
    """

    def __init__(self, pages: Optional[Dict[str, Union[Page, List[FetchResult]]]] = None,
                 robots: Optional[Dict[str, str]] = None) -> None:
        self.pages = dict(pages or {})
        self.robots = dict(robots or {})
        self.requests: List[str] = []
        self.robots_requests: List[str] = []

    async def fetch(self, url: str, may_follow=None) -> FetchResult:
        self.requests.append(url)
        page = self.pages.get(url)
        if page is None:
            return FetchResult(url=url, kind=OutcomeKind.NOT_FOUND, status_code=404, error="HTTP 404")
        if isinstance(page, list):
            return page.pop(0) if len(page) > 1 else page[0]
        if isinstance(page, FetchResult):
            return page
        content_type, body = page
        return FetchResult(url=url, kind=OutcomeKind.SUCCESS, status_code=200,
                           content=body, content_type=content_type)

    async def fetch_text(self, url: str) -> Tuple[int, str]:
        self.robots_requests.append(url)
        if url in self.robots:
            return 200, self.robots[url]
        return 404, ""

    def request_count(self, url: str) -> int:
        return self.requests.count(url)


@pytest.fixture
def crawler_config() -> CrawlerConfig:
    """Crawler settings with no waiting between requests or retries."""
    return CrawlerConfig(
        user_agent="TestBot",
        max_workers=4,
        retry_attempts=2,
        retry_backoff=0.0,
        politeness_delay=0.0,
    )


@pytest.fixture
def config(crawler_config: CrawlerConfig) -> Config:
    cfg = Config(crawler=crawler_config)
    cfg.index.path = ":memory:"
    cfg.index.commit_interval = 1000
    return cfg


@pytest.fixture
async def index():
    search_index = SearchIndex(":memory:")
    await search_index.initialize()
    yield search_index
    await search_index.close()


class FailingIndex(SearchIndex):
    """In-memory index whose writes fail for the URLs in ``fail_urls``."""

    def __init__(self, fail_urls: Set[str]) -> None:
        super().__init__(":memory:")
        self.fail_urls = set(fail_urls)

    async def add_document(self, url: str, origin_url: str, depth: int, body: str) -> None:
        if url in self.fail_urls:
            raise IndexStoreError(f"disk full while writing {url}")
        await super().add_document(url, origin_url, depth, body)


@pytest.fixture
async def failing_index():
    search_index = FailingIndex({"https://a.test/broken"})
    await search_index.initialize()
    yield search_index
    await search_index.close()
