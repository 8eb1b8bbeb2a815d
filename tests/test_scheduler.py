"""End-to-end crawl runs against a scripted web and an in-memory index."""

from typing import Dict, List, Tuple

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from crawlindex.crawler.fetcher import FetchResult, OutcomeKind, WebFetcher
from crawlindex.crawler.scheduler import CrawlError, CrawlerScheduler, CrawlSummary
from crawlindex.storage.index_writer import IndexWriter
from crawlindex.storage.query_engine import QueryEngine
from crawlindex.storage.search_index import SearchIndex
from crawlindex.utils.config import CrawlerConfig
from tests.conftest import FakeWeb, html_page


HTML = "text/html; charset=utf-8"


def make_scheduler(config: CrawlerConfig, web: FakeWeb, index: SearchIndex) -> CrawlerScheduler:
    return CrawlerScheduler(config, web, IndexWriter(index, commit_interval=1000))  # type: ignore[arg-type]


async def indexed(index: SearchIndex, word: str) -> Dict[str, tuple]:
    """URL -> (origin, depth) for every document containing ``word``."""
    results = await QueryEngine(index, max_results=100).search(word)
    return {r.relevant_url: (r.origin_url, r.depth) for r in results}


def success(url: str, body: bytes, content_type: str = HTML) -> FetchResult:
    return FetchResult(url=url, kind=OutcomeKind.SUCCESS, status_code=200,
                       content=body, content_type=content_type)


def transient(url: str) -> FetchResult:
    return FetchResult(url=url, kind=OutcomeKind.TRANSIENT_FAILURE, status_code=503, error="HTTP 503")


class TestCrawlDepth:

    @pytest.mark.asyncio
    async def test_single_page_at_depth_zero(self, crawler_config: CrawlerConfig, index: SearchIndex) -> None:
        """Depth 0 indexes the origin and nothing it links to."""
        web = FakeWeb({
            "https://example.test/": (HTML, html_page("/next", body="Example Domain", title="Example")),
            "https://example.test/next": (HTML, html_page(body="Example next")),
        })
        summary = await make_scheduler(crawler_config, web, index).run("https://example.test", 0)

        assert web.requests == ["https://example.test/"]
        assert await indexed(index, "example") == {"https://example.test/": ("https://example.test/", 0)}
        assert summary.pages_indexed == 1
        assert summary.message() is None

    @pytest.mark.asyncio
    async def test_one_hop_follows_internal_and_external_links(self, crawler_config: CrawlerConfig,
                                                                index: SearchIndex) -> None:
        """Depth 1 indexes the origin and its direct links, never grandchildren."""
        web = FakeWeb({
            "https://a.test/": (HTML, html_page("/b", "https://c.test/", body="shared root")),
            "https://a.test/b": (HTML, html_page("/d", body="shared bee")),
            "https://c.test/": (HTML, html_page("/e", body="shared sea")),
            "https://a.test/d": (HTML, html_page(body="shared dee")),
            "https://c.test/e": (HTML, html_page(body="shared eee")),
        })
        await make_scheduler(crawler_config, web, index).run("https://a.test/", 1)

        assert await indexed(index, "shared") == {
            "https://a.test/": ("https://a.test/", 0),
            "https://a.test/b": ("https://a.test/", 1),
            "https://c.test/": ("https://a.test/", 1),
        }
        assert web.request_count("https://a.test/d") == 0
        assert web.request_count("https://c.test/e") == 0

    @pytest.mark.asyncio
    async def test_cycles_terminate_and_fetch_each_url_once(self, crawler_config: CrawlerConfig,
                                                             index: SearchIndex) -> None:
        web = FakeWeb({
            "https://a.test/": (HTML, html_page("/b", "/", body="loop")),
            "https://a.test/b": (HTML, html_page("/", "/b", body="loop")),
        })
        summary = await make_scheduler(crawler_config, web, index).run("https://a.test/", 5)

        assert sorted(web.requests) == ["https://a.test/", "https://a.test/b"]
        assert summary.pages_indexed == 2

    @pytest.mark.asyncio
    async def test_depth_is_first_discovery_depth(self, crawler_config: CrawlerConfig,
                                                  index: SearchIndex) -> None:
        web = FakeWeb({
            "https://a.test/": (HTML, html_page("/b", "/c", body="word")),
            "https://a.test/b": (HTML, html_page("/c", body="word")),
            "https://a.test/c": (HTML, html_page(body="word")),
        })
        await make_scheduler(crawler_config, web, index).run("https://a.test/", 3)

        assert (await indexed(index, "word"))["https://a.test/c"] == ("https://a.test/", 1)
        assert web.request_count("https://a.test/c") == 1

    @pytest.mark.asyncio
    async def test_text_pages_are_indexed_but_not_expanded(self, crawler_config: CrawlerConfig,
                                                           index: SearchIndex) -> None:
        web = FakeWeb({
            "https://a.test/": (HTML, html_page("/notes.txt", body="root")),
            "https://a.test/notes.txt": ("text/plain", b"plain notes https://a.test/hidden"),
        })
        await make_scheduler(crawler_config, web, index).run("https://a.test/", 3)

        assert "https://a.test/notes.txt" in await indexed(index, "notes")
        assert web.request_count("https://a.test/hidden") == 0

    @pytest.mark.asyncio
    async def test_small_frontier_queue_still_crawls_everything(self, crawler_config: CrawlerConfig,
                                                                index: SearchIndex) -> None:
        crawler_config.frontier_queue_size = 1
        crawler_config.max_workers = 2
        children = [f"/c{i}" for i in range(20)]
        pages = {"https://a.test/": (HTML, html_page(*children, body="fanout"))}
        for child in children:
            pages[f"https://a.test{child}"] = (HTML, html_page(f"{child}/leaf", body="fanout"))
            pages[f"https://a.test{child}/leaf"] = (HTML, html_page(body="fanout"))
        web = FakeWeb(pages)

        summary = await make_scheduler(crawler_config, web, index).run("https://a.test/", 2)

        assert summary.pages_indexed == 41
        assert sorted(web.requests) == sorted(pages)
        assert len(await indexed(index, "fanout")) == 41


class TestCrawlPolicy:

    @pytest.mark.asyncio
    async def test_disallowed_page_is_never_fetched(self, crawler_config: CrawlerConfig,
                                                    index: SearchIndex) -> None:
        web = FakeWeb(
            pages={
                "https://a.test/": (HTML, html_page("/private/x", "/public", body="secret root")),
                "https://a.test/private/x": (HTML, html_page(body="secret page")),
                "https://a.test/public": (HTML, html_page(body="secret public")),
            },
            robots={"https://a.test/robots.txt": "User-agent: *\nDisallow: /private\n"},
        )
        summary = await make_scheduler(crawler_config, web, index).run("https://a.test/", 2)

        assert web.request_count("https://a.test/private/x") == 0
        assert "https://a.test/private/x" not in await indexed(index, "secret")
        assert summary.disallowed == 1
        assert web.robots_requests == ["https://a.test/robots.txt"]

    @pytest.mark.asyncio
    async def test_robots_can_be_ignored(self, crawler_config: CrawlerConfig, index: SearchIndex) -> None:
        crawler_config.respect_robots_txt = False
        web = FakeWeb(
            pages={"https://a.test/": (HTML, html_page(body="root"))},
            robots={"https://a.test/robots.txt": "User-agent: *\nDisallow: /\n"},
        )
        summary = await make_scheduler(crawler_config, web, index).run("https://a.test/", 0)

        assert summary.pages_indexed == 1
        assert web.robots_requests == []

    @pytest.mark.asyncio
    async def test_page_limit_stops_expansion(self, crawler_config: CrawlerConfig, index: SearchIndex) -> None:
        crawler_config.max_pages = 2
        web = FakeWeb({
            "https://a.test/": (HTML, html_page("/b", "/c", "/d", body="root")),
            "https://a.test/b": (HTML, html_page(body="bee")),
        })
        summary = await make_scheduler(crawler_config, web, index).run("https://a.test/", 1)

        assert sorted(web.requests) == ["https://a.test/", "https://a.test/b"]
        assert summary.links_dropped_by_limit == 2
        assert "page limit" in summary.message()


class TestCrawlFailures:

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried_then_indexed_once(self, crawler_config: CrawlerConfig,
                                                                  index: SearchIndex) -> None:
        url = "https://a.test/"
        web = FakeWeb({url: [transient(url), success(url, html_page(body="recovered"))]})
        summary = await make_scheduler(crawler_config, web, index).run(url, 0)

        assert web.request_count(url) == 2
        assert summary.retries == 1
        assert summary.pages_indexed == 1
        assert index.stats["documents_written"] == 1
        assert summary.message() is None

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, crawler_config: CrawlerConfig, index: SearchIndex) -> None:
        url = "https://a.test/"
        web = FakeWeb({url: [transient(url)]})
        summary = await make_scheduler(crawler_config, web, index).run(url, 0)

        assert web.request_count(url) == crawler_config.retry_attempts + 1
        assert [f.reason for f in summary.soft_failures] == ["transient_failure"]
        assert summary.pages_indexed == 0

    @pytest.mark.asyncio
    async def test_soft_failures_are_reported(self, crawler_config: CrawlerConfig, index: SearchIndex) -> None:
        web = FakeWeb({
            "https://a.test/": (HTML, html_page("/missing", "/image.bin", body="root")),
            "https://a.test/image.bin": ("image/png", b"\x89PNG\r\n\x1a\n" + b"\x00" * 16),
        })
        summary = await make_scheduler(crawler_config, web, index).run("https://a.test/", 1)

        reasons = {f.url: f.reason for f in summary.soft_failures}
        assert reasons == {
            "https://a.test/missing": "not_found",
            "https://a.test/image.bin": "unsupported_content_type",
        }
        assert summary.pages_indexed == 1
        message = summary.message()
        assert "https://a.test/missing" in message
        assert "https://a.test/image.bin" in message

    @pytest.mark.asyncio
    async def test_unexpected_error_does_not_abort_run(self, crawler_config: CrawlerConfig,
                                                       index: SearchIndex) -> None:
        web = FakeWeb({
            "https://a.test/": (HTML, html_page("/boom", "/ok", body="root")),
            "https://a.test/ok": (HTML, html_page(body="fine")),
        })
        original = web.fetch

        async def flaky_fetch(url: str, may_follow=None) -> FetchResult:
            if url.endswith("/boom"):
                raise RuntimeError("parser exploded")
            return await original(url, may_follow)

        web.fetch = flaky_fetch  # type: ignore[method-assign]
        summary = await make_scheduler(crawler_config, web, index).run("https://a.test/", 1)

        assert summary.pages_indexed == 2
        assert [(f.url, f.reason) for f in summary.soft_failures] == [("https://a.test/boom", "error")]

    @pytest.mark.asyncio
    async def test_index_write_failure_is_soft(self, crawler_config: CrawlerConfig,
                                               failing_index: SearchIndex) -> None:
        web = FakeWeb({
            "https://a.test/": (HTML, html_page("/broken", "/ok", body="stored root")),
            "https://a.test/broken": (HTML, html_page(body="stored broken")),
            "https://a.test/ok": (HTML, html_page(body="stored fine")),
        })
        summary = await make_scheduler(crawler_config, web, failing_index).run("https://a.test/", 1)

        assert [(f.url, f.reason) for f in summary.soft_failures] == [("https://a.test/broken", "index_write")]
        assert sorted(await indexed(failing_index, "stored")) == ["https://a.test/", "https://a.test/ok"]
        assert summary.pages_fetched == 3
        assert summary.pages_indexed == 2
        assert "https://a.test/broken" in summary.message()

    @pytest.mark.asyncio
    async def test_bot_challenge_counts_as_disallowed(self, crawler_config: CrawlerConfig,
                                                      index: SearchIndex) -> None:
        url = "https://a.test/"
        web = FakeWeb({url: FetchResult(url=url, kind=OutcomeKind.DISALLOWED, status_code=403)})
        summary = await make_scheduler(crawler_config, web, index).run(url, 0)

        assert summary.disallowed == 1
        assert summary.pages_indexed == 0
        assert summary.message() is None


class TestCrawlValidation:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("origin", ["", "not a url", "ftp://a.test/", "/relative/path", "mailto:x@a.test"])
    async def test_invalid_origin(self, crawler_config: CrawlerConfig, index: SearchIndex, origin: str) -> None:
        web = FakeWeb()
        with pytest.raises(CrawlError):
            await make_scheduler(crawler_config, web, index).run(origin, 1)
        assert web.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("depth", [-1, 2 ** 32, True, "3", 1.5])
    async def test_invalid_depth(self, crawler_config: CrawlerConfig, index: SearchIndex, depth) -> None:
        with pytest.raises(CrawlError):
            await make_scheduler(crawler_config, FakeWeb(), index).run("https://a.test/", depth)

    @pytest.mark.asyncio
    async def test_later_run_overwrites_origin_and_depth(self, crawler_config: CrawlerConfig,
                                                         index: SearchIndex) -> None:
        web = FakeWeb({
            "https://a.test/": (HTML, html_page("/b", body="root")),
            "https://a.test/b": (HTML, html_page(body="bee")),
        })
        scheduler = make_scheduler(crawler_config, web, index)
        await scheduler.run("https://a.test/", 1)
        assert (await indexed(index, "bee"))["https://a.test/b"] == ("https://a.test/", 1)

        await scheduler.run("https://a.test/b", 0)
        assert (await indexed(index, "bee"))["https://a.test/b"] == ("https://a.test/b", 0)
        assert await index.count() == 2


def test_summary_message_truncates_failures() -> None:
    summary = CrawlSummary(origin="https://a.test/", max_depth=1)
    urls: List[str] = [f"https://a.test/{i}" for i in range(15)]
    for url in urls:
        summary.record_failure(url, "not_found", "HTTP 404")

    message = summary.message()
    assert "15 soft failure(s)" in message
    assert "and 5 more" in message
    assert urls[-1] not in message


@pytest.fixture
async def start_site():
    """Start a small live site; returns the server and the list of paths it was asked for."""
    servers: List[TestServer] = []

    async def start(robots: bytes, robots_type: str = "text/plain") -> Tuple[TestServer, List[str]]:
        hits: List[str] = []

        def page(body: bytes = b"", content_type: str = HTML, location: str = ""):
            async def handler(request: web.Request) -> web.Response:
                hits.append(request.path)
                if location:
                    raise web.HTTPFound(location)
                return web.Response(body=body, headers={"Content-Type": content_type})
            return handler

        app = web.Application()
        app.router.add_get("/robots.txt", page(robots, robots_type))
        app.router.add_get("/", page(html_page(body="welcome home")))
        app.router.add_get("/moved", page(location="/private/secret"))
        app.router.add_get("/elsewhere", page(location="/landing"))
        app.router.add_get("/landing", page(html_page(body="landing words")))
        app.router.add_get("/private/secret", page(html_page(body="secret words")))

        server = TestServer(app)
        await server.start_server()
        servers.append(server)
        return server, hits

    yield start
    for server in servers:
        await server.close()


class TestCrawlOverHttp:
    """Runs with the real fetcher against a local server."""

    ROBOTS = b"User-agent: *\nDisallow: /private\n"

    @pytest.mark.asyncio
    async def test_redirect_into_disallowed_path_is_not_followed(self, crawler_config: CrawlerConfig,
                                                                 index: SearchIndex, start_site) -> None:
        server, hits = await start_site(self.ROBOTS)
        async with WebFetcher("TestBot", request_timeout=5) as fetcher:
            scheduler = CrawlerScheduler(crawler_config, fetcher, IndexWriter(index, commit_interval=1000))
            summary = await scheduler.run(str(server.make_url("/moved")), 0)

        assert "/private/secret" not in hits
        assert summary.disallowed == 1
        assert summary.pages_indexed == 0
        assert await index.count() == 0

    @pytest.mark.asyncio
    async def test_redirect_to_allowed_path_is_indexed(self, crawler_config: CrawlerConfig,
                                                       index: SearchIndex, start_site) -> None:
        server, hits = await start_site(self.ROBOTS)
        origin = str(server.make_url("/elsewhere"))
        async with WebFetcher("TestBot", request_timeout=5) as fetcher:
            scheduler = CrawlerScheduler(crawler_config, fetcher, IndexWriter(index, commit_interval=1000))
            summary = await scheduler.run(origin, 0)

        assert hits == ["/robots.txt", "/elsewhere", "/landing"]
        assert summary.pages_indexed == 1
        assert list(await indexed(index, "landing")) == [origin]

    @pytest.mark.asyncio
    async def test_robots_with_unknown_charset_still_applies(self, crawler_config: CrawlerConfig,
                                                             index: SearchIndex, start_site) -> None:
        server, hits = await start_site(self.ROBOTS, robots_type="text/plain; charset=bogus-xyz")
        async with WebFetcher("TestBot", request_timeout=5) as fetcher:
            scheduler = CrawlerScheduler(crawler_config, fetcher, IndexWriter(index, commit_interval=1000))
            home = await scheduler.run(str(server.make_url("/")), 0)
            secret = await scheduler.run(str(server.make_url("/private/secret")), 0)

        assert home.pages_indexed == 1
        assert home.soft_failures == []
        assert secret.disallowed == 1
        assert "/private/secret" not in hits
