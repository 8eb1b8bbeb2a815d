"""
Crawler scheduler: runs one crawl from an origin URL down to a depth bound,
feeding every accepted page to the index writer.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Deque, Dict, List, Optional
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from .url_frontier import CrawlTask, VisitedSet, PolitenessGate, normalize_url
from .fetcher import WebFetcher, FetchResult, OutcomeKind
from .robots import ExclusionPolicyCache
from .classifier import ContentClassifier, ContentClass
from .parser import ContentParser
from ..storage.index_writer import IndexWriter, IndexWriteError
from ..utils.config import CrawlerConfig
from ..utils.logger import RunLogAdapter, get_run_logger
from ..utils.monitoring import CrawlerMonitor, initialize_monitoring


MAX_DEPTH_BOUND = 2 ** 32 - 1

# How many soft failures are spelled out in a summary message.
MAX_REPORTED_FAILURES = 10


class CrawlError(Exception):
    """Raised when a crawl run cannot start."""
    pass


class InvalidOriginError(CrawlError):
    """The origin is not an absolute http(s) URL."""
    pass


@dataclass
class SoftFailure:
    """A page that was dropped without aborting the run."""
    url: str
    reason: str
    detail: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.url} ({self.reason}: {self.detail})" if self.detail else f"{self.url} ({self.reason})"


@dataclass
class CrawlSummary:
    """Statistics and soft failures for one crawl run."""
    origin: str
    max_depth: int
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None
    pages_fetched: int = 0
    pages_indexed: int = 0
    disallowed: int = 0
    retries: int = 0
    links_enqueued: int = 0
    links_dropped_by_limit: int = 0
    soft_failures: List[SoftFailure] = field(default_factory=list)

    @property
    def elapsed_time(self) -> float:
        return (self.end_time or time.time()) - self.start_time

    def record_failure(self, url: str, reason: str, detail: Optional[str] = None):
        self.soft_failures.append(SoftFailure(url, reason, detail))

    def message(self) -> Optional[str]:
        """Human-readable summary, or None when every page went through cleanly."""
        if not self.soft_failures and not self.links_dropped_by_limit:
            return None

        parts = [f"Indexed {self.pages_indexed} page(s) from {self.origin} with depth {self.max_depth}"]
        if self.soft_failures:
            listed = '; '.join(str(f) for f in self.soft_failures[:MAX_REPORTED_FAILURES])
            more = len(self.soft_failures) - MAX_REPORTED_FAILURES
            if more > 0:
                listed += f"; and {more} more"
            parts.append(f"{len(self.soft_failures)} soft failure(s): {listed}")
        if self.links_dropped_by_limit:
            parts.append(f"{self.links_dropped_by_limit} link(s) not followed because the page limit was reached")
        return '. '.join(parts)

    def to_dict(self) -> Dict:
        return {
            'origin': self.origin,
            'max_depth': self.max_depth,
            'pages_fetched': self.pages_fetched,
            'pages_indexed': self.pages_indexed,
            'disallowed': self.disallowed,
            'retries': self.retries,
            'links_enqueued': self.links_enqueued,
            'links_dropped_by_limit': self.links_dropped_by_limit,
            'soft_failures': len(self.soft_failures),
            'elapsed_time': self.elapsed_time,
        }


class CrawlRun:
    """
    State owned by a single crawl run; discarded when the run returns.

    Workers push discovered tasks onto ``pending`` without ever blocking; the
    run's dispatcher moves them into the bounded ``queue`` the workers draw
    from. ``outstanding`` counts tasks scheduled but not yet finished, and the
    run is over when it drops to zero.
    """

    def __init__(self, origin: str, max_depth: int, robots: ExclusionPolicyCache,
                 logger: RunLogAdapter, queue_size: int):
        self.origin = origin
        self.max_depth = max_depth
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.pending: Deque[CrawlTask] = deque()
        self.pending_ready = asyncio.Event()
        self.outstanding = 0
        self.finished = asyncio.Event()
        self.visited = VisitedSet()
        self.robots = robots
        self.politeness = PolitenessGate()
        self.summary = CrawlSummary(origin=origin, max_depth=max_depth)
        self.logger = logger

    def schedule(self, task: CrawlTask):
        self.pending.append(task)
        self.outstanding += 1
        self.pending_ready.set()

    def task_finished(self):
        self.outstanding -= 1
        if self.outstanding == 0:
            self.finished.set()

    async def dispatch(self):
        """Feed pending tasks into the worker queue, waiting while it is full."""
        while True:
            while not self.pending:
                self.pending_ready.clear()
                await self.pending_ready.wait()
            await self.queue.put(self.pending.popleft())


def validate_origin(origin: str) -> str:
    """
    Check that ``origin`` can seed a crawl and return its normalized form.

    Raises:
        InvalidOriginError: for anything but an absolute http(s) URL
    """
    if not isinstance(origin, str) or not origin.strip():
        raise InvalidOriginError("Origin URL must be a non-empty string")

    try:
        scheme = urlsplit(origin.strip()).scheme.lower()
        normalized = normalize_url(origin)
    except ValueError as e:
        raise InvalidOriginError(f"Malformed origin URL {origin!r}: {e}") from e

    if scheme not in ('http', 'https'):
        raise InvalidOriginError(f"Origin URL must use http or https: {origin!r}")
    return normalized


class CrawlerScheduler:
    """
    Breadth-first crawl engine.

    A fixed pool of worker tasks drains a FIFO frontier queue. For each task a
    worker checks robots.txt, fetches (retrying transient failures), classifies
    the body, indexes its text and, while depth remains, enqueues the page's
    links that the run has not seen before.
    """

    def __init__(self, config: CrawlerConfig, fetcher: WebFetcher, index_writer: IndexWriter,
                 monitor: Optional[CrawlerMonitor] = None):
        self.config = config
        self.fetcher = fetcher
        self.index_writer = index_writer
        self.monitor = monitor or initialize_monitoring(enabled=False)
        self.logger = logging.getLogger(__name__)

        self.classifier = ContentClassifier(config.allowed_mimes)
        self.parser = ContentParser(
            allowed_domains=config.allowed_domains,
            blocked_domains=config.blocked_domains,
            same_domain_only=config.same_domain_only
        )

    async def run(self, origin: str, max_depth: int) -> CrawlSummary:
        """
        Crawl from ``origin`` following links up to ``max_depth`` hops.

        Per-page failures are collected in the returned summary; only
        problems that prevent the run from starting raise.

        Raises:
            CrawlError: the origin or depth is invalid
        """
        origin = validate_origin(origin)
        if isinstance(max_depth, bool) or not isinstance(max_depth, int):
            raise CrawlError(f"Depth must be an integer, got {max_depth!r}")
        if not 0 <= max_depth <= MAX_DEPTH_BOUND:
            raise CrawlError(f"Depth must be between 0 and {MAX_DEPTH_BOUND}, got {max_depth}")

        robots = ExclusionPolicyCache(
            self.fetcher,
            self.config.user_agent,
            default_delay=self.config.politeness_delay,
            max_crawl_delay=self.config.max_crawl_delay
        )
        run = CrawlRun(origin, max_depth, robots,
                       get_run_logger(__name__, origin, max_depth),
                       queue_size=self.config.frontier_queue_size)

        await run.visited.add(origin)
        run.schedule(CrawlTask.seed(origin, max_depth))
        run.summary.links_enqueued += 1

        run.logger.info(f"Starting crawl of {origin} with depth {max_depth} "
                        f"and {self.config.max_workers} workers")

        runners = [asyncio.create_task(run.dispatch())]
        runners.extend(
            asyncio.create_task(self._worker(run, f"worker-{i}"))
            for i in range(self.config.max_workers)
        )
        try:
            await run.finished.wait()
        finally:
            for runner in runners:
                runner.cancel()
            await asyncio.gather(*runners, return_exceptions=True)

        try:
            await self.index_writer.commit()
        except IndexWriteError as e:
            run.logger.error(f"Commit at end of crawl failed: {e}")
            run.summary.record_failure(origin, 'index_commit', str(e))
            self.monitor.record_soft_failure('index_commit')

        run.summary.end_time = time.time()
        self._log_final_stats(run)
        return run.summary

    async def _worker(self, run: CrawlRun, worker_id: str):
        """Worker coroutine that processes tasks from the run's frontier."""
        run.logger.debug(f"Worker {worker_id} started")

        while True:
            task = await run.queue.get()
            self.monitor.worker_started()
            try:
                await self._process_task(run, task)
            except Exception as e:
                run.logger.error(f"Worker {worker_id} failed on {task.url}: {e}", exc_info=True)
                run.summary.record_failure(task.url, 'error', str(e))
                self.monitor.record_soft_failure('error')
            finally:
                self.monitor.worker_finished()
                run.queue.task_done()
                run.task_finished()

    async def _process_task(self, run: CrawlRun, task: CrawlTask):
        """Resolve one task: policy check, fetch, classify, index, expand."""
        summary = run.summary

        if self.config.respect_robots_txt and not await run.robots.is_allowed(task.url):
            summary.disallowed += 1
            self.monitor.record_policy_skip(task.url)
            run.logger.page(logging.DEBUG, task.url, f"Skipping disallowed URL {task.url}", outcome="disallowed")
            return

        result = await self._fetch_with_retry(run, task)

        if result.kind is OutcomeKind.DISALLOWED:
            summary.disallowed += 1
            self.monitor.record_policy_skip(task.url)
            run.logger.page(logging.DEBUG, task.url, f"Skipping {task.url}: {result.error}", outcome="disallowed")
            return

        if not result.ok:
            self._record_failure(run, task.url, result.kind.value, result.error)
            return

        summary.pages_fetched += 1

        content_class = self.classifier.classify(result.content_type, result.content)
        if content_class is ContentClass.REJECT:
            self._record_failure(run, task.url, OutcomeKind.UNSUPPORTED_CONTENT_TYPE.value,
                                 result.content_type or 'unknown content type')
            return

        links: List[str] = []
        if content_class is ContentClass.CRAWLABLE:
            parsed = self.parser.parse(result.base_url, result.content, result.content_type)
            text = parsed.text
            links = parsed.links
        else:
            text = self.parser.extract_text(result.content, result.content_type)

        try:
            await self.index_writer.write(IndexWriter.document_for(task, text))
        except IndexWriteError as e:
            self._record_failure(run, task.url, 'index_write', str(e))
        else:
            summary.pages_indexed += 1
            self.monitor.record_page_indexed(task.url)

        if task.follows_links and links:
            await self._enqueue_links(run, task, links)

    async def _fetch_with_retry(self, run: CrawlRun, task: CrawlTask) -> FetchResult:
        """Fetch a URL, retrying transient failures with exponential backoff."""
        attempt = 0
        while True:
            delay = (run.robots.crawl_delay(task.url) if self.config.respect_robots_txt
                     else self.config.politeness_delay)
            await run.politeness.wait(task.url, delay)

            result = await self.fetcher.fetch(
                task.url, may_follow=run.robots.is_allowed if self.config.respect_robots_txt else None
            )
            self.monitor.record_fetch(result.kind.value, result.fetch_time)

            if result.kind is not OutcomeKind.TRANSIENT_FAILURE or attempt >= self.config.retry_attempts:
                return result

            attempt += 1
            run.summary.retries += 1
            backoff = self.config.retry_backoff * (2 ** (attempt - 1))
            run.logger.info(f"Retrying {task.url} in {backoff:.2f}s "
                            f"({attempt}/{self.config.retry_attempts}): {result.error}")
            await asyncio.sleep(backoff)

    async def _enqueue_links(self, run: CrawlRun, task: CrawlTask, links: List[str]):
        """Queue links not yet seen in this run as children of ``task``."""
        added_count = 0
        for index, link in enumerate(links):
            if self.config.max_pages and len(run.visited) >= self.config.max_pages:
                dropped = sum(1 for remaining in links[index:] if remaining not in run.visited)
                run.summary.links_dropped_by_limit += dropped
                break
            if await run.visited.add(link):
                run.schedule(task.child(link))
                added_count += 1

        run.summary.links_enqueued += added_count
        if added_count:
            run.logger.debug(f"Queued {added_count} new URLs from {task.url} at depth {task.depth + 1}")

    def _record_failure(self, run: CrawlRun, url: str, reason: str, detail: Optional[str]):
        run.logger.page(logging.WARNING, url, f"Dropping {url}: {reason} ({detail})", outcome=reason)
        run.summary.record_failure(url, reason, detail)
        self.monitor.record_soft_failure(reason)

    def _log_final_stats(self, run: CrawlRun):
        summary = run.summary
        run.logger.info("=== CRAWL COMPLETED ===")
        run.logger.stat('pages_fetched', summary.pages_fetched)
        run.logger.stat('pages_indexed', summary.pages_indexed)
        run.logger.stat('disallowed', summary.disallowed)
        run.logger.stat('retries', summary.retries)
        run.logger.stat('soft_failures', len(summary.soft_failures))
        run.logger.info(f"Total time: {summary.elapsed_time:.2f} seconds")
