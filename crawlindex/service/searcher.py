"""
Searcher service: turns Index and Search requests into crawl runs and index
queries, and their outcomes into wire responses.
"""

import logging
from typing import Optional, Set

from ..crawler.fetcher import WebFetcher
from ..crawler.scheduler import CrawlerScheduler, CrawlError, validate_origin
from ..storage.search_index import SearchIndex
from ..storage.index_writer import IndexWriter
from ..storage.query_engine import QueryEngine, SearchEngineError
from ..utils.config import Config
from ..utils.monitoring import CrawlerMonitor, initialize_monitoring
from .messages import IndexRequest, IndexResponse, SearchRequest, SearchResponse


class SearcherService:
    """
    The two service operations. Every call returns a response; exceptions
    only ever become an ERROR status here.
    """

    def __init__(self, config: Config, index: SearchIndex, fetcher: WebFetcher,
                 monitor: Optional[CrawlerMonitor] = None):
        self.config = config
        self.index_store = index
        self.fetcher = fetcher
        self.monitor = monitor or initialize_monitoring(config.monitoring.metrics_enabled)
        self.logger = logging.getLogger(__name__)

        self.index_writer = IndexWriter(index, config.index.commit_interval)
        self.query_engine = QueryEngine(index, config.index.max_results)
        self.scheduler = CrawlerScheduler(config.crawler, fetcher, self.index_writer, self.monitor)

        self._active_origins: Set[str] = set()

    @classmethod
    async def create(cls, config: Config, monitor: Optional[CrawlerMonitor] = None) -> 'SearcherService':
        """Open the index and HTTP session described by ``config``."""
        index = SearchIndex(config.index.path)
        await index.initialize()
        fetcher = WebFetcher(
            user_agent=config.crawler.user_agent,
            request_timeout=config.crawler.request_timeout,
            max_concurrent_requests=config.crawler.max_concurrent_requests,
            max_content_bytes=config.crawler.max_content_bytes
        )
        await fetcher.start()
        return cls(config, index, fetcher, monitor)

    async def close(self):
        self.logger.info(f"Fetcher stats: {self.fetcher.get_stats()}")
        self.logger.info(f"Index stats: {await self.index_store.get_stats()}")
        await self.fetcher.close()
        await self.index_store.close()
        self.logger.info("Searcher service closed")

    async def index(self, request: IndexRequest) -> IndexResponse:
        """Crawl ``request.origin`` to depth ``request.k`` and index what is found."""
        try:
            origin = validate_origin(request.origin)
        except CrawlError as e:
            self.monitor.record_crawl_run('rejected')
            return IndexResponse.error(str(e))

        if self.config.service.reject_concurrent_origin and origin in self._active_origins:
            self.monitor.record_crawl_run('rejected')
            return IndexResponse.error(f"{origin} is already being indexed")

        self._active_origins.add(origin)
        try:
            summary = await self.scheduler.run(origin, request.k)
        except CrawlError as e:
            self.monitor.record_crawl_run('rejected')
            return IndexResponse.error(str(e))
        except Exception as e:
            self.logger.error(f"Crawl of {origin} failed: {e}", exc_info=True)
            self.monitor.record_crawl_run('failed')
            return IndexResponse.error(f"Failed to index {origin}: {e}")
        finally:
            self._active_origins.discard(origin)

        message = summary.message()
        self.monitor.record_crawl_run('partial' if message else 'ok')
        self.logger.info(f"Indexed {origin}: {summary.to_dict()}")
        return IndexResponse.ok(message)

    async def search(self, request: SearchRequest) -> SearchResponse:
        try:
            results = await self.query_engine.search(request.query)
        except SearchEngineError as e:
            self.logger.error(f"Query {request.query!r} failed: {e}")
            self.monitor.record_search('error')
            return SearchResponse.error(str(e))
        except Exception as e:
            self.logger.error(f"Query {request.query!r} failed: {e}", exc_info=True)
            self.monitor.record_search('error')
            return SearchResponse.error(f"Search failed: {e}")

        self.monitor.record_search('ok')
        return SearchResponse.ok(results)
