"""
Async client for the Searcher service.
"""

import logging
from typing import Optional

import aiohttp
from aiohttp import ClientSession, ClientTimeout

from .messages import IndexRequest, IndexResponse, SearchRequest, SearchResponse
from .server import INDEX_PATH, SEARCH_PATH


class SearcherClient:
    """Calls Index and Search on a running service."""

    def __init__(self, base_url: str, timeout: Optional[float] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = ClientTimeout(total=timeout)
        self.session: Optional[ClientSession] = None
        self.logger = logging.getLogger(__name__)

    async def __aenter__(self):
        self.session = aiohttp.ClientSession(timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    async def _call(self, path: str, payload: dict) -> dict:
        if self.session is None:
            self.session = aiohttp.ClientSession(timeout=self.timeout)
        async with self.session.post(f"{self.base_url}{path}", json=payload) as response:
            return await response.json()

    async def index(self, origin: str, k: int) -> IndexResponse:
        data = await self._call(INDEX_PATH, IndexRequest(origin=origin, k=k).to_dict())
        return IndexResponse.from_dict(data)

    async def search(self, query: str) -> SearchResponse:
        data = await self._call(SEARCH_PATH, SearchRequest(query=query).to_dict())
        return SearchResponse.from_dict(data)
