"""
Free-text search over the committed index.
"""

import re
import logging
from typing import List
from dataclasses import dataclass

from .search_index import SearchIndex, IndexStoreError


class SearchEngineError(Exception):
    """Raised when the index cannot answer a query."""
    pass


@dataclass(frozen=True)
class SearchResult:
    """One matching page."""
    relevant_url: str
    origin_url: str
    depth: int


TERM_PATTERN = re.compile(r'\w+', re.UNICODE)


def to_match_expression(query: str) -> str:
    """
    Turn free text into an FTS5 expression: every word term quoted and
    OR-ed together, so punctuation in user input is never parsed as syntax.
    """
    terms = dict.fromkeys(term.lower() for term in TERM_PATTERN.findall(query))
    return ' OR '.join(f'"{term}"' for term in terms)


class QueryEngine:
    """Validates queries, runs them against the index and projects the hits."""

    def __init__(self, index: SearchIndex, max_results: int = 10):
        self.index = index
        self.max_results = max_results
        self.logger = logging.getLogger(__name__)

    async def search(self, query: str) -> List[SearchResult]:
        if not query or not query.strip():
            return []

        match = to_match_expression(query)
        if not match:
            return []

        try:
            rows = await self.index.search(match, self.max_results)
        except IndexStoreError as e:
            raise SearchEngineError(f"Index unavailable: {e}") from e

        self.logger.debug(f"Query {query!r} matched {len(rows)} documents")
        return [
            SearchResult(relevant_url=url, origin_url=origin_url, depth=depth)
            for url, origin_url, depth in rows
        ]
