"""
Full-text index layer.
"""

from .search_index import SearchIndex, IndexStoreError
from .index_writer import IndexWriter, IndexedDocument, IndexWriteError
from .query_engine import QueryEngine, SearchResult, SearchEngineError

__all__ = [
    'SearchIndex', 'IndexStoreError',
    'IndexWriter', 'IndexedDocument', 'IndexWriteError',
    'QueryEngine', 'SearchResult', 'SearchEngineError'
]
