"""
Searcher service: operations, wire messages and HTTP transport.
"""

from .messages import (
    ResponseStatus, IndexRequest, IndexResponse, SearchRequest, SearchResponse
)
from .searcher import SearcherService
from .server import create_app, run_server
from .client import SearcherClient

__all__ = [
    'ResponseStatus', 'IndexRequest', 'IndexResponse', 'SearchRequest', 'SearchResponse',
    'SearcherService', 'create_app', 'run_server', 'SearcherClient'
]
