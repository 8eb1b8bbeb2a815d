"""
Request and response messages of the Searcher service and their JSON wire form.
"""

from enum import IntEnum
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

from ..storage.query_engine import SearchResult


class ResponseStatus(IntEnum):
    OK = 0
    ERROR = 1


class MessageError(ValueError):
    """A request body does not have the expected shape."""
    pass


@dataclass
class IndexRequest:
    origin: str
    k: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'IndexRequest':
        if not isinstance(data, dict):
            raise MessageError("IndexRequest must be a JSON object")
        origin = data.get('origin')
        if not isinstance(origin, str):
            raise MessageError("IndexRequest.origin must be a string")
        if 'k' not in data:
            raise MessageError("IndexRequest.k is required")
        k = data['k']
        if isinstance(k, str) and k.strip().isdigit():
            k = int(k.strip())
        if isinstance(k, bool) or not isinstance(k, int):
            raise MessageError(f"IndexRequest.k must be a non-negative integer, got {k!r}")
        return cls(origin=origin, k=k)

    def to_dict(self) -> Dict[str, Any]:
        return {'origin': self.origin, 'k': self.k}


@dataclass
class IndexResponse:
    status: ResponseStatus
    message: Optional[str] = None

    @classmethod
    def ok(cls, message: Optional[str] = None) -> 'IndexResponse':
        return cls(ResponseStatus.OK, message)

    @classmethod
    def error(cls, message: str) -> 'IndexResponse':
        return cls(ResponseStatus.ERROR, message)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'status': int(self.status)}
        if self.message is not None:
            data['message'] = self.message
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'IndexResponse':
        return cls(ResponseStatus(data.get('status', 0)), data.get('message'))


@dataclass
class SearchRequest:
    query: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SearchRequest':
        if not isinstance(data, dict):
            raise MessageError("SearchRequest must be a JSON object")
        query = data.get('query', '')
        if not isinstance(query, str):
            raise MessageError("SearchRequest.query must be a string")
        return cls(query=query)

    def to_dict(self) -> Dict[str, Any]:
        return {'query': self.query}


def result_to_dict(result: SearchResult) -> Dict[str, Any]:
    return {
        'relevant_url': result.relevant_url,
        'origin_url': result.origin_url,
        'depth': result.depth,
    }


def result_from_dict(data: Dict[str, Any]) -> SearchResult:
    return SearchResult(
        relevant_url=data.get('relevant_url', ''),
        origin_url=data.get('origin_url', ''),
        depth=int(data.get('depth', 0)),
    )


@dataclass
class SearchResponse:
    status: ResponseStatus
    message: Optional[str] = None
    results: List[SearchResult] = field(default_factory=list)

    @classmethod
    def ok(cls, results: List[SearchResult]) -> 'SearchResponse':
        return cls(ResponseStatus.OK, None, list(results))

    @classmethod
    def error(cls, message: str) -> 'SearchResponse':
        return cls(ResponseStatus.ERROR, message, [])

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'status': int(self.status),
            'results': [result_to_dict(r) for r in self.results],
        }
        if self.message is not None:
            data['message'] = self.message
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SearchResponse':
        return cls(
            ResponseStatus(data.get('status', 0)),
            data.get('message'),
            [result_from_dict(r) for r in data.get('results', [])],
        )
