"""
Crawl engine components.
"""

from .url_frontier import CrawlTask, VisitedSet, normalize_url
from .fetcher import WebFetcher, FetchResult, OutcomeKind
from .robots import ExclusionPolicyCache, ExclusionRuleSet
from .classifier import ContentClassifier, ContentClass
from .parser import ContentParser, ParsedContent
from .scheduler import CrawlerScheduler, CrawlSummary, CrawlError, InvalidOriginError

__all__ = [
    'CrawlTask', 'VisitedSet', 'normalize_url',
    'WebFetcher', 'FetchResult', 'OutcomeKind',
    'ExclusionPolicyCache', 'ExclusionRuleSet',
    'ContentClassifier', 'ContentClass',
    'ContentParser', 'ParsedContent',
    'CrawlerScheduler', 'CrawlSummary', 'CrawlError', 'InvalidOriginError'
]
