"""
crawlindex

A crawl-and-index service: crawls the pages reachable from an origin URL
up to a depth bound and answers full-text searches over what it indexed.
"""

__version__ = "1.0.0"
__description__ = "Crawl-and-index service with full-text search"
