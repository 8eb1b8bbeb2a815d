"""
Per-site robots.txt cache used to decide whether a URL may be fetched.
"""

import asyncio
import logging
from typing import Dict, Optional
from urllib.robotparser import RobotFileParser

from aiohttp import ClientError

from .fetcher import WebFetcher
from .url_frontier import site_authority


class PolicyLoadAborted(Exception):
    """The task loading a site's robots.txt was cancelled before it finished."""
    pass


class ExclusionRuleSet:
    """Parsed robots.txt rules for one site authority."""

    def __init__(self, authority: str, parser: RobotFileParser, crawl_delay: Optional[float] = None):
        self.authority = authority
        self.parser = parser
        self.crawl_delay = crawl_delay

    @classmethod
    def from_text(cls, authority: str, robots_content: str, user_agent: str) -> 'ExclusionRuleSet':
        rp = RobotFileParser()
        rp.set_url(f"{authority}/robots.txt")
        rp.parse(robots_content.splitlines())
        delay = rp.crawl_delay(user_agent)
        return cls(authority, rp, float(delay) if delay is not None else None)

    @classmethod
    def allow_all(cls, authority: str) -> 'ExclusionRuleSet':
        rp = RobotFileParser()
        rp.set_url(f"{authority}/robots.txt")
        rp.allow_all = True
        return cls(authority, rp)

    @classmethod
    def disallow_all(cls, authority: str) -> 'ExclusionRuleSet':
        rp = RobotFileParser()
        rp.set_url(f"{authority}/robots.txt")
        rp.disallow_all = True
        return cls(authority, rp)

    def allows(self, url: str, user_agent: str) -> bool:
        return self.parser.can_fetch(user_agent, url)


class ExclusionPolicyCache:
    """
    Fetches each site's robots.txt once per crawl run and answers
    ``is_allowed`` from the cached rules.

    Concurrent lookups for a site whose rules are not cached yet share a
    single in-flight fetch.
    """

    def __init__(self, fetcher: WebFetcher, user_agent: str,
                 default_delay: float = 0.0, max_crawl_delay: float = 10.0):
        self.fetcher = fetcher
        self.user_agent = user_agent
        self.default_delay = default_delay
        self.max_crawl_delay = max_crawl_delay
        self.robots_cache: Dict[str, asyncio.Future] = {}
        self.logger = logging.getLogger(__name__)
        self.stats = {
            'policies_fetched': 0,
            'policies_missing': 0,
        }

    async def get_rules(self, url: str) -> ExclusionRuleSet:
        """Return the cached rules for the URL's site, fetching them on first use."""
        authority = site_authority(url)

        while True:
            future = self.robots_cache.get(authority)
            if future is None:
                return await self._load_shared(authority)
            try:
                return await asyncio.shield(future)
            except PolicyLoadAborted:
                # The loading task went away; the next pass loads in this task
                self.logger.debug(f"robots.txt load for {authority} was cancelled, retrying")

    async def _load_shared(self, authority: str) -> ExclusionRuleSet:
        """Load the rules in this task and publish them to concurrent lookups."""
        future = asyncio.get_running_loop().create_future()
        self.robots_cache[authority] = future
        try:
            rules = await self._load_rules(authority)
        except asyncio.CancelledError:
            del self.robots_cache[authority]
            future.set_exception(PolicyLoadAborted(authority))
            future.exception()
            raise
        except Exception as e:
            # Failures are not cached; the next lookup fetches again
            del self.robots_cache[authority]
            future.set_exception(e)
            future.exception()
            raise
        future.set_result(rules)
        return rules

    async def is_allowed(self, url: str) -> bool:
        rules = await self.get_rules(url)
        allowed = rules.allows(url, self.user_agent)
        if not allowed:
            self.logger.info(f"robots.txt disallows {url}")
        return allowed

    def crawl_delay(self, url: str) -> float:
        """Delay between requests to the URL's site, from cached rules or the default."""
        future = self.robots_cache.get(site_authority(url))
        delay = None
        if future is not None and future.done() and not future.cancelled() and future.exception() is None:
            delay = future.result().crawl_delay
        if delay is None:
            return self.default_delay
        return min(max(delay, 0.0), self.max_crawl_delay)

    async def _load_rules(self, authority: str) -> ExclusionRuleSet:
        robots_url = f"{authority}/robots.txt"
        try:
            status, robots_content = await self.fetcher.fetch_text(robots_url)
        except (ClientError, asyncio.TimeoutError, ValueError) as e:
            self.logger.warning(f"Could not fetch robots.txt for {authority}: {e}")
            self.stats['policies_missing'] += 1
            return ExclusionRuleSet.allow_all(authority)

        if status in (401, 403):
            self.logger.info(f"robots.txt for {authority} is access-restricted ({status}), disallowing site")
            self.stats['policies_fetched'] += 1
            return ExclusionRuleSet.disallow_all(authority)

        if not 200 <= status < 300:
            self.logger.debug(f"No robots.txt for {authority} (HTTP {status}), allowing all")
            self.stats['policies_missing'] += 1
            return ExclusionRuleSet.allow_all(authority)

        self.stats['policies_fetched'] += 1
        self.logger.debug(f"Loaded robots.txt for {authority}")
        return ExclusionRuleSet.from_text(authority, robots_content, self.user_agent)
