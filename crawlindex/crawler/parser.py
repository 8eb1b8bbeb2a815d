"""
Page parser for extracting outbound links and indexable text.
"""

import re
import logging
from typing import List, Optional
from urllib.parse import urljoin, urlparse
from dataclasses import dataclass, field
from bs4 import BeautifulSoup, Comment, UnicodeDammit

from .url_frontier import normalize_url
from .classifier import media_type


@dataclass
class ParsedContent:
    """Container for parsed page content."""
    url: str
    title: Optional[str] = None
    content: Optional[str] = None
    meta_description: Optional[str] = None
    links: List[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        """Everything worth indexing, as one string."""
        return ' '.join(part for part in (self.title, self.meta_description, self.content) if part)


SKIP_EXTENSIONS = (
    '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.svg', '.webp',
    '.pdf', '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx',
    '.zip', '.rar', '.tar', '.gz', '.exe', '.dmg', '.iso',
    '.mp3', '.mp4', '.avi', '.mov', '.wmv', '.flv',
    '.css', '.js', '.ico', '.woff', '.woff2', '.ttf', '.eot'
)


class ContentParser:
    """
    Parses HTML into an ordered list of outbound links plus the page text.
    """

    def __init__(self, allowed_domains: Optional[List[str]] = None,
                 blocked_domains: Optional[List[str]] = None,
                 same_domain_only: bool = False):
        self.allowed_domains = {d.lower() for d in allowed_domains} if allowed_domains else set()
        self.blocked_domains = {d.lower() for d in blocked_domains} if blocked_domains else set()
        self.same_domain_only = same_domain_only
        self.logger = logging.getLogger(__name__)

        self.whitespace_pattern = re.compile(r'\s+')

    def parse(self, url: str, html_content: bytes, content_type: Optional[str] = None) -> ParsedContent:
        """
        Parse an HTML page.

        Args:
            url: The URL the page was fetched from (base for relative links)
            html_content: Raw HTML bytes
            content_type: Declared Content-Type header, used for its charset

        Returns:
            ParsedContent with title, text and outbound links
        """
        soup = BeautifulSoup(html_content, 'lxml', from_encoding=self._charset(content_type))

        parsed_content = ParsedContent(url=url)
        parsed_content.links = self._extract_links(soup, url)

        for script in soup(["script", "style", "noscript", "template"]):
            script.decompose()

        for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
            comment.extract()

        self._extract_title(soup, parsed_content)
        self._extract_meta_description(soup, parsed_content)
        self._extract_main_content(soup, parsed_content)

        self.logger.debug(f"Parsed content from {url}: "
                          f"{len(parsed_content.content or '')} chars, {len(parsed_content.links)} links")

        return parsed_content

    def extract_links(self, base_url: str, html_content: bytes) -> List[str]:
        """Return the absolute, normalized outbound links of a page in document order."""
        return self._extract_links(BeautifulSoup(html_content, 'lxml'), base_url)

    def extract_text(self, body: bytes, content_type: Optional[str] = None) -> str:
        """Extract indexable text from a non-HTML textual body."""
        kind = media_type(content_type)
        if kind.endswith('xml') and kind != 'application/xhtml+xml':
            text = BeautifulSoup(body, 'xml').get_text(separator=' ')
        else:
            charset = self._charset(content_type)
            dammit = UnicodeDammit(body, [charset] if charset else [])
            text = dammit.unicode_markup or ''
        return self._clean_text(text)

    def _extract_title(self, soup: BeautifulSoup, parsed_content: ParsedContent):
        title_tag = soup.find('title')
        if title_tag:
            parsed_content.title = self._clean_text(title_tag.get_text())

    def _extract_meta_description(self, soup: BeautifulSoup, parsed_content: ParsedContent):
        meta_desc = soup.find('meta', attrs={'name': 'description'}) or \
            soup.find('meta', attrs={'property': 'og:description'})
        if meta_desc:
            parsed_content.meta_description = self._clean_text(meta_desc.get('content', ''))

    def _extract_main_content(self, soup: BeautifulSoup, parsed_content: ParsedContent):
        """Extract the visible body text."""
        content_element = soup.find('body') or soup
        text_content = content_element.get_text(separator=' ', strip=True)
        parsed_content.content = self._clean_text(text_content)

    def _extract_links(self, soup: BeautifulSoup, base_url: str) -> List[str]:
        """Extract and normalize links, keeping first-occurrence order."""
        base_tag = soup.find('base', href=True)
        if base_tag:
            base_url = urljoin(base_url, base_tag['href'].strip())

        links = {}
        for link in soup.find_all('a', href=True):
            href = link['href'].strip()
            if not href or href.startswith(('#', 'javascript:', 'mailto:', 'tel:', 'data:')):
                continue

            rel = link.get('rel') or []
            if 'nofollow' in [r.lower() for r in rel]:
                continue

            try:
                normalized_url = normalize_url(urljoin(base_url, href))
            except ValueError:
                continue

            if self._is_valid_url(normalized_url, base_url):
                links.setdefault(normalized_url, None)

        return list(links)

    def _is_valid_url(self, url: str, source_url: str) -> bool:
        """Check if URL is valid for crawling."""
        parsed = urlparse(url)

        if parsed.scheme not in ('http', 'https') or not parsed.hostname:
            return False

        domain = parsed.hostname

        if self.same_domain_only and domain != (urlparse(source_url).hostname or '').lower():
            return False

        if self.blocked_domains and any(self._matches_domain(domain, d) for d in self.blocked_domains):
            return False

        if self.allowed_domains and not any(self._matches_domain(domain, d) for d in self.allowed_domains):
            return False

        if parsed.path.lower().endswith(SKIP_EXTENSIONS):
            return False

        return True

    @staticmethod
    def _matches_domain(domain: str, pattern: str) -> bool:
        return domain == pattern or domain.endswith('.' + pattern)

    @staticmethod
    def _charset(content_type: Optional[str]) -> Optional[str]:
        if not content_type:
            return None
        match = re.search(r'charset=["\']?([\w.:-]+)', content_type, re.IGNORECASE)
        return match.group(1) if match else None

    def _clean_text(self, text: str) -> str:
        """Collapse whitespace."""
        if not text:
            return ""
        return self.whitespace_pattern.sub(' ', text.strip())
