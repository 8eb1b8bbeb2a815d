"""
Content classification: decides whether fetched bytes are HTML to crawl,
other text to index, or something to reject.
"""

import logging
from enum import Enum
from typing import Iterable, Optional


class ContentClass(Enum):
    """What the crawler may do with a fetched body."""
    CRAWLABLE = "crawlable"      # HTML: index the text and follow links
    INDEXABLE = "indexable"      # other text: index only
    REJECT = "reject"


SNIFF_WINDOW = 1024

# Leading-byte signatures of common binary formats.
BINARY_SIGNATURES = (
    (b'%PDF-', 'application/pdf'),
    (b'\x89PNG\r\n\x1a\n', 'image/png'),
    (b'\xff\xd8\xff', 'image/jpeg'),
    (b'GIF87a', 'image/gif'),
    (b'GIF89a', 'image/gif'),
    (b'\x00\x00\x01\x00', 'image/x-icon'),
    (b'PK\x03\x04', 'application/zip'),
    (b'\x1f\x8b', 'application/gzip'),
    (b'Rar!\x1a\x07', 'application/vnd.rar'),
    (b'7z\xbc\xaf\x27\x1c', 'application/x-7z-compressed'),
    (b'\x7fELF', 'application/x-executable'),
    (b'ID3', 'audio/mpeg'),
    (b'OggS', 'audio/ogg'),
    (b'fLaC', 'audio/flac'),
    (b'\x1aE\xdf\xa3', 'video/webm'),
    (b'wOFF', 'font/woff'),
    (b'wOF2', 'font/woff2'),
)

# Tags that identify a document as HTML when they open it.
HTML_SIGNATURES = (
    b'<!doctype html', b'<html', b'<head', b'<body', b'<script', b'<iframe',
    b'<h1', b'<div', b'<font', b'<table', b'<a', b'<style', b'<title', b'<b',
    b'<br', b'<p', b'<!--',
)

BOMS = (b'\xef\xbb\xbf', b'\xfe\xff', b'\xff\xfe')

HTML_TYPES = {'text/html', 'application/xhtml+xml'}
TEXT_TYPES = {
    'application/json', 'application/ld+json', 'application/xml',
    'application/rss+xml', 'application/atom+xml', 'application/javascript',
}


def media_type(content_type: Optional[str]) -> str:
    """Return the bare, lowercased media type of a Content-Type header."""
    if not content_type:
        return ''
    return content_type.split(';', 1)[0].strip().lower()


def sniff_binary(body: bytes) -> Optional[str]:
    """Return the MIME type of a recognised binary signature, if any."""
    head = body[:SNIFF_WINDOW]
    for signature, mime in BINARY_SIGNATURES:
        if head.startswith(signature):
            return mime
    if head[:4] == b'RIFF' and head[8:12] == b'WEBP':
        return 'image/webp'
    if head[4:8] == b'ftyp':
        return 'video/mp4'
    if b'\x00' in head and not head.startswith(BOMS[1:]):
        return 'application/octet-stream'
    return None


def sniff_html(body: bytes) -> bool:
    """True when the leading bytes open an HTML document."""
    head = body[:SNIFF_WINDOW]
    if head.startswith(BOMS[0]):
        head = head[len(BOMS[0]):]
    head = head.lstrip(b' \t\r\n\x0c').lower()
    for signature in HTML_SIGNATURES:
        if head.startswith(signature):
            following = head[len(signature):len(signature) + 1]
            if signature == b'<!--' or following in (b' ', b'>', b'\t', b'\n', b'\r', b'\x0c', b'/'):
                return True
    return False


def is_decodable_text(body: bytes) -> bool:
    """True when the sniff window decodes as UTF-8 (allowing a cut multibyte tail)."""
    head = body[:SNIFF_WINDOW]
    try:
        head.decode('utf-8')
        return True
    except UnicodeDecodeError as e:
        return e.start >= len(head) - 3 and len(body) > SNIFF_WINDOW


class ContentClassifier:
    """
    Classifies a fetched response into a ContentClass.

    The declared Content-Type is advisory; the body's leading bytes win when
    the two disagree.
    """

    def __init__(self, allowed_mimes: Optional[Iterable[str]] = None):
        self.allowed_mimes = {m.lower() for m in allowed_mimes} if allowed_mimes else set()
        self.logger = logging.getLogger(__name__)

    def classify(self, content_type: Optional[str], body: bytes) -> ContentClass:
        declared = media_type(content_type)

        binary_type = sniff_binary(body)
        if binary_type:
            if binary_type != declared:
                self.logger.debug(f"Body sniffed as {binary_type}, declared {declared or 'nothing'}")
            return ContentClass.REJECT

        if sniff_html(body):
            effective = declared if declared in HTML_TYPES else 'text/html'
            return self._apply_allow_list(effective, ContentClass.CRAWLABLE)

        if declared in HTML_TYPES:
            return self._apply_allow_list(declared, ContentClass.CRAWLABLE)

        if declared.startswith('text/') or declared in TEXT_TYPES or declared.endswith(('+xml', '+json')):
            return self._apply_allow_list(declared, ContentClass.INDEXABLE)

        if not declared and body and is_decodable_text(body):
            return self._apply_allow_list('text/plain', ContentClass.INDEXABLE)

        if declared == 'application/octet-stream' and body and is_decodable_text(body):
            return self._apply_allow_list('text/plain', ContentClass.INDEXABLE)

        return ContentClass.REJECT

    def _apply_allow_list(self, mime: str, content_class: ContentClass) -> ContentClass:
        if self.allowed_mimes and mime not in self.allowed_mimes:
            self.logger.debug(f"MIME type {mime} not in allow-list")
            return ContentClass.REJECT
        return content_class
