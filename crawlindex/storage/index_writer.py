"""
Turns crawled pages into index documents and writes them to the search index.
"""

import logging
from dataclasses import dataclass

from .search_index import SearchIndex, IndexStoreError


class IndexWriteError(Exception):
    """Raised when a single document could not be written or committed."""
    pass


@dataclass(frozen=True)
class IndexedDocument:
    """A crawled page as stored in the index."""
    url: str
    origin: str
    depth: int
    extracted_text: str


class IndexWriter:
    """
    Writes documents to a SearchIndex and commits them every
    ``commit_interval`` writes, plus whenever ``commit`` is called.
    """

    def __init__(self, index: SearchIndex, commit_interval: int = 50):
        self.index = index
        self.commit_interval = commit_interval
        self.logger = logging.getLogger(__name__)
        self._pending = 0

    @staticmethod
    def document_for(task, text: str) -> IndexedDocument:
        """Build the document for a crawled task (anything with url, origin and depth)."""
        return IndexedDocument(
            url=task.url,
            origin=task.origin,
            depth=task.depth,
            extracted_text=text
        )

    async def write(self, document: IndexedDocument):
        try:
            await self.index.add_document(
                document.url, document.origin, document.depth, document.extracted_text
            )
        except IndexStoreError as e:
            raise IndexWriteError(f"Failed to index {document.url}: {e}") from e

        self.logger.debug(f"Indexed {document.url} (origin {document.origin}, depth {document.depth})")
        self._pending += 1
        if self._pending >= self.commit_interval:
            await self.commit()

    async def commit(self):
        try:
            await self.index.commit()
        except IndexStoreError as e:
            raise IndexWriteError(f"Failed to commit index: {e}") from e
        self._pending = 0
