"""
Full-text index backed by an SQLite FTS5 table.

One connection is shared by every crawl run and every query; calls are
serialized by a lock and executed off the event loop.
"""

import asyncio
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


class IndexStoreError(Exception):
    """Raised when the index cannot be opened, written or queried."""
    pass


SCHEMA = """
CREATE VIRTUAL TABLE IF NOT EXISTS documents USING fts5(
    url UNINDEXED,
    origin_url UNINDEXED,
    depth UNINDEXED,
    body,
    tokenize = 'porter unicode61'
)
"""


class SearchIndex:
    """Add/overwrite documents by URL and run ranked full-text queries."""

    def __init__(self, path: str = ":memory:"):
        self.path = path
        self.logger = logging.getLogger(__name__)
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self.stats = {
            'documents_written': 0,
            'commits': 0,
            'queries': 0,
        }

    async def initialize(self):
        """Open the database and create the schema."""
        await asyncio.to_thread(self._open)
        self.logger.info(f"Search index opened at {self.path}")

    def _open(self):
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        try:
            connection = sqlite3.connect(self.path, check_same_thread=False)
            connection.execute(SCHEMA)
            connection.commit()
        except sqlite3.Error as e:
            raise IndexStoreError(f"Failed to open index at {self.path}: {e}") from e
        with self._lock:
            self._connection = connection

    def _run(self, operation, *args):
        with self._lock:
            if self._connection is None:
                raise IndexStoreError("Index is not open")
            try:
                return operation(self._connection, *args)
            except sqlite3.Error as e:
                raise IndexStoreError(str(e)) from e

    @staticmethod
    def _add(connection: sqlite3.Connection, url: str, origin_url: str, depth: int, body: str):
        connection.execute("DELETE FROM documents WHERE url = ?", (url,))
        connection.execute(
            "INSERT INTO documents (url, origin_url, depth, body) VALUES (?, ?, ?, ?)",
            (url, origin_url, depth, body)
        )

    @staticmethod
    def _search(connection: sqlite3.Connection, match: str, limit: int) -> List[Tuple[str, str, int]]:
        cursor = connection.execute(
            "SELECT url, origin_url, depth FROM documents "
            "WHERE documents MATCH ? ORDER BY bm25(documents) LIMIT ?",
            (match, limit)
        )
        return [(url, origin_url, int(depth)) for url, origin_url, depth in cursor.fetchall()]

    async def add_document(self, url: str, origin_url: str, depth: int, body: str):
        """Insert a document, replacing any earlier document with the same URL."""
        await asyncio.to_thread(self._run, self._add, url, origin_url, depth, body)
        self.stats['documents_written'] += 1

    async def commit(self):
        """Make pending writes durable and visible to new readers."""
        await asyncio.to_thread(self._run, lambda connection: connection.commit())
        self.stats['commits'] += 1

    async def search(self, match: str, limit: int) -> List[Tuple[str, str, int]]:
        """
        Run an FTS5 MATCH expression.

        Returns:
            (url, origin_url, depth) rows, best match first
        """
        self.stats['queries'] += 1
        return await asyncio.to_thread(self._run, self._search, match, limit)

    async def count(self) -> int:
        return await asyncio.to_thread(
            self._run, lambda connection: connection.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
        )

    async def get_stats(self) -> Dict[str, Any]:
        stats = self.stats.copy()
        stats['documents'] = await self.count()
        return stats

    async def close(self):
        """Commit outstanding writes and close the connection."""
        def _close():
            with self._lock:
                if self._connection is not None:
                    self._connection.commit()
                    self._connection.close()
                    self._connection = None
        await asyncio.to_thread(_close)
        self.logger.info("Search index closed")
