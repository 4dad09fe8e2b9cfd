"""
URL frontier: the ordered, deduplicated registry of discovered URLs.

Every URL receives a position on first sighting. Positions start at 1, follow
insertion order and are never reused, so the coordinator can walk the crawl
with a plain integer cursor.
"""

import logging
from typing import Iterable, List

from ..storage.database import DatabaseManager, StorageError


class URLFrontier:
    """Position-addressed frontier backed by the ``robot_url`` table."""

    def __init__(self, database: DatabaseManager):
        self.database = database
        self.logger = logging.getLogger(__name__)

    async def insert_if_absent(self, url: str) -> int:
        """
        Add ``url`` to the frontier unless it is already known.

        Returns the position of the URL. Concurrent inserts of the same URL
        resolve to one position because the store ignores the duplicate.
        """
        position = await self.database.insert_url(url)
        self.logger.debug(f"Frontier position {position}: {url}")
        return position

    async def url_at_position(self, position: int) -> str:
        """Return the URL at ``position``; raises NotFoundError beyond the frontier."""
        return await self.database.url_at_position(position)

    async def count(self) -> int:
        return await self.database.url_count()

    async def positions_matching(self, term: str) -> List[int]:
        return await self.database.positions_matching(term)

    async def add_urls(self, urls: Iterable[str]) -> int:
        """
        Insert discovered URLs one by one.

        A failed insert is logged and skipped; the remaining URLs are still
        offered. Returns the number of inserts that reached the store.
        """
        added_count = 0
        for url in urls:
            try:
                await self.insert_if_absent(url)
                added_count += 1
            except StorageError as e:
                self.logger.error(f"Error adding URL to frontier {url}: {e}")
        return added_count

    async def seed(self, urls: Iterable[str]) -> List[int]:
        """Insert bootstrap URLs; storage errors propagate to the caller."""
        positions = [await self.insert_if_absent(url) for url in urls]
        self.logger.info(f"Seeded frontier with {len(positions)} URLs")
        return positions
