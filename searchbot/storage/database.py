"""
Relational storage for the frontier and the keyword index.

Three tables back the system:

* ``robot_url`` - every discovered URL with its crawl position,
* ``url_keyword`` - ranked keywords per indexed URL,
* ``url_description`` - one description per indexed URL.

The connection runs in autocommit mode so every statement is committed on its
own; nothing spans tables and a partially indexed page is never rolled back.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import aiosqlite

from ..utils.config import DatabaseConfig


class StorageError(Exception):
    """Raised when a read or write against the backing store fails."""
    pass


class NotFoundError(Exception):
    """Raised when no frontier entry holds the requested position."""

    def __init__(self, position: int):
        super().__init__(f"No URL at position {position}")
        self.position = position


SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS robot_url (
        pos INTEGER PRIMARY KEY AUTOINCREMENT,
        url TEXT NOT NULL UNIQUE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS url_keyword (
        url TEXT NOT NULL,
        keyword TEXT NOT NULL,
        rank INTEGER NOT NULL,
        PRIMARY KEY (url, keyword)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS url_description (
        url TEXT PRIMARY KEY,
        description TEXT
    )
    """,
)

TABLES = ('robot_url', 'url_keyword', 'url_description')


def like_pattern(term: str) -> str:
    """Build a substring LIKE pattern that matches ``term`` literally."""
    escaped = term.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
    return f"%{escaped}%"


class DatabaseManager:
    """
    Owns the SQLite connection and exposes the frontier and index operations.

    Constructed once by the application entry point and passed to the
    coordinator, the workers and the search engine.
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.connection: Optional[aiosqlite.Connection] = None
        self.logger = logging.getLogger(__name__)

    async def initialize(self):
        """Open the connection and create (and optionally empty) the tables."""
        try:
            if self.config.path != ':memory:':
                Path(self.config.path).parent.mkdir(parents=True, exist_ok=True)

            self.connection = await aiosqlite.connect(self.config.path, isolation_level=None)
            self.connection.row_factory = aiosqlite.Row

            for statement in SCHEMA:
                await self.connection.execute(statement)

            if self.config.reset_on_start:
                await self.reset()

            self.logger.info(f"Database initialized at {self.config.path}")

        except (aiosqlite.Error, OSError) as e:
            raise StorageError(f"Failed to initialize database: {e}") from e

    async def reset(self):
        """Empty every table and restart position numbering at 1."""
        for table in TABLES:
            await self._execute(f"DELETE FROM {table}")
        await self._execute("DELETE FROM sqlite_sequence WHERE name = 'robot_url'")
        self.logger.info("Truncated tables: " + ", ".join(TABLES))

    async def _execute(self, query: str, params: Sequence = ()):
        if not self.connection:
            raise StorageError("Database not initialized")
        try:
            await self.connection.execute(query, params)
        except aiosqlite.Error as e:
            raise StorageError(str(e)) from e

    async def _fetchall(self, query: str, params: Sequence = ()) -> List[aiosqlite.Row]:
        if not self.connection:
            raise StorageError("Database not initialized")
        try:
            async with self.connection.execute(query, params) as cursor:
                return list(await cursor.fetchall())
        except aiosqlite.Error as e:
            raise StorageError(str(e)) from e

    async def _fetchone(self, query: str, params: Sequence = ()) -> Optional[aiosqlite.Row]:
        rows = await self._fetchall(query, params)
        return rows[0] if rows else None

    # ---------------------------------------------------------------- frontier

    async def insert_url(self, url: str) -> int:
        """Insert ``url`` unless already known; return its position."""
        # Only allocate a row id when the URL is new, so positions stay gap-free
        await self._execute(
            "INSERT OR IGNORE INTO robot_url (url) "
            "SELECT ? WHERE NOT EXISTS (SELECT 1 FROM robot_url WHERE url = ?)",
            (url, url)
        )
        row = await self._fetchone("SELECT pos FROM robot_url WHERE url = ?", (url,))
        if row is None:
            raise StorageError(f"Inserted URL vanished from robot_url: {url}")
        return row['pos']

    async def url_at_position(self, position: int) -> str:
        row = await self._fetchone("SELECT url FROM robot_url WHERE pos = ?", (position,))
        if row is None:
            raise NotFoundError(position)
        return row['url']

    async def url_count(self) -> int:
        row = await self._fetchone("SELECT COUNT(*) AS count FROM robot_url")
        return row['count']

    async def positions_matching(self, term: str) -> List[int]:
        """Positions whose URL contains ``term`` as a substring."""
        if not term:
            return []
        rows = await self._fetchall(
            "SELECT pos FROM robot_url WHERE url LIKE ? ESCAPE '\\' ORDER BY pos",
            (like_pattern(term),)
        )
        return [row['pos'] for row in rows]

    # ------------------------------------------------------------------- index

    async def upsert_keywords(self, url: str, keywords: Sequence[str], ranks: Sequence[int]):
        """Store keyword ranks for ``url``, overwriting earlier ranks."""
        if len(keywords) != len(ranks):
            raise ValueError("Keywords and ranks must have the same length")
        if not self.connection:
            raise StorageError("Database not initialized")
        try:
            await self.connection.executemany(
                "INSERT INTO url_keyword (url, keyword, rank) VALUES (?, ?, ?) "
                "ON CONFLICT (url, keyword) DO UPDATE SET rank = excluded.rank",
                [(url, keyword, rank) for keyword, rank in zip(keywords, ranks)]
            )
        except aiosqlite.Error as e:
            raise StorageError(str(e)) from e

    async def upsert_description(self, url: str, description: str):
        await self._execute(
            "INSERT INTO url_description (url, description) VALUES (?, ?) "
            "ON CONFLICT (url) DO UPDATE SET description = excluded.description",
            (url, description)
        )

    async def description_count(self) -> int:
        """Number of distinct URLs with a stored description (indexed pages)."""
        row = await self._fetchone("SELECT COUNT(*) AS count FROM url_description")
        return row['count']

    async def descriptions_for(self, urls: Iterable[str]) -> Dict[str, str]:
        urls = list(dict.fromkeys(urls))
        if not urls:
            return {}
        placeholders = ', '.join('?' for _ in urls)
        rows = await self._fetchall(
            f"SELECT url, description FROM url_description WHERE url IN ({placeholders})",
            urls
        )
        return {row['url']: row['description'] for row in rows}

    async def search_keywords(self, terms: Sequence[str], match_all: bool = False) -> List[Dict]:
        """
        Rank indexed URLs by the summed rank of keywords containing the terms.

        With ``match_all`` every term has to match at least one keyword of the
        URL; otherwise any term is enough.
        """
        if not terms:
            return []

        patterns = [like_pattern(term) for term in terms]
        condition = " OR ".join("k.keyword LIKE ? ESCAPE '\\'" for _ in terms)
        query = (
            "SELECT k.url AS url, d.description AS description, SUM(k.rank) AS rank "
            "FROM url_keyword k "
            "INNER JOIN url_description d ON k.url = d.url "
            f"WHERE ({condition}) "
            "GROUP BY k.url "
        )
        params = list(patterns)
        if match_all:
            query += "HAVING " + " AND ".join(
                "SUM(k.keyword LIKE ? ESCAPE '\\') > 0" for _ in terms
            ) + " "
            params.extend(patterns)
        query += "ORDER BY rank DESC, k.url ASC"

        rows = await self._fetchall(query, params)
        return [
            {'url': row['url'], 'description': row['description'], 'rank': row['rank']}
            for row in rows
        ]

    async def get_stats(self) -> Dict[str, int]:
        """Get storage statistics."""
        row = await self._fetchone("SELECT COUNT(*) AS count FROM url_keyword")
        return {
            'urls': await self.url_count(),
            'indexed': await self.description_count(),
            'keywords': row['count'],
        }

    async def close(self):
        """Close database connections."""
        if self.connection:
            await self.connection.close()
            self.connection = None
            self.logger.info("Database connection closed")
