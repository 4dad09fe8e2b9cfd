import asyncio
from typing import Dict, List, Optional, Union

import pytest
from aiohttp.test_utils import TestClient, TestServer

from searchbot.crawler.fetcher import BaseFetcher, FetchError
from searchbot.storage.database import DatabaseManager
from searchbot.utils.config import CrawlerConfig, DatabaseConfig


class FakeFetcher(BaseFetcher):
    """
    Serves canned pages by URL.

    A page may be an HTML string or an exception instance to raise. Unknown
    URLs raise FetchError. ``delays`` holds per-URL sleeps in seconds.
    """

    def __init__(self, pages: Optional[Dict[str, Union[str, Exception]]] = None,
                 delays: Optional[Dict[str, float]] = None):
        super().__init__(user_agent="test-agent", retry_attempts=1, retry_backoff_max=0)
        self.pages = dict(pages or {})
        self.delays = dict(delays or {})
        self.fetched: List[str] = []

    async def start(self):
        pass

    async def close(self):
        pass

    async def _fetch_once(self, url: str) -> str:
        self.fetched.append(url)
        await asyncio.sleep(self.delays.get(url, 0))
        page = self.pages.get(url)
        if page is None:
            raise FetchError(url, "no such page", retryable=False)
        if isinstance(page, Exception):
            raise page
        return page


def keyword_page(*keywords: str, body: str = "", links: List[str] = ()) -> str:
    anchors = "".join(f'<a href="{link}">link</a>' for link in links)
    return (
        "<html><head>"
        f'<meta name="keywords" content="{", ".join(keywords)}">'
        f"<title>{' '.join(keywords)}</title>"
        f"</head><body><p>{body}</p>{anchors}</body></html>"
    )


def make_crawler_config(**overrides) -> CrawlerConfig:
    values = dict(
        seed_urls=["http://site.test/1"],
        target_pages=3,
        keyword_limit=10,
        description_length=200,
        max_links_per_page=50,
        workers=1,
        request_timeout=1.0,
        retry_attempts=1,
        retry_backoff_max=0.0,
    )
    values.update(overrides)
    return CrawlerConfig(**values)


@pytest.fixture
async def database(tmp_path):
    db = DatabaseManager(DatabaseConfig(path=str(tmp_path / "searchbot.db")))
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
async def client_factory():
    clients = []

    async def factory(app):
        client = TestClient(TestServer(app))
        await client.start_server()
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.close()
