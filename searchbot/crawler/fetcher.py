"""
Page fetchers: plain HTTP through aiohttp, or rendered through headless Chromium.

Both expose ``fetch(url) -> html`` and raise FetchError once their bounded
retries are exhausted.
"""

import asyncio
import logging
import time
from typing import Dict, Optional

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError
from playwright.async_api import async_playwright, Error as PlaywrightError
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_random

from ..utils.config import CrawlerConfig


class FetchError(Exception):
    """Network, timeout, HTTP status or render failure for a URL."""

    def __init__(self, url: str, reason: str, retryable: bool = True):
        super().__init__(f"{reason} ({url})")
        self.url = url
        self.reason = reason
        self.retryable = retryable


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, FetchError) and exc.retryable


TEXT_CONTENT_TYPES = (
    'text/html',
    'text/plain',
    'application/xhtml+xml',
)


class BaseFetcher:
    """Retry policy shared by the fetchers."""

    def __init__(self, user_agent: str, request_timeout: float = 5.0,
                 retry_attempts: int = 3, retry_backoff_max: float = 2.0):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.retry_attempts = retry_attempts
        self.retry_backoff_max = retry_backoff_max
        self.logger = logging.getLogger(__name__)

        # Statistics
        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'total_bytes_downloaded': 0
        }

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        raise NotImplementedError

    async def close(self):
        raise NotImplementedError

    async def _fetch_once(self, url: str) -> str:
        raise NotImplementedError

    async def fetch(self, url: str) -> str:
        """
        Fetch ``url`` and return its HTML.

        Transient failures are retried up to ``retry_attempts`` times with a
        random pause of at most ``retry_backoff_max`` seconds between tries.

        Raises:
            FetchError: when the page could not be retrieved
        """
        start_time = time.time()
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.retry_attempts),
                wait=wait_random(0, self.retry_backoff_max),
                retry=retry_if_exception(_is_retryable),
                reraise=True,
            ):
                with attempt:
                    self.stats['total_requests'] += 1
                    if attempt.retry_state.attempt_number > 1:
                        self.logger.debug(
                            f"Retrying {url} (attempt {attempt.retry_state.attempt_number})"
                        )
                    html = await self._fetch_once(url)
        except FetchError:
            self.stats['failed_requests'] += 1
            raise

        self.stats['successful_requests'] += 1
        self.stats['total_bytes_downloaded'] += len(html)
        self.logger.debug(f"Fetched {url} in {time.time() - start_time:.2f}s ({len(html)} chars)")
        return html

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return self.stats.copy()


class WebFetcher(BaseFetcher):
    """Fetches raw HTML over HTTP with aiohttp."""

    def __init__(self, user_agent: str, request_timeout: float = 5.0,
                 retry_attempts: int = 3, retry_backoff_max: float = 2.0,
                 max_concurrent_requests: int = 10):
        super().__init__(user_agent, request_timeout, retry_attempts, retry_backoff_max)
        self.max_concurrent_requests = max_concurrent_requests
        self.session: Optional[ClientSession] = None

    async def start(self):
        """Initialize the fetcher session."""
        if self.session is None:
            timeout = ClientTimeout(total=self.request_timeout)
            headers = {
                'User-Agent': self.user_agent,
                'Accept': 'text/html,application/xhtml+xml;q=0.9,*/*;q=0.8',
                'Accept-Language': 'en-US,en;q=0.9',
            }

            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers=headers,
                connector=aiohttp.TCPConnector(
                    limit=self.max_concurrent_requests * 2,
                    limit_per_host=10,
                    ttl_dns_cache=300,
                    use_dns_cache=True
                )
            )
            self.logger.info("WebFetcher session started")

    async def close(self):
        """Close the fetcher session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.info("WebFetcher session closed")

    async def _fetch_once(self, url: str) -> str:
        if self.session is None:
            await self.start()

        try:
            async with self.session.get(url) as response:
                if response.status >= 500 or response.status == 429:
                    raise FetchError(url, f"HTTP {response.status}")
                if response.status >= 400:
                    raise FetchError(url, f"HTTP {response.status}", retryable=False)

                content_type = response.headers.get('content-type', '').lower()
                if not any(text_type in content_type for text_type in TEXT_CONTENT_TYPES):
                    raise FetchError(url, f"Non-text content type {content_type!r}", retryable=False)

                return await self._read_content_safely(url, response)

        except asyncio.TimeoutError as e:
            self.logger.warning(f"Timeout fetching {url}")
            raise FetchError(url, "Request timeout") from e

        except ClientError as e:
            self.logger.warning(f"Client error fetching {url}: {e}")
            raise FetchError(url, f"Client error: {e}") from e

    async def _read_content_safely(self, url: str, response,
                                   max_size: int = 10 * 1024 * 1024) -> str:
        """
        Read response content with a size limit.

        Args:
            url: The requested URL, for error reporting
            response: aiohttp response object
            max_size: Maximum content size in bytes (default 10MB)
        """
        content_length = response.headers.get('content-length')
        if content_length and content_length.isdigit() and int(content_length) > max_size:
            raise FetchError(url, f"Content too large ({content_length} bytes)", retryable=False)

        # Read content in chunks to respect size limit
        content_bytes = b''
        async for chunk in response.content.iter_chunked(8192):
            content_bytes += chunk
            if len(content_bytes) > max_size:
                raise FetchError(url, "Content exceeded size limit", retryable=False)

        encoding = response.charset or 'utf-8'
        try:
            return content_bytes.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            return content_bytes.decode('utf-8', errors='ignore')


class BrowserFetcher(BaseFetcher):
    """Renders pages in headless Chromium so JavaScript-built content is indexed."""

    def __init__(self, user_agent: str, request_timeout: float = 5.0,
                 retry_attempts: int = 3, retry_backoff_max: float = 2.0):
        super().__init__(user_agent, request_timeout, retry_attempts, retry_backoff_max)
        self._playwright = None
        self.browser = None
        self.context = None

    async def start(self):
        if self.context is None:
            self._playwright = await async_playwright().start()
            self.browser = await self._playwright.chromium.launch(
                headless=True,
                args=['--disable-dev-shm-usage', '--no-sandbox', '--disable-extensions'],
            )
            self.context = await self.browser.new_context(
                user_agent=self.user_agent,
                java_script_enabled=True,
                extra_http_headers={'Accept-Language': 'en-US,en;q=0.9'},
            )
            self.context.set_default_timeout(self.request_timeout * 1000)
            self.logger.info("BrowserFetcher started")

    async def close(self):
        if self.context:
            await self.context.close()
            self.context = None
        if self.browser:
            await self.browser.close()
            self.browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
            self.logger.info("BrowserFetcher closed")

    async def _fetch_once(self, url: str) -> str:
        if self.context is None:
            await self.start()

        timeout_ms = self.request_timeout * 1000
        page = await self.context.new_page()
        try:
            response = await page.goto(url, timeout=timeout_ms, wait_until='domcontentloaded')
            if response is not None and response.status >= 400:
                raise FetchError(url, f"HTTP {response.status}",
                                 retryable=response.status >= 500 or response.status == 429)
            try:
                await page.wait_for_load_state('networkidle', timeout=timeout_ms)
            except PlaywrightError:
                # Pages that keep polling never go idle; read what has rendered.
                self.logger.debug(f"Network never settled for {url}")
            return await page.content()

        except PlaywrightError as e:
            self.logger.warning(f"Render error fetching {url}: {e}")
            raise FetchError(url, f"Render error: {e}") from e

        finally:
            await page.close()


def create_fetcher(config: CrawlerConfig) -> BaseFetcher:
    """Build the fetcher selected by ``crawler.renderer``."""
    if config.renderer == 'browser':
        return BrowserFetcher(
            user_agent=config.user_agent,
            request_timeout=config.request_timeout,
            retry_attempts=config.retry_attempts,
            retry_backoff_max=config.retry_backoff_max,
        )
    return WebFetcher(
        user_agent=config.user_agent,
        request_timeout=config.request_timeout,
        retry_attempts=config.retry_attempts,
        retry_backoff_max=config.retry_backoff_max,
        max_concurrent_requests=config.workers,
    )
