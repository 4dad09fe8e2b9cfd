"""
Crawl worker: fetches a page, analyzes it and writes the results back.
"""

import asyncio
import logging
from typing import Optional

from .analyzer import ContentAnalyzer, PageAnalysis, count_occurrences
from .fetcher import BaseFetcher, FetchError
from .parser import ParseError
from .tasks import CrawlTask, PhraseHit, PhraseVerifyTask, StopSignal, TaskRequest
from .url_frontier import URLFrontier
from ..storage.database import DatabaseManager, NotFoundError, StorageError
from ..utils.logger import get_crawler_logger
from ..utils.monitoring import CrawlerMonitor, initialize_monitoring


class CrawlWorker:
    """
    Processes tasks handed out by the coordinator.

    In crawl mode the worker loops: request a task, run it, report whether the
    fetch worked, until it receives a StopSignal. A failed position is never
    retried here; the coordinator compensates by granting extra positions.
    """

    def __init__(self, worker_id: str, database: DatabaseManager, fetcher: BaseFetcher,
                 analyzer: ContentAnalyzer, inbox: Optional[asyncio.Queue] = None,
                 monitor: Optional[CrawlerMonitor] = None):
        self.worker_id = worker_id
        self.database = database
        self.frontier = URLFrontier(database)
        self.fetcher = fetcher
        self.analyzer = analyzer
        self.inbox = inbox
        self.monitor = monitor or initialize_monitoring()
        self.logger = get_crawler_logger(__name__, worker_id=worker_id)

        self.reply: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._halted = asyncio.Event()
        self.tasks_completed = 0

    def halt(self):
        """Skip all persistence from now on; an in-flight fetch is left to finish."""
        self._halted.set()

    @property
    def halted(self) -> bool:
        return self._halted.is_set()

    async def run(self):
        """Request tasks from the coordinator until told to stop."""
        if self.inbox is None:
            raise RuntimeError(f"{self.worker_id} has no coordinator inbox")

        success = True
        while True:
            await self.inbox.put(TaskRequest(self.worker_id, success, self.reply))
            task = await self.reply.get()

            if isinstance(task, StopSignal):
                self.logger.info(f"No more positions to process, exiting ({task.reason})")
                return
            if not isinstance(task, CrawlTask):
                raise TypeError(f"Unexpected task for crawl loop: {task!r}")

            try:
                success = await self.crawl(task)
            except Exception:
                self.logger.exception(f"Unexpected error crawling position {task.position}")
                self.monitor.record_crawl_failure('unexpected')
                success = False
            self.tasks_completed += 1

    async def crawl(self, task: CrawlTask) -> bool:
        """
        Fetch and index the page at ``task.position``.

        Returns False when the position is unknown or the fetch failed, True
        otherwise (including pages that yield nothing to index).
        """
        try:
            url = await self.frontier.url_at_position(task.position)
        except NotFoundError:
            self.logger.warning(f"No URL found at position {task.position}")
            self.monitor.record_crawl_failure('not_found')
            return False
        except StorageError as e:
            self.logger.error(f"Error retrieving URL at position {task.position}: {e}")
            self.monitor.record_crawl_failure('storage')
            return False

        self.logger.info(f"Processing position {task.position}: {url}")

        try:
            html = await self.fetcher.fetch(url)
        except FetchError as e:
            self.logger.log_url_event(logging.WARNING, url, f"Failed to fetch ({e.reason})")
            self.monitor.record_crawl_failure('fetch')
            return False

        self.monitor.record_page_crawled()

        try:
            analysis = self.analyzer.analyze(html, url)
        except ParseError as e:
            self.logger.log_url_event(logging.WARNING, url, f"Unparseable HTML ({e})")
            return True

        await self._store(analysis)
        return True

    async def _store(self, analysis: PageAnalysis):
        """Write links, keywords and description; each write stands alone."""
        if self.halted:
            return
        added = await self.frontier.add_urls(analysis.links)
        self.logger.debug(f"Offered {added} links from {analysis.url}")

        if not analysis.keywords:
            self.logger.log_url_event(logging.INFO, analysis.url, "No keywords found")
            return

        if self.halted:
            return
        try:
            await self.database.upsert_keywords(analysis.url, analysis.keywords, analysis.ranks)
        except StorageError as e:
            self.logger.error(f"Error storing keywords for {analysis.url}: {e}")

        if self.halted:
            return
        try:
            await self.database.upsert_description(analysis.url, analysis.description)
        except StorageError as e:
            self.logger.error(f"Error storing description for {analysis.url}: {e}")
            return

        self.monitor.record_page_indexed()
        self.logger.log_url_event(
            logging.INFO, analysis.url, f"Indexed {len(analysis.keywords)} keywords"
        )

    async def verify(self, task: PhraseVerifyTask) -> Optional[PhraseHit]:
        """
        Re-fetch the page at ``task.position`` and rank it by phrase occurrences.

        Returns None when the page is unavailable, or when ``match_all`` is set
        and some phrase does not occur at all.
        """
        try:
            url = await self.frontier.url_at_position(task.position)
        except (NotFoundError, StorageError) as e:
            self.logger.warning(f"Cannot verify position {task.position}: {e}")
            return None

        try:
            html = await self.fetcher.fetch(url)
            text = self.analyzer.parser.parse(html).visible_text()
        except (FetchError, ParseError) as e:
            self.logger.log_url_event(logging.WARNING, url, f"Phrase verification failed ({e})")
            return None

        rank = 0
        for phrase in task.phrases:
            count = count_occurrences(text, phrase)
            if task.match_all and count == 0:
                return None
            rank += count
        return PhraseHit(url=url, rank=rank)
