"""
Crawl coordinator: hands frontier positions to workers and opens the index.

All dispatch state (the position cursor, the compensation quota and the
index-ready gate) belongs to the coordinator's message loop. Workers never
touch it; they only send messages to the coordinator's inbox.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from .analyzer import ContentAnalyzer
from .fetcher import BaseFetcher
from .tasks import (
    CoordinatorMessage, CrawlTask, HaltRequest, PhraseHit, PhraseVerifyTask,
    StopSignal, TaskRequest, WorkerExited,
)
from .url_frontier import URLFrontier
from .worker import CrawlWorker
from ..storage.database import DatabaseManager, StorageError
from ..utils.config import CrawlerConfig
from ..utils.monitoring import CrawlerMonitor, initialize_monitoring


@dataclass
class IndexReadiness:
    """Whether the index is still being built, and the bookkeeping behind it."""
    building: bool = True
    indexed_count: int = 0
    compensation_quota: int = 0


@dataclass
class CrawlStats:
    """Statistics for crawl operations."""
    start_time: float
    dispatched: int = 0
    failures: int = 0
    parked: int = 0

    @property
    def elapsed_time(self) -> float:
        return time.time() - self.start_time


class CrawlCoordinator:
    """
    Owns the worker pool and decides which position each worker crawls next.

    The crawl stops once ``target_pages`` pages carry a description (are
    indexed). Each failed task earns one extra position; when the target is
    still missed after the granted positions are used up, the shortfall is
    granted as well.
    """

    def __init__(self, config: CrawlerConfig, database: DatabaseManager, fetcher: BaseFetcher,
                 analyzer: Optional[ContentAnalyzer] = None,
                 monitor: Optional[CrawlerMonitor] = None,
                 phrase_timeout: float = 30.0):
        self.config = config
        self.database = database
        self.frontier = URLFrontier(database)
        self.fetcher = fetcher
        self.analyzer = analyzer or ContentAnalyzer(
            keyword_limit=config.keyword_limit,
            description_length=config.description_length,
            max_links_per_page=config.max_links_per_page,
        )
        self.monitor = monitor or initialize_monitoring()
        self.phrase_timeout = phrase_timeout
        self.logger = logging.getLogger(__name__)

        self.target = config.target_pages
        self.position = 1
        self.readiness = IndexReadiness()
        self.stats = CrawlStats(start_time=time.time())

        self.inbox: "asyncio.Queue[CoordinatorMessage]" = asyncio.Queue()
        self.workers: List[CrawlWorker] = []
        self._worker_tasks: List[asyncio.Task] = []
        self._in_flight: Dict[str, int] = {}
        self._parked: List[TaskRequest] = []
        self._halted = False

    @property
    def is_building(self) -> bool:
        """True until the index-ready gate opens; never true again afterwards."""
        return self.readiness.building

    async def seed(self, urls: Iterable[str]):
        """Insert bootstrap URLs before any worker starts."""
        await self.frontier.seed(urls)

    def halt(self, reason: str = "halt requested"):
        """Ask the coordinator loop to stop dispatching."""
        self.inbox.put_nowait(HaltRequest(reason))

    async def run(self, max_duration: Optional[float] = None):
        """
        Start the worker pool and serve task requests until every worker exits.

        Args:
            max_duration: Halt the crawl after this many seconds (None for unlimited)
        """
        self.stats = CrawlStats(start_time=time.time())
        self.workers = [
            CrawlWorker(
                worker_id=f"worker-{i}",
                database=self.database,
                fetcher=self.fetcher,
                analyzer=self.analyzer,
                inbox=self.inbox,
                monitor=self.monitor,
            )
            for i in range(self.config.workers)
        ]

        for worker in self.workers:
            task = asyncio.create_task(worker.run(), name=worker.worker_id)
            task.add_done_callback(self._worker_done_callback(worker.worker_id))
            self._worker_tasks.append(task)

        active = len(self.workers)
        self.monitor.update_active_workers(active)
        self.logger.info(f"Started crawling with {active} workers, target {self.target} pages")

        timer = None
        if max_duration:
            timer = asyncio.get_running_loop().call_later(
                max_duration, self.halt, f"reached max duration of {max_duration}s"
            )

        try:
            while active > 0:
                message = await self.inbox.get()
                if isinstance(message, TaskRequest):
                    await self._handle_request(message)
                elif isinstance(message, WorkerExited):
                    active -= 1
                    self.monitor.update_active_workers(active)
                    await self._handle_worker_exit(message)
                elif isinstance(message, HaltRequest):
                    await self._handle_halt(message)
                else:
                    raise TypeError(f"Unexpected coordinator message: {message!r}")
        except BaseException as e:
            self._open_gate(f"crawl stopped abnormally ({e!r})")
            raise
        finally:
            if timer:
                timer.cancel()
            await self._cleanup_workers()

        if self.readiness.building:
            self._open_gate("all workers exited before the target was reached")
        self._log_final_stats()

    def _worker_done_callback(self, worker_id: str):
        def callback(task: asyncio.Task):
            error = None if task.cancelled() else task.exception()
            self.inbox.put_nowait(WorkerExited(worker_id, error))
        return callback

    async def _handle_request(self, request: TaskRequest):
        """Account for the finished task, then hand out the next position."""
        self._in_flight.pop(request.worker_id, None)
        if not request.success:
            self.readiness.compensation_quota += 1
            self.stats.failures += 1

        await self._assign(request)
        await self._retry_parked()

    async def _assign(self, request: TaskRequest):
        if self._halted or not self.readiness.building:
            self._stop(request, "crawl finished")
            return

        if self.position > self.target + self.readiness.compensation_quota:
            indexed = await self._indexed_count()
            if indexed >= self.target:
                self._open_gate(f"indexed {indexed} pages")
                self._stop(request, "target reached")
                return
            self.readiness.compensation_quota += self.target - indexed
            self.logger.info(
                f"Indexed {indexed}/{self.target} pages, "
                f"compensation quota raised to {self.readiness.compensation_quota}"
            )

        frontier_size = await self._frontier_size()
        if frontier_size is not None and self.position > frontier_size:
            if self._in_flight:
                # Busy workers may still discover URLs for this position.
                self._parked.append(request)
                self.stats.parked += 1
                return
            self.logger.warning(
                f"Frontier exhausted at {frontier_size} URLs before reaching {self.target} indexed pages"
            )
            self._open_gate("frontier exhausted")
            self._stop(request, "frontier exhausted")
            return

        self._dispatch(request)

    def _dispatch(self, request: TaskRequest):
        position = self.position
        self.position += 1
        self._in_flight[request.worker_id] = position
        self.stats.dispatched += 1
        request.reply.put_nowait(CrawlTask(position))
        self.monitor.update_dispatch_state(self.position, self.readiness.compensation_quota)
        self.logger.debug(f"Dispatched position {position} to {request.worker_id}")

    def _stop(self, request: TaskRequest, reason: str):
        request.reply.put_nowait(StopSignal(reason))

    async def _retry_parked(self):
        parked, self._parked = self._parked, []
        for request in parked:
            await self._assign(request)

    async def _handle_worker_exit(self, message: WorkerExited):
        position = self._in_flight.pop(message.worker_id, None)
        if message.error is not None:
            self.logger.error(
                f"Worker {message.worker_id} exited abnormally: {message.error!r}",
                exc_info=message.error
            )
        if position is not None:
            self.readiness.compensation_quota += 1
            self.stats.failures += 1
        await self._retry_parked()

    async def _handle_halt(self, message: HaltRequest):
        if self._halted:
            return
        self._halted = True
        self.logger.info(f"Halting crawl: {message.reason}")
        for worker in self.workers:
            worker.halt()
        self._open_gate(message.reason)
        await self._retry_parked()

    def _open_gate(self, reason: str):
        if not self.readiness.building:
            return
        self.readiness.building = False
        self.monitor.update_index_ready(True)
        self.logger.info(f"=== INDEX READY === ({reason}); search queries are now served")

    async def _indexed_count(self) -> int:
        try:
            self.readiness.indexed_count = await self.database.description_count()
        except StorageError as e:
            self.logger.error(f"Error counting indexed pages, using last known count: {e}")
        return self.readiness.indexed_count

    async def _frontier_size(self) -> Optional[int]:
        try:
            size = await self.frontier.count()
        except StorageError as e:
            self.logger.error(f"Error counting frontier URLs: {e}")
            return None
        self.monitor.update_frontier_size(size)
        return size

    async def verify_phrases(self, positions: Sequence[int], phrases: Sequence[str],
                             match_all: bool = False) -> List[Optional[PhraseHit]]:
        """
        Verify phrases on every position in parallel, one short-lived worker each.

        Waits for all workers or for ``phrase_timeout`` seconds, whichever comes
        first. Workers that fail, raise or time out contribute None.
        """
        if not positions:
            return []

        phrases = tuple(phrases)
        tasks = []
        for position in positions:
            worker = CrawlWorker(
                worker_id=f"verify-{position}",
                database=self.database,
                fetcher=self.fetcher,
                analyzer=self.analyzer,
                monitor=self.monitor,
            )
            tasks.append(asyncio.create_task(
                worker.verify(PhraseVerifyTask(position, phrases, match_all))
            ))

        try:
            _, pending = await asyncio.wait(tasks, timeout=self.phrase_timeout)
            if pending:
                self.logger.warning(
                    f"Phrase verification timed out for {len(pending)} of {len(tasks)} positions"
                )
        finally:
            # No verification outlives this call, even when the caller is cancelled
            unfinished = [task for task in tasks if not task.done()]
            for task in unfinished:
                task.cancel()
            await asyncio.gather(*unfinished, return_exceptions=True)

        results: List[Optional[PhraseHit]] = []
        for position, task in zip(positions, tasks):
            if task.cancelled():
                results.append(None)
            elif task.exception() is not None:
                self.logger.error(
                    f"Phrase verification failed for position {position}: {task.exception()!r}"
                )
                results.append(None)
            else:
                results.append(task.result())
        return results

    async def _cleanup_workers(self):
        """Cancel and cleanup worker tasks."""
        for task in self._worker_tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*self._worker_tasks, return_exceptions=True)
        self._worker_tasks.clear()

    def _log_final_stats(self):
        """Log final crawl statistics."""
        self.logger.info("=== CRAWL COMPLETED ===")
        self.logger.info(f"Positions dispatched: {self.stats.dispatched}")
        self.logger.info(f"Failed tasks: {self.stats.failures}")
        self.logger.info(f"Indexed pages: {self.readiness.indexed_count}")
        self.logger.info(f"Compensation quota: {self.readiness.compensation_quota}")
        self.logger.info(f"Total time: {self.stats.elapsed_time:.2f} seconds")
        self.logger.info(f"Fetcher stats: {self.fetcher.get_stats()}")
        summary = self.monitor.get_summary()
        self.logger.info(f"Failures by reason: {summary['failures_by_reason']}")
        self.logger.info(f"Index yield: {summary['rates']['index_yield']:.0%} of fetched pages")

    def get_stats(self) -> Dict:
        """Get current crawl statistics."""
        return {
            'position': self.position,
            'dispatched': self.stats.dispatched,
            'failures': self.stats.failures,
            'indexed_count': self.readiness.indexed_count,
            'compensation_quota': self.readiness.compensation_quota,
            'building': self.readiness.building,
            'elapsed_time': self.stats.elapsed_time,
        }
