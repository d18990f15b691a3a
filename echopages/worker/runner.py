import asyncio
import logging
import signal

from echopages import queue
from echopages.config import JOB_VISIBILITY_TIMEOUT, WORKER_CONCURRENCY, WORKER_POLL_INTERVAL
from echopages.db_models import Job
from echopages.worker.aggregator import update_book_completion
from echopages.worker.processor import ChapterSummary, ChunkJobProcessor

logger = logging.getLogger(__name__)


class Worker:
    """
    Long-running chapter job consumer.

    Runs `concurrency` consumers on one event loop. After `stop()` no new
    job is claimed; jobs in flight are abandoned and will be redelivered by
    the queue once their visibility timeout expires.
    """

    def __init__(
        self,
        processor: ChunkJobProcessor | None = None,
        concurrency: int = WORKER_CONCURRENCY,
        poll_interval: float = WORKER_POLL_INTERVAL,
        visibility_timeout: float = JOB_VISIBILITY_TIMEOUT,
    ):
        self.processor = processor or ChunkJobProcessor()
        self.concurrency = max(1, concurrency)
        self.poll_interval = poll_interval
        self.visibility_timeout = visibility_timeout
        self.stop_event = asyncio.Event()

    def stop(self):
        if not self.stop_event.is_set():
            logger.info("Stopping worker: no new jobs will be claimed")
            self.stop_event.set()

    def install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except NotImplementedError:
                # Windows event loops
                signal.signal(sig, lambda *_: loop.call_soon_threadsafe(self.stop))

    async def handle(self, job: Job) -> ChapterSummary | None:
        """Process one claimed job and acknowledge it. Never raises."""
        try:
            summary = await self.processor.process(
                job.chapter_id, job.user_id, heartbeat=lambda: queue.touch(job.id)
            )
            if summary.book_id is not None:
                update_book_completion(summary.book_id)
        except Exception as e:
            logger.exception("Job %d for chapter %d failed", job.id, job.chapter_id)
            queue.mark_failed(job.id, str(e))
            return None

        queue.mark_done(job.id)
        return summary

    async def _wait(self):
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass

    async def consume(self, consumer_number: int = 0):
        logger.info("Consumer %d started", consumer_number)
        while not self.stop_event.is_set():
            job = queue.claim_next(self.visibility_timeout)
            if job is None:
                await self._wait()
                continue
            logger.info(
                "Consumer %d claimed job %d (chapter %d, attempt %d)",
                consumer_number, job.id, job.chapter_id, job.attempts,
            )
            await self.handle(job)
        logger.info("Consumer %d stopped", consumer_number)

    async def run(self):
        self.install_signal_handlers()
        consumers = [asyncio.create_task(self.consume(i)) for i in range(self.concurrency)]
        await self.stop_event.wait()
        for task in consumers:
            task.cancel()
        await asyncio.gather(*consumers, return_exceptions=True)
        logger.info("Worker stopped")
