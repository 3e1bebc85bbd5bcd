"""
Event worker pool - concurrent dispatch of inbound alert events.

N asyncio worker tasks drain one bounded queue. Each queued item carries
the event and a future the submitter awaits, so the webhook handler still
gets the dispatch report (and any persistence error) back. A slow event
occupies one worker and never blocks unrelated events.
"""

import asyncio
from dataclasses import dataclass

import structlog

from src.assignments.config import RoutingConfig
from src.notifications.dispatcher import NotificationDispatcher
from src.notifications.schemas import AlertEvent, DispatchReport
from src.observability.metrics import get_metrics

logger = structlog.get_logger(__name__)


class WorkerPoolClosed(RuntimeError):
    """``submit`` was called on a pool that is not running."""


@dataclass
class _Job:
    event: AlertEvent
    future: asyncio.Future


class EventWorkerPool:
    """
    Pool of dispatch workers fed by an ``asyncio.Queue``.

    Usage:
        pool = EventWorkerPool(dispatcher, worker_count=8)
        await pool.start()
        report = await pool.submit(event)
        await pool.stop()
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        worker_count: int | None = None,
        queue_size: int | None = None,
        config: RoutingConfig | None = None,
    ):
        config = config or RoutingConfig()
        self._dispatcher = dispatcher
        self._worker_count = worker_count or config.worker_count
        self._queue_size = queue_size or config.queue_size
        self._queue: asyncio.Queue[_Job] | None = None
        self._workers: list[asyncio.Task] = []
        self._running = False
        self._metrics = get_metrics()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def worker_count(self) -> int:
        return self._worker_count

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self) -> None:
        if self._running:
            return
        self._queue = asyncio.Queue(maxsize=self._queue_size)
        self._running = True
        self._workers = [
            asyncio.create_task(self._work(i), name=f"dispatch-worker-{i}")
            for i in range(self._worker_count)
        ]
        logger.info(
            "Event worker pool started",
            workers=self._worker_count,
            queue_size=self._queue_size,
        )

    async def stop(self, drain: bool = True) -> None:
        """
        Stop the pool.

        Args:
            drain: Finish queued events before stopping; otherwise pending
                submitters get ``WorkerPoolClosed``.
        """
        if not self._running:
            return
        self._running = False

        if drain and self._queue is not None:
            await self._queue.join()

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

        if self._queue is not None:
            while not self._queue.empty():
                job = self._queue.get_nowait()
                if not job.future.done():
                    job.future.set_exception(WorkerPoolClosed("worker pool stopped"))
                self._queue.task_done()

        logger.info("Event worker pool stopped")

    async def submit(self, event: AlertEvent) -> DispatchReport:
        """
        Queue an event and wait for its dispatch report.

        Raises:
            WorkerPoolClosed: The pool is not running.
            PersistenceUnavailableError: Propagated from the dispatcher.
        """
        if not self._running or self._queue is None:
            raise WorkerPoolClosed("worker pool is not running")

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        await self._queue.put(_Job(event=event, future=future))
        self._metrics.set_worker_queue_depth(self._queue.qsize())
        return await future

    async def _work(self, index: int) -> None:
        assert self._queue is not None
        while True:
            job = await self._queue.get()
            try:
                if job.future.cancelled():
                    continue
                report = await self._dispatcher.dispatch(job.event)
                if not job.future.done():
                    job.future.set_result(report)
            except asyncio.CancelledError:
                if not job.future.done():
                    job.future.set_exception(WorkerPoolClosed("worker pool stopped"))
                raise
            except Exception as e:
                # Hand the error to the submitter; the worker keeps running
                logger.debug(
                    "Dispatch failed",
                    worker=index,
                    rule_id=job.event.rule_id,
                    error=str(e),
                )
                if not job.future.done():
                    job.future.set_exception(e)
            finally:
                self._queue.task_done()
                self._metrics.set_worker_queue_depth(self._queue.qsize())
