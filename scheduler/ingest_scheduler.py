"""Periodic ingestion scheduler running on the asyncio event loop."""
import asyncio
import logging
from typing import Dict, List, Optional, Sequence, Set

from processor.ingestion import IngestionPipeline
from processor.models import FeedSource, ReconcileResult

logger = logging.getLogger(__name__)


class IngestScheduler:
    """
    Runs an ingestion pass per source at startup and then on a fixed interval.

    Passes run in worker threads so the event loop keeps serving requests.
    Ticks fire on schedule regardless of how long the previous pass took;
    with skip_if_running set, a tick for a source whose previous pass is
    still in flight is skipped.
    """

    def __init__(
        self,
        pipeline: IngestionPipeline,
        sources: Sequence[FeedSource],
        interval_seconds: float = 60,
        skip_if_running: bool = True
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.pipeline = pipeline
        self.sources = list(sources)
        self.interval_seconds = interval_seconds
        self.skip_if_running = skip_if_running
        self._loops: List[asyncio.Task] = []
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._passes: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._loops)

    def start(self) -> None:
        """Spawn one ticker task per source on the running event loop."""
        if self.running:
            raise RuntimeError("Scheduler already started")

        logger.info(
            f"Starting ingestion scheduler for {len(self.sources)} sources "
            f"every {self.interval_seconds} seconds"
        )
        self._loops = [
            asyncio.create_task(self._tick_loop(source), name=f"ingest-{source.prefix}")
            for source in self.sources
        ]

    async def stop(self) -> None:
        """Cancel the ticker tasks. Passes already running in threads are not interrupted."""
        for task in self._loops:
            task.cancel()
        await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops = []
        logger.info("Ingestion scheduler stopped")

    async def wait_idle(self) -> None:
        """Wait until every pass spawned so far has finished."""
        while self._passes:
            await asyncio.gather(*list(self._passes), return_exceptions=True)

    def trigger(self, source: FeedSource) -> Optional[asyncio.Task]:
        """
        Spawn an ingestion pass for a source.

        Returns:
            The pass task, or None if the tick was skipped
        """
        current = self._in_flight.get(source.prefix)
        if self.skip_if_running and current is not None and not current.done():
            logger.warning(
                f"Previous [{source.prefix}] ingestion still running, skipping this cycle"
            )
            return None

        task = asyncio.create_task(self._run_pass(source))
        self._in_flight[source.prefix] = task
        self._passes.add(task)
        task.add_done_callback(self._passes.discard)
        return task

    async def _tick_loop(self, source: FeedSource) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            self.trigger(source)
            next_tick += self.interval_seconds
            await asyncio.sleep(max(0.0, next_tick - loop.time()))

    async def _run_pass(self, source: FeedSource) -> Optional[ReconcileResult]:
        try:
            return await asyncio.to_thread(self.pipeline.run, source)
        except Exception:
            logger.exception(f"Unexpected error during [{source.prefix}] ingestion")
            return None
