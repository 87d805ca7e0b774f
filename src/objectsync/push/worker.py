"""Worker that drains queued PushJobs into the executor.

Reads the push queue's Redis Stream through a consumer group, rebuilds each
PushJob, and hands its ids to RemoteSyncExecutor.sync(). Successful jobs are
acked. A job that raises is retried with backoff (1s, 4s, 16s) by appending it
again with an incremented retry count, then moved to the dead letter stream
after MAX_RETRIES attempts.
"""

from __future__ import annotations

import asyncio

import structlog

from src.objectsync.push.executor import RemoteSyncExecutor
from src.objectsync.push.queue import RedisStreamTaskQueue
from src.objectsync.push.schemas import PushJob, SyncResult

logger = structlog.get_logger(__name__)


class PushJobWorker:
    """Consumer for the push queue.

    Args:
        queue: Redis Streams task queue.
        executor: Executor that performs the pushes.
        queue_name: Queue to read.
        callback_id: Callback id PushJobs are enqueued under.
        group: Consumer group name.
        consumer_name: Unique consumer identifier within the group.
        retry_delays: Backoff in seconds before each retry.
    """

    MAX_RETRIES: int = 3
    RETRY_DELAYS: list[float] = [1, 4, 16]

    def __init__(
        self,
        queue: RedisStreamTaskQueue,
        executor: RemoteSyncExecutor,
        queue_name: str,
        callback_id: str,
        group: str = "push-workers",
        consumer_name: str = "worker-1",
        retry_delays: list[float] | None = None,
    ) -> None:
        self._queue = queue
        self._executor = executor
        self._queue_name = queue_name
        self._callback_id = callback_id
        self._group = group
        self._consumer_name = consumer_name
        self._retry_delays = retry_delays if retry_delays is not None else self.RETRY_DELAYS
        self._running = False

    async def handle(self, data: dict[str, str]) -> SyncResult | None:
        """Run one job payload through the executor."""
        job = PushJob.from_stream_dict(data)
        return await self._executor.sync(
            job.object_type,
            job.local_id,
            job.fieldmap_id,
            job.trigger,
            queue_item=True,
        )

    async def process_batch(self, count: int = 10, block: int = 5000) -> int:
        """Read and process one batch of jobs.

        Returns:
            Number of messages acknowledged.
        """
        messages = await self._queue.read(
            self._queue_name,
            self._group,
            self._consumer_name,
            count=count,
            block=block,
        )
        acked = 0
        for message_id, data in messages:
            if data.get("callback") != self._callback_id:
                # Not a push job; nothing in this worker can run it.
                logger.warning(
                    "worker.unknown_callback",
                    message_id=message_id,
                    callback=data.get("callback"),
                )
                await self._queue.ack(self._queue_name, self._group, message_id)
                acked += 1
                continue

            try:
                result = await self.handle(data)
            except Exception as exc:
                await self._retry_or_dead_letter(message_id, data, exc)
            else:
                logger.debug(
                    "worker.job_processed",
                    message_id=message_id,
                    status=result.status.value if result else None,
                )
            await self._queue.ack(self._queue_name, self._group, message_id)
            acked += 1
        return acked

    async def _retry_or_dead_letter(
        self, message_id: str, data: dict[str, str], exc: Exception
    ) -> None:
        retry_count = int(data.get("_retry_count", "0"))
        logger.warning(
            "worker.job_failed",
            message_id=message_id,
            retry_count=retry_count,
            error=str(exc),
            exc_info=True,
        )

        if retry_count >= self.MAX_RETRIES:
            await self._queue.dead_letter(
                self._queue_name, message_id, data, str(exc), retry_count
            )
            return

        if self._retry_delays:
            delay = self._retry_delays[min(retry_count, len(self._retry_delays) - 1)]
            await asyncio.sleep(delay)
        await self._queue.requeue(self._queue_name, data, retry_count + 1)
        logger.info(
            "worker.job_retried",
            message_id=message_id,
            retry_count=retry_count + 1,
        )

    async def process_loop(self) -> None:
        """Process batches until ``stop()`` is called."""
        self._running = True
        logger.info(
            "worker.started",
            queue=self._queue_name,
            group=self._group,
            consumer=self._consumer_name,
        )
        while self._running:
            await self.process_batch()
        logger.info("worker.stopped", queue=self._queue_name)

    def stop(self) -> None:
        self._running = False
