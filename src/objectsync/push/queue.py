"""Task queue for deferred pushes, backed by Redis Streams.

The orchestrator enqueues a PushJob (object type, local id, fieldmap id,
trigger) whenever a fieldmap pushes asynchronously; PushJobWorker later feeds
it to the executor. Failed jobs are re-appended with a retry count and end up
in a dead letter stream once the worker gives up on them.

Stream key pattern: queue:{queue_name}
Dead letter key pattern: queue:{queue_name}:dlq
"""

from __future__ import annotations

from typing import Any, Protocol

import redis.asyncio as aioredis
import structlog
from pydantic import BaseModel

logger = structlog.get_logger(__name__)


class QueueSchedule(BaseModel):
    """How often a queue's jobs are processed."""

    name: str
    frequency: int  # seconds


class TaskQueue(Protocol):
    async def enqueue(self, callback_id: str, payload: dict[str, Any], queue_name: str) -> str: ...

    async def get_frequencies(self) -> list[QueueSchedule]: ...


class RedisStreamTaskQueue:
    """TaskQueue that appends jobs to a Redis Stream per queue name.

    Args:
        redis: Raw async Redis client (decode_responses=True).
        frequency: Processing interval reported by ``get_frequencies``.
        maxlen: Approximate stream length cap.
    """

    def __init__(self, redis: aioredis.Redis, frequency: int = 60, maxlen: int = 10000) -> None:
        self._redis = redis
        self._frequency = frequency
        self._maxlen = maxlen
        self._queue_names: list[str] = []

    @staticmethod
    def stream_key(queue_name: str) -> str:
        return f"queue:{queue_name}"

    async def enqueue(self, callback_id: str, payload: dict[str, Any], queue_name: str) -> str:
        """Append a job to the queue's stream.

        Redis Streams require string values, so every payload value is
        stringified; the callback id travels alongside the payload.

        Returns:
            Redis message ID assigned by XADD.
        """
        data = {"callback": callback_id}
        data.update({key: str(value) for key, value in payload.items()})
        message_id = await self._redis.xadd(
            self.stream_key(queue_name),
            data,
            maxlen=self._maxlen,
            approximate=True,
        )
        if queue_name not in self._queue_names:
            self._queue_names.append(queue_name)
        logger.debug(
            "queue.job_enqueued",
            queue=queue_name,
            callback=callback_id,
            message_id=message_id,
        )
        return message_id

    async def get_frequencies(self) -> list[QueueSchedule]:
        names = self._queue_names or ["default"]
        return [QueueSchedule(name=name, frequency=self._frequency) for name in names]

    async def read(
        self,
        queue_name: str,
        group: str,
        consumer: str,
        count: int = 10,
        block: int = 5000,
    ) -> list[tuple[str, dict[str, str]]]:
        """Read new jobs as a consumer in a consumer group.

        Creates the consumer group if it does not already exist.

        Returns:
            List of ``(message_id, data)`` pairs.
        """
        stream_key = self.stream_key(queue_name)
        try:
            await self._redis.xgroup_create(stream_key, group, id="0", mkstream=True)
        except aioredis.ResponseError:
            pass  # Group already exists

        response = await self._redis.xreadgroup(
            groupname=group,
            consumername=consumer,
            streams={stream_key: ">"},
            count=count,
            block=block,
        )
        messages: list[tuple[str, dict[str, str]]] = []
        for _stream, entries in response or []:
            messages.extend(entries)
        return messages

    async def ack(self, queue_name: str, group: str, message_id: str) -> None:
        """Acknowledge a processed job."""
        await self._redis.xack(self.stream_key(queue_name), group, message_id)

    async def requeue(self, queue_name: str, data: dict[str, str], retry_count: int) -> str:
        """Append a failed job again, carrying its retry count.

        The new entry is a fresh delivery for the consumer group; the caller
        acks the original.
        """
        retry_data = dict(data)
        retry_data["_retry_count"] = str(retry_count)
        return await self._redis.xadd(
            self.stream_key(queue_name),
            retry_data,
            maxlen=self._maxlen,
            approximate=True,
        )

    @staticmethod
    def dead_letter_key(queue_name: str) -> str:
        return f"queue:{queue_name}:dlq"

    async def dead_letter(
        self,
        queue_name: str,
        message_id: str,
        data: dict[str, str],
        error: str,
        retry_count: int,
    ) -> str:
        """Move a job that exhausted its retries to the queue's dead letter stream.

        Returns:
            Dead letter message ID assigned by XADD.
        """
        dlq_data = {
            **data,
            "_dlq_original_id": message_id,
            "_dlq_error": error,
            "_dlq_retry_count": str(retry_count),
        }
        dlq_id = await self._redis.xadd(
            self.dead_letter_key(queue_name),
            dlq_data,
            maxlen=self._maxlen,
            approximate=True,
        )
        logger.error(
            "queue.job_dead_lettered",
            queue=queue_name,
            message_id=message_id,
            retry_count=retry_count,
            error=error,
        )
        return dlq_id
