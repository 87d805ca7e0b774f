"""Tests for RedisStreamTaskQueue and NamespacedRedis with a mocked Redis client."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
import redis.asyncio as aioredis

from src.objectsync.core.redis import NamespacedRedis
from src.objectsync.push.queue import RedisStreamTaskQueue
from src.objectsync.push.schemas import PushJob, SyncTrigger


@pytest.fixture
def mock_redis():
    redis = AsyncMock()
    redis.xadd = AsyncMock(return_value="1700000000000-0")
    redis.xgroup_create = AsyncMock()
    redis.xreadgroup = AsyncMock(return_value=[])
    redis.xack = AsyncMock()
    return redis


class TestRedisStreamTaskQueue:
    """Tests for enqueue/read/ack against Redis Streams."""

    @pytest.mark.asyncio
    async def test_enqueue_stringifies_payload(self, mock_redis):
        queue = RedisStreamTaskQueue(mock_redis, frequency=30, maxlen=500)
        job = PushJob(object_type="post", local_id=42, fieldmap_id=1, trigger=SyncTrigger.CREATE)

        message_id = await queue.enqueue("push_record", job.model_dump(mode="json"), "salesforce_push")

        assert message_id == "1700000000000-0"
        mock_redis.xadd.assert_awaited_once_with(
            "queue:salesforce_push",
            {
                "callback": "push_record",
                "object_type": "post",
                "local_id": "42",
                "fieldmap_id": "1",
                "trigger": "1",
            },
            maxlen=500,
            approximate=True,
        )

    @pytest.mark.asyncio
    async def test_frequencies(self, mock_redis):
        queue = RedisStreamTaskQueue(mock_redis, frequency=30)

        assert [s.frequency for s in await queue.get_frequencies()] == [30]

        await queue.enqueue("push_record", {}, "salesforce_push")
        schedules = await queue.get_frequencies()
        assert [(s.name, s.frequency) for s in schedules] == [("salesforce_push", 30)]

    @pytest.mark.asyncio
    async def test_read_creates_group_and_flattens(self, mock_redis):
        mock_redis.xreadgroup.return_value = [
            ("queue:salesforce_push", [("1-0", {"callback": "x"}), ("2-0", {"callback": "y"})])
        ]
        queue = RedisStreamTaskQueue(mock_redis)

        messages = await queue.read("salesforce_push", "push-workers", "worker-1", count=5, block=10)

        assert messages == [("1-0", {"callback": "x"}), ("2-0", {"callback": "y"})]
        mock_redis.xgroup_create.assert_awaited_once_with(
            "queue:salesforce_push", "push-workers", id="0", mkstream=True
        )
        mock_redis.xreadgroup.assert_awaited_once_with(
            groupname="push-workers",
            consumername="worker-1",
            streams={"queue:salesforce_push": ">"},
            count=5,
            block=10,
        )

    @pytest.mark.asyncio
    async def test_read_tolerates_existing_group(self, mock_redis):
        mock_redis.xgroup_create.side_effect = aioredis.ResponseError("BUSYGROUP")
        queue = RedisStreamTaskQueue(mock_redis)

        assert await queue.read("salesforce_push", "g", "c") == []

    @pytest.mark.asyncio
    async def test_ack(self, mock_redis):
        queue = RedisStreamTaskQueue(mock_redis)

        await queue.ack("salesforce_push", "push-workers", "1-0")

        mock_redis.xack.assert_awaited_once_with("queue:salesforce_push", "push-workers", "1-0")

    @pytest.mark.asyncio
    async def test_requeue_carries_retry_count(self, mock_redis):
        queue = RedisStreamTaskQueue(mock_redis, maxlen=500)

        await queue.requeue("salesforce_push", {"callback": "x", "local_id": "42"}, 2)

        mock_redis.xadd.assert_awaited_once_with(
            "queue:salesforce_push",
            {"callback": "x", "local_id": "42", "_retry_count": "2"},
            maxlen=500,
            approximate=True,
        )

    @pytest.mark.asyncio
    async def test_dead_letter_records_failure(self, mock_redis):
        queue = RedisStreamTaskQueue(mock_redis, maxlen=500)

        dlq_id = await queue.dead_letter("salesforce_push", "1-0", {"callback": "x"}, "boom", 3)

        assert dlq_id == "1700000000000-0"
        mock_redis.xadd.assert_awaited_once_with(
            "queue:salesforce_push:dlq",
            {
                "callback": "x",
                "_dlq_original_id": "1-0",
                "_dlq_error": "boom",
                "_dlq_retry_count": "3",
            },
            maxlen=500,
            approximate=True,
        )


class TestNamespacedRedis:
    """Tests for the prefixed lock store."""

    @pytest.mark.asyncio
    async def test_keys_prefixed(self):
        redis = AsyncMock()
        redis.get = AsyncMock(return_value="1")
        store = NamespacedRedis(redis, prefix="salesforce_")

        await store.set("pushing:a9", 1, ttl=120)
        value = await store.get("pushing:a9")
        await store.delete("pushing:a9")

        redis.set.assert_awaited_once_with("salesforce_pushing:a9", "1", ex=120)
        redis.get.assert_awaited_once_with("salesforce_pushing:a9")
        redis.delete.assert_awaited_once_with("salesforce_pushing:a9")
        assert value == "1"

    @pytest.mark.asyncio
    async def test_no_ttl(self):
        redis = AsyncMock()
        store = NamespacedRedis(redis, prefix="salesforce_")

        await store.set("pushing_object_id", "a9")

        redis.set.assert_awaited_once_with("salesforce_pushing_object_id", "a9", ex=None)
