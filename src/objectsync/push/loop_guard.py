"""Loop-prevention guards between the push and pull directions.

A push that writes to a remote record marks ``pushing:<remote_id>`` so the
pull side can recognise the resulting remote change as its own echo; a pull
that writes locally marks ``pulling:<remote_id>`` so the push side drops the
local change event it causes. ``<direction>_object_id`` points at the most
recently guarded id, which lets a direction find the guard for a record that
has no mapping object yet.

Guards are advisory: they are plain keys with a TTL in the lock store, not
a mutex, and an expired guard simply stops suppressing echoes.
"""

from __future__ import annotations

from typing import Protocol

import structlog

from src.objectsync.push.schemas import SyncDirection

logger = structlog.get_logger(__name__)

_DIRECTION_NAMES = {
    SyncDirection.PUSH: "pushing",
    SyncDirection.PULL: "pulling",
}


class LockStore(Protocol):
    """Generic ephemeral key/value store with expiry."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str | int, ttl: int | None = None) -> None: ...

    async def delete(self, key: str) -> int: ...


class LoopGuard:
    """Typed interface over the lock store's guard and pointer keys.

    Args:
        store: Lock store (NamespacedRedis in production).
    """

    def __init__(self, store: LockStore) -> None:
        self._store = store

    @staticmethod
    def guard_key(direction: SyncDirection, remote_key: str) -> str:
        return f"{_DIRECTION_NAMES[direction]}:{remote_key}"

    @staticmethod
    def pointer_key(direction: SyncDirection) -> str:
        return f"{_DIRECTION_NAMES[direction]}_object_id"

    async def acquire_loop_guard(
        self,
        direction: SyncDirection,
        remote_key: str,
        ttl: int | None,
        value: str | int = 1,
    ) -> bool:
        """Set (or refresh) a guard and point the direction's pointer at it.

        Args:
            direction: Which side is writing.
            remote_key: Remote id, or a pending placeholder token.
            ttl: Expiry in seconds; None keeps the guard until released.
            value: Guard value; pushes store the remote last-modified
                timestamp once it is known.

        Returns:
            True if no guard existed for this key before the call.
        """
        key = self.guard_key(direction, remote_key)
        previous = await self._store.get(key)
        await self._store.set(key, value, ttl)
        await self._store.set(self.pointer_key(direction), remote_key)
        logger.debug(
            "loop_guard.acquired",
            direction=direction.value,
            remote_key=remote_key,
            ttl=ttl,
            refreshed=previous is not None,
        )
        return previous is None

    async def release_loop_guard(self, direction: SyncDirection, remote_key: str) -> None:
        """Clear a guard, and the pointer too if it still points at this key."""
        await self._store.delete(self.guard_key(direction, remote_key))
        pointer = self.pointer_key(direction)
        if await self._store.get(pointer) == remote_key:
            await self._store.delete(pointer)
        logger.debug("loop_guard.released", direction=direction.value, remote_key=remote_key)

    async def get_guard(self, direction: SyncDirection, remote_key: str) -> str | None:
        return await self._store.get(self.guard_key(direction, remote_key))

    async def is_guarded(self, direction: SyncDirection, remote_key: str) -> bool:
        return await self.get_guard(direction, remote_key) is not None

    async def current(self, direction: SyncDirection) -> str | None:
        """The remote key most recently guarded in this direction."""
        return await self._store.get(self.pointer_key(direction))

    async def consume_pull_guard(self, remote_key: str | None) -> bool:
        """Check whether a local change was caused by an in-flight pull.

        Looks up the pull guard for ``remote_key``, or for the currently
        pulling id when the record has no mapping object. A set guard is
        released so it suppresses exactly one echo.

        Returns:
            True if the change came from a pull and must not be pushed.
        """
        key = remote_key or await self.current(SyncDirection.PULL)
        if not key:
            return False
        if not await self.is_guarded(SyncDirection.PULL, key):
            return False
        await self.release_loop_guard(SyncDirection.PULL, key)
        logger.info("loop_guard.pull_echo_suppressed", remote_key=key)
        return True
