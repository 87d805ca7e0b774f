"""Extension points for the push engine.

Each extension point holds an ordered list of callbacks, invoked in
registration order. Filters thread a value through every callback and return
the final value (identity when nothing is registered); actions notify every
callback and return nothing. Callbacks may be plain functions or coroutines.

A callback that raises is logged and skipped -- a filter keeps the value it
had before that callback.
"""

from __future__ import annotations

import inspect
from collections import defaultdict
from collections.abc import Callable
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class ExtensionPoint(str, Enum):
    """Named hooks the push engine exposes."""

    # Filters
    PUSH_OBJECT_ALLOWED = "push_object_allowed"
    PUSH_MAPPING_OBJECT = "push_mapping_object"
    PUSH_PARAMS_MODIFY = "push_params_modify"
    PUSH_UPDATE_PARAMS_MODIFY = "push_update_params_modify"
    FIND_REMOTE_MATCH = "find_remote_match"
    # Actions
    PRE_PUSH = "pre_push"
    PUSH_SUCCESS = "push_success"
    PUSH_FAIL = "push_fail"


class ExtensionRegistry:
    """Ordered callback lists keyed by extension point."""

    def __init__(self) -> None:
        self._callbacks: dict[ExtensionPoint, list[Callable[..., Any]]] = defaultdict(list)

    def register(self, point: ExtensionPoint, callback: Callable[..., Any]) -> None:
        """Append a callback to an extension point."""
        self._callbacks[point].append(callback)

    def unregister(self, point: ExtensionPoint, callback: Callable[..., Any]) -> None:
        """Remove a previously registered callback (no-op if absent)."""
        if callback in self._callbacks[point]:
            self._callbacks[point].remove(callback)

    def has(self, point: ExtensionPoint) -> bool:
        return bool(self._callbacks.get(point))

    async def apply(self, point: ExtensionPoint, value: Any, *args: Any) -> Any:
        """Run a filter: each callback receives the current value plus ``args``."""
        for callback in list(self._callbacks.get(point, ())):
            try:
                result = callback(value, *args)
                if inspect.isawaitable(result):
                    result = await result
            except Exception:
                logger.warning(
                    "extensions.callback_failed",
                    point=point.value,
                    callback=getattr(callback, "__qualname__", repr(callback)),
                    exc_info=True,
                )
                continue
            value = result
        return value

    async def fire(self, point: ExtensionPoint, *args: Any) -> None:
        """Run an action: notify every callback with ``args``."""
        for callback in list(self._callbacks.get(point, ())):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning(
                    "extensions.callback_failed",
                    point=point.value,
                    callback=getattr(callback, "__qualname__", repr(callback)),
                    exc_info=True,
                )
