"""In-process publish/subscribe channel.

Components publish named topics ("order.completed", "position.closed", ...)
and consumers subscribe instead of reaching into component internals.
Subscriber errors are logged and never reach the publisher.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from tokentrader.infrastructure.logging.logging import get_logger


JsonDict = Dict[str, Any]
Handler = Callable[[str, JsonDict], Union[None, Awaitable[None]]]

WILDCARD = "*"


@dataclass(frozen=True)
class Subscription:
    topic: str
    handler: Handler
    bus: "EventBus"

    def cancel(self) -> None:
        self.bus.unsubscribe(self)


class EventBus:
    def __init__(self) -> None:
        self._subs: Dict[str, List[Subscription]] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._log = get_logger("event_bus")

    def subscribe(self, topic: str, handler: Handler) -> Subscription:
        sub = Subscription(topic=topic, handler=handler, bus=self)
        self._subs.setdefault(topic, []).append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        subs = self._subs.get(sub.topic)
        if subs and sub in subs:
            subs.remove(sub)

    def subscriber_count(self, topic: Optional[str] = None) -> int:
        if topic is None:
            return sum(len(v) for v in self._subs.values())
        return len(self._subs.get(topic, []))

    def publish(self, topic: str, payload: Optional[JsonDict] = None) -> None:
        data = payload or {}
        for sub in list(self._subs.get(topic, [])) + list(self._subs.get(WILDCARD, [])):
            try:
                result = sub.handler(topic, data)
            except Exception as e:
                self._log.warning("subscriber_error", topic=topic, error=str(e))
                continue
            if inspect.isawaitable(result):
                self._schedule(topic, result)

    def _schedule(self, topic: str, awaitable: Awaitable[None]) -> None:
        async def _run() -> None:
            try:
                await awaitable
            except Exception as e:
                self._log.warning("subscriber_error", topic=topic, error=str(e))

        try:
            task = asyncio.get_running_loop().create_task(_run())
        except RuntimeError:
            self._log.warning("async_subscriber_without_loop", topic=topic)
            close = getattr(awaitable, "close", None)
            if close is not None:
                close()
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for pending async subscribers."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
