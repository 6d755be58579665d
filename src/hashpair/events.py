"""
Broadcast channel for unsolicited relay messages.

Any number of handlers may listen; none of them consumes a message
exclusively. A failing handler is logged and does not affect the others.
"""

import asyncio
import logging
from typing import AsyncGenerator, Callable, Iterable, Optional

from hashpair.models.messages import RelayMessage, RelayMessageType

logger = logging.getLogger(__name__)

EventHandler = Callable[[RelayMessageType, RelayMessage], None]


class EventBus:
    def __init__(self) -> None:
        self._handlers: list[tuple[Optional[frozenset[RelayMessageType]], EventHandler]] = []

    def add_handler(
        self,
        handler: EventHandler,
        kinds: Optional[Iterable[RelayMessageType]] = None,
    ) -> Callable[[], None]:
        """Add a handler, optionally limited to some message kinds. Returns a cleanup function."""
        entry = (frozenset(RelayMessageType(k) for k in kinds) if kinds is not None else None, handler)
        self._handlers.append(entry)

        def remove() -> None:
            try:
                self._handlers.remove(entry)
            except ValueError:
                pass
        return remove

    def emit(self, message_type: RelayMessageType, message: RelayMessage) -> None:
        for kinds, handler in list(self._handlers):
            if kinds is not None and message_type not in kinds:
                continue
            try:
                handler(message_type, message)
            except Exception:
                logger.exception("Event handler failed for %s", message_type.value)

    async def subscribe(
        self,
        kinds: Optional[Iterable[RelayMessageType]] = None,
    ) -> AsyncGenerator[tuple[RelayMessageType, RelayMessage], None]:
        """Yield (type, message) pairs indefinitely until the consumer stops."""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[tuple[RelayMessageType, RelayMessage]] = asyncio.Queue()

        def _handler(message_type: RelayMessageType, message: RelayMessage) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, (message_type, message))

        remove = self.add_handler(_handler, kinds)
        try:
            while True:
                yield await queue.get()
        finally:
            remove()

    def __len__(self) -> int:
        return len(self._handlers)
