"""
Relay client contract and an in-process relay.

A relay is a pub/sub service: clients subscribe to topics and publish opaque
text payloads to them. Delivery guarantees belong to the relay, not to the
engine built on top of it.
"""

import abc
import asyncio
import logging
from enum import Enum
from typing import Callable, Optional, Protocol

from hashpair.errors import TransportFailure

logger = logging.getLogger(__name__)

PayloadHandler = Callable[[str], None]


class ConnectionStatus(str, Enum):
    CONNECTING = "Connecting"
    CONNECTED = "Connected"
    DISCONNECTED = "Disconnected"


StatusHandler = Callable[[ConnectionStatus], None]


class PayloadCipher(Protocol):
    """Optional payload sealing applied by a relay client around the wire."""

    def seal(self, message: str, public_key: str) -> str: ...

    def open(self, payload: str) -> str: ...


class Relay(abc.ABC):
    def __init__(self) -> None:
        self._payload_handlers: list[PayloadHandler] = []
        self._status_handlers: list[StatusHandler] = []
        self.status = ConnectionStatus.DISCONNECTED

    def add_payload_handler(self, handler: PayloadHandler) -> Callable[[], None]:
        """Add a handler for inbound payloads. Returns a cleanup function."""
        self._payload_handlers.append(handler)

        def remove() -> None:
            try:
                self._payload_handlers.remove(handler)
            except ValueError:
                pass
        return remove

    def _emit_payload(self, payload: str) -> None:
        for handler in list(self._payload_handlers):
            try:
                handler(payload)
            except Exception:
                logger.exception("Payload handler failed")

    def add_status_handler(self, handler: StatusHandler) -> Callable[[], None]:
        """Add a handler for connection status changes. Returns a cleanup function."""
        self._status_handlers.append(handler)

        def remove() -> None:
            try:
                self._status_handlers.remove(handler)
            except ValueError:
                pass
        return remove

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is self.status:
            return
        self.status = status
        logger.debug("Relay status changed to %s", status.value)
        for handler in list(self._status_handlers):
            try:
                handler(status)
            except Exception:
                logger.exception("Status handler failed")

    @abc.abstractmethod
    async def init(self) -> None:
        """Open the connection to the relay."""

    @abc.abstractmethod
    async def subscribe(self, topic: str) -> None: ...

    @abc.abstractmethod
    async def publish(self, topic: str, message: str, public_key: str) -> None:
        """Hand a message to the relay for everyone else on the topic."""

    async def close(self) -> None:
        return None


class MemoryRelayHub:
    """Routes payloads between MemoryRelay instances in one process."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list["MemoryRelay"]] = {}
        self.published: list[tuple[str, str, str]] = []

    def subscribe(self, topic: str, relay: "MemoryRelay") -> None:
        relays = self._subscribers.setdefault(topic, [])
        if relay not in relays:
            relays.append(relay)

    def unsubscribe_all(self, relay: "MemoryRelay") -> None:
        for relays in self._subscribers.values():
            if relay in relays:
                relays.remove(relay)

    def publish(self, sender: "MemoryRelay", topic: str, message: str, public_key: str) -> None:
        self.published.append((topic, message, public_key))
        for relay in list(self._subscribers.get(topic, [])):
            if relay is not sender:
                relay._deliver(message)


class MemoryRelay(Relay):
    """In-process relay client. Delivery is scheduled on the event loop."""

    def __init__(self, hub: Optional[MemoryRelayHub] = None):
        super().__init__()
        self.hub = hub or MemoryRelayHub()
        self.topics: set[str] = set()
        self._open = False

    async def init(self) -> None:
        self._open = True
        self._set_status(ConnectionStatus.CONNECTED)

    async def subscribe(self, topic: str) -> None:
        if not self._open:
            raise TransportFailure("Relay not initialized", {"topic": topic})
        self.topics.add(topic)
        self.hub.subscribe(topic, self)

    async def publish(self, topic: str, message: str, public_key: str) -> None:
        if not self._open:
            raise TransportFailure("Relay not initialized", {"topic": topic})
        self.hub.publish(self, topic, message, public_key)

    async def close(self) -> None:
        self._open = False
        self.hub.unsubscribe_all(self)
        self._set_status(ConnectionStatus.DISCONNECTED)

    def _deliver(self, payload: str) -> None:
        asyncio.get_running_loop().call_soon(self._emit_payload, payload)
