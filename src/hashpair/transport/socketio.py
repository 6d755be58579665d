"""
Socket.IO relay client.

Connects to the relay with python-socketio, joins topics with `subscribe`
and exchanges `payload` events of the form {topic, data}.
"""

import logging
from typing import Any, Optional

import socketio

from hashpair.errors import TransportFailure
from hashpair.transport.relay import ConnectionStatus, PayloadCipher, Relay

logger = logging.getLogger(__name__)

DEFAULT_RELAY_URL = "https://hashconnect.hashpack.app"


class SocketIORelay(Relay):
    def __init__(
        self,
        url: str = DEFAULT_RELAY_URL,
        transports: Optional[list[str]] = None,
        connect_timeout: float = 15.0,
        cipher: Optional[PayloadCipher] = None,
    ):
        super().__init__()
        self._url = url
        self._transports = transports or ["websocket"]
        self._connect_timeout = connect_timeout
        self._cipher = cipher
        self._sio: Optional[socketio.AsyncClient] = None
        self._topics: set[str] = set()

    @property
    def connected(self) -> bool:
        return self._sio is not None and self._sio.connected

    async def init(self) -> None:
        if self._sio and self._sio.connected:
            return

        self._sio = socketio.AsyncClient()

        @self._sio.event
        async def connect() -> None:
            self._set_status(ConnectionStatus.CONNECTED)
            # rejoin topics after a reconnect
            for topic in list(self._topics):
                await self._sio.emit("subscribe", topic)  # type: ignore[union-attr]

        @self._sio.on("payload")
        async def on_payload(data: Any) -> None:
            self._on_payload(data)

        @self._sio.event
        async def disconnect(_reason: str = "") -> None:
            logger.debug("Relay disconnected from %s", self._url)
            self._set_status(ConnectionStatus.DISCONNECTED)

        self._set_status(ConnectionStatus.CONNECTING)
        try:
            await self._sio.connect(
                self._url,
                transports=self._transports,
                wait_timeout=self._connect_timeout,
            )
        except socketio.exceptions.ConnectionError as e:
            self._sio = None
            self._set_status(ConnectionStatus.DISCONNECTED)
            raise TransportFailure(f"Failed to connect to relay {self._url}: {e}", {"url": self._url}) from e
        logger.debug("Relay connected to %s", self._url)

    async def subscribe(self, topic: str) -> None:
        self._ensure_connected()
        self._topics.add(topic)
        try:
            await self._sio.emit("subscribe", topic)  # type: ignore[union-attr]
        except socketio.exceptions.SocketIOError as e:
            raise TransportFailure(f"Subscribe to {topic} failed: {e}", {"topic": topic}) from e

    async def publish(self, topic: str, message: str, public_key: str) -> None:
        self._ensure_connected()
        data = self._cipher.seal(message, public_key) if self._cipher else message
        try:
            await self._sio.emit("payload", {"topic": topic, "data": data})  # type: ignore[union-attr]
        except socketio.exceptions.SocketIOError as e:
            raise TransportFailure(f"Publish to {topic} failed: {e}", {"topic": topic}) from e

    async def close(self) -> None:
        if self._sio:
            await self._sio.disconnect()
            self._sio = None
        self._set_status(ConnectionStatus.DISCONNECTED)

    def _on_payload(self, data: Any) -> None:
        raw = data.get("data") if isinstance(data, dict) else data
        if not isinstance(raw, str):
            logger.warning("Ignoring non-text relay payload: %r", type(raw).__name__)
            return
        if self._cipher:
            try:
                raw = self._cipher.open(raw)
            except Exception:
                logger.exception("Could not open relay payload")
                return
        self._emit_payload(raw)

    def _ensure_connected(self) -> None:
        if not self._sio or not self._sio.connected:
            raise TransportFailure("Relay not connected. Call init() first.")
