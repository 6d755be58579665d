"""
Request/response dispatcher.

Outbound requests (transaction, additional accounts, authentication) are
published and the caller waits on a one-shot future keyed by the request's
message id, so several requests of the same kind can be in flight at once.

Inbound payloads are decoded and routed:
- response kinds resolve the matching pending request, or are dropped
- every other kind is broadcast on the EventBus
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, Optional

from hashpair.errors import MalformedMessage, NoPendingRequest, UnknownTopic
from hashpair.events import EventBus
from hashpair.models.messages import (
    RESPONSE_TYPES,
    Acknowledge,
    AdditionalAccountRequest,
    AdditionalAccountResponse,
    AuthenticationRequest,
    AuthenticationResponse,
    AuthPayload,
    RelayMessage,
    RelayMessageType,
    Transaction,
    TransactionResponse,
)
from hashpair.registry import TopicKeyRegistry
from hashpair.transport.envelope import create_message_id, decode_message, prepare_message
from hashpair.transport.relay import Relay

logger = logging.getLogger(__name__)


@dataclass
class _PendingCall:
    kind: RelayMessageType
    topic: str
    future: "asyncio.Future[RelayMessage]"


def _set_result(future: "asyncio.Future[RelayMessage]", message: RelayMessage) -> None:
    if not future.done():
        future.set_result(message)


class Dispatcher:
    def __init__(
        self,
        relay: Relay,
        registry: TopicKeyRegistry,
        events: EventBus,
        auto_acknowledge: bool = False,
    ):
        self._relay = relay
        self._registry = registry
        self._events = events
        self._auto_acknowledge = auto_acknowledge
        self._pending: dict[str, _PendingCall] = {}
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._remove_handler = relay.add_payload_handler(self.handle_payload)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def bind_loop(self) -> None:
        """Remember the running loop; acknowledgements are scheduled on it."""
        self._loop = asyncio.get_running_loop()

    def close(self) -> None:
        self._remove_handler()
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for call in pending:
            call.future.get_loop().call_soon_threadsafe(call.future.cancel)

    async def publish(self, message: RelayMessage, topic: str, public_key: Optional[str] = None) -> str:
        """Publish one message to a topic. Returns the message id."""
        if self._loop is None:
            self.bind_loop()
        key = public_key if public_key is not None else self._registry.resolve(topic)
        payload = prepare_message(message, topic)
        logger.debug("Publishing %s %s to topic %s", message.type, message.id, topic)
        await self._relay.publish(topic, payload, key)
        return message.id  # type: ignore[return-value]

    async def send_transaction(
        self, topic: str, transaction: Transaction, timeout: Optional[float] = None,
    ) -> TransactionResponse:
        """Ask the peer to sign a transaction and wait for its response."""
        return await self._request(topic, transaction, timeout)  # type: ignore[return-value]

    async def request_additional_accounts(
        self, topic: str, request: AdditionalAccountRequest, timeout: Optional[float] = None,
    ) -> AdditionalAccountResponse:
        return await self._request(topic, request, timeout)  # type: ignore[return-value]

    async def authenticate(
        self,
        topic: str,
        account_id: str,
        server_signing_account: str,
        server_signature: bytes,
        payload: dict[str, Any],
        timeout: Optional[float] = None,
    ) -> AuthenticationResponse:
        """Ask the peer to sign an authentication challenge from a server."""
        request = AuthenticationRequest(
            account_to_sign=account_id,
            server_signing_account=server_signing_account,
            server_signature=server_signature,
            payload=AuthPayload.model_validate(payload),
        )
        return await self._request(topic, request, timeout)  # type: ignore[return-value]

    async def send_transaction_response(self, topic: str, response: TransactionResponse) -> str:
        return await self.publish(response, topic)

    async def send_additional_accounts(self, topic: str, response: AdditionalAccountResponse) -> str:
        return await self.publish(response, topic)

    async def send_authentication_response(self, topic: str, response: AuthenticationResponse) -> str:
        return await self.publish(response, topic)

    async def acknowledge(self, topic: str, public_key: str, msg_id: str) -> None:
        """One-way receipt for a message, addressed with an explicit key."""
        await self.publish(Acknowledge(result=True, msg_id=msg_id), topic, public_key)

    async def _request(self, topic: str, message: RelayMessage, timeout: Optional[float]) -> RelayMessage:
        key = self._registry.resolve(topic)
        if not message.id:
            message.id = create_message_id()
        kind = RelayMessageType(message.type)
        future: asyncio.Future[RelayMessage] = asyncio.get_running_loop().create_future()
        # armed before publishing so a fast reply can't be missed
        with self._lock:
            self._pending[message.id] = _PendingCall(kind, topic, future)
        try:
            await self.publish(message, topic, key)
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(f"Timed out waiting for {kind.value} response on topic {topic}") from None
        finally:
            with self._lock:
                self._pending.pop(message.id, None)

    def handle_payload(self, payload: str) -> None:
        """Route one inbound relay payload. Never raises."""
        try:
            message, message_type = decode_message(payload)
        except MalformedMessage as e:
            logger.warning("Dropping malformed relay message: %s", e)
            return

        logger.debug("Received %s %s on topic %s", message_type.value, message.id, message.topic)
        if message_type in RESPONSE_TYPES:
            try:
                call = self._take_pending(message_type, message)
            except NoPendingRequest as e:
                logger.warning("Dropping %s: %s", message_type.value, e)
            else:
                call.future.get_loop().call_soon_threadsafe(_set_result, call.future, message)
        else:
            self._events.emit(message_type, message)

        if self._auto_acknowledge and message_type != RelayMessageType.ACKNOWLEDGE and message.id:
            self._schedule_acknowledge(message)

    def _take_pending(self, message_type: RelayMessageType, message: RelayMessage) -> _PendingCall:
        request_kind = RESPONSE_TYPES[message_type]
        msg_id: Optional[str] = getattr(message, "msg_id", None)
        with self._lock:
            if msg_id:
                call = self._pending.get(msg_id)
                if call and call.kind == request_kind and call.topic == message.topic and not call.future.done():
                    return self._pending.pop(msg_id)
            else:
                # oldest outstanding request of this kind on the topic
                for call_id, call in self._pending.items():
                    if call.kind == request_kind and call.topic == message.topic and not call.future.done():
                        return self._pending.pop(call_id)
        raise NoPendingRequest(request_kind.value, message.topic, msg_id)

    def _schedule_acknowledge(self, message: RelayMessage) -> None:
        if self._loop is None:
            logger.debug("No event loop bound, not acknowledging %s", message.id)
            return
        try:
            key = self._registry.resolve(message.topic)
        except UnknownTopic:
            logger.debug("No key for topic %s, not acknowledging %s", message.topic, message.id)
            return
        asyncio.run_coroutine_threadsafe(
            self._acknowledge_logged(message.topic, key, message.id),  # type: ignore[arg-type]
            self._loop,
        )

    async def _acknowledge_logged(self, topic: str, public_key: str, msg_id: str) -> None:
        try:
            await self.acknowledge(topic, public_key, msg_id)
        except Exception:
            logger.exception("Acknowledge for %s on topic %s failed", msg_id, topic)
