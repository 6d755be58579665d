"""
AsyncHashPair and HashPair, the main client objects.

One client owns one session: its relay connection, topic/key registry,
pairing state and pending requests. Several clients can run side by side
in one process.
"""

import asyncio
from typing import Any, AsyncGenerator, Callable, Iterable, Optional

from hashpair.dispatcher import Dispatcher
from hashpair.events import EventBus, EventHandler
from hashpair.models.messages import (
    AdditionalAccountRequest,
    AdditionalAccountResponse,
    ApprovePairing,
    AuthenticationResponse,
    RelayMessage,
    RelayMessageType,
    Transaction,
    TransactionResponse,
)
from hashpair.models.metadata import Metadata, PairingData
from hashpair.models.session import ConnectionState, InitializationData, PairedPeer, SavedSession
from hashpair.pairing import PairingCoordinator, PairingState, decode_pairing_string
from hashpair.registry import TopicKeyRegistry
from hashpair.transport.relay import ConnectionStatus, Relay, StatusHandler
from hashpair.transport.socketio import DEFAULT_RELAY_URL, SocketIORelay


class AsyncHashPair:
    """Async pairing client (primary)."""

    def __init__(
        self,
        relay: Optional[Relay] = None,
        relay_url: str = DEFAULT_RELAY_URL,
        auto_acknowledge: bool = False,
    ):
        self.relay = relay or SocketIORelay(relay_url)
        self.registry = TopicKeyRegistry()
        self.events = EventBus()
        self.dispatcher = Dispatcher(self.relay, self.registry, self.events, auto_acknowledge=auto_acknowledge)
        self.pairing = PairingCoordinator(self.relay, self.registry, self.dispatcher, self.events)
        self.topic: Optional[str] = None
        self.pairing_string: Optional[str] = None

    @classmethod
    async def resume(cls, saved: SavedSession, metadata: Metadata, **kwargs: Any) -> "AsyncHashPair":
        """Build a client from a persisted session and reconnect it."""
        client = cls(**kwargs)
        await client.restore(saved, metadata)
        return client

    @property
    def state(self) -> PairingState:
        return self.pairing.state

    @property
    def metadata(self) -> Optional[Metadata]:
        return self.pairing.metadata

    @property
    def paired(self) -> dict[str, PairedPeer]:
        return self.pairing.paired

    @property
    def connection_status(self) -> ConnectionStatus:
        return self.relay.status

    async def init(self, metadata: Metadata, private_key: Optional[str] = None) -> InitializationData:
        self.dispatcher.bind_loop()
        return await self.pairing.init(metadata, private_key)

    async def connect(
        self, topic: Optional[str] = None, peer_metadata: Optional[Metadata] = None,
    ) -> ConnectionState:
        state = await self.pairing.connect(topic, peer_metadata)
        self.topic = state.topic
        return state

    async def restore(self, saved: SavedSession, metadata: Metadata) -> ConnectionState:
        await self.init(metadata, saved.private_key)
        state = await self.connect(saved.topic or None, saved.paired_wallet_data)
        self.pairing_string = saved.pairing_string or None
        if saved.paired_wallet_data is not None:
            self.pairing.paired[state.topic] = PairedPeer(
                topic=state.topic,
                metadata=saved.paired_wallet_data,
                account_ids=list(saved.paired_accounts),
            )
        return state

    def export_session(self) -> SavedSession:
        """Snapshot of what is needed to resume this session later."""
        peer = self.pairing.paired.get(self.topic) if self.topic else None
        return SavedSession(
            topic=self.topic or "",
            pairing_string=self.pairing_string or "",
            private_key=self.pairing.private_key,
            paired_wallet_data=peer.metadata if peer else None,
            paired_accounts=list(peer.account_ids) if peer else [],
        )

    def generate_pairing_string(self, state: ConnectionState, network: str, multi_account: bool) -> str:
        self.pairing_string = self.pairing.generate_pairing_string(state, network, multi_account)
        return self.pairing_string

    decode_pairing_string = staticmethod(decode_pairing_string)

    async def pair(self, pairing_data: PairingData, accounts: Iterable[str], network: str) -> ConnectionState:
        state = await self.pairing.pair(pairing_data, accounts, network)
        self.topic = state.topic
        return state

    async def reject(self, topic: str, reason: str, msg_id: str, public_key: Optional[str] = None) -> str:
        return await self.pairing.reject(topic, reason, msg_id, public_key)

    async def wait_for_pairing(self, topic: Optional[str] = None, timeout: Optional[float] = None) -> ApprovePairing:
        """Wait until a wallet approves pairing (on `topic`, or any topic)."""
        future: asyncio.Future[ApprovePairing] = asyncio.get_running_loop().create_future()
        loop = future.get_loop()

        def _resolve(message: ApprovePairing) -> None:
            if not future.done():
                future.set_result(message)

        def _handler(_type: RelayMessageType, message: RelayMessage) -> None:
            if topic is None or message.topic == topic:
                loop.call_soon_threadsafe(_resolve, message)

        remove = self.events.add_handler(_handler, kinds=(RelayMessageType.APPROVE_PAIRING,))
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise TimeoutError("Timed out waiting for pairing approval") from None
        finally:
            remove()

    async def send_transaction(
        self, topic: str, transaction: Transaction, timeout: Optional[float] = None,
    ) -> TransactionResponse:
        return await self.dispatcher.send_transaction(topic, transaction, timeout)

    async def request_additional_accounts(
        self, topic: str, request: AdditionalAccountRequest, timeout: Optional[float] = None,
    ) -> AdditionalAccountResponse:
        return await self.dispatcher.request_additional_accounts(topic, request, timeout)

    async def authenticate(
        self,
        topic: str,
        account_id: str,
        server_signing_account: str,
        server_signature: bytes,
        payload: dict[str, Any],
        timeout: Optional[float] = None,
    ) -> AuthenticationResponse:
        return await self.dispatcher.authenticate(
            topic, account_id, server_signing_account, server_signature, payload, timeout,
        )

    async def send_transaction_response(self, topic: str, response: TransactionResponse) -> str:
        return await self.dispatcher.send_transaction_response(topic, response)

    async def send_additional_accounts(self, topic: str, response: AdditionalAccountResponse) -> str:
        return await self.dispatcher.send_additional_accounts(topic, response)

    async def send_authentication_response(self, topic: str, response: AuthenticationResponse) -> str:
        return await self.dispatcher.send_authentication_response(topic, response)

    async def acknowledge(self, topic: str, public_key: str, msg_id: str) -> None:
        await self.dispatcher.acknowledge(topic, public_key, msg_id)

    def add_event_handler(
        self, handler: EventHandler, kinds: Optional[Iterable[RelayMessageType]] = None,
    ) -> Callable[[], None]:
        """Listen for unsolicited messages. Returns a cleanup function."""
        return self.events.add_handler(handler, kinds)

    def add_status_handler(self, handler: StatusHandler) -> Callable[[], None]:
        """Listen for relay connection status changes. Returns a cleanup function."""
        return self.relay.add_status_handler(handler)

    def subscribe(
        self, kinds: Optional[Iterable[RelayMessageType]] = None,
    ) -> AsyncGenerator[tuple[RelayMessageType, RelayMessage], None]:
        """Persistent stream of unsolicited messages. Runs until the consumer closes it."""
        return self.events.subscribe(kinds)

    async def close(self) -> None:
        self.pairing.close()
        self.dispatcher.close()
        await self.relay.close()


class HashPair:
    """Sync wrapper around AsyncHashPair. Runs the event loop internally."""

    def __init__(self, **kwargs: Any):
        self._async = AsyncHashPair(**kwargs)
        self._loop = asyncio.new_event_loop()

    def _run(self, coro: Any) -> Any:
        return self._loop.run_until_complete(coro)

    @property
    def state(self) -> PairingState:
        return self._async.state

    @property
    def topic(self) -> Optional[str]:
        return self._async.topic

    @property
    def paired(self) -> dict[str, PairedPeer]:
        return self._async.paired

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._async.connection_status

    def init(self, metadata: Metadata, private_key: Optional[str] = None) -> InitializationData:
        return self._run(self._async.init(metadata, private_key))

    def connect(self, topic: Optional[str] = None, peer_metadata: Optional[Metadata] = None) -> ConnectionState:
        return self._run(self._async.connect(topic, peer_metadata))

    def restore(self, saved: SavedSession, metadata: Metadata) -> ConnectionState:
        return self._run(self._async.restore(saved, metadata))

    def export_session(self) -> SavedSession:
        return self._async.export_session()

    def generate_pairing_string(self, state: ConnectionState, network: str, multi_account: bool) -> str:
        return self._async.generate_pairing_string(state, network, multi_account)

    decode_pairing_string = staticmethod(decode_pairing_string)

    def pair(self, pairing_data: PairingData, accounts: Iterable[str], network: str) -> ConnectionState:
        return self._run(self._async.pair(pairing_data, accounts, network))

    def reject(self, topic: str, reason: str, msg_id: str, public_key: Optional[str] = None) -> str:
        return self._run(self._async.reject(topic, reason, msg_id, public_key))

    def wait_for_pairing(self, topic: Optional[str] = None, timeout: Optional[float] = None) -> ApprovePairing:
        return self._run(self._async.wait_for_pairing(topic, timeout))

    def send_transaction(
        self, topic: str, transaction: Transaction, timeout: Optional[float] = None,
    ) -> TransactionResponse:
        return self._run(self._async.send_transaction(topic, transaction, timeout))

    def request_additional_accounts(
        self, topic: str, request: AdditionalAccountRequest, timeout: Optional[float] = None,
    ) -> AdditionalAccountResponse:
        return self._run(self._async.request_additional_accounts(topic, request, timeout))

    def authenticate(self, topic: str, account_id: str, server_signing_account: str,
                     server_signature: bytes, payload: dict[str, Any],
                     timeout: Optional[float] = None) -> AuthenticationResponse:
        return self._run(self._async.authenticate(
            topic, account_id, server_signing_account, server_signature, payload, timeout,
        ))

    def send_transaction_response(self, topic: str, response: TransactionResponse) -> str:
        return self._run(self._async.send_transaction_response(topic, response))

    def send_additional_accounts(self, topic: str, response: AdditionalAccountResponse) -> str:
        return self._run(self._async.send_additional_accounts(topic, response))

    def send_authentication_response(self, topic: str, response: AuthenticationResponse) -> str:
        return self._run(self._async.send_authentication_response(topic, response))

    def acknowledge(self, topic: str, public_key: str, msg_id: str) -> None:
        self._run(self._async.acknowledge(topic, public_key, msg_id))

    def add_event_handler(self, handler: EventHandler,
                          kinds: Optional[Iterable[RelayMessageType]] = None) -> Callable[[], None]:
        return self._async.add_event_handler(handler, kinds)

    def add_status_handler(self, handler: StatusHandler) -> Callable[[], None]:
        return self._async.add_status_handler(handler)

    def close(self) -> None:
        self._run(self._async.close())
        self._loop.close()
