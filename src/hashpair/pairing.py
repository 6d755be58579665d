"""
Pairing coordinator.

Drives the handshake between an app (initiator) and a wallet (responder):

    Uninitialized -> KeyGenerated -> TopicOpen -> {Pairing, Paired}

The initiator mints a topic and hands out a pairing string. The responder
decodes it, joins the topic and publishes ApprovePairing; the initiator
observes that through the event bus and records the paired peer.
"""

import base64
import json
import logging
import re
from enum import Enum
from typing import Iterable, Optional

from hashpair.dispatcher import Dispatcher
from hashpair.errors import InvalidDescriptor, NotInitialized
from hashpair.events import EventBus
from hashpair.models.messages import ApprovePairing, RejectPairing, RelayMessage, RelayMessageType
from hashpair.models.metadata import Metadata, PairingData
from hashpair.models.session import ConnectionState, InitializationData, PairedPeer
from hashpair.registry import TopicKeyRegistry
from hashpair.transport.envelope import create_random_topic_id
from hashpair.transport.relay import Relay

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^\w. ]", re.ASCII)


class PairingState(str, Enum):
    UNINITIALIZED = "uninitialized"
    KEY_GENERATED = "key_generated"
    TOPIC_OPEN = "topic_open"
    PAIRING = "pairing"
    PAIRED = "paired"


def _char_ref(match: "re.Match[str]") -> str:
    # one reference per UTF-16 code unit, so astral characters become surrogate pairs
    units = match.group(0).encode("utf-16-be")
    return "".join(f"&#{int.from_bytes(units[i:i + 2], 'big')};" for i in range(0, len(units), 2))


def sanitize_string(value: str) -> str:
    """Escape every character outside [A-Za-z0-9_. ] as a numeric character reference."""
    return _UNSAFE_CHARS.sub(_char_ref, value)


def sanitize_metadata(metadata: Metadata) -> Metadata:
    return metadata.model_copy(update={
        "name": sanitize_string(metadata.name),
        "description": sanitize_string(metadata.description),
        "url": sanitize_string(metadata.url),
    })


def encode_pairing_string(data: PairingData) -> str:
    text = json.dumps(data.to_wire(), separators=(",", ":"))
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def decode_pairing_string(pairing_string: str) -> PairingData:
    try:
        text = base64.b64decode(pairing_string, validate=True).decode("utf-8")
        return PairingData.model_validate(json.loads(text))
    except ValueError as e:
        raise InvalidDescriptor(f"Invalid pairing string: {e}") from e


class PairingCoordinator:
    def __init__(self, relay: Relay, registry: TopicKeyRegistry, dispatcher: Dispatcher, events: EventBus):
        self._relay = relay
        self._registry = registry
        self._dispatcher = dispatcher
        self.state = PairingState.UNINITIALIZED
        self.metadata: Optional[Metadata] = None
        self.paired: dict[str, PairedPeer] = {}
        self._private_key: Optional[str] = None
        self._remove_handler = events.add_handler(
            self._on_pairing_message,
            kinds=(RelayMessageType.APPROVE_PAIRING, RelayMessageType.REJECT_PAIRING),
        )

    @property
    def private_key(self) -> Optional[str]:
        return self._private_key

    async def init(self, metadata: Metadata, private_key: Optional[str] = None) -> InitializationData:
        """Set up local key material and open the relay connection.

        Returns the key so the caller can persist it and pass it back on resume.
        """
        logger.debug("Initializing")
        if not private_key:
            private_key = create_random_topic_id()
            logger.debug("Generated new encryption key")
        self._private_key = private_key
        self.metadata = metadata.model_copy(update={"public_key": private_key})

        await self._relay.init()
        if self.state == PairingState.UNINITIALIZED:
            self.state = PairingState.KEY_GENERATED
        logger.debug("Initialized")
        return InitializationData(private_key=private_key)

    async def connect(
        self, topic: Optional[str] = None, peer_metadata: Optional[Metadata] = None,
    ) -> ConnectionState:
        """Open a topic, or rejoin one.

        Without a topic a new one is minted (initiator). With the peer's
        metadata its key is registered for the topic (resuming a pairing).
        """
        self._ensure_initialized()
        if not topic:
            topic = create_random_topic_id()
            logger.debug("Created new topic id %s", topic)

        if peer_metadata is not None and peer_metadata.public_key:
            self._registry.register(topic, peer_metadata.public_key)

        await self._relay.subscribe(topic)

        if peer_metadata is not None:
            self.state = PairingState.PAIRED
        elif self.state == PairingState.KEY_GENERATED:
            self.state = PairingState.TOPIC_OPEN
        return ConnectionState(topic=topic, expires=0)

    def generate_pairing_string(self, state: ConnectionState, network: str, multi_account: bool) -> str:
        """Encode the local metadata and topic for out-of-band sharing."""
        self._ensure_initialized()
        logger.debug("Generating pairing string for topic %s", state.topic)
        data = PairingData(
            metadata=sanitize_metadata(self.metadata),  # type: ignore[arg-type]
            topic=state.topic,
            network=sanitize_string(network),
            multi_account=multi_account,
        )
        if self.state == PairingState.TOPIC_OPEN:
            self.state = PairingState.PAIRING
        return encode_pairing_string(data)

    async def pair(self, pairing_data: PairingData, accounts: Iterable[str], network: str) -> ConnectionState:
        """Responder side: join the app's topic and approve the pairing."""
        self._ensure_initialized()
        topic_key = pairing_data.metadata.public_key
        if not topic_key:
            raise InvalidDescriptor("Pairing data has no public key")
        logger.debug("Pairing to %s", pairing_data.metadata.name)

        state = await self.connect(pairing_data.topic)
        self._registry.register(pairing_data.topic, topic_key)

        account_ids = list(accounts)
        message = ApprovePairing(
            metadata=sanitize_metadata(self.metadata).model_copy(update={"public_key": topic_key}),  # type: ignore[arg-type]
            account_ids=account_ids,
            network=sanitize_string(network),
        )
        await self._dispatcher.publish(message, pairing_data.topic)

        self.paired[pairing_data.topic] = PairedPeer(
            topic=pairing_data.topic,
            metadata=pairing_data.metadata,
            account_ids=account_ids,
            network=pairing_data.network,
        )
        self.state = PairingState.PAIRED
        return state

    async def reject(self, topic: str, reason: str, msg_id: str, public_key: Optional[str] = None) -> str:
        """Decline a pairing request. Returns the rejection's message id.

        Before pair() the topic has no registered key, so pass the
        descriptor's `metadata.public_key` as `public_key`; otherwise
        UnknownTopic is raised.
        """
        message = RejectPairing(reason=sanitize_string(reason), msg_id=msg_id)
        return await self._dispatcher.publish(message, topic, public_key)

    def close(self) -> None:
        self._remove_handler()

    def _on_pairing_message(self, message_type: RelayMessageType, message: RelayMessage) -> None:
        if isinstance(message, ApprovePairing):
            existing = self.paired.get(message.topic)
            account_ids = list(existing.account_ids) if existing else []
            for account_id in message.account_ids:
                if account_id not in account_ids:
                    account_ids.append(account_id)
            self.paired[message.topic] = PairedPeer(
                topic=message.topic,
                metadata=message.metadata,
                account_ids=account_ids,
                network=message.network,
            )
            if message.metadata.public_key:
                self._registry.register(message.topic, message.metadata.public_key)
            self.state = PairingState.PAIRED
            logger.info("Paired with %s on topic %s", message.metadata.name, message.topic)
        elif isinstance(message, RejectPairing):
            logger.info("Pairing rejected on topic %s: %s", message.topic, message.reason)
            if self.state == PairingState.PAIRING:
                self.state = PairingState.TOPIC_OPEN

    def _ensure_initialized(self) -> None:
        if self.metadata is None or self._private_key is None:
            raise NotInitialized()
