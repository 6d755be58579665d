"""
hashpair: pairing and messaging client for relay-connected wallets.

Pairs an app with a wallet over a shared relay topic, then exchanges
transaction, additional-account and authentication requests with it.
"""

from hashpair.client import HashPair, AsyncHashPair
from hashpair.errors import (
    HashPairError,
    UnknownTopic,
    MalformedMessage,
    InvalidDescriptor,
    TransportFailure,
    NoPendingRequest,
    NotInitialized,
)
from hashpair.events import EventBus
from hashpair.models.messages import RelayMessageType
from hashpair.models.metadata import Metadata, PairingData
from hashpair.models.session import ConnectionState, SavedSession
from hashpair.pairing import PairingState, sanitize_string
from hashpair.registry import TopicKeyRegistry
from hashpair.transport.relay import ConnectionStatus, Relay, MemoryRelay, MemoryRelayHub
from hashpair.transport.socketio import SocketIORelay

__version__ = "0.1.0"
__all__ = [
    "HashPair",
    "AsyncHashPair",
    "HashPairError",
    "UnknownTopic",
    "MalformedMessage",
    "InvalidDescriptor",
    "TransportFailure",
    "NoPendingRequest",
    "NotInitialized",
    "EventBus",
    "RelayMessageType",
    "Metadata",
    "PairingData",
    "ConnectionState",
    "SavedSession",
    "PairingState",
    "sanitize_string",
    "TopicKeyRegistry",
    "ConnectionStatus",
    "Relay",
    "MemoryRelay",
    "MemoryRelayHub",
    "SocketIORelay",
]
