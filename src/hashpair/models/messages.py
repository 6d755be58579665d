"""
Relay message kinds. Each message is a flat JSON object discriminated by `type`.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import Field

from hashpair.models.base import B64Bytes, WireModel
from hashpair.models.metadata import Metadata


class RelayMessageType(str, Enum):
    TRANSACTION = "Transaction"
    TRANSACTION_RESPONSE = "TransactionResponse"
    APPROVE_PAIRING = "ApprovePairing"
    REJECT_PAIRING = "RejectPairing"
    ACKNOWLEDGE = "Acknowledge"
    ADDITIONAL_ACCOUNT_REQUEST = "AdditionalAccountRequest"
    ADDITIONAL_ACCOUNT_RESPONSE = "AdditionalAccountResponse"
    AUTHENTICATION_REQUEST = "AuthenticationRequest"
    AUTHENTICATION_RESPONSE = "AuthenticationResponse"


# Kinds that resolve a pending call, mapped to the request kind they answer
RESPONSE_TYPES = {
    RelayMessageType.TRANSACTION_RESPONSE: RelayMessageType.TRANSACTION,
    RelayMessageType.ADDITIONAL_ACCOUNT_RESPONSE: RelayMessageType.ADDITIONAL_ACCOUNT_REQUEST,
    RelayMessageType.AUTHENTICATION_RESPONSE: RelayMessageType.AUTHENTICATION_REQUEST,
}


class RelayMessage(WireModel):
    """Fields common to every message kind."""
    type: str
    id: Optional[str] = None
    topic: str = ""
    timestamp: Optional[int] = None  # ms since epoch, set when prepared
    origin: Optional[str] = None


class ApprovePairing(RelayMessage):
    type: Literal["ApprovePairing"] = "ApprovePairing"
    metadata: Metadata
    account_ids: list[str] = Field(default_factory=list)
    network: str = ""


class RejectPairing(RelayMessage):
    type: Literal["RejectPairing"] = "RejectPairing"
    reason: Optional[str] = None
    msg_id: Optional[str] = Field(default=None, alias="msg_id")


class Acknowledge(RelayMessage):
    type: Literal["Acknowledge"] = "Acknowledge"
    result: bool = True
    msg_id: Optional[str] = Field(default=None, alias="msg_id")


class TransactionMetadata(WireModel):
    account_to_sign: str
    return_transaction: bool = False
    hide_nft: bool = False


class Transaction(RelayMessage):
    type: Literal["Transaction"] = "Transaction"
    byte_array: B64Bytes
    metadata: TransactionMetadata


class TransactionResponse(RelayMessage):
    type: Literal["TransactionResponse"] = "TransactionResponse"
    success: bool
    receipt: Optional[B64Bytes] = None
    signed_transaction: Optional[B64Bytes] = None
    error: Optional[str] = None
    msg_id: Optional[str] = Field(default=None, alias="msg_id")


class AdditionalAccountRequest(RelayMessage):
    type: Literal["AdditionalAccountRequest"] = "AdditionalAccountRequest"
    network: str
    multi_account: bool = False


class AdditionalAccountResponse(RelayMessage):
    type: Literal["AdditionalAccountResponse"] = "AdditionalAccountResponse"
    account_ids: list[str] = Field(default_factory=list)
    network: str = ""
    msg_id: Optional[str] = Field(default=None, alias="msg_id")


class AuthPayload(WireModel):
    url: str
    data: Any = None


class AuthenticationRequest(RelayMessage):
    type: Literal["AuthenticationRequest"] = "AuthenticationRequest"
    account_to_sign: str
    server_signing_account: str
    server_signature: B64Bytes
    payload: AuthPayload


class SignedPayload(WireModel):
    server_signature: B64Bytes
    original_payload: AuthPayload


class AuthenticationResponse(RelayMessage):
    type: Literal["AuthenticationResponse"] = "AuthenticationResponse"
    success: bool
    error: Optional[str] = None
    user_signature: Optional[B64Bytes] = None
    signed_payload: Optional[SignedPayload] = None
    msg_id: Optional[str] = Field(default=None, alias="msg_id")


AnyRelayMessage = Annotated[
    Union[
        ApprovePairing,
        RejectPairing,
        Acknowledge,
        Transaction,
        TransactionResponse,
        AdditionalAccountRequest,
        AdditionalAccountResponse,
        AuthenticationRequest,
        AuthenticationResponse,
    ],
    Field(discriminator="type"),
]
