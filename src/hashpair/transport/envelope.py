"""
Message codec: identifiers, envelope preparation, encode/decode.
"""

import json
import random
import string
import time
import uuid
from typing import Any

from pydantic import TypeAdapter, ValidationError

from hashpair.errors import MalformedMessage
from hashpair.models.messages import AnyRelayMessage, RelayMessage, RelayMessageType

TOPIC_ID_LENGTH = 20
_TOPIC_ALPHABET = string.ascii_lowercase + string.digits

_message_adapter: TypeAdapter[Any] = TypeAdapter(AnyRelayMessage)


def create_random_topic_id(length: int = TOPIC_ID_LENGTH) -> str:
    """Random topic id; uniqueness only, not secrecy."""
    return "".join(random.choices(_TOPIC_ALPHABET, k=length))


def create_message_id() -> str:
    return str(uuid.uuid4())


def prepare_message(message: RelayMessage, topic: str) -> str:
    """Stamp a message with id, topic and timestamp, then encode it.

    The message is updated in place so callers can read back the id.
    """
    if not message.id:
        message.id = create_message_id()
    message.topic = topic
    message.timestamp = int(time.time() * 1000)
    return encode_message(message)


def encode_message(message: RelayMessage) -> str:
    return json.dumps(message.to_wire(), separators=(",", ":"))


def decode_message(payload: str) -> tuple[RelayMessage, RelayMessageType]:
    """Parse an inbound payload. Raises MalformedMessage if it can't be decoded."""
    try:
        raw = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise MalformedMessage(f"Invalid JSON payload: {e}") from e
    if not isinstance(raw, dict):
        raise MalformedMessage("Payload is not a JSON object")

    kind = raw.get("type")
    try:
        message_type = RelayMessageType(kind)
    except ValueError:
        raise MalformedMessage(f"Unknown message type: {kind!r}", {"type": kind}) from None

    try:
        message = _message_adapter.validate_python(raw)
    except ValidationError as e:
        raise MalformedMessage(
            f"Invalid {message_type.value} message: {e.error_count()} error(s)",
            {"type": message_type.value, "errors": e.errors(include_url=False)},
        ) from e
    return message, message_type
