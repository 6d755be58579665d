"""
hashpair error types.
"""

from typing import Any, Optional


class HashPairError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class UnknownTopic(HashPairError):
    def __init__(self, topic: str):
        super().__init__("unknown_topic", f"No public key registered for topic {topic!r}", {"topic": topic})
        self.topic = topic


class MalformedMessage(HashPairError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("malformed_message", message, details)


class InvalidDescriptor(HashPairError):
    def __init__(self, message: str):
        super().__init__("invalid_descriptor", message)


class TransportFailure(HashPairError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("transport_failure", message, details)


class NoPendingRequest(HashPairError):
    """Raised internally when a response arrives with nothing waiting for it."""

    def __init__(self, message_type: str, topic: str, msg_id: Optional[str] = None):
        super().__init__(
            "no_pending_request",
            f"No pending {message_type} request on topic {topic!r}",
            {"type": message_type, "topic": topic, "msg_id": msg_id},
        )


class NotInitialized(HashPairError):
    def __init__(self, message: str = "Not initialized. Call init() first."):
        super().__init__("not_initialized", message)
