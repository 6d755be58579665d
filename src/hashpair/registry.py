"""
Topic -> public key registry.

Holds, per topic, the key used to address the counterparty on that topic.
All access goes through one lock, so relay deliveries on other threads can
register and resolve without lost updates.
"""

import threading
from typing import Optional

from hashpair.errors import UnknownTopic


class TopicKeyRegistry:
    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._keys: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def register(self, topic: str, public_key: str) -> None:
        """Store the key for a topic, replacing any previous binding."""
        with self._lock:
            self._keys[topic] = public_key

    def resolve(self, topic: str) -> str:
        with self._lock:
            try:
                return self._keys[topic]
            except KeyError:
                raise UnknownTopic(topic) from None

    def unregister(self, topic: str) -> None:
        with self._lock:
            self._keys.pop(topic, None)

    def topics(self) -> list[str]:
        with self._lock:
            return list(self._keys)

    def __contains__(self, topic: object) -> bool:
        with self._lock:
            return topic in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)
