import asyncio
from typing import Callable

import pytest

from hashpair.errors import TransportFailure
from hashpair.models.messages import RelayMessage
from hashpair.models.metadata import Metadata
from hashpair.transport.envelope import decode_message
from hashpair.transport.relay import Relay


class RecordingRelay(Relay):
    """Relay double: records what is published, lets tests inject payloads."""

    def __init__(self, fail: bool = False):
        super().__init__()
        self.fail = fail
        self.initialized = False
        self.subscribed: list[str] = []
        self.published: list[tuple[str, str, str]] = []

    async def init(self) -> None:
        if self.fail:
            raise TransportFailure("relay down")
        self.initialized = True

    async def subscribe(self, topic: str) -> None:
        if self.fail:
            raise TransportFailure("relay down")
        self.subscribed.append(topic)

    async def publish(self, topic: str, message: str, public_key: str) -> None:
        if self.fail:
            raise TransportFailure("relay down")
        self.published.append((topic, message, public_key))

    def deliver(self, payload: str) -> None:
        self._emit_payload(payload)

    def messages(self) -> list[RelayMessage]:
        return [decode_message(text)[0] for _, text, _ in self.published]


async def wait_until(predicate: Callable[[], object], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)


@pytest.fixture
def relay() -> RecordingRelay:
    return RecordingRelay()


@pytest.fixture
def app_metadata() -> Metadata:
    return Metadata(
        name="dApp Example",
        description="An example <b>dApp</b>",
        icon="https://example.com/logo.svg",
        url="https://example.com",
    )


@pytest.fixture
def wallet_metadata() -> Metadata:
    return Metadata(name="Wallet", description="A test wallet", icon="https://wallet.example/icon.png")
