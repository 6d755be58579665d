"""Pairing coordinator: sanitizing, pairing strings, handshake state."""

import base64
import json

import pytest

from conftest import RecordingRelay
from hashpair import AsyncHashPair
from hashpair.errors import InvalidDescriptor, NotInitialized, TransportFailure, UnknownTopic
from hashpair.models.messages import ApprovePairing, RejectPairing, RelayMessageType
from hashpair.models.metadata import Metadata, PairingData
from hashpair.pairing import PairingState, decode_pairing_string, encode_pairing_string, sanitize_string
from hashpair.transport.envelope import encode_message


class TestSanitize:
    def test_escapes_markup_and_keeps_dots(self):
        assert sanitize_string("Al<ice>.app") == "Al&#60;ice&#62;.app"

    def test_keeps_word_characters_and_spaces(self):
        assert sanitize_string("My dApp_2 v1.0") == "My dApp_2 v1.0"

    def test_escapes_punctuation(self):
        assert sanitize_string("https://a.io/x-y") == "https&#58;&#47;&#47;a.io&#47;x&#45;y"
        assert sanitize_string("a&b") == "a&#38;b"

    def test_non_ascii_uses_utf16_code_units(self):
        assert sanitize_string("é") == "&#233;"
        assert sanitize_string("😀") == "&#55357;&#56832;"

    def test_idempotent_on_safe_strings(self):
        for value in ("", "plain text", "v1.2.3", "under_score"):
            assert sanitize_string(sanitize_string(value)) == sanitize_string(value) == value


class TestPairingString:
    def test_encode_decode(self):
        data = PairingData(
            metadata=Metadata(name="n", description="d", publicKey="pk"),
            topic="t1", network="testnet", multi_account=True,
        )
        assert decode_pairing_string(encode_pairing_string(data)) == data

    @pytest.mark.parametrize("value", [
        "***not base64***",
        base64.b64encode(b"not json").decode(),
        base64.b64encode(b"[1, 2]").decode(),
        base64.b64encode(b'{"metadata": {}}').decode(),
        base64.b64encode(b"\xff\xfe").decode(),
    ])
    def test_invalid_descriptor(self, value):
        with pytest.raises(InvalidDescriptor):
            decode_pairing_string(value)


class TestInitiator:
    @pytest.mark.asyncio
    async def test_connect_before_init_fails(self, relay):
        client = AsyncHashPair(relay=relay)
        assert client.state is PairingState.UNINITIALIZED
        with pytest.raises(NotInitialized):
            await client.connect()

    @pytest.mark.asyncio
    async def test_init_generates_key(self, relay, app_metadata):
        client = AsyncHashPair(relay=relay)
        data = await client.init(app_metadata)
        assert data.private_key
        assert client.metadata.public_key == data.private_key
        assert app_metadata.public_key is None
        assert relay.initialized
        assert client.state is PairingState.KEY_GENERATED

    @pytest.mark.asyncio
    async def test_init_keeps_supplied_key(self, relay, app_metadata):
        client = AsyncHashPair(relay=relay)
        data = await client.init(app_metadata, "saved-key")
        assert data.private_key == "saved-key"
        assert data.to_wire() == {"privKey": "saved-key"}

    @pytest.mark.asyncio
    async def test_connect_mints_topic_without_registering_a_key(self, relay, app_metadata):
        client = AsyncHashPair(relay=relay)
        await client.init(app_metadata)
        state = await client.connect()

        assert len(state.topic) == 20
        assert state.expires == 0
        assert state.topic not in client.registry
        assert relay.subscribed == [state.topic]
        assert client.state is PairingState.TOPIC_OPEN

    @pytest.mark.asyncio
    async def test_generate_pairing_string(self, relay, app_metadata):
        client = AsyncHashPair(relay=relay)
        init = await client.init(app_metadata)
        state = await client.connect()

        pairing_string = client.generate_pairing_string(state, "testnet", True)
        assert json.loads(base64.b64decode(pairing_string)) == {
            "metadata": {
                "name": "dApp Example",
                "description": "An example &#60;b&#62;dApp&#60;&#47;b&#62;",
                "icon": "https://example.com/logo.svg",
                "url": "https&#58;&#47;&#47;example.com",
                "publicKey": init.private_key,
            },
            "topic": state.topic,
            "network": "testnet",
            "multiAccount": True,
        }
        decoded = client.decode_pairing_string(pairing_string)
        assert decoded.topic == state.topic
        assert decoded.multi_account is True
        assert client.state is PairingState.PAIRING

    @pytest.mark.asyncio
    async def test_pairing_string_always_carries_metadata_keys(self, relay):
        client = AsyncHashPair(relay=relay)
        await client.init(Metadata(name="Bare"))
        state = await client.connect()

        pairing_string = client.generate_pairing_string(state, "testnet", False)
        metadata = json.loads(base64.b64decode(pairing_string))["metadata"]
        assert set(metadata) == {"name", "description", "icon", "url", "publicKey"}
        assert (metadata["icon"], metadata["url"]) == ("", "")

    @pytest.mark.asyncio
    async def test_connect_with_peer_metadata_registers_peer_key(self, relay, app_metadata, wallet_metadata):
        client = AsyncHashPair(relay=relay)
        await client.init(app_metadata)
        peer = wallet_metadata.model_copy(update={"public_key": "peer-key"})
        state = await client.connect("known-topic", peer)
        assert state.topic == "known-topic"
        assert client.registry.resolve("known-topic") == "peer-key"
        assert client.state is PairingState.PAIRED

    @pytest.mark.asyncio
    async def test_approval_records_paired_wallet(self, relay, app_metadata, wallet_metadata):
        client = AsyncHashPair(relay=relay)
        await client.init(app_metadata)
        state = await client.connect()
        client.generate_pairing_string(state, "testnet", True)

        approval = ApprovePairing(
            id="ap-1", topic=state.topic, network="testnet", account_ids=["0.0.1", "0.0.2"],
            metadata=wallet_metadata.model_copy(update={"public_key": "topic-key"}),
        )
        relay.deliver(encode_message(approval))
        relay.deliver(encode_message(approval.model_copy(update={"account_ids": ["0.0.2", "0.0.3"]})))

        peer = client.paired[state.topic]
        assert peer.metadata.name == "Wallet"
        assert peer.account_ids == ["0.0.1", "0.0.2", "0.0.3"]
        assert client.registry.resolve(state.topic) == "topic-key"
        assert client.state is PairingState.PAIRED

    @pytest.mark.asyncio
    async def test_rejection_reopens_topic(self, relay, app_metadata):
        client = AsyncHashPair(relay=relay)
        await client.init(app_metadata)
        state = await client.connect()
        client.generate_pairing_string(state, "testnet", False)
        assert client.state is PairingState.PAIRING

        relay.deliver(encode_message(RejectPairing(topic=state.topic, reason="no", msg_id="x")))
        assert client.state is PairingState.TOPIC_OPEN


class TestResponder:
    @pytest.mark.asyncio
    async def test_pair_registers_key_and_publishes_approval(self, relay, wallet_metadata):
        wallet = AsyncHashPair(relay=relay)
        await wallet.init(wallet_metadata.model_copy(update={"name": "Wallet <1>"}))
        pairing_data = PairingData(topic="T1", metadata=Metadata(publicKey="PKa"), network="testnet")

        state = await wallet.pair(pairing_data, ["0.0.123"], "testnet")

        assert state.topic == "T1"
        assert wallet.registry.resolve("T1") == "PKa"
        assert relay.subscribed == ["T1"]
        assert len(relay.published) == 1
        topic, _, key = relay.published[0]
        assert (topic, key) == ("T1", "PKa")
        approval = relay.messages()[0]
        assert isinstance(approval, ApprovePairing)
        assert approval.type == RelayMessageType.APPROVE_PAIRING
        assert approval.topic == "T1"
        assert approval.account_ids == ["0.0.123"]
        assert approval.network == "testnet"
        assert approval.metadata.name == "Wallet &#60;1&#62;"
        assert approval.metadata.public_key == "PKa"
        assert wallet.paired["T1"].account_ids == ["0.0.123"]
        assert wallet.state is PairingState.PAIRED

    @pytest.mark.asyncio
    async def test_pair_without_key_fails(self, relay, wallet_metadata):
        wallet = AsyncHashPair(relay=relay)
        await wallet.init(wallet_metadata)
        with pytest.raises(InvalidDescriptor):
            await wallet.pair(PairingData(topic="T1", metadata=Metadata(), network="testnet"), [], "testnet")
        assert relay.published == []

    @pytest.mark.asyncio
    async def test_pair_propagates_relay_failure(self, wallet_metadata):
        relay = RecordingRelay()
        wallet = AsyncHashPair(relay=relay)
        await wallet.init(wallet_metadata)
        relay.fail = True
        with pytest.raises(TransportFailure):
            await wallet.pair(PairingData(topic="T1", metadata=Metadata(publicKey="k"), network="n"), [], "n")

    @pytest.mark.asyncio
    async def test_reject(self, relay, wallet_metadata):
        wallet = AsyncHashPair(relay=relay)
        await wallet.init(wallet_metadata)

        with pytest.raises(UnknownTopic):
            await wallet.reject("T1", "nope", "msg-1")

        await wallet.reject("T1", "not <now>", "msg-1", public_key="PKa")
        topic, _, key = relay.published[0]
        assert (topic, key) == ("T1", "PKa")
        rejection = relay.messages()[0]
        assert isinstance(rejection, RejectPairing)
        assert rejection.reason == "not &#60;now&#62;"
        assert rejection.msg_id == "msg-1"

    @pytest.mark.asyncio
    async def test_reject_before_pairing_uses_descriptor_key(self, relay, wallet_metadata):
        wallet = AsyncHashPair(relay=relay)
        await wallet.init(wallet_metadata)
        descriptor = decode_pairing_string(encode_pairing_string(PairingData(
            topic="T2", metadata=Metadata(name="App", publicKey="app-key"), network="testnet",
        )))

        await wallet.reject(descriptor.topic, "declined", "msg-2", public_key=descriptor.metadata.public_key)
        topic, _, key = relay.published[0]
        assert (topic, key) == ("T2", "app-key")
        assert "T2" not in wallet.registry
