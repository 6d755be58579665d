"""
Session state models: connection results and the persisted session shape.
"""

import json
from pathlib import Path
from typing import Optional, Union

from pydantic import AliasChoices, BaseModel, Field

from hashpair.models.base import WireModel
from hashpair.models.metadata import Metadata

DEFAULT_SESSION_FILE = Path.home() / ".hashpair" / "session.json"


class ConnectionState(BaseModel):
    topic: str
    expires: int = 0  # unused, always 0


class InitializationData(WireModel):
    private_key: str = Field(alias="privKey")


class PairedPeer(WireModel):
    """A counterparty that approved pairing on a topic."""
    topic: str
    metadata: Metadata
    account_ids: list[str] = Field(default_factory=list)
    network: Optional[str] = None


class SavedSession(WireModel):
    """What an app persists to resume a session without re-pairing."""
    topic: str = ""
    pairing_string: str = ""
    private_key: Optional[str] = None
    paired_wallet_data: Optional[Metadata] = Field(
        default=None,
        validation_alias=AliasChoices("pairedWalletData", "pairedPeerMetadata", "paired_wallet_data"),
    )
    paired_accounts: list[str] = Field(default_factory=list)

    @classmethod
    def load(cls, path: Union[str, Path] = DEFAULT_SESSION_FILE) -> Optional["SavedSession"]:
        try:
            return cls.model_validate(json.loads(Path(path).read_text()))
        except (FileNotFoundError, ValueError):
            return None

    def save(self, path: Union[str, Path] = DEFAULT_SESSION_FILE) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_wire(), indent=2))
