"""
App/wallet metadata and the pairing descriptor.
"""

from typing import Optional

from hashpair.models.base import WireModel


class Metadata(WireModel):
    """Describes either the initiating app or the responding wallet."""
    name: str = ""
    description: str = ""
    icon: str = ""
    url: str = ""
    public_key: Optional[str] = None


class PairingData(WireModel):
    """Decoded pairing string, shared out-of-band (QR code, deep link)."""
    metadata: Metadata
    topic: str
    network: str
    multi_account: bool = False
