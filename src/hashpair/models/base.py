"""
Shared wire-model plumbing: camelCase aliases and base64-encoded bytes.
"""

import base64
import binascii
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, PlainSerializer
from pydantic.alias_generators import to_camel


def _from_base64(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return base64.b64decode(value, validate=True)
        except binascii.Error as e:
            raise ValueError(f"invalid base64: {e}") from e
    return value


def _to_base64(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


# bytes in Python, base64 text on the wire
B64Bytes = Annotated[bytes, BeforeValidator(_from_base64), PlainSerializer(_to_base64, return_type=str)]


class WireModel(BaseModel):
    model_config = {"populate_by_name": True, "alias_generator": to_camel}

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
