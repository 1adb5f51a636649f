"""Plutus data encoding.

Plutus data is CBOR: integers, byte strings, lists, maps, and constructor
applications encoded as tagged arrays (tag 121+i for alternatives 0-6,
1280+(i-7) for 7-127, and tag 102 with an explicit index beyond that).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Union

import cbor2

# Plutus caps a single bytestring chunk at 64 bytes
MAX_BYTES_LENGTH = 64


@dataclass(frozen=True)
class Constr:
    """A constructor application (``Constr index fields``)."""

    index: int
    fields: List[Any] = field(default_factory=list)


PlutusData = Union[Constr, int, bytes, List[Any], Dict[Any, Any]]


def _to_cbor(value: Any) -> Any:
    if isinstance(value, Constr):
        fields = [_to_cbor(v) for v in value.fields]
        if 0 <= value.index <= 6:
            return cbor2.CBORTag(121 + value.index, fields)
        if 7 <= value.index <= 127:
            return cbor2.CBORTag(1280 + value.index - 7, fields)
        return cbor2.CBORTag(102, [value.index, fields])
    if isinstance(value, bool):
        # bool is an int subclass; Plutus has no boolean primitive
        raise TypeError("Encode booleans as Constr(0) / Constr(1)")
    if isinstance(value, int):
        return value
    if isinstance(value, (bytes, bytearray)):
        if len(value) > MAX_BYTES_LENGTH:
            raise ValueError(f"Bytestring longer than {MAX_BYTES_LENGTH} bytes")
        return bytes(value)
    if isinstance(value, list):
        return [_to_cbor(v) for v in value]
    if isinstance(value, dict):
        return {_to_cbor(k): _to_cbor(v) for k, v in value.items()}
    raise TypeError(f"Cannot encode {type(value).__name__} as Plutus data")


def _from_cbor(value: Any) -> Any:
    if isinstance(value, cbor2.CBORTag):
        if 121 <= value.tag <= 127:
            return Constr(value.tag - 121, [_from_cbor(v) for v in value.value])
        if 1280 <= value.tag <= 1400:
            return Constr(value.tag - 1280 + 7, [_from_cbor(v) for v in value.value])
        if value.tag == 102:
            index, fields = value.value
            return Constr(index, [_from_cbor(v) for v in fields])
        raise ValueError(f"Unexpected CBOR tag in Plutus data: {value.tag}")
    if isinstance(value, list):
        return [_from_cbor(v) for v in value]
    if isinstance(value, dict):
        return {_from_cbor(k): _from_cbor(v) for k, v in value.items()}
    return value


def encode_plutus(data: PlutusData) -> bytes:
    """Serialize Plutus data to CBOR bytes."""
    return cbor2.dumps(_to_cbor(data))


def decode_plutus(raw: bytes) -> PlutusData:
    """Parse CBOR bytes back into Plutus data."""
    return _from_cbor(cbor2.loads(raw))


def to_json(data: PlutusData) -> Any:
    """Render Plutus data in the cardano-cli detailed JSON schema."""
    if isinstance(data, Constr):
        return {"constructor": data.index, "fields": [to_json(v) for v in data.fields]}
    if isinstance(data, int):
        return {"int": data}
    if isinstance(data, (bytes, bytearray)):
        return {"bytes": bytes(data).hex()}
    if isinstance(data, list):
        return {"list": [to_json(v) for v in data]}
    if isinstance(data, dict):
        return {"map": [{"k": to_json(k), "v": to_json(v)} for k, v in data.items()]}
    raise TypeError(f"Cannot render {type(data).__name__} as Plutus JSON")
