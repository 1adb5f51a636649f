"""Bech32 encoding (BIP-0173) for Cardano addresses.

Cardano addresses are plain Bech32 (not Bech32m) but routinely exceed the
90 character limit BIP-0173 imposes on Bitcoin segwit addresses, so the
length check here is relaxed to the CIP-0005 ceiling.
"""

from typing import Iterable, List, Sequence, Tuple

CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
CHARSET_REV = {c: i for i, c in enumerate(CHARSET)}

_BECH32_CONST = 1
_GENERATORS = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)

# Generous upper bound; the longest Shelley base address is 103 chars
MAX_LENGTH = 1023


class Bech32Error(ValueError):
    pass


def _polymod(values: Sequence[int]) -> int:
    chk = 1
    for v in values:
        top = chk >> 25
        chk = ((chk & 0x1FFFFFF) << 5) ^ v
        for i in range(5):
            if (top >> i) & 1:
                chk ^= _GENERATORS[i]
    return chk


def _hrp_expand(hrp: str) -> List[int]:
    return [ord(x) >> 5 for x in hrp] + [0] + [ord(x) & 31 for x in hrp]


def _create_checksum(hrp: str, data: Sequence[int]) -> List[int]:
    polymod = _polymod(_hrp_expand(hrp) + list(data) + [0] * 6) ^ _BECH32_CONST
    return [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]


def bech32_encode(hrp: str, data: Sequence[int]) -> str:
    """Encode HRP + 5-bit words into a Bech32 string."""
    if not hrp or any(ord(c) < 33 or ord(c) > 126 for c in hrp):
        raise Bech32Error("invalid HRP characters")
    if any(d < 0 or d > 31 for d in data):
        raise Bech32Error("data values must be 5-bit (0..31)")
    hrp = hrp.lower()
    combined = list(data) + _create_checksum(hrp, data)
    return hrp + "1" + "".join(CHARSET[d] for d in combined)


def bech32_decode(bech: str) -> Tuple[str, List[int]]:
    """Decode a Bech32 string into (hrp, 5-bit words without checksum)."""
    if not bech or len(bech) < 8 or len(bech) > MAX_LENGTH:
        raise Bech32Error("invalid bech32 length")
    if any(c.isupper() for c in bech) and any(c.islower() for c in bech):
        raise Bech32Error("mixed-case bech32 is invalid")
    bech = bech.lower()

    pos = bech.rfind("1")
    if pos < 1 or pos + 7 > len(bech):
        raise Bech32Error("invalid position of separator '1'")

    hrp = bech[:pos]
    if any(ord(c) < 33 or ord(c) > 126 for c in hrp):
        raise Bech32Error("invalid HRP characters")
    try:
        data = [CHARSET_REV[c] for c in bech[pos + 1 :]]
    except KeyError:
        raise Bech32Error("invalid data character in bech32 string")

    if _polymod(_hrp_expand(hrp) + data) != _BECH32_CONST:
        raise Bech32Error("checksum mismatch")
    return hrp, data[:-6]


def convertbits(data: Iterable[int], from_bits: int, to_bits: int, pad: bool = True) -> List[int]:
    """General power-of-2 base conversion (BIP-0173 ``convertbits``)."""
    acc = 0
    bits = 0
    ret: List[int] = []
    maxv = (1 << to_bits) - 1
    max_acc = (1 << (from_bits + to_bits - 1)) - 1

    for value in data:
        if value < 0 or (value >> from_bits):
            raise Bech32Error("invalid value for convertbits")
        acc = ((acc << from_bits) | value) & max_acc
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            ret.append((acc >> bits) & maxv)

    if pad:
        if bits:
            ret.append((acc << (to_bits - bits)) & maxv)
    elif bits >= from_bits or ((acc << (to_bits - bits)) & maxv):
        raise Bech32Error("invalid padding")
    return ret


def encode_bytes(hrp: str, payload: bytes) -> str:
    """Encode raw bytes under ``hrp``."""
    return bech32_encode(hrp, convertbits(payload, 8, 5, pad=True))


def decode_bytes(bech: str) -> Tuple[str, bytes]:
    """Decode a Bech32 string into (hrp, raw bytes)."""
    hrp, words = bech32_decode(bech)
    return hrp, bytes(convertbits(words, 5, 8, pad=False))
