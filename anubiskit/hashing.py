"""Hash helpers: SHA-256 for challenges, XXH64 for fast internal keys."""

from __future__ import annotations

import hashlib
import struct

_MASK = 0xFFFFFFFFFFFFFFFF

_P1 = 11400714785074694791
_P2 = 14029467366897019727
_P3 = 1609587929392839161
_P4 = 9650029242287828579
_P5 = 2870177450012600261

_STRIPE = struct.Struct("<4Q")
_LANE = struct.Struct("<Q")
_HALF = struct.Struct("<I")


def _rotl(value: int, bits: int) -> int:
    return ((value << bits) | (value >> (64 - bits))) & _MASK


def _round(acc: int, lane: int) -> int:
    acc = (acc + lane * _P2) & _MASK
    return (_rotl(acc, 31) * _P1) & _MASK


def _merge(acc: int, value: int) -> int:
    acc ^= _round(0, value)
    return (acc * _P1 + _P4) & _MASK


def xxh64(data: bytes | bytearray | memoryview | str, seed: int = 0) -> int:
    """Return the 64-bit XXH64 digest of ``data`` as an integer."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    data = bytes(data)
    length = len(data)
    seed &= _MASK

    stripes_end = length - length % 32
    if length >= 32:
        v1 = (seed + _P1 + _P2) & _MASK
        v2 = (seed + _P2) & _MASK
        v3 = seed
        v4 = (seed - _P1) & _MASK
        for a, b, c, d in _STRIPE.iter_unpack(data[:stripes_end]):
            v1 = _round(v1, a)
            v2 = _round(v2, b)
            v3 = _round(v3, c)
            v4 = _round(v4, d)
        acc = (_rotl(v1, 1) + _rotl(v2, 7) + _rotl(v3, 12) + _rotl(v4, 18)) & _MASK
        for lane in (v1, v2, v3, v4):
            acc = _merge(acc, lane)
    else:
        acc = (seed + _P5) & _MASK

    acc = (acc + length) & _MASK

    tail = data[stripes_end:]
    lanes_end = len(tail) - len(tail) % 8
    for (lane,) in _LANE.iter_unpack(tail[:lanes_end]):
        acc ^= _round(0, lane)
        acc = (_rotl(acc, 27) * _P1 + _P4) & _MASK

    rest = tail[lanes_end:]
    if len(rest) >= 4:
        (half,) = _HALF.unpack_from(rest)
        acc ^= (half * _P1) & _MASK
        acc = (_rotl(acc, 23) * _P2 + _P3) & _MASK
        rest = rest[4:]

    for byte in rest:
        acc ^= (byte * _P5) & _MASK
        acc = (_rotl(acc, 11) * _P1) & _MASK

    acc ^= acc >> 33
    acc = (acc * _P2) & _MASK
    acc ^= acc >> 29
    acc = (acc * _P3) & _MASK
    acc ^= acc >> 32
    return acc


def sha256sum(text: str) -> str:
    """Return the hex SHA-256 digest of ``text``."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def fast_hash(text: str) -> str:
    """Return a non-cryptographic hash of ``text`` as lower-case hex, no padding."""
    return format(xxh64(text), "x")