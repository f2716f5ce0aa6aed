from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterable, List

from .constants import ULONG_SIZE, FlagTable


def to_hex(b: bytes) -> str:
    return bytes(b).hex()


def pack_ulong(n: int) -> bytes:
    """
    Encode a CK_ULONG the way the provider lays it out in memory.
    """
    if n < 0:
        raise ValueError("pack_ulong: n must be non-negative")
    if n >= 1 << (8 * ULONG_SIZE):
        raise ValueError(f"pack_ulong: n exceeds {ULONG_SIZE * 8}-bit CK_ULONG")
    return int(n).to_bytes(ULONG_SIZE, byteorder=sys.byteorder, signed=False)


def unpack_ulong(b: bytes) -> int:
    if len(b) != ULONG_SIZE:
        raise ValueError(f"unpack_ulong: expected {ULONG_SIZE} bytes, got {len(b)}")
    return int.from_bytes(bytes(b), byteorder=sys.byteorder, signed=False)


def pack_ulongs(values: Iterable[int]) -> bytes:
    return b"".join(pack_ulong(v) for v in values)


def unpack_ulongs(b: bytes) -> List[int]:
    if len(b) % ULONG_SIZE != 0:
        raise ValueError(f"unpack_ulongs: {len(b)} is not a multiple of {ULONG_SIZE}")
    return [unpack_ulong(b[i : i + ULONG_SIZE]) for i in range(0, len(b), ULONG_SIZE)]


def stringify(raw: bytes) -> str:
    """
    Decode a fixed-width Cryptoki text field.

    Fields are blank padded by PKCS#11, but plenty of providers pad with
    NULs instead, so both are trimmed from the right.
    """
    return bytes(raw).rstrip(b"\x00 ").decode("utf-8", errors="replace")


def render_flags(table: FlagTable, flags: int) -> str:
    """
    Names of the set bits, in table order, joined with ``|``.
    """
    return "|".join(name for name, mask in table if flags & mask)


def zero_buffer(buffer: bytearray | None) -> None:
    if buffer is None:
        return
    for idx in range(len(buffer)):
        buffer[idx] = 0


def read_file(path: str | Path) -> bytes:
    return Path(path).read_bytes()
