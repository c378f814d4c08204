"""Stable content hashing for cache keys."""

from __future__ import annotations

_FNV32_OFFSET_BASIS = 0x811C9DC5
_FNV32_PRIME = 0x01000193


def fnv1a_32(text: str) -> str:
    """Return the 32-bit FNV-1a hash of the UTF-8 bytes of *text* as 8 hex digits.

    Unlike `hash()`, the value is not salted per process, so keys built from it
    stay valid across restarts.
    """

    value = _FNV32_OFFSET_BASIS
    for byte in text.encode("utf-8"):
        value ^= byte
        value = (value * _FNV32_PRIME) & 0xFFFFFFFF
    return f"{value:08x}"
