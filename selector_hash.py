"""Keccak-256 digests and 4-byte function selectors."""
from __future__ import annotations

import string

from eth_utils import keccak

SelectorHex = str  # 8 hex chars, no 0x

SELECTOR_SIZE = 4

__all__ = [
    "SELECTOR_SIZE",
    "hash_signature",
    "selector_of",
    "compute_selector",
    "selector_int",
    "selector_hex",
    "parse_selector_hex",
]


def hash_signature(signature: str) -> bytes:
    """Keccak-256 (original padding, not SHA3-256) of the UTF-8 signature."""
    return keccak(signature.encode("utf-8"))


def selector_of(digest: bytes) -> bytes:
    # First four bytes of the digest, never the last four.
    return bytes(digest[:SELECTOR_SIZE])


def compute_selector(signature: str) -> bytes:
    return selector_of(hash_signature(signature))


def selector_int(selector: bytes) -> int:
    return int.from_bytes(selector, "big")


def selector_hex(selector: bytes) -> SelectorHex:
    return selector.hex()


def parse_selector_hex(text: str) -> bytes:
    """
    Accept `a9059cbb` or `0xa9059cbb` (any case) and return the 4 raw bytes.
    """
    if not isinstance(text, str):
        raise ValueError(f"selector must be a hex string, got {text!r}")
    low = text.strip().lower()
    if low.startswith("0x"):
        low = low[2:]
    if len(low) != SELECTOR_SIZE * 2 or any(c not in string.hexdigits for c in low):
        raise ValueError(f"selector must be 8 hex characters: {text!r}")
    return bytes.fromhex(low)
