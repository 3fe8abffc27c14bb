"""Sources of sibling selectors: the other functions already in a contract.

- ABI JSON (bare array or a Truffle/Hardhat artifact with an "abi" key).
- A JSON list / object of hex selectors.
- Runtime bytecode, scanned for PUSH4-derived selectors (optionally fetched over RPC).
"""
from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Iterable, List, Optional, Set

from web3 import Web3

from selector_hash import parse_selector_hex
from selector_signature import SelectorError, SignatureMap, abi_function_signatures

logger = logging.getLogger(__name__)

DEFAULT_RPC = os.getenv("RPC_URL", "https://mainnet.infura.io/v3/your_api_key")
RPC_TIMEOUT = float(os.getenv("RPC_TIMEOUT", "30"))

BLOCK_TAGS = ("latest", "finalized", "safe", "earliest", "pending")

__all__ = [
    "SiblingSourceError",
    "load_json",
    "unwrap_abi",
    "siblings_from_abi",
    "siblings_from_hex_list",
    "parse_push4_selectors",
    "as_block_id",
    "siblings_from_chain",
    "find_collisions",
]


class SiblingSourceError(SelectorError):
    """A sibling selector source could not be read or understood."""


# --- helpers ---------------------------------------------------------------


def load_json(path: str) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        raise SiblingSourceError(f"failed to load JSON from {path}: {e}") from e


def unwrap_abi(abi_json: Any) -> List[Dict[str, Any]]:
    if isinstance(abi_json, list):
        return abi_json
    # Common case: Truffle/Hardhat artifact with {"abi": [...]} wrapper.
    if isinstance(abi_json, dict) and isinstance(abi_json.get("abi"), list):
        return abi_json["abi"]
    raise SiblingSourceError("ABI JSON must be an array of entries or an artifact with an 'abi' array.")


def as_block_id(s: Optional[str]) -> str | int:
    """
    Accept either an integer-like string (decimal / 0xHEX) or a tag:
    latest | finalized | safe | earliest | pending
    """
    if s is None:
        return "latest"
    low = s.lower()
    if low in BLOCK_TAGS:
        return low
    try:
        return int(s, 0)
    except ValueError as e:
        raise SiblingSourceError(f"invalid block identifier: {s!r}") from e


# --- selector sources ------------------------------------------------------


def siblings_from_abi(abi_json: Any, exclude: Iterable[str] = ()) -> List[bytes]:
    """
    Selectors of every ABI function except the signatures in `exclude`
    (normally the function being renamed).
    """
    sig_map = abi_function_signatures(unwrap_abi(abi_json))
    if not sig_map:
        logger.warning("ABI has no function entries; sibling set is empty")
    skip = set(exclude)
    collisions = find_collisions(sig_map)
    if collisions:
        logger.warning("ABI has selector collisions: %s", collisions)
    return sorted({bytes.fromhex(sel) for sig, sel in sig_map.items() if sig not in skip})


def siblings_from_hex_list(data: Any) -> List[bytes]:
    """
    Accept a JSON array of hex selectors ["a9059cbb", ...] or an object
    { "name(sig)": "a9059cbb", ... }.
    """
    if isinstance(data, dict):
        values = list(data.values())
    elif isinstance(data, list):
        values = data
    else:
        raise SiblingSourceError("unsupported selector list format; use an array or object of hex selectors")
    out: Set[bytes] = set()
    for s in values:
        try:
            out.add(parse_selector_hex(s))
        except ValueError as e:
            raise SiblingSourceError(str(e)) from e
    return sorted(out)


def parse_push4_selectors(bytecode: bytes) -> List[bytes]:
    """
    Heuristically extract 4-byte selectors from runtime bytecode.

    Scan for PUSH4 (0x63) opcodes followed by 4 bytes, which matches
    the common Solidity dispatcher pattern:
        PUSH4 <selector> ; EQ ; ...

    This may miss selectors in non-standard dispatch logic (Yul, custom proxies).
    """
    selectors: Set[bytes] = set()
    i = 0
    n = len(bytecode)
    while i < n:
        op = bytecode[i]
        if 0x60 <= op <= 0x7F:  # PUSH1..PUSH32
            push_len = op - 0x5F
            if op == 0x63 and i + 1 + 4 <= n:  # PUSH4
                selectors.add(bytes(bytecode[i + 1 : i + 5]))
            i += 1 + push_len
        else:
            i += 1
    return sorted(selectors)


def siblings_from_chain(
    address: str,
    rpc: str = DEFAULT_RPC,
    block: Optional[str] = None,
    timeout: float = RPC_TIMEOUT,
) -> List[bytes]:
    """Fetch runtime code at `block` and scan it for dispatcher selectors."""
    if not isinstance(address, str) or not Web3.is_address(address):
        raise SiblingSourceError(f"invalid Ethereum address: {address!r}")
    block_id = as_block_id(block)
    addr = Web3.to_checksum_address(address)
    w3 = Web3(Web3.HTTPProvider(rpc, request_kwargs={"timeout": timeout}))
    try:
        connected = w3.is_connected()
    except Exception as e:
        raise SiblingSourceError(f"failed to connect to RPC endpoint: {e}") from e
    if not connected:
        raise SiblingSourceError("failed to connect to RPC endpoint")
    try:
        code = w3.eth.get_code(addr, block_identifier=block_id)
    except Exception as e:
        raise SiblingSourceError(f"failed to fetch code at {addr} (block={block_id}): {e}") from e
    if not code:
        logger.warning("no contract code at %s; sibling set is empty", addr)
    return parse_push4_selectors(bytes(code))


def find_collisions(sig_map: SignatureMap) -> Dict[str, List[str]]:
    """Selectors shared by more than one signature."""
    sel_to_sigs: Dict[str, List[str]] = {}
    for sig, sel in sig_map.items():
        sel_to_sigs.setdefault(sel, []).append(sig)
    return {sel: sigs for sel, sigs in sel_to_sigs.items() if len(sigs) > 1}
