"""Canonical function signatures and name-variant construction.

- Builds `name(type1,type2,...)` strings with no whitespace and no return type.
- Validates the function name and every parameter type before anything is hashed.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from eth_abi.exceptions import ABITypeError, ParseError
from eth_abi.grammar import BasicType, TupleType, parse

from selector_hash import compute_selector, selector_hex

SignatureMap = Dict[str, str]  # "foo(uint256)" -> selector hex

IDENTIFIER_RE = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")
SIGNATURE_RE = re.compile(r"^(?P<name>[^()\s]*)\((?P<args>.*)\)$")

PLACEMENTS = ("suffix", "prefix", "infix")

DEFAULT_TYPE_VOCABULARY: FrozenSet[str] = frozenset(
    ["address", "bool", "string", "bytes", "function"]
    + [f"uint{n}" for n in range(8, 257, 8)]
    + [f"int{n}" for n in range(8, 257, 8)]
    + [f"bytes{n}" for n in range(1, 33)]
)

__all__ = [
    "SelectorError",
    "InvalidIdentifier",
    "InvalidParamType",
    "FunctionSignature",
    "SignatureBuilder",
    "DEFAULT_TYPE_VOCABULARY",
    "parse_signature",
    "split_params",
    "abi_function_signatures",
]


# --- errors ----------------------------------------------------------------


class SelectorError(Exception):
    """Base class for errors raised by the selector optimizer."""


class InvalidIdentifier(SelectorError, ValueError):
    """The function name (with its variant applied) is not a valid identifier."""


class InvalidParamType(SelectorError, ValueError):
    """A parameter type is malformed, non-canonical or outside the vocabulary."""


# --- values ----------------------------------------------------------------


@dataclass(frozen=True)
class FunctionSignature:
    """
    A function name, its ordered parameter types and the variant applied to it.

    `full_name` is the name that ends up in the contract; `variant` is the
    raw token the search produced (without separator).
    """

    name: str
    param_types: Tuple[str, ...]
    variant: str = ""
    full_name: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "param_types", tuple(self.param_types))
        if not self.full_name:
            object.__setattr__(self, "full_name", self.name + self.variant)

    @property
    def canonical(self) -> str:
        return f"{self.full_name}({','.join(self.param_types)})"

    def __str__(self) -> str:
        return self.canonical


# --- builder ---------------------------------------------------------------


class SignatureBuilder:
    """
    Build FunctionSignature values and apply variant tokens to names.

    The vocabulary lists canonical base types (`uint256`, `address`, ...).
    Array dimensions and tuples are accepted when every base type inside
    them is in the vocabulary.
    """

    def __init__(
        self,
        vocabulary: Optional[Iterable[str]] = None,
        separator: str = "",
        placement: str = "suffix",
        infix_at: Optional[int] = None,
    ) -> None:
        if placement not in PLACEMENTS:
            raise ValueError(f"placement must be one of {PLACEMENTS}, got {placement!r}")
        if placement == "infix" and infix_at is None:
            raise ValueError("infix placement needs an insertion offset")
        self.vocabulary: FrozenSet[str] = (
            frozenset(vocabulary) if vocabulary is not None else DEFAULT_TYPE_VOCABULARY
        )
        self.separator = separator
        self.placement = placement
        self.infix_at = infix_at
        self._checked: Dict[Tuple[str, ...], Tuple[str, ...]] = {}

    def apply_variant(self, base_name: str, token: str) -> str:
        if not token:
            return base_name
        if self.placement == "suffix":
            return base_name + self.separator + token
        if self.placement == "prefix":
            return token + self.separator + base_name
        at = min(self.infix_at or 0, len(base_name))
        return base_name[:at] + self.separator + token + self.separator + base_name[at:]

    def check_name(self, name: str) -> str:
        if not isinstance(name, str) or not IDENTIFIER_RE.match(name):
            raise InvalidIdentifier(f"not a valid function name: {name!r}")
        return name

    def check_params(self, param_types: Sequence[str]) -> Tuple[str, ...]:
        key = tuple(param_types)
        cached = self._checked.get(key)
        if cached is not None:
            return cached
        for type_str in key:
            self.check_type(type_str)
        self._checked[key] = key
        return key

    def check_type(self, type_str: str) -> str:
        if not isinstance(type_str, str) or not type_str or type_str != type_str.strip():
            raise InvalidParamType(f"invalid parameter type: {type_str!r}")
        try:
            abi_type = parse(type_str)
            abi_type.validate()
        except (ParseError, ABITypeError) as e:
            raise InvalidParamType(f"invalid parameter type {type_str!r}: {e}") from e
        if abi_type.to_type_str() != type_str:
            raise InvalidParamType(
                f"parameter type {type_str!r} is not canonical "
                f"(expected {abi_type.to_type_str()!r})"
            )
        for base in _base_types(abi_type):
            if base not in self.vocabulary:
                raise InvalidParamType(f"unrecognized parameter type {base!r} in {type_str!r}")
        return type_str

    def build(
        self,
        base_name: str,
        param_types: Sequence[str],
        variant_token: str = "",
    ) -> FunctionSignature:
        if not isinstance(base_name, str) or not base_name:
            raise InvalidIdentifier("function name must be a non-empty string")
        full_name = self.check_name(self.apply_variant(base_name, variant_token))
        params = self.check_params(param_types)
        return FunctionSignature(base_name, params, variant_token, full_name)


def _base_types(abi_type: Any) -> List[str]:
    """Collect base type names (array dimensions stripped), recursing into tuples."""
    if isinstance(abi_type, TupleType):
        out: List[str] = []
        for component in abi_type.components:
            out.extend(_base_types(component))
        return out
    if not isinstance(abi_type, BasicType):
        raise InvalidParamType(f"unsupported ABI type node: {abi_type!r}")
    sub = abi_type.sub
    if sub is None:
        return [abi_type.base]
    if isinstance(sub, tuple):
        return [f"{abi_type.base}{sub[0]}x{sub[1]}"]
    return [f"{abi_type.base}{sub}"]


# --- parsing ---------------------------------------------------------------


def split_params(args: str) -> List[str]:
    """Split a parameter list on top-level commas, keeping tuple types intact."""
    if not args:
        return []
    out: List[str] = []
    depth = 0
    start = 0
    for i, ch in enumerate(args):
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                raise InvalidParamType(f"unbalanced parentheses in {args!r}")
        elif ch == "," and depth == 0:
            out.append(args[start:i])
            start = i + 1
    if depth != 0:
        raise InvalidParamType(f"unbalanced parentheses in {args!r}")
    out.append(args[start:])
    return out


def parse_signature(signature: str) -> Tuple[str, List[str]]:
    """
    Split `name(t1,t2)` into its name and parameter types.

    Only the shape is checked here; validation happens in SignatureBuilder.build.
    """
    match = SIGNATURE_RE.match(signature.strip()) if isinstance(signature, str) else None
    if not match:
        raise InvalidIdentifier(f"not a function signature: {signature!r}")
    name = match.group("name")
    if not IDENTIFIER_RE.match(name):
        raise InvalidIdentifier(f"not a valid function name: {name!r}")
    return name, split_params(match.group("args"))


# --- ABI -------------------------------------------------------------------


def _abi_input_type(inp: Dict[str, Any]) -> str:
    type_str = inp.get("type", "unknown")
    if type_str.startswith("tuple"):
        inner = ",".join(_abi_input_type(c) for c in inp.get("components") or [])
        return f"({inner}){type_str[len('tuple'):]}"
    return type_str


def abi_function_signatures(abi_json: List[Dict[str, Any]]) -> SignatureMap:
    """
    Return mapping: signature_str -> 4-byte hex selector (no 0x).
    Only includes entries with type == 'function'.
    """
    sig_to_sel: SignatureMap = {}
    for entry in abi_json:
        if not isinstance(entry, dict) or entry.get("type") != "function":
            continue
        name = entry.get("name")
        if not isinstance(name, str):
            continue
        inputs = entry.get("inputs") or []
        types = [_abi_input_type(inp) for inp in inputs]
        sig = f"{name}({','.join(types)})"
        sig_to_sel[sig] = selector_hex(compute_selector(sig))
    return sig_to_sel
