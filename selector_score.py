"""Score selectors under one of three cost models.

Every Score carries a `key` tuple normalized so that a larger key is a
better selector, whatever the model's natural direction.
"""
from __future__ import annotations

import bisect
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence, Tuple

from selector_hash import SELECTOR_SIZE, selector_hex, selector_int
from selector_signature import SelectorError

LEADING_ZERO_BYTES = "leading_zero_bytes"
NUMERIC_RANK = "numeric_rank"
TARGET_PREFIX = "target_prefix"
MODELS = (LEADING_ZERO_BYTES, NUMERIC_RANK, TARGET_PREFIX)

MINIMIZE = "minimize"
MAXIMIZE = "maximize"

__all__ = [
    "LEADING_ZERO_BYTES",
    "NUMERIC_RANK",
    "TARGET_PREFIX",
    "MODELS",
    "SelectorCollision",
    "CostTable",
    "ScoreModel",
    "Score",
    "leading_zero_bytes",
    "rank_position",
    "score",
    "meets_threshold",
]


class SelectorCollision(SelectorError):
    """A candidate selector equals one of the sibling selectors."""


@dataclass(frozen=True)
class CostTable:
    """
    Dispatch cost per rank position (position 0 is matched first).

    Positions past the end of the table cost the same as the last entry.
    """

    costs: Tuple[float, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "costs", tuple(self.costs))
        if not self.costs:
            raise ValueError("cost table must have at least one entry")

    def cost(self, position: int) -> float:
        if position < len(self.costs):
            return self.costs[position]
        return self.costs[-1]

    @classmethod
    def linear(cls, slots: int, step_gas: float, base_gas: float = 0) -> "CostTable":
        """Cost of a linear dispatch scan: one comparison step per earlier selector."""
        if slots < 1:
            raise ValueError("slots must be >= 1")
        return cls(tuple(base_gas + step_gas * i for i in range(slots)))

    @classmethod
    def from_json(cls, data: Any) -> "CostTable":
        if isinstance(data, dict):
            data = data.get("costs")
        if not isinstance(data, list) or not all(
            isinstance(c, (int, float)) and not isinstance(c, bool) for c in data
        ):
            raise ValueError("cost table must be a JSON list of numbers (or {\"costs\": [...]})")
        return cls(tuple(data))


@dataclass(frozen=True)
class ScoreModel:
    kind: str = LEADING_ZERO_BYTES
    siblings: Tuple[bytes, ...] = ()
    cost_table: Optional[CostTable] = None
    direction: str = MINIMIZE
    prefix: bytes = b""
    _sorted: Tuple[int, ...] = field(default=(), init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.kind not in MODELS:
            raise ValueError(f"unknown score model {self.kind!r}; choose from {MODELS}")
        if self.direction not in (MINIMIZE, MAXIMIZE):
            raise ValueError(f"direction must be {MINIMIZE!r} or {MAXIMIZE!r}")
        siblings = tuple(bytes(s) for s in self.siblings)
        for s in siblings:
            if len(s) != SELECTOR_SIZE:
                raise ValueError(f"sibling selector must be 4 bytes, got {s.hex()!r}")
        object.__setattr__(self, "siblings", siblings)
        object.__setattr__(self, "_sorted", tuple(sorted({selector_int(s) for s in siblings})))
        if self.kind == NUMERIC_RANK and not siblings:
            raise ValueError("numeric_rank needs at least one sibling selector")
        if self.kind == TARGET_PREFIX and not 1 <= len(self.prefix) <= SELECTOR_SIZE:
            raise ValueError("target_prefix needs a prefix of 1 to 4 bytes")

    def describe(self) -> str:
        if self.kind == NUMERIC_RANK:
            table = "cost table" if self.cost_table else "raw position"
            return f"{self.kind} ({self.direction}, {len(self._sorted)} siblings, {table})"
        if self.kind == TARGET_PREFIX:
            return f"{self.kind} (0x{self.prefix.hex()})"
        return self.kind


@dataclass(frozen=True)
class Score:
    kind: str
    value: float
    key: Tuple[Any, ...]
    detail: int = 0
    matched: bool = False


def leading_zero_bytes(selector: bytes) -> int:
    count = 0
    for b in selector:
        if b != 0:
            break
        count += 1
    return count


def rank_position(value: int, sorted_siblings: Sequence[int]) -> int:
    """Index the value would take in the ascending sibling list."""
    return bisect.bisect_left(sorted_siblings, value)


def _sorted_siblings(model: ScoreModel, siblings: Optional[Iterable[bytes]]) -> Sequence[int]:
    if siblings is None:
        return model._sorted
    return sorted({selector_int(s) for s in siblings})


def score(selector: bytes, model: ScoreModel, siblings: Optional[Iterable[bytes]] = None) -> Score:
    """
    Score a selector. `siblings`, when given, overrides the model's own set.
    """
    value = selector_int(selector)

    if model.kind == LEADING_ZERO_BYTES:
        zeros = leading_zero_bytes(selector)
        return Score(model.kind, zeros, (zeros, -value), zeros, zeros == SELECTOR_SIZE)

    if model.kind == NUMERIC_RANK:
        ordered = _sorted_siblings(model, siblings)
        if not ordered:
            raise ValueError("numeric_rank needs sibling selectors")
        position = rank_position(value, ordered)
        if position < len(ordered) and ordered[position] == value:
            raise SelectorCollision(f"selector {selector_hex(selector)} collides with a sibling")
        cost = model.cost_table.cost(position) if model.cost_table else position
        if model.direction == MINIMIZE:
            key: Tuple[Any, ...] = (-cost, -value)
        else:
            key = (cost, value)
        return Score(model.kind, cost, key, position)

    matched = 0
    for got, want in zip(selector, model.prefix):
        if got != want:
            break
        matched += 1
    full = matched == len(model.prefix)
    return Score(model.kind, matched, (int(full), matched, -value), matched, full)


def meets_threshold(result: Score, model: ScoreModel, threshold: Optional[float]) -> bool:
    """
    True when a score is good enough to end the search early.

    The threshold counts leading zero bytes or matched prefix bytes, or is
    a rank cost (an upper bound when minimizing).
    """
    if threshold is None:
        return False
    if model.kind in (LEADING_ZERO_BYTES, TARGET_PREFIX):
        return result.value >= threshold
    if model.direction == MINIMIZE:
        return result.value <= threshold
    return result.value >= threshold
