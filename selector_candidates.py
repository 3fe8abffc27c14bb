"""Enumerate variant tokens: shortest first, then lexicographic over the alphabet.

Every token has a stable index in the enumeration, so a search can stop at
any point and resume from that index without regenerating earlier tokens.
"""
from __future__ import annotations

import string
from typing import Iterator, List

DEFAULT_ALPHABET = string.digits + string.ascii_letters + "_"

ALPHABETS = {
    "digits+letters": string.digits + string.ascii_letters,
    "alnum_": DEFAULT_ALPHABET,
    "lower": string.ascii_lowercase,
    "lower+digits": string.digits + string.ascii_lowercase,
    "hex": string.digits + "abcdef",
    "digits": string.digits,
}

__all__ = [
    "DEFAULT_ALPHABET",
    "ALPHABETS",
    "check_alphabet",
    "count_tokens",
    "token_at",
    "index_of",
    "produce",
]


def check_alphabet(alphabet: str) -> str:
    if not alphabet:
        raise ValueError("alphabet must not be empty")
    if len(set(alphabet)) != len(alphabet):
        dupes = sorted({c for c in alphabet if alphabet.count(c) > 1})
        raise ValueError(f"alphabet has duplicate characters: {dupes}")
    return alphabet


def _check_lengths(min_len: int, max_len: int) -> None:
    if min_len < 0 or max_len < 0:
        raise ValueError("token lengths must be >= 0")
    if min_len > max_len:
        raise ValueError(f"min_len {min_len} > max_len {max_len}")


def count_tokens(alphabet: str, min_len: int, max_len: int) -> int:
    """Number of tokens with min_len <= len <= max_len."""
    _check_lengths(min_len, max_len)
    base = len(check_alphabet(alphabet))
    return sum(base ** n for n in range(min_len, max_len + 1))


def _locate(base: int, min_len: int, index: int) -> tuple[int, int]:
    """Map a global index to (length, offset within that length)."""
    length = min_len
    while True:
        size = base ** length
        if index < size:
            return length, index
        index -= size
        length += 1


def _digits(base: int, length: int, offset: int) -> List[int]:
    out = [0] * length
    for pos in range(length - 1, -1, -1):
        offset, out[pos] = divmod(offset, base)
    return out


def token_at(alphabet: str, min_len: int, index: int) -> str:
    if index < 0:
        raise ValueError("index must be >= 0")
    base = len(check_alphabet(alphabet))
    length, offset = _locate(base, min_len, index)
    return "".join(alphabet[d] for d in _digits(base, length, offset))


def index_of(alphabet: str, min_len: int, token: str) -> int:
    """Inverse of token_at."""
    base = len(check_alphabet(alphabet))
    if len(token) < min_len:
        raise ValueError(f"token {token!r} is shorter than min_len {min_len}")
    lookup = {c: i for i, c in enumerate(alphabet)}
    index = sum(base ** n for n in range(min_len, len(token)))
    offset = 0
    for ch in token:
        if ch not in lookup:
            raise ValueError(f"character {ch!r} not in alphabet")
        offset = offset * base + lookup[ch]
    return index + offset


def produce(alphabet: str, min_len: int, max_len: int, start: int = 0) -> Iterator[str]:
    """
    Yield tokens from enumeration index `start` to the end of the space.

    Tokens of one length are exhausted, in alphabet order, before the next
    length begins. Each call returns an independent iterator.
    """
    total = count_tokens(alphabet, min_len, max_len)
    if start < 0 or start > total:
        raise ValueError(f"cursor {start} outside token space of size {total}")
    if start == total:
        return
    base = len(alphabet)
    length, offset = _locate(base, min_len, start)
    while length <= max_len:
        digits = _digits(base, length, offset)
        # odometer increment; rightmost position changes fastest
        while True:
            yield "".join([alphabet[d] for d in digits])
            pos = length - 1
            while pos >= 0:
                digits[pos] += 1
                if digits[pos] < base:
                    break
                digits[pos] = 0
                pos -= 1
            if pos < 0:
                break
        length += 1
        offset = 0
