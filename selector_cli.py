"""Command-line entrypoint for the selector optimizer.

Importing this module has no side effects; all behavior is opt-in.

Example:
    selector-optimizer deposit uint256 --alphabet digits+letters --separator _ \
        --max-len 3 --top 5
"""
from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
import time
from typing import Any, List, Optional

from selector_candidates import ALPHABETS, DEFAULT_ALPHABET
from selector_hash import compute_selector
from selector_score import (
    LEADING_ZERO_BYTES,
    MAXIMIZE,
    MINIMIZE,
    MODELS,
    NUMERIC_RANK,
    TARGET_PREFIX,
    CostTable,
    ScoreModel,
)
from selector_search import DEFAULT_CHUNK_SIZE, DEFAULT_TOP_K, POOLS, SearchBudget, SearchResult, search
from selector_siblings import (
    DEFAULT_RPC,
    RPC_TIMEOUT,
    SiblingSourceError,
    load_json,
    siblings_from_abi,
    siblings_from_chain,
    siblings_from_hex_list,
)
from selector_signature import (
    PLACEMENTS,
    InvalidIdentifier,
    InvalidParamType,
    SignatureBuilder,
    parse_signature,
)

__version__ = "0.1.0"

DEFAULT_WORKERS = int(os.getenv("SELECTOR_WORKERS", str(min(8, os.cpu_count() or 1))))
DEFAULT_STEP_GAS = 22  # per comparison step in a linear dispatcher


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(
        prog="selector-optimizer",
        description="Search function-name variants for cheaper 4-byte selectors.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    ap.add_argument("name", nargs="?", help="Function name (e.g. deposit)")
    ap.add_argument("types", nargs="*", help="Canonical parameter types (e.g. uint256 address)")
    ap.add_argument("-s", "--signature", help="Full signature instead of NAME TYPES, e.g. 'deposit(uint256)'")
    ap.add_argument("-m", "--model", choices=MODELS, default=LEADING_ZERO_BYTES, help="Score model")

    budget = ap.add_argument_group("search budget")
    budget.add_argument("--min-len", type=int, default=1, help="Shortest variant token")
    budget.add_argument("--max-len", type=int, default=4, help="Longest variant token")
    budget.add_argument(
        "--alphabet",
        default="alnum_",
        help=f"Token alphabet: one of {sorted(ALPHABETS)} or a literal character set",
    )
    budget.add_argument("--separator", default="_", help="Joined between name and token")
    budget.add_argument("--placement", choices=PLACEMENTS, default="suffix", help="Where the token goes")
    budget.add_argument("--infix-at", type=int, help="Insertion offset for --placement infix")
    budget.add_argument("--max-candidates", type=int, help="Stop after this many candidates")
    budget.add_argument(
        "--early-stop",
        type=float,
        help="Stop at this score (zero bytes, matched prefix bytes, or rank cost)",
    )
    budget.add_argument("--start", type=int, default=0, help="Enumeration cursor to resume from")
    budget.add_argument("--time-limit", type=float, help="Cancel the search after this many seconds")
    budget.add_argument("--top", type=int, default=DEFAULT_TOP_K, help="How many results to keep")
    budget.add_argument("--workers", type=int, default=DEFAULT_WORKERS, help="Parallel workers (SELECTOR_WORKERS)")
    budget.add_argument("--pool", choices=POOLS, default="process", help="Where parallel workers run")
    budget.add_argument("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE, help="Candidates per work unit")
    budget.add_argument("--types-file", help="JSON list replacing the canonical type vocabulary")

    rank = ap.add_argument_group("numeric_rank / target_prefix")
    rank.add_argument("--siblings", help="JSON array/object of sibling hex selectors")
    rank.add_argument("--abi", help="ABI JSON whose other functions are the siblings")
    rank.add_argument("--address", help="Contract address to read sibling selectors from")
    rank.add_argument("-r", "--rpc", default=DEFAULT_RPC, help="RPC URL (default from RPC_URL)")
    rank.add_argument("--block", help="Block number or tag for --address (default: latest)")
    rank.add_argument("--timeout", type=float, default=RPC_TIMEOUT, help="RPC HTTP timeout in seconds")
    rank.add_argument("--cost-table", help="JSON list of gas per rank position")
    rank.add_argument("--step-gas", type=float, default=DEFAULT_STEP_GAS, help="Gas per linear comparison step")
    rank.add_argument("--base-gas", type=float, default=0, help="Gas before the first comparison")
    rank.add_argument("--direction", choices=(MINIMIZE, MAXIMIZE), default=MINIMIZE, help="Rank direction")
    rank.add_argument("--prefix", help="Target selector prefix in hex (target_prefix model)")

    out = ap.add_argument_group("output")
    out.add_argument("--json", action="store_true", help="Emit JSON to stdout instead of a table")
    out.add_argument("--raw-json", action="store_true", help="Emit compact JSON (no pretty-printing)")
    out.add_argument("--quiet", action="store_true", help="Suppress human-readable logs on stderr")
    out.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    out.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return ap.parse_args(argv)


# --- option resolution -----------------------------------------------------


def resolve_alphabet(value: str) -> str:
    return ALPHABETS.get(value, value) or DEFAULT_ALPHABET


def resolve_prefix(text: str) -> bytes:
    low = text.lower()
    if low.startswith("0x"):
        low = low[2:]
    if not low or len(low) % 2 or len(low) > 8:
        raise ValueError(f"--prefix must be 1 to 4 bytes of hex: {text!r}")
    return bytes.fromhex(low)


def resolve_siblings(args: argparse.Namespace, own_signature: str) -> List[bytes]:
    siblings: set = set()
    if args.siblings:
        siblings.update(siblings_from_hex_list(load_json(args.siblings)))
    if args.abi:
        siblings.update(siblings_from_abi(load_json(args.abi), exclude=[own_signature]))
    if args.address:
        siblings.update(siblings_from_chain(args.address, rpc=args.rpc, block=args.block, timeout=args.timeout))
    return sorted(siblings)


def build_model(args: argparse.Namespace, own_signature: str, own_selector: bytes) -> ScoreModel:
    if args.model == TARGET_PREFIX:
        if not args.prefix:
            raise ValueError("--prefix is required for the target_prefix model")
        return ScoreModel(kind=TARGET_PREFIX, prefix=resolve_prefix(args.prefix))
    if args.model == NUMERIC_RANK:
        # The unrenamed function is not a sibling of its own variants.
        siblings = [s for s in resolve_siblings(args, own_signature) if s != own_selector]
        if not siblings:
            raise ValueError("numeric_rank needs sibling selectors (--siblings, --abi or --address)")
        if args.cost_table:
            try:
                table = CostTable.from_json(load_json(args.cost_table))
            except ValueError as e:
                raise ValueError(f"bad --cost-table: {e}") from e
        else:
            table = CostTable.linear(len(siblings) + 1, args.step_gas, args.base_gas)
        return ScoreModel(kind=NUMERIC_RANK, siblings=tuple(siblings), cost_table=table, direction=args.direction)
    return ScoreModel(kind=LEADING_ZERO_BYTES)


def early_stop_for(args: argparse.Namespace, model: ScoreModel) -> Optional[float]:
    if args.early_stop is not None:
        return args.early_stop
    if model.kind == TARGET_PREFIX:
        return len(model.prefix)
    return None


# --- output ----------------------------------------------------------------


def format_table(result: SearchResult) -> str:
    lines = [f"{'#':>3}  {'token':<10} {'selector':<10} {'score':>8}  signature"]
    for i, c in enumerate(result.candidates, start=1):
        value = c.score.value
        shown = f"{value:g}" if isinstance(value, float) else str(value)
        lines.append(f"{i:>3}  {c.token!r:<10} {c.selector_hex:<10} {shown:>8}  {c.signature.canonical}")
    return "\n".join(lines)


def emit(result: SearchResult, args: argparse.Namespace, extra: dict) -> None:
    if args.json or args.raw_json:
        payload: dict[str, Any] = dict(extra)
        payload.update(result.to_dict())
        if args.raw_json:
            print(json.dumps(payload, separators=(",", ":"), sort_keys=True))
        else:
            print(json.dumps(payload, indent=2, sort_keys=True))
    else:
        print(format_table(result))


def log(args: argparse.Namespace, message: str) -> None:
    if not args.quiet:
        print(message, file=sys.stderr)


# --- main ------------------------------------------------------------------


def run(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.signature and (args.name or args.types):
            print("❌ Give either NAME TYPES or --signature, not both.", file=sys.stderr)
            return 2
        if args.signature:
            name, types = parse_signature(args.signature)
        elif args.name:
            name, types = args.name, list(args.types)
        else:
            print("❌ Give a function name (and types) or --signature.", file=sys.stderr)
            return 2

        vocabulary = None
        if args.types_file:
            vocabulary = load_json(args.types_file)
            if not isinstance(vocabulary, list) or not all(isinstance(t, str) for t in vocabulary):
                raise ValueError("--types-file must hold a JSON list of type names")
        builder = SignatureBuilder(
            vocabulary=vocabulary,
            separator=args.separator,
            placement=args.placement,
            infix_at=args.infix_at,
        )
        base = builder.build(name, types)
        own_selector = compute_selector(base.canonical)
        model = build_model(args, base.canonical, own_selector)
        budget = SearchBudget(
            max_len=args.max_len,
            min_len=args.min_len,
            alphabet=resolve_alphabet(args.alphabet),
            max_candidates=args.max_candidates,
            early_stop=early_stop_for(args, model),
            start=args.start,
        )
        space = budget.space
    except (InvalidIdentifier, InvalidParamType, SiblingSourceError, ValueError) as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2

    log(args, f"🔧 {base.canonical} -> 0x{own_selector.hex()}")
    log(args, f"🎯 model: {model.describe()} (single objective)")
    log(
        args,
        f"🔍 tokens {budget.min_len}..{budget.max_len} over {len(budget.alphabet)} chars "
        f"({space} total, from cursor {budget.start}), workers={args.workers} ({args.pool})",
    )

    cancel = threading.Event()
    timer: Optional[threading.Timer] = None
    if args.time_limit:
        timer = threading.Timer(args.time_limit, cancel.set)
        timer.daemon = True
        timer.start()
    previous = None
    if threading.current_thread() is threading.main_thread():
        previous = signal.signal(signal.SIGINT, lambda signum, frame: cancel.set())

    t0 = time.monotonic()
    try:
        result = search(
            base,
            model,
            budget,
            top_k=args.top,
            workers=args.workers,
            pool=args.pool,
            cancel=cancel,
            builder=builder,
            chunk_size=args.chunk_size,
        )
    except ValueError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)
        if timer is not None:
            timer.cancel()
    elapsed = time.monotonic() - t0

    speed = result.candidates_evaluated / elapsed if elapsed > 0 else 0.0
    log(args, f"⏱️  {result.candidates_evaluated} candidates in {elapsed:.2f}s ({speed:.0f}/s)")
    if result.early_stop_triggered:
        log(args, "✅ Early-stop threshold reached.")
    if result.cancelled:
        log(args, f"⚠️  Cancelled; partial results. Resume with --start {result.next_cursor}")
    if result.skipped:
        log(args, f"⚠️  Skipped {result.skipped} invalid or colliding candidates.")
    if not result.candidates:
        log(args, "ℹ️  No candidates scored.")

    emit(result, args, {"baseSignature": base.canonical, "baseSelector": own_selector.hex()})
    return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
