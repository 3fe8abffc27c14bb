"""Search name variants for the best-scoring function selectors.

The token space is walked in enumeration order and cut into contiguous
chunks. Chunks are scored on a process pool (or a thread pool), each
keeping a private top-K, then reduced in index order. The first chunk that
reaches the early-stop threshold ends the search, so the outcome does not
depend on how many workers ran or in which order they finished.
"""
from __future__ import annotations

import heapq
import itertools
import logging
import multiprocessing
import multiprocessing.synchronize
import signal
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ProcessPoolExecutor, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from selector_candidates import DEFAULT_ALPHABET, check_alphabet, count_tokens, produce
from selector_hash import compute_selector, selector_hex
from selector_score import Score, ScoreModel, SelectorCollision, meets_threshold, score
from selector_signature import FunctionSignature, InvalidIdentifier, SignatureBuilder

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 10
DEFAULT_CHUNK_SIZE = 4096
POOLS = ("process", "thread")
CANCEL_POLL_SECONDS = 0.02

__all__ = [
    "DEFAULT_TOP_K",
    "POOLS",
    "SearchBudget",
    "Candidate",
    "SearchResult",
    "merge_top",
    "search",
]


@dataclass(frozen=True)
class SearchBudget:
    """
    Bounds of one search run.

    `start` is the enumeration cursor to begin from; `max_candidates`
    counts from there.
    """

    max_len: int = 4
    min_len: int = 1
    alphabet: str = DEFAULT_ALPHABET
    max_candidates: Optional[int] = None
    early_stop: Optional[float] = None
    start: int = 0

    def __post_init__(self) -> None:
        check_alphabet(self.alphabet)
        if self.max_candidates is not None and self.max_candidates < 0:
            raise ValueError("max_candidates must be >= 0")
        if self.start < 0:
            raise ValueError("start cursor must be >= 0")

    @property
    def space(self) -> int:
        return count_tokens(self.alphabet, self.min_len, self.max_len)


@dataclass(frozen=True)
class Candidate:
    signature: FunctionSignature
    selector: bytes
    score: Score
    index: int

    @property
    def token(self) -> str:
        return self.signature.variant

    @property
    def selector_hex(self) -> str:
        return selector_hex(self.selector)

    @property
    def rank_key(self) -> Tuple[Any, ...]:
        # Ties go to the shorter token, then the one earlier in alphabet order.
        return (self.score.key, -len(self.token), -self.index)

    def to_row(self) -> Dict[str, Any]:
        return {
            "variantToken": self.token,
            "fullSignature": self.signature.canonical,
            "selectorHex": self.selector_hex,
            "score": self.score.value,
        }


@dataclass(frozen=True)
class SearchResult:
    candidates: Tuple[Candidate, ...]
    candidates_evaluated: int
    skipped: int = 0
    budget_exhausted: bool = False
    early_stop_triggered: bool = False
    cancelled: bool = False
    next_cursor: int = 0
    model: str = ""

    @property
    def partial(self) -> bool:
        return self.cancelled

    @property
    def best(self) -> Optional[Candidate]:
        return self.candidates[0] if self.candidates else None

    def to_rows(self) -> List[Dict[str, Any]]:
        return [c.to_row() for c in self.candidates]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "results": self.to_rows(),
            "candidatesEvaluated": self.candidates_evaluated,
            "skipped": self.skipped,
            "budgetExhausted": self.budget_exhausted,
            "earlyStopTriggered": self.early_stop_triggered,
            "cancelled": self.cancelled,
            "nextCursor": self.next_cursor,
        }


def merge_top(candidates: Iterable[Candidate], k: int) -> List[Candidate]:
    """Best k candidates, best first."""
    return heapq.nlargest(k, candidates, key=lambda c: c.rank_key)


# --- chunk scoring ---------------------------------------------------------


class _Wave:
    """Shared state for the chunks of one wave: the earliest chunk with a hit."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.first_hit: Optional[int] = None

    def report_hit(self, order: int) -> None:
        with self._lock:
            if self.first_hit is None or order < self.first_hit:
                self.first_hit = order

    def superseded(self, order: int) -> bool:
        first = self.first_hit
        return first is not None and first < order


class _SharedWave:
    """_Wave for pool processes, backed by a shared integer (-1 = no hit yet)."""

    def __init__(self, first_hit: Any) -> None:
        self._first_hit = first_hit

    def report_hit(self, order: int) -> None:
        with self._first_hit.get_lock():
            current = self._first_hit.value
            if current < 0 or order < current:
                self._first_hit.value = order

    def superseded(self, order: int) -> bool:
        first = self._first_hit.value
        return 0 <= first < order


@dataclass
class _ChunkResult:
    top: List[Candidate] = field(default_factory=list)
    evaluated: int = 0
    skipped: int = 0
    hit: bool = False
    cancelled: bool = False
    end: int = 0


def _score_chunk(
    base: FunctionSignature,
    model: ScoreModel,
    budget: SearchBudget,
    builder: SignatureBuilder,
    lo: int,
    hi: int,
    top_k: int,
    cancel: Any,
    wave: Any,
    order: int,
) -> _ChunkResult:
    out = _ChunkResult(end=lo)
    heap: List[Tuple[Tuple[Any, ...], Candidate]] = []
    tokens = itertools.islice(produce(budget.alphabet, budget.min_len, budget.max_len, lo), hi - lo)
    for index, token in enumerate(tokens, start=lo):
        if cancel is not None and cancel.is_set():
            out.cancelled = True
            break
        if wave.superseded(order):
            break
        out.evaluated += 1
        out.end = index + 1
        try:
            sig = builder.build(base.name, base.param_types, token)
            selector = compute_selector(sig.canonical)
            result = score(selector, model)
        except (InvalidIdentifier, SelectorCollision) as e:
            out.skipped += 1
            logger.debug("skipping token %r: %s", token, e)
            continue
        cand = Candidate(sig, selector, result, index)
        entry = (cand.rank_key, cand)
        if len(heap) < top_k:
            heapq.heappush(heap, entry)
        elif entry[0] > heap[0][0]:
            heapq.heapreplace(heap, entry)
        if meets_threshold(result, model, budget.early_stop):
            out.hit = True
            wave.report_hit(order)
            break
    out.top = [c for _, c in heap]
    return out


# --- process pool workers --------------------------------------------------

_worker_cancel: Any = None
_worker_hit: Any = None


def _init_worker(cancel: Any, first_hit: Any) -> None:
    global _worker_cancel, _worker_hit
    # Ctrl-C reaches the whole process group; the parent turns it into `cancel`.
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    _worker_cancel = cancel
    _worker_hit = first_hit


def _score_chunk_in_worker(
    base: FunctionSignature,
    model: ScoreModel,
    budget: SearchBudget,
    builder: SignatureBuilder,
    lo: int,
    hi: int,
    top_k: int,
    order: int,
) -> _ChunkResult:
    return _score_chunk(base, model, budget, builder, lo, hi, top_k, _worker_cancel, _SharedWave(_worker_hit), order)


def _gather(futures: List[Future], cancel: Any, stop: Any) -> List[_ChunkResult]:
    """Wait for a wave, forwarding the caller's cancel to the pool's shared event."""
    pending = set(futures)
    while pending:
        _, pending = wait(pending, timeout=CANCEL_POLL_SECONDS, return_when=FIRST_COMPLETED)
        if cancel is not None and stop is not cancel and cancel.is_set():
            stop.set()
    return [f.result() for f in futures]


# --- search ----------------------------------------------------------------


def search(
    base: FunctionSignature,
    model: ScoreModel,
    budget: SearchBudget,
    *,
    top_k: int = DEFAULT_TOP_K,
    workers: int = 1,
    pool: str = "process",
    cancel: Any = None,
    builder: Optional[SignatureBuilder] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    progress: Optional[Callable[[int], None]] = None,
) -> SearchResult:
    """
    Score variants of `base` and return the best `top_k`.

    `cancel` is a threading.Event or multiprocessing.Event checked between
    candidates. With a process pool, a multiprocessing.Event reaches the
    workers directly; a threading.Event is forwarded to them while a wave
    is running.

    Raises InvalidIdentifier / InvalidParamType when the base signature
    itself is invalid. Exhausting the budget, stopping early and being
    cancelled are all reported on the result.
    """
    if top_k < 1:
        raise ValueError("top_k must be >= 1")
    if workers < 1:
        raise ValueError("workers must be >= 1")
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    if pool not in POOLS:
        raise ValueError(f"pool must be one of {POOLS}, got {pool!r}")
    builder = builder or SignatureBuilder()
    builder.build(base.name, base.param_types)

    total = budget.space
    if budget.start > total:
        raise ValueError(f"start cursor {budget.start} outside token space of size {total}")
    end = total
    if budget.max_candidates is not None:
        end = min(total, budget.start + budget.max_candidates)

    logger.debug(
        "searching %s over %d tokens [%d, %d) with %d %s worker(s), model=%s",
        base.canonical, end - budget.start, budget.start, end, workers, pool, model.describe(),
    )

    top: List[Candidate] = []
    evaluated = 0
    skipped = 0
    cursor = budget.start
    early = False
    cancelled = False

    executor: Any = None
    stop: Any = None
    first_hit: Any = None
    if workers > 1 and pool == "process":
        ctx = multiprocessing.get_context()
        if isinstance(cancel, multiprocessing.synchronize.Event):
            stop = cancel
        else:
            stop = ctx.Event()
        first_hit = ctx.Value("q", -1)
        executor = ProcessPoolExecutor(
            max_workers=workers,
            mp_context=ctx,
            initializer=_init_worker,
            initargs=(stop, first_hit),
        )
    elif workers > 1:
        executor = ThreadPoolExecutor(max_workers=workers)

    try:
        while cursor < end and not (early or cancelled):
            if cancel is not None and cancel.is_set():
                cancelled = True
                break
            bounds: List[Tuple[int, int]] = []
            lo = cursor
            while lo < end and len(bounds) < workers:
                hi = min(end, lo + chunk_size)
                bounds.append((lo, hi))
                lo = hi

            args = (base, model, budget, builder)
            if executor is None:
                wave = _Wave()
                results = [_score_chunk(*args, lo, hi, top_k, cancel, wave, j) for j, (lo, hi) in enumerate(bounds)]
            elif first_hit is not None:
                first_hit.value = -1
                futures = [
                    executor.submit(_score_chunk_in_worker, *args, lo, hi, top_k, j)
                    for j, (lo, hi) in enumerate(bounds)
                ]
                results = _gather(futures, cancel, stop)
            else:
                wave = _Wave()
                futures = [
                    executor.submit(_score_chunk, *args, lo, hi, top_k, cancel, wave, j)
                    for j, (lo, hi) in enumerate(bounds)
                ]
                results = [f.result() for f in futures]

            for (lo, hi), res in zip(bounds, results):
                evaluated += res.evaluated
                skipped += res.skipped
                top = merge_top(itertools.chain(top, res.top), top_k)
                cursor = res.end
                if res.hit:
                    early = True
                    break
                if res.end < hi:
                    # Chunks past a gap are dropped: the result covers exactly [start, cursor).
                    cancelled = True
                    break

            if progress is not None:
                progress(evaluated)
    finally:
        if executor is not None:
            executor.shutdown(wait=True)

    exhausted = not early and not cancelled
    if skipped:
        logger.info("skipped %d invalid or colliding candidate(s)", skipped)
    return SearchResult(
        candidates=tuple(top),
        candidates_evaluated=evaluated,
        skipped=skipped,
        budget_exhausted=exhausted,
        early_stop_triggered=early,
        cancelled=cancelled,
        next_cursor=cursor,
        model=model.describe(),
    )
