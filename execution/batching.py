"""
Batch Primitives
================
The three request shapes every gateway endpoint is built from.

- fan_out: run the same operation over many independent items with a
  bounded thread pool, one BatchOutcome per item, failures captured per item
- fetch_chunked: split an oversized symbol list into provider-sized chunks,
  fetch the chunks through fan_out, merge the per-chunk maps by symbol
- fetch_paged: follow a continuation cursor for one key until the provider
  says there is nothing left (or FIRST mode short-circuits)

Sub-requests never share mutable state: each worker returns its own
result and merging happens only after every future has settled.

Usage:
    outcomes = fan_out(order_requests, submit, key=lambda r: r.symbol)
    summary = summarize_outcomes(outcomes)

    bars = fetch_chunked(symbols, 200, lambda chunk: client.bars(chunk))
    quotes = fetch_paged("AAPL", PageMode.ALL, lambda cursor: get_page(cursor))
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, TypeVar, Union

from config import GATEWAY_MAX_WORKERS, MAX_QUOTE_PAGES
from core.types import (
    BatchOutcome, BatchSummary, ChunkFailure, ChunkedResult,
    ErrorInfo, Page, PagedResult, PageMode,
)
from observability.logger import TaggedLogger, get_tagged_logger
from utils.errors import ProtocolError, as_remote_error, is_retryable

IN = TypeVar('IN')
OUT = TypeVar('OUT')

_default_log = None


def _log(logger: Optional[TaggedLogger]) -> TaggedLogger:
    global _default_log
    if logger is not None:
        return logger
    if _default_log is None:
        _default_log = get_tagged_logger("batching")
    return _default_log


# =============================================================================
# FAN-OUT / AGGREGATE
# =============================================================================

def fan_out(
    items: Iterable[IN],
    op: Callable[[IN], OUT],
    key: Callable[[IN], str] = str,
    max_workers: Optional[int] = None,
    logger: Optional[TaggedLogger] = None,
    operation: str = "FAN OUT",
) -> List[BatchOutcome]:
    """
    Run `op` for every item concurrently and report each outcome.

    Never raises for a failing item and never stops the remaining items.
    Outcomes come back in input order, but callers should correlate by
    `key`.

    Args:
        items: Independent units of work
        op: Callable applied to one item
        key: Derives the outcome key from an item (default str)
        max_workers: Concurrency ceiling (default GATEWAY_MAX_WORKERS)
        logger: Diagnostic sink
        operation: Tag used for failure log lines

    Returns:
        Exactly one BatchOutcome per input item
    """
    log = _log(logger)
    items = list(items)
    if not items:
        return []

    keys: List[Optional[str]] = []
    for item in items:
        try:
            keys.append(str(key(item)))
        except Exception as e:
            log.error(operation, f"Could not derive key for item {len(keys)}:", e)
            keys.append(None)

    resolved = [k for k in keys if k is not None]
    if len(set(resolved)) != len(resolved):
        duplicates = sorted({k for k in resolved if resolved.count(k) > 1})
        log.warning(operation, "Duplicate keys in batch, outcomes will repeat them:", duplicates)

    def run_one(index: int) -> BatchOutcome:
        item_key = keys[index]
        if item_key is None:
            item_key = f"item {index}"
            error = ProtocolError(f"Could not derive key for {item_key}", operation=operation.lower())
            return BatchOutcome(key=item_key, success=False, error=ErrorInfo.from_exception(error))
        try:
            return BatchOutcome(key=item_key, success=True, value=op(items[index]))
        except Exception as e:
            error = as_remote_error(e, operation.lower(), item_key)
            transient = " (transient)" if is_retryable(error) else ""
            log.warning(operation, f"Problem with {item_key}{transient}:", error)
            return BatchOutcome(key=item_key, success=False, error=ErrorInfo.from_exception(error))

    ceiling = max_workers or GATEWAY_MAX_WORKERS
    workers = max(1, min(ceiling, len(items)))
    outcomes: List[Optional[BatchOutcome]] = [None] * len(items)

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fan-out") as executor:
        futures = {executor.submit(run_one, i): i for i in range(len(items))}
        for future in as_completed(futures):
            outcomes[futures[future]] = future.result()

    return outcomes


def summarize_outcomes(outcomes: Sequence[BatchOutcome]) -> BatchSummary:
    """Split outcome keys into successful and failing. Pure; re-issues nothing."""
    summary = BatchSummary()
    for outcome in outcomes:
        if outcome.success:
            summary.successful.append(outcome.key)
        else:
            summary.failing.append(outcome.key)
    return summary


# =============================================================================
# CHUNKING
# =============================================================================

def chunk_symbols(symbols: Iterable[str], max_chunk: int) -> List[List[str]]:
    """
    Partition symbols into consecutive chunks of at most max_chunk.

    Duplicate symbols are dropped (first occurrence kept) so that chunks
    are disjoint.
    """
    if max_chunk < 1:
        raise ValueError(f"max_chunk must be >= 1, got {max_chunk}")

    unique = list(dict.fromkeys(symbols))
    return [unique[i:i + max_chunk] for i in range(0, len(unique), max_chunk)]


def fetch_chunked(
    symbols: Iterable[str],
    max_chunk: int,
    fetch_one: Callable[[List[str]], Mapping[str, OUT]],
    max_workers: Optional[int] = None,
    logger: Optional[TaggedLogger] = None,
    operation: str = "FETCH CHUNKED",
) -> ChunkedResult:
    """
    Fetch per-symbol data for an oversized symbol list.

    One request per chunk, issued concurrently. A failed chunk leaves its
    symbols out of `data` and is listed in `failures`; the other chunks
    still land. A symbol returned by two chunks is a caller defect: it is
    logged, listed in `collisions`, and the later chunk's value kept.
    """
    log = _log(logger)
    symbols = list(symbols)
    chunks = chunk_symbols(symbols, max_chunk)
    unique_count = sum(len(c) for c in chunks)
    if unique_count < len(symbols):
        log.warning(operation, f"Dropped {len(symbols) - unique_count} duplicate symbols")

    result = ChunkedResult()
    if not chunks:
        return result

    numbered: List[Tuple[int, List[str]]] = list(enumerate(chunks, start=1))
    outcomes = fan_out(
        numbered,
        lambda pair: fetch_one(pair[1]),
        key=lambda pair: f"chunk {pair[0]}/{len(chunks)}",
        max_workers=max_workers,
        logger=log,
        operation=operation,
    )

    for (_, chunk), outcome in zip(numbered, outcomes):
        if not outcome.success:
            result.failures.append(ChunkFailure(symbols=tuple(chunk), error=outcome.error))
            continue

        for symbol, value in dict(outcome.value or {}).items():
            if symbol in result.data:
                result.collisions.append(symbol)
                log.error(operation, f"Symbol {symbol} returned by more than one chunk")
            result.data[symbol] = value

    log.debug(
        operation,
        f"Merged {len(result.data)} symbols from {len(chunks)} chunks",
        f"({len(result.failures)} failed)",
    )
    return result


# =============================================================================
# PAGINATION
# =============================================================================

def _as_page(raw: Union[Page, Mapping[str, Any], Tuple[List[Any], Optional[str]]]) -> Page:
    if isinstance(raw, Page):
        return raw
    if isinstance(raw, Mapping):
        if 'items' not in raw:
            raise ProtocolError("Page response has no 'items'")
        return Page(items=list(raw['items'] or []), next_cursor=raw.get('next_cursor'))
    if isinstance(raw, tuple) and len(raw) == 2:
        return Page(items=list(raw[0] or []), next_cursor=raw[1])
    raise ProtocolError(f"Unexpected page type {type(raw).__name__}")


def fetch_paged(
    key: str,
    mode: Union[PageMode, str],
    page_fetch: Callable[[Optional[str]], Any],
    max_pages: int = MAX_QUOTE_PAGES,
    logger: Optional[TaggedLogger] = None,
    operation: str = "FETCH PAGED",
) -> PagedResult:
    """
    Read a paged endpoint for one key.

    States: start (cursor None) -> fetching -> fetching while a cursor comes
    back -> done once it is None or empty.

    FIRST issues exactly one fetch and keeps only its first item. ALL keeps
    every item in page order. LAST keeps only the final page. A failing page
    or a cursor that outlives max_pages stops the walk; items gathered so far
    are kept and the reason is put in `error`.
    """
    log = _log(logger)
    mode = PageMode(mode)
    result = PagedResult(key=key)

    if mode == PageMode.FIRST:
        try:
            page = _as_page(page_fetch(None))
        except Exception as e:
            error = as_remote_error(e, operation.lower(), key)
            log.error(operation, f"Problem fetching first page for {key}:", error)
            result.error = ErrorInfo.from_exception(error)
            return result
        result.pages = 1
        result.items = list(page.items[:1])
        return result

    cursor: Optional[str] = None
    while True:
        if result.pages >= max_pages:
            error = ProtocolError(
                f"Cursor still open after {max_pages} pages",
                pages=result.pages,
                operation=operation.lower(),
                symbol=key,
            )
            log.error(operation, f"Giving up on {key}:", error)
            result.error = ErrorInfo.from_exception(error)
            break

        try:
            page = _as_page(page_fetch(cursor))
        except Exception as e:
            error = as_remote_error(e, operation.lower(), key)
            log.error(
                operation,
                f"Problem fetching page {result.pages + 1} for {key};",
                f"keeping {len(result.items)} items:",
                error,
            )
            result.error = ErrorInfo.from_exception(error)
            break

        result.pages += 1
        if mode == PageMode.ALL:
            result.items.extend(page.items)
        else:
            result.items = list(page.items)

        cursor = page.next_cursor
        if not cursor:
            break

    return result


def fetch_paged_many(
    keys: Iterable[str],
    mode: Union[PageMode, str],
    page_fetch_for: Callable[[str], Callable[[Optional[str]], Any]],
    max_pages: int = MAX_QUOTE_PAGES,
    max_workers: Optional[int] = None,
    logger: Optional[TaggedLogger] = None,
    operation: str = "FETCH PAGED",
) -> Dict[str, PagedResult]:
    """Run fetch_paged for many keys concurrently; pages within a key stay in order."""
    log = _log(logger)
    outcomes = fan_out(
        keys,
        lambda k: fetch_paged(k, mode, page_fetch_for(k), max_pages, log, operation),
        max_workers=max_workers,
        logger=log,
        operation=operation,
    )

    results: Dict[str, PagedResult] = {}
    for outcome in outcomes:
        if outcome.success:
            results[outcome.key] = outcome.value
        else:
            results[outcome.key] = PagedResult(key=outcome.key, error=outcome.error)
    return results
