"""Combined value/error results of asynchronous invocations."""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Optional

_POLL_INTERVAL = 0.05
_END = object()


@dataclass(frozen=True)
class InvokeResult:
    """One outcome of an invocation: either a value or an error."""

    value: Any = None
    error: Optional[BaseException] = None


def merge_results(
    done: Optional[threading.Event],
    values: Iterable[Any],
    errors: Iterable[BaseException],
) -> Iterator[InvokeResult]:
    """Merge a stream of values and a stream of errors into one stream of results.

    Both sources are consumed in background threads as soon as this is called.
    The returned iterator ends when both sources are exhausted or when ``done``
    is set, whichever comes first.
    """
    out: queue.Queue = queue.Queue()

    def pump(source: Iterable[Any], as_error: bool) -> None:
        try:
            for item in source:
                if done is not None and done.is_set():
                    break
                out.put(InvokeResult(error=item) if as_error else InvokeResult(value=item))
        finally:
            out.put(_END)

    for source, as_error in ((values, False), (errors, True)):
        threading.Thread(target=pump, args=(source, as_error), daemon=True).start()

    return _drain(done, out)


def _drain(done: Optional[threading.Event], out: queue.Queue) -> Iterator[InvokeResult]:
    open_sources = 2
    while open_sources:
        if done is not None and done.is_set():
            return
        try:
            item = out.get(timeout=_POLL_INTERVAL if done is not None else None)
        except queue.Empty:
            continue
        if item is _END:
            open_sources -= 1
            continue
        if done is not None and done.is_set():
            return
        yield item