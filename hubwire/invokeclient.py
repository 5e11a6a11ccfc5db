"""Bookkeeping of pending invocations and delivery of their completions."""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Any, Dict, Iterator, Optional, Tuple

from .messages import CompletionMessage, HubProtocol


class HubChanTimeoutError(Exception):
    """The receiver of a result did not take it within the receive timeout."""


class _Channel:
    """A closeable, bounded hand-over queue; iterating ends once it is closed and empty."""

    def __init__(self, capacity: int = 1) -> None:
        self._cond = threading.Condition()
        self._items: deque = deque()
        self._capacity = capacity
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def put(self, item: Any, timeout: Optional[float] = None) -> None:
        """Add ``item``, waiting for room; raise TimeoutError if none appears in time."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while not self._closed and len(self._items) >= self._capacity:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise TimeoutError("channel receiver did not take the item in time")
                self._cond.wait(remaining)
            if self._closed:
                raise RuntimeError("send on closed channel")
            self._items.append(item)
            self._cond.notify_all()

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def _take(self) -> Tuple[bool, Any]:
        with self._cond:
            while not self._items and not self._closed:
                self._cond.wait()
            if self._items:
                item = self._items.popleft()
                self._cond.notify_all()
                return True, item
            return False, None

    def __iter__(self) -> Iterator[Any]:
        while True:
            ok, item = self._take()
            if not ok:
                return
            yield item


class InvokeClient:
    """Tracks invocations sent to the other party until their completion arrives."""

    def __init__(self, protocol: HubProtocol, chan_receive_timeout: float) -> None:
        self._lock = threading.Lock()
        self._invocations: Dict[str, Tuple[_Channel, _Channel]] = {}
        self._protocol = protocol
        self._timeout = chan_receive_timeout

    def new_invocation(self, invocation_id: str) -> Tuple[_Channel, _Channel]:
        """Register an invocation and return its value and error channels."""
        channels = (_Channel(), _Channel())
        with self._lock:
            self._invocations[invocation_id] = channels
        return channels

    def delete_invocation(self, invocation_id: str) -> None:
        """Forget an invocation and close its channels."""
        with self._lock:
            channels = self._invocations.pop(invocation_id, None)
        if channels is not None:
            for channel in channels:
                channel.close()

    def cancel_all_invokes(self) -> None:
        """End every pending invocation with a "message loop ended" error."""
        with self._lock:
            pending = list(self._invocations.values())
            self._invocations = {}
        for values, errors in pending:
            values.close()
            threading.Thread(target=self._fail, args=(errors,), daemon=True).start()

    @staticmethod
    def _fail(errors: _Channel) -> None:
        try:
            errors.put(ConnectionError("message loop ended"))
        finally:
            errors.close()

    def handles_invocation_id(self, invocation_id: str) -> bool:
        with self._lock:
            return invocation_id in self._invocations

    def receive_completion_item(self, completion: CompletionMessage) -> None:
        """Deliver a completion's error or result to its invocation, then forget it.

        Raises LookupError for an unknown invocation and HubChanTimeoutError when
        the receiver does not take the outcome within the receive timeout.
        """
        try:
            with self._lock:
                channels = self._invocations.get(completion.invocation_id)
            if channels is None:
                raise LookupError(f'unknown completion id "{completion.invocation_id}"')
            values, errors = channels
            if completion.error:
                try:
                    errors.put(RuntimeError(completion.error), timeout=self._timeout)
                except TimeoutError:
                    raise HubChanTimeoutError(
                        f"timeout ({self._timeout}s) waiting for hub to receive client sent error"
                    ) from None
                return
            if completion.result is not None:
                result = self._protocol.unmarshal_argument(completion.result)
                deadline = time.monotonic() + self._timeout
                try:
                    values.put(result, timeout=self._timeout)
                    errors.put(None, timeout=max(0.0, deadline - time.monotonic()))
                except TimeoutError:
                    raise HubChanTimeoutError(
                        f"timeout ({self._timeout}s) waiting for hub to receive client sent value"
                    ) from None
        finally:
            self.delete_invocation(completion.invocation_id)