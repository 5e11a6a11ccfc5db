"""Transport connections between a hub client and server."""

from __future__ import annotations

import enum
import queue
import threading
from abc import ABC, abstractmethod
from concurrent.futures import CancelledError
from typing import Callable, Optional, TypeVar

_POLL_INTERVAL = 0.05

T = TypeVar("T")


class TransferMode(enum.IntEnum):
    """How messages travel on a transport."""

    TEXT = 1
    BINARY = 2


class Connection(ABC):
    """A byte stream between the two parties of a hub connection.

    Connections that distinguish text and binary frames set ``transfer_mode``.
    """

    transfer_mode: Optional[TransferMode] = None

    @property
    @abstractmethod
    def connection_id(self) -> str:
        """The ID of the connection."""

    @property
    @abstractmethod
    def done(self) -> threading.Event:
        """Set when the connection is canceled."""

    @abstractmethod
    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes."""

    @abstractmethod
    def write(self, data: bytes) -> int:
        """Write ``data`` and return the number of bytes written."""


class ConnectionBase:
    """Shared state for Connection implementations: an ID and a cancel event."""

    def __init__(self, connection_id: str = "", done: Optional[threading.Event] = None) -> None:
        self._lock = threading.RLock()
        self._connection_id = connection_id
        self._done = done if done is not None else threading.Event()

    @property
    def done(self) -> threading.Event:
        return self._done

    @property
    def connection_id(self) -> str:
        with self._lock:
            return self._connection_id

    @connection_id.setter
    def connection_id(self, value: str) -> None:
        with self._lock:
            self._connection_id = value


def read_write_with_context(
    done: Optional[threading.Event],
    do_rw: Callable[[], T],
    unblock_rw: Optional[Callable[[], None]] = None,
) -> T:
    """Run a blocking read or write that can be abandoned by setting ``done``.

    Returns what ``do_rw`` returns, re-raises what it raises, or calls
    ``unblock_rw`` and raises CancelledError when ``done`` is set first.
    If the operation cannot be unblocked, its thread is left running.
    """
    if done is not None and done.is_set():
        raise CancelledError("context canceled")
    results: queue.Queue = queue.Queue(maxsize=1)

    def job() -> None:
        try:
            results.put((True, do_rw()))
        except BaseException as exc:  # noqa: BLE001
            results.put((False, exc))

    threading.Thread(target=job, daemon=True).start()
    while True:
        try:
            ok, value = results.get(timeout=_POLL_INTERVAL if done is not None else None)
        except queue.Empty:
            if done is not None and done.is_set():
                if unblock_rw is not None:
                    unblock_rw()
                raise CancelledError("context canceled") from None
            continue
        if ok:
            return value
        raise value