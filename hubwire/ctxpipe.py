"""A synchronous, cancelable in-memory pipe."""

from __future__ import annotations

import threading
from typing import Optional, Tuple

_POLL_INTERVAL = 0.05
_EOF = object()


class ClosedPipeError(Exception):
    """Raised for read or write operations on a closed pipe."""

    def __init__(self, message: str = "io: read/write on closed pipe") -> None:
        super().__init__(message)


class _Pipe:
    def __init__(self, done: Optional[threading.Event]) -> None:
        self._done = done
        self._cond = threading.Condition()
        self._write_lock = threading.Lock()
        self._pending: Optional[memoryview] = None
        self._closed = False
        self._read_error: Optional[BaseException] = None
        self._write_error: object = None

    def _cancelled(self) -> bool:
        return self._closed or (self._done is not None and self._done.is_set())

    def _wait(self) -> None:
        self._cond.wait(_POLL_INTERVAL if self._done is not None else None)

    def _read_close_result(self) -> bytes:
        if self._read_error is None and self._write_error is not None:
            if self._write_error is _EOF:
                return b""
            raise self._write_error  # type: ignore[misc]
        raise ClosedPipeError()

    def _write_close_error(self) -> BaseException:
        if self._write_error is None and self._read_error is not None:
            return self._read_error
        return ClosedPipeError()

    def read(self, size: int) -> bytes:
        with self._cond:
            while True:
                if self._cancelled():
                    return self._read_close_result()
                if self._pending is not None:
                    break
                self._wait()
            if size == 0:
                return b""
            pending = self._pending
            count = len(pending) if size < 0 else min(size, len(pending))
            chunk = bytes(pending[:count])
            rest = pending[count:]
            self._pending = rest if len(rest) else None
            self._cond.notify_all()
            return chunk

    def write(self, data: bytes) -> int:
        view = memoryview(bytes(data))
        with self._cond:
            if self._cancelled():
                raise self._write_close_error()
        if not len(view):
            return 0
        with self._write_lock, self._cond:
            if self._cancelled():
                raise self._write_close_error()
            self._pending = view
            self._cond.notify_all()
            while self._pending is not None:
                if self._cancelled():
                    self._pending = None
                    raise self._write_close_error()
                self._wait()
            return len(view)

    def close_read(self, error: Optional[BaseException]) -> None:
        with self._cond:
            if self._read_error is None:
                self._read_error = error if error is not None else ClosedPipeError()
            self._closed = True
            self._cond.notify_all()

    def close_write(self, error: Optional[BaseException]) -> None:
        with self._cond:
            if self._write_error is None:
                self._write_error = error if error is not None else _EOF
            self._closed = True
            self._cond.notify_all()


class PipeReader:
    """The read half of a pipe."""

    def __init__(self, pipe: _Pipe) -> None:
        self._pipe = pipe

    def read(self, size: int = -1) -> bytes:
        """Block until a writer offers data; return up to ``size`` bytes.

        Returns ``b""`` once the writer is closed without error, raises the
        writer's error if it closed with one, otherwise ClosedPipeError.
        """
        return self._pipe.read(size)

    def close(self) -> None:
        self.close_with_error(None)

    def close_with_error(self, error: Optional[BaseException]) -> None:
        """Close the reader; later writes raise ``error`` (ClosedPipeError if None).

        The first error stored is never overwritten.
        """
        self._pipe.close_read(error)

    def __enter__(self) -> "PipeReader":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class PipeWriter:
    """The write half of a pipe."""

    def __init__(self, pipe: _Pipe) -> None:
        self._pipe = pipe

    def write(self, data: bytes) -> int:
        """Block until readers have consumed all of ``data``; return its length."""
        return self._pipe.write(data)

    def close(self) -> None:
        self.close_with_error(None)

    def close_with_error(self, error: Optional[BaseException]) -> None:
        """Close the writer; later reads raise ``error``, or see end of stream if None.

        The first error stored is never overwritten.
        """
        self._pipe.close_write(error)

    def __enter__(self) -> "PipeWriter":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def make_pipe(done: Optional[threading.Event] = None) -> Tuple[PipeReader, PipeWriter]:
    """Create a synchronous pipe whose reads and writes end when ``done`` is set.

    Each write blocks until one or more reads have consumed all its data;
    there is no internal buffering.
    """
    pipe = _Pipe(done)
    return PipeReader(pipe), PipeWriter(pipe)