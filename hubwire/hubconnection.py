"""Sending and receiving hub messages over a transport connection."""

from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import CancelledError
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

from .connection import Connection, read_write_with_context
from .ctxpipe import make_pipe
from .messages import (
    CloseMessage,
    CompletionMessage,
    HubMessage,
    HubProtocol,
    InvocationMessage,
    StreamItemMessage,
)

_log = logging.getLogger(__name__)

_POLL_INTERVAL = 0.05
_QUEUE_SIZE = 20
_END = object()


class _ChildEvent(threading.Event):
    """An event that also counts as set once its parent event is set."""

    def __init__(self, parent: threading.Event) -> None:
        super().__init__()
        self._parent = parent

    def is_set(self) -> bool:
        return super().is_set() or self._parent.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self.is_set():
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            super().wait(_POLL_INTERVAL if remaining is None else min(_POLL_INTERVAL, remaining))
        return True


@dataclass(frozen=True)
class _Received:
    """A parsed message or the error that occurred while receiving."""

    message: Optional[HubMessage] = None
    error: Optional[BaseException] = None


class HubConnection:
    """Exchanges hub messages with the other party over a Connection."""

    def __init__(
        self,
        connection: Connection,
        protocol: HubProtocol,
        maximum_receive_message_size: int,
    ) -> None:
        self._connection = connection
        self._protocol = protocol
        self._maximum_receive_message_size = maximum_receive_message_size
        self._done = _ChildEvent(connection.done)
        self._lock = threading.Lock()
        self._last_write_stamp = 0.0
        self.items: Dict[Any, Any] = {}
        if hasattr(connection, "transfer_mode"):
            connection.transfer_mode = protocol.transfer_mode()

    @property
    def connection_id(self) -> str:
        return self._connection.connection_id

    @property
    def done(self) -> threading.Event:
        """Set when this hub connection or its transport is canceled."""
        return self._done

    def abort(self) -> None:
        self._done.set()

    def last_write_stamp(self) -> float:
        """Monotonic time of the last attempted write, 0.0 before any."""
        with self._lock:
            return self._last_write_stamp

    def _put(self, out: queue.Queue, item: Any) -> bool:
        while not self._done.is_set():
            try:
                out.put(item, timeout=_POLL_INTERVAL)
                return True
            except queue.Full:
                continue
        return False

    def receive(self) -> Iterator[_Received]:
        """Start receiving; yield parsed messages and receive errors.

        The iterator ends when the connection is aborted or the transport ends.
        """
        out: queue.Queue = queue.Queue(maxsize=_QUEUE_SIZE)
        writer_done = threading.Event()
        reader, writer = make_pipe(self._done)

        def read_connection() -> None:
            try:
                while not self._done.is_set():
                    try:
                        data = self._connection.read(self._maximum_receive_message_size)
                    except Exception as exc:  # noqa: BLE001
                        self._put(out, _Received(error=exc))
                        break
                    if not data:
                        self._put(out, _Received(error=EOFError("connection closed")))
                        break
                    try:
                        writer.write(data)
                    except Exception as exc:  # noqa: BLE001
                        self._put(out, _Received(error=exc))
                        break
            finally:
                writer_done.set()
                writer.close()

        def parse() -> None:
            remain = bytearray()
            try:
                while not self._done.is_set():
                    try:
                        messages = self._protocol.parse_messages(reader, remain)
                    except Exception as exc:  # noqa: BLE001
                        if writer_done.is_set() or self._done.is_set():
                            break
                        if not self._put(out, _Received(error=exc)):
                            break
                        continue
                    for message in messages:
                        if not self._put(out, _Received(message=message)):
                            return
            finally:
                self._put(out, _END)

        threading.Thread(target=read_connection, daemon=True).start()
        threading.Thread(target=parse, daemon=True).start()
        return self._drain(out)

    def _drain(self, out: queue.Queue) -> Iterator[_Received]:
        while not self._done.is_set():
            try:
                item = out.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                continue
            if item is _END:
                return
            yield item

    def send_invocation(self, invocation_id: str, target: str, args: Optional[List[Any]]) -> None:
        self._write_message(
            InvocationMessage(
                type=1, invocation_id=invocation_id, target=target, arguments=list(args or [])
            )
        )

    def send_stream_invocation(
        self, invocation_id: str, target: str, args: Optional[List[Any]]
    ) -> None:
        self._write_message(
            InvocationMessage(
                type=4, invocation_id=invocation_id, target=target, arguments=list(args or [])
            )
        )

    def send_invocation_with_stream_ids(
        self,
        invocation_id: str,
        target: str,
        args: Optional[List[Any]],
        stream_ids: Optional[List[str]],
    ) -> None:
        self._write_message(
            InvocationMessage(
                type=1,
                invocation_id=invocation_id,
                target=target,
                arguments=list(args or []),
                stream_ids=list(stream_ids or []),
            )
        )

    def stream_item(self, invocation_id: str, item: Any) -> None:
        self._write_message(StreamItemMessage(type=2, invocation_id=invocation_id, item=item))

    def completion(self, invocation_id: str, result: Any, error: str) -> None:
        self._write_message(
            CompletionMessage(type=3, invocation_id=invocation_id, result=result, error=error or "")
        )

    def close(self, error: str, allow_reconnect: bool) -> None:
        """Send a close message, even when the hub connection is already canceled."""
        self._protocol.write_message(
            CloseMessage(type=7, error=error or "", allow_reconnect=allow_reconnect),
            self._connection,
        )

    def ping(self) -> None:
        self._write_message(HubMessage(type=6))

    def _write_message(self, message: HubMessage) -> None:
        with self._lock:
            self._last_write_stamp = time.monotonic()
        try:
            if self._done.is_set():
                raise ConnectionAbortedError("hubConnection canceled")
            try:
                read_write_with_context(
                    self._done,
                    lambda: self._protocol.write_message(message, self._connection),
                )
            except CancelledError:
                raise ConnectionAbortedError("hubConnection canceled") from None
            except Exception:
                self.abort()
                raise
        except Exception as exc:
            _log.info("message send failed: message=%r error=%s", message, exc)
            raise