import threading
from concurrent.futures import CancelledError

import pytest

from hubwire.connection import (
    Connection,
    ConnectionBase,
    TransferMode,
    read_write_with_context,
)


class _MemoryConnection(ConnectionBase, Connection):
    def __init__(self, connection_id="", done=None):
        super().__init__(connection_id, done)
        self.written = bytearray()

    def read(self, size=-1):
        return bytes(self.written[:size] if size >= 0 else self.written)

    def write(self, data):
        self.written.extend(data)
        return len(data)


def test_connection_base_holds_id_and_allows_change():
    base = ConnectionBase("abc")
    assert base.connection_id == "abc"
    base.connection_id = "xyz"
    assert base.connection_id == "xyz"


def test_connection_base_creates_unset_done_event():
    base = ConnectionBase()
    assert base.connection_id == ""
    assert base.done.is_set() is False


def test_connection_base_uses_given_done_event():
    done = threading.Event()
    base = ConnectionBase("id", done)
    done.set()
    assert base.done.is_set() is True


def test_concrete_connection_round_trip():
    conn = _MemoryConnection("c1")
    written = read_write_with_context(conn.done, lambda: conn.write(b"payload"), lambda: None)
    assert written == 7
    assert read_write_with_context(conn.done, conn.read, lambda: None) == b"payload"
    assert conn.connection_id == "c1"
    assert conn.transfer_mode is None
    conn.transfer_mode = TransferMode.BINARY
    assert conn.transfer_mode is TransferMode.BINARY


def test_abstract_connection_cannot_be_created():
    with pytest.raises(TypeError):
        Connection()


def test_read_write_returns_result():
    assert read_write_with_context(threading.Event(), lambda: 42, lambda: None) == 42


def test_read_write_reraises_error():
    def fail():
        raise OSError("broken")

    with pytest.raises(OSError, match="broken"):
        read_write_with_context(threading.Event(), fail, lambda: None)


def test_read_write_not_started_when_already_done():
    done = threading.Event()
    done.set()
    calls = []
    with pytest.raises(CancelledError):
        read_write_with_context(done, lambda: calls.append(1), lambda: None)
    assert calls == []


def test_read_write_canceled_while_blocking_calls_unblock():
    done = threading.Event()
    release = threading.Event()
    unblocked = []

    def do_rw():
        release.wait(5)
        return 1

    def unblock():
        unblocked.append(True)
        release.set()

    timer = threading.Timer(0.05, done.set)
    timer.start()
    with pytest.raises(CancelledError):
        read_write_with_context(done, do_rw, unblock)
    timer.join()
    assert unblocked == [True]