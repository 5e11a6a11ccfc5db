"""HTTP based connections: negotiation, WebSockets and Server-Sent Events."""

from __future__ import annotations

import base64
import codecs
import enum
import hashlib
import json
import os
import posixpath
import socket
import ssl
import struct
import threading
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from http.cookies import CookieError, SimpleCookie
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .connection import ConnectionBase

_READ_CHUNK = 1 << 15
_MAX_HANDSHAKE = 1 << 16
_WS_GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"

Headers = Union[None, Mapping[str, str], Callable[[], Mapping[str, str]]]


class TransportType(str, enum.Enum):
    """Transports a hub connection can run on."""

    WEB_SOCKETS = "WebSockets"
    SERVER_SENT_EVENTS = "ServerSentEvents"

    def __str__(self) -> str:
        return self.value


_ALL_TRANSPORTS = [TransportType.WEB_SOCKETS, TransportType.SERVER_SENT_EVENTS]


def _coerce_transports(transports: Optional[Iterable[Any]]) -> List[TransportType]:
    result = []
    for transport in transports or ():
        try:
            result.append(TransportType(transport))
        except ValueError:
            raise ValueError(f"unsupported transport {transport}") from None
    return result


def _header_map(headers: Headers) -> Dict[str, str]:
    if headers is None:
        return {}
    if callable(headers):
        return dict(headers())
    return dict(headers)


@dataclass
class NegotiateResponse:
    """The server's answer to a negotiate request."""

    connection_token: str = ""
    connection_id: str = ""
    negotiate_version: int = 0
    available_transports: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: Union[str, bytes, Mapping[str, Any]]) -> "NegotiateResponse":
        """Build a response from its JSON text or decoded mapping."""
        if isinstance(data, (bytes, bytearray)):
            data = data.decode("utf-8")
        if isinstance(data, str):
            data = json.loads(data)
        if not isinstance(data, Mapping):
            raise ValueError(f"negotiate response is not an object: {data!r}")
        transports = data.get("availableTransports") or []
        if not isinstance(transports, list):
            raise ValueError("availableTransports is not a list")
        return cls(
            connection_token=str(data.get("connectionToken") or ""),
            connection_id=str(data.get("connectionId") or ""),
            negotiate_version=int(data.get("negotiateVersion") or 0),
            available_transports=[dict(t) for t in transports if isinstance(t, Mapping)],
        )

    def has_transport(self, transport: Union[str, TransportType]) -> bool:
        name = transport.value if isinstance(transport, TransportType) else str(transport)
        return any(t.get("transport") == name for t in self.available_transports)


def parse_sse_lines(chunk: str) -> List[str]:
    """Return the payloads of the ``data:`` lines in ``chunk``; other lines are ignored."""
    payloads = []
    for line in chunk.split("\n"):
        line = line.strip("\r\t ")
        if not line.startswith("data:"):
            continue
        payload = line.replace("data:", "", 1)
        if payload.startswith(" "):
            payload = payload[1:]
        payloads.append(payload)
    return payloads


def _set_id(query: str, connection_id: str) -> str:
    pairs = [(k, v) for k, v in parse_qsl(query, keep_blank_values=True) if k != "id"]
    pairs.append(("id", connection_id))
    pairs.sort(key=lambda pair: pair[0])
    return urlencode(pairs)


def _cookie_pairs(set_cookie_headers: Iterable[str]) -> List[str]:
    pairs = []
    for header in set_cookie_headers:
        jar: SimpleCookie = SimpleCookie()
        try:
            jar.load(header)
        except CookieError:
            continue
        pairs.extend(f"{name}={morsel.coded_value}" for name, morsel in jar.items())
    return pairs


class ClientSSEConnection(ConnectionBase):
    """Receives over a Server-Sent Events stream and sends with POST requests."""

    def __init__(self, address: str, connection_id: str, body: Any) -> None:
        super().__init__(connection_id, threading.Event())
        parts = urlsplit(address)
        self.request_url = urlunsplit(
            (parts.scheme, parts.netloc, parts.path, _set_id(parts.query, connection_id), "")
        )
        self._body = body
        self._cond = threading.Condition()
        self._buffer = bytearray()
        self._ended = False
        threading.Thread(target=self._pump, daemon=True).start()

    def _feed(self, lines: str) -> None:
        for payload in parse_sse_lines(lines):
            with self._cond:
                self._buffer += payload.encode("utf-8")
                self._cond.notify_all()

    def _pump(self) -> None:
        read = getattr(self._body, "read1", None) or self._body.read
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        try:
            while True:
                try:
                    chunk = read(_READ_CHUNK)
                except (OSError, ValueError):
                    break
                if not chunk:
                    break
                pending += decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
                complete, _, pending = pending.rpartition("\n")
                if complete:
                    self._feed(complete)
            self._feed(pending + decoder.decode(b"", final=True))
        finally:
            try:
                self._body.close()
            except Exception:  # noqa: BLE001
                pass
            with self._cond:
                self._ended = True
                self._cond.notify_all()

    def read(self, size: int = _READ_CHUNK) -> bytes:
        """Return up to ``size`` received bytes; b"" once the stream has ended."""
        with self._cond:
            while not self._buffer and not self._ended:
                self._cond.wait()
            n = len(self._buffer) if size is None or size < 0 else size
            data = bytes(self._buffer[:n])
            del self._buffer[:n]
            return data

    def write(self, data: bytes) -> int:
        """POST ``data`` to the server; raise ConnectionError unless it answers 200."""
        request = urllib.request.Request(self.request_url, data=bytes(data), method="POST")
        try:
            with urllib.request.urlopen(request) as response:
                status, reason = response.status, response.reason
                response.read()
        except urllib.error.HTTPError as exc:
            exc.close()
            raise ConnectionError(f"POST {self.request_url} -> {exc.code} {exc.reason}") from None
        if status != 200:
            raise ConnectionError(f"POST {self.request_url} -> {status} {reason}")
        return len(data)

    def close(self) -> None:
        """Stop receiving from the event stream."""
        try:
            self._body.close()
        except Exception:  # noqa: BLE001
            pass


def _apply_mask(payload: bytes, mask: bytes) -> bytes:
    if not payload:
        return payload
    repeated = (mask * (len(payload) // 4 + 1))[: len(payload)]
    value = int.from_bytes(payload, "big") ^ int.from_bytes(repeated, "big")
    return value.to_bytes(len(payload), "big")


class _WebSocketConnection(ConnectionBase):
    """A client WebSocket whose messages are read and written as a byte stream."""

    def __init__(self, sock: socket.socket, connection_id: str, leftover: bytes = b"") -> None:
        super().__init__(connection_id, threading.Event())
        self.transfer_mode: Any = None
        self._sock = sock
        self._inbox = bytearray(leftover)
        self._message = bytearray()
        self._send_lock = threading.Lock()
        self._read_lock = threading.Lock()
        self._closed = False

    @classmethod
    def dial(
        cls, url: str, connection_id: str, headers: Mapping[str, str], timeout: Optional[float]
    ) -> "_WebSocketConnection":
        parts = urlsplit(url)
        secure = parts.scheme == "wss"
        host = parts.hostname or "localhost"
        port = parts.port or (443 if secure else 80)
        sock = socket.create_connection((host, port), timeout=timeout)
        try:
            if secure:
                sock = ssl.create_default_context().wrap_socket(sock, server_hostname=host)
            key = base64.b64encode(os.urandom(16)).decode("ascii")
            target = parts.path or "/"
            if parts.query:
                target += "?" + parts.query
            lines = [
                f"GET {target} HTTP/1.1",
                f"Host: {parts.netloc}",
                "Upgrade: websocket",
                "Connection: Upgrade",
                f"Sec-WebSocket-Key: {key}",
                "Sec-WebSocket-Version: 13",
            ]
            lines += [f"{name}: {value}" for name, value in headers.items()]
            sock.sendall(("\r\n".join(lines) + "\r\n\r\n").encode("latin-1"))
            response = bytearray()
            while b"\r\n\r\n" not in response:
                chunk = sock.recv(4096)
                if not chunk:
                    raise ConnectionError("websocket handshake: connection closed")
                response += chunk
                if len(response) > _MAX_HANDSHAKE:
                    raise ConnectionError("websocket handshake: response too large")
            head, _, leftover = bytes(response).partition(b"\r\n\r\n")
            status_line, *header_lines = head.decode("latin-1").split("\r\n")
            fields = status_line.split(" ", 2)
            if len(fields) < 2 or fields[1] != "101":
                raise ConnectionError(f"websocket handshake failed: {status_line}")
            received = {}
            for line in header_lines:
                name, _, value = line.partition(":")
                received[name.strip().lower()] = value.strip()
            expected = base64.b64encode(
                hashlib.sha1((key + _WS_GUID).encode("ascii")).digest()
            ).decode("ascii")
            if received.get("sec-websocket-accept") != expected:
                raise ConnectionError("websocket handshake failed: invalid accept key")
            sock.settimeout(None)
        except BaseException:
            sock.close()
            raise
        return cls(sock, connection_id, leftover)

    def _recv_exact(self, n: int) -> bytes:
        while len(self._inbox) < n:
            chunk = self._sock.recv(_READ_CHUNK)
            if not chunk:
                raise EOFError("websocket closed")
            self._inbox += chunk
        data = bytes(self._inbox[:n])
        del self._inbox[:n]
        return data

    def _next_frame(self) -> Tuple[bool, int, bytes]:
        b0, b1 = self._recv_exact(2)
        length = b1 & 0x7F
        if length == 126:
            (length,) = struct.unpack("!H", self._recv_exact(2))
        elif length == 127:
            (length,) = struct.unpack("!Q", self._recv_exact(8))
        mask = self._recv_exact(4) if b1 & 0x80 else b""
        payload = self._recv_exact(length)
        if mask:
            payload = _apply_mask(payload, mask)
        return bool(b0 & 0x80), b0 & 0x0F, payload

    def _next_message(self) -> bytes:
        parts: List[bytes] = []
        while True:
            fin, opcode, payload = self._next_frame()
            if opcode == 0x8:
                try:
                    self._send_frame(0x8, payload[:2])
                except OSError:
                    pass
                self._closed = True
                return b""
            if opcode == 0x9:
                self._send_frame(0xA, payload)
                continue
            if opcode == 0xA:
                continue
            parts.append(payload)
            if fin:
                return b"".join(parts)

    def _send_frame(self, opcode: int, payload: bytes) -> None:
        header = bytearray([0x80 | opcode])
        n = len(payload)
        if n < 126:
            header.append(0x80 | n)
        elif n < 1 << 16:
            header.append(0x80 | 126)
            header += struct.pack("!H", n)
        else:
            header.append(0x80 | 127)
            header += struct.pack("!Q", n)
        mask = os.urandom(4)
        with self._send_lock:
            self._sock.sendall(bytes(header) + mask + _apply_mask(payload, mask))

    def read(self, size: int = _READ_CHUNK) -> bytes:
        """Return up to ``size`` bytes of received messages; b"" once closed."""
        with self._read_lock:
            while not self._message:
                if self._closed:
                    return b""
                try:
                    self._message += self._next_message()
                except (EOFError, OSError):
                    self._closed = True
                    return b""
            n = len(self._message) if size is None or size < 0 else size
            data = bytes(self._message[:n])
            del self._message[:n]
            return data

    def write(self, data: bytes) -> int:
        """Send ``data`` as one message, binary in binary transfer mode, text otherwise."""
        if self._closed:
            raise ConnectionError("websocket closed")
        mode = getattr(self.transfer_mode, "value", self.transfer_mode)
        self._send_frame(0x2 if mode == 2 else 0x1, bytes(data))
        return len(data)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            try:
                self._send_frame(0x8, struct.pack("!H", 1000))
            except OSError:
                pass
        self._sock.close()


def _negotiate(
    address: str, headers: Headers, timeout: Optional[float]
) -> Tuple[NegotiateResponse, List[str]]:
    parts = urlsplit(address)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"invalid address {address}")
    path = posixpath.join(parts.path or "/", "negotiate")
    if not path.startswith("/"):
        path = "/" + path
    url = urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))
    request = urllib.request.Request(url, data=b"", method="POST", headers=_header_map(headers))
    try:
        response = urllib.request.urlopen(request, timeout=timeout)
    except urllib.error.HTTPError as exc:
        exc.close()
        raise ConnectionError(f"POST {url} -> {exc.code} {exc.reason}") from None
    with response:
        if response.status != 200:
            raise ConnectionError(f"POST {url} -> {response.status} {response.reason}")
        body = response.read()
        cookies = _cookie_pairs(response.headers.get_all("Set-Cookie") or [])
    return NegotiateResponse.from_json(body), cookies


def new_http_connection(
    address: str,
    headers: Headers = None,
    transports: Optional[Iterable[Any]] = None,
    timeout: Optional[float] = None,
) -> ConnectionBase:
    """Negotiate with the hub at ``address`` and open a connection on the best transport.

    WebSockets are preferred over Server-Sent Events when both sides allow them.
    ``headers`` is a mapping or a callable returning one; ``timeout`` limits the
    negotiation and the WebSocket handshake, not the connection itself.
    """
    allowed = _coerce_transports(transports) or list(_ALL_TRANSPORTS)
    negotiation, cookies = _negotiate(address, headers, timeout)
    parts = urlsplit(address)
    query = parts.query
    if negotiation.negotiate_version == 0:
        query = _set_id(query, negotiation.connection_id)
    elif negotiation.negotiate_version == 1:
        query = _set_id(query, negotiation.connection_token)

    if negotiation.has_transport("WebTransports"):
        raise ConnectionError("the server offers WebTransports, which this client does not use")

    if TransportType.WEB_SOCKETS in allowed and negotiation.has_transport(
        TransportType.WEB_SOCKETS
    ):
        scheme = "wss" if parts.scheme == "https" else "ws"
        ws_headers = _header_map(headers)
        if cookies:
            ws_headers["Cookie"] = "; ".join(cookies)
        url = urlunsplit((scheme, parts.netloc, parts.path, query, ""))
        return _WebSocketConnection.dial(url, negotiation.connection_id, ws_headers, timeout)

    if TransportType.SERVER_SENT_EVENTS in allowed and negotiation.has_transport(
        TransportType.SERVER_SENT_EVENTS
    ):
        get_headers = _header_map(headers)
        get_headers["Accept"] = "text/event-stream"
        url = urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))
        request = urllib.request.Request(url, headers=get_headers, method="GET")
        try:
            response = urllib.request.urlopen(request)
        except urllib.error.HTTPError as exc:
            exc.close()
            raise ConnectionError(f"GET {url} -> {exc.code} {exc.reason}") from None
        return ClientSSEConnection(address, negotiation.connection_id, response)

    offered = [t.get("transport") for t in negotiation.available_transports]
    raise ConnectionError(
        f"no common transport: client allows {[str(t) for t in allowed]}, server offers {offered}"
    )


def http_connection_factory(
    address: str,
    headers: Headers = None,
    transports: Optional[Iterable[Any]] = None,
    timeout: Optional[float] = None,
) -> ConnectionBase:
    """Connect with WebSockets if allowed, falling back to Server-Sent Events."""
    allowed = _coerce_transports(transports) or list(_ALL_TRANSPORTS)
    if TransportType.WEB_SOCKETS in allowed:
        try:
            return new_http_connection(
                address, headers, [TransportType.WEB_SOCKETS], timeout
            )
        except (OSError, ValueError):
            pass
    if TransportType.SERVER_SENT_EVENTS in allowed:
        return new_http_connection(
            address, headers, [TransportType.SERVER_SENT_EVENTS], timeout
        )
    raise ConnectionError(
        f"can not connect with supported transports: {[str(t) for t in allowed]}"
    )