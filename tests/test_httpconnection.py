import base64
import hashlib
import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlsplit

import pytest

from hubwire.httpconnection import (
    ClientSSEConnection,
    NegotiateResponse,
    TransportType,
    http_connection_factory,
    new_http_connection,
    parse_sse_lines,
)

WS_GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"


class _Handler(BaseHTTPRequestHandler):
    def log_message(self, *args):
        pass

    def do_POST(self):
        srv = self.server
        parts = urlsplit(self.path)
        body = self.rfile.read(int(self.headers.get("Content-Length") or 0))
        if parts.path.endswith("/negotiate"):
            srv.negotiate_requests.append((parts.path, self.headers))
            payload = json.dumps(srv.negotiate_body).encode()
            self.send_response(srv.negotiate_status)
            if srv.cookie:
                self.send_header("Set-Cookie", srv.cookie)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(payload)))
            self.end_headers()
            self.wfile.write(payload)
            return
        srv.posts.append((parse_qs(parts.query), body))
        self.send_response(srv.post_status)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def do_GET(self):
        srv = self.server
        parts = urlsplit(self.path)
        if self.headers.get("Upgrade", "").lower() == "websocket":
            self._websocket(parts)
            return
        srv.gets.append((parse_qs(parts.query), self.headers))
        self.send_response(200)
        self.send_header("Content-Type", "text/event-stream")
        self.end_headers()
        self.wfile.write(srv.sse_payload)
        self.wfile.flush()

    def _websocket(self, parts):
        srv = self.server
        key = self.headers["Sec-WebSocket-Key"]
        accept = base64.b64encode(hashlib.sha1((key + WS_GUID).encode()).digest()).decode()
        srv.ws_requests.append((parse_qs(parts.query), self.headers))
        self.send_response(101)
        self.send_header("Upgrade", "websocket")
        self.send_header("Connection", "Upgrade")
        self.send_header("Sec-WebSocket-Accept", accept)
        self.end_headers()
        self.wfile.flush()
        b0, b1 = self.rfile.read(2)
        length = b1 & 0x7F
        mask = self.rfile.read(4)
        payload = bytes(b ^ mask[i % 4] for i, b in enumerate(self.rfile.read(length)))
        srv.ws_received.append((b0 & 0x0F, payload))
        self.wfile.write(bytes([0x81, len(payload)]) + payload + bytes([0x88, 0]))
        self.wfile.flush()


class _Server(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self):
        super().__init__(("127.0.0.1", 0), _Handler)
        self.negotiate_status = 200
        self.negotiate_body = {
            "connectionId": "abc",
            "negotiateVersion": 0,
            "availableTransports": [
                {"transport": "ServerSentEvents", "transferFormats": ["Text"]}
            ],
        }
        self.cookie = None
        self.post_status = 200
        self.sse_payload = b':\r\n\r\ndata: {"type":6}\x1e\r\n\r\n'
        self.negotiate_requests = []
        self.posts = []
        self.gets = []
        self.ws_requests = []
        self.ws_received = []


@pytest.fixture
def server():
    srv = _Server()
    thread = threading.Thread(target=srv.serve_forever, daemon=True)
    thread.start()
    yield srv
    srv.shutdown()
    srv.server_close()


def _address(srv):
    return f"http://127.0.0.1:{srv.server_address[1]}/hub"


def _read_frame(conn):
    data = b""
    while not data.endswith(b"\x1e"):
        chunk = conn.read(1024)
        if not chunk:
            break
        data += chunk
    return data


def test_parse_sse_lines_keeps_only_data():
    chunk = 'data: {"a":1}\r\nevent: x\n: comment\ndata:plain\n'
    assert parse_sse_lines(chunk) == ['{"a":1}', "plain"]


def test_parse_sse_lines_removes_only_one_space():
    assert parse_sse_lines("data:  two") == [" two"]


def test_parse_sse_lines_without_data():
    assert parse_sse_lines(":\r\n\r\n") == []


def test_negotiate_response_from_json():
    response = NegotiateResponse.from_json(
        '{"connectionId":"abc","connectionToken":"token","negotiateVersion":1,'
        '"availableTransports":[{"transport":"WebSockets","transferFormats":["Text","Binary"]}]}'
    )
    assert response.connection_id == "abc"
    assert response.connection_token == "token"
    assert response.negotiate_version == 1
    assert response.has_transport(TransportType.WEB_SOCKETS)
    assert response.has_transport("WebSockets")
    assert not response.has_transport(TransportType.SERVER_SENT_EVENTS)


def test_negotiate_response_rejects_non_object():
    with pytest.raises(ValueError):
        NegotiateResponse.from_json("[1, 2]")


def test_transport_type_values():
    assert TransportType("WebSockets") is TransportType.WEB_SOCKETS
    assert str(TransportType.SERVER_SENT_EVENTS) == "ServerSentEvents"


def test_unsupported_transport_raises():
    with pytest.raises(ValueError, match="unsupported transport"):
        new_http_connection("http://127.0.0.1:1/hub", transports=["LongPolling"])


def test_factory_unsupported_transport_raises():
    with pytest.raises(ValueError, match="unsupported transport"):
        http_connection_factory("http://127.0.0.1:1/hub", transports=["LongPolling"])


def test_sse_connection_receives_data(server):
    conn = new_http_connection(_address(server))
    assert isinstance(conn, ClientSSEConnection)
    assert conn.connection_id == "abc"
    assert _read_frame(conn) == b'{"type":6}\x1e'
    query, headers = server.gets[0]
    assert query["id"] == ["abc"]
    assert headers.get("Accept") == "text/event-stream"
    assert conn.read(1024) == b""


def test_negotiate_path_and_headers(server):
    new_http_connection(_address(server), headers=lambda: {"X-Test": "1"})
    path, headers = server.negotiate_requests[0]
    assert path == "/hub/negotiate"
    assert headers.get("X-Test") == "1"
    assert server.gets[0][1].get("X-Test") == "1"


def test_sse_write_posts_to_connection(server):
    conn = new_http_connection(_address(server))
    body = b'{"type":6}\x1e'
    assert conn.write(body) == len(body)
    assert server.posts == [({"id": ["abc"]}, body)]


def test_sse_write_fails_on_error_status(server):
    server.post_status = 500
    conn = new_http_connection(_address(server))
    with pytest.raises(ConnectionError):
        conn.write(b"x")


def test_negotiate_version_one_uses_token(server):
    server.negotiate_body = dict(
        server.negotiate_body, negotiateVersion=1, connectionToken="token"
    )
    conn = new_http_connection(_address(server))
    assert server.gets[0][0]["id"] == ["token"]
    conn.write(b"x")
    assert server.posts[0][0]["id"] == ["abc"]


def test_negotiate_error_status_raises(server):
    server.negotiate_status = 404
    with pytest.raises(ConnectionError):
        new_http_connection(_address(server))


def test_no_common_transport_raises(server):
    with pytest.raises(ConnectionError):
        new_http_connection(_address(server), transports=[TransportType.WEB_SOCKETS])


def test_websocket_round_trip(server):
    server.negotiate_body = {
        "connectionId": "abc",
        "negotiateVersion": 0,
        "availableTransports": [
            {"transport": "WebSockets", "transferFormats": ["Text", "Binary"]}
        ],
    }
    server.cookie = "session=token"
    conn = new_http_connection(_address(server))
    assert conn.connection_id == "abc"
    payload = b'{"type":6}\x1e'
    assert conn.write(payload) == len(payload)
    assert _read_frame(conn) == payload
    assert server.ws_received == [(1, payload)]
    query, headers = server.ws_requests[0]
    assert query["id"] == ["abc"]
    assert "session=token" in headers.get("Cookie")
    assert conn.read(1024) == b""


def test_factory_falls_back_to_sse(server):
    conn = http_connection_factory(_address(server))
    assert isinstance(conn, ClientSSEConnection)
    assert len(server.negotiate_requests) == 2
    assert _read_frame(conn) == b'{"type":6}\x1e'


def test_factory_with_only_sse_and_server_without_it(server):
    server.negotiate_body = {
        "connectionId": "abc",
        "availableTransports": [{"transport": "WebSockets", "transferFormats": ["Text"]}],
    }
    with pytest.raises(ConnectionError):
        http_connection_factory(
            _address(server), transports=[TransportType.SERVER_SENT_EVENTS]
        )