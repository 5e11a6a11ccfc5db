# hubwire

`hubwire` provides the pieces needed to speak the SignalR hub protocol over
any byte-stream transport: the JSON message encoding, a connection that sends
and receives hub messages, bookkeeping for pending invocations, hub-side
helpers for reaching clients and groups, and client transports over HTTP
(WebSockets and Server-Sent Events).

The package needs only the standard library.

## Installing

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `hubwire.messages` – the message dataclasses (`InvocationMessage`,
  `StreamItemMessage`, `CompletionMessage`, `CancelInvocationMessage`,
  `CloseMessage`, `HubMessage` for pings and other bare types,
  `HandshakeRequest`, `HandshakeResponse`) and the abstract `HubProtocol`.
  Every message has `to_dict()` giving its wire form.
- `hubwire.jsonprotocol` – `JsonHubProtocol`, which writes messages as JSON
  records ending in `0x1e` and parses them back. Arguments, items and results
  are kept as undecoded JSON until `unmarshal_argument(src, target_type)`
  turns them into a value of the given type (`int`, `float`, `str`, `bool`,
  lists, dicts, tuples, unions and dataclasses). Decoding failures raise
  `JsonError`, which carries the offending text. `read_json_frames` and
  `parse_json_frames` do the framing.
- `hubwire.connection` – the abstract `Connection`, `ConnectionBase` (a
  connection ID plus a `done` event that marks cancellation), `TransferMode`,
  and `read_write_with_context`, which runs a blocking read or write that is
  abandoned with `concurrent.futures.CancelledError` once `done` is set.
- `hubwire.ctxpipe` – `make_pipe(done)`, a synchronous in-memory pipe: each
  write blocks until reads have consumed it. Setting `done` or closing either
  half ends it; operations on a closed pipe raise `ClosedPipeError` or the
  error given to `close_with_error`.
- `hubwire.hubconnection` – `HubConnection`, which wraps a `Connection` and a
  `HubProtocol`. It sends invocations, stream invocations, stream items,
  completions, pings and close messages, and `receive()` yields parsed
  messages (each result has `.message` or `.error`). A failed write aborts
  the connection.
- `hubwire.invokeclient` – `InvokeClient`, which registers invocations by ID,
  hands each completion's result or error to the waiting side, and raises
  `HubChanTimeoutError` when nobody takes it in time.
- `hubwire.invokeresult` – `InvokeResult` and `merge_results`, which merges a
  stream of values and a stream of errors into one stream of results.
- `hubwire.hubs` – `Hub` (base class for hubs), `HubContext`, `HubClients`,
  `CallerHubClients`, `AllClientProxy`, `SingleClientProxy`,
  `GroupClientProxy`, `GroupManager` and `HubLifetimeManager`, which tracks
  connected hub connections and groups and sends invocations to them.
- `hubwire.httpconnection` – `new_http_connection` negotiates with a hub at an
  HTTP address and opens a WebSocket or Server-Sent Events connection,
  preferring WebSockets; `http_connection_factory` tries WebSockets first and
  falls back to Server-Sent Events. Also `NegotiateResponse`,
  `ClientSSEConnection`, `TransportType` and `parse_sse_lines`.

## Examples

Writing and parsing protocol frames:

```python
import io

from hubwire.jsonprotocol import JsonHubProtocol
from hubwire.messages import InvocationMessage

protocol = JsonHubProtocol()
buf = io.BytesIO()
protocol.write_message(
    InvocationMessage(type=1, target="Add", invocation_id="1", arguments=[1, 2]),
    buf,
)
buf.seek(0)

remain = bytearray()
invocation = protocol.parse_messages(buf, remain)[0]
first = protocol.unmarshal_argument(invocation.arguments[0], int)  # 1
```

A pipe between two threads:

```python
import threading

from hubwire.ctxpipe import make_pipe

reader, writer = make_pipe()
threading.Thread(target=writer.write, args=(b"hello",)).start()
data = reader.read(5)  # b"hello"
```

A hub using its context to reach other connections:

```python
from hubwire.hubs import GroupManager, Hub, HubClients, HubContext, HubLifetimeManager

class Chat(Hub):
    def broadcast(self, message):
        self.clients().group("group").send("receive", message)

manager = HubLifetimeManager()
manager.on_connected(hub_connection)   # e.g. a hubwire.hubconnection.HubConnection
chat = Chat()
chat.initialize(HubContext(hub_connection, HubClients(manager), GroupManager(manager)))
chat.groups().add_to_group("group", hub_connection.connection_id)
chat.broadcast("hi")
```

Opening an HTTP connection:

```python
from hubwire.httpconnection import http_connection_factory

connection = http_connection_factory("http://localhost:8086/chat", None, None, 2.0)
```

`new_http_connection` raises `ConnectionError` when the negotiation fails,
when the server lists a `WebTransports` transport, or when client and server
share no transport.

## What the package does not do

- There is no client object with connection states, handshake, invoke/send
  helpers or automatic reconnection; connections and the pieces above have to
  be combined by the caller.
- There is no message loop: received invocations are not dispatched to hub or
  receiver methods, and nothing sends completions, pings or timeouts on its
  own.
- There is no server: nothing accepts HTTP, WebSocket or Server-Sent Events
  connections or answers negotiate requests.
- Only the JSON encoding is provided; there is no binary (MessagePack) one.