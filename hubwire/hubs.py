"""Hubs and the objects a hub uses to reach clients and groups."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

_log = logging.getLogger(__name__)


def _send_async(conn: Any, target: str, args: List[Any]) -> None:
    def send() -> None:
        try:
            conn.send_invocation("", target, args)
        except Exception as exc:  # noqa: BLE001
            _log.info("invocation of %s on %s failed: %s", target, conn.connection_id, exc)

    threading.Thread(target=send, daemon=True).start()


class HubLifetimeManager:
    """Keeps track of connected hub connections and their groups."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._clients: Dict[str, Any] = {}
        self._groups: Dict[str, Dict[str, Any]] = {}

    def on_connected(self, conn: Any) -> None:
        with self._lock:
            self._clients[conn.connection_id] = conn

    def on_disconnected(self, conn: Any) -> None:
        with self._lock:
            self._clients.pop(conn.connection_id, None)

    def invoke_all(self, target: str, args: List[Any]) -> None:
        with self._lock:
            conns = list(self._clients.values())
        for conn in conns:
            _send_async(conn, target, list(args))

    def invoke_client(self, connection_id: str, target: str, args: List[Any]) -> None:
        with self._lock:
            conn = self._clients.get(connection_id)
        if conn is not None:
            _send_async(conn, target, list(args))

    def invoke_group(self, group_name: str, target: str, args: List[Any]) -> None:
        with self._lock:
            members = list(self._groups.get(group_name, {}).values())
        for conn in members:
            _send_async(conn, target, list(args))

    def add_to_group(self, group_name: str, connection_id: str) -> None:
        """Add a connected connection to a group; unknown connections are ignored."""
        with self._lock:
            conn = self._clients.get(connection_id)
            if conn is not None:
                self._groups.setdefault(group_name, {})[connection_id] = conn

    def remove_from_group(self, group_name: str, connection_id: str) -> None:
        with self._lock:
            group = self._groups.get(group_name)
            if group is not None:
                group.pop(connection_id, None)


class AllClientProxy:
    """Sends invocations to every connected client."""

    def __init__(self, lifetime_manager: HubLifetimeManager) -> None:
        self._lifetime_manager = lifetime_manager

    def send(self, target: str, *args: Any) -> None:
        self._lifetime_manager.invoke_all(target, list(args))


class SingleClientProxy:
    """Sends invocations to one client connection."""

    def __init__(self, connection_id: str, lifetime_manager: HubLifetimeManager) -> None:
        self.connection_id = connection_id
        self._lifetime_manager = lifetime_manager

    def send(self, target: str, *args: Any) -> None:
        self._lifetime_manager.invoke_client(self.connection_id, target, list(args))


class GroupClientProxy:
    """Sends invocations to all connections of a group."""

    def __init__(self, group_name: str, lifetime_manager: HubLifetimeManager) -> None:
        self.group_name = group_name
        self._lifetime_manager = lifetime_manager

    def send(self, target: str, *args: Any) -> None:
        self._lifetime_manager.invoke_group(self.group_name, target, list(args))


class GroupManager:
    """Adds connections to and removes them from named groups."""

    def __init__(self, lifetime_manager: HubLifetimeManager) -> None:
        self._lifetime_manager = lifetime_manager

    def add_to_group(self, group_name: str, connection_id: str) -> None:
        self._lifetime_manager.add_to_group(group_name, connection_id)

    def remove_from_group(self, group_name: str, connection_id: str) -> None:
        self._lifetime_manager.remove_from_group(group_name, connection_id)


class HubClients:
    """Proxies for all clients, one client or a group; it has no caller."""

    def __init__(self, lifetime_manager: HubLifetimeManager) -> None:
        self._lifetime_manager = lifetime_manager
        self._all = AllClientProxy(lifetime_manager)

    def all(self) -> AllClientProxy:
        return self._all

    def caller(self) -> Optional[SingleClientProxy]:
        return None

    def client(self, connection_id: str) -> SingleClientProxy:
        return SingleClientProxy(connection_id, self._lifetime_manager)

    def group(self, group_name: str) -> GroupClientProxy:
        return GroupClientProxy(group_name, self._lifetime_manager)


class CallerHubClients:
    """HubClients seen from one connection, whose caller is that connection."""

    def __init__(self, hub_clients: HubClients, connection_id: str) -> None:
        self._hub_clients = hub_clients
        self.connection_id = connection_id

    def all(self) -> AllClientProxy:
        return self._hub_clients.all()

    def caller(self) -> SingleClientProxy:
        return self._hub_clients.client(self.connection_id)

    def client(self, connection_id: str) -> SingleClientProxy:
        return self._hub_clients.client(connection_id)

    def group(self, group_name: str) -> GroupClientProxy:
        return self._hub_clients.group(group_name)


class HubContext:
    """What a hub sees of the connection it serves."""

    def __init__(
        self,
        connection: Any,
        clients: Any,
        groups: GroupManager,
        abort: Optional[Callable[[], None]] = None,
        info: Optional[logging.Logger] = None,
        dbg: Optional[logging.Logger] = None,
    ) -> None:
        self.connection = connection
        self.clients = clients
        self.groups = groups
        self._abort = abort if abort is not None else connection.abort
        self._info = info if info is not None else logging.getLogger("hubwire.hub")
        self._dbg = dbg if dbg is not None else logging.getLogger("hubwire.hub.debug")

    @property
    def items(self) -> Dict[Any, Any]:
        return self.connection.items

    @property
    def connection_id(self) -> str:
        return self.connection.connection_id

    @property
    def done(self) -> threading.Event:
        return self.connection.done

    def abort(self) -> None:
        """Abort the connection this context belongs to."""
        self._abort()

    def logger(self) -> Tuple[logging.Logger, logging.Logger]:
        return self._info, self._dbg


class Hub:
    """Base class for hubs; gives access to the context of the current connection."""

    def __init__(self) -> None:
        self._context: Optional[HubContext] = None
        self._context_lock = threading.RLock()

    def _ctx(self) -> HubContext:
        with self._context_lock:
            if self._context is None:
                raise RuntimeError("hub is not initialized")
            return self._context

    def initialize(self, context: HubContext) -> None:
        with self._context_lock:
            self._context = context

    def clients(self) -> Any:
        return self._ctx().clients

    def groups(self) -> GroupManager:
        return self._ctx().groups

    def items(self) -> Dict[Any, Any]:
        return self._ctx().items

    def connection_id(self) -> str:
        return self._ctx().connection_id

    def abort(self) -> None:
        self._ctx().abort()

    def logger(self) -> Tuple[logging.Logger, logging.Logger]:
        return self._ctx().logger()

    def on_connected(self, connection_id: str) -> None:
        """Called when a connection starts."""

    def on_disconnected(self, connection_id: str) -> None:
        """Called when a connection ends."""