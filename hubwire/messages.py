"""Hub protocol messages and the protocol interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type

from .connection import TransferMode


@dataclass
class HubMessage:
    """A message carrying only its type, e.g. a ping (type 6)."""

    type: int

    def to_dict(self) -> Dict[str, Any]:
        """The message as a JSON-ready mapping, in wire field order."""
        return {"type": self.type}


@dataclass
class InvocationMessage(HubMessage):
    """Invocation (type 1) or stream invocation (type 4) of a target method."""

    type: int = 1
    target: str = ""
    invocation_id: str = ""
    arguments: List[Any] = field(default_factory=list)
    stream_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type, "target": self.target}
        if self.invocation_id:
            data["invocationId"] = self.invocation_id
        data["arguments"] = self.arguments
        if self.stream_ids:
            data["streamIds"] = self.stream_ids
        return data


@dataclass
class CompletionMessage(HubMessage):
    """The end of an invocation, with an optional result or error."""

    type: int = 3
    invocation_id: str = ""
    result: Any = None
    error: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type, "invocationId": self.invocation_id}
        if self.result is not None:
            data["result"] = self.result
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class StreamItemMessage(HubMessage):
    """One item of a stream."""

    type: int = 2
    invocation_id: str = ""
    item: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "invocationId": self.invocation_id, "item": self.item}


@dataclass
class CancelInvocationMessage(HubMessage):
    """Request to stop a running stream."""

    type: int = 5
    invocation_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "invocationId": self.invocation_id}


@dataclass
class CloseMessage(HubMessage):
    """Announces that the connection is closed."""

    type: int = 7
    error: str = ""
    allow_reconnect: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "error": self.error,
            "allowReconnect": self.allow_reconnect,
        }


@dataclass
class HandshakeRequest:
    """The first message a client sends, naming its protocol."""

    protocol: str = "json"
    version: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {"protocol": self.protocol, "version": self.version}


@dataclass
class HandshakeResponse:
    """The server's answer to a handshake; an empty error means success."""

    error: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error} if self.error else {}


class HubProtocol(ABC):
    """Encodes and decodes hub messages on a byte stream."""

    @abstractmethod
    def parse_messages(self, reader: Any, remain: bytearray) -> List[HubMessage]:
        """Read complete messages from ``reader``; keep unparsed bytes in ``remain``."""

    @abstractmethod
    def write_message(self, message: Any, writer: Any) -> None:
        """Encode ``message`` and write it to ``writer``."""

    @abstractmethod
    def unmarshal_argument(self, src: Any, target_type: Optional[Type[Any]] = None) -> Any:
        """Decode a raw argument or result into a value of ``target_type``."""

    @abstractmethod
    def transfer_mode(self) -> TransferMode:
        """The transfer mode the encoding needs."""