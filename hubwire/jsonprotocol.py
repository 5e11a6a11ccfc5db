"""The JSON hub protocol: records delimited by 0x1e."""

from __future__ import annotations

import base64
import dataclasses
import json
import logging
import types
import typing
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from .connection import TransferMode
from .messages import (
    CancelInvocationMessage,
    CloseMessage,
    CompletionMessage,
    HubMessage,
    HubProtocol,
    InvocationMessage,
    StreamItemMessage,
)

_log = logging.getLogger(__name__)

RECORD_SEPARATOR = b"\x1e"
_READ_SIZE = 1 << 15
_UNION_ORIGINS = (Union, types.UnionType)
_NAMED_TYPES = {
    "int": int,
    "float": float,
    "str": str,
    "bool": bool,
    "list": list,
    "dict": dict,
    "Any": None,
    "object": None,
}


@dataclass(frozen=True)
class RawJson:
    """Undecoded JSON text of an argument, item or result."""

    text: str

    def __str__(self) -> str:
        return self.text


class JsonError(Exception):
    """A JSON decoding failure together with the offending source text."""

    def __init__(self, raw: str, error: BaseException) -> None:
        super().__init__(f"{error} (source: {raw})")
        self.raw = raw
        self.error = error


def _dump(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=_encode)


def _json_key(f: dataclasses.Field) -> str:
    return f.metadata.get("json", f.name)


def _encode(obj: Any) -> Any:
    if isinstance(obj, RawJson):
        return json.loads(obj.text)
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {_json_key(f): getattr(obj, f.name) for f in dataclasses.fields(obj)}
    if isinstance(obj, (bytes, bytearray)):
        return base64.b64encode(bytes(obj)).decode("ascii")
    if isinstance(obj, (set, frozenset)):
        return list(obj)
    raise TypeError(f"object of type {type(obj).__name__} is not JSON serializable")


def _field(obj: Dict[str, Any], key: str, kind: type, default: Any, raw: str) -> Any:
    value = obj.get(key)
    if value is None:
        return default
    if kind is int:
        ok = isinstance(value, int) and not isinstance(value, bool)
    else:
        ok = isinstance(value, kind)
    if not ok:
        raise JsonError(
            raw,
            TypeError(
                f"cannot unmarshal {type(value).__name__} into field {key} of type {kind.__name__}"
            ),
        )
    return value


def _convert_key(key: str, key_type: Any) -> Any:
    if key_type in (None, Any, str, object):
        return key
    if key_type is int:
        return int(key)
    if key_type is float:
        return float(key)
    raise TypeError(f"unsupported map key type {key_type!r}")


def _field_type(f: dataclasses.Field) -> Any:
    """The declared type of a dataclass field; unresolvable names convert nothing."""
    if isinstance(f.type, str):
        return _NAMED_TYPES.get(f.type.strip())
    return f.type


def _convert_dataclass(value: Any, tp: type) -> Any:
    if not isinstance(value, dict):
        raise TypeError(f"cannot unmarshal {type(value).__name__} into {tp.__name__}")
    lowered = {k.lower(): v for k, v in value.items()}
    kwargs = {}
    for f in dataclasses.fields(tp):
        if not f.init:
            continue
        key = _json_key(f)
        if key in value:
            kwargs[f.name] = _convert(value[key], _field_type(f))
        elif key.lower() in lowered:
            kwargs[f.name] = _convert(lowered[key.lower()], _field_type(f))
    return tp(**kwargs)


def _convert(value: Any, tp: Any) -> Any:
    if tp is None or tp is Any or tp is object:
        return value
    if value is None:
        return None
    origin = typing.get_origin(tp)
    args = typing.get_args(tp)
    if origin in _UNION_ORIGINS:
        last: Optional[BaseException] = None
        for arg in args:
            if arg is type(None):
                continue
            try:
                return _convert(value, arg)
            except (TypeError, ValueError) as exc:
                last = exc
        raise last if last is not None else TypeError(f"cannot unmarshal into {tp!r}")
    container = origin or tp
    if container in (list, tuple, set, frozenset):
        if not isinstance(value, list):
            raise TypeError(f"cannot unmarshal {type(value).__name__} into {tp!r}")
        if container is tuple and args and args[-1] is not Ellipsis:
            if len(args) != len(value):
                raise ValueError(f"expected {len(args)} items, got {len(value)}")
            return tuple(_convert(v, a) for v, a in zip(value, args))
        item_type = args[0] if args else None
        items = [_convert(v, item_type) for v in value]
        return items if container is list else container(items)
    if container is dict:
        if not isinstance(value, dict):
            raise TypeError(f"cannot unmarshal {type(value).__name__} into {tp!r}")
        key_type, value_type = args if args else (None, None)
        return {_convert_key(k, key_type): _convert(v, value_type) for k, v in value.items()}
    if isinstance(tp, type) and dataclasses.is_dataclass(tp):
        return _convert_dataclass(value, tp)
    if tp is bool:
        if not isinstance(value, bool):
            raise TypeError(f"cannot unmarshal {type(value).__name__} into bool")
        return value
    if tp is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"cannot unmarshal {type(value).__name__} into int")
        return value
    if tp is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError(f"cannot unmarshal {type(value).__name__} into float")
        return float(value)
    if tp is str:
        if not isinstance(value, str):
            raise TypeError(f"cannot unmarshal {type(value).__name__} into str")
        return value
    if isinstance(tp, type) and not isinstance(value, tp):
        raise TypeError(f"cannot unmarshal {type(value).__name__} into {tp.__name__}")
    return value


def parse_json_frames(buf: bytearray) -> List[bytes]:
    """Remove all complete frames from ``buf``; the incomplete tail stays in it."""
    *frames, rest = bytes(buf).split(RECORD_SEPARATOR)
    buf[:] = rest
    return frames


def read_json_frames(reader: Any, remain: bytearray) -> List[bytes]:
    """Read from ``reader`` until at least one frame is complete.

    Bytes left over after the last complete frame are stored in ``remain``.
    Raises EOFError when the reader ends before a frame is complete.
    """
    buf = bytearray(remain)
    remain.clear()
    frames = parse_json_frames(buf)
    while not frames:
        data = reader.read(_READ_SIZE)
        if not data:
            remain += buf
            raise EOFError("stream ended before a complete JSON frame")
        buf += data
        frames = parse_json_frames(buf)
    remain += buf
    return frames


class JsonHubProtocol(HubProtocol):
    """Hub messages encoded as JSON text records."""

    def parse_messages(self, reader: Any, remain: bytearray) -> List[HubMessage]:
        frames = read_json_frames(reader, remain)
        messages: List[HubMessage] = []
        for frame in frames:
            text = frame.decode("utf-8", errors="replace")
            _log.debug("read %s", text)
            try:
                obj = json.loads(text)
            except ValueError as exc:
                raise JsonError(text, exc) from exc
            if not isinstance(obj, dict):
                raise JsonError(text, TypeError("message is not a JSON object"))
            message_type = _field(obj, "type", int, 0, text)
            messages.append(self._parse_message(message_type, obj, text))
        return messages

    @staticmethod
    def _parse_message(message_type: int, obj: Dict[str, Any], raw: str) -> HubMessage:
        if message_type in (1, 4):
            arguments = _field(obj, "arguments", list, [], raw)
            stream_ids = _field(obj, "streamIds", list, [], raw)
            if not all(isinstance(s, str) for s in stream_ids):
                raise JsonError(raw, TypeError("streamIds must be strings"))
            return InvocationMessage(
                type=message_type,
                target=_field(obj, "target", str, "", raw),
                invocation_id=_field(obj, "invocationId", str, "", raw),
                arguments=[RawJson(_dump(a)) for a in arguments],
                stream_ids=list(stream_ids),
            )
        if message_type == 2:
            return StreamItemMessage(
                type=message_type,
                invocation_id=_field(obj, "invocationId", str, "", raw),
                item=RawJson(_dump(obj.get("item"))),
            )
        if message_type == 3:
            return CompletionMessage(
                type=message_type,
                invocation_id=_field(obj, "invocationId", str, "", raw),
                result=RawJson(_dump(obj["result"])) if "result" in obj else None,
                error=_field(obj, "error", str, "", raw),
            )
        if message_type == 5:
            return CancelInvocationMessage(
                type=message_type,
                invocation_id=_field(obj, "invocationId", str, "", raw),
            )
        if message_type == 7:
            return CloseMessage(
                type=message_type,
                error=_field(obj, "error", str, "", raw),
                allow_reconnect=_field(obj, "allowReconnect", bool, False, raw),
            )
        return HubMessage(type=message_type)

    def write_message(self, message: Any, writer: Any) -> None:
        payload = _dump(message.to_dict()).encode("utf-8") + RECORD_SEPARATOR
        _log.debug("write %s", payload.decode("utf-8"))
        writer.write(payload)

    def unmarshal_argument(self, src: Any, target_type: Any = None) -> Any:
        if not isinstance(src, RawJson):
            raise TypeError(f"invalid source {src!r} for UnmarshalArgument")
        try:
            value = json.loads(src.text)
        except ValueError as exc:
            raise JsonError(src.text, exc) from exc
        try:
            result = _convert(value, target_type)
        except (TypeError, ValueError) as exc:
            raise JsonError(src.text, exc) from exc
        _log.debug("UnmarshalArgument argument=%s value=%r", src.text, result)
        return result

    def transfer_mode(self) -> TransferMode:
        return TransferMode.TEXT