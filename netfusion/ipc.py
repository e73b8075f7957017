"""Request, response and push messages between the daemon and its clients."""

from __future__ import annotations

import enum
import json
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, TypeVar

from netfusion.config import BondConfig, NetfusionConfig
from netfusion.events import NetfusionEvent
from netfusion.types import (
    BondState,
    HealthScore,
    InterfaceInfo,
    SystemStatus,
    TunnelState,
    _format_timestamp,
    _timestamp,
    _utcnow,
)

IPC_PROTOCOL_VERSION = 1


class DecodeError(ValueError):
    """Bytes received over the wire do not form a valid message."""


class RequestKind(enum.Enum):
    GET_STATUS = "get_status"
    GET_INTERFACES = "get_interfaces"
    GET_INTERFACE = "get_interface"
    GET_BONDS = "get_bonds"
    GET_BOND = "get_bond"
    GET_TUNNELS = "get_tunnels"
    GET_EVENTS = "get_events"
    SUBSCRIBE_EVENTS = "subscribe_events"
    UNSUBSCRIBE_EVENTS = "unsubscribe_events"
    GET_CONFIG = "get_config"
    APPLY_CONFIG = "apply_config"
    DRY_RUN_CONFIG = "dry_run_config"
    ACTIVATE_PROFILE = "activate_profile"
    DEACTIVATE_PROFILE = "deactivate_profile"
    GET_ACTIVE_PROFILE = "get_active_profile"
    GET_HEALTH = "get_health"
    GET_ALL_HEALTH = "get_all_health"
    RESCAN_INTERFACES = "rescan_interfaces"
    CREATE_BOND = "create_bond"
    DELETE_BOND = "delete_bond"
    EMERGENCY_ROLLBACK = "emergency_rollback"
    SHUTDOWN = "shutdown"


_REQUEST_FIELD: dict[RequestKind, str] = {
    RequestKind.GET_INTERFACE: "name",
    RequestKind.GET_BOND: "name",
    RequestKind.GET_EVENTS: "limit",
    RequestKind.APPLY_CONFIG: "config",
    RequestKind.DRY_RUN_CONFIG: "config",
    RequestKind.ACTIVATE_PROFILE: "name",
    RequestKind.GET_HEALTH: "interface",
    RequestKind.CREATE_BOND: "config",
    RequestKind.DELETE_BOND: "name",
}

_REQUEST_ATTRS = ("name", "limit", "interface", "config")


def _parse_enum(cls: type[enum.Enum], value: Any, path: str) -> Any:
    try:
        return cls(value)
    except ValueError:
        raise ValueError(f"{path}: unknown variant {value!r}") from None


def _mapping(data: Any, path: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValueError(f"{path}: expected a mapping")
    return data


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass
class DaemonRequest:
    """A request from a client; the kind decides which single field is carried."""

    kind: RequestKind
    name: str | None = None
    limit: int | None = None
    interface: str | None = None
    config: NetfusionConfig | BondConfig | None = None

    def __post_init__(self) -> None:
        required = _REQUEST_FIELD.get(self.kind)
        for attr in _REQUEST_ATTRS:
            value = getattr(self, attr)
            if attr == required and value is None:
                raise ValueError(f"{self.kind.value} request requires {attr}")
            if attr != required and value is not None:
                raise ValueError(f"{self.kind.value} request takes no {attr}")
        if self.limit is not None and (not _is_int(self.limit) or self.limit < 0):
            raise ValueError("limit must be a non-negative integer")
        if self.kind is RequestKind.CREATE_BOND and not isinstance(self.config, BondConfig):
            raise TypeError("create_bond request carries a BondConfig")
        if self.kind in (RequestKind.APPLY_CONFIG, RequestKind.DRY_RUN_CONFIG) and not isinstance(
            self.config, NetfusionConfig
        ):
            raise TypeError(f"{self.kind.value} request carries a NetfusionConfig")

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.kind.value}
        attr = _REQUEST_FIELD.get(self.kind)
        if attr is not None:
            value = getattr(self, attr)
            out[attr] = value.to_dict() if attr == "config" else value
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DaemonRequest:
        d = _mapping(data, "request")
        kind = _parse_enum(RequestKind, d.get("type"), "request.type")
        attr = _REQUEST_FIELD.get(kind)
        if attr is None:
            return cls(kind)
        value = d.get(attr)
        if value is None:
            raise ValueError(f"request.{attr}: missing field")
        if attr == "config":
            loader = BondConfig if kind is RequestKind.CREATE_BOND else NetfusionConfig
            value = loader.from_dict(_mapping(value, "request.config"))
        elif attr == "limit":
            if not _is_int(value):
                raise ValueError("request.limit: expected an integer")
        elif not isinstance(value, str):
            raise ValueError(f"request.{attr}: expected a string")
        return cls(kind, **{attr: value})


class ResponseKind(enum.Enum):
    STATUS = "status"
    INTERFACES = "interfaces"
    INTERFACE = "interface"
    BONDS = "bonds"
    BOND = "bond"
    TUNNELS = "tunnels"
    EVENTS = "events"
    EVENT_STREAM = "event_stream"
    CONFIG = "config"
    PROFILE = "profile"
    HEALTH = "health"
    ALL_HEALTH = "all_health"
    BOND_CREATED = "bond_created"
    BOND_DELETED = "bond_deleted"
    EMPTY = "empty"


def _dump_one(value: Any) -> Any:
    return value.to_dict()


def _dump_many(value: Any) -> Any:
    return [item.to_dict() for item in value]


def _identity(value: Any) -> Any:
    return value


def _load_many(load: Callable[[Any], Any]) -> Callable[[Any], list[Any]]:
    def convert(value: Any) -> list[Any]:
        if not isinstance(value, list):
            raise ValueError("response value: expected a list")
        return [load(item) for item in value]

    return convert


def _load_str(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError("response value: expected a string")
    return value


def _load_optional_str(value: Any) -> str | None:
    return None if value is None else _load_str(value)


def _load_none(value: Any) -> None:
    if value is not None:
        raise ValueError("empty response carries no value")
    return None


def _dump_all_health(value: Any) -> Any:
    return [[name, score.to_dict()] for name, score in value]


def _load_all_health(value: Any) -> list[tuple[str, HealthScore]]:
    if not isinstance(value, list):
        raise ValueError("response value: expected a list")
    pairs = []
    for item in value:
        if not isinstance(item, list) or len(item) != 2:
            raise ValueError("response value: expected [name, health] pairs")
        pairs.append((_load_str(item[0]), HealthScore.from_dict(item[1])))
    return pairs


_RESPONSE_CODECS: dict[ResponseKind, tuple[type | tuple[type, ...], Callable, Callable]] = {
    ResponseKind.STATUS: (SystemStatus, _dump_one, SystemStatus.from_dict),
    ResponseKind.INTERFACES: (list, _dump_many, _load_many(InterfaceInfo.from_dict)),
    ResponseKind.INTERFACE: (InterfaceInfo, _dump_one, InterfaceInfo.from_dict),
    ResponseKind.BONDS: (list, _dump_many, _load_many(BondState.from_dict)),
    ResponseKind.BOND: (BondState, _dump_one, BondState.from_dict),
    ResponseKind.TUNNELS: (list, _dump_many, _load_many(TunnelState.from_dict)),
    ResponseKind.EVENTS: (list, _dump_many, _load_many(NetfusionEvent.from_dict)),
    ResponseKind.EVENT_STREAM: (NetfusionEvent, _dump_one, NetfusionEvent.from_dict),
    ResponseKind.CONFIG: (NetfusionConfig, _dump_one, NetfusionConfig.from_dict),
    ResponseKind.PROFILE: ((str, type(None)), _identity, _load_optional_str),
    ResponseKind.HEALTH: (HealthScore, _dump_one, HealthScore.from_dict),
    ResponseKind.ALL_HEALTH: (list, _dump_all_health, _load_all_health),
    ResponseKind.BOND_CREATED: (str, _identity, _load_str),
    ResponseKind.BOND_DELETED: (str, _identity, _load_str),
    ResponseKind.EMPTY: (type(None), _identity, _load_none),
}


@dataclass
class ResponseData:
    """Typed data attached to a successful response."""

    kind: ResponseKind
    value: Any = None

    def __post_init__(self) -> None:
        expected, _, _ = _RESPONSE_CODECS[self.kind]
        if not isinstance(self.value, expected):
            raise TypeError(
                f"{self.kind.value} response data cannot hold {type(self.value).__name__}"
            )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"kind": self.kind.value}
        if self.kind is not ResponseKind.EMPTY:
            _, dump, _ = _RESPONSE_CODECS[self.kind]
            out["value"] = dump(self.value)
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ResponseData:
        d = _mapping(data, "data")
        kind = _parse_enum(ResponseKind, d.get("kind"), "data.kind")
        _, _, load = _RESPONSE_CODECS[kind]
        return cls(kind, load(d.get("value")))


@dataclass
class DaemonResponse:
    """A reply from the daemon: success with optional data, or an error message."""

    data: ResponseData | None = None
    message: str | None = None
    recoverable: bool = False

    def __post_init__(self) -> None:
        if self.message is not None and self.data is not None:
            raise ValueError("an error response carries no data")

    @property
    def is_error(self) -> bool:
        return self.message is not None

    @classmethod
    def ok(cls, data: ResponseData | None = None) -> DaemonResponse:
        return cls(data=data)

    @classmethod
    def error(cls, message: str, recoverable: bool = False) -> DaemonResponse:
        return cls(message=message, recoverable=recoverable)

    def to_dict(self) -> dict[str, Any]:
        if self.is_error:
            return {"type": "error", "message": self.message, "recoverable": self.recoverable}
        out: dict[str, Any] = {"type": "ok"}
        if self.data is not None:
            out["data"] = self.data.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DaemonResponse:
        d = _mapping(data, "response")
        tag = d.get("type")
        if tag == "ok":
            raw = d.get("data")
            return cls.ok(None if raw is None else ResponseData.from_dict(raw))
        if tag == "error":
            message = d.get("message")
            recoverable = d.get("recoverable")
            if not isinstance(message, str):
                raise ValueError("response.message: expected a string")
            if not isinstance(recoverable, bool):
                raise ValueError("response.recoverable: expected a boolean")
            return cls.error(message, recoverable)
        raise ValueError(f"response.type: unknown variant {tag!r}")


@dataclass
class DaemonPush:
    """An event pushed to a client outside the request/response flow."""

    event: NetfusionEvent
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "timestamp": _format_timestamp(self.timestamp),
            "event": self.event.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DaemonPush:
        d = _mapping(data, "push")
        return cls(
            event=NetfusionEvent.from_dict(_mapping(d.get("event"), "push.event")),
            id=_parse_uuid(d.get("id")),
            timestamp=_timestamp(d.get("timestamp"), "push.timestamp"),
        )


P = TypeVar("P")


@dataclass
class WireMessage(Generic[P]):
    """Envelope with protocol version, correlation id and timestamp."""

    version: int
    id: uuid.UUID
    timestamp: datetime
    payload: P

    @classmethod
    def new(cls, payload: P) -> WireMessage[P]:
        return cls(
            version=IPC_PROTOCOL_VERSION,
            id=uuid.uuid4(),
            timestamp=_utcnow(),
            payload=payload,
        )


def _parse_uuid(value: Any) -> uuid.UUID:
    if not isinstance(value, str):
        raise ValueError("id: expected a string")
    return uuid.UUID(value)


def encode(message: WireMessage[Any]) -> bytes:
    """Encode a wire message for transport."""
    envelope = {
        "version": message.version,
        "id": str(message.id),
        "timestamp": _format_timestamp(message.timestamp),
        "payload": message.payload.to_dict(),
    }
    return json.dumps(envelope, separators=(",", ":")).encode("utf-8")


def _decode(data: bytes, load: Callable[[Any], Any]) -> WireMessage[Any]:
    try:
        raw = json.loads(data)
        envelope = _mapping(raw, "message")
        version = envelope["version"]
        if not _is_int(version):
            raise ValueError("message.version: expected an integer")
        return WireMessage(
            version=version,
            id=_parse_uuid(envelope["id"]),
            timestamp=_timestamp(envelope["timestamp"], "message.timestamp"),
            payload=load(envelope["payload"]),
        )
    except (ValueError, TypeError, KeyError, UnicodeDecodeError) as exc:
        raise DecodeError(f"invalid message: {exc}") from exc


def decode_request(data: bytes) -> WireMessage[DaemonRequest]:
    return _decode(data, DaemonRequest.from_dict)


def decode_response(data: bytes) -> WireMessage[DaemonResponse]:
    return _decode(data, DaemonResponse.from_dict)


def decode_push(data: bytes) -> WireMessage[NetfusionEvent]:
    return _decode(data, NetfusionEvent.from_dict)