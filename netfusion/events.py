"""Events that components publish and subscribe to."""

from __future__ import annotations

import enum
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from netfusion.types import (
    HealthScore,
    _bool,
    _float,
    _health_from,
    _int,
    _list,
    _optional,
    _required,
    _str,
    _table,
    _timestamp,
    _to_plain,
    _utcnow,
)


class EventKind(enum.Enum):
    INTERFACE_UP = "interface_up"
    INTERFACE_DOWN = "interface_down"
    HEALTH_CHANGED = "health_changed"
    PACKET_LOSS_SPIKE = "packet_loss_spike"
    CONGESTION_DETECTED = "congestion_detected"
    FAILOVER_TRIGGERED = "failover_triggered"
    FAILOVER_RECOVERED = "failover_recovered"
    TUNNEL_CONNECTED = "tunnel_connected"
    TUNNEL_DISCONNECTED = "tunnel_disconnected"
    ROUTE_CHANGED = "route_changed"
    BOND_MEMBERSHIP_CHANGED = "bond_membership_changed"
    CONFIG_RELOADED = "config_reloaded"
    SUBSYSTEM_ERROR = "subsystem_error"
    PROFILE_ACTIVATED = "profile_activated"
    PROFILE_DEACTIVATED = "profile_deactivated"


@dataclass
class InterfaceEvent:
    interface: str
    timestamp: datetime = field(default_factory=_utcnow)
    details: str | None = None


@dataclass
class HealthEvent:
    interface: str
    previous_score: float
    new_score: HealthScore
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class LossEvent:
    interface: str
    loss_percent: float
    duration_secs: int = 0
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class CongestionEvent:
    interface: str
    queue_depth: int
    latency_increase_ms: float = 0.0
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class FailoverEvent:
    bond: str
    previous_active: list[str] = field(default_factory=list)
    new_active: list[str] = field(default_factory=list)
    reason: str = ""
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class TunnelEvent:
    tunnel: str
    remote: str
    error: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class RouteChange:
    """One route change; action is "add", "del" or "change"."""

    action: str
    interface: str
    destination: str | None = None
    gateway: str | None = None


@dataclass
class RouteEvent:
    rule_count: int
    changes: list[RouteChange] = field(default_factory=list)
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class BondEvent:
    bond: str
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class ConfigEvent:
    source: str
    errors: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class ErrorEvent:
    subsystem: str
    message: str
    recoverable: bool = True
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class ProfileEvent:
    """Profile change; trigger is "manual", "schedule", "app_detection" or "auto"."""

    profile: str
    trigger: str = "manual"
    timestamp: datetime = field(default_factory=_utcnow)


EventPayload = (
    InterfaceEvent
    | HealthEvent
    | LossEvent
    | CongestionEvent
    | FailoverEvent
    | TunnelEvent
    | RouteEvent
    | BondEvent
    | ConfigEvent
    | ErrorEvent
    | ProfileEvent
)


def _interface_event(d: Mapping[str, Any], w: str) -> InterfaceEvent:
    return InterfaceEvent(
        interface=_required(d, "interface", w, _str),
        timestamp=_required(d, "timestamp", w, _timestamp),
        details=_optional(d, "details", w, _str),
    )


def _health_event(d: Mapping[str, Any], w: str) -> HealthEvent:
    return HealthEvent(
        interface=_required(d, "interface", w, _str),
        timestamp=_required(d, "timestamp", w, _timestamp),
        previous_score=_required(d, "previous_score", w, _float),
        new_score=_required(d, "new_score", w, _health_from),
    )


def _loss_event(d: Mapping[str, Any], w: str) -> LossEvent:
    return LossEvent(
        interface=_required(d, "interface", w, _str),
        timestamp=_required(d, "timestamp", w, _timestamp),
        loss_percent=_required(d, "loss_percent", w, _float),
        duration_secs=_required(d, "duration_secs", w, _int),
    )


def _congestion_event(d: Mapping[str, Any], w: str) -> CongestionEvent:
    return CongestionEvent(
        interface=_required(d, "interface", w, _str),
        timestamp=_required(d, "timestamp", w, _timestamp),
        queue_depth=_required(d, "queue_depth", w, _int),
        latency_increase_ms=_required(d, "latency_increase_ms", w, _float),
    )


def _failover_event(d: Mapping[str, Any], w: str) -> FailoverEvent:
    return FailoverEvent(
        bond=_required(d, "bond", w, _str),
        timestamp=_required(d, "timestamp", w, _timestamp),
        previous_active=_required(d, "previous_active", w, _list(_str)),
        new_active=_required(d, "new_active", w, _list(_str)),
        reason=_required(d, "reason", w, _str),
    )


def _tunnel_event(d: Mapping[str, Any], w: str) -> TunnelEvent:
    return TunnelEvent(
        tunnel=_required(d, "tunnel", w, _str),
        timestamp=_required(d, "timestamp", w, _timestamp),
        remote=_required(d, "remote", w, _str),
        error=_optional(d, "error", w, _str),
    )


def _route_change(data: Any, w: str) -> RouteChange:
    d = _table(data, w)
    return RouteChange(
        action=_required(d, "action", w, _str),
        destination=_optional(d, "destination", w, _str),
        gateway=_optional(d, "gateway", w, _str),
        interface=_required(d, "interface", w, _str),
    )


def _route_event(d: Mapping[str, Any], w: str) -> RouteEvent:
    return RouteEvent(
        timestamp=_required(d, "timestamp", w, _timestamp),
        rule_count=_required(d, "rule_count", w, _int),
        changes=_required(d, "changes", w, _list(_route_change)),
    )


def _bond_event(d: Mapping[str, Any], w: str) -> BondEvent:
    return BondEvent(
        bond=_required(d, "bond", w, _str),
        timestamp=_required(d, "timestamp", w, _timestamp),
        added=_required(d, "added", w, _list(_str)),
        removed=_required(d, "removed", w, _list(_str)),
    )


def _config_event(d: Mapping[str, Any], w: str) -> ConfigEvent:
    return ConfigEvent(
        timestamp=_required(d, "timestamp", w, _timestamp),
        source=_required(d, "source", w, _str),
        errors=_required(d, "errors", w, _list(_str)),
    )


def _error_event(d: Mapping[str, Any], w: str) -> ErrorEvent:
    return ErrorEvent(
        subsystem=_required(d, "subsystem", w, _str),
        timestamp=_required(d, "timestamp", w, _timestamp),
        message=_required(d, "message", w, _str),
        recoverable=_required(d, "recoverable", w, _bool),
    )


def _profile_event(d: Mapping[str, Any], w: str) -> ProfileEvent:
    return ProfileEvent(
        profile=_required(d, "profile", w, _str),
        timestamp=_required(d, "timestamp", w, _timestamp),
        trigger=_required(d, "trigger", w, _str),
    )


_PAYLOADS: dict[EventKind, tuple[type, Callable[[Mapping[str, Any], str], Any]]] = {
    EventKind.INTERFACE_UP: (InterfaceEvent, _interface_event),
    EventKind.INTERFACE_DOWN: (InterfaceEvent, _interface_event),
    EventKind.HEALTH_CHANGED: (HealthEvent, _health_event),
    EventKind.PACKET_LOSS_SPIKE: (LossEvent, _loss_event),
    EventKind.CONGESTION_DETECTED: (CongestionEvent, _congestion_event),
    EventKind.FAILOVER_TRIGGERED: (FailoverEvent, _failover_event),
    EventKind.FAILOVER_RECOVERED: (FailoverEvent, _failover_event),
    EventKind.TUNNEL_CONNECTED: (TunnelEvent, _tunnel_event),
    EventKind.TUNNEL_DISCONNECTED: (TunnelEvent, _tunnel_event),
    EventKind.ROUTE_CHANGED: (RouteEvent, _route_event),
    EventKind.BOND_MEMBERSHIP_CHANGED: (BondEvent, _bond_event),
    EventKind.CONFIG_RELOADED: (ConfigEvent, _config_event),
    EventKind.SUBSYSTEM_ERROR: (ErrorEvent, _error_event),
    EventKind.PROFILE_ACTIVATED: (ProfileEvent, _profile_event),
    EventKind.PROFILE_DEACTIVATED: (ProfileEvent, _profile_event),
}


@dataclass
class NetfusionEvent:
    """An event of a given kind carrying the payload that kind requires."""

    kind: EventKind
    payload: EventPayload

    def __post_init__(self) -> None:
        expected, _ = _PAYLOADS[self.kind]
        if not isinstance(self.payload, expected):
            raise TypeError(
                f"{self.kind.value} events carry {expected.__name__}, "
                f"not {type(self.payload).__name__}"
            )

    def timestamp(self) -> datetime:
        return self.payload.timestamp

    def description(self) -> str:
        """A human-readable one-line summary."""
        e = self.payload
        match self.kind:
            case EventKind.INTERFACE_UP:
                return f"Interface {e.interface} is up"
            case EventKind.INTERFACE_DOWN:
                return f"Interface {e.interface} is down"
            case EventKind.HEALTH_CHANGED:
                return f"Interface {e.interface} health: {e.new_score.overall:.1f}"
            case EventKind.PACKET_LOSS_SPIKE:
                return f"Packet loss spike on {e.interface}: {e.loss_percent:.1f}%"
            case EventKind.CONGESTION_DETECTED:
                return f"Congestion on {e.interface} (queue depth: {e.queue_depth})"
            case EventKind.FAILOVER_TRIGGERED:
                return f"Failover on {e.bond} -> {', '.join(e.new_active)}"
            case EventKind.FAILOVER_RECOVERED:
                return f"Failover recovered on {e.bond}: {', '.join(e.new_active)}"
            case EventKind.TUNNEL_CONNECTED:
                return f"Tunnel {e.tunnel} connected"
            case EventKind.TUNNEL_DISCONNECTED:
                return f"Tunnel {e.tunnel} disconnected"
            case EventKind.ROUTE_CHANGED:
                return f"Routes changed ({e.rule_count} rules)"
            case EventKind.BOND_MEMBERSHIP_CHANGED:
                return f"Bond {e.bond} membership changed"
            case EventKind.CONFIG_RELOADED:
                return f"Config reloaded from {e.source}"
            case EventKind.SUBSYSTEM_ERROR:
                return f"Error in {e.subsystem}: {e.message}"
            case EventKind.PROFILE_ACTIVATED:
                return f"Profile '{e.profile}' activated"
            case EventKind.PROFILE_DEACTIVATED:
                return f"Profile '{e.profile}' deactivated"
        raise AssertionError(f"unhandled event kind {self.kind}")

    def to_dict(self) -> dict[str, Any]:
        """Flat mapping with the kind under "type" beside the payload fields."""
        return {"type": self.kind.value, **_to_plain(self.payload)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NetfusionEvent:
        d = _table(data, "event")
        tag = _required(d, "type", "event", _str)
        try:
            kind = EventKind(tag)
        except ValueError:
            raise ValueError(f"event.type: unknown variant {tag!r}") from None
        _, load = _PAYLOADS[kind]
        return cls(kind=kind, payload=load(d, "event"))