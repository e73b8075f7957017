"""Runtime state of interfaces, bonds, tunnels and health scores."""

from __future__ import annotations

import enum
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime, timezone
from typing import Any

from netfusion.config import BondMode, InterfaceType

SCORE_MIN = 0.0
SCORE_MAX = 100.0

Converter = Callable[[Any, str], Any]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _format_timestamp(value: datetime) -> str:
    return _as_utc(value).isoformat().replace("+00:00", "Z")


def _to_plain(value: Any) -> Any:
    """Turn dataclasses, enums and datetimes into JSON-ready values."""
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, datetime):
        return _format_timestamp(value)
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _to_plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, (list, tuple)):
        return [_to_plain(item) for item in value]
    if isinstance(value, Mapping):
        return {key: _to_plain(item) for key, item in value.items()}
    return value


def _table(data: Any, where: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValueError(f"{where}: expected a mapping")
    return data


def _required(data: Mapping[str, Any], key: str, where: str, convert: Converter) -> Any:
    value = data.get(key)
    if value is None:
        raise ValueError(f"{where}.{key}: missing field")
    return convert(value, f"{where}.{key}")


def _optional(data: Mapping[str, Any], key: str, where: str, convert: Converter) -> Any:
    value = data.get(key)
    if value is None:
        return None
    return convert(value, f"{where}.{key}")


def _str(value: Any, path: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{path}: expected a string")
    return value


def _bool(value: Any, path: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{path}: expected a boolean")
    return value


def _int(value: Any, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{path}: expected an integer")
    return value


def _float(value: Any, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{path}: expected a number")
    return float(value)


def _timestamp(value: Any, path: str) -> datetime:
    if isinstance(value, datetime):
        return _as_utc(value)
    if not isinstance(value, str):
        raise ValueError(f"{path}: expected a timestamp string")
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise ValueError(f"{path}: invalid timestamp {value!r}") from None
    return _as_utc(parsed)


def _enum(cls: type[enum.Enum]) -> Converter:
    def convert(value: Any, path: str) -> Any:
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"{path}: unknown variant {value!r}") from None

    return convert


def _list(item: Converter) -> Converter:
    def convert(value: Any, path: str) -> list[Any]:
        if not isinstance(value, list):
            raise ValueError(f"{path}: expected a list")
        return [item(entry, f"{path}[{i}]") for i, entry in enumerate(value)]

    return convert


def _clamp(value: float) -> float:
    return min(max(value, SCORE_MIN), SCORE_MAX)


class Duplex(enum.Enum):
    FULL = "full"
    HALF = "half"
    UNKNOWN = "unknown"


class LinkState(enum.Enum):
    UP = "up"
    DOWN = "down"
    UNKNOWN = "unknown"


@dataclass
class IpInfo:
    """An address with CIDR prefix and whether DHCP assigned it."""

    cidr: str
    dhcp: bool = False


@dataclass
class WirelessInfo:
    signal_dbm: int | None = None
    noise_dbm: int | None = None
    quality_percent: int | None = None
    ssid: str | None = None
    frequency_mhz: int | None = None
    channel_width_mhz: int | None = None
    tx_rate_mbps: float | None = None
    rx_rate_mbps: float | None = None


@dataclass
class CellularInfo:
    signal_dbm: int | None = None
    cell_id: str | None = None
    network_type: str | None = None
    rsrp: int | None = None
    rsrq: int | None = None
    sinr: int | None = None


@dataclass
class InterfaceStats:
    rx_bytes: int = 0
    tx_bytes: int = 0
    rx_packets: int = 0
    tx_packets: int = 0
    rx_errors: int = 0
    tx_errors: int = 0
    rx_dropped: int = 0
    tx_dropped: int = 0


@dataclass
class HealthScore:
    """Weighted composite health metric; every component is on a 0-100 scale."""

    overall: float
    rtt: float
    jitter: float
    loss: float
    throughput: float
    stability: float
    timestamp: datetime = field(default_factory=_utcnow)
    failover_candidate: bool = False

    @classmethod
    def compute(
        cls,
        rtt: float,
        jitter: float,
        loss: float,
        throughput: float,
        stability: float,
        w_rtt: int,
        w_jitter: int,
        w_loss: int,
        w_throughput: int,
        w_stability: int,
    ) -> HealthScore:
        """Combine component scores by weight; weights need not sum to 100."""
        total_weight = w_rtt + w_jitter + w_loss + w_throughput + w_stability
        if total_weight == 0:
            return cls(
                overall=0.0,
                rtt=rtt,
                jitter=jitter,
                loss=loss,
                throughput=throughput,
                stability=stability,
            )
        overall = (
            rtt * w_rtt
            + jitter * w_jitter
            + loss * w_loss
            + throughput * w_throughput
            + stability * w_stability
        ) / total_weight
        return cls(
            overall=_clamp(overall),
            rtt=_clamp(rtt),
            jitter=_clamp(jitter),
            loss=_clamp(loss),
            throughput=_clamp(throughput),
            stability=_clamp(stability),
        )

    def ema(self, previous: HealthScore, alpha: float) -> HealthScore:
        """Exponential moving average of this score over the previous one."""
        alpha = min(max(alpha, 0.0), 1.0)

        def blend(current: float, prior: float) -> float:
            return current * alpha + prior * (1.0 - alpha)

        return HealthScore(
            overall=blend(self.overall, previous.overall),
            rtt=blend(self.rtt, previous.rtt),
            jitter=blend(self.jitter, previous.jitter),
            loss=blend(self.loss, previous.loss),
            throughput=blend(self.throughput, previous.throughput),
            stability=blend(self.stability, previous.stability),
            failover_candidate=self.failover_candidate,
        )

    def exceeds_hysteresis(self, other: HealthScore, threshold_percent: int) -> bool:
        """True when the overall scores differ by more than the threshold."""
        return abs(self.overall - other.overall) > float(threshold_percent)

    def to_dict(self) -> dict[str, Any]:
        return _to_plain(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> HealthScore:
        return _health_from(data, "health")


def _health_from(data: Any, where: str) -> HealthScore:
    d = _table(data, where)
    return HealthScore(
        overall=_required(d, "overall", where, _float),
        rtt=_required(d, "rtt", where, _float),
        jitter=_required(d, "jitter", where, _float),
        loss=_required(d, "loss", where, _float),
        throughput=_required(d, "throughput", where, _float),
        stability=_required(d, "stability", where, _float),
        timestamp=_required(d, "timestamp", where, _timestamp),
        failover_candidate=_required(d, "failover_candidate", where, _bool),
    )


def _ip_from(data: Any, where: str) -> IpInfo:
    d = _table(data, where)
    return IpInfo(
        cidr=_required(d, "cidr", where, _str),
        dhcp=_required(d, "dhcp", where, _bool),
    )


def _wireless_from(data: Any, where: str) -> WirelessInfo:
    d = _table(data, where)
    return WirelessInfo(
        signal_dbm=_optional(d, "signal_dbm", where, _int),
        noise_dbm=_optional(d, "noise_dbm", where, _int),
        quality_percent=_optional(d, "quality_percent", where, _int),
        ssid=_optional(d, "ssid", where, _str),
        frequency_mhz=_optional(d, "frequency_mhz", where, _int),
        channel_width_mhz=_optional(d, "channel_width_mhz", where, _int),
        tx_rate_mbps=_optional(d, "tx_rate_mbps", where, _float),
        rx_rate_mbps=_optional(d, "rx_rate_mbps", where, _float),
    )


def _cellular_from(data: Any, where: str) -> CellularInfo:
    d = _table(data, where)
    return CellularInfo(
        signal_dbm=_optional(d, "signal_dbm", where, _int),
        cell_id=_optional(d, "cell_id", where, _str),
        network_type=_optional(d, "network_type", where, _str),
        rsrp=_optional(d, "rsrp", where, _int),
        rsrq=_optional(d, "rsrq", where, _int),
        sinr=_optional(d, "sinr", where, _int),
    )


def _stats_from(data: Any, where: str) -> InterfaceStats:
    d = _table(data, where)
    return InterfaceStats(
        **{f.name: _required(d, f.name, where, _int) for f in fields(InterfaceStats)}
    )


@dataclass
class InterfaceInfo:
    """Runtime information about a discovered network interface."""

    name: str
    if_type: InterfaceType
    mac: str | None = None
    driver: str | None = None
    speed_mbps: int | None = None
    duplex: Duplex | None = None
    mtu: int = 1500
    addresses: list[IpInfo] = field(default_factory=list)
    gateway: str | None = None
    dns_servers: list[str] = field(default_factory=list)
    link_state: LinkState = LinkState.UNKNOWN
    managed: bool = False
    nm_managed: bool = False
    wireless: WirelessInfo | None = None
    cellular: CellularInfo | None = None
    stats: InterfaceStats = field(default_factory=InterfaceStats)
    health: HealthScore | None = None
    last_seen: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return _to_plain(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> InterfaceInfo:
        return _interface_from(data, "interface")


def _interface_from(data: Any, where: str) -> InterfaceInfo:
    d = _table(data, where)
    return InterfaceInfo(
        name=_required(d, "name", where, _str),
        if_type=_required(d, "if_type", where, _enum(InterfaceType)),
        mac=_optional(d, "mac", where, _str),
        driver=_optional(d, "driver", where, _str),
        speed_mbps=_optional(d, "speed_mbps", where, _int),
        duplex=_optional(d, "duplex", where, _enum(Duplex)),
        mtu=_required(d, "mtu", where, _int),
        addresses=_required(d, "addresses", where, _list(_ip_from)),
        gateway=_optional(d, "gateway", where, _str),
        dns_servers=_required(d, "dns_servers", where, _list(_str)),
        link_state=_required(d, "link_state", where, _enum(LinkState)),
        managed=_required(d, "managed", where, _bool),
        nm_managed=_required(d, "nm_managed", where, _bool),
        wireless=_optional(d, "wireless", where, _wireless_from),
        cellular=_optional(d, "cellular", where, _cellular_from),
        stats=_required(d, "stats", where, _stats_from),
        health=_optional(d, "health", where, _health_from),
        last_seen=_optional(d, "last_seen", where, _timestamp),
    )


@dataclass
class BondState:
    """Runtime state of a bond group."""

    name: str
    mode: BondMode
    active_members: list[str] = field(default_factory=list)
    standby_members: list[str] = field(default_factory=list)
    failed_members: list[str] = field(default_factory=list)
    health: HealthScore | None = None
    failover_active: bool = False
    last_failover: datetime | None = None
    bond_interface: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _to_plain(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BondState:
        return _bond_from(data, "bond")


def _bond_from(data: Any, where: str) -> BondState:
    d = _table(data, where)
    return BondState(
        name=_required(d, "name", where, _str),
        mode=_required(d, "mode", where, _enum(BondMode)),
        active_members=_required(d, "active_members", where, _list(_str)),
        standby_members=_required(d, "standby_members", where, _list(_str)),
        failed_members=_required(d, "failed_members", where, _list(_str)),
        health=_optional(d, "health", where, _health_from),
        failover_active=_required(d, "failover_active", where, _bool),
        last_failover=_optional(d, "last_failover", where, _timestamp),
        bond_interface=_optional(d, "bond_interface", where, _str),
    )


@dataclass
class TunnelState:
    """Runtime state of a tunnel."""

    name: str
    connected: bool
    remote: str
    interface: str | None = None
    connected_since: datetime | None = None
    tx_bytes: int = 0
    rx_bytes: int = 0
    reconnect_count: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _to_plain(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TunnelState:
        return _tunnel_from(data, "tunnel")


def _tunnel_from(data: Any, where: str) -> TunnelState:
    d = _table(data, where)
    return TunnelState(
        name=_required(d, "name", where, _str),
        connected=_required(d, "connected", where, _bool),
        remote=_required(d, "remote", where, _str),
        interface=_optional(d, "interface", where, _str),
        connected_since=_optional(d, "connected_since", where, _timestamp),
        tx_bytes=_required(d, "tx_bytes", where, _int),
        rx_bytes=_required(d, "rx_bytes", where, _int),
        reconnect_count=_required(d, "reconnect_count", where, _int),
        last_error=_optional(d, "last_error", where, _str),
    )


@dataclass
class SystemStatus:
    """System-wide status summary."""

    total_interfaces: int = 0
    active_bonds: int = 0
    connected_tunnels: int = 0
    active_profile: str | None = None
    health: HealthScore | None = None
    failover_active: bool = False
    dry_run: bool = False
    uptime_secs: int = 0
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return _to_plain(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SystemStatus:
        return _status_from(data, "status")


def _status_from(data: Any, where: str) -> SystemStatus:
    d = _table(data, where)
    return SystemStatus(
        total_interfaces=_required(d, "total_interfaces", where, _int),
        active_bonds=_required(d, "active_bonds", where, _int),
        connected_tunnels=_required(d, "connected_tunnels", where, _int),
        active_profile=_optional(d, "active_profile", where, _str),
        health=_optional(d, "health", where, _health_from),
        failover_active=_required(d, "failover_active", where, _bool),
        dry_run=_required(d, "dry_run", where, _bool),
        uptime_secs=_required(d, "uptime_secs", where, _int),
        timestamp=_required(d, "timestamp", where, _timestamp),
    )