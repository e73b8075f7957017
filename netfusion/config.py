"""Configuration schema, parsing and validation."""

from __future__ import annotations

import enum
import tomllib
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any

SCHEMA_VERSION = 1

DEFAULT_SOCKET_PATH = "/run/netfusion/netfusion.sock"
DEFAULT_STATE_PATH = "/var/lib/netfusion/state.db"
DEFAULT_HEALTH_INTERVAL_MS = 1000
DEFAULT_ROLLBACK_TIMEOUT_SECS = 30
DEFAULT_SELECTOR_WEIGHT = 50
DEFAULT_MIN_MEMBERS = 1
DEFAULT_POLICY_PRIORITY = 100
DEFAULT_RECONNECT_INTERVAL_SECS = 10
DEFAULT_FAILOVER_THRESHOLD = 15
DEFAULT_LOG_LEVEL = "info"
DEFAULT_MAX_LOG_SIZE_MB = 10
DEFAULT_MAX_LOG_FILES = 5
DEFAULT_RELAY_PORT = 4433

NAME_MIN_LEN = 1
NAME_MAX_LEN = 64

_U64_LIMIT = 1 << 64


class ConfigError(ValueError):
    """A configuration could not be parsed or failed validation."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = list(errors) if errors else [message]


class InterfaceType(enum.Enum):
    ETHERNET = "ethernet"
    WIRELESS = "wireless"
    VLAN = "vlan"
    BRIDGE = "bridge"
    BOND = "bond"
    TUNNEL = "tunnel"
    WIRE_GUARD = "wire_guard"
    TAILSCALE = "tailscale"
    PPP = "ppp"
    USB_TETHER = "usb_tether"
    CELLULAR = "cellular"
    LOOPBACK = "loopback"
    VIRTUAL = "virtual"
    UNKNOWN = "unknown"


class BondMode(enum.Enum):
    ACTIVE_BACKUP = "active_backup"
    BALANCE_RR = "balance_rr"
    BALANCE_XOR = "balance_xor"
    BROADCAST = "broadcast"
    LACP = "lacp"
    ADAPTIVE_TLB = "adaptive_tlb"
    ADAPTIVE_ALB = "adaptive_alb"
    MPTCP = "mptcp"
    ECMP = "ecmp"
    WEIGHTED = "weighted"
    TUNNEL = "tunnel"


class PolicyActionKind(enum.Enum):
    ROUTE = "route"
    LOWEST_LATENCY = "lowest_latency"
    HIGHEST_THROUGHPUT = "highest_throughput"
    LOAD_BALANCE = "load_balance"
    DROP = "drop"
    ACCEPT = "accept"


_ACTIONS_WITH_BOND = frozenset({PolicyActionKind.ROUTE, PolicyActionKind.LOAD_BALANCE})


class TunnelType(enum.Enum):
    WIRE_GUARD = "wire_guard"
    OPEN_VPN = "open_vpn"
    QUIC = "quic"
    RELAY = "relay"
    TAILSCALE = "tailscale"


class ProfileMode(enum.Enum):
    LOW_LATENCY = "low_latency"
    STREAMING = "streaming"
    BULK_TRANSFER = "bulk_transfer"
    VOIP = "voip"
    BALANCED = "balanced"
    CUSTOM = "custom"


class QdiscType(enum.Enum):
    FQ_CODEL = "fq_codel"
    CAKE = "cake"
    HTB = "htb"
    PRIO = "prio"
    PFIFO_FAST = "pfifo_fast"


@dataclass
class PolicyAction:
    """Action for matched traffic; route and load_balance name a bond."""

    kind: PolicyActionKind
    bond: str | None = None

    def __post_init__(self) -> None:
        if self.kind in _ACTIONS_WITH_BOND and self.bond is None:
            raise ConfigError(f"policy action {self.kind.value!r} requires a bond")


@dataclass
class DaemonConfig:
    socket_path: str = DEFAULT_SOCKET_PATH
    state_path: str = DEFAULT_STATE_PATH
    health_interval_ms: int = DEFAULT_HEALTH_INTERVAL_MS
    rollback_timeout_secs: int = DEFAULT_ROLLBACK_TIMEOUT_SECS
    dry_run: bool = False

    def _problems(self, path: str) -> list[str]:
        problems = [
            f"{path}.{name}: expected a string"
            for name in ("socket_path", "state_path")
            if not isinstance(getattr(self, name), str)
        ]
        for name in ("health_interval_ms", "rollback_timeout_secs"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value < _U64_LIMIT:
                problems.append(f"{path}.{name}: expected an unsigned 64-bit integer")
        if not isinstance(self.dry_run, bool):
            problems.append(f"{path}.dry_run: expected a boolean")
        return problems

    def validate(self) -> None:
        """Raise ConfigError if the daemon settings are invalid."""
        _raise_if(self._problems("daemon"))


@dataclass
class InterfaceSelector:
    name: str
    name_pattern: str | None = None
    type: InterfaceType | None = None
    driver: str | None = None
    min_speed_mbps: int = 0
    weight: int = DEFAULT_SELECTOR_WEIGHT


@dataclass
class InterfaceConfig:
    selectors: list[InterfaceSelector] = field(default_factory=list)
    managed: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)


@dataclass
class BondConfig:
    name: str
    mode: BondMode
    members: list[str]
    weights: list[int] = field(default_factory=list)
    min_active_members: int = DEFAULT_MIN_MEMBERS
    health_targets: list[str] = field(default_factory=list)
    policy: str | None = None

    def _problems(self, path: str) -> list[str]:
        problems = _name_problems(self.name, f"{path}.name")
        if len(self.members) < 1:
            problems.append(f"{path}.members: must contain at least 1 entry")
        return problems

    def validate(self) -> None:
        """Raise ConfigError if the bond definition is invalid."""
        _raise_if(self._problems("bond"))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BondConfig:
        return _parse_bond(data, "bond")

    def to_dict(self) -> dict[str, Any]:
        return _dump(self)


@dataclass
class RuleConfig:
    src: str | None = None
    dst: str | None = None
    proto: str | None = None
    dport: int | None = None
    sport: int | None = None
    dscp: int | None = None
    fwmark: int | None = None
    app: str | None = None


@dataclass
class PolicyConfig:
    name: str
    rules: list[RuleConfig]
    action: PolicyAction
    priority: int = DEFAULT_POLICY_PRIORITY

    def _problems(self, path: str) -> list[str]:
        return _name_problems(self.name, f"{path}.name")


@dataclass
class TunnelConfig:
    name: str
    type: TunnelType
    remote: str
    local_bind: str | None = None
    auth_ref: str | None = None
    options: dict[str, str] = field(default_factory=dict)
    auto_connect: bool = False
    auto_reconnect: bool = True
    reconnect_interval_secs: int = DEFAULT_RECONNECT_INTERVAL_SECS

    def _problems(self, path: str) -> list[str]:
        return _name_problems(self.name, f"{path}.name")


@dataclass
class HealthWeights:
    """Health scoring weights, each 0-100; totals need not be 100."""

    rtt: int = 30
    jitter: int = 20
    loss: int = 25
    throughput: int = 15
    stability: int = 10

    @classmethod
    def balanced(cls) -> HealthWeights:
        return cls()

    @classmethod
    def gaming(cls) -> HealthWeights:
        return cls(rtt=40, jitter=30, loss=15, throughput=5, stability=10)

    @classmethod
    def streaming(cls) -> HealthWeights:
        return cls(rtt=15, jitter=20, loss=25, throughput=30, stability=10)

    @classmethod
    def voip(cls) -> HealthWeights:
        return cls(rtt=20, jitter=30, loss=30, throughput=5, stability=15)

    @classmethod
    def bulk_transfer(cls) -> HealthWeights:
        return cls(rtt=10, jitter=10, loss=15, throughput=45, stability=20)

    def normalize(self) -> None:
        """Reset to the balanced defaults when every weight is zero."""
        if self.rtt + self.jitter + self.loss + self.throughput + self.stability == 0:
            default = HealthWeights()
            for f in fields(self):
                setattr(self, f.name, getattr(default, f.name))

    def _problems(self, path: str) -> list[str]:
        return [
            f"{path}.{f.name}: must be between 0 and 100"
            for f in fields(self)
            if not 0 <= getattr(self, f.name) <= 100
        ]


@dataclass
class ScheduleConfig:
    cron: str
    duration_mins: int | None = None


@dataclass
class ProfileConfig:
    mode: ProfileMode
    interfaces: list[str] = field(default_factory=list)
    health_weights: HealthWeights | None = None
    max_jitter_ms: float | None = None
    max_loss_percent: float | None = None
    prefer_lowest_rtt: bool = False
    failover_threshold: int = DEFAULT_FAILOVER_THRESHOLD
    activate_on_app: list[str] = field(default_factory=list)
    schedule: ScheduleConfig | None = None

    def _problems(self, path: str) -> list[str]:
        if self.health_weights is None:
            return []
        return self.health_weights._problems(f"{path}.health_weights")


@dataclass
class QdiscConfig:
    qdisc: QdiscType | None = None
    target_ms: int | None = None
    interval_ms: int | None = None
    limit: int | None = None


@dataclass
class QosConfig:
    enabled: bool = False
    qdisc: QdiscType = QdiscType.FQ_CODEL
    ecn: bool = False
    dscp_tagging: bool = False
    interface_overrides: dict[str, QdiscConfig] = field(default_factory=dict)


@dataclass
class LoggingConfig:
    level: str = DEFAULT_LOG_LEVEL
    file: str | None = None
    journald: bool = False
    max_size_mb: int = DEFAULT_MAX_LOG_SIZE_MB
    max_files: int = DEFAULT_MAX_LOG_FILES


@dataclass
class RelayConfig:
    server: str
    port: int = DEFAULT_RELAY_PORT
    auth_ref: str | None = None
    server_name: str | None = None
    enabled: bool = False


@dataclass
class NetfusionConfig:
    """Root configuration."""

    schema_version: int = SCHEMA_VERSION
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    interfaces: InterfaceConfig = field(default_factory=InterfaceConfig)
    bonds: list[BondConfig] = field(default_factory=list)
    policies: list[PolicyConfig] = field(default_factory=list)
    tunnels: list[TunnelConfig] = field(default_factory=list)
    profiles: dict[str, ProfileConfig] = field(default_factory=dict)
    qos: QosConfig | None = None
    logging: LoggingConfig | None = None
    relay: RelayConfig | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NetfusionConfig:
        r = _Reader(data, "")
        return cls(
            schema_version=r.required("schema_version", _uint(32)),
            daemon=r.required("daemon", _parse_daemon),
            interfaces=r.required("interfaces", _parse_interfaces),
            bonds=r.required("bonds", _list(_parse_bond)),
            policies=r.required("policies", _list(_parse_policy)),
            tunnels=r.required("tunnels", _list(_parse_tunnel)),
            profiles=r.required("profiles", _map(_parse_profile)),
            qos=r.optional("qos", _parse_qos),
            logging=r.optional("logging", _parse_logging),
            relay=r.optional("relay", _parse_relay),
        )

    @classmethod
    def from_toml(cls, text: str) -> NetfusionConfig:
        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"failed to parse config: {exc}") from exc
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        return _dump(self)

    def validate(self) -> None:
        """Raise ConfigError listing every validation failure."""
        problems = self.daemon._problems("daemon")
        for i, bond in enumerate(self.bonds):
            problems += bond._problems(f"bonds[{i}]")
        for i, policy in enumerate(self.policies):
            problems += policy._problems(f"policies[{i}]")
        for i, tunnel in enumerate(self.tunnels):
            problems += tunnel._problems(f"tunnels[{i}]")
        for name, profile in self.profiles.items():
            problems += profile._problems(f"profiles.{name}")
        _raise_if(problems)


def _name_problems(name: str, path: str) -> list[str]:
    if NAME_MIN_LEN <= len(name) <= NAME_MAX_LEN:
        return []
    return [f"{path}: length must be between {NAME_MIN_LEN} and {NAME_MAX_LEN}"]


def _raise_if(problems: list[str]) -> None:
    if problems:
        raise ConfigError("invalid config: " + "; ".join(problems), problems)


def _dump(value: Any) -> Any:
    if isinstance(value, PolicyAction):
        out: dict[str, Any] = {"type": value.kind.value}
        if value.bond is not None:
            out["bond"] = value.bond
        return out
    if isinstance(value, enum.Enum):
        return value.value
    if is_dataclass(value):
        return {
            f.name: _dump(getattr(value, f.name))
            for f in fields(value)
            if getattr(value, f.name) is not None
        }
    if isinstance(value, list):
        return [_dump(item) for item in value]
    if isinstance(value, dict):
        return {key: _dump(item) for key, item in value.items()}
    return value


Converter = Callable[[Any, str], Any]


class _Reader:
    def __init__(self, data: Any, where: str) -> None:
        if not isinstance(data, Mapping):
            raise ConfigError(f"{where or 'config'}: expected a table")
        self.data = data
        self.where = where

    def _path(self, key: str) -> str:
        return f"{self.where}.{key}" if self.where else key

    def required(self, key: str, convert: Converter) -> Any:
        value = self.data.get(key)
        if value is None:
            raise ConfigError(f"{self._path(key)}: missing field")
        return convert(value, self._path(key))

    def optional(self, key: str, convert: Converter, default: Any = None) -> Any:
        value = self.data.get(key)
        if value is None:
            return default
        return convert(value, self._path(key))


def _str(value: Any, path: str) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"{path}: expected a string")
    return value


def _bool(value: Any, path: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"{path}: expected a boolean")
    return value


def _float(value: Any, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{path}: expected a number")
    return float(value)


def _uint(bits: int) -> Converter:
    limit = 1 << bits

    def convert(value: Any, path: str) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"{path}: expected an integer")
        if not 0 <= value < limit:
            raise ConfigError(f"{path}: {value} out of range for u{bits}")
        return value

    return convert


def _enum(cls: type[enum.Enum]) -> Converter:
    def convert(value: Any, path: str) -> Any:
        try:
            return cls(value)
        except ValueError:
            choices = ", ".join(member.value for member in cls)
            raise ConfigError(f"{path}: unknown variant {value!r}, expected one of {choices}") from None

    return convert


def _list(item: Converter) -> Converter:
    def convert(value: Any, path: str) -> list[Any]:
        if not isinstance(value, list):
            raise ConfigError(f"{path}: expected an array")
        return [item(entry, f"{path}[{i}]") for i, entry in enumerate(value)]

    return convert


def _map(item: Converter) -> Converter:
    def convert(value: Any, path: str) -> dict[str, Any]:
        if not isinstance(value, Mapping):
            raise ConfigError(f"{path}: expected a table")
        return {_str(key, path): item(entry, f"{path}.{key}") for key, entry in value.items()}

    return convert


def _parse_daemon(data: Any, where: str) -> DaemonConfig:
    r = _Reader(data, where)
    return DaemonConfig(
        socket_path=r.optional("socket_path", _str, DEFAULT_SOCKET_PATH),
        state_path=r.optional("state_path", _str, DEFAULT_STATE_PATH),
        health_interval_ms=r.optional("health_interval_ms", _uint(64), DEFAULT_HEALTH_INTERVAL_MS),
        rollback_timeout_secs=r.optional(
            "rollback_timeout_secs", _uint(64), DEFAULT_ROLLBACK_TIMEOUT_SECS
        ),
        dry_run=r.optional("dry_run", _bool, False),
    )


def _parse_selector(data: Any, where: str) -> InterfaceSelector:
    r = _Reader(data, where)
    return InterfaceSelector(
        name=r.required("name", _str),
        name_pattern=r.optional("name_pattern", _str),
        type=r.optional("type", _enum(InterfaceType)),
        driver=r.optional("driver", _str),
        min_speed_mbps=r.optional("min_speed_mbps", _uint(64), 0),
        weight=r.optional("weight", _uint(8), DEFAULT_SELECTOR_WEIGHT),
    )


def _parse_interfaces(data: Any, where: str) -> InterfaceConfig:
    r = _Reader(data, where)
    return InterfaceConfig(
        selectors=r.required("selectors", _list(_parse_selector)),
        managed=r.required("managed", _list(_str)),
        exclude=r.required("exclude", _list(_str)),
    )


def _parse_bond(data: Any, where: str) -> BondConfig:
    r = _Reader(data, where)
    return BondConfig(
        name=r.required("name", _str),
        mode=r.required("mode", _enum(BondMode)),
        members=r.required("members", _list(_str)),
        weights=r.optional("weights", _list(_uint(8)), []),
        min_active_members=r.optional("min_active_members", _uint(64), DEFAULT_MIN_MEMBERS),
        health_targets=r.optional("health_targets", _list(_str), []),
        policy=r.optional("policy", _str),
    )


def _parse_rule(data: Any, where: str) -> RuleConfig:
    r = _Reader(data, where)
    return RuleConfig(
        src=r.optional("src", _str),
        dst=r.optional("dst", _str),
        proto=r.optional("proto", _str),
        dport=r.optional("dport", _uint(16)),
        sport=r.optional("sport", _uint(16)),
        dscp=r.optional("dscp", _uint(8)),
        fwmark=r.optional("fwmark", _uint(32)),
        app=r.optional("app", _str),
    )


def _parse_action(data: Any, where: str) -> PolicyAction:
    r = _Reader(data, where)
    kind = r.required("type", _enum(PolicyActionKind))
    bond = r.required("bond", _str) if kind in _ACTIONS_WITH_BOND else None
    return PolicyAction(kind=kind, bond=bond)


def _parse_policy(data: Any, where: str) -> PolicyConfig:
    r = _Reader(data, where)
    return PolicyConfig(
        name=r.required("name", _str),
        rules=r.required("rules", _list(_parse_rule)),
        action=r.required("action", _parse_action),
        priority=r.optional("priority", _uint(32), DEFAULT_POLICY_PRIORITY),
    )


def _parse_tunnel(data: Any, where: str) -> TunnelConfig:
    r = _Reader(data, where)
    return TunnelConfig(
        name=r.required("name", _str),
        type=r.required("type", _enum(TunnelType)),
        remote=r.required("remote", _str),
        local_bind=r.optional("local_bind", _str),
        auth_ref=r.optional("auth_ref", _str),
        options=r.optional("options", _map(_str), {}),
        auto_connect=r.optional("auto_connect", _bool, False),
        auto_reconnect=r.optional("auto_reconnect", _bool, True),
        reconnect_interval_secs=r.optional(
            "reconnect_interval_secs", _uint(64), DEFAULT_RECONNECT_INTERVAL_SECS
        ),
    )


def _parse_weights(data: Any, where: str) -> HealthWeights:
    r = _Reader(data, where)
    return HealthWeights(
        rtt=r.required("rtt", _uint(8)),
        jitter=r.required("jitter", _uint(8)),
        loss=r.required("loss", _uint(8)),
        throughput=r.required("throughput", _uint(8)),
        stability=r.required("stability", _uint(8)),
    )


def _parse_schedule(data: Any, where: str) -> ScheduleConfig:
    r = _Reader(data, where)
    return ScheduleConfig(
        cron=r.required("cron", _str),
        duration_mins=r.optional("duration_mins", _uint(32)),
    )


def _parse_profile(data: Any, where: str) -> ProfileConfig:
    r = _Reader(data, where)
    return ProfileConfig(
        mode=r.required("mode", _enum(ProfileMode)),
        interfaces=r.optional("interfaces", _list(_str), []),
        health_weights=r.optional("health_weights", _parse_weights),
        max_jitter_ms=r.optional("max_jitter_ms", _float),
        max_loss_percent=r.optional("max_loss_percent", _float),
        prefer_lowest_rtt=r.optional("prefer_lowest_rtt", _bool, False),
        failover_threshold=r.optional("failover_threshold", _uint(8), DEFAULT_FAILOVER_THRESHOLD),
        activate_on_app=r.optional("activate_on_app", _list(_str), []),
        schedule=r.optional("schedule", _parse_schedule),
    )


def _parse_qdisc(data: Any, where: str) -> QdiscConfig:
    r = _Reader(data, where)
    return QdiscConfig(
        qdisc=r.optional("qdisc", _enum(QdiscType)),
        target_ms=r.optional("target_ms", _uint(32)),
        interval_ms=r.optional("interval_ms", _uint(32)),
        limit=r.optional("limit", _uint(32)),
    )


def _parse_qos(data: Any, where: str) -> QosConfig:
    r = _Reader(data, where)
    return QosConfig(
        enabled=r.optional("enabled", _bool, False),
        qdisc=r.optional("qdisc", _enum(QdiscType), QdiscType.FQ_CODEL),
        ecn=r.optional("ecn", _bool, False),
        dscp_tagging=r.optional("dscp_tagging", _bool, False),
        interface_overrides=r.required("interface_overrides", _map(_parse_qdisc)),
    )


def _parse_logging(data: Any, where: str) -> LoggingConfig:
    r = _Reader(data, where)
    return LoggingConfig(
        level=r.optional("level", _str, DEFAULT_LOG_LEVEL),
        file=r.optional("file", _str),
        journald=r.optional("journald", _bool, False),
        max_size_mb=r.optional("max_size_mb", _uint(64), DEFAULT_MAX_LOG_SIZE_MB),
        max_files=r.optional("max_files", _uint(64), DEFAULT_MAX_LOG_FILES),
    )


def _parse_relay(data: Any, where: str) -> RelayConfig:
    r = _Reader(data, where)
    return RelayConfig(
        server=r.required("server", _str),
        port=r.optional("port", _uint(16), DEFAULT_RELAY_PORT),
        auth_ref=r.optional("auth_ref", _str),
        server_name=r.optional("server_name", _str),
        enabled=r.optional("enabled", _bool, False),
    )