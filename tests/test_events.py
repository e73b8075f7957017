import json
from datetime import datetime, timezone

import pytest

from netfusion.events import (
    BondEvent,
    CongestionEvent,
    ConfigEvent,
    ErrorEvent,
    EventKind,
    FailoverEvent,
    HealthEvent,
    InterfaceEvent,
    LossEvent,
    NetfusionEvent,
    ProfileEvent,
    RouteChange,
    RouteEvent,
    TunnelEvent,
)
from netfusion.types import HealthScore

TS = datetime(2024, 5, 6, 7, 8, 9, 250000, tzinfo=timezone.utc)


def health(overall):
    return HealthScore(
        overall=overall, rtt=90.0, jitter=80.0, loss=100.0, throughput=50.0,
        stability=70.0, timestamp=TS,
    )


ALL_EVENTS = [
    NetfusionEvent(EventKind.INTERFACE_UP, InterfaceEvent("eth0", TS, "carrier")),
    NetfusionEvent(EventKind.INTERFACE_DOWN, InterfaceEvent("eth1", TS)),
    NetfusionEvent(EventKind.HEALTH_CHANGED, HealthEvent("eth0", 55.0, health(72.44), TS)),
    NetfusionEvent(EventKind.PACKET_LOSS_SPIKE, LossEvent("wlan0", 12.5, 3, TS)),
    NetfusionEvent(EventKind.CONGESTION_DETECTED, CongestionEvent("eth0", 17, 4.5, TS)),
    NetfusionEvent(
        EventKind.FAILOVER_TRIGGERED,
        FailoverEvent("bond0", ["eth0"], ["eth1", "eth2"], "link down", TS),
    ),
    NetfusionEvent(
        EventKind.FAILOVER_RECOVERED,
        FailoverEvent("bond0", ["eth1"], ["eth0"], "recovered", TS),
    ),
    NetfusionEvent(EventKind.TUNNEL_CONNECTED, TunnelEvent("wg0", "example.com:51820", None, TS)),
    NetfusionEvent(
        EventKind.TUNNEL_DISCONNECTED, TunnelEvent("wg0", "example.com:51820", "timeout", TS)
    ),
    NetfusionEvent(
        EventKind.ROUTE_CHANGED,
        RouteEvent(2, [RouteChange("add", "eth0", "10.1.0.0/16", "10.0.0.1")], TS),
    ),
    NetfusionEvent(EventKind.BOND_MEMBERSHIP_CHANGED, BondEvent("bond0", ["eth3"], [], TS)),
    NetfusionEvent(EventKind.CONFIG_RELOADED, ConfigEvent("/etc/netfusion/netfusion.toml", [], TS)),
    NetfusionEvent(EventKind.SUBSYSTEM_ERROR, ErrorEvent("routing", "table full", False, TS)),
    NetfusionEvent(EventKind.PROFILE_ACTIVATED, ProfileEvent("gaming", "manual", TS)),
    NetfusionEvent(EventKind.PROFILE_DEACTIVATED, ProfileEvent("gaming", "schedule", TS)),
]


@pytest.mark.parametrize("event", ALL_EVENTS, ids=lambda e: e.kind.value)
def test_round_trip_through_json(event):
    data = json.loads(json.dumps(event.to_dict()))
    assert NetfusionEvent.from_dict(data) == event


@pytest.mark.parametrize("event", ALL_EVENTS, ids=lambda e: e.kind.value)
def test_type_tag_matches_kind(event):
    rebuilt = NetfusionEvent(event.kind, event.payload)
    assert rebuilt.to_dict()["type"] == event.kind.value


@pytest.mark.parametrize("event", ALL_EVENTS, ids=lambda e: e.kind.value)
def test_timestamp_comes_from_payload(event):
    assert event.timestamp() == TS


@pytest.mark.parametrize("event", ALL_EVENTS, ids=lambda e: e.kind.value)
def test_description_names_its_subject(event):
    rebuilt = NetfusionEvent(event.kind, event.payload)
    payload = rebuilt.payload
    subject = next(
        getattr(payload, attr)
        for attr in ("interface", "bond", "tunnel", "source", "subsystem", "profile", "rule_count")
        if hasattr(payload, attr)
    )
    assert str(subject) in rebuilt.description()


def test_wire_tags_fixed_by_format():
    assert ALL_EVENTS[0].to_dict()["type"] == "interface_up"
    assert ALL_EVENTS[10].to_dict()["type"] == "bond_membership_changed"


def test_interface_descriptions():
    assert ALL_EVENTS[0].description() == "Interface eth0 is up"
    assert ALL_EVENTS[1].description() == "Interface eth1 is down"


def test_health_description_one_decimal():
    assert ALL_EVENTS[2].description() == "Interface eth0 health: 72.4"


def test_loss_description():
    assert ALL_EVENTS[3].description() == "Packet loss spike on wlan0: 12.5%"


def test_failover_descriptions_join_members():
    assert ALL_EVENTS[5].description() == "Failover on bond0 -> eth1, eth2"
    assert ALL_EVENTS[6].description() == "Failover recovered on bond0: eth0"


def test_profile_and_error_descriptions():
    assert ALL_EVENTS[13].description() == "Profile 'gaming' activated"
    assert ALL_EVENTS[12].description() == "Error in routing: table full"


def test_payload_fields_are_flattened():
    data = ALL_EVENTS[3].to_dict()
    assert data["interface"] == "wlan0"
    assert data["loss_percent"] == 12.5
    assert "payload" not in data


def test_nested_health_score_serialized():
    data = ALL_EVENTS[2].to_dict()
    assert data["new_score"]["overall"] == 72.44


def test_mismatched_payload_rejected():
    with pytest.raises(TypeError):
        NetfusionEvent(EventKind.INTERFACE_UP, ProfileEvent("gaming", "manual", TS))


def test_unknown_type_rejected():
    data = ALL_EVENTS[0].to_dict()
    data["type"] = "solar_flare"
    with pytest.raises(ValueError):
        NetfusionEvent.from_dict(data)


def test_missing_type_rejected():
    data = ALL_EVENTS[0].to_dict()
    del data["type"]
    with pytest.raises(ValueError):
        NetfusionEvent.from_dict(data)


def test_missing_payload_field_rejected():
    data = ALL_EVENTS[12].to_dict()
    del data["message"]
    with pytest.raises(ValueError):
        NetfusionEvent.from_dict(data)


def test_optional_details_may_be_absent():
    data = ALL_EVENTS[1].to_dict()
    del data["details"]
    event = NetfusionEvent.from_dict(data)
    assert event.payload.details is None
    assert event == ALL_EVENTS[1]