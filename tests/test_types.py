import json
from datetime import datetime, timezone

import pytest

from netfusion.config import BondMode, InterfaceType
from netfusion.types import (
    BondState,
    CellularInfo,
    Duplex,
    HealthScore,
    InterfaceInfo,
    InterfaceStats,
    IpInfo,
    LinkState,
    SystemStatus,
    TunnelState,
    WirelessInfo,
)

TS = datetime(2024, 1, 2, 3, 4, 5, 123456, tzinfo=timezone.utc)


def score(overall=80.0, **kw):
    base = dict(rtt=90.0, jitter=70.0, loss=100.0, throughput=60.0, stability=80.0)
    base.update(kw)
    return HealthScore(overall=overall, timestamp=TS, **base)


def test_compute_equal_components_gives_that_value():
    h = HealthScore.compute(50.0, 50.0, 50.0, 50.0, 50.0, 30, 20, 25, 15, 10)
    assert h.overall == pytest.approx(50.0)
    assert h.failover_candidate is False


def test_compute_zero_weights_keeps_raw_components():
    h = HealthScore.compute(150.0, -5.0, 40.0, 40.0, 40.0, 0, 0, 0, 0, 0)
    assert h.overall == 0.0
    assert h.rtt == 150.0
    assert h.jitter == -5.0


def test_compute_clamps_components():
    h = HealthScore.compute(150.0, -5.0, 40.0, 40.0, 40.0, 1, 1, 1, 1, 1)
    assert h.rtt == 100.0
    assert h.jitter == 0.0
    assert 0.0 <= h.overall <= 100.0


def test_compute_overall_within_component_range():
    values = (95.0, 90.0, 100.0, 60.0, 80.0)
    h = HealthScore.compute(*values, 40, 30, 15, 5, 10)
    assert min(values) <= h.overall <= max(values)


def test_compute_uses_only_weighted_component():
    h = HealthScore.compute(10.0, 90.0, 90.0, 90.0, 90.0, 7, 0, 0, 0, 0)
    assert h.overall == pytest.approx(10.0)


def test_ema_alpha_one_and_zero():
    current = score(overall=90.0, rtt=10.0)
    previous = score(overall=30.0, rtt=70.0)
    assert current.ema(previous, 1.0).overall == pytest.approx(90.0)
    assert current.ema(previous, 0.0).overall == pytest.approx(30.0)
    assert current.ema(previous, 0.0).rtt == pytest.approx(70.0)


def test_ema_alpha_is_clamped():
    current = score(overall=90.0)
    previous = score(overall=30.0)
    assert current.ema(previous, 5.0).overall == pytest.approx(current.ema(previous, 1.0).overall)
    assert current.ema(previous, -1.0).overall == pytest.approx(previous.overall)


def test_ema_midpoint_between_scores():
    current = score(overall=90.0)
    previous = score(overall=30.0)
    blended = current.ema(previous, 0.5).overall
    assert 30.0 < blended < 90.0
    assert blended - 30.0 == pytest.approx(90.0 - blended)


def test_ema_keeps_failover_flag_of_current():
    current = score()
    current.failover_candidate = True
    assert current.ema(score(), 0.3).failover_candidate is True


def test_exceeds_hysteresis():
    a = score(overall=80.0)
    assert a.exceeds_hysteresis(score(overall=60.0), 15) is True
    assert a.exceeds_hysteresis(score(overall=70.0), 15) is False
    assert a.exceeds_hysteresis(score(overall=65.0), 15) is False


def test_health_round_trip_through_json():
    h = score()
    assert HealthScore.from_dict(json.loads(json.dumps(h.to_dict()))) == h


def test_health_from_dict_missing_field():
    data = score().to_dict()
    del data["overall"]
    with pytest.raises(ValueError):
        HealthScore.from_dict(data)


def full_interface():
    return InterfaceInfo(
        name="wg0",
        if_type=InterfaceType.WIRE_GUARD,
        mac="00:00:5e:00:53:01",
        driver="wireguard",
        speed_mbps=1000,
        duplex=Duplex.FULL,
        mtu=1420,
        addresses=[IpInfo(cidr="10.0.0.1/24", dhcp=False)],
        gateway="10.0.0.254",
        dns_servers=["10.0.0.53"],
        link_state=LinkState.UP,
        managed=True,
        nm_managed=False,
        wireless=WirelessInfo(signal_dbm=-60, ssid="lab", tx_rate_mbps=150.0),
        cellular=CellularInfo(rsrp=-95, network_type="LTE"),
        stats=InterfaceStats(rx_bytes=10, tx_bytes=20, rx_errors=1),
        health=score(),
        last_seen=TS,
    )


def test_interface_round_trip():
    iface = full_interface()
    assert InterfaceInfo.from_dict(json.loads(json.dumps(iface.to_dict()))) == iface


def test_interface_wire_names():
    data = full_interface().to_dict()
    assert data["if_type"] == "wire_guard"
    assert data["link_state"] == "up"
    assert data["duplex"] == "full"


def test_interface_none_fields_serialize_as_null_and_load_back():
    iface = InterfaceInfo(name="eth0", if_type=InterfaceType.ETHERNET)
    data = iface.to_dict()
    assert data["mac"] is None
    assert data["health"] is None
    assert InterfaceInfo.from_dict(data) == iface


def test_interface_missing_required_field():
    data = full_interface().to_dict()
    del data["mtu"]
    with pytest.raises(ValueError):
        InterfaceInfo.from_dict(data)


def test_interface_unknown_type():
    data = full_interface().to_dict()
    data["if_type"] = "carrier_pigeon"
    with pytest.raises(ValueError):
        InterfaceInfo.from_dict(data)


def test_bond_state_round_trip():
    bond = BondState(
        name="netfusion0",
        mode=BondMode.ACTIVE_BACKUP,
        active_members=["eth0"],
        standby_members=["eth1"],
        failed_members=[],
        health=score(),
        failover_active=True,
        last_failover=TS,
        bond_interface="netfusion0",
    )
    data = bond.to_dict()
    assert data["mode"] == "active_backup"
    assert BondState.from_dict(json.loads(json.dumps(data))) == bond


def test_tunnel_state_round_trip():
    tunnel = TunnelState(
        name="wg0",
        connected=True,
        remote="example.com:51820",
        interface="wg0",
        connected_since=TS,
        tx_bytes=5,
        rx_bytes=7,
        reconnect_count=2,
        last_error=None,
    )
    assert TunnelState.from_dict(tunnel.to_dict()) == tunnel


def test_system_status_round_trip():
    status = SystemStatus(
        total_interfaces=3,
        active_bonds=1,
        connected_tunnels=0,
        active_profile="gaming",
        health=score(),
        failover_active=False,
        dry_run=True,
        uptime_secs=42,
        timestamp=TS,
    )
    assert SystemStatus.from_dict(json.loads(json.dumps(status.to_dict()))) == status


def test_system_status_rejects_non_mapping():
    with pytest.raises(ValueError):
        SystemStatus.from_dict(["not", "a", "mapping"])