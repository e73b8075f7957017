from datetime import datetime, timedelta, timezone

import pytest

from netfusion.store import (
    StateStore,
    StateStoreError,
    StoredBondState,
    StoredHealthEntry,
)


@pytest.fixture
def store():
    with StateStore.in_memory() as s:
        yield s


def _health(interface="eth0", overall=85.0, timestamp=None):
    return StoredHealthEntry(
        id=0,
        interface=interface,
        overall=overall,
        rtt=95.0,
        jitter=90.0,
        loss=100.0,
        throughput=60.0,
        stability=80.0,
        timestamp=timestamp or datetime.now(timezone.utc),
    )


def test_bond_state_crud(store):
    state = StoredBondState(
        name="test_bond",
        active_members='["eth0"]',
        standby_members='["eth1"]',
        failover_active=False,
        last_failover=None,
        bond_interface="netfusion0",
    )
    store.save_bond_state(state)

    loaded = store.load_bond_state("test_bond")
    assert loaded.name == "test_bond"
    assert loaded.active_members == '["eth0"]'
    assert loaded.bond_interface == "netfusion0"

    store.delete_bond_state("test_bond")
    assert store.load_bond_state("test_bond") is None


def test_bond_state_keeps_failover_time_and_replaces(store):
    when = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
    store.save_bond_state(StoredBondState(name="b", failover_active=True, last_failover=when))
    store.save_bond_state(StoredBondState(name="c"))
    store.save_bond_state(StoredBondState(name="b", failover_active=True, last_failover=when,
                                          bond_interface="netfusion1"))

    loaded = store.load_bond_state("b")
    assert loaded.failover_active is True
    assert loaded.last_failover == when
    assert loaded.bond_interface == "netfusion1"
    assert sorted(s.name for s in store.load_all_bond_states()) == ["b", "c"]


def test_event_log(store):
    store.append_event("interface_up", '{"interface": "eth0"}')
    store.append_event("failover", '{"bond": "test"}')

    events = store.get_recent_events(10)
    assert len(events) == 2
    assert events[0].event_type == "failover"


def test_event_ids_increase_and_limit_applies(store):
    first = store.append_event("a", "{}")
    second = store.append_event("b", "{}")
    assert second > first
    assert [e.id for e in store.get_recent_events(1)] == [second]


def test_trim_events_keeps_newest(store):
    for i in range(5):
        store.append_event(f"e{i}", "{}")
    assert store.trim_events(2) == 3
    assert [e.event_type for e in store.get_recent_events(10)] == ["e4", "e3"]
    assert store.trim_events(10) == 0


def test_health_history(store):
    store.record_health(_health())

    history = store.get_health_history("eth0", 10)
    assert len(history) == 1
    assert abs(history[0].overall - 85.0) < 0.01


def test_health_history_filters_and_orders(store):
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    store.record_health(_health(overall=10.0, timestamp=base))
    store.record_health(_health(overall=20.0, timestamp=base + timedelta(seconds=1)))
    store.record_health(_health(interface="wlan0", overall=30.0, timestamp=base))

    history = store.get_health_history("eth0", 10)
    assert [h.overall for h in history] == [20.0, 10.0]
    assert history[0].timestamp == base + timedelta(seconds=1)
    assert len(store.get_health_history("eth0", 1)) == 1


def test_config_snapshot(store):
    assert store.load_config_snapshot() is None
    store.save_config_snapshot('{"schema_version": 1}')
    store.save_config_snapshot('{"schema_version": 2}')
    assert store.load_config_snapshot() == '{"schema_version": 2}'


def test_open_creates_directory_and_persists(tmp_path):
    path = tmp_path / "nested" / "state.db"
    with StateStore.open(path) as store:
        store.save_config_snapshot("{}")
    assert path.exists()
    with StateStore.open(str(path)) as store:
        assert store.load_config_snapshot() == "{}"


def test_closed_store_raises_state_store_error():
    store = StateStore.in_memory()
    store.close()
    with pytest.raises(StateStoreError, match="database error"):
        store.load_config_snapshot()