"""SQLite-backed persistence of bond state, events, health history and config."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from netfusion.types import _as_utc

log = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS bond_state (
    name TEXT PRIMARY KEY,
    active_members TEXT NOT NULL DEFAULT '[]',
    standby_members TEXT NOT NULL DEFAULT '[]',
    failover_active INTEGER NOT NULL DEFAULT 0,
    last_failover TEXT,
    bond_interface TEXT
);

CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type TEXT NOT NULL,
    data TEXT NOT NULL,
    timestamp TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_events_type ON events(event_type);
CREATE INDEX IF NOT EXISTS idx_events_timestamp ON events(timestamp);

CREATE TABLE IF NOT EXISTS health_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    interface TEXT NOT NULL,
    overall REAL NOT NULL,
    rtt REAL NOT NULL,
    jitter REAL NOT NULL,
    loss REAL NOT NULL,
    throughput REAL NOT NULL,
    stability REAL NOT NULL,
    timestamp TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_health_interface ON health_history(interface);
CREATE INDEX IF NOT EXISTS idx_health_timestamp ON health_history(timestamp);

CREATE TABLE IF NOT EXISTS config_snapshot (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    config TEXT NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

_BOND_COLUMNS = (
    "name, active_members, standby_members, failover_active, last_failover, bond_interface"
)


class StateStoreError(Exception):
    """The state database could not be read or written."""


@dataclass
class StoredBondState:
    """Persisted bond state; member lists are JSON arrays."""

    name: str
    active_members: str = "[]"
    standby_members: str = "[]"
    failover_active: bool = False
    last_failover: datetime | None = None
    bond_interface: str | None = None


@dataclass
class StoredEvent:
    id: int
    event_type: str
    data: str
    timestamp: datetime


@dataclass
class StoredHealthEntry:
    id: int
    interface: str
    overall: float
    rtt: float
    jitter: float
    loss: float
    throughput: float
    stability: float
    timestamp: datetime


def _now_text() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_text(value: datetime) -> str:
    return _as_utc(value).isoformat()


def _parse(text: str | None) -> datetime | None:
    if text is None:
        return None
    try:
        return _as_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


@contextmanager
def _db_errors() -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        raise StateStoreError(f"database error: {exc}") from exc


def _bond_from_row(row: tuple) -> StoredBondState:
    name, active, standby, failover, last_failover, bond_interface = row
    return StoredBondState(
        name=name,
        active_members=active,
        standby_members=standby,
        failover_active=failover != 0,
        last_failover=_parse(last_failover),
        bond_interface=bond_interface,
    )


class StateStore:
    """Persistent daemon state kept in an SQLite database."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._conn = connection

    @classmethod
    def open(cls, path: str | Path) -> StateStore:
        """Open or create the database at path, creating its directory if needed."""
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            pass
        with _db_errors():
            conn = sqlite3.connect(path, isolation_level=None)
            try:
                conn.executescript("PRAGMA journal_mode=WAL; PRAGMA synchronous=NORMAL;")
            except sqlite3.Error:
                conn.close()
                raise
        store = cls(conn)
        store._migrate()
        log.info("State store opened at %s", path)
        return store

    @classmethod
    def in_memory(cls) -> StateStore:
        """Open a throwaway database held in memory."""
        with _db_errors():
            conn = sqlite3.connect(":memory:", isolation_level=None)
        store = cls(conn)
        store._migrate()
        return store

    def _migrate(self) -> None:
        with _db_errors():
            self._conn.executescript(_SCHEMA)
        log.debug("State store migrations complete")

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> StateStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def save_bond_state(self, state: StoredBondState) -> None:
        with _db_errors():
            self._conn.execute(
                f"INSERT OR REPLACE INTO bond_state ({_BOND_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    state.name,
                    state.active_members,
                    state.standby_members,
                    int(state.failover_active),
                    None if state.last_failover is None else _to_text(state.last_failover),
                    state.bond_interface,
                ),
            )

    def load_bond_state(self, name: str) -> StoredBondState | None:
        with _db_errors():
            row = self._conn.execute(
                f"SELECT {_BOND_COLUMNS} FROM bond_state WHERE name = ?", (name,)
            ).fetchone()
        return None if row is None else _bond_from_row(row)

    def load_all_bond_states(self) -> list[StoredBondState]:
        with _db_errors():
            rows = self._conn.execute(f"SELECT {_BOND_COLUMNS} FROM bond_state").fetchall()
        return [_bond_from_row(row) for row in rows]

    def delete_bond_state(self, name: str) -> None:
        with _db_errors():
            self._conn.execute("DELETE FROM bond_state WHERE name = ?", (name,))

    def append_event(self, event_type: str, data: str) -> int:
        """Append an event and return its row id."""
        with _db_errors():
            cursor = self._conn.execute(
                "INSERT INTO events (event_type, data, timestamp) VALUES (?, ?, ?)",
                (event_type, data, _now_text()),
            )
        return cursor.lastrowid

    def get_recent_events(self, limit: int) -> list[StoredEvent]:
        """The most recent events, newest first."""
        with _db_errors():
            rows = self._conn.execute(
                "SELECT id, event_type, data, timestamp FROM events "
                "ORDER BY timestamp DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [
            StoredEvent(
                id=row_id,
                event_type=event_type,
                data=data,
                timestamp=_parse(timestamp) or _EPOCH,
            )
            for row_id, event_type, data, timestamp in rows
        ]

    def trim_events(self, max_count: int) -> int:
        """Delete the oldest events beyond max_count; return how many went."""
        with _db_errors():
            (count,) = self._conn.execute("SELECT COUNT(*) FROM events").fetchone()
            excess = max(0, count - max_count)
            cursor = self._conn.execute(
                "DELETE FROM events WHERE id IN ("
                "SELECT id FROM events ORDER BY timestamp ASC, id ASC LIMIT ?)",
                (excess,),
            )
        return cursor.rowcount

    def record_health(self, entry: StoredHealthEntry) -> int:
        """Store a health score sample and return its row id."""
        with _db_errors():
            cursor = self._conn.execute(
                "INSERT INTO health_history "
                "(interface, overall, rtt, jitter, loss, throughput, stability, timestamp) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    entry.interface,
                    entry.overall,
                    entry.rtt,
                    entry.jitter,
                    entry.loss,
                    entry.throughput,
                    entry.stability,
                    _to_text(entry.timestamp),
                ),
            )
        return cursor.lastrowid

    def get_health_history(self, interface: str, max_entries: int) -> list[StoredHealthEntry]:
        """Health samples for an interface, newest first."""
        with _db_errors():
            rows = self._conn.execute(
                "SELECT id, interface, overall, rtt, jitter, loss, throughput, stability, timestamp "
                "FROM health_history WHERE interface = ? "
                "ORDER BY timestamp DESC, id DESC LIMIT ?",
                (interface, max_entries),
            ).fetchall()
        return [
            StoredHealthEntry(*row[:8], timestamp=_parse(row[8]) or _EPOCH) for row in rows
        ]

    def save_config_snapshot(self, config_json: str) -> None:
        with _db_errors():
            self._conn.execute(
                "INSERT OR REPLACE INTO config_snapshot (id, config, applied_at) VALUES (1, ?, ?)",
                (config_json, _now_text()),
            )

    def load_config_snapshot(self) -> str | None:
        with _db_errors():
            row = self._conn.execute("SELECT config FROM config_snapshot WHERE id = 1").fetchone()
        return None if row is None else row[0]