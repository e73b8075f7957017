# netfusion

Building blocks for a network aggregation daemon that combines several
uplinks (Ethernet, Wi-Fi, cellular, tethering, tunnels) into bond groups,
scores their health and exposes its state to a terminal front end over a
Unix-socket IPC channel.

## What is inside

| Module | Purpose |
| --- | --- |
| `netfusion.config` | The configuration schema (`NetfusionConfig` and its sections), loaded from TOML or a dict and validated. Errors raise `ConfigError`. |
| `netfusion.relay_config` | `RelayServerConfig`: settings for a relay server, loaded from a TOML file. |
| `netfusion.types` | Runtime records: `InterfaceInfo`, `HealthScore`, `BondState`, `TunnelState`, `SystemStatus`, with `to_dict` / `from_dict`. |
| `netfusion.events` | `NetfusionEvent` (an `EventKind` plus its payload), with `timestamp()` and a one-line `description()`. |
| `netfusion.ipc` | `DaemonRequest`, `DaemonResponse`, `ResponseData`, `DaemonPush` and the versioned `WireMessage` envelope, with `encode`, `decode_request`, `decode_response` and `decode_push`. |
| `netfusion.store` | `StateStore`, an SQLite store for bond state, the event log, health history and a config snapshot. |
| `netfusion.config_watcher` | `ConfigWatcher`, which reloads and validates the config file when it changes on disk. |
| `netfusion.ipc_server` | `IpcServer`, the daemon side of the Unix socket. |
| `netfusion.ipc_client` | `IpcClient`, the asyncio client side of the Unix socket. |
| `netfusion.app` | `App`, the state model behind a terminal UI: tabs, interface selection, log scrolling and health history. |

## Configuration

A configuration file must carry `schema_version`, `daemon`, `interfaces`,
`bonds`, `policies`, `tunnels` and `profiles`; `qos`, `logging` and `relay`
are optional. Within `daemon`, every key has a default.

```toml
schema_version = 1
policies = []
tunnels = []
profiles = {}

[daemon]
socket_path = "/run/netfusion/netfusion.sock"
state_path = "/var/lib/netfusion/state.db"

[interfaces]
selectors = []
managed = []
exclude = ["lo"]

[[bonds]]
name = "netfusion0"
mode = "active_backup"
members = ["eth0", "wlan0"]
```

```python
from netfusion.config import NetfusionConfig

with open("/etc/netfusion/netfusion.toml", encoding="utf-8") as fh:
    config = NetfusionConfig.from_toml(fh.read())

config.validate()          # raises ConfigError listing every problem
print(config.bonds[0].mode)
```

`NetfusionConfig()` with no arguments gives the defaults, and
`to_dict()` turns a configuration back into plain data.

## Health scores

A health score combines RTT, jitter, loss, throughput and stability
components (each clamped to 0–100) using weights that need not sum to 100:

```python
from netfusion.config import HealthWeights
from netfusion.types import HealthScore

w = HealthWeights.gaming()
score = HealthScore.compute(90.0, 80.0, 100.0, 50.0, 70.0,
                            w.rtt, w.jitter, w.loss, w.throughput, w.stability)
smoothed = score.ema(score, 0.3)
changed = score.exceeds_hysteresis(smoothed, 15)
```

## Persistent state

```python
from netfusion.store import StateStore

with StateStore.in_memory() as store:
    store.append_event("interface_up", '{"interface": "eth0"}')
    for event in store.get_recent_events(10):   # newest first
        print(event.event_type, event.timestamp)
```

`StateStore.open(path)` creates the database and its directory on disk.
Database failures raise `StateStoreError`.

## IPC

Each frame is a 4-byte big-endian length followed by a JSON-encoded
`WireMessage`. Frames over 10 MiB make the server drop the connection.

```python
import asyncio
from netfusion.ipc_server import IpcServer
from netfusion.ipc_client import IpcClient

async def main():
    server = IpcServer("/tmp/netfusion.sock")
    task = asyncio.create_task(server.run())
    await asyncio.sleep(0.1)
    async with await IpcClient.connect("/tmp/netfusion.sock") as client:
        status = await client.get_status()
        print(status.total_interfaces, status.uptime_secs)
    task.cancel()

asyncio.run(main())
```

`IpcServer` answers from the interface list and configuration it holds.
`IpcClient.request` returns any `DaemonResponse`; the `get_*` helpers
raise `IpcError` on an error response or an unexpected data kind.

## Reloading the configuration

```python
from netfusion.config import NetfusionConfig
from netfusion.config_watcher import ConfigWatcher

watcher = ConfigWatcher("/etc/netfusion/netfusion.toml", NetfusionConfig(),
                        on_event=lambda e: print(e.description()))
watcher.start()     # False if the file does not exist yet
...
watcher.stop()
```

On each change the file is read, parsed and its daemon section validated.
The new configuration is then available as `watcher.config`, and a
`config_reloaded` event is passed to `on_event`. `reload()` does the same
on demand and raises `ConfigError` on failure.

## What this package does not do

- It does not create, configure or monitor tunnels. It does not discover or
  scan network interfaces. It does not change routing or bonding in the
  kernel. `IpcServer` returns empty bond, tunnel and event lists, and it
  answers bond creation and deletion with an error.
- It installs no commands. There is no daemon executable, no terminal UI
  program and no relay server, only the pieces above to build them from.
  `RelayServerConfig` only describes relay settings.

## Requirements

Python 3.11 or later. The IPC modules need Unix domain sockets (POSIX).
`watchdog` is used by the config watcher.