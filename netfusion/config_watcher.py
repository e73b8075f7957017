"""Live reload of the configuration file when it changes on disk."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from netfusion.config import ConfigError, NetfusionConfig
from netfusion.events import NetfusionEvent
from netfusion.types import _format_timestamp

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/etc/netfusion/netfusion.toml"

EventSink = Callable[[NetfusionEvent], None]


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, watcher: ConfigWatcher) -> None:
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in ("modified", "created"):
            return
        try:
            self._watcher.reload()
        except ConfigError as exc:
            log.error("Config reload failed: %s", exc)


class ConfigWatcher:
    """Watches the configuration file's directory and reloads it on change."""

    def __init__(
        self,
        config_path: str | Path,
        config: NetfusionConfig,
        on_event: EventSink | None = None,
    ) -> None:
        self.config_path = Path(config_path)
        self._config = config
        self._on_event = on_event
        self._lock = threading.Lock()
        self._observer: Observer | None = None

    @property
    def config(self) -> NetfusionConfig:
        with self._lock:
            return self._config

    def start(self) -> bool:
        """Begin watching; returns False when the file does not exist yet."""
        if not self.config_path.exists():
            log.info(
                "Config file not found at %s, watching will start when file is created",
                self.config_path,
            )
            return False
        observer = Observer()
        observer.schedule(_ChangeHandler(self), str(self.config_path.parent), recursive=False)
        observer.daemon = True
        observer.start()
        self._observer = observer
        log.info("Watching config directory for changes to %s", self.config_path)
        return True

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join()
        self._observer = None

    def __enter__(self) -> ConfigWatcher:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def reload(self) -> NetfusionConfig:
        """Read, parse and validate the file, then make it the active config."""
        log.info("Config file changed, reloading: %s", self.config_path)
        try:
            content = self.config_path.read_text()
        except OSError as exc:
            raise ConfigError(f"failed to read config: {exc}") from exc

        try:
            new_config = NetfusionConfig.from_toml(content)
        except (ConfigError, ValueError) as exc:
            raise ConfigError(f"failed to parse config: {exc}") from exc

        try:
            new_config.daemon.validate()
        except (ConfigError, ValueError) as exc:
            raise ConfigError(f"invalid config: {exc}") from exc

        with self._lock:
            self._config = new_config
        log.info("Config reloaded successfully")

        if self._on_event is not None:
            self._on_event(
                NetfusionEvent.from_dict(
                    {
                        "type": "config_reloaded",
                        "timestamp": _format_timestamp(datetime.now(timezone.utc)),
                        "source": str(self.config_path),
                        "errors": [],
                    }
                )
            )
        return new_config