"""Daemon side of the Unix-socket protocol: accepts clients and answers requests."""

from __future__ import annotations

import asyncio
import logging
import struct
import time
from collections.abc import Iterable
from contextlib import suppress
from datetime import datetime, timezone
from pathlib import Path

from netfusion.config import ConfigError, NetfusionConfig
from netfusion.ipc import (
    IPC_PROTOCOL_VERSION,
    DaemonRequest,
    DaemonResponse,
    DecodeError,
    RequestKind,
    ResponseData,
    ResponseKind,
    WireMessage,
    decode_request,
    encode,
)
from netfusion.types import InterfaceInfo, SystemStatus

log = logging.getLogger(__name__)

DEFAULT_SOCKET_PATH = "/run/netfusion/netfusion.sock"
MAX_FRAME_SIZE = 10 * 1024 * 1024

_HEADER = struct.Struct(">I")


def _ok(kind: ResponseKind | None = None, value: object = None) -> DaemonResponse:
    if kind is None:
        return DaemonResponse.ok(None)
    return DaemonResponse.ok(ResponseData(kind, value))


class IpcServer:
    """Serves daemon state to clients over a Unix domain socket."""

    def __init__(
        self,
        socket_path: str | Path,
        interfaces: Iterable[InterfaceInfo] | None = None,
        config: NetfusionConfig | None = None,
    ) -> None:
        self.socket_path = Path(socket_path)
        self.interfaces: list[InterfaceInfo] = list(interfaces or [])
        self.config = config if config is not None else NetfusionConfig()
        self._started = time.monotonic()

    def _find(self, name: str) -> InterfaceInfo | None:
        return next((iface for iface in self.interfaces if iface.name == name), None)

    def _validated(self, config: NetfusionConfig) -> str | None:
        try:
            config.daemon.validate()
        except (ConfigError, ValueError) as exc:
            return f"Invalid config: {exc}"
        return None

    def process_request(self, request: DaemonRequest) -> DaemonResponse:
        """Answer one request from the current state."""
        match request.kind:
            case RequestKind.GET_STATUS:
                status = SystemStatus(
                    total_interfaces=len(self.interfaces),
                    active_bonds=0,
                    connected_tunnels=0,
                    active_profile=None,
                    health=None,
                    failover_active=False,
                    dry_run=False,
                    uptime_secs=int(time.monotonic() - self._started),
                    timestamp=datetime.now(timezone.utc),
                )
                return _ok(ResponseKind.STATUS, status)
            case RequestKind.GET_INTERFACES:
                return _ok(ResponseKind.INTERFACES, list(self.interfaces))
            case RequestKind.GET_INTERFACE:
                iface = self._find(request.name)
                if iface is None:
                    return DaemonResponse.error(f"Interface '{request.name}' not found", False)
                return _ok(ResponseKind.INTERFACE, iface)
            case RequestKind.GET_CONFIG:
                return _ok(ResponseKind.CONFIG, self.config)
            case RequestKind.APPLY_CONFIG:
                problem = self._validated(request.config)
                if problem is not None:
                    return DaemonResponse.error(problem, True)
                self.config = request.config
                log.info("Configuration applied")
                return _ok(ResponseKind.EMPTY)
            case RequestKind.DRY_RUN_CONFIG:
                problem = self._validated(request.config)
                if problem is not None:
                    return DaemonResponse.error(problem, True)
                return _ok(ResponseKind.EMPTY)
            case RequestKind.RESCAN_INTERFACES:
                return _ok(ResponseKind.EMPTY)
            case RequestKind.GET_EVENTS:
                return _ok(ResponseKind.EVENTS, [])
            case RequestKind.GET_BONDS:
                return _ok(ResponseKind.BONDS, [])
            case RequestKind.GET_BOND:
                return _ok()
            case RequestKind.GET_TUNNELS:
                return _ok(ResponseKind.TUNNELS, [])
            case RequestKind.SUBSCRIBE_EVENTS | RequestKind.UNSUBSCRIBE_EVENTS:
                return _ok(ResponseKind.EMPTY)
            case RequestKind.ACTIVATE_PROFILE:
                log.info("Activating profile: %s", request.name)
                return _ok(ResponseKind.PROFILE, request.name)
            case RequestKind.DEACTIVATE_PROFILE | RequestKind.GET_ACTIVE_PROFILE:
                return _ok(ResponseKind.PROFILE, None)
            case RequestKind.GET_HEALTH:
                iface = self._find(request.interface)
                if iface is None:
                    return DaemonResponse.error(
                        f"Interface '{request.interface}' not found", False
                    )
                if iface.health is None:
                    return DaemonResponse.error("No health data available", False)
                return _ok(ResponseKind.HEALTH, iface.health)
            case RequestKind.GET_ALL_HEALTH:
                pairs = [(i.name, i.health) for i in self.interfaces if i.health is not None]
                return _ok(ResponseKind.ALL_HEALTH, pairs)
            case RequestKind.CREATE_BOND:
                return DaemonResponse.error("Bond creation is not supported by this daemon", True)
            case RequestKind.DELETE_BOND:
                return DaemonResponse.error("Bond deletion is not supported by this daemon", True)
            case RequestKind.EMERGENCY_ROLLBACK:
                log.warning("Emergency rollback requested")
                return _ok(ResponseKind.EMPTY)
            case RequestKind.SHUTDOWN:
                log.info("Shutdown requested via IPC")
                return _ok(ResponseKind.EMPTY)
        raise AssertionError(f"unhandled request kind {request.kind}")

    async def handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Answer framed requests from one client until it disconnects."""
        try:
            while True:
                try:
                    header = await reader.readexactly(_HEADER.size)
                except asyncio.IncompleteReadError:
                    return
                (size,) = _HEADER.unpack(header)
                if size > MAX_FRAME_SIZE:
                    log.warning("IPC frame too large: %d bytes", size)
                    return
                body = await reader.readexactly(size)

                try:
                    message = decode_request(body)
                except DecodeError as exc:
                    log.warning("Failed to decode IPC request: %s", exc)
                    continue

                if message.version != IPC_PROTOCOL_VERSION:
                    log.warning(
                        "Protocol version mismatch: client=%s, server=%s",
                        message.version,
                        IPC_PROTOCOL_VERSION,
                    )

                response = self.process_request(message.payload)
                frame = encode(WireMessage.new(response))
                writer.write(_HEADER.pack(len(frame)) + frame)
                await writer.drain()
        finally:
            writer.close()
            with suppress(OSError):
                await writer.wait_closed()

    async def _serve(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            await self.handle_connection(reader, writer)
        except (OSError, asyncio.IncompleteReadError) as exc:
            log.error("IPC connection error: %s", exc)

    async def run(self) -> None:
        """Listen on the socket and serve clients until cancelled."""
        path = self.socket_path
        if path.exists() or path.is_symlink():
            with suppress(OSError):
                path.unlink()
        with suppress(OSError):
            path.parent.mkdir(parents=True, exist_ok=True)

        server = await asyncio.start_unix_server(self._serve, path=str(path))
        log.info("IPC server listening on %s", path)
        async with server:
            await server.serve_forever()