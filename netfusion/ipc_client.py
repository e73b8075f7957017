"""Client side of the daemon's Unix-socket protocol."""

from __future__ import annotations

import asyncio
import struct
from pathlib import Path
from typing import Any

from netfusion.ipc import (
    DaemonRequest,
    DaemonResponse,
    DecodeError,
    RequestKind,
    ResponseKind,
    WireMessage,
    decode_response,
    encode,
)
from netfusion.types import BondState, InterfaceInfo, SystemStatus, TunnelState

DEFAULT_SOCKET_PATH = "/run/netfusion/netfusion.sock"

_HEADER = struct.Struct(">I")


class IpcError(Exception):
    """Talking to the daemon failed: connection, I/O, encoding or server error."""


class IpcClient:
    """A connection to the daemon; each request waits for its response frame."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer

    @classmethod
    async def connect(cls, socket_path: str | Path = DEFAULT_SOCKET_PATH) -> IpcClient:
        if not Path(socket_path).exists():
            raise IpcError(
                f"connection failed: daemon socket not found at {socket_path}"
            )
        try:
            reader, writer = await asyncio.open_unix_connection(str(socket_path))
        except OSError as exc:
            raise IpcError(f"connection failed: {exc}") from exc
        return cls(reader, writer)

    async def close(self) -> None:
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError:
            pass

    async def __aenter__(self) -> IpcClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def request(self, request: DaemonRequest) -> DaemonResponse:
        """Send one request and return the daemon's response, error responses included."""
        try:
            frame = encode(WireMessage.new(request))
        except (TypeError, ValueError) as exc:
            raise IpcError(f"encoding error: {exc}") from exc

        try:
            self._writer.write(_HEADER.pack(len(frame)) + frame)
            await self._writer.drain()
            (size,) = _HEADER.unpack(await self._reader.readexactly(_HEADER.size))
            body = await self._reader.readexactly(size)
        except (OSError, asyncio.IncompleteReadError) as exc:
            raise IpcError(f"I/O error: {exc}") from exc

        try:
            return decode_response(body).payload
        except DecodeError as exc:
            raise IpcError(f"encoding error: {exc}") from exc

    async def _fetch(self, kind: RequestKind, expected: ResponseKind) -> Any:
        response = await self.request(DaemonRequest(kind))
        if response.is_error:
            raise IpcError(f"server error: {response.message}")
        if response.data is None or response.data.kind is not expected:
            raise IpcError(f"server error: unexpected response type for {kind.value}")
        return response.data.value

    async def get_status(self) -> SystemStatus:
        return await self._fetch(RequestKind.GET_STATUS, ResponseKind.STATUS)

    async def get_interfaces(self) -> list[InterfaceInfo]:
        return await self._fetch(RequestKind.GET_INTERFACES, ResponseKind.INTERFACES)

    async def get_bonds(self) -> list[BondState]:
        return await self._fetch(RequestKind.GET_BONDS, ResponseKind.BONDS)

    async def get_tunnels(self) -> list[TunnelState]:
        return await self._fetch(RequestKind.GET_TUNNELS, ResponseKind.TUNNELS)