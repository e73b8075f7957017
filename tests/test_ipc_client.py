import asyncio
import os
import shutil
import tempfile
from contextlib import asynccontextmanager

import pytest

from netfusion.config import BondMode, InterfaceType
from netfusion.ipc import (
    DaemonRequest,
    DaemonResponse,
    RequestKind,
    ResponseData,
    ResponseKind,
    WireMessage,
    decode_request,
    encode,
)
from netfusion.ipc_client import IpcClient, IpcError
from netfusion.types import BondState, InterfaceInfo, SystemStatus, TunnelState


@asynccontextmanager
async def fake_daemon(responder):
    directory = tempfile.mkdtemp(prefix="nf")
    path = os.path.join(directory, "d.sock")
    received = []
    frames = []

    async def handle(reader, writer):
        try:
            while True:
                header = await reader.readexactly(4)
                body = await reader.readexactly(int.from_bytes(header, "big"))
                frames.append((header, body))
                message = decode_request(body)
                received.append(message)
                reply = responder(message.payload)
                if reply is None:
                    break
                raw = reply if isinstance(reply, bytes) else encode(WireMessage.new(reply))
                writer.write(len(raw).to_bytes(4, "big") + raw)
                await writer.drain()
        except asyncio.IncompleteReadError:
            pass
        finally:
            writer.close()

    server = await asyncio.start_unix_server(handle, path=path)
    try:
        yield path, received, frames
    finally:
        server.close()
        await server.wait_closed()
        shutil.rmtree(directory, ignore_errors=True)


def always(response):
    return lambda request: response


@pytest.mark.asyncio
async def test_connect_missing_socket():
    directory = tempfile.mkdtemp(prefix="nf")
    try:
        with pytest.raises(IpcError, match="daemon socket not found"):
            await IpcClient.connect(os.path.join(directory, "absent.sock"))
    finally:
        shutil.rmtree(directory, ignore_errors=True)


@pytest.mark.asyncio
async def test_get_status_round_trip():
    status = SystemStatus(total_interfaces=3, active_bonds=1, uptime_secs=42)
    response = DaemonResponse.ok(ResponseData(ResponseKind.STATUS, status))
    async with fake_daemon(always(response)) as (path, received, _):
        async with await IpcClient.connect(path) as client:
            result = await client.get_status()
    assert result == status
    assert received[0].payload.kind is RequestKind.GET_STATUS


@pytest.mark.asyncio
async def test_request_frame_length_prefix():
    response = DaemonResponse.ok(ResponseData(ResponseKind.EMPTY))
    async with fake_daemon(always(response)) as (path, received, frames):
        async with await IpcClient.connect(path) as client:
            await client.request(DaemonRequest(RequestKind.RESCAN_INTERFACES))
    header, body = frames[0]
    assert int.from_bytes(header, "big") == len(body)
    assert received[0].payload.kind is RequestKind.RESCAN_INTERFACES


@pytest.mark.asyncio
async def test_get_interfaces():
    interfaces = [
        InterfaceInfo(name="eth0", if_type=InterfaceType("ethernet")),
        InterfaceInfo(name="wlan0", if_type=InterfaceType("wireless")),
    ]
    response = DaemonResponse.ok(ResponseData(ResponseKind.INTERFACES, interfaces))
    async with fake_daemon(always(response)) as (path, _, _frames):
        async with await IpcClient.connect(path) as client:
            result = await client.get_interfaces()
    assert result == interfaces


@pytest.mark.asyncio
async def test_get_bonds_and_tunnels_share_connection():
    bonds = [BondState(name="netfusion0", mode=BondMode("active_backup"), active_members=["eth0"])]
    tunnels = [TunnelState(name="wg0", connected=True, remote="example.com:51820")]

    def responder(request):
        if request.kind is RequestKind.GET_BONDS:
            return DaemonResponse.ok(ResponseData(ResponseKind.BONDS, bonds))
        return DaemonResponse.ok(ResponseData(ResponseKind.TUNNELS, tunnels))

    async with fake_daemon(responder) as (path, received, _):
        async with await IpcClient.connect(path) as client:
            got_bonds = await client.get_bonds()
            got_tunnels = await client.get_tunnels()
    assert got_bonds == bonds
    assert got_tunnels == tunnels
    assert [m.payload.kind for m in received] == [RequestKind.GET_BONDS, RequestKind.GET_TUNNELS]


@pytest.mark.asyncio
async def test_server_error_raises():
    response = DaemonResponse.error("Interface 'eth9' not found", False)
    async with fake_daemon(always(response)) as (path, _, _frames):
        async with await IpcClient.connect(path) as client:
            with pytest.raises(IpcError, match="Interface 'eth9' not found"):
                await client.get_status()


@pytest.mark.asyncio
async def test_request_returns_error_response():
    response = DaemonResponse.error("Bond creation not yet implemented", True)
    async with fake_daemon(always(response)) as (path, _, _frames):
        async with await IpcClient.connect(path) as client:
            result = await client.request(DaemonRequest(RequestKind.SHUTDOWN))
    assert result.is_error
    assert result.message == "Bond creation not yet implemented"
    assert result.recoverable is True


@pytest.mark.asyncio
async def test_unexpected_response_type():
    response = DaemonResponse.ok(ResponseData(ResponseKind.EMPTY))
    async with fake_daemon(always(response)) as (path, _, _frames):
        async with await IpcClient.connect(path) as client:
            with pytest.raises(IpcError, match="unexpected response type"):
                await client.get_bonds()


@pytest.mark.asyncio
async def test_ok_without_data_is_unexpected():
    async with fake_daemon(always(DaemonResponse.ok())) as (path, _, _frames):
        async with await IpcClient.connect(path) as client:
            with pytest.raises(IpcError, match="unexpected response type"):
                await client.get_tunnels()


@pytest.mark.asyncio
async def test_connection_closed_raises_io_error():
    async with fake_daemon(lambda request: None) as (path, _, _frames):
        async with await IpcClient.connect(path) as client:
            with pytest.raises(IpcError, match="I/O error"):
                await client.get_status()


@pytest.mark.asyncio
async def test_garbage_response_raises_encoding_error():
    async with fake_daemon(always(b"not a message")) as (path, _, _frames):
        async with await IpcClient.connect(path) as client:
            with pytest.raises(IpcError, match="encoding error"):
                await client.get_status()