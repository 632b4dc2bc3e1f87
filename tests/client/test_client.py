"""Tests for the high-level Client and open_session."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import anyio
import pytest
from anyio.abc import TaskGroup

from tests.fake_server import FakeServer
from toolbridge.client.client import Client, _infer_transport, open_session
from toolbridge.client.config import StdioServerConfig
from toolbridge.client.transport import HttpTransport, MemoryTransport, StdioTransport, Transport
from toolbridge.settings import Settings
from toolbridge.shared.exceptions import ProtocolMismatch
from toolbridge.shared.memory import create_client_server_memory_streams
from toolbridge.shared.session import SessionState

pytestmark = pytest.mark.anyio


class FakeServerTransport:
    """Starts a FakeServer on the far end of every connection."""

    def __init__(self, task_group: TaskGroup, **server_kwargs: Any) -> None:
        self.task_group = task_group
        self.server_kwargs = server_kwargs
        self.server: FakeServer | None = None
        self.connected = False

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[Any]:
        async with create_client_server_memory_streams() as (client_streams, server_streams):
            server = self.server = FakeServer(*server_streams, **self.server_kwargs)
            scope = anyio.CancelScope()

            async def serve() -> None:
                with scope:
                    await server.run()

            self.task_group.start_soon(serve)
            self.connected = True
            try:
                yield client_streams
            finally:
                scope.cancel()
                self.connected = False


async def test_client_lists_tools_on_connect():
    async with anyio.create_task_group() as tg:
        transport = FakeServerTransport(tg)
        assert isinstance(transport, Transport)

        async with Client(transport) as client:
            assert client.session.state is SessionState.ACTIVE
            assert client.registry.names() == ["add"]

            result = await client.invoke("add", {"a": 1, "b": 2}, call_id="c1")
            assert result.text == "3"

            functions = await client.functions()
            assert [f.to_openai()["function"]["name"] for f in functions] == ["add"]
            await client.send_ping()

        assert not transport.connected
        with pytest.raises(RuntimeError):
            client.session
        tg.cancel_scope.cancel()


async def test_client_can_skip_listing_tools():
    async with anyio.create_task_group() as tg:
        transport = FakeServerTransport(tg)

        async with Client(transport, list_tools_on_connect=False) as client:
            assert len(client.registry) == 0
            assert transport.server is not None
            assert transport.server.requests("tools/list") == []

            await client.list_tools()
            assert client.registry.names() == ["add"]
        tg.cancel_scope.cancel()


async def test_client_cannot_be_reentered():
    async with anyio.create_task_group() as tg:
        client = Client(FakeServerTransport(tg))
        async with client:
            with pytest.raises(RuntimeError, match="already entered"):
                await client.__aenter__()
        tg.cancel_scope.cancel()


async def test_open_session_tears_down_transport_on_failed_handshake():
    async with anyio.create_task_group() as tg:
        transport = FakeServerTransport(tg, protocol_version="1999-01-01")

        with pytest.raises(ProtocolMismatch):
            async with open_session(transport):
                pytest.fail("should not negotiate")  # pragma: no cover

        assert not transport.connected
        tg.cancel_scope.cancel()


async def test_open_session_uses_settings():
    async with anyio.create_task_group() as tg:
        transport = FakeServerTransport(tg, capabilities={"logging": {}})
        settings = Settings(required_capabilities=["logging"], client_name="custom")

        async with open_session(transport, settings) as session:
            assert session.state is SessionState.ACTIVE
        assert transport.server is not None
        (initialize,) = transport.server.requests("initialize")
        assert initialize.params is not None
        assert initialize.params["clientInfo"]["name"] == "custom"
        tg.cancel_scope.cancel()


def test_infer_transport():
    assert isinstance(_infer_transport("http://localhost:8000/mcp"), HttpTransport)
    assert isinstance(_infer_transport(StdioServerConfig(command="uv run server.py")), StdioTransport)

    memory = MemoryTransport()
    assert _infer_transport(memory) is memory

    with pytest.raises(TypeError):
        _infer_transport(42)  # type: ignore[arg-type]


def test_setup_logging_uses_the_configured_level(monkeypatch: pytest.MonkeyPatch):
    levels: list[str] = []
    monkeypatch.setattr("toolbridge.client.client.configure_logging", levels.append)

    Client("http://localhost:8000/mcp", settings=Settings(log_level="DEBUG"), setup_logging=True)
    Client("http://localhost:8000/mcp", settings=Settings(log_level="ERROR"))

    assert levels == ["DEBUG"]
