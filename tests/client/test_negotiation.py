"""Tests for the initialize handshake in ClientSession."""

import logging
from typing import Any

import anyio
import pytest

from tests.fake_server import connected
from toolbridge.settings import Settings
from toolbridge.shared.exceptions import ConnectionLost, ProtocolMismatch, TimedOut
from toolbridge.shared.session import SessionState
from toolbridge.types import INITIALIZED, LATEST_PROTOCOL_VERSION, PROTOCOL_MISMATCH, ErrorData

pytestmark = pytest.mark.anyio


async def test_negotiate_activates_the_session():
    async with connected(negotiate=False) as (session, server):
        result = await session.negotiate()

        assert session.state is SessionState.ACTIVE
        assert result.protocol_version == LATEST_PROTOCOL_VERSION
        assert session.protocol_version == LATEST_PROTOCOL_VERSION
        assert session.server_info is not None
        assert session.server_info.name == "fake"
        assert session.server_capabilities is not None
        assert session.server_capabilities.supports("tools")

        (initialize,) = server.requests("initialize")
        assert initialize.params is not None
        assert initialize.params["protocolVersion"] == LATEST_PROTOCOL_VERSION
        assert initialize.params["clientInfo"] == {"name": "toolbridge", "version": "0.1.0"}

        await server.wait_for(lambda: bool(server.notifications(INITIALIZED)))


async def test_client_info_comes_from_settings():
    settings = Settings(client_name="chat-with-tools", client_version="2.0")
    async with connected(settings=settings) as (session, server):
        (initialize,) = server.requests("initialize")
        assert initialize.params is not None
        assert initialize.params["clientInfo"] == {"name": "chat-with-tools", "version": "2.0"}


async def test_older_supported_version_is_accepted():
    async with connected(protocol_version="2024-11-05") as (session, server):
        assert session.protocol_version == "2024-11-05"
        assert session.state is SessionState.ACTIVE


async def test_unsupported_version_fails_the_session():
    async with connected(negotiate=False, protocol_version="1999-01-01") as (session, server):
        with pytest.raises(ProtocolMismatch) as exc_info:
            await session.negotiate()

        assert exc_info.value.code == PROTOCOL_MISMATCH
        assert "1999-01-01" in exc_info.value.error.message
        assert session.state is SessionState.FAILED
        assert server.notifications(INITIALIZED) == []

        with pytest.raises(ConnectionLost):
            await session.send_ping()


async def test_missing_required_capability_fails_the_session():
    async with connected(negotiate=False, capabilities={"prompts": {}}) as (session, server):
        with pytest.raises(ProtocolMismatch) as exc_info:
            await session.negotiate()

        assert exc_info.value.error.data == {"missing": ["tools"]}
        assert session.state is SessionState.FAILED


async def test_required_capabilities_are_configurable():
    settings = Settings(required_capabilities=[])
    async with connected(settings=settings, capabilities={}) as (session, server):
        assert session.state is SessionState.ACTIVE


async def test_unknown_capabilities_are_recognised():
    settings = Settings(required_capabilities=["tools", "experimentalThing"])
    capabilities = {"tools": {}, "experimentalThing": {}}
    async with connected(settings=settings, capabilities=capabilities) as (session, server):
        assert session.server_capabilities is not None
        assert session.server_capabilities.supports("experimentalThing")


async def test_server_error_on_initialize_is_a_protocol_mismatch():
    async def reject(params: dict[str, Any]) -> ErrorData:
        return ErrorData(code=-32602, message="Unsupported protocol version", data={"supported": ["1.0"]})

    async with connected(negotiate=False) as (session, server):
        server.handlers["initialize"] = reject

        with pytest.raises(ProtocolMismatch) as exc_info:
            await session.negotiate()
        assert "Unsupported protocol version" in exc_info.value.error.message
        assert exc_info.value.error.data == {"supported": ["1.0"]}
        assert session.state is SessionState.FAILED


async def test_malformed_initialize_result_is_a_protocol_mismatch():
    async def garbage(params: dict[str, Any]) -> dict[str, Any]:
        return {"protocolVersion": LATEST_PROTOCOL_VERSION}

    async with connected(negotiate=False) as (session, server):
        server.handlers["initialize"] = garbage

        with pytest.raises(ProtocolMismatch):
            await session.negotiate()
        assert session.state is SessionState.FAILED


async def test_handshake_timeout():
    async def hang(params: dict[str, Any]) -> dict[str, Any]:
        await anyio.sleep_forever()
        raise AssertionError("unreachable")  # pragma: no cover

    async with connected(negotiate=False, settings=Settings(handshake_timeout=0.05)) as (session, server):
        server.handlers["initialize"] = hang

        with pytest.raises(TimedOut):
            await session.negotiate()
        assert session.state is SessionState.FAILED


async def test_negotiate_runs_only_once():
    async with connected() as (session, server):
        with pytest.raises(RuntimeError, match="already been negotiated"):
            await session.negotiate()
        assert len(server.requests("initialize")) == 1


async def test_server_log_messages_are_forwarded(caplog: pytest.LogCaptureFixture):
    async with connected() as (session, server):
        with caplog.at_level(logging.DEBUG, logger="toolbridge.server"):
            await server.notify(
                "notifications/message",
                {"level": "error", "logger": "weather", "data": "upstream API down"},
            )
            # The dispatcher has handled the notification once the next one is seen
            seen = anyio.Event()

            async def marker(notification: Any) -> None:
                seen.set()

            session.add_notification_listener("notifications/marker", marker)
            await server.notify("notifications/marker")
            with anyio.fail_after(2):
                await seen.wait()

    records = [r for r in caplog.records if r.name == "toolbridge.server"]
    assert len(records) == 1
    assert records[0].levelno == logging.ERROR
    assert records[0].getMessage() == "[weather] upstream API down"


async def test_server_log_forwarding_can_be_disabled(caplog: pytest.LogCaptureFixture):
    async with connected(settings=Settings(forward_server_logs=False)) as (session, server):
        with caplog.at_level(logging.DEBUG, logger="toolbridge.server"):
            await server.notify("notifications/message", {"level": "error", "data": "ignored"})
            await session.send_ping()
            await anyio.sleep(0.05)

    assert [r for r in caplog.records if r.name == "toolbridge.server"] == []
