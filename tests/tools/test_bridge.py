"""Tests for the invocation bridge and the model-facing function contract."""

from typing import Any

import anyio
import pytest

from tests.fake_server import ADD_TOOL, connected, tool
from toolbridge.shared.exceptions import (
    ConnectionLost,
    RemoteInvocationError,
    SchemaViolation,
    TimedOut,
    UnknownTool,
)
from toolbridge.tools.bridge import FunctionResult, Invocation, InvocationBridge
from toolbridge.types import TOOLS_LIST_CHANGED, ErrorData, TextContent

pytestmark = pytest.mark.anyio

ADD_WITH_OUTPUT = tool(
    "add",
    ADD_TOOL["inputSchema"],
    description="Add two integers",
    outputSchema={"type": "object", "properties": {"result": {"type": "integer"}}, "required": ["result"]},
)


async def test_invoke_returns_the_tool_result():
    async with connected(tools=[ADD_WITH_OUTPUT]) as (session, server):
        bridge = InvocationBridge(session)
        await bridge.refresh()

        result = await bridge.invoke("add", {"a": 2, "b": 3}, call_id="call_1")

        assert isinstance(result, FunctionResult)
        assert not result.is_error
        assert result.text == "5"
        assert result.structured_content == {"result": 5}
        assert result.call_id == "call_1"

        (call,) = server.requests("tools/call")
        assert call.params == {"name": "add", "arguments": {"a": 2, "b": 3}}


async def test_invoke_unknown_tool_sends_nothing():
    async with connected() as (session, server):
        bridge = InvocationBridge(session)
        await bridge.refresh()

        with pytest.raises(UnknownTool):
            await bridge.invoke("subtract", {"a": 1, "b": 2})
        assert server.requests("tools/call") == []


async def test_invoke_with_bad_arguments_sends_nothing():
    async with connected() as (session, server):
        bridge = InvocationBridge(session)
        await bridge.refresh()

        with pytest.raises(SchemaViolation):
            await bridge.invoke("add", {"a": 1})
        assert server.requests("tools/call") == []


async def test_tool_reported_failure_is_a_remote_invocation_error():
    async def failing(params: dict[str, Any]) -> dict[str, Any]:
        return {"content": [{"type": "text", "text": "division by zero"}], "isError": True}

    async with connected() as (session, server):
        server.handlers["tools/call"] = failing
        bridge = InvocationBridge(session)
        await bridge.refresh()

        with pytest.raises(RemoteInvocationError) as exc_info:
            await bridge.invoke("add", {"a": 1, "b": 0})

        error = exc_info.value
        assert error.name == "add"
        assert error.error.message == "division by zero"
        assert error.result is not None
        assert error.result.is_error


async def test_json_rpc_error_is_a_remote_invocation_error():
    async def rejecting(params: dict[str, Any]) -> ErrorData:
        return ErrorData(code=-32602, message="Invalid arguments for tool add")

    async with connected() as (session, server):
        server.handlers["tools/call"] = rejecting
        bridge = InvocationBridge(session)
        await bridge.refresh()

        with pytest.raises(RemoteInvocationError) as exc_info:
            await bridge.invoke("add", {"a": 1, "b": 2})
        assert exc_info.value.code == -32602
        assert exc_info.value.result is None


async def test_output_schema_violation_is_a_remote_invocation_error():
    async def wrong_shape(params: dict[str, Any]) -> dict[str, Any]:
        return {"content": [{"type": "text", "text": "3"}], "structuredContent": {"result": "three"}}

    async with connected(tools=[ADD_WITH_OUTPUT]) as (session, server):
        server.handlers["tools/call"] = wrong_shape
        bridge = InvocationBridge(session)
        await bridge.refresh()

        with pytest.raises(RemoteInvocationError) as exc_info:
            await bridge.invoke("add", {"a": 1, "b": 2})
        assert "Invalid structured content returned by tool add" in exc_info.value.error.message
        assert exc_info.value.error.data == [{"path": "$.result", "message": "'three' is not of type 'integer'"}]


async def test_malformed_result_is_a_remote_invocation_error():
    async def malformed(params: dict[str, Any]) -> dict[str, Any]:
        return {"content": [{"type": "hologram"}]}

    async with connected() as (session, server):
        server.handlers["tools/call"] = malformed
        bridge = InvocationBridge(session)
        await bridge.refresh()

        with pytest.raises(RemoteInvocationError, match="Malformed result"):
            await bridge.invoke("add", {"a": 1, "b": 2})


async def test_invoke_timeout_propagates():
    async def hang(params: dict[str, Any]) -> dict[str, Any]:
        await anyio.sleep_forever()
        raise AssertionError("unreachable")  # pragma: no cover

    async with connected() as (session, server):
        server.handlers["tools/call"] = hang
        bridge = InvocationBridge(session)
        await bridge.refresh()

        with pytest.raises(TimedOut):
            await bridge.invoke("add", {"a": 1, "b": 2}, timeout=0.05)


async def test_progress_is_reported_during_invoke():
    progress: list[float] = []

    async def on_progress(value: float, total: float | None, message: str | None) -> None:
        progress.append(value)

    async with connected() as (session, server):

        async def reporting(params: dict[str, Any]) -> dict[str, Any]:
            token = params["_meta"]["progressToken"]
            await server.notify("notifications/progress", {"progressToken": token, "progress": 0.5})
            while not progress:
                await anyio.sleep(0.01)
            return {"content": [{"type": "text", "text": "done"}]}

        server.handlers["tools/call"] = reporting
        bridge = InvocationBridge(session)
        await bridge.refresh()

        with anyio.fail_after(2):
            result = await bridge.invoke("add", {"a": 1, "b": 2}, progress_callback=on_progress)
        assert result.text == "done"

    assert progress == [0.5]


async def test_list_changed_refreshes_the_registry():
    async with connected() as (session, server):
        bridge = InvocationBridge(session)
        await bridge.refresh()
        assert bridge.registry.names() == ["add"]

        server.tools = [ADD_TOOL, tool("multiply")]
        await server.notify(TOOLS_LIST_CHANGED)

        with anyio.fail_after(2):
            while bridge.registry.generation < 2:
                await anyio.sleep(0.01)
        assert bridge.registry.names() == ["add", "multiply"]


async def test_list_changed_signals_are_coalesced():
    release = anyio.Event()

    async with connected() as (session, server):
        bridge = InvocationBridge(session)
        await bridge.refresh()

        original = server.handlers["tools/list"]

        async def gated(params: dict[str, Any]) -> dict[str, Any]:
            await release.wait()
            return await original(params)

        server.handlers["tools/list"] = gated
        signals = 0

        async def count(notification: Any) -> None:
            nonlocal signals
            signals += 1

        session.add_notification_listener(TOOLS_LIST_CHANGED, count)

        await server.notify(TOOLS_LIST_CHANGED)
        await server.wait_for(lambda: len(server.requests("tools/list")) == 2)
        # These arrive while the first refresh is still running
        for _ in range(4):
            await server.notify(TOOLS_LIST_CHANGED)
        with anyio.fail_after(2):
            while signals < 5:
                await anyio.sleep(0.01)
        release.set()

        with anyio.fail_after(2):
            while bridge.registry.generation < 3:
                await anyio.sleep(0.01)
            await session.send_ping()
        await anyio.sleep(0.05)

        # One refresh for the first signal and one for everything that arrived during it
        assert len(server.requests("tools/list")) == 3
        assert bridge.registry.generation == 3


async def test_closed_bridge_ignores_list_changed():
    async with connected() as (session, server):
        bridge = InvocationBridge(session)
        await bridge.refresh()
        bridge.close()

        await server.notify(TOOLS_LIST_CHANGED)
        await session.send_ping()
        await anyio.sleep(0.05)

        assert len(server.requests("tools/list")) == 1


async def test_functions_enumerate_on_first_use():
    async with connected() as (session, server):
        bridge = InvocationBridge(session)

        functions = await bridge.functions()

        assert [f.name for f in functions] == ["add"]
        assert len(server.requests("tools/list")) == 1
        await bridge.functions()
        assert len(server.requests("tools/list")) == 1
        await bridge.functions(refresh=True)
        assert len(server.requests("tools/list")) == 2


async def test_tool_function_openai_shape_and_signature():
    async with connected() as (session, server):
        (add,) = await InvocationBridge(session).functions()

        assert add.to_openai() == {
            "type": "function",
            "function": {
                "name": "add",
                "description": "Add two integers",
                "parameters": ADD_TOOL["inputSchema"],
            },
        }
        assert str(add) == "add(a: integer, b: integer) - Add two integers"


async def test_tool_function_call_returns_results_and_errors():
    async with connected() as (session, server):
        (add,) = await InvocationBridge(session).functions()

        ok = await add('{"a": 20, "b": 22}', call_id="call_1")
        assert ok.text == "42"
        assert ok.to_message() == {"role": "tool", "name": "add", "content": "42", "tool_call_id": "call_1"}

        invalid = await add({"a": "x", "b": 1}, call_id="call_2")
        assert invalid.is_error
        assert invalid.error_kind == "SchemaViolation"
        assert "$.a" in invalid.text

        not_json = await add("{a: 1", call_id="call_3")
        assert not_json.is_error
        assert not_json.error_kind == "SchemaViolation"
        assert "not valid JSON" in not_json.text

        not_object = await add("[1, 2]")
        assert not_object.error_kind == "SchemaViolation"

        assert len(server.requests("tools/call")) == 1


async def test_tool_function_reports_remote_failure_in_band():
    async def failing(params: dict[str, Any]) -> dict[str, Any]:
        return {"content": [{"type": "text", "text": "quota exceeded"}], "isError": True}

    async with connected() as (session, server):
        (add,) = await InvocationBridge(session).functions()
        server.handlers["tools/call"] = failing

        result = await add({"a": 1, "b": 2}, call_id="call_9")

        assert result.is_error
        assert result.error_kind == "RemoteInvocationError"
        assert result.to_message()["content"] == "quota exceeded"


async def test_tool_function_uses_the_latest_enumeration():
    async with connected() as (session, server):
        bridge = InvocationBridge(session)
        (add,) = await bridge.functions()

        server.tools = [tool("multiply")]
        await bridge.refresh()

        result = await add({"a": 1, "b": 2})
        assert result.error_kind == "UnknownTool"


async def test_tool_function_describes_the_refreshed_schema():
    async with connected() as (session, server):
        bridge = InvocationBridge(session)
        (add,) = await bridge.functions()

        schema = {"type": "object", "properties": {"values": {"type": "array", "items": {"type": "number"}}}}
        server.tools = [tool("add", schema, description="Add any number of values")]
        await bridge.refresh()

        assert add.parameters == schema
        assert add.to_openai()["function"]["description"] == "Add any number of values"
        assert str(add) == "add(values?: array[number]) - Add any number of values"

        # Removed tools keep describing themselves as last seen
        server.tools = []
        await bridge.refresh()
        assert add.parameters == schema


async def test_lost_session_propagates_from_tool_function():
    async with connected() as (session, server):
        (add,) = await InvocationBridge(session).functions()
        await session.aclose()

        with pytest.raises(ConnectionLost):
            await add({"a": 1, "b": 2})


async def test_execute_runs_an_invocation():
    async with connected() as (session, server):
        bridge = InvocationBridge(session)
        await bridge.refresh()

        result = await bridge.execute(Invocation("add", {"a": 1, "b": 1}, call_id="turn-3"))
        assert result.call_id == "turn-3"
        assert result.content == [TextContent(text="2")]


def test_function_result_rendering():
    result = FunctionResult(
        name="lookup",
        content=[
            TextContent(text="first"),
            {"type": "resource_link", "uri": "file:///notes.txt", "name": "notes"},
            {"type": "image", "data": "aGk=", "mimeType": "image/png"},
        ],
    )
    assert result.text == "first\n[resource: file:///notes.txt]\n[image: image/png]"
    assert "tool_call_id" not in result.to_message()

    structured_only = FunctionResult(name="lookup", structured_content={"answer": 42})
    assert structured_only.text == '{"answer": 42}'
