from typing import Any

import anyio
import pytest

from tests.fake_server import ADD_TOOL, connected, tool
from toolbridge.shared.exceptions import McpError, SchemaViolation, UnknownTool
from toolbridge.tools.registry import ToolDescriptor, ToolRegistry
from toolbridge.tools.schema import ObjectParameter
from toolbridge.types import Tool

pytestmark = pytest.mark.anyio


async def test_list_tools_populates_the_cache():
    async with connected() as (session, server):
        registry = ToolRegistry(session)
        assert len(registry) == 0
        assert registry.generation == 0

        descriptors = await registry.list_tools()

        assert [d.name for d in descriptors] == ["add"]
        assert registry.names() == ["add"]
        assert "add" in registry
        assert registry.generation == 1

        add = registry.get("add")
        assert add.description == "Add two integers"
        assert isinstance(add.parameters, ObjectParameter)
        assert add.parameters.required == ("a", "b")


async def test_list_tools_follows_every_page():
    tools = [tool(f"tool_{i}") for i in range(7)]
    async with connected(tools=tools, page_size=3) as (session, server):
        registry = ToolRegistry(session)
        await registry.list_tools()

        assert registry.names() == [f"tool_{i}" for i in range(7)]
        cursors = [(r.params or {}).get("cursor") for r in server.requests("tools/list")]
        assert cursors == [None, "3", "6"]


async def test_repeated_cursor_stops_paging(caplog: pytest.LogCaptureFixture):
    async def looping(params: dict[str, Any]) -> dict[str, Any]:
        return {"tools": [tool("only")], "nextCursor": "again"}

    async with connected() as (session, server):
        server.handlers["tools/list"] = looping
        registry = ToolRegistry(session)
        await registry.list_tools()

        assert registry.names() == ["only"]
        assert len(server.requests("tools/list")) == 2
    assert "repeated pagination cursor" in caplog.text


async def test_duplicate_names_keep_the_first(caplog: pytest.LogCaptureFixture):
    tools = [tool("dup", description="first"), tool("dup", description="second")]
    async with connected(tools=tools) as (session, server):
        registry = ToolRegistry(session)
        await registry.list_tools()

        assert len(registry) == 1
        assert registry.get("dup").description == "first"
    assert "listed tool dup twice" in caplog.text


async def test_refresh_replaces_the_whole_set():
    async with connected() as (session, server):
        registry = ToolRegistry(session)
        await registry.list_tools()
        before = registry.snapshot

        server.tools = [tool("multiply")]
        await registry.list_tools()

        assert registry.names() == ["multiply"]
        assert registry.generation == 2
        # A snapshot taken earlier is untouched
        assert list(before) == ["add"]
        with pytest.raises(TypeError):
            before["x"] = before["add"]  # type: ignore[index]


async def test_readers_never_see_a_partial_set():
    release_second_page = anyio.Event()
    observed: list[list[str]] = []

    async def paged(params: dict[str, Any]) -> dict[str, Any]:
        if params.get("cursor") is None:
            return {"tools": [tool("new_a")], "nextCursor": "2"}
        await release_second_page.wait()
        return {"tools": [tool("new_b")]}

    async with connected() as (session, server):
        registry = ToolRegistry(session)
        await registry.list_tools()
        server.handlers["tools/list"] = paged

        async with anyio.create_task_group() as tg:
            tg.start_soon(registry.list_tools)
            await server.wait_for(lambda: len(server.requests("tools/list")) == 3)
            # First page received, second outstanding
            observed.append(registry.names())
            release_second_page.set()

        observed.append(registry.names())

    assert observed == [["add"], ["new_a", "new_b"]]


async def test_concurrent_refreshes_are_serialized():
    in_flight = 0
    max_in_flight = 0

    async def slow_list(params: dict[str, Any]) -> dict[str, Any]:
        nonlocal in_flight, max_in_flight
        in_flight += 1
        max_in_flight = max(max_in_flight, in_flight)
        await anyio.sleep(0.02)
        in_flight -= 1
        return {"tools": [ADD_TOOL]}

    async with connected() as (session, server):
        server.handlers["tools/list"] = slow_list
        registry = ToolRegistry(session)

        async with anyio.create_task_group() as tg:
            for _ in range(3):
                tg.start_soon(registry.list_tools)

        assert max_in_flight == 1
        assert registry.generation == 3


async def test_failed_refresh_keeps_the_previous_set():
    async with connected() as (session, server):
        registry = ToolRegistry(session)
        await registry.list_tools()
        del server.handlers["tools/list"]

        with pytest.raises(McpError):
            await registry.list_tools()

        assert registry.names() == ["add"]
        assert registry.generation == 1


async def test_unknown_tool_is_rejected_without_a_round_trip():
    async with connected() as (session, server):
        registry = ToolRegistry(session)
        await registry.list_tools()
        sent_before = len(server.received)

        with pytest.raises(UnknownTool) as exc_info:
            registry.validate("subtract", {"a": 1, "b": 2})
        assert exc_info.value.name == "subtract"

        await session.send_ping()
        assert len(server.received) == sent_before + 1


async def test_schema_violation_lists_every_problem():
    async with connected() as (session, server):
        registry = ToolRegistry(session)
        await registry.list_tools()

        with pytest.raises(SchemaViolation) as exc_info:
            registry.validate("add", {"a": "one"})

        violations = exc_info.value.violations
        assert {v.path for v in violations} == {"$", "$.a"}
        assert exc_info.value.error.data == [{"path": v.path, "message": v.message} for v in violations]

        assert registry.validate("add", {"a": 1, "b": 2}).name == "add"


def test_descriptor_with_invalid_schema_accepts_anything():
    descriptor = ToolDescriptor.from_tool(Tool(name="odd", input_schema={"type": "not-a-type"}))
    assert descriptor.validate_arguments({"anything": 1}) == []


def test_descriptor_output_validation():
    descriptor = ToolDescriptor.from_tool(
        Tool(
            name="add",
            input_schema={"type": "object"},
            output_schema={"type": "object", "properties": {"result": {"type": "integer"}}, "required": ["result"]},
        )
    )
    assert descriptor.validate_output({"result": 3}) == []
    assert [v.path for v in descriptor.validate_output({"result": "3"})] == ["$.result"]
    assert [v.path for v in descriptor.validate_output(None)] == ["$"]
