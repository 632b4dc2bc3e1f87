"""
Invocation bridge between a language-model chat loop and a tool server.

The bridge validates a model-requested call against the cached tool schemas,
relays it as tools/call, and turns the outcome into a FunctionResult the chat
loop can append to its conversation.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ValidationError

from toolbridge.client.session import ClientSession
from toolbridge.shared.exceptions import (
    ConnectionLost,
    McpError,
    RemoteInvocationError,
    SchemaViolation,
    SchemaViolationDetail,
    TimedOut,
)
from toolbridge.shared.session import ProgressFnT
from toolbridge.tools.registry import ToolDescriptor, ToolRegistry
from toolbridge.tools.schema import ObjectParameter, describe
from toolbridge.types import (
    INTERNAL_ERROR,
    TOOLS_LIST_CHANGED,
    CallToolResult,
    ContentBlock,
    ErrorData,
    JSONRPCNotification,
    TextContent,
)

logger = logging.getLogger(__name__)


@dataclass
class Invocation:
    """A model's request to run one tool."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    call_id: str | None = None
    """Identifier of the conversation turn that asked for the call, if any."""


def _render_block(block: ContentBlock) -> str:
    if isinstance(block, TextContent):
        return block.text
    if block.type == "resource_link":
        return f"[resource: {block.uri}]"
    if block.type == "resource":
        text = block.resource.get("text")
        return text if isinstance(text, str) else f"[resource: {block.resource.get('uri', '')}]"
    return f"[{block.type}: {block.mime_type}]"


class FunctionResult(BaseModel):
    """The outcome of a tool call, shaped for a chat loop."""

    name: str
    call_id: str | None = None
    content: list[ContentBlock] = []
    structured_content: dict[str, Any] | None = None
    is_error: bool = False
    error_kind: str | None = None
    """Name of the error class when is_error is set, e.g. "SchemaViolation"."""
    error_code: int | None = None

    @classmethod
    def from_call_tool_result(
        cls, name: str, result: CallToolResult, call_id: str | None = None
    ) -> FunctionResult:
        return cls(
            name=name,
            call_id=call_id,
            content=list(result.content),
            structured_content=result.structured_content,
            is_error=result.is_error,
        )

    @classmethod
    def from_error(cls, name: str, error: McpError, call_id: str | None = None) -> FunctionResult:
        content: list[ContentBlock] = [TextContent(text=error.error.message)]
        structured = None
        if isinstance(error, RemoteInvocationError) and error.result is not None:
            content = list(error.result.content) or content
            structured = error.result.structured_content
        return cls(
            name=name,
            call_id=call_id,
            content=content,
            structured_content=structured,
            is_error=True,
            error_kind=type(error).__name__,
            error_code=error.code,
        )

    @property
    def text(self) -> str:
        if self.content:
            return "\n".join(_render_block(block) for block in self.content)
        if self.structured_content is not None:
            return json.dumps(self.structured_content)
        return ""

    def to_message(self) -> dict[str, Any]:
        """Render as a ``{"role": "tool"}`` chat message."""
        message: dict[str, Any] = {"role": "tool", "name": self.name, "content": self.text}
        if self.call_id is not None:
            message["tool_call_id"] = self.call_id
        return message


class ToolFunction:
    """A tool as a model sees it: a named function with a JSON schema.

    Calling it never raises for a failure of that one call; the failure is
    reported in the returned FunctionResult instead. Losing the session does
    raise ConnectionLost, since no later call can succeed either.
    """

    def __init__(self, bridge: InvocationBridge, descriptor: ToolDescriptor) -> None:
        self._bridge = bridge
        self._name = descriptor.name
        self._descriptor = descriptor

    @property
    def descriptor(self) -> ToolDescriptor:
        """The registry's current descriptor for this tool, or the last one seen if it was removed."""
        current = self._bridge.registry.snapshot.get(self._name)
        if current is not None:
            self._descriptor = current
        return self._descriptor

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self.descriptor.description

    @property
    def parameters(self) -> dict[str, Any]:
        return dict(self.descriptor.input_schema)

    def to_openai(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    async def __call__(
        self,
        arguments: Mapping[str, Any] | str | None = None,
        call_id: str | None = None,
    ) -> FunctionResult:
        if isinstance(arguments, str):
            try:
                decoded = json.loads(arguments) if arguments.strip() else {}
            except json.JSONDecodeError as e:
                violation = SchemaViolationDetail(path="$", message=f"arguments are not valid JSON: {e.msg}")
                return FunctionResult.from_error(self.name, SchemaViolation(self.name, [violation]), call_id)
            if not isinstance(decoded, dict):
                violation = SchemaViolationDetail(path="$", message="arguments must be a JSON object")
                return FunctionResult.from_error(self.name, SchemaViolation(self.name, [violation]), call_id)
            arguments = decoded
        return await self._bridge.execute(Invocation(self.name, dict(arguments or {}), call_id))

    def __str__(self) -> str:
        parameters = self.descriptor.parameters
        if isinstance(parameters, ObjectParameter):
            signature = ", ".join(
                f"{name}{'' if name in parameters.required else '?'}: {describe(spec)}"
                for name, spec in parameters.properties.items()
            )
        else:
            signature = "..."
        return f"{self.name}({signature}) - {self.description}" if self.description else f"{self.name}({signature})"

    def __repr__(self) -> str:
        return f"ToolFunction({self.name!r})"


class InvocationBridge:
    """Validates, relays, and adapts tool calls for one session.

    A tools/list_changed notification from the server schedules a registry
    refresh in the background; signals that arrive while a refresh is pending
    or running are folded into one further refresh.
    """

    def __init__(
        self,
        session: ClientSession,
        registry: ToolRegistry | None = None,
        *,
        refresh_on_list_changed: bool = True,
    ) -> None:
        self._session = session
        self._registry = registry or ToolRegistry(session)
        self._stale = False
        self._refreshing = False
        self._remove_listener = (
            session.add_notification_listener(TOOLS_LIST_CHANGED, self._on_list_changed)
            if refresh_on_list_changed
            else None
        )

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    async def refresh(self) -> list[ToolDescriptor]:
        return await self._registry.list_tools()

    async def functions(self, refresh: bool = False) -> list[ToolFunction]:
        """Model-facing descriptors for every cached tool.

        Enumerates first when `refresh` is set or nothing has been enumerated yet.
        """
        if refresh or self._registry.generation == 0:
            await self._registry.list_tools()
        return [ToolFunction(self, descriptor) for descriptor in self._registry]

    async def invoke(
        self,
        name: str,
        arguments: Mapping[str, Any] | None = None,
        *,
        call_id: str | None = None,
        timeout: float | None = None,
        progress_callback: ProgressFnT | None = None,
    ) -> FunctionResult:
        """Validate, relay, and adapt one tool call.

        Raises:
            UnknownTool: `name` was not in the last enumeration; nothing is sent
            SchemaViolation: the arguments break the input schema; nothing is sent
            RemoteInvocationError: the server reported a failure, or returned
                structured content that breaks the tool's output schema
            TimedOut: no response before the deadline
            ConnectionLost: the session closed or failed
        """
        arguments = dict(arguments or {})
        descriptor = self._registry.validate(name, arguments)
        logger.debug(f"Calling tool {name}" + (f" for {call_id}" if call_id else ""))

        try:
            result = await self._session.call_tool(
                name, arguments, timeout=timeout, progress_callback=progress_callback
            )
        except (TimedOut, ConnectionLost):
            raise
        except ValidationError as e:
            raise RemoteInvocationError(
                name, ErrorData(code=INTERNAL_ERROR, message=f"Malformed result from tool {name}: {e}")
            ) from e
        except McpError as e:
            if type(e) is not McpError:
                raise
            raise RemoteInvocationError(name, e.error) from e

        if result.is_error:
            message = "\n".join(_render_block(block) for block in result.content) or f"Tool {name} failed"
            raise RemoteInvocationError(name, ErrorData(code=INTERNAL_ERROR, message=message), result)

        violations = descriptor.validate_output(result.structured_content)
        if violations:
            raise RemoteInvocationError(
                name,
                ErrorData(
                    code=INTERNAL_ERROR,
                    message=f"Invalid structured content returned by tool {name}: "
                    + "; ".join(str(v) for v in violations),
                    data=[{"path": v.path, "message": v.message} for v in violations],
                ),
                result,
            )
        return FunctionResult.from_call_tool_result(name, result, call_id)

    async def execute(self, invocation: Invocation, timeout: float | None = None) -> FunctionResult:
        """Like invoke(), but per-call failures come back as an error result."""
        try:
            return await self.invoke(
                invocation.name, invocation.arguments, call_id=invocation.call_id, timeout=timeout
            )
        except ConnectionLost:
            raise
        except McpError as e:
            logger.info(f"Tool {invocation.name} failed: {e.error.message}")
            return FunctionResult.from_error(invocation.name, e, invocation.call_id)

    def close(self) -> None:
        """Stop reacting to tools/list_changed."""
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None

    async def _on_list_changed(self, notification: JSONRPCNotification) -> None:
        self._stale = True
        if self._refreshing:
            logger.debug("Tool list refresh already scheduled")
            return
        self._refreshing = True
        self._session.start_soon(self._background_refresh)

    async def _background_refresh(self) -> None:
        try:
            while self._stale and not self._session.state.terminal:
                self._stale = False
                try:
                    await self._registry.list_tools()
                except ConnectionLost:
                    return
                except Exception:
                    logger.exception("Background tool list refresh failed")
                    return
        finally:
            self._refreshing = False
