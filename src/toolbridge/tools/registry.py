from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

import anyio
from jsonschema.protocols import Validator
from pydantic import ValidationError

from toolbridge.client.session import ClientSession
from toolbridge.shared.exceptions import SchemaViolation, SchemaViolationDetail, UnknownTool
from toolbridge.tools.schema import (
    AnyParameter,
    ParameterSpec,
    collect_violations,
    compile_validator,
    parse_parameters,
)
from toolbridge.types import Tool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolDescriptor:
    """One tool as advertised by the server at the last enumeration."""

    name: str
    description: str
    input_schema: Mapping[str, Any]
    output_schema: Mapping[str, Any] | None
    parameters: ParameterSpec
    tool: Tool = field(repr=False)
    _input_validator: Validator | None = field(default=None, repr=False, compare=False)
    _output_validator: Validator | None = field(default=None, repr=False, compare=False)

    @classmethod
    def from_tool(cls, tool: Tool) -> ToolDescriptor:
        try:
            parameters: ParameterSpec = parse_parameters(tool.input_schema)
        except ValidationError as e:
            logger.warning(f"Could not parse input schema of tool {tool.name}: {e}")
            parameters = AnyParameter(raw=dict(tool.input_schema))
        return cls(
            name=tool.name,
            description=tool.description or tool.title or "",
            input_schema=MappingProxyType(dict(tool.input_schema)),
            output_schema=MappingProxyType(dict(tool.output_schema)) if tool.output_schema is not None else None,
            parameters=parameters,
            tool=tool,
            _input_validator=compile_validator(tool.input_schema, tool.name),
            _output_validator=compile_validator(tool.output_schema, tool.name)
            if tool.output_schema is not None
            else None,
        )

    def validate_arguments(self, arguments: Mapping[str, Any]) -> list[SchemaViolationDetail]:
        if self._input_validator is None:
            return []
        return collect_violations(self._input_validator, dict(arguments))

    def validate_output(self, structured_content: dict[str, Any] | None) -> list[SchemaViolationDetail]:
        if self._output_validator is None:
            return []
        if structured_content is None:
            return [SchemaViolationDetail(path="$", message="tool has an output schema but returned no structured content")]
        return collect_violations(self._output_validator, structured_content)


_EMPTY: Mapping[str, ToolDescriptor] = MappingProxyType({})


class ToolRegistry:
    """
    Client-side cache of the tools one session advertises.

    The cached set is an immutable mapping replaced by a single assignment, so
    a reader holding a snapshot never sees a half-updated set. Refreshes are
    serialized with a lock; readers never wait on it.
    """

    def __init__(self, session: ClientSession) -> None:
        self._session = session
        self._tools: Mapping[str, ToolDescriptor] = _EMPTY
        self._refresh_lock = anyio.Lock()
        self._generation = 0

    @property
    def session(self) -> ClientSession:
        return self._session

    @property
    def generation(self) -> int:
        """Number of successful enumerations so far."""
        return self._generation

    @property
    def snapshot(self) -> Mapping[str, ToolDescriptor]:
        return self._tools

    async def list_tools(self) -> list[ToolDescriptor]:
        """Fetch every page of tools/list and replace the cache.

        On failure the previous set stays in place and the error propagates.
        """
        async with self._refresh_lock:
            tools: dict[str, ToolDescriptor] = {}
            seen_cursors: set[str] = set()
            cursor: str | None = None
            while True:
                result = await self._session.list_tools(cursor)
                for tool in result.tools:
                    if tool.name in tools:
                        logger.warning(f"Server listed tool {tool.name} twice, keeping the first")
                        continue
                    tools[tool.name] = ToolDescriptor.from_tool(tool)

                cursor = result.next_cursor
                if not cursor:
                    break
                if cursor in seen_cursors:
                    logger.warning(f"Server repeated pagination cursor {cursor!r}, stopping")
                    break
                seen_cursors.add(cursor)

            self._tools = MappingProxyType(tools)
            self._generation += 1
            logger.debug(f"Tool list refreshed (generation {self._generation}): {', '.join(tools) or 'no tools'}")
            return list(tools.values())

    def get(self, name: str) -> ToolDescriptor:
        try:
            return self._tools[name]
        except KeyError:
            raise UnknownTool(name) from None

    def validate(self, name: str, arguments: Mapping[str, Any]) -> ToolDescriptor:
        """Check `arguments` against the cached input schema of `name`.

        Purely local: nothing is sent to the server.

        Raises:
            UnknownTool: `name` was not in the last enumeration
            SchemaViolation: the arguments break the schema; every violation is listed
        """
        descriptor = self.get(name)
        violations = descriptor.validate_arguments(arguments)
        if violations:
            raise SchemaViolation(name, violations)
        return descriptor

    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[ToolDescriptor]:
        return iter(list(self._tools.values()))
