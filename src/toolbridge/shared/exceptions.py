from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

from toolbridge.types import (
    CONNECTION_CLOSED,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    PROTOCOL_MISMATCH,
    ErrorData,
)

if TYPE_CHECKING:
    from toolbridge.types import CallToolResult

REQUEST_TIMEOUT = httpx.codes.REQUEST_TIMEOUT.value


class McpError(Exception):
    """Exception raised when an MCP protocol error is received from a peer.

    This is also the base class of every error the client raises on its own
    account, so callers can catch a single type. It wraps an ErrorData and
    provides access to the error code, message, and any additional data.

    Attributes:
        error: The ErrorData describing the failure
    """

    error: ErrorData

    def __init__(self, error: ErrorData):
        super().__init__(error.message)
        self.error = error

    @property
    def code(self) -> int:
        return self.error.code


class ConnectionLost(McpError):
    """The transport was severed or the session was closed.

    Raised to every caller waiting on the session when it happens.
    """

    def __init__(self, message: str = "Connection closed"):
        super().__init__(ErrorData(code=CONNECTION_CLOSED, message=message))


class ProtocolMismatch(McpError):
    """The initialize handshake failed: unsupported version or missing capabilities."""

    def __init__(self, message: str, data: object | None = None):
        super().__init__(ErrorData(code=PROTOCOL_MISMATCH, message=message, data=data))


class TimedOut(McpError):
    """No response arrived before the request deadline."""

    def __init__(self, method: str, timeout: float | None):
        super().__init__(
            ErrorData(
                code=REQUEST_TIMEOUT,
                message=f"Timed out while waiting for response to {method}. Waited {timeout} seconds.",
            )
        )
        self.method = method
        self.timeout = timeout


class UnknownTool(McpError):
    """The tool name is absent from the last enumerated tool list."""

    def __init__(self, name: str):
        super().__init__(ErrorData(code=METHOD_NOT_FOUND, message=f"Unknown tool: {name}"))
        self.name = name


@dataclass(frozen=True)
class SchemaViolationDetail:
    """One schema violation: where in the instance, and what is wrong."""

    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


class SchemaViolation(McpError):
    """Tool arguments do not satisfy the tool's input schema."""

    def __init__(self, name: str, violations: Sequence[SchemaViolationDetail]):
        summary = "; ".join(str(v) for v in violations)
        super().__init__(
            ErrorData(
                code=INVALID_PARAMS,
                message=f"Invalid arguments for tool {name}: {summary}",
                data=[{"path": v.path, "message": v.message} for v in violations],
            )
        )
        self.name = name
        self.violations = tuple(violations)


class RemoteInvocationError(McpError):
    """The server reported a failure while executing a tool.

    Attributes:
        name: The tool that failed
        result: The tool result when the server reported the failure in-band
            (``isError``) or returned unusable structured content
    """

    def __init__(self, name: str, error: ErrorData, result: "CallToolResult | None" = None):
        super().__init__(error)
        self.name = name
        self.result = result
