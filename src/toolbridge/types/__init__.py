"""Wire types for the subset of MCP spoken by toolbridge."""

from toolbridge.types.base import (
    LATEST_PROTOCOL_VERSION,
    EmptyResult,
    MCPModel,
    NotificationParams,
    ProgressToken,
    RequestMeta,
    RequestParams,
    Result,
)
from toolbridge.types.common import (
    Annotations,
    ClientCapabilities,
    Icon,
    Implementation,
    ServerCapabilities,
)
from toolbridge.types.content import (
    AudioContent,
    ContentBlock,
    EmbeddedResource,
    ImageContent,
    ResourceLink,
    TextContent,
)
from toolbridge.types.initialize import InitializeRequestParams, InitializeResult
from toolbridge.types.json_rpc import (
    CONNECTION_CLOSED,
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    JSONRPC_VERSION,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    PROTOCOL_MISMATCH,
    ErrorData,
    JSONRPCError,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    RequestId,
    jsonrpc_message_adapter,
)
from toolbridge.types.notifications import (
    CANCELLED,
    INITIALIZED,
    LOGGING_MESSAGE,
    PROGRESS,
    TOOLS_LIST_CHANGED,
    CancelledNotificationParams,
    LoggingLevel,
    LoggingMessageNotificationParams,
    ProgressNotificationParams,
)
from toolbridge.types.tools import (
    CallToolRequestParams,
    CallToolResult,
    ListToolsRequestParams,
    ListToolsResult,
    Tool,
    ToolAnnotations,
)

__all__ = [
    "LATEST_PROTOCOL_VERSION",
    "JSONRPC_VERSION",
    "PARSE_ERROR",
    "INVALID_REQUEST",
    "METHOD_NOT_FOUND",
    "INVALID_PARAMS",
    "INTERNAL_ERROR",
    "CONNECTION_CLOSED",
    "PROTOCOL_MISMATCH",
    "INITIALIZED",
    "CANCELLED",
    "PROGRESS",
    "LOGGING_MESSAGE",
    "TOOLS_LIST_CHANGED",
    "Annotations",
    "AudioContent",
    "CallToolRequestParams",
    "CallToolResult",
    "CancelledNotificationParams",
    "ClientCapabilities",
    "ContentBlock",
    "EmbeddedResource",
    "EmptyResult",
    "ErrorData",
    "Icon",
    "ImageContent",
    "Implementation",
    "InitializeRequestParams",
    "InitializeResult",
    "JSONRPCError",
    "JSONRPCMessage",
    "JSONRPCNotification",
    "JSONRPCRequest",
    "JSONRPCResponse",
    "ListToolsRequestParams",
    "ListToolsResult",
    "LoggingLevel",
    "LoggingMessageNotificationParams",
    "MCPModel",
    "NotificationParams",
    "ProgressNotificationParams",
    "ProgressToken",
    "RequestId",
    "RequestMeta",
    "RequestParams",
    "ResourceLink",
    "Result",
    "ServerCapabilities",
    "TextContent",
    "Tool",
    "ToolAnnotations",
    "jsonrpc_message_adapter",
]
