"""A client for tool-providing servers speaking the Model Context Protocol.

toolbridge negotiates a session with a server, enumerates the tools it
advertises, validates model-requested calls against their schemas, relays the
calls, and hands the results back in a shape a chat loop can use.

## Example

```python
from toolbridge import Client, StdioServerConfig

config = StdioServerConfig(command="uv", arguments="run weather.py")

async with Client(config) as client:
    functions = await client.functions()
    tools_for_model = [f.to_openai() for f in functions]
    ...
    result = await functions[0]('{"city": "Oslo"}', call_id="call_1")
    messages.append(result.to_message())
```
"""

from .client.client import Client, open_session
from .client.config import ServersConfig, StdioServerConfig, StreamableHTTPServerConfig
from .client.session import ClientSession
from .client.stdio import StdioServerParameters, stdio_client
from .client.transport import HttpTransport, MemoryTransport, StdioTransport, Transport, create_transport
from .settings import Settings
from .shared.exceptions import (
    ConnectionLost,
    McpError,
    ProtocolMismatch,
    RemoteInvocationError,
    SchemaViolation,
    SchemaViolationDetail,
    TimedOut,
    UnknownTool,
)
from .shared.session import SessionState
from .tools import FunctionResult, Invocation, InvocationBridge, ToolDescriptor, ToolFunction, ToolRegistry

__all__ = [
    "Client",
    "ClientSession",
    "ConnectionLost",
    "FunctionResult",
    "HttpTransport",
    "Invocation",
    "InvocationBridge",
    "McpError",
    "MemoryTransport",
    "ProtocolMismatch",
    "RemoteInvocationError",
    "SchemaViolation",
    "SchemaViolationDetail",
    "ServersConfig",
    "SessionState",
    "Settings",
    "StdioServerConfig",
    "StdioServerParameters",
    "StdioTransport",
    "StreamableHTTPServerConfig",
    "TimedOut",
    "ToolDescriptor",
    "ToolFunction",
    "ToolRegistry",
    "Transport",
    "UnknownTool",
    "create_transport",
    "open_session",
    "stdio_client",
]
