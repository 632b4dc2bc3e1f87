"""Client side: transports, the negotiated session, and the high-level Client."""

from toolbridge.client.config import ServersConfig, StdioServerConfig, StreamableHTTPServerConfig
from toolbridge.client.session import ClientSession
from toolbridge.client.stdio import StdioServerParameters, stdio_client
from toolbridge.client.transport import HttpTransport, MemoryTransport, StdioTransport, Transport, create_transport
from toolbridge.client.client import Client, open_session

__all__ = [
    "Client",
    "ClientSession",
    "HttpTransport",
    "MemoryTransport",
    "ServersConfig",
    "StdioServerConfig",
    "StdioServerParameters",
    "StdioTransport",
    "StreamableHTTPServerConfig",
    "Transport",
    "create_transport",
    "open_session",
    "stdio_client",
]
