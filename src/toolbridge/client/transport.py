"""Transport protocol and the concrete transports toolbridge ships."""

from __future__ import annotations

import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Protocol, TextIO, runtime_checkable

import httpx
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from toolbridge.client.config import ServerConfig, StdioServerConfig, StreamableHTTPServerConfig
from toolbridge.client.stdio import StdioServerParameters, stdio_client
from toolbridge.client.streamable_http import create_http_client, streamablehttp_client
from toolbridge.shared.memory import create_client_server_memory_streams
from toolbridge.shared.message import SessionMessage

TransportStreams = tuple[MemoryObjectReceiveStream[SessionMessage | Exception], MemoryObjectSendStream[SessionMessage]]


@runtime_checkable
class Transport(Protocol):
    """Protocol for client transports.

    `connect()` yields a read stream (framed messages from the server, or an
    Exception for a frame that could not be decoded) and a write stream. The
    read stream is valid for that one connection. Leaving the context closes
    the underlying process or connection, whatever the exit path.

    Example:
        ```python
        class MyTransport:
            @asynccontextmanager
            async def connect(self):
                # Set up connection...
                yield read_stream, write_stream
                # Clean up...
        ```
    """

    def connect(self) -> AsyncIterator[TransportStreams]: ...


class StdioTransport:
    """Spawn the server as a child process and talk over its stdin/stdout."""

    def __init__(self, params: StdioServerParameters, errlog: TextIO = sys.stderr) -> None:
        self.params = params
        self.errlog = errlog

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[TransportStreams]:
        async with stdio_client(self.params, errlog=self.errlog) as streams:
            yield streams

    def __repr__(self) -> str:
        return f"StdioTransport({self.params.command!r}, args={self.params.args!r})"


class HttpTransport:
    """Streamable HTTP transport for connecting to servers over HTTP."""

    def __init__(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
        httpx_client: httpx.AsyncClient | None = None,
        terminate_on_close: bool = True,
    ) -> None:
        """
        Args:
            url: The server endpoint URL.
            headers: Optional headers to include in every request.
            timeout: Timeout in seconds for HTTP operations other than SSE reads.
            httpx_client: Optional pre-configured client. It is used as is, and
                closed when the transport disconnects.
            terminate_on_close: Send a DELETE for the session on disconnect.
        """
        self.url = url
        self.headers = headers
        self.timeout = timeout
        self._httpx_client = httpx_client
        self.terminate_on_close = terminate_on_close

    def _client_factory(self, **kwargs: object) -> httpx.AsyncClient:
        if self._httpx_client is not None:
            return self._httpx_client
        return create_http_client(**kwargs)  # type: ignore[arg-type]

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[TransportStreams]:
        async with streamablehttp_client(
            self.url,
            headers=self.headers,
            timeout=self.timeout,
            terminate_on_close=self.terminate_on_close,
            httpx_client_factory=self._client_factory,
        ) as streams:
            yield streams

    def __repr__(self) -> str:
        return f"HttpTransport({self.url!r})"


class MemoryTransport:
    """In-process transport; the other end of the pipe is exposed as `server_streams`.

    Useful for tests and for servers running in the same event loop.
    """

    def __init__(self, max_buffer_size: int = 0) -> None:
        self.max_buffer_size = max_buffer_size
        self.server_streams: TransportStreams | None = None

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[TransportStreams]:
        async with create_client_server_memory_streams(self.max_buffer_size) as (client_streams, server_streams):
            self.server_streams = server_streams  # type: ignore[assignment]
            try:
                yield client_streams
            finally:
                self.server_streams = None


def create_transport(config: ServerConfig, errlog: TextIO = sys.stderr) -> Transport:
    """Build the transport a server configuration describes."""
    if isinstance(config, StdioServerConfig):
        return StdioTransport(
            StdioServerParameters(
                command=config.effective_command,
                args=config.effective_args,
                env=config.env,
                cwd=config.cwd,
            ),
            errlog=errlog,
        )
    if isinstance(config, StreamableHTTPServerConfig):
        return HttpTransport(config.url, headers=config.headers, timeout=config.timeout)
    raise TypeError(f"Unsupported server configuration: {type(config).__name__}")
