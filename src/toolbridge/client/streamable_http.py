"""
StreamableHTTP Client Transport Module

This module implements the StreamableHTTP transport for MCP clients: every
client message is an HTTP POST; the server answers a request with either a
JSON body or an SSE stream that ends with the response. After initialization
an optional GET stream carries server-initiated notifications.
"""

import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from typing import Any

import anyio
import httpx
from anyio.abc import TaskGroup
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from httpx_sse import EventSource, ServerSentEvent, aconnect_sse

from toolbridge.shared.message import SessionMessage
from toolbridge.types import (
    CONNECTION_CLOSED,
    INITIALIZED,
    INTERNAL_ERROR,
    ErrorData,
    InitializeResult,
    JSONRPCError,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    RequestId,
    jsonrpc_message_adapter,
)

logger = logging.getLogger(__name__)

StreamWriter = MemoryObjectSendStream[SessionMessage | Exception]
StreamReader = MemoryObjectReceiveStream[SessionMessage]
HttpClientFactory = Callable[..., httpx.AsyncClient]

MCP_SESSION_ID = "mcp-session-id"
MCP_PROTOCOL_VERSION = "mcp-protocol-version"
CONTENT_TYPE = "content-type"
ACCEPT = "accept"

JSON = "application/json"
SSE = "text/event-stream"

DEFAULT_TIMEOUT = 30.0
DEFAULT_SSE_READ_TIMEOUT = 60 * 5.0


class StreamableHTTPError(Exception):
    """Base exception for StreamableHTTP transport errors."""


def create_http_client(
    headers: dict[str, str] | None = None,
    timeout: httpx.Timeout | None = None,
    auth: httpx.Auth | None = None,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        headers=headers,
        timeout=timeout or httpx.Timeout(DEFAULT_TIMEOUT, read=DEFAULT_SSE_READ_TIMEOUT),
        auth=auth,
        follow_redirects=True,
    )


class StreamableHTTPTransport:
    """StreamableHTTP client transport implementation."""

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        sse_read_timeout: float = DEFAULT_SSE_READ_TIMEOUT,
        open_get_stream: bool = True,
    ) -> None:
        self.url = url
        self.headers = headers or {}
        self.timeout = timeout
        self.sse_read_timeout = sse_read_timeout
        self.open_get_stream = open_get_stream
        self.session_id: str | None = None
        self.protocol_version: str | None = None
        self.request_headers = {
            ACCEPT: f"{JSON}, {SSE}",
            CONTENT_TYPE: JSON,
            **self.headers,
        }

    def _prepare_request_headers(self) -> dict[str, str]:
        """Add the session ID and protocol version once they are known."""
        headers = self.request_headers.copy()
        if self.session_id:
            headers[MCP_SESSION_ID] = self.session_id
        if self.protocol_version:
            headers[MCP_PROTOCOL_VERSION] = self.protocol_version
        return headers

    def _maybe_extract_protocol_version(self, message: JSONRPCMessage) -> None:
        if isinstance(message, JSONRPCResponse):
            try:
                self.protocol_version = InitializeResult.model_validate(message.result).protocol_version
            except Exception as exc:
                logger.warning(f"Failed to parse initialization response as InitializeResult: {exc}")

    async def _handle_sse_event(
        self,
        sse: ServerSentEvent,
        read_stream_writer: StreamWriter,
        is_initialization: bool = False,
    ) -> bool:
        """Forward one SSE event. Returns True once the request's response arrived."""
        if sse.event != "message" or not sse.data.strip():
            return False
        try:
            message = jsonrpc_message_adapter.validate_json(sse.data)
        except Exception as exc:
            logger.exception("Error parsing SSE message")
            await read_stream_writer.send(exc)
            return False

        logger.debug(f"SSE message: {message}")
        if is_initialization:
            self._maybe_extract_protocol_version(message)
        await read_stream_writer.send(SessionMessage(message))
        return isinstance(message, JSONRPCResponse | JSONRPCError)

    async def _handle_post(
        self,
        client: httpx.AsyncClient,
        session_message: SessionMessage,
        read_stream_writer: StreamWriter,
    ) -> None:
        message = session_message.message
        is_initialization = isinstance(message, JSONRPCRequest) and message.method == "initialize"

        async with client.stream(
            "POST",
            self.url,
            content=session_message.to_json(),
            headers=self._prepare_request_headers(),
        ) as response:
            if response.status_code == 202:
                return

            if response.status_code == 404 and self.session_id:
                if isinstance(message, JSONRPCRequest):
                    await self._send_session_terminated_error(read_stream_writer, message.id)
                return

            response.raise_for_status()
            if is_initialization:
                new_session_id = response.headers.get(MCP_SESSION_ID)
                if new_session_id:
                    self.session_id = new_session_id
                    logger.info(f"Received session ID: {self.session_id}")

            # The server MUST NOT send a response to notifications.
            if not isinstance(message, JSONRPCRequest):
                return

            content_type = response.headers.get(CONTENT_TYPE, "").lower()
            if content_type.startswith(JSON):
                content = await response.aread()
                try:
                    reply = jsonrpc_message_adapter.validate_json(content)
                except Exception as exc:
                    logger.exception("Error parsing JSON response")
                    await read_stream_writer.send(exc)
                    return
                if is_initialization:
                    self._maybe_extract_protocol_version(reply)
                await read_stream_writer.send(SessionMessage(reply))
            elif content_type.startswith(SSE):
                event_source = EventSource(response)
                async for sse in event_source.aiter_sse():
                    if await self._handle_sse_event(sse, read_stream_writer, is_initialization):
                        break
            else:
                await read_stream_writer.send(StreamableHTTPError(f"Unexpected content type: {content_type}"))

    async def _send_session_terminated_error(self, read_stream_writer: StreamWriter, request_id: RequestId) -> None:
        error = JSONRPCError(
            jsonrpc="2.0",
            id=request_id,
            error=ErrorData(code=CONNECTION_CLOSED, message="Session terminated"),
        )
        await read_stream_writer.send(SessionMessage(error))

    async def _send_request_failed_error(
        self, read_stream_writer: StreamWriter, request_id: RequestId, exc: Exception
    ) -> None:
        data: dict[str, Any] = {"url": self.url}
        if isinstance(exc, httpx.HTTPStatusError):
            data["status"] = exc.response.status_code
        error = JSONRPCError(
            jsonrpc="2.0",
            id=request_id,
            error=ErrorData(code=INTERNAL_ERROR, message=f"HTTP request failed: {exc}", data=data),
        )
        await read_stream_writer.send(SessionMessage(error))

    async def handle_get_stream(self, client: httpx.AsyncClient, read_stream_writer: StreamWriter) -> None:
        """Listen for server-initiated messages on a standalone GET stream."""
        try:
            async with aconnect_sse(
                client,
                "GET",
                self.url,
                headers=self._prepare_request_headers(),
                timeout=httpx.Timeout(self.timeout, read=self.sse_read_timeout),
            ) as event_source:
                event_source.response.raise_for_status()
                logger.debug("GET SSE connection established")
                async for sse in event_source.aiter_sse():
                    await self._handle_sse_event(sse, read_stream_writer)
        except Exception as exc:
            # Servers are allowed to refuse the GET stream
            logger.debug(f"GET stream error (non-fatal): {exc}")

    async def post_writer(
        self,
        client: httpx.AsyncClient,
        write_stream_reader: StreamReader,
        read_stream_writer: StreamWriter,
        tg: TaskGroup,
    ) -> None:
        """Turn each outgoing message into a POST."""

        async def post(session_message: SessionMessage) -> None:
            message = session_message.message
            try:
                await self._handle_post(client, session_message, read_stream_writer)
            except (anyio.ClosedResourceError, anyio.BrokenResourceError):
                pass
            except Exception as exc:
                logger.warning(f"POST failed: {exc}")
                try:
                    if isinstance(message, JSONRPCRequest):
                        # Only the request that was being posted fails
                        await self._send_request_failed_error(read_stream_writer, message.id, exc)
                    else:
                        await read_stream_writer.send(exc)
                except (anyio.ClosedResourceError, anyio.BrokenResourceError):
                    pass

        async with write_stream_reader:
            async for session_message in write_stream_reader:
                message = session_message.message
                logger.debug(f"Sending client message: {message}")
                if isinstance(message, JSONRPCRequest):
                    # Requests run concurrently; a long SSE response must not block the next one
                    tg.start_soon(post, session_message)
                else:
                    await post(session_message)
                    if (
                        isinstance(message, JSONRPCNotification)
                        and message.method == INITIALIZED
                        and self.open_get_stream
                        and self.session_id
                    ):
                        tg.start_soon(self.handle_get_stream, client, read_stream_writer)

    async def terminate_session(self, client: httpx.AsyncClient) -> None:
        """Terminate the session by sending a DELETE request."""
        if not self.session_id:
            return
        try:
            response = await client.delete(self.url, headers=self._prepare_request_headers())
            if response.status_code == 405:
                logger.debug("Server does not allow session termination")
            elif response.status_code not in (200, 202, 204):
                logger.warning(f"Session termination failed: {response.status_code}")
        except httpx.HTTPError as exc:
            logger.warning(f"Session termination failed: {exc}")


@asynccontextmanager
async def streamablehttp_client(
    url: str,
    headers: dict[str, str] | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    sse_read_timeout: float = DEFAULT_SSE_READ_TIMEOUT,
    terminate_on_close: bool = True,
    httpx_client_factory: HttpClientFactory = create_http_client,
    auth: httpx.Auth | None = None,
) -> AsyncGenerator[
    tuple[
        MemoryObjectReceiveStream[SessionMessage | Exception],
        MemoryObjectSendStream[SessionMessage],
    ],
    None,
]:
    """
    Client transport for StreamableHTTP.

    `sse_read_timeout` determines how long (in seconds) the client will wait for a new
    event before disconnecting. All other HTTP operations are controlled by `timeout`.
    """
    transport = StreamableHTTPTransport(url, headers, timeout, sse_read_timeout)

    read_stream_writer, read_stream = anyio.create_memory_object_stream[SessionMessage | Exception](0)
    write_stream, write_stream_reader = anyio.create_memory_object_stream[SessionMessage](0)

    async with anyio.create_task_group() as tg:
        try:
            logger.debug(f"Connecting to StreamableHTTP endpoint: {url}")
            async with httpx_client_factory(
                headers=transport.request_headers,
                timeout=httpx.Timeout(transport.timeout, read=transport.sse_read_timeout),
                auth=auth,
            ) as client:
                tg.start_soon(transport.post_writer, client, write_stream_reader, read_stream_writer, tg)
                try:
                    yield read_stream, write_stream
                finally:
                    if terminate_on_close:
                        with anyio.CancelScope(shield=True):
                            await transport.terminate_session(client)
                    tg.cancel_scope.cancel()
        finally:
            await read_stream_writer.aclose()
            await write_stream.aclose()
            await read_stream.aclose()
            await write_stream_reader.aclose()
