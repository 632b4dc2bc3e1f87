from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from pydantic import ValidationError

import toolbridge.types as types
from toolbridge.settings import Settings
from toolbridge.shared.exceptions import McpError, ProtocolMismatch
from toolbridge.shared.message import SessionMessage
from toolbridge.shared.session import BaseSession, ProgressFnT, SessionState
from toolbridge.shared.version import SUPPORTED_PROTOCOL_VERSIONS
from toolbridge.utilities.logging import SERVER_LOG_LEVELS

logger = logging.getLogger(__name__)
server_logger = logging.getLogger("toolbridge.server")


class ClientSession(BaseSession):
    """The client side of one negotiated connection to a tool-providing server.

    Pass the session explicitly to whatever needs it (a ToolRegistry, an
    InvocationBridge); there is no ambient client.

    Example:
        async with stdio_client(params) as (read, write):
            async with ClientSession(read, write) as session:
                await session.negotiate()
                tools = await session.list_tools()
    """

    def __init__(
        self,
        read_stream: MemoryObjectReceiveStream[SessionMessage | Exception],
        write_stream: MemoryObjectSendStream[SessionMessage],
        *,
        settings: Settings | None = None,
        read_timeout_seconds: float | None = None,
        client_info: types.Implementation | None = None,
        required_capabilities: Sequence[str] | None = None,
    ) -> None:
        settings = settings or Settings()
        super().__init__(
            read_stream,
            write_stream,
            read_timeout_seconds=read_timeout_seconds if read_timeout_seconds is not None else settings.request_timeout,
            notification_queue_size=settings.notification_queue_size,
        )
        self._settings = settings
        self._client_info = client_info or types.Implementation(
            name=settings.client_name, version=settings.client_version
        )
        self._required_capabilities = tuple(
            required_capabilities if required_capabilities is not None else settings.required_capabilities
        )
        self._negotiate_called = False
        self._initialize_result: types.InitializeResult | None = None

    @property
    def protocol_version(self) -> str | None:
        return self._initialize_result.protocol_version if self._initialize_result else None

    @property
    def server_capabilities(self) -> types.ServerCapabilities | None:
        """The capabilities received during negotiation, or None before it."""
        return self._initialize_result.capabilities if self._initialize_result else None

    @property
    def server_info(self) -> types.Implementation | None:
        return self._initialize_result.server_info if self._initialize_result else None

    @property
    def instructions(self) -> str | None:
        return self._initialize_result.instructions if self._initialize_result else None

    async def negotiate(self) -> types.InitializeResult:
        """Perform the initialize handshake. May be called once per session.

        Raises:
            ProtocolMismatch: the server rejected the handshake, speaks an
                unsupported protocol version, or lacks a required capability
            TimedOut: the server did not answer within the handshake timeout
            ConnectionLost: the transport went away during the handshake
        """
        if self._negotiate_called:
            raise RuntimeError("Session has already been negotiated")
        self._negotiate_called = True

        params = types.InitializeRequestParams(
            protocol_version=types.LATEST_PROTOCOL_VERSION,
            capabilities=types.ClientCapabilities(),
            client_info=self._client_info,
        )
        try:
            try:
                result = await self.call(
                    "initialize",
                    params,
                    types.InitializeResult,
                    timeout=self._settings.handshake_timeout,
                )
            except ValidationError as e:
                raise ProtocolMismatch(f"Malformed initialize result: {e}") from e
            except McpError as e:
                if type(e) is not McpError:
                    raise
                raise ProtocolMismatch(f"Server rejected initialize: {e.error.message}", data=e.error.data) from e

            if result.protocol_version not in SUPPORTED_PROTOCOL_VERSIONS:
                raise ProtocolMismatch(
                    f"Unsupported protocol version from the server: {result.protocol_version}",
                    data={"supported": SUPPORTED_PROTOCOL_VERSIONS},
                )
            missing = [cap for cap in self._required_capabilities if not result.capabilities.supports(cap)]
            if missing:
                raise ProtocolMismatch(
                    f"Server is missing required capabilities: {', '.join(missing)}",
                    data={"missing": missing},
                )
        except McpError as e:
            self._fail(f"Handshake failed: {e.error.message}")
            raise

        self._initialize_result = result
        self._set_state(SessionState.NEGOTIATED)

        await self.send_notification(types.INITIALIZED)
        self._set_state(SessionState.ACTIVE)
        logger.info(
            f"Session {self.session_id} negotiated protocol {result.protocol_version} "
            f"with {result.server_info.name} {result.server_info.version}"
        )
        return result

    async def send_ping(self) -> types.EmptyResult:
        """Send a ping request."""
        return await self.call("ping", None, types.EmptyResult)

    async def list_tools(self, cursor: str | None = None) -> types.ListToolsResult:
        """Send a tools/list request for one page of tools."""
        params = types.ListToolsRequestParams(cursor=cursor) if cursor is not None else None
        return await self.call("tools/list", params, types.ListToolsResult)

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        timeout: float | None = None,
        progress_callback: ProgressFnT | None = None,
    ) -> types.CallToolResult:
        """Send a tools/call request with optional progress callback support."""
        return await self.call(
            "tools/call",
            types.CallToolRequestParams(name=name, arguments=arguments),
            types.CallToolResult,
            timeout=timeout,
            progress_callback=progress_callback,
        )

    async def _received_notification(self, notification: types.JSONRPCNotification) -> None:
        if notification.method == types.LOGGING_MESSAGE and self._settings.forward_server_logs:
            try:
                params = types.LoggingMessageNotificationParams.model_validate(notification.params or {})
            except ValidationError as e:
                logger.warning(f"Failed to validate log notification: {e}")
                return
            level = SERVER_LOG_LEVELS.get(params.level, logging.INFO)
            source = f"[{params.logger}] " if params.logger else ""
            server_logger.log(level, f"{source}{params.data}")
