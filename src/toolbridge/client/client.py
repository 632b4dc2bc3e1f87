"""High-level client that wires a transport, a session, a tool registry and an invocation bridge together."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

from toolbridge.client.config import ServerConfig
from toolbridge.client.session import ClientSession
from toolbridge.client.transport import HttpTransport, Transport, create_transport
from toolbridge.settings import Settings
from toolbridge.shared.session import ProgressFnT
from toolbridge.tools.bridge import FunctionResult, InvocationBridge, ToolFunction
from toolbridge.tools.registry import ToolDescriptor, ToolRegistry
from toolbridge.utilities.logging import configure_logging

logger = logging.getLogger(__name__)

# Type alias for all accepted target types
ClientTarget = Transport | ServerConfig | str


def _infer_transport(target: ClientTarget) -> Transport:
    """Infer the appropriate transport from the target type.

    Args:
        target: The target to connect to. Can be:
            - Transport instance: Uses the transport directly
            - ServerConfig: Builds the transport it describes
            - str (URL): Uses HttpTransport (Streamable HTTP)

    Raises:
        TypeError: If the target type is not recognized.
    """
    if isinstance(target, ServerConfig):
        return create_transport(target)
    if isinstance(target, str):
        return HttpTransport(target)
    if isinstance(target, Transport):
        return target
    raise TypeError(f"Cannot connect to {type(target).__name__}")


@asynccontextmanager
async def open_session(
    transport: Transport,
    settings: Settings | None = None,
    **session_kwargs: Any,
) -> AsyncIterator[ClientSession]:
    """Connect `transport`, negotiate, and yield an active session.

    The transport is torn down on every exit path, including a failed handshake.
    """
    async with transport.connect() as (read_stream, write_stream):
        async with ClientSession(read_stream, write_stream, settings=settings, **session_kwargs) as session:
            await session.negotiate()
            yield session


class Client:
    """A tool client for one server.

    With `setup_logging=True` the client installs a rich log handler at
    `settings.log_level` when it is created.

    Examples:
        ```python
        # HTTP connection via URL string
        async with Client("http://localhost:8000/mcp") as client:
            for function in await client.functions():
                print(function)
            result = await client.invoke("add", {"a": 1, "b": 2})

        # A server started as a child process
        config = StdioServerConfig(command="uv", arguments="run weather.py")
        async with Client(config) as client:
            ...
        ```
    """

    def __init__(
        self,
        target: ClientTarget,
        *,
        settings: Settings | None = None,
        list_tools_on_connect: bool = True,
        setup_logging: bool = False,
    ) -> None:
        self._target = target
        self._settings = settings or Settings()
        self._list_tools_on_connect = list_tools_on_connect

        if setup_logging:
            configure_logging(self._settings.log_level)

        self._session: ClientSession | None = None
        self._bridge: InvocationBridge | None = None
        self._exit_stack: AsyncExitStack | None = None

    async def __aenter__(self) -> Client:
        if self._session is not None:
            raise RuntimeError("Client is already entered; cannot reenter")

        async with AsyncExitStack() as exit_stack:
            transport = _infer_transport(self._target)
            logger.debug(f"Connecting with {transport!r}")
            session = await exit_stack.enter_async_context(open_session(transport, self._settings))

            bridge = InvocationBridge(session)
            exit_stack.callback(bridge.close)
            if self._list_tools_on_connect:
                await bridge.refresh()

            self._session = session
            self._bridge = bridge
            # Transfer ownership to self for __aexit__ to handle
            self._exit_stack = exit_stack.pop_all()
            return self

    async def __aexit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        if self._exit_stack:
            await self._exit_stack.__aexit__(exc_type, exc_val, exc_tb)
        self._exit_stack = None
        self._session = None
        self._bridge = None

    @property
    def session(self) -> ClientSession:
        """The underlying ClientSession.

        Raises:
            RuntimeError: If accessed before entering the context manager.
        """
        if self._session is None:
            raise RuntimeError("Client must be used within an async context manager")
        return self._session

    @property
    def bridge(self) -> InvocationBridge:
        if self._bridge is None:
            raise RuntimeError("Client must be used within an async context manager")
        return self._bridge

    @property
    def registry(self) -> ToolRegistry:
        return self.bridge.registry

    async def send_ping(self) -> None:
        await self.session.send_ping()

    async def list_tools(self) -> list[ToolDescriptor]:
        return await self.registry.list_tools()

    async def functions(self, refresh: bool = False) -> list[ToolFunction]:
        return await self.bridge.functions(refresh=refresh)

    async def invoke(
        self,
        name: str,
        arguments: Mapping[str, Any] | None = None,
        *,
        call_id: str | None = None,
        timeout: float | None = None,
        progress_callback: ProgressFnT | None = None,
    ) -> FunctionResult:
        return await self.bridge.invoke(
            name, arguments, call_id=call_id, timeout=timeout, progress_callback=progress_callback
        )
