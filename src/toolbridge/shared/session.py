import logging
import math
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from types import TracebackType
from typing import Any, Protocol, TypeVar, overload
from uuid import uuid4

import anyio
import anyio.lowlevel
from anyio.abc import TaskGroup
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from pydantic import BaseModel, ValidationError
from typing_extensions import Self

from toolbridge.shared.exceptions import ConnectionLost, McpError, TimedOut
from toolbridge.shared.message import SessionMessage
from toolbridge.types import (
    CANCELLED,
    INTERNAL_ERROR,
    METHOD_NOT_FOUND,
    PROGRESS,
    CancelledNotificationParams,
    EmptyResult,
    ErrorData,
    JSONRPCError,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    ProgressNotificationParams,
    RequestId,
)

logger = logging.getLogger(__name__)

ReceiveResultT = TypeVar("ReceiveResultT", bound=BaseModel)

DEFAULT_NOTIFICATION_QUEUE_SIZE = 64


class ProgressFnT(Protocol):
    """Protocol for progress notification callbacks."""

    async def __call__(self, progress: float, total: float | None, message: str | None) -> None: ...


NotificationListener = Callable[[JSONRPCNotification], Awaitable[None]]


class SessionState(str, Enum):
    CONNECTING = "connecting"
    NEGOTIATED = "negotiated"
    ACTIVE = "active"
    CLOSED = "closed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (SessionState.CLOSED, SessionState.FAILED)


ResponseOrFailure = JSONRPCResponse | JSONRPCError | ConnectionLost


@dataclass
class PendingRequest:
    """A request that was sent and is waiting for its response."""

    request_id: RequestId
    method: str
    deadline: float | None
    progress_callback: ProgressFnT | None = None
    send_stream: MemoryObjectSendStream[ResponseOrFailure] = field(init=False, repr=False)
    receive_stream: MemoryObjectReceiveStream[ResponseOrFailure] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.send_stream, self.receive_stream = anyio.create_memory_object_stream[ResponseOrFailure](1)

    def deliver(self, item: ResponseOrFailure) -> None:
        try:
            self.send_stream.send_nowait(item)
        except (anyio.WouldBlock, anyio.BrokenResourceError, anyio.ClosedResourceError):
            # Already resolved, or the waiter is gone
            logger.debug(f"Dropping late delivery for request {self.request_id}")
        finally:
            self.send_stream.close()

    def close(self) -> None:
        self.send_stream.close()
        self.receive_stream.close()


class PendingRequests:
    """Correlation table for requests in flight on one session.

    None of the methods contain a suspension point, so every operation on the
    table is atomic with respect to other tasks on the event loop.
    """

    def __init__(self) -> None:
        self._next_id = 0
        self._requests: dict[RequestId, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._requests)

    def __contains__(self, request_id: object) -> bool:
        return self._key(request_id) in self._requests  # type: ignore[arg-type]

    def __iter__(self) -> Iterator[RequestId]:
        return iter(list(self._requests))

    def new_request(
        self,
        method: str,
        deadline: float | None = None,
        progress_callback: ProgressFnT | None = None,
    ) -> PendingRequest:
        request_id = self._next_id
        self._next_id = request_id + 1
        pending = PendingRequest(request_id, method, deadline, progress_callback)
        self._requests[request_id] = pending
        return pending

    def get(self, request_id: RequestId) -> PendingRequest | None:
        return self._requests.get(self._key(request_id))

    def resolve(self, message: JSONRPCResponse | JSONRPCError) -> bool:
        """Hand a response to the request it answers. Returns False if nobody is waiting."""
        if message.id is None:
            return False
        pending = self._requests.pop(self._key(message.id), None)
        if pending is None:
            return False
        pending.deliver(message)
        return True

    def remove(self, pending: PendingRequest) -> None:
        """Forget a request and release its channel. Idempotent."""
        if self._requests.get(pending.request_id) is pending:
            del self._requests[pending.request_id]
        pending.close()

    def fail_all(self, message: str) -> int:
        """Resolve every pending request with ConnectionLost."""
        requests = list(self._requests.values())
        self._requests.clear()
        for pending in requests:
            pending.deliver(ConnectionLost(message))
        return len(requests)

    def _key(self, request_id: RequestId) -> RequestId:
        # Some servers echo integer ids back as strings
        if request_id in self._requests:
            return request_id
        if isinstance(request_id, str):
            try:
                return int(request_id)
            except ValueError:
                return request_id
        return str(request_id)


class BaseSession:
    """
    Implements an MCP "session" on top of read/write streams, including
    request/response correlation, notification dispatch, and progress.

    One reader task drains the read stream. Responses are matched to their
    pending request without suspending; notifications and server requests go
    onto a bounded queue drained in order by a dispatcher task, so a slow
    listener never stalls response delivery.

    This class is an async context manager that automatically starts processing
    messages when entered.
    """

    _pre_active_methods = frozenset({"initialize", "ping"})

    def __init__(
        self,
        read_stream: MemoryObjectReceiveStream[SessionMessage | Exception],
        write_stream: MemoryObjectSendStream[SessionMessage],
        # If none, reading will never time out
        read_timeout_seconds: float | None = None,
        notification_queue_size: int = DEFAULT_NOTIFICATION_QUEUE_SIZE,
        session_id: str | None = None,
    ) -> None:
        self._read_stream = read_stream
        self._write_stream = write_stream
        self._session_read_timeout_seconds = read_timeout_seconds
        self._session_id = session_id or uuid4().hex
        self._state = SessionState.CONNECTING
        self._pending = PendingRequests()
        self._listeners: dict[str | None, list[NotificationListener]] = {}
        self._dispatch_send, self._dispatch_receive = anyio.create_memory_object_stream[
            JSONRPCRequest | JSONRPCNotification
        ](notification_queue_size)
        self._reader_scope = anyio.CancelScope()
        self._dispatch_scope = anyio.CancelScope()
        self._task_group: TaskGroup | None = None

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def state(self) -> SessionState:
        return self._state

    async def __aenter__(self) -> Self:
        self._task_group = anyio.create_task_group()
        await self._task_group.__aenter__()
        self._task_group.start_soon(self._receive_loop)
        self._task_group.start_soon(self._dispatch_loop)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        self._close()
        assert self._task_group is not None
        # Using BaseSession as a context manager should not block on exit (this
        # would be very surprising behavior), so make sure to cancel the tasks
        # in the task group.
        self._task_group.cancel_scope.cancel()
        # The reader and dispatcher never raise, so the body's exception is
        # left to propagate as is instead of being wrapped in an exception group
        await self._task_group.__aexit__(None, None, None)
        return None

    async def aclose(self) -> None:
        """Close the session gracefully.

        Every pending request is resolved with ConnectionLost immediately.
        """
        self._close()
        await anyio.lowlevel.checkpoint()

    def _close(self) -> None:
        if not self._state.terminal:
            self._set_state(SessionState.CLOSED)
            failed = self._pending.fail_all("Session closed")
            if failed:
                logger.debug(f"Failed {failed} pending request(s) on close")
        self._reader_scope.cancel()
        self._dispatch_scope.cancel()
        self._dispatch_send.close()

    def start_soon(self, func: Callable[..., Awaitable[Any]], *args: Any) -> None:
        """Run a background task that lives no longer than the session."""
        if self._task_group is None:
            raise RuntimeError("Session has not been entered")
        self._task_group.start_soon(func, *args)

    def add_notification_listener(
        self,
        method: str | None,
        listener: NotificationListener,
    ) -> Callable[[], None]:
        """Register a listener for notifications with `method` (None for all).

        Listeners run on the dispatcher task in arrival order and must not do
        long work inline. Returns a callable that removes the listener.
        """
        self._listeners.setdefault(method, []).append(listener)

        def remove() -> None:
            self.remove_notification_listener(method, listener)

        return remove

    def remove_notification_listener(self, method: str | None, listener: NotificationListener) -> None:
        listeners = self._listeners.get(method)
        if listeners and listener in listeners:
            listeners.remove(listener)

    @overload
    async def call(
        self,
        method: str,
        params: BaseModel | dict[str, Any] | None,
        result_type: type[ReceiveResultT],
        timeout: float | None = None,
        progress_callback: ProgressFnT | None = None,
    ) -> ReceiveResultT: ...

    @overload
    async def call(
        self,
        method: str,
        params: BaseModel | dict[str, Any] | None = None,
        result_type: None = None,
        timeout: float | None = None,
        progress_callback: ProgressFnT | None = None,
    ) -> dict[str, Any]: ...

    async def call(
        self,
        method: str,
        params: BaseModel | dict[str, Any] | None = None,
        result_type: type[ReceiveResultT] | None = None,
        timeout: float | None = None,
        progress_callback: ProgressFnT | None = None,
    ) -> ReceiveResultT | dict[str, Any]:
        """
        Sends a request and waits for a response. Raises an McpError if the
        response contains an error, TimedOut if no response arrives before the
        deadline, and ConnectionLost if the session dies first. If a timeout is
        provided, it takes precedence over the session read timeout.

        Nothing is retried. Do not use this method to emit notifications! Use
        send_notification() instead.
        """
        self._check_can_send(method)

        if timeout is None:
            timeout = self._session_read_timeout_seconds
        deadline = anyio.current_time() + timeout if timeout is not None else None

        pending = self._pending.new_request(method, deadline, progress_callback)
        try:
            request_data = _dump_params(params)
            if progress_callback is not None:
                # Use the request id as progress token
                if request_data is None:
                    request_data = {}
                request_data["_meta"] = {**request_data.get("_meta", {}), "progressToken": pending.request_id}

            request = JSONRPCRequest(jsonrpc="2.0", id=pending.request_id, method=method, params=request_data)
            logger.debug(f"Sending request {pending.request_id}: {method}")

            # The deadline covers the send as well as the wait for the response
            sent = False
            with anyio.CancelScope(deadline=pending.deadline if pending.deadline is not None else math.inf) as scope:
                await self._send(request)
                sent = True
                try:
                    response = await pending.receive_stream.receive()
                except anyio.EndOfStream:
                    raise ConnectionLost() from None

            if scope.cancelled_caught:
                self._pending.remove(pending)
                if sent:
                    self._cancel_remote(pending.request_id, "Request timed out")
                raise TimedOut(method, timeout)
        finally:
            self._pending.remove(pending)

        if isinstance(response, ConnectionLost):
            raise response
        if isinstance(response, JSONRPCError):
            raise McpError(response.error)
        if result_type is None:
            return response.result
        return result_type.model_validate(response.result)

    async def send_notification(self, method: str, params: BaseModel | dict[str, Any] | None = None) -> None:
        """
        Emits a notification, which is a one-way message that does not expect
        a response.
        """
        if self._state.terminal:
            raise ConnectionLost(f"Session is {self._state.value}")
        notification = JSONRPCNotification(jsonrpc="2.0", method=method, params=_dump_params(params))
        await self._send(notification)

    def pending_request_ids(self) -> list[RequestId]:
        return list(self._pending)

    def _check_can_send(self, method: str) -> None:
        if self._state.terminal:
            raise ConnectionLost(f"Session is {self._state.value}")
        if self._state is not SessionState.ACTIVE and method not in self._pre_active_methods:
            raise RuntimeError(f"Cannot send {method} before the session is active")

    def _set_state(self, state: SessionState) -> None:
        if state is not self._state:
            logger.debug(f"Session {self._session_id}: {self._state.value} -> {state.value}")
            self._state = state

    def _fail(self, reason: str) -> None:
        """Mark the session failed and fail everything waiting on it."""
        if self._state.terminal:
            return
        logger.warning(f"Session {self._session_id} failed: {reason}")
        self._set_state(SessionState.FAILED)
        self._pending.fail_all(reason)
        self._reader_scope.cancel()
        self._dispatch_send.close()

    async def _send(self, message: JSONRPCMessage) -> None:
        try:
            await self._write_stream.send(SessionMessage(message))
        except (anyio.ClosedResourceError, anyio.BrokenResourceError) as exc:
            raise ConnectionLost("Connection closed before the message could be sent") from exc

    def _cancel_remote(self, request_id: RequestId, reason: str) -> None:
        # Sent in the background so the caller's timeout fires exactly on time
        if self._state.terminal or self._task_group is None:
            return
        self._task_group.start_soon(self._send_cancelled, request_id, reason)

    async def _send_cancelled(self, request_id: RequestId, reason: str) -> None:
        try:
            await self.send_notification(CANCELLED, CancelledNotificationParams(request_id=request_id, reason=reason))
        except ConnectionLost:
            logger.debug(f"Could not send cancellation for request {request_id}")

    async def _receive_loop(self) -> None:
        reason = "Connection closed"
        with self._reader_scope:
            async with (
                self._read_stream,
                self._write_stream,
            ):
                try:
                    async for message in self._read_stream:
                        if isinstance(message, Exception):
                            # Decoding failures surface as ValueError (pydantic included)
                            kind = "Protocol violation" if isinstance(message, ValueError) else "Transport error"
                            reason = f"{kind}: {message}"
                            break
                        self._route(message.message)
                except (anyio.ClosedResourceError, anyio.BrokenResourceError):
                    logger.debug("Read stream closed")
                except Exception as e:
                    # Anything else is unexpected; the session cannot continue
                    logger.exception(f"Unhandled exception in receive loop: {e}")
                    reason = f"Receive loop failed: {e}"
        # Reached when the stream ended or broke, or when the session was closed
        self._fail(reason)

    def _route(self, message: JSONRPCMessage) -> None:
        if isinstance(message, JSONRPCResponse | JSONRPCError):
            if not self._pending.resolve(message):
                logger.warning(f"Received response with an unknown request ID: {message.id}")
        else:
            self._enqueue(message)

    def _enqueue(self, message: JSONRPCRequest | JSONRPCNotification) -> None:
        try:
            self._dispatch_send.send_nowait(message)
        except anyio.WouldBlock:
            logger.warning(f"Dispatch queue full, dropping {message.method}")
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            logger.debug(f"Dispatcher stopped, dropping {message.method}")

    async def _dispatch_loop(self) -> None:
        with self._dispatch_scope:
            async with self._dispatch_receive:
                async for message in self._dispatch_receive:
                    if isinstance(message, JSONRPCRequest):
                        await self._handle_request(message)
                    else:
                        await self._dispatch_notification(message)

    async def _dispatch_notification(self, notification: JSONRPCNotification) -> None:
        if notification.method == PROGRESS:
            await self._handle_progress(notification)
        try:
            await self._received_notification(notification)
        except Exception:
            logger.exception(f"Failed to handle notification {notification.method}")

        listeners = [*self._listeners.get(notification.method, ()), *self._listeners.get(None, ())]
        if not listeners:
            logger.debug(f"No listener for {notification.method}, dropping")
            return
        for listener in listeners:
            try:
                await listener(notification)
            except Exception:
                logger.exception(f"Notification listener failed for {notification.method}")

    async def _handle_progress(self, notification: JSONRPCNotification) -> None:
        try:
            params = ProgressNotificationParams.model_validate(notification.params or {})
        except ValidationError as e:
            logger.warning(f"Failed to validate progress notification: {e}")
            return
        pending = self._pending.get(params.progress_token)
        if pending is None or pending.progress_callback is None:
            return
        try:
            await pending.progress_callback(params.progress, params.total, params.message)
        except Exception:
            logger.exception(f"Progress callback failed for request {pending.request_id}")

    async def _handle_request(self, request: JSONRPCRequest) -> None:
        try:
            response = await self._received_request(request)
        except Exception as e:
            logger.exception(f"Failed to handle request {request.method}")
            response = ErrorData(code=INTERNAL_ERROR, message=str(e))

        if isinstance(response, ErrorData):
            message: JSONRPCMessage = JSONRPCError(jsonrpc="2.0", id=request.id, error=response)
        else:
            message = JSONRPCResponse(jsonrpc="2.0", id=request.id, result=_dump_params(response) or {})
        try:
            await self._send(message)
        except ConnectionLost:
            logger.debug(f"Could not respond to {request.method}: connection closed")

    async def _received_request(self, request: JSONRPCRequest) -> BaseModel | ErrorData:
        """
        Can be overridden by subclasses to answer requests the peer sends.
        """
        if request.method == "ping":
            return EmptyResult()
        return ErrorData(code=METHOD_NOT_FOUND, message=f"Method not found: {request.method}")

    async def _received_notification(self, notification: JSONRPCNotification) -> None:
        """
        Can be overridden by subclasses to handle a notification before it is
        passed to listeners.
        """


def _dump_params(params: BaseModel | dict[str, Any] | None) -> dict[str, Any] | None:
    if params is None:
        return None
    if isinstance(params, BaseModel):
        return params.model_dump(by_alias=True, mode="json", exclude_none=True)
    return dict(params)
