import logging
import os
import sys
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Literal, TextIO

import anyio
import anyio.lowlevel
from anyio.abc import ByteReceiveStream, Process
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from anyio.streams.text import TextReceiveStream
from pydantic import BaseModel, Field

from toolbridge.os.posix.utilities import terminate_posix_process_tree
from toolbridge.shared.message import SessionMessage
from toolbridge.types import jsonrpc_message_adapter

logger = logging.getLogger(__name__)

# Environment variables to inherit by default
DEFAULT_INHERITED_ENV_VARS = (
    [
        "APPDATA",
        "HOMEDRIVE",
        "HOMEPATH",
        "LOCALAPPDATA",
        "PATH",
        "PATHEXT",
        "PROCESSOR_ARCHITECTURE",
        "SYSTEMDRIVE",
        "SYSTEMROOT",
        "TEMP",
        "USERNAME",
        "USERPROFILE",
    ]
    if sys.platform == "win32"
    else ["HOME", "LOGNAME", "PATH", "SHELL", "TERM", "USER"]
)

# Seconds a server gets to exit on its own once stdin is closed
PROCESS_TERMINATION_TIMEOUT = 2.0


def get_default_environment() -> dict[str, str]:
    """The subset of our environment a server inherits unless told otherwise."""
    return {
        key: value
        for key in DEFAULT_INHERITED_ENV_VARS
        if (value := os.environ.get(key)) is not None
        # Exported shell functions
        and not value.startswith("()")
    }


class StdioServerParameters(BaseModel):
    command: str
    """The executable to run to start the server."""

    args: list[str] = Field(default_factory=list)
    """Command line arguments to pass to the executable."""

    env: dict[str, str] | None = None
    """
    Extra environment variables for the spawned process, layered over the
    result of get_default_environment().
    """

    cwd: str | Path | None = None
    """The working directory to use when spawning the process."""

    encoding: str = "utf-8"

    encoding_error_handler: Literal["strict", "ignore", "replace"] = "strict"
    """How undecodable bytes on the server's stdout are handled, as in bytes.decode()."""


@asynccontextmanager
async def stdio_client(
    server: StdioServerParameters,
    errlog: TextIO = sys.stderr,
) -> AsyncGenerator[
    tuple[MemoryObjectReceiveStream[SessionMessage | Exception], MemoryObjectSendStream[SessionMessage]],
    None,
]:
    """Client transport for stdio: this will connect to a server by spawning a
    process and communicating with it over stdin/stdout, one JSON-RPC message
    per line.

    A line that is not a JSON-RPC message is delivered on the read stream as the
    exception that decoding raised. The process is torn down on every exit
    path: stdin is closed, the server gets PROCESS_TERMINATION_TIMEOUT seconds
    to exit, then its process group is terminated.

    Args:
        server: Parameters for the server process
        errlog: TextIO stream the server's stderr is redirected to
    """
    read_stream: MemoryObjectReceiveStream[SessionMessage | Exception]
    read_stream_writer: MemoryObjectSendStream[SessionMessage | Exception]

    write_stream: MemoryObjectSendStream[SessionMessage]
    write_stream_reader: MemoryObjectReceiveStream[SessionMessage]

    read_stream_writer, read_stream = anyio.create_memory_object_stream(0)
    write_stream, write_stream_reader = anyio.create_memory_object_stream(0)
    streams = (read_stream, write_stream, read_stream_writer, write_stream_reader)

    try:
        process = await anyio.open_process(
            [server.command, *server.args],
            env={**get_default_environment(), **(server.env or {})},
            stderr=errlog,
            cwd=server.cwd,
            start_new_session=True,
        )
    except OSError:
        for stream in streams:
            await stream.aclose()
        raise

    logger.debug(f"Started server process {process.pid}: {server.command}")

    async def stdout_reader() -> None:
        assert process.stdout, "Opened process is missing stdout"

        try:
            async with read_stream_writer:
                async for line in _read_lines(process.stdout, server.encoding, server.encoding_error_handler):
                    if line.strip():
                        await read_stream_writer.send(_decode_line(line))
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            await anyio.lowlevel.checkpoint()

    async def stdin_writer() -> None:
        assert process.stdin, "Opened process is missing stdin"

        try:
            async with write_stream_reader:
                async for session_message in write_stream_reader:
                    line = session_message.to_json() + "\n"
                    await process.stdin.send(line.encode(server.encoding, server.encoding_error_handler))
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            await anyio.lowlevel.checkpoint()

    async with anyio.create_task_group() as tg, process:
        tg.start_soon(stdout_reader)
        tg.start_soon(stdin_writer)
        try:
            yield read_stream, write_stream
        finally:
            with anyio.CancelScope(shield=True):
                await _shutdown(process)
                for stream in streams:
                    await stream.aclose()
            tg.cancel_scope.cancel()


async def _read_lines(stdout: ByteReceiveStream, encoding: str, errors: str) -> AsyncIterator[str]:
    """Split the server's stdout into lines, however it is chunked.

    A last line without a trailing newline is still yielded at end of stream.
    """
    pending = ""
    async for chunk in TextReceiveStream(stdout, encoding=encoding, errors=errors):
        *lines, pending = (pending + chunk).split("\n")
        for line in lines:
            yield line
    if pending:
        yield pending


def _decode_line(line: str) -> SessionMessage | Exception:
    try:
        return SessionMessage(jsonrpc_message_adapter.validate_json(line))
    except ValueError as exc:
        logger.warning(f"Undecodable line from server: {line[:200]!r}")
        return exc


async def _shutdown(process: Process) -> None:
    """Close stdin, wait for the server to exit, then terminate its process group."""
    if process.stdin:
        try:
            await process.stdin.aclose()
        except (anyio.ClosedResourceError, anyio.BrokenResourceError, OSError):
            # Already closed by the server exiting
            pass

    try:
        with anyio.fail_after(PROCESS_TERMINATION_TIMEOUT):
            await process.wait()
        logger.debug(f"Server process {process.pid} exited with code {process.returncode}")
    except TimeoutError:
        logger.debug(f"Server process {process.pid} still running after stdin closed, terminating")
        await _terminate_process_tree(process)
    except ProcessLookupError:
        pass


async def _terminate_process_tree(process: Process, timeout_seconds: float = PROCESS_TERMINATION_TIMEOUT) -> None:
    """Terminate a process and all its children.

    Unix: Uses os.killpg() for atomic process group termination
    Windows: Terminates the process itself, then kills it after the timeout
    """
    if sys.platform == "win32":
        process.terminate()
        with anyio.move_on_after(timeout_seconds):
            await process.wait()
            return
        process.kill()
    else:
        await terminate_posix_process_tree(process, timeout_seconds)
