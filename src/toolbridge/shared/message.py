"""Message wrapper passed between transports and sessions.

Transports put these (or an Exception for an undecodable frame) on the read
stream and take them off the write stream.
"""

from dataclasses import dataclass

from toolbridge.types import JSONRPCMessage


@dataclass
class SessionMessage:
    """A single framed JSON-RPC message."""

    message: JSONRPCMessage

    def to_json(self) -> str:
        return self.message.model_dump_json(by_alias=True, exclude_none=True)
