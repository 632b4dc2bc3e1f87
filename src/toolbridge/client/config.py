"""Configuration management for tool servers."""

# stdlib imports
import json
import shlex
from pathlib import Path
from typing import Annotated, Any, Literal

# third party imports
from pydantic import BaseModel, Field, field_validator, model_validator


class ServerConfig(BaseModel):
    """Base class for server configurations."""

    name: str | None = None
    """Human readable name, used in log messages."""

    def as_dict(self) -> dict[str, Any]:
        """Return the server configuration as a dictionary."""
        return self.model_dump(exclude_none=True)


class StdioServerConfig(ServerConfig):
    """Configuration for stdio-based servers.

    `command` may carry its own arguments ("npx -y @scope/server"); `arguments`
    is a further shell-style argument string and `args` an explicit list. They
    are combined in that order.
    """

    type: Literal["stdio"] = "stdio"
    command: str
    arguments: str | None = None
    args: list[str] | None = None
    env: dict[str, str] | None = None
    cwd: str | None = None

    def _parse_command(self) -> list[str]:
        """Parse the command string into parts, handling quotes properly.

        Treats backslashes followed by newlines as line continuations.
        """
        cleaned_command = self.command.replace("\\\n", " ")
        cleaned_command = " ".join(cleaned_command.split())
        return shlex.split(cleaned_command)

    @property
    def effective_command(self) -> str:
        """Get the effective command (first part of the command string)."""
        return self._parse_command()[0]

    @property
    def effective_args(self) -> list[str]:
        """Get the effective arguments (command remainder, then arguments, then args)."""
        parsed_args = self._parse_command()[1:]
        argument_string = shlex.split(self.arguments) if self.arguments else []
        return parsed_args + argument_string + (self.args or [])

    @field_validator("command")
    @classmethod
    def command_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("command must not be empty")
        return value


class StreamableHTTPServerConfig(ServerConfig):
    """Configuration for StreamableHTTP-based servers."""

    type: Literal["streamable_http"] = "streamable_http"
    url: str
    headers: dict[str, str] | None = None
    timeout: float = 30.0


# Discriminated union for different server config types
ServerConfigUnion = Annotated[StdioServerConfig | StreamableHTTPServerConfig, Field(discriminator="type")]


class ServersConfig(BaseModel):
    """Configuration for multiple servers, keyed by server id."""

    servers: dict[str, ServerConfigUnion]

    @model_validator(mode="before")
    @classmethod
    def handle_field_aliases(cls, data: Any) -> Any:
        """Handle both 'servers' and 'mcpServers' field names."""
        if isinstance(data, dict) and "mcpServers" in data:
            data = dict(data)
            mcp_servers = data.pop("mcpServers")
            data.setdefault("servers", mcp_servers)
        return data

    @field_validator("servers", mode="before")
    @classmethod
    def infer_server_types(cls, servers_data: Any) -> Any:
        """Automatically infer server types when 'type' field is omitted."""
        if not isinstance(servers_data, dict):
            return servers_data

        inferred: dict[str, Any] = {}
        for server_id, server_config in servers_data.items():
            if isinstance(server_config, dict) and "type" not in server_config:
                if "command" in server_config:
                    server_config = {**server_config, "type": "stdio"}
                elif "url" in server_config:
                    server_config = {**server_config, "type": "streamable_http"}
            inferred[server_id] = server_config
        return inferred

    @classmethod
    def from_file(cls, path: str | Path) -> "ServersConfig":
        """Load a JSON configuration file."""
        with open(Path(path).expanduser(), encoding="utf-8") as f:
            return cls.model_validate(json.load(f))

    def get(self, server_id: str) -> StdioServerConfig | StreamableHTTPServerConfig:
        try:
            return self.servers[server_id]
        except KeyError:
            raise KeyError(f"No server configured with id {server_id!r}") from None
