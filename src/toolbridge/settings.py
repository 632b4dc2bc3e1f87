from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client settings.

    All settings can be configured via environment variables with the prefix
    TOOLBRIDGE_. For example, TOOLBRIDGE_REQUEST_TIMEOUT=5 sets the default
    request deadline to five seconds.
    """

    model_config = SettingsConfigDict(
        env_prefix="TOOLBRIDGE_",
        env_file=".env",
        extra="ignore",
    )

    request_timeout: float | None = Field(default=30.0, gt=0)
    """Default deadline in seconds for a request; None waits forever."""

    handshake_timeout: float = Field(default=10.0, gt=0)

    notification_queue_size: int = Field(default=64, ge=1)
    """Notifications buffered for listeners before new ones are dropped."""

    required_capabilities: list[str] = Field(default_factory=lambda: ["tools"])
    """Server capabilities that must be advertised for negotiation to succeed."""

    client_name: str = "toolbridge"
    client_version: str = "0.1.0"

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    forward_server_logs: bool = True
    """Re-emit server notifications/message entries on the toolbridge.server logger."""
