from typing import Annotated, Any, Final, Literal

from pydantic import Field

from toolbridge.types.base import NotificationParams, ProgressToken
from toolbridge.types.json_rpc import RequestId

INITIALIZED: Final[str] = "notifications/initialized"
CANCELLED: Final[str] = "notifications/cancelled"
PROGRESS: Final[str] = "notifications/progress"
LOGGING_MESSAGE: Final[str] = "notifications/message"
TOOLS_LIST_CHANGED: Final[str] = "notifications/tools/list_changed"

LoggingLevel = Literal["debug", "info", "notice", "warning", "error", "critical", "alert", "emergency"]


class ProgressNotificationParams(NotificationParams):
    """Parameters for a notifications/progress notification."""

    progress_token: Annotated[ProgressToken, Field(alias="progressToken")]
    progress: float
    total: float | None = None
    message: str | None = None


class CancelledNotificationParams(NotificationParams):
    """Parameters for a notifications/cancelled notification."""

    request_id: Annotated[RequestId, Field(alias="requestId")]
    reason: str | None = None


class LoggingMessageNotificationParams(NotificationParams):
    """Parameters for a notifications/message notification."""

    level: LoggingLevel
    logger: str | None = None
    data: Any
