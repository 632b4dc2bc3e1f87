"""MCP Content Types - Content block types used in tool results."""

from typing import Annotated, Any, Literal

from pydantic import Field

from toolbridge.types.base import MCPModel
from toolbridge.types.common import Annotations


class TextContent(MCPModel):
    """Text provided to or from an LLM."""

    type: Literal["text"] = "text"
    text: str
    annotations: Annotations | None = None
    meta: Annotated[dict[str, Any] | None, Field(alias="_meta")] = None


class ImageContent(MCPModel):
    """An image provided to or from an LLM."""

    type: Literal["image"] = "image"
    data: str  # base64 encoded
    mime_type: Annotated[str, Field(alias="mimeType")]
    annotations: Annotations | None = None
    meta: Annotated[dict[str, Any] | None, Field(alias="_meta")] = None


class AudioContent(MCPModel):
    """Audio provided to or from an LLM."""

    type: Literal["audio"] = "audio"
    data: str  # base64 encoded
    mime_type: Annotated[str, Field(alias="mimeType")]
    annotations: Annotations | None = None
    meta: Annotated[dict[str, Any] | None, Field(alias="_meta")] = None


class ResourceLink(MCPModel):
    """A resource link that can be included in content."""

    type: Literal["resource_link"] = "resource_link"
    uri: str
    name: str
    description: str | None = None
    mime_type: Annotated[str | None, Field(alias="mimeType")] = None
    annotations: Annotations | None = None


class EmbeddedResource(MCPModel):
    """The contents of a resource, embedded into a tool call result."""

    type: Literal["resource"] = "resource"
    resource: dict[str, Any]
    annotations: Annotations | None = None
    meta: Annotated[dict[str, Any] | None, Field(alias="_meta")] = None


# Content block union - all possible content types in tool results
ContentBlock = Annotated[
    TextContent | ImageContent | AudioContent | ResourceLink | EmbeddedResource,
    Field(discriminator="type"),
]
