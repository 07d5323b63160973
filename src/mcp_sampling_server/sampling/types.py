"""
Wire models for `sampling/createMessage`.

Message content is a tagged union discriminated on ``type``.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

STOP_END_TURN = "endTurn"
STOP_MAX_TOKENS = "maxTokens"
STOP_SEQUENCE = "stopSequence"
STOP_TOOL_USE = "toolUse"

ToolChoiceMode = Literal["auto", "required", "none"]


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class TextContent(_WireModel):
    type: Literal["text"] = "text"
    text: str


class ImageContent(_WireModel):
    type: Literal["image"] = "image"
    data: str
    mime_type: str = Field(alias="mimeType")


class AudioContent(_WireModel):
    type: Literal["audio"] = "audio"
    data: str
    mime_type: str = Field(alias="mimeType")


class ToolUseContent(_WireModel):
    """A tool invocation requested by the responder."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultContent(_WireModel):
    """The result of one tool invocation, keyed by the invocation id."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str = Field(alias="toolUseId")
    content: list[TextContent] = Field(default_factory=list)
    is_error: bool | None = Field(default=None, alias="isError")


SamplingContent = Annotated[
    Union[TextContent, ImageContent, AudioContent, ToolUseContent, ToolResultContent],
    Field(discriminator="type"),
]


class SamplingMessage(_WireModel):
    role: Literal["user", "assistant"]
    content: Union[SamplingContent, list[SamplingContent]]

    @property
    def blocks(self) -> list[Any]:
        if isinstance(self.content, list):
            return list(self.content)
        return [self.content]


class ToolDefinition(_WireModel):
    """A tool offered to the counterpart inside a sampling request."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(alias="inputSchema")


class ToolChoice(_WireModel):
    mode: ToolChoiceMode = "auto"


class CreateMessageParams(_WireModel):
    messages: list[SamplingMessage]
    max_tokens: int = Field(alias="maxTokens")
    system_prompt: str | None = Field(default=None, alias="systemPrompt")
    tools: list[ToolDefinition] | None = None
    tool_choice: ToolChoice | None = Field(default=None, alias="toolChoice")
    temperature: float | None = None
    stop_sequences: list[str] | None = Field(default=None, alias="stopSequences")


class CreateMessageResult(_WireModel):
    """The counterpart's reply to `sampling/createMessage`."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    role: Literal["user", "assistant"] = "assistant"
    content: Union[SamplingContent, list[SamplingContent]]
    model: str = ""
    stop_reason: str | None = Field(default=None, alias="stopReason")

    @property
    def blocks(self) -> list[Any]:
        if isinstance(self.content, list):
            return list(self.content)
        return [self.content]

    def tool_uses(self) -> list[ToolUseContent]:
        return [block for block in self.blocks if isinstance(block, ToolUseContent)]

    def text(self) -> str:
        """Concatenate the text blocks in order."""
        return "\n".join(block.text for block in self.blocks if isinstance(block, TextContent))
