"""
Conversation history for one orchestration run.
"""

from dataclasses import dataclass, field

from .types import SamplingContent, SamplingMessage, TextContent, ToolResultContent


@dataclass
class Conversation:
    """Ordered, append-only message history.

    Owned by a single agent loop run and discarded when the run ends.
    """

    _messages: list[SamplingMessage] = field(default_factory=list)

    def add_user_text(self, text: str) -> None:
        """Add a requester text message."""
        self._messages.append(SamplingMessage(role="user", content=TextContent(text=text)))

    def add_assistant_content(self, blocks: list[SamplingContent]) -> None:
        """Add the responder's turn verbatim (text and tool-use blocks)."""
        self._messages.append(SamplingMessage(role="assistant", content=list(blocks)))

    def add_tool_results(self, results: list[tuple[str, str]]) -> None:
        """Add one requester message holding every ``(tool_use_id, text)`` result."""
        self._messages.append(SamplingMessage(
            role="user",
            content=[
                ToolResultContent(tool_use_id=tool_use_id, content=[TextContent(text=text)])
                for tool_use_id, text in results
            ],
        ))

    @property
    def messages(self) -> list[SamplingMessage]:
        """Snapshot of the history, in order."""
        return list(self._messages)

    @property
    def message_count(self) -> int:
        """Get the number of messages."""
        return len(self._messages)
