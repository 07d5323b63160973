"""
Sampling module - the server-side agent loop.

Includes:
- AgentLoop: bounded multi-turn tool-calling orchestration
- Conversation: per-run message history
- Wire models for sampling/createMessage
"""

from .conversation import Conversation
from .loop import (
    AgentLoop,
    CapabilityMismatchError,
    IterationRecord,
    LoopOutcome,
    LoopResult,
    ToolCallRecord,
)
from .types import (
    CreateMessageParams,
    CreateMessageResult,
    SamplingMessage,
    TextContent,
    ToolChoice,
    ToolDefinition,
    ToolResultContent,
    ToolUseContent,
)

__all__ = [
    "AgentLoop",
    "CapabilityMismatchError",
    "Conversation",
    "CreateMessageParams",
    "CreateMessageResult",
    "IterationRecord",
    "LoopOutcome",
    "LoopResult",
    "SamplingMessage",
    "TextContent",
    "ToolCallRecord",
    "ToolChoice",
    "ToolDefinition",
    "ToolResultContent",
    "ToolUseContent",
]
