"""
Server-side agent loop over `sampling/createMessage`.

The loop:
1. Seeds a conversation with the caller's prompt
2. Asks the counterpart for a reply, offering the tool catalog
3. Executes every requested tool call concurrently and feeds the results back
4. Stops on a plain answer, forcing a tool-free request on the last iteration
"""

import asyncio
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import structlog

from ..config import DEFAULT_SAMPLING_SYSTEM_PROMPT
from ..protocol.capabilities import ClientCapabilities
from .conversation import Conversation
from .types import (
    STOP_TOOL_USE,
    CreateMessageParams,
    CreateMessageResult,
    SamplingMessage,
    ToolChoice,
    ToolChoiceMode,
    ToolUseContent,
)

if TYPE_CHECKING:
    from ..tools.executor import ToolExecutor

logger = structlog.get_logger()

Sampler = Callable[[CreateMessageParams], Awaitable[CreateMessageResult]]

REPORT_RESPONSE_PREVIEW = 200


class CapabilityMismatchError(Exception):
    """The counterpart cannot serve the requested sampling shape."""


class LoopOutcome(str, Enum):
    COMPLETED = "completed"
    ITERATION_LIMIT = "iteration_limit"
    TIMED_OUT = "timed_out"


@dataclass
class ToolCallRecord:
    """One executed tool invocation."""

    id: str
    name: str
    input: dict[str, Any]
    result: str


@dataclass
class IterationRecord:
    """Bookkeeping for one request/response round."""

    iteration: int
    tools_offered: bool
    stop_reason: str | None = None
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    text: str | None = None


@dataclass
class LoopResult:
    """Final structured report of an orchestration run."""

    outcome: LoopOutcome
    tool_choice: str
    iterations: list[IterationRecord] = field(default_factory=list)
    messages: list[SamplingMessage] = field(default_factory=list)
    final_text: str | None = None

    @property
    def rounds(self) -> int:
        return len(self.iterations)

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "toolChoice": self.tool_choice,
            "totalIterations": self.rounds,
            "finalResponse": self.final_text,
            "iterations": [
                {
                    "iteration": record.iteration,
                    "stopReason": record.stop_reason,
                    "toolsOffered": record.tools_offered,
                    "toolCalls": [
                        {"id": call.id, "name": call.name, "input": call.input, "result": call.result}
                        for call in record.tool_calls
                    ],
                    "textResponse": record.text,
                }
                for record in self.iterations
            ],
        }

    def format_report(self) -> str:
        """Human-readable report of every iteration."""
        lines = [
            "=== Enhanced Sampling Agent Loop Result ===",
            "",
            f"Outcome: {self.outcome.value}",
            f"Total Iterations: {self.rounds}",
            f"Tool Choice Mode: {self.tool_choice}",
            "",
            "--- Iteration Details ---",
        ]
        for record in self.iterations:
            lines.append(f"Iteration {record.iteration}:")
            lines.append(f"  Stop Reason: {record.stop_reason or 'N/A'}")
            if record.tool_calls:
                lines.append("  Tool Calls:")
                for call in record.tool_calls:
                    lines.append(f"    - {call.name}({json.dumps(call.input)})")
                    lines.append(f"      Result: {call.result}")
            if record.text:
                preview = record.text[:REPORT_RESPONSE_PREVIEW]
                if len(record.text) > REPORT_RESPONSE_PREVIEW:
                    preview += "..."
                lines.append(f"  Response: {preview}")

        if self.outcome is LoopOutcome.ITERATION_LIMIT:
            final = "Iteration limit reached without a final response"
        elif self.outcome is LoopOutcome.TIMED_OUT:
            final = "Sampling request timed out before a final response"
        else:
            final = self.final_text or "No final response"

        lines.extend(["", "--- Final Response ---", final])
        return "\n".join(lines)


class AgentLoop:
    """Drives a bounded multi-turn tool-calling conversation with the client.

    The loop owns its conversation; nothing it builds is shared across runs.
    """

    def __init__(
        self,
        sampler: Sampler,
        executor: "ToolExecutor",
        capabilities: ClientCapabilities | None = None,
        iteration_timeout: float | None = None,
    ):
        self.sampler = sampler
        self.executor = executor
        self.capabilities = capabilities
        self.iteration_timeout = iteration_timeout

    def check_capabilities(self) -> None:
        """Fail before sending anything if tool-augmented sampling is unsupported."""
        if self.capabilities is None:
            return
        if not self.capabilities.supports_sampling:
            raise CapabilityMismatchError("client does not support sampling")
        if not self.capabilities.supports_sampling_tools:
            raise CapabilityMismatchError("client does not support tools in sampling requests")

    async def run(
        self,
        prompt: str,
        system_prompt: str | None = None,
        tool_choice: ToolChoiceMode = "auto",
        max_tokens: int = 1000,
        max_iterations: int = 5,
    ) -> LoopResult:
        """Run the loop to a final answer, the iteration limit or a timeout."""
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.check_capabilities()

        conversation = Conversation()
        conversation.add_user_text(prompt)
        result = LoopResult(outcome=LoopOutcome.ITERATION_LIMIT, tool_choice=tool_choice)

        for index in range(max_iterations):
            final_round = index == max_iterations - 1
            params = CreateMessageParams(
                messages=conversation.messages,
                system_prompt=system_prompt or DEFAULT_SAMPLING_SYSTEM_PROMPT,
                max_tokens=max_tokens,
                tools=None if final_round else self.executor.definitions,
                tool_choice=None if final_round else ToolChoice(mode=tool_choice),
            )
            record = IterationRecord(iteration=index + 1, tools_offered=not final_round)

            try:
                reply = await self._sample(params)
            except asyncio.TimeoutError:
                logger.warning(
                    "Sampling iteration timed out",
                    iteration=record.iteration,
                    timeout=self.iteration_timeout,
                )
                result.outcome = LoopOutcome.TIMED_OUT
                break

            record.stop_reason = reply.stop_reason
            result.iterations.append(record)

            tool_uses = reply.tool_uses()
            if reply.stop_reason == STOP_TOOL_USE and tool_uses:
                conversation.add_assistant_content(reply.blocks)
                outputs = await self._execute_all(tool_uses)
                conversation.add_tool_results([
                    (tool_use.id, output) for tool_use, output in zip(tool_uses, outputs)
                ])
                record.tool_calls = [
                    ToolCallRecord(id=tool_use.id, name=tool_use.name, input=tool_use.input, result=output)
                    for tool_use, output in zip(tool_uses, outputs)
                ]
                logger.info(
                    "Agent loop executed tools",
                    iteration=record.iteration,
                    tools=[tool_use.name for tool_use in tool_uses],
                )
                continue

            record.text = reply.text()
            result.final_text = record.text
            result.outcome = LoopOutcome.COMPLETED
            break

        result.messages = conversation.messages
        logger.info("Agent loop finished", outcome=result.outcome.value, rounds=result.rounds)
        return result

    async def _sample(self, params: CreateMessageParams) -> CreateMessageResult:
        if self.iteration_timeout is None:
            return await self.sampler(params)
        return await asyncio.wait_for(self.sampler(params), timeout=self.iteration_timeout)

    async def _execute_all(self, tool_uses: list[ToolUseContent]) -> list[str]:
        """Execute every invocation of a turn concurrently; results keep call order."""
        return list(await asyncio.gather(*(
            asyncio.to_thread(self.executor.execute, tool_use.name, tool_use.input)
            for tool_use in tool_uses
        )))
