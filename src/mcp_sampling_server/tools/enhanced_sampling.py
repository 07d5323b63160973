"""
trigger-enhanced-sampling: runs the agent loop against the connected client.

Demonstrates:
- Tool definitions in sampling requests
- Tool choice modes (auto, required, none)
- Server-side agent loop with parallel tool execution
"""

import asyncio
import json
from typing import Any, Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import Settings
from ..protocol.jsonrpc import JSONRPCError
from ..sampling.loop import AgentLoop, CapabilityMismatchError
from ..sampling.types import CreateMessageParams, CreateMessageResult, SamplingMessage, TextContent
from .base import Tool, ToolParameter, ToolResult
from .executor import create_sample_executor

logger = structlog.get_logger()

MAX_ITERATIONS_CAP = 20
BASIC_SYSTEM_PROMPT = "You are a helpful assistant."


class EnhancedSamplingArgs(BaseModel):
    """Validated arguments of trigger-enhanced-sampling."""

    model_config = ConfigDict(populate_by_name=True)

    prompt: str
    max_tokens: int = Field(default=1000, alias="maxTokens", gt=0)
    system_prompt: str | None = Field(default=None, alias="systemPrompt")
    include_tools: bool = Field(default=False, alias="includeTools")
    tool_choice: Literal["auto", "required", "none"] = Field(default="auto", alias="toolChoice")
    max_iterations: int = Field(default=5, alias="maxIterations", ge=1, le=MAX_ITERATIONS_CAP)


def create_enhanced_sampling_tool(settings: Settings) -> Tool:
    timeout = settings.sampling_iteration_timeout_seconds

    async def trigger_enhanced_sampling(arguments: dict[str, Any], context) -> ToolResult:
        try:
            args = EnhancedSamplingArgs.model_validate(arguments)
        except ValidationError as e:
            return ToolResult(success=False, error=f"Invalid arguments: {e}")

        async def sampler(params: CreateMessageParams) -> CreateMessageResult:
            raw = await context.send_request("sampling/createMessage", params.to_wire())
            return CreateMessageResult.model_validate(raw)

        capabilities = context.client_capabilities

        try:
            if not args.include_tools:
                if not capabilities.supports_sampling:
                    raise CapabilityMismatchError("client does not support sampling")
                params = CreateMessageParams(
                    messages=[SamplingMessage(role="user", content=TextContent(text=args.prompt))],
                    system_prompt=args.system_prompt or BASIC_SYSTEM_PROMPT,
                    max_tokens=args.max_tokens,
                )
                result = await asyncio.wait_for(sampler(params), timeout=timeout)
                return ToolResult(
                    success=True,
                    output=f"Sampling Result (no tools):\n{json.dumps(result.to_wire(), indent=2)}",
                    data=result.to_wire(),
                )

            loop = AgentLoop(
                sampler=sampler,
                executor=create_sample_executor(),
                capabilities=capabilities,
                iteration_timeout=timeout,
            )
            outcome = await loop.run(
                args.prompt,
                system_prompt=args.system_prompt or settings.sampling_default_system_prompt,
                tool_choice=args.tool_choice,
                max_tokens=args.max_tokens,
                max_iterations=args.max_iterations,
            )
            return ToolResult(success=True, output=outcome.format_report(), data=outcome.to_dict())

        except CapabilityMismatchError as e:
            logger.warning("Sampling capability mismatch", session_id=context.session_id, error=str(e))
            return ToolResult(success=False, error=f"Capability mismatch: {e}")
        except asyncio.TimeoutError:
            return ToolResult(success=False, error=f"Sampling request timed out after {timeout} seconds")
        except JSONRPCError as e:
            return ToolResult(success=False, error=f"Sampling request failed: {e.message}")
        except ValidationError as e:
            return ToolResult(success=False, error=f"Invalid sampling result from client: {e}")

    return Tool(
        name="trigger-enhanced-sampling",
        title="Trigger Enhanced Sampling with Tools",
        description="Demonstrates server-side agent loop with tool calling in sampling requests",
        parameters=[
            ToolParameter(name="prompt", param_type="string", description="The prompt to send to the LLM"),
            ToolParameter(
                name="maxTokens",
                param_type="number",
                description="Maximum tokens to generate",
                required=False,
                default=1000,
            ),
            ToolParameter(
                name="systemPrompt",
                param_type="string",
                description="System prompt for the LLM",
                required=False,
            ),
            ToolParameter(
                name="includeTools",
                param_type="boolean",
                description="Include sample tools in request",
                required=False,
                default=False,
            ),
            ToolParameter(
                name="toolChoice",
                param_type="string",
                description="Tool choice mode",
                required=False,
                default="auto",
                enum=["auto", "required", "none"],
            ),
            ToolParameter(
                name="maxIterations",
                param_type="number",
                description="Max agent loop iterations",
                required=False,
                default=5,
            ),
        ],
        handler=trigger_enhanced_sampling,
    )
