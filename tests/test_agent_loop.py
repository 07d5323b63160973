"""
Tests for the sampling agent loop.
"""

import asyncio
import random
import threading

import pytest

from mcp_sampling_server.protocol.capabilities import ClientCapabilities
from mcp_sampling_server.sampling.conversation import Conversation
from mcp_sampling_server.sampling.loop import AgentLoop, CapabilityMismatchError, LoopOutcome
from mcp_sampling_server.sampling.types import (
    CreateMessageResult,
    TextContent,
    ToolResultContent,
    ToolUseContent,
)
from mcp_sampling_server.tools.executor import ToolExecutor, create_sample_executor

TOOL_CAPABLE = ClientCapabilities.model_validate({"sampling": {"tools": {}}})


def tool_use_reply(*calls) -> CreateMessageResult:
    return CreateMessageResult(
        content=[ToolUseContent(id=call_id, name=name, input=tool_input) for call_id, name, tool_input in calls],
        model="test-model",
        stop_reason="toolUse",
    )


def text_reply(text: str) -> CreateMessageResult:
    return CreateMessageResult(content=TextContent(text=text), model="test-model", stop_reason="endTurn")


class ScriptedSampler:
    """Returns canned replies in order and records every request."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.requests = []

    async def __call__(self, params):
        self.requests.append(params)
        return self.replies.pop(0)


# ---------------------------------------------------------------------- #
# Conversation
# ---------------------------------------------------------------------- #
def test_conversation_add_user_text():
    """Test adding a user message."""
    conversation = Conversation()
    conversation.add_user_text("Hello!")

    assert conversation.message_count == 1
    assert conversation.messages[0].role == "user"
    assert conversation.messages[0].blocks[0].text == "Hello!"


def test_conversation_tool_results_in_one_message():
    """Test every result of a turn lands in a single user message."""
    conversation = Conversation()
    conversation.add_assistant_content([
        ToolUseContent(id="a", name="calculate", input={"expression": "1+1"}),
        ToolUseContent(id="b", name="get_time", input={"timezone": "UTC"}),
    ])
    conversation.add_tool_results([("a", "Result: 2"), ("b", "noon")])

    assert conversation.message_count == 2
    results = conversation.messages[1].blocks
    assert conversation.messages[1].role == "user"
    assert all(isinstance(block, ToolResultContent) for block in results)
    assert [block.tool_use_id for block in results] == ["a", "b"]
    assert results[0].to_wire() == {
        "type": "tool_result",
        "toolUseId": "a",
        "content": [{"type": "text", "text": "Result: 2"}],
    }


def test_conversation_messages_is_a_snapshot():
    """Test callers cannot mutate the history through the property."""
    conversation = Conversation()
    conversation.add_user_text("Hi")
    conversation.messages.clear()

    assert conversation.message_count == 1


# ---------------------------------------------------------------------- #
# Loop
# ---------------------------------------------------------------------- #
@pytest.mark.asyncio
async def test_math_and_weather_in_two_rounds():
    """Test a turn with two tool calls followed by a final answer."""
    sampler = ScriptedSampler(
        tool_use_reply(
            ("call_1", "calculate", {"expression": "2+2"}),
            ("call_2", "get_weather", {"city": "Paris"}),
        ),
        text_reply("2+2 is 4 and Paris is mild today."),
    )
    loop = AgentLoop(sampler, create_sample_executor(rng=random.Random(1)), capabilities=TOOL_CAPABLE)

    result = await loop.run("What is 2+2, and what's the weather in Paris?", max_iterations=3)

    assert result.outcome is LoopOutcome.COMPLETED
    assert result.rounds == 2
    assert result.final_text == "2+2 is 4 and Paris is mild today."

    first = result.iterations[0]
    assert first.stop_reason == "toolUse"
    assert [call.name for call in first.tool_calls] == ["calculate", "get_weather"]
    assert first.tool_calls[0].result == "Result: 4"
    assert '"city": "Paris"' in first.tool_calls[1].result

    # The second request carries the whole conversation so far
    second_request = sampler.requests[1]
    assert [m.role for m in second_request.messages] == ["user", "assistant", "user"]
    results = second_request.messages[2].blocks
    assert [block.tool_use_id for block in results] == ["call_1", "call_2"]
    assert second_request.tools is not None


@pytest.mark.asyncio
async def test_turn_invocations_run_concurrently():
    """Test every invocation of a turn runs at once and is joined before the next round."""
    barrier = threading.Barrier(2, timeout=2)
    executor = ToolExecutor()

    def wait_for_partner(tool_input):
        barrier.wait()
        return f"arrived {tool_input['who']}"

    for name in ("left", "right"):
        executor.register(name, "Waits for the other tool", [], wait_for_partner)

    sampler = ScriptedSampler(
        tool_use_reply(("a", "left", {"who": "a"}), ("b", "right", {"who": "b"})),
        text_reply("both arrived"),
    )
    loop = AgentLoop(sampler, executor, capabilities=TOOL_CAPABLE)

    result = await loop.run("meet up", max_iterations=3)

    assert result.outcome is LoopOutcome.COMPLETED
    tool_message = sampler.requests[1].messages[2]
    assert tool_message.role == "user"
    assert [(block.tool_use_id, block.content[0].text) for block in tool_message.blocks] == [
        ("a", "arrived a"),
        ("b", "arrived b"),
    ]


@pytest.mark.asyncio
async def test_tool_results_match_invocations():
    """Test every invocation of a turn gets exactly one result, even unknown tools."""
    sampler = ScriptedSampler(
        tool_use_reply(
            ("a", "calculate", {"expression": "6*7"}),
            ("b", "nonexistent", {}),
            ("c", "calculate", {"expression": "1/0"}),
        ),
        text_reply("done"),
    )
    loop = AgentLoop(sampler, create_sample_executor(), capabilities=TOOL_CAPABLE)

    result = await loop.run("go")

    outputs = {block.tool_use_id: block.content[0].text for block in result.messages[2].blocks}
    assert outputs == {"a": "Result: 42", "b": "Unknown tool: nonexistent", "c": "Error: Division by zero"}


@pytest.mark.asyncio
async def test_single_iteration_is_tool_free():
    """Test maxIterations=1 never offers tools, even with required tool choice."""
    sampler = ScriptedSampler(text_reply("plain answer"))
    loop = AgentLoop(sampler, create_sample_executor(), capabilities=TOOL_CAPABLE)

    result = await loop.run("hi", tool_choice="required", max_iterations=1)

    request = sampler.requests[0]
    assert request.tools is None
    assert request.tool_choice is None
    assert "tools" not in request.to_wire()
    assert "toolChoice" not in request.to_wire()
    assert result.iterations[0].tools_offered is False
    assert result.outcome is LoopOutcome.COMPLETED


@pytest.mark.asyncio
async def test_tool_choice_is_forwarded():
    """Test non-final rounds carry the requested tool choice."""
    sampler = ScriptedSampler(text_reply("ok"))
    loop = AgentLoop(sampler, create_sample_executor(), capabilities=TOOL_CAPABLE)

    await loop.run("hi", tool_choice="required", max_iterations=3)

    wire = sampler.requests[0].to_wire()
    assert wire["toolChoice"] == {"mode": "required"}
    assert [tool["name"] for tool in wire["tools"]] == ["get_weather", "calculate", "get_time"]
    assert wire["maxTokens"] == 1000


@pytest.mark.asyncio
async def test_last_round_never_offers_tools():
    """Test only the final round is sent without the tool catalog."""
    replies = [tool_use_reply((f"c{i}", "calculate", {"expression": "1+1"})) for i in range(2)]
    replies.append(CreateMessageResult(content=[], stop_reason="toolUse"))
    sampler = ScriptedSampler(*replies)
    loop = AgentLoop(sampler, create_sample_executor(), capabilities=TOOL_CAPABLE)

    result = await loop.run("loop forever", max_iterations=3)

    assert len(sampler.requests) == 3
    assert sampler.requests[-1].tools is None
    assert all(request.tools is not None for request in sampler.requests[:-1])
    # toolUse with no invocations is a terminal text answer
    assert result.outcome is LoopOutcome.COMPLETED
    assert result.final_text == ""


@pytest.mark.asyncio
async def test_iteration_limit_outcome():
    """Test exhausting the iterations is an outcome, not an error."""
    sampler = ScriptedSampler(
        tool_use_reply(("c1", "calculate", {"expression": "1+1"})),
        tool_use_reply(("c2", "calculate", {"expression": "2+2"})),
    )
    loop = AgentLoop(sampler, create_sample_executor(), capabilities=TOOL_CAPABLE)

    result = await loop.run("keep going", max_iterations=2)

    assert result.outcome is LoopOutcome.ITERATION_LIMIT
    assert result.rounds == 2
    assert "Iteration limit reached" in result.format_report()


@pytest.mark.asyncio
async def test_iteration_timeout():
    """Test a round that overruns its deadline ends the run as timed out."""

    async def slow_sampler(params):
        await asyncio.sleep(5)

    loop = AgentLoop(slow_sampler, create_sample_executor(), capabilities=TOOL_CAPABLE, iteration_timeout=0.05)

    result = await loop.run("hello")

    assert result.outcome is LoopOutcome.TIMED_OUT
    assert result.rounds == 0
    assert result.to_dict()["outcome"] == "timed_out"


@pytest.mark.asyncio
async def test_capability_mismatch_sends_nothing():
    """Test a client without sampling tools is refused before any request."""
    sampler = ScriptedSampler(text_reply("never"))
    capabilities = ClientCapabilities.model_validate({"sampling": {}})
    loop = AgentLoop(sampler, create_sample_executor(), capabilities=capabilities)

    with pytest.raises(CapabilityMismatchError):
        await loop.run("hi")
    assert sampler.requests == []


@pytest.mark.asyncio
async def test_invalid_iteration_count():
    """Test at least one iteration is required."""
    loop = AgentLoop(ScriptedSampler(), create_sample_executor())

    with pytest.raises(ValueError):
        await loop.run("hi", max_iterations=0)


@pytest.mark.asyncio
async def test_report():
    """Test the report lists tool calls and the final response."""
    sampler = ScriptedSampler(
        tool_use_reply(("c1", "calculate", {"expression": "2+2"})),
        text_reply("The answer is 4."),
    )
    loop = AgentLoop(sampler, create_sample_executor(), capabilities=TOOL_CAPABLE)

    result = await loop.run("2+2?")
    report = result.format_report()

    assert report.startswith("=== Enhanced Sampling Agent Loop Result ===")
    assert "Total Iterations: 2" in report
    assert 'calculate({"expression": "2+2"})' in report
    assert "Result: Result: 4" in report
    assert report.endswith("The answer is 4.")

    data = result.to_dict()
    assert data["totalIterations"] == 2
    assert data["iterations"][0]["toolCalls"][0]["result"] == "Result: 4"
