"""
Synchronous tool executor for the tools offered inside sampling requests.

Every call produces text: unknown tools and bad input come back as text
markers so each tool invocation of an agent loop turn always gets a result.
"""

import json
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable
from zoneinfo import ZoneInfo

import structlog

from ..sampling.types import ToolDefinition
from .base import ToolParameter, parameters_schema
from .expression import ExpressionError, evaluate, format_number

logger = structlog.get_logger()

ToolFunction = Callable[[dict[str, Any]], str]

WEATHER_CONDITIONS = ["sunny", "cloudy", "rainy", "partly cloudy"]


@dataclass
class _ExecutorTool:
    definition: ToolDefinition
    function: ToolFunction


class ToolExecutor:
    """Maps a tool name to a synchronous text-producing function."""

    def __init__(self):
        self._tools: dict[str, _ExecutorTool] = {}

    def register(
        self,
        name: str,
        description: str,
        parameters: list[ToolParameter],
        function: ToolFunction,
    ) -> None:
        """Register a tool."""
        self._tools[name] = _ExecutorTool(
            definition=ToolDefinition(
                name=name,
                description=description,
                input_schema=parameters_schema(parameters),
            ),
            function=function,
        )

    def list_tools(self) -> list[str]:
        return list(self._tools.keys())

    @property
    def definitions(self) -> list[ToolDefinition]:
        """Catalog offered to the counterpart."""
        return [tool.definition for tool in self._tools.values()]

    def execute(self, name: str, tool_input: dict[str, Any] | None) -> str:
        """Run a tool by name and return its text output."""
        tool = self._tools.get(name)
        if tool is None:
            return f"Unknown tool: {name}"

        try:
            return tool.function(tool_input if isinstance(tool_input, dict) else {})
        except Exception as e:
            logger.error("Sample tool failed", tool_name=name, error=str(e))
            return f"Error: {e}"


def create_sample_executor(rng: random.Random | None = None) -> ToolExecutor:
    """Build the executor holding the demonstration tools."""
    rng = rng or random.Random()
    executor = ToolExecutor()

    def get_weather(tool_input: dict[str, Any]) -> str:
        city = tool_input.get("city")
        if not isinstance(city, str) or not city.strip():
            return "Error: 'city' must be a non-empty string"
        return json.dumps({
            "city": city,
            "temperature": rng.randint(5, 34),
            "conditions": rng.choice(WEATHER_CONDITIONS),
            "humidity": rng.randint(40, 99),
        })

    def calculate(tool_input: dict[str, Any]) -> str:
        expression = str(tool_input.get("expression", ""))
        try:
            return f"Result: {format_number(evaluate(expression))}"
        except ExpressionError as e:
            return f"Error: {e}"

    def get_time(tool_input: dict[str, Any]) -> str:
        name = str(tool_input.get("timezone", ""))
        try:
            zone = ZoneInfo(name)
        except (KeyError, ValueError, OSError):
            return "Error: Invalid timezone"
        now = datetime.now(timezone.utc).astimezone(zone)
        hour = now.hour % 12 or 12
        meridiem = "AM" if now.hour < 12 else "PM"
        return f"{now.month}/{now.day}/{now.year}, {hour}:{now.minute:02d}:{now.second:02d} {meridiem}"

    executor.register(
        "get_weather",
        "Get current weather for a city",
        [ToolParameter(name="city", param_type="string", description="City name")],
        get_weather,
    )
    executor.register(
        "calculate",
        "Perform a mathematical calculation",
        [ToolParameter(name="expression", param_type="string", description="Math expression to evaluate")],
        calculate,
    )
    executor.register(
        "get_time",
        "Get current time in a timezone",
        [ToolParameter(name="timezone", param_type="string", description="IANA timezone (e.g., America/New_York)")],
        get_time,
    )
    return executor
