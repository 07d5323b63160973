"""
Client capability declarations received at initialize.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict


class SamplingCapability(BaseModel):
    """The client's `sampling` capability."""

    model_config = ConfigDict(extra="allow")

    context: dict[str, Any] | None = None
    tools: dict[str, Any] | None = None


class ClientCapabilities(BaseModel):
    """Capabilities the connected client declared."""

    model_config = ConfigDict(extra="allow")

    sampling: SamplingCapability | None = None
    roots: dict[str, Any] | None = None
    elicitation: dict[str, Any] | None = None
    experimental: dict[str, Any] | None = None

    @property
    def supports_sampling(self) -> bool:
        return self.sampling is not None

    @property
    def supports_sampling_tools(self) -> bool:
        """Whether sampling requests may carry tool definitions."""
        return self.sampling is not None and self.sampling.tools is not None

    def supports(self, feature: str) -> bool:
        """Check a top-level capability by name, e.g. ``"roots"``."""
        if feature == "sampling.tools":
            return self.supports_sampling_tools
        if feature in type(self).model_fields:
            return getattr(self, feature) is not None
        return feature in (self.model_extra or {})
