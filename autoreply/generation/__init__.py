"""Generation providers, prompt assembly and tool dispatch."""

from __future__ import annotations

from .base import ChatMessage, ChatResult, GenerationProvider, ToolCall, Usage
from .factory import ProviderSelector
from .fallback import FallbackProvider
from .openai_provider import OpenAICompatibleProvider
from .prompts import PromptBuilder
from .providers import ProviderCredentials, ProviderRegistry
from .responses import ResponseParameterStore
from .tools import ToolContext, ToolRegistry, ToolResult, ToolSpec

__all__ = [
    "ChatMessage",
    "ChatResult",
    "FallbackProvider",
    "GenerationProvider",
    "OpenAICompatibleProvider",
    "PromptBuilder",
    "ProviderCredentials",
    "ProviderRegistry",
    "ProviderSelector",
    "ResponseParameterStore",
    "ToolCall",
    "ToolContext",
    "ToolRegistry",
    "ToolResult",
    "ToolSpec",
    "Usage",
]
