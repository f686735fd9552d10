"""Generation provider for OpenAI-compatible chat completion APIs.

OpenAI, Groq, Azure OpenAI and Ollama all speak the chat-completions
protocol; only credentials and base URL differ (see
:class:`~autoreply.generation.providers.ProviderRegistry`).
"""

from __future__ import annotations

import json
import logging
from typing import Any

from openai import AsyncOpenAI

from .base import ChatMessage, ChatResult, ToolCall, Usage
from .providers import ProviderCredentials

logger = logging.getLogger(__name__)

#: Providers whose OpenAI-compatible endpoint supports ``tools``.
TOOL_CAPABLE = frozenset({"openai", "groq", "azure"})


def _parse_arguments(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.warning("tool call arguments are not valid JSON: %r", raw[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


class OpenAICompatibleProvider:
    def __init__(
        self,
        credentials: ProviderCredentials,
        model: str,
        *,
        client: AsyncOpenAI | None = None,
        tool_support: bool | None = None,
    ) -> None:
        self.name = credentials.provider
        self.model = model
        self._tool_support = (
            tool_support if tool_support is not None else self.name in TOOL_CAPABLE
        )
        self._client = client or AsyncOpenAI(
            api_key=credentials.api_key,
            base_url=credentials.base_url,
            default_headers=credentials.extras or None,
            # retries belong to the job queue
            max_retries=0,
        )

    def supports_tools(self) -> bool:
        return self._tool_support

    async def chat(
        self,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]] | None = None,
        temperature: float = 0.7,
        max_tokens: int = 500,
    ) -> ChatResult:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [message.as_openai() for message in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if tools and self._tool_support:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        response = await self._client.chat.completions.create(**kwargs)
        choice = response.choices[0]
        message = choice.message
        tool_calls = tuple(
            ToolCall(
                id=call.id,
                name=call.function.name,
                arguments=_parse_arguments(call.function.arguments),
            )
            for call in (message.tool_calls or [])
        )
        usage = Usage()
        if response.usage is not None:
            usage = Usage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
            )
        return ChatResult(
            content=message.content,
            tool_calls=tool_calls,
            usage=usage,
            finish_reason=choice.finish_reason,
            provider=self.name,
        )
