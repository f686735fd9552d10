"""Transparent primary/secondary failover between generation providers."""

from __future__ import annotations

import logging
from typing import Any

from .base import ChatMessage, ChatResult, GenerationProvider

logger = logging.getLogger(__name__)


class FallbackProvider:
    """Try ``primary`` first; on any error retry the same call on ``secondary``.

    Callers cannot tell which backend answered except through
    :attr:`ChatResult.provider`. If the secondary fails too, its error is
    raised with the primary's error chained.
    """

    def __init__(self, primary: GenerationProvider, secondary: GenerationProvider) -> None:
        self.primary = primary
        self.secondary = secondary
        self.name = f"{primary.name}+{secondary.name}"

    def supports_tools(self) -> bool:
        return self.primary.supports_tools()

    async def chat(
        self,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]] | None = None,
        temperature: float = 0.7,
        max_tokens: int = 500,
    ) -> ChatResult:
        try:
            return await self.primary.chat(messages, tools, temperature, max_tokens)
        except Exception as primary_error:
            logger.warning(
                "generation provider %s failed, falling back to %s: %s",
                self.primary.name,
                self.secondary.name,
                primary_error,
            )
            secondary_tools = tools if self.secondary.supports_tools() else None
            try:
                return await self.secondary.chat(
                    messages, secondary_tools, temperature, max_tokens
                )
            except Exception as secondary_error:
                raise secondary_error from primary_error
