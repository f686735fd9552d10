"""Response parameter defaults for generation calls."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


class ResponseParameterStore:
    """Maintain provider specific response parameter defaults.

    The agent's configured response length maps onto ``max_tokens``; explicit
    overrides are merged last.
    """

    _DEFAULTS: Mapping[str, dict[str, Any]] = {
        "openai": {"temperature": 0.7, "max_tokens": 500},
        "groq": {"temperature": 0.6, "max_tokens": 500},
        "azure": {"temperature": 0.65, "max_tokens": 500},
        "ollama": {"temperature": 0.7, "max_tokens": 400},
    }

    _LENGTH_TOKENS: Mapping[str, int] = {
        "short": 150,
        "medium": 300,
        "long": 600,
    }

    def __init__(self, overrides: Mapping[str, Mapping[str, Any]] | None = None):
        self._defaults: dict[str, dict[str, Any]] = {
            provider: dict(params) for provider, params in self._DEFAULTS.items()
        }
        if overrides:
            for provider, params in overrides.items():
                merged = self._defaults.setdefault(provider.lower(), {})
                merged.update(params)

    def defaults_for_provider(self, provider: str) -> dict[str, Any]:
        """Return defaults for ``provider``."""

        return dict(
            self._defaults.get(provider.lower(), {"temperature": 0.5, "max_tokens": 500})
        )

    def merge(self, provider: str, *overrides: dict[str, Any] | None) -> dict[str, Any]:
        """Merge multiple overrides on top of provider defaults."""

        params = self.defaults_for_provider(provider)
        for override in overrides:
            if override:
                params.update(override)
        return params

    def for_agent(self, provider: str, response_length: str) -> dict[str, Any]:
        """Parameters for an agent whose replies should be ``response_length``."""

        tokens = self._LENGTH_TOKENS.get(response_length.lower())
        return self.merge(provider, {"max_tokens": tokens} if tokens else None)
