"""Provider credential helpers supporting multiple OpenAI-compatible vendors."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass


@dataclass(frozen=True)
class ProviderCredentials:
    """Container for credentials resolved for a provider."""

    provider: str
    api_key: str | None
    base_url: str | None
    extras: dict[str, str]

    def as_headers(self) -> dict[str, str]:
        """Return HTTP headers suitable for calling the provider API."""

        headers: dict[str, str] = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        for key, value in self.extras.items():
            headers[key] = value
        return headers


class ProviderRegistry:
    """Resolve provider credentials from environment or explicit overrides."""

    _DEFAULT_ENV_MAP: Mapping[str, str] = {
        "openai": "OPENAI_API_KEY",
        "groq": "GROQ_API_KEY",
        "azure": "AZURE_OPENAI_API_KEY",
        "ollama": "OLLAMA_API_KEY",
    }

    _DEFAULT_BASE_URLS: Mapping[str, tuple[str, str | None]] = {
        "openai": ("OPENAI_BASE_URL", None),
        "groq": ("GROQ_BASE_URL", "https://api.groq.com/openai/v1"),
        "azure": ("AZURE_OPENAI_ENDPOINT", None),
        "ollama": ("OLLAMA_BASE_URL", "http://localhost:11434/v1"),
    }

    #: Providers that accept requests without an API key.
    _KEYLESS = frozenset({"ollama"})

    def __init__(self, overrides: Mapping[str, Mapping[str, str]] | None = None):
        self._overrides = {
            (k.lower() if isinstance(k, str) else k): dict(v)
            for k, v in (overrides or {}).items()
        }

    def is_supported(self, provider: str) -> bool:
        key = provider.lower()
        return key in self._DEFAULT_ENV_MAP or key in self._overrides

    def get_credentials(self, provider: str) -> ProviderCredentials:
        """Return credentials for ``provider``.

        The lookup order prefers explicit overrides (e.g. injected during
        testing) and falls back to environment variables using
        ``_DEFAULT_ENV_MAP``.
        """

        key = provider.lower()
        if key in self._overrides:
            override = self._overrides[key]
            return ProviderCredentials(
                provider=key,
                api_key=override.get("api_key"),
                base_url=override.get("base_url"),
                extras={
                    k: v for k, v in override.items() if k not in {"api_key", "base_url"}
                },
            )
        env_var = self._DEFAULT_ENV_MAP.get(key)
        api_key = os.getenv(env_var) if env_var else None
        if not api_key and key in self._KEYLESS:
            api_key = key
        base_env, base_default = self._DEFAULT_BASE_URLS.get(key, (None, None))
        base_url = (os.getenv(base_env) if base_env else None) or base_default
        extras: dict[str, str] = {}
        if key == "azure":
            version = os.getenv("AZURE_OPENAI_API_VERSION")
            if version:
                extras["api-version"] = version
        return ProviderCredentials(
            provider=key, api_key=api_key, base_url=base_url, extras=extras
        )

    def list_supported_providers(self) -> dict[str, str | None]:
        """Return a mapping of supported providers to resolved API keys."""

        providers = set(self._DEFAULT_ENV_MAP.keys()) | set(self._overrides.keys())
        return {name: self.get_credentials(name).api_key for name in sorted(providers)}
