"""Select the generation provider for a tenant."""

from __future__ import annotations

from collections.abc import Callable

from ..config import Settings
from ..tenants.models import TenantRecord
from .base import GenerationProvider
from .fallback import FallbackProvider
from .openai_provider import OpenAICompatibleProvider
from .providers import ProviderRegistry

ProviderFactory = Callable[[TenantRecord], GenerationProvider]


class ProviderSelector:
    """Builds (and caches) one provider per provider/model combination.

    A tenant override of provider or model wins over the process defaults;
    the fallback provider wraps the result when enabled.
    """

    def __init__(self, settings: Settings, registry: ProviderRegistry | None = None) -> None:
        self._settings = settings
        self._registry = registry or ProviderRegistry()
        self._cache: dict[tuple[str, str], GenerationProvider] = {}

    def _single(self, provider: str, model: str) -> GenerationProvider:
        key = (provider.lower(), model)
        if key not in self._cache:
            if not self._registry.is_supported(provider):
                raise ValueError(f"Unsupported generation provider '{provider}'")
            self._cache[key] = OpenAICompatibleProvider(
                self._registry.get_credentials(provider), model
            )
        return self._cache[key]

    def __call__(self, tenant: TenantRecord) -> GenerationProvider:
        provider = tenant.llm_provider or self._settings.llm_provider
        model = tenant.llm_model or self._settings.llm_model
        primary = self._single(provider, model)
        if not self._settings.enable_llm_fallback:
            return primary
        fallback_provider = self._settings.fallback_llm_provider
        if fallback_provider.lower() == provider.lower():
            return primary
        secondary = self._single(fallback_provider, self._settings.fallback_llm_model)
        return FallbackProvider(primary, secondary)
