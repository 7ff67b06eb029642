from typing import Dict, Tuple

from codex_gateway.core.config import Settings
from codex_gateway.providers.base import Provider
from codex_gateway.providers.openai_provider import OpenAIProvider
from codex_gateway.providers.vertex_provider import VertexAIProvider


class ProviderRouter:
    """Keeps one provider instance per backend so circuit breakers persist."""

    def __init__(self, settings: Settings):
        self._settings = settings
        self._providers: Dict[str, Provider] = {}

    def _get(self, name: str) -> Provider:
        if name not in self._providers:
            if name == "vertex":
                self._providers[name] = VertexAIProvider.from_settings(self._settings)
            else:
                self._providers[name] = OpenAIProvider(self._settings)
        return self._providers[name]

    def resolve(self, model: str) -> Tuple[Provider, str]:
        """
        Resolve the provider by model prefix (e.g., 'vertex:gemini-1.5-pro').
        Returns (provider, normalized_model).
        """
        if model.startswith("openai:"):
            return self._get("openai"), model
        if model.startswith("vertex:"):
            return self._get("vertex"), model
        # no prefix: the configured default backend
        name = self._settings.PROVIDER
        return self._get(name), f"{name}:{model}"
