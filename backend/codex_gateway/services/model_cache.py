"""
Background model loader / cache.

The list of models available to the configured credential is fetched at most
once per cache object and shared by every caller. Availability checks never
block agent start-up: a slow, failed or credential-less fetch degrades to
"supported".
"""

import asyncio
import enum
from dataclasses import dataclass
from typing import Awaitable, Callable, FrozenSet, Iterable, List, Optional

import structlog
from openai import AsyncOpenAI

from codex_gateway.core.config import Settings

logger = structlog.get_logger()

MODEL_LIST_TIMEOUT_SECONDS = 2.0
RECOMMENDED_MODELS = ("o4-mini", "o3")


@dataclass(frozen=True)
class ProviderCredentials:
    api_key: Optional[str] = None
    base_url: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProviderCredentials":
        return cls(api_key=settings.OPENAI_API_KEY, base_url=settings.OPENAI_BASE_URL)


ModelFetcher = Callable[[ProviderCredentials], Awaitable[Iterable[str]]]


class CacheState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    FAILED = "failed"  # resolved to an empty set after a fetch error


async def fetch_openai_models(credentials: ProviderCredentials) -> List[str]:
    client = AsyncOpenAI(api_key=credentials.api_key, base_url=credentials.base_url)
    models: List[str] = []
    async for model in client.models.list():
        if isinstance(getattr(model, "id", None), str):
            models.append(model.id)
    return sorted(models)


def report_missing_credential() -> None:
    logger.error(
        "missing_api_key",
        message=(
            "Missing API key. Set one of OPENAI_API_KEY (OpenAI models), "
            "OPENROUTER_API_KEY (OpenRouter models) or "
            "GOOGLE_GENERATIVE_AI_API_KEY (Google Gemini models)."
        ),
        openai_keys_url="https://platform.openai.com/account/api-keys",
        openrouter_keys_url="https://openrouter.ai/settings/keys",
        google_keys_url="https://aistudio.google.com/apikey",
    )


class ModelCache:
    def __init__(
        self,
        fetcher: ModelFetcher = fetch_openai_models,
        *,
        timeout: float = MODEL_LIST_TIMEOUT_SECONDS,
        allow_list: Iterable[str] = RECOMMENDED_MODELS,
    ):
        self._fetcher = fetcher
        self._timeout = timeout
        self._allow_list = frozenset(allow_list)
        self._task: Optional["asyncio.Task[FrozenSet[str]]"] = None
        self.state = CacheState.UNINITIALIZED
        self.missing_credential = False

    async def _resolve(self, credentials: ProviderCredentials) -> FrozenSet[str]:
        # If no API key is configured we cannot hit the network.
        if not credentials.api_key:
            self.missing_credential = True
            report_missing_credential()
            self.state = CacheState.RESOLVED
            return frozenset()
        try:
            models = frozenset(await self._fetcher(credentials))
        except Exception as e:
            logger.warning("model_list_fetch_failed", error=str(e))
            self.state = CacheState.FAILED
            return frozenset()
        self.state = CacheState.RESOLVED
        logger.info("model_list_resolved", count=len(models))
        return models

    def _ensure_task(self, credentials: ProviderCredentials) -> "asyncio.Task[FrozenSet[str]]":
        if self._task is None:
            self.state = CacheState.RESOLVING
            self._task = asyncio.create_task(self._resolve(credentials))
        return self._task

    def preload_models(self, credentials: ProviderCredentials) -> None:
        """Start the fetch without waiting for it."""
        self._ensure_task(credentials)

    async def get_available_models(self, credentials: ProviderCredentials) -> FrozenSet[str]:
        return await asyncio.shield(self._ensure_task(credentials))

    async def is_model_supported(
        self, model: Optional[str], credentials: ProviderCredentials
    ) -> bool:
        if model is None or model.strip() == "" or model in self._allow_list:
            return True
        try:
            models = await asyncio.wait_for(
                asyncio.shield(self._ensure_task(credentials)), self._timeout
            )
        except asyncio.TimeoutError:
            logger.info("model_list_timeout", model=model, timeout=self._timeout)
            return True
        # An empty list means "unknown": treat as supported to avoid false negatives.
        if not models:
            return True
        return model.strip() in models
