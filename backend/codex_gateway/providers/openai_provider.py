from typing import Any, Dict, Optional

import structlog
from openai import AsyncOpenAI
from pybreaker import CircuitBreaker

from codex_gateway.core.config import Settings
from codex_gateway.providers.base import ChatRequest, ChatStream, Provider, StreamChunk

logger = structlog.get_logger()


def _to_stream_chunk(event: Any, index: int) -> StreamChunk:
    # event is a ChatCompletionChunk
    return StreamChunk.model_validate(event.model_dump())


class OpenAIProvider(Provider):
    """Primary chat backend; messages (images included) pass through as-is."""

    name = "openai"

    def __init__(self, settings: Settings, client: Optional[AsyncOpenAI] = None):
        self._settings = settings
        self._client = client
        self.breaker = CircuitBreaker(
            fail_max=settings.CB_FAIL_MAX,
            reset_timeout=settings.CB_RESET_TIMEOUT,
        )

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._settings.OPENAI_API_KEY,
                base_url=self._settings.OPENAI_BASE_URL or None,
                organization=self._settings.OPENAI_ORG or None,
                project=self._settings.OPENAI_PROJECT or None,
                timeout=self._settings.OPENAI_TIMEOUT_SECONDS,
            )
        return self._client

    def _to_openai_params(self, req: ChatRequest) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "model": req.model.removeprefix("openai:"),  # accept "openai:o4-mini"
            "messages": [m.model_dump(exclude_none=True) for m in req.messages],
        }
        if req.tools:
            params["tools"] = [t.model_dump(exclude_none=True) for t in req.tools]
        if req.temperature is not None:
            params["temperature"] = req.temperature
        if req.max_tokens is not None:
            params["max_tokens"] = req.max_tokens
        return params

    async def generate_stream(self, req: ChatRequest) -> ChatStream:
        params = self._to_openai_params(req)
        try:
            with self.breaker.calling():
                stream = await self.client.chat.completions.create(stream=True, **params)
        except Exception as e:
            logger.error("openai_request_failed", model=params["model"], error=str(e))
            raise
        return ChatStream(stream, _to_stream_chunk, close=stream.close)

    async def generate(self, req: ChatRequest) -> Any:
        params = self._to_openai_params(req)
        try:
            with self.breaker.calling():
                return await self.client.chat.completions.create(stream=False, **params)
        except Exception as e:
            logger.error("openai_request_failed", model=params["model"], error=str(e))
            raise
