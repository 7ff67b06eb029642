import enum
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

import structlog
from google import genai
from google.genai import types
from pybreaker import CircuitBreaker

from codex_gateway.core.config import Settings
from codex_gateway.providers.base import (
    ChatMessage,
    ChatRequest,
    ChatStream,
    ChoiceDelta,
    DeltaToolCall,
    PartialFunctionCall,
    Provider,
    StreamChoice,
    StreamChunk,
    ToolDeclaration,
)

logger = structlog.get_logger()


# Parsed view of one native chunk. Downstream code only ever sees these.

@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class FunctionCallPart:
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EmptyPart:
    pass


NativePart = Union[TextPart, FunctionCallPart, EmptyPart]


def parse_chunk(chunk: Any) -> Tuple[NativePart, Optional[str]]:
    """Return the chunk's content part and its finish reason, if any."""
    candidates = getattr(chunk, "candidates", None) or []
    if not candidates:
        return EmptyPart(), None
    candidate = candidates[0]
    finish_reason = _finish_reason(getattr(candidate, "finish_reason", None))
    content = getattr(candidate, "content", None)
    parts = getattr(content, "parts", None) or []

    texts: List[str] = []
    for part in parts:
        fc = getattr(part, "function_call", None)
        if fc is not None and getattr(fc, "name", None):
            return FunctionCallPart(name=fc.name, args=dict(fc.args or {})), finish_reason
        text = getattr(part, "text", None)
        if text:
            texts.append(text)
    if texts:
        return TextPart("".join(texts)), finish_reason
    return EmptyPart(), finish_reason


def _finish_reason(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, enum.Enum):
        return str(value.value)
    return str(value)


def transform_chunk(chunk: Any, model: str, index: int) -> StreamChunk:
    part, finish_reason = parse_chunk(chunk)
    now_ms = int(time.time() * 1000)

    if isinstance(part, FunctionCallPart):
        delta = ChoiceDelta(
            role="assistant",
            tool_calls=[
                DeltaToolCall(
                    index=0,
                    id=f"call-{uuid.uuid4().hex}",
                    type="function",
                    function=PartialFunctionCall(
                        name=part.name,
                        arguments=json.dumps(part.args),
                    ),
                )
            ],
        )
    elif isinstance(part, TextPart):
        delta = ChoiceDelta(role="assistant", content=part.text)
    else:
        delta = ChoiceDelta(role="assistant")

    return StreamChunk(
        id=f"chatcmpl-{now_ms}-{index}",
        model=model,
        created=now_ms // 1000,
        choices=[StreamChoice(index=0, delta=delta, finish_reason=finish_reason)],
    )


def split_system(messages: List[ChatMessage]) -> Tuple[Optional[ChatMessage], List[ChatMessage]]:
    system = next((m for m in messages if m.role == "system"), None)
    return system, [m for m in messages if m.role != "system"]


def to_vertex_contents(messages: List[ChatMessage]) -> List[types.Content]:
    contents = []
    for m in messages:
        role = "model" if m.role == "assistant" else "user"
        contents.append(types.Content(role=role, parts=[types.Part(text=m.text())]))
    return contents


def to_function_declarations(tools: Optional[List[ToolDeclaration]]) -> List[types.FunctionDeclaration]:
    return [
        types.FunctionDeclaration(
            name=t.function.name,
            description=t.function.description or "",
            parameters_json_schema=t.function.parameters or {},
        )
        for t in tools or []
        if t.type == "function"
    ]


class VertexAIProvider(Provider):
    """Generate-content backend behind the uniform chat-completion contract.

    Only the streaming path is normalized; ``generate`` hands back the SDK's
    response object untouched. Image parts are not forwarded.
    """

    name = "vertex"

    def __init__(
        self,
        project: Optional[str],
        location: str,
        *,
        max_output_tokens: int = 2048,
        fail_max: int = 5,
        reset_timeout: int = 30,
        client: Optional[genai.Client] = None,
    ):
        self._project = project
        self._location = location
        self._max_output_tokens = max_output_tokens
        self._client = client
        self.breaker = CircuitBreaker(fail_max=fail_max, reset_timeout=reset_timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "VertexAIProvider":
        return cls(
            settings.VERTEX_PROJECT,
            settings.VERTEX_LOCATION,
            max_output_tokens=settings.VERTEX_MAX_OUTPUT_TOKENS,
            fail_max=settings.CB_FAIL_MAX,
            reset_timeout=settings.CB_RESET_TIMEOUT,
        )

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(
                vertexai=True, project=self._project, location=self._location
            )
        return self._client

    def _build_call(self, req: ChatRequest) -> Dict[str, Any]:
        system, turns = split_system(req.messages)
        config: Dict[str, Any] = {"max_output_tokens": self._max_output_tokens}
        if system is not None:
            config["system_instruction"] = types.Content(
                role="system", parts=[types.Part(text=system.text())]
            )
        declarations = to_function_declarations(req.tools)
        if declarations:
            config["tools"] = [types.Tool(function_declarations=declarations)]
        return {
            "model": req.model.removeprefix("vertex:"),
            "contents": to_vertex_contents(turns),
            "config": types.GenerateContentConfig(**config),
        }

    async def generate_stream(self, req: ChatRequest) -> ChatStream:
        call = self._build_call(req)
        logger.info("vertex_request", model=call["model"], stream=True, tools=bool(call["config"].tools))
        try:
            with self.breaker.calling():
                upstream = await self.client.aio.models.generate_content_stream(**call)
        except Exception as e:
            logger.error("vertex_request_failed", model=call["model"], error=str(e))
            raise
        model = call["model"]
        return ChatStream(upstream, lambda chunk, index: transform_chunk(chunk, model, index))

    async def generate(self, req: ChatRequest) -> Any:
        call = self._build_call(req)
        logger.info("vertex_request", model=call["model"], stream=False, tools=bool(call["config"].tools))
        try:
            with self.breaker.calling():
                return await self.client.aio.models.generate_content(**call)
        except Exception as e:
            logger.error("vertex_request_failed", model=call["model"], error=str(e))
            raise
