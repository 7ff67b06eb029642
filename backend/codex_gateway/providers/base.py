import asyncio
import enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Literal, Optional, Union

import structlog
from pydantic import BaseModel, model_validator

logger = structlog.get_logger()


class ContentPart(BaseModel):
    type: str  # "text" | "image_url"
    text: Optional[str] = None
    image_url: Optional[Dict[str, Any]] = None


class FunctionCall(BaseModel):
    name: str
    arguments: str = "{}"  # JSON-encoded


class ToolCall(BaseModel):
    id: str
    type: Literal["function"] = "function"
    function: FunctionCall


class ChatMessage(BaseModel):
    role: str  # "system" | "user" | "assistant" | "tool"
    content: Union[str, List[ContentPart], None] = None
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None

    @model_validator(mode="after")
    def _tool_messages_reference_a_call(self) -> "ChatMessage":
        if self.role == "tool" and not self.tool_call_id:
            raise ValueError("tool messages must include tool_call_id")
        return self

    def text(self) -> str:
        """Flatten content to one string; non-text parts are dropped."""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return " ".join(p.text or "" for p in self.content if p.type == "text")


class FunctionDefinition(BaseModel):
    name: str
    description: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None


class ToolDeclaration(BaseModel):
    type: str = "function"
    function: FunctionDefinition


class ChatRequest(BaseModel):
    model: str
    messages: List[ChatMessage]
    stream: bool = False
    tools: Optional[List[ToolDeclaration]] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


# Streaming shapes (OpenAI chat.completion.chunk subset)

class PartialFunctionCall(BaseModel):
    name: Optional[str] = None
    arguments: Optional[str] = None


class DeltaToolCall(BaseModel):
    index: int = 0
    id: Optional[str] = None
    type: Optional[str] = None
    function: Optional[PartialFunctionCall] = None


class ChoiceDelta(BaseModel):
    role: Optional[str] = None
    content: Optional[str] = None
    tool_calls: Optional[List[DeltaToolCall]] = None


class StreamChoice(BaseModel):
    index: int = 0
    delta: ChoiceDelta
    finish_reason: Optional[str] = None


class StreamChunk(BaseModel):
    id: str
    object: str = "chat.completion.chunk"
    model: str
    created: int
    choices: List[StreamChoice]


class StreamState(str, enum.Enum):
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


_END = object()


class _Failure:
    def __init__(self, exc: BaseException):
        self.exc = exc


class ChatStream:
    """Push-style stream of StreamChunk values with a cancellation handle.

    A background task drains the upstream iterator into a queue, transforming
    each native item. Consumers iterate with ``async for``; ``abort()`` ends
    delivery immediately, even for chunks already queued.
    """

    def __init__(
        self,
        source: AsyncIterator[Any],
        transform: Callable[[Any, int], StreamChunk],
        close: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self._source = source
        self._transform = transform
        self._close = close
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self.state = StreamState.STREAMING
        self._closed = False
        self._closer: Optional["asyncio.Task[None]"] = None
        self._pump_task = asyncio.create_task(self._pump())

    async def _pump(self) -> None:
        index = 0
        try:
            async for raw in self._source:
                if self.state is not StreamState.STREAMING:
                    break
                self._queue.put_nowait(self._transform(raw, index))
                index += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("provider_stream_failed", error=str(e), chunks_delivered=index)
            self._queue.put_nowait(_Failure(e))
        else:
            self._queue.put_nowait(_END)
        finally:
            await self._close_source()

    async def _close_source(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._close is not None:
            await self._close()
            return
        aclose = getattr(self._source, "aclose", None)
        if aclose is not None:
            await aclose()

    def abort(self) -> None:
        if self.state is not StreamState.STREAMING:
            return
        self.state = StreamState.ABORTED
        self._pump_task.cancel()
        # a pump cancelled before its first step never reaches its finally
        self._pump_task.add_done_callback(self._close_after_pump)
        # wake a consumer blocked on get()
        self._queue.put_nowait(_END)
        logger.info("provider_stream_aborted")

    def _close_after_pump(self, task: "asyncio.Task[None]") -> None:
        if not self._closed:
            self._closer = asyncio.ensure_future(self._close_source())

    def __aiter__(self) -> "ChatStream":
        return self

    async def __anext__(self) -> StreamChunk:
        if self.state is not StreamState.STREAMING:
            raise StopAsyncIteration
        item = await self._queue.get()
        if self.state is StreamState.ABORTED:
            raise StopAsyncIteration
        if item is _END:
            self.state = StreamState.COMPLETED
            raise StopAsyncIteration
        if isinstance(item, _Failure):
            self.state = StreamState.FAILED
            raise item.exc
        return item


class Provider:
    name = "base"

    async def generate_stream(self, req: ChatRequest) -> ChatStream:
        raise NotImplementedError

    async def generate(self, req: ChatRequest) -> Any:
        raise NotImplementedError

    async def create(self, req: ChatRequest) -> Union[ChatStream, Any]:
        if req.stream:
            return await self.generate_stream(req)
        return await self.generate(req)
