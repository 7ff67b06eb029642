import uuid
from typing import Dict, List, Optional, Protocol, Tuple

import openai
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from codex_gateway.agent.base import Agent, AgentConfig, AgentFactory, AgentTerminatedError
from codex_gateway.agent.tools import ToolBox
from codex_gateway.providers.base import (
    ChatMessage,
    ChatRequest,
    ChatStream,
    FunctionCall,
    Provider,
    StreamChunk,
    ToolCall,
)

logger = structlog.get_logger()

TRANSIENT_ERRORS = (openai.APIConnectionError, openai.APITimeoutError, openai.RateLimitError)


class ProviderResolver(Protocol):
    def resolve(self, model: str) -> Tuple[Provider, str]: ...


class _MessageBuilder:
    """Folds streamed deltas into one assistant message."""

    def __init__(self) -> None:
        self.content: List[str] = []
        self.calls: List[Dict[str, str]] = []
        self._by_index: Dict[int, Dict[str, str]] = {}

    def add(self, chunk: StreamChunk) -> None:
        for choice in chunk.choices:
            delta = choice.delta
            if delta.content:
                self.content.append(delta.content)
            for tc in delta.tool_calls or []:
                entry = self._by_index.get(tc.index)
                # A fresh id always opens a new call; id-less deltas continue one.
                if tc.id or entry is None:
                    entry = {"id": tc.id or f"call-{uuid.uuid4().hex}", "name": "", "arguments": ""}
                    self.calls.append(entry)
                    self._by_index[tc.index] = entry
                if tc.function is not None:
                    if tc.function.name:
                        entry["name"] = tc.function.name
                    if tc.function.arguments:
                        entry["arguments"] += tc.function.arguments

    def build(self) -> ChatMessage:
        tool_calls = [
            ToolCall(id=c["id"], function=FunctionCall(name=c["name"], arguments=c["arguments"] or "{}"))
            for c in self.calls
        ]
        return ChatMessage(
            role="assistant",
            content="".join(self.content) or None,
            tool_calls=tool_calls or None,
        )


class AgentLoop(Agent):
    """Minimal tool-using agent: stream a reply, run its tool calls, repeat."""

    def __init__(
        self,
        config: AgentConfig,
        providers: ProviderResolver,
        workdir: str = ".",
        max_iterations: int = 8,
    ):
        self.config = config
        self._providers = providers
        self._tools = ToolBox(workdir, config.get_command_confirmation)
        self._max_iterations = max_iterations
        self._history: List[ChatMessage] = []
        if config.instructions:
            self._history.append(ChatMessage(role="system", content=config.instructions))
        self._stream: Optional[ChatStream] = None
        self._terminated = False

    @property
    def history(self) -> List[ChatMessage]:
        return list(self._history)

    @retry(
        wait=wait_exponential_jitter(initial=0.5, max=6),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        reraise=True,
    )
    async def _open_stream(self) -> ChatStream:
        provider, model = self._providers.resolve(self.config.model)
        return await provider.generate_stream(
            ChatRequest(
                model=model,
                messages=self._history,
                stream=True,
                tools=self._tools.declarations(),
            )
        )

    async def _next_message(self) -> ChatMessage:
        self._stream = await self._open_stream()
        builder = _MessageBuilder()
        try:
            async for chunk in self._stream:
                builder.add(chunk)
        finally:
            self._stream = None
        if self._terminated:
            raise AgentTerminatedError("agent terminated during turn")
        return builder.build()

    async def run(self, input_items: List[ChatMessage]) -> None:
        if self._terminated:
            raise AgentTerminatedError("agent has been terminated")
        self.config.on_loading()
        self._history.extend(input_items)

        for _ in range(self._max_iterations):
            message = await self._next_message()
            self._history.append(message)
            self.config.on_item(message)
            if not message.tool_calls:
                return
            for call in message.tool_calls:
                if self._terminated:
                    raise AgentTerminatedError("agent terminated during turn")
                output = await self._tools.dispatch(call)
                result = ChatMessage(role="tool", content=output, tool_call_id=call.id)
                self._history.append(result)
                self.config.on_item(result)
        logger.warning("agent_max_iterations_reached", max_iterations=self._max_iterations)

    def reset(self) -> None:
        self._history = [m for m in self._history if m.role == "system"]
        self.config.on_reset()

    def terminate(self) -> None:
        self._terminated = True
        if self._stream is not None:
            self._stream.abort()


def make_agent_factory(providers: ProviderResolver, workdir: str, max_iterations: int) -> AgentFactory:
    def factory(config: AgentConfig) -> Agent:
        return AgentLoop(config, providers, workdir=workdir, max_iterations=max_iterations)

    return factory
