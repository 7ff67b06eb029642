from dataclasses import dataclass, field
from typing import Awaitable, Callable, List

from codex_gateway.agent.approvals import ApprovalPolicy, CommandConfirmation
from codex_gateway.providers.base import ChatMessage


class AgentTerminatedError(RuntimeError):
    pass


def _noop() -> None:
    return None


@dataclass
class AgentConfig:
    model: str
    instructions: str
    approval_policy: ApprovalPolicy
    on_item: Callable[[ChatMessage], None]
    get_command_confirmation: Callable[[List[str]], Awaitable[CommandConfirmation]]
    on_loading: Callable[[], None] = field(default=_noop)
    on_reset: Callable[[], None] = field(default=_noop)


class Agent:
    """A conversational agent that emits every message it produces via ``on_item``."""

    async def run(self, input_items: List[ChatMessage]) -> None:
        raise NotImplementedError

    def terminate(self) -> None:
        raise NotImplementedError


AgentFactory = Callable[[AgentConfig], Agent]
