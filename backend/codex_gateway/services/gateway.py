"""
Session gateway: maps opaque session ids to long-lived agents and enforces
the read-only capability policy on everything those agents emit.

Concurrent turns against the same session id are not serialized here;
callers must not race a session.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional, Sequence

import structlog

from codex_gateway.agent.approvals import ApprovalPolicy, CommandConfirmation, ReviewDecision
from codex_gateway.agent.base import Agent, AgentConfig, AgentFactory
from codex_gateway.observability import ACTIVE_SESSIONS, BLOCKED_TOOL_CALLS, CHAT_TURNS
from codex_gateway.providers.base import ChatMessage
from codex_gateway.services.capability import filter_message, is_write_call
from codex_gateway.services.input_items import create_input_item

logger = structlog.get_logger()

READ_ONLY_INSTRUCTIONS = """
IMPORTANT: You are running in READ-ONLY HTTP mode. You can only:
- Read files (Read, Glob, Grep, LS, NotebookRead)
- Search and analyze code
- Answer questions about the codebase
- Provide explanations and documentation

You CANNOT:
- Edit or write files (Edit, MultiEdit, Write, NotebookEdit)
- Execute commands (Bash)
- Create todos (TodoWrite)
- Perform any modification operations

If the user asks you to modify files or run commands, politely explain that you're in read-only mode and offer to help with code analysis instead."""


async def deny_all_commands(command: List[str]) -> CommandConfirmation:
    return CommandConfirmation(review=ReviewDecision.NO_CONTINUE)


@dataclass
class Session:
    id: str
    agent: Optional[Agent] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # agent -> gateway message channel
    outbox: "asyncio.Queue[ChatMessage]" = field(default_factory=asyncio.Queue)

    def deliver(self, message: ChatMessage) -> None:
        self.outbox.put_nowait(message)


@dataclass
class ChatResult:
    session_id: str
    messages: List[ChatMessage]
    status: Literal["completed", "error"]
    error: Optional[str] = None


class SessionGateway:
    def __init__(self, agent_factory: AgentFactory, model: str, instructions: str = ""):
        self._agent_factory = agent_factory
        self._model = model
        self._instructions = f"{instructions}\n{READ_ONLY_INSTRUCTIONS}".strip()
        self._sessions: Dict[str, Session] = {}

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def _create_session(self) -> Session:
        session = Session(id=str(uuid.uuid4()))
        session.agent = self._agent_factory(
            AgentConfig(
                model=self._model,
                instructions=self._instructions,
                # HTTP mode is always read-only, whatever the caller asked for
                approval_policy=ApprovalPolicy.SUGGEST,
                on_item=session.deliver,
                get_command_confirmation=deny_all_commands,
            )
        )
        self._sessions[session.id] = session
        ACTIVE_SESSIONS.set(len(self._sessions))
        logger.info("session_created", session_id=session.id, model=self._model)
        return session

    def _drain(self, session: Session) -> List[ChatMessage]:
        messages: List[ChatMessage] = []
        while not session.outbox.empty():
            item = session.outbox.get_nowait()
            filtered = filter_message(item)
            if filtered is not item:
                for tc in item.tool_calls or []:
                    if is_write_call(tc):
                        BLOCKED_TOOL_CALLS.labels(tc.function.name).inc()
                logger.info("write_tool_calls_blocked", session_id=session.id)
            if filtered is not None:
                messages.append(filtered)
        return messages

    async def handle_chat(
        self,
        prompt: str,
        images: Optional[Sequence[str]] = None,
        session_id: Optional[str] = None,
        approval_mode: Optional[str] = None,
    ) -> ChatResult:
        if approval_mode:
            logger.debug("approval_mode_ignored", approval_mode=approval_mode)

        session = self._sessions.get(session_id) if session_id else None
        result_id = session.id if session else str(uuid.uuid4())
        error: Optional[str] = None
        try:
            if session is None:
                session = self._create_session()
                result_id = session.id
            input_item = await create_input_item(prompt, images or [])
            await session.agent.run([input_item])
        except Exception as e:
            logger.exception("agent_turn_failed", session_id=result_id)
            error = str(e) or "Unknown error"

        messages = self._drain(session) if session is not None else []
        status = "error" if error is not None else "completed"
        CHAT_TURNS.labels(status).inc()
        return ChatResult(session_id=result_id, messages=messages, status=status, error=error)

    def terminate(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        if session.agent is not None:
            session.agent.terminate()
        ACTIVE_SESSIONS.set(len(self._sessions))
        logger.info("session_terminated", session_id=session_id)
        return True

    def shutdown(self) -> None:
        for session_id in list(self._sessions):
            self.terminate(session_id)
