from typing import List, Optional

from codex_gateway.providers.base import ChatMessage, ContentPart, ToolCall

# Inspection-only tools
READ_CAPABILITY = frozenset({
    "Read",
    "Glob",
    "Grep",
    "LS",
    "NotebookRead",
    "WebFetch",
    "WebSearch",
    "TodoRead",
})

# Tools that modify files, run commands or mutate tasks
WRITE_CAPABILITY = frozenset({
    "Edit",
    "MultiEdit",
    "Write",
    "NotebookEdit",
    "Bash",
    "TodoWrite",
    "Task",
})

READ_ONLY_NOTE_TEMPLATE = (
    "I can see you'd like me to perform write operations ({operations}), but I'm "
    "running in read-only mode via HTTP. I can help you understand your codebase, "
    "analyze files, search for patterns, and answer questions, but I cannot modify "
    "files or execute commands.\n\n"
    "Would you like me to help you explore or analyze your code instead?"
)


def is_write_call(tool_call: ToolCall) -> bool:
    return tool_call.function.name in WRITE_CAPABILITY


def read_only_note(blocked: List[ToolCall]) -> str:
    return READ_ONLY_NOTE_TEMPLATE.format(
        operations=", ".join(tc.function.name for tc in blocked)
    )


def filter_message(message: ChatMessage) -> Optional[ChatMessage]:
    """Strip write-capability tool calls from one agent message.

    Tool results pass through: enforcement happens at the call. Returns the
    original object when nothing needs rewriting.
    """
    if message.role == "tool" or not message.tool_calls:
        return message

    blocked = [tc for tc in message.tool_calls if is_write_call(tc)]
    if not blocked:
        return message

    kept = [tc for tc in message.tool_calls if not is_write_call(tc)]
    note = read_only_note(blocked)

    content = message.content
    if isinstance(content, list):
        content = content + [ContentPart(type="text", text=note)]
    elif content:
        content = f"{content}\n\n{note}"
    else:
        content = note

    return message.model_copy(update={"tool_calls": kept or None, "content": content})
