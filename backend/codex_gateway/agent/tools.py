import asyncio
import json
import re
import shlex
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from codex_gateway.agent.approvals import CommandConfirmation
from codex_gateway.providers.base import FunctionDefinition, ToolCall, ToolDeclaration

logger = structlog.get_logger()

MAX_OUTPUT_CHARS = 20_000
MAX_RESULTS = 200
DEFAULT_READ_LIMIT = 2000


class ToolError(Exception):
    pass


def _declare(name: str, description: str, properties: Dict[str, Any], required: List[str]) -> ToolDeclaration:
    return ToolDeclaration(
        function=FunctionDefinition(
            name=name,
            description=description,
            parameters={"type": "object", "properties": properties, "required": required},
        )
    )


TOOL_DECLARATIONS = [
    _declare(
        "Read",
        "Read a text file from the working directory.",
        {
            "file_path": {"type": "string"},
            "offset": {"type": "integer", "description": "First line (0-based)."},
            "limit": {"type": "integer", "description": "Maximum number of lines."},
        },
        ["file_path"],
    ),
    _declare("LS", "List a directory.", {"path": {"type": "string"}}, []),
    _declare(
        "Glob",
        "Find files matching a glob pattern.",
        {"pattern": {"type": "string"}, "path": {"type": "string"}},
        ["pattern"],
    ),
    _declare(
        "Grep",
        "Search file contents with a regular expression.",
        {
            "pattern": {"type": "string"},
            "path": {"type": "string"},
            "include": {"type": "string", "description": "Glob filter for file names."},
        },
        ["pattern"],
    ),
    _declare(
        "Bash",
        "Run a shell command. Requires confirmation.",
        {"command": {"type": "string"}},
        ["command"],
    ),
]


def _truncate(text: str) -> str:
    if len(text) <= MAX_OUTPUT_CHARS:
        return text
    return text[:MAX_OUTPUT_CHARS] + "\n... (truncated)"


class ToolBox:
    def __init__(
        self,
        workdir: str,
        confirm: Callable[[List[str]], Awaitable[CommandConfirmation]],
        command_timeout: float = 60.0,
    ):
        self.root = Path(workdir).resolve()
        self._confirm = confirm
        self._command_timeout = command_timeout

    def declarations(self) -> List[ToolDeclaration]:
        return list(TOOL_DECLARATIONS)

    def _resolve(self, path: Optional[str]) -> Path:
        resolved = (self.root / (path or ".")).resolve()
        if resolved != self.root and self.root not in resolved.parents:
            raise ToolError(f"{path} is outside the working directory")
        return resolved

    def _relative(self, path: Path) -> str:
        return str(path.relative_to(self.root))

    def _read(self, file_path: str, offset: int = 0, limit: int = DEFAULT_READ_LIMIT) -> str:
        lines = self._resolve(file_path).read_text(errors="replace").splitlines()
        window = lines[offset:offset + limit]
        return "\n".join(f"{offset + i + 1:6d}\t{line}" for i, line in enumerate(window))

    def _ls(self, path: Optional[str] = None) -> str:
        entries = sorted(self._resolve(path).iterdir())
        return "\n".join(e.name + ("/" if e.is_dir() else "") for e in entries)

    def _check_pattern(self, pattern: str) -> str:
        if Path(pattern).anchor:
            raise ToolError(f"pattern {pattern} must be relative to the search path")
        return pattern

    def _glob(self, pattern: str, path: Optional[str] = None) -> str:
        base = self._resolve(path)
        pattern = self._check_pattern(pattern)
        matches = sorted(self._relative(p) for p in base.glob(pattern) if p.resolve().is_relative_to(self.root))
        return "\n".join(matches[:MAX_RESULTS]) or "No files found"

    def _grep(self, pattern: str, path: Optional[str] = None, include: Optional[str] = None) -> str:
        regex = re.compile(pattern)
        base = self._resolve(path)
        files = [base] if base.is_file() else sorted(base.rglob(self._check_pattern(include or "*")))
        results: List[str] = []
        for file in files:
            if not file.is_file():
                continue
            try:
                text = file.read_text()
            except (OSError, UnicodeDecodeError):
                continue
            for lineno, line in enumerate(text.splitlines(), start=1):
                if regex.search(line):
                    results.append(f"{self._relative(file)}:{lineno}:{line}")
                    if len(results) >= MAX_RESULTS:
                        return "\n".join(results)
        return "\n".join(results) or "No matches found"

    async def _bash(self, command: str) -> str:
        confirmation = await self._confirm(shlex.split(command))
        if not confirmation.approved:
            logger.info("command_rejected", command=command, review=confirmation.review.value)
            return confirmation.custom_deny_message or f"Command rejected by reviewer: {command}"

        proc = await asyncio.create_subprocess_shell(
            command,
            cwd=self.root,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), self._command_timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return f"Command timed out after {self._command_timeout}s"
        return f"exit code {proc.returncode}\n{stdout.decode(errors='replace')}"

    async def dispatch(self, call: ToolCall) -> str:
        name = call.function.name
        try:
            args = json.loads(call.function.arguments or "{}")
            if name == "Bash":
                output = await self._bash(**args)
            elif name == "Read":
                output = await asyncio.to_thread(self._read, **args)
            elif name == "LS":
                output = await asyncio.to_thread(self._ls, **args)
            elif name == "Glob":
                output = await asyncio.to_thread(self._glob, **args)
            elif name == "Grep":
                output = await asyncio.to_thread(self._grep, **args)
            else:
                return f"Error: unknown tool {name}"
        except (ToolError, OSError, re.error, TypeError, ValueError, NotImplementedError) as e:
            logger.warning("tool_failed", tool=name, error=str(e))
            return f"Error: {e}"
        return _truncate(output)
