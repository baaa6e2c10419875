"""Tool protocol for llmrt.

Shared types that travel between the scanner, the validators, the tool
executors and the session, plus the text framing used to splice results
back into the model's output.

Command format (embedded in free text):
    <open path>
    <write path>content</write>
    <exec command args...>
    <search query>

Result framing:
    === COMMAND: <open path> ===
    === FILE: path ===
    ...
    === END FILE ===
    === END COMMAND ===
"""

import json
import os
from dataclasses import dataclass, field

from core.errors import ErrorKind, sanitize_message


COMMAND_KINDS = ("open", "write", "exec", "search")

ACTION_CREATED = "CREATED"
ACTION_UPDATED = "UPDATED"

# Exit code reported for a command killed at its deadline
TIMEOUT_EXIT_CODE = 124


@dataclass(frozen=True)
class CommandToken:
    """A command parsed out of free text.

    start/end index into the scanned text; text[start:end] == original.
    """
    kind: str
    argument: str
    start: int
    end: int
    original: str
    body: str | None = None

    @property
    def span(self) -> tuple[int, int]:
        return (self.start, self.end)


@dataclass(frozen=True)
class TextSpan:
    """Passthrough text between commands."""
    text: str
    start: int
    end: int


@dataclass
class ToolContext:
    """Dependencies a command executor needs. Owned by the Session."""
    config: object              # RuntimeConfig
    paths: object               # PathValidator
    formatters: object          # FormatterRegistry
    sandbox: object = None      # Sandbox
    search_engine: object = None


@dataclass
class ExecutionResult:
    """Outcome of one command. Exactly one is produced per CommandToken."""
    token: CommandToken
    success: bool
    error_kind: ErrorKind | None = None
    message: str = ""
    payload: str = ""
    bytes_written: int = 0
    backup_path: str | None = None
    action: str | None = None
    exit_code: int | None = None
    duration: float = 0.0
    stdout: str = ""
    stderr: str = ""
    content_hash: str | None = None
    match_count: int = 0
    extra: dict = field(default_factory=dict)

    @classmethod
    def fail(cls, token: CommandToken, kind: ErrorKind, message: str, **kwargs) -> "ExecutionResult":
        return cls(token=token, success=False, error_kind=kind, message=message, **kwargs)

    def to_dict(self) -> dict:
        """JSON-friendly view of the result (messages sanitized)."""
        data = {
            "command": self.token.kind,
            "argument": self.token.argument,
            "start": self.token.start,
            "end": self.token.end,
            "success": self.success,
        }
        if not self.success:
            data["error"] = self.error_kind.value if self.error_kind else ErrorKind.INTERNAL.value
            data["message"] = sanitize_message(self.message)
        if self.payload:
            data["result"] = self.payload
        if self.token.kind == "write" and self.success:
            data["action"] = self.action
            data["bytes_written"] = self.bytes_written
            if self.backup_path:
                data["backup"] = os.path.basename(self.backup_path)
            data["sha256"] = self.content_hash
        if self.token.kind == "exec":
            data["exit_code"] = self.exit_code
            data["duration"] = round(self.duration, 3)
            if self.stderr:
                data["stderr"] = self.stderr
        if self.token.kind == "search" and self.success:
            data["matches"] = self.match_count
        return data


# ---------------------------------------------------------------------------
# Result framing
# ---------------------------------------------------------------------------

def _with_newline(text: str) -> str:
    return text if text.endswith("\n") else text + "\n"


def command_header(token: CommandToken) -> str:
    """First line of the original tag text (write bodies can span lines)."""
    return token.original.split("\n", 1)[0]


def format_result(result: ExecutionResult) -> str:
    """Render one result as a framed block, including the COMMAND wrapper."""
    token = result.token
    lines = [f"=== COMMAND: {command_header(token)} ===\n"]

    if result.success:
        if token.kind == "open":
            lines.append(f"=== FILE: {token.argument} ===\n")
            if result.payload:
                lines.append(_with_newline(result.payload))
            lines.append("=== END FILE ===\n")
        elif token.kind == "write":
            lines.append(f"=== WRITE SUCCESSFUL: {token.argument} ===\n")
            lines.append(f"Action: {result.action}\n")
            lines.append(f"Bytes written: {result.bytes_written}\n")
            if result.backup_path:
                lines.append(f"Backup: {os.path.basename(result.backup_path)}\n")
            lines.append("=== END WRITE ===\n")
        elif token.kind == "exec":
            lines.append(f"=== EXEC SUCCESSFUL: {token.argument} ===\n")
            lines.append(f"Exit code: {result.exit_code}\n")
            lines.append(f"Duration: {result.duration:.3f}s\n")
            if result.payload:
                lines.append("Output:\n")
                lines.append(_with_newline(result.payload))
            lines.append("=== END EXEC ===\n")
        elif token.kind == "search":
            lines.append(_with_newline(result.payload))
    else:
        kind = result.error_kind or ErrorKind.INTERNAL
        lines.append(f"=== ERROR: {kind.value} ===\n")
        lines.append(f"Message: {sanitize_message(result.message)}\n")
        lines.append(f"Command: {command_header(token)}\n")
        if token.kind == "exec" and result.exit_code:
            lines.append(f"Exit code: {result.exit_code}\n")
            # test runners report failures on stdout
            if result.stdout:
                lines.append(f"Output: {sanitize_message(result.stdout.rstrip())}\n")
            if result.stderr:
                lines.append(f"Stderr: {sanitize_message(result.stderr)}\n")
        lines.append("=== END ERROR ===\n")

    lines.append("=== END COMMAND ===\n")
    return "".join(lines)


def format_header() -> str:
    return "=== LLM TOOL START ===\n"


def format_summary(commands_run: int, elapsed: float) -> str:
    """Trailer written after the last passthrough text."""
    return (
        "\n=== LLM TOOL COMPLETE ===\n"
        f"Commands executed: {commands_run}\n"
        f"Time elapsed: {elapsed:.2f}s\n"
        "=== END ===\n"
    )


def render_json(results: list[ExecutionResult], commands_run: int, elapsed: float) -> str:
    """Machine-readable rendering of one processing pass."""
    doc = {
        "results": [r.to_dict() for r in results],
        "commands_executed": commands_run,
        "elapsed_s": round(elapsed, 3),
    }
    return json.dumps(doc, indent=2)


def format_file_size(size: int) -> str:
    """Human-readable byte count: 512 B, 1.5 KB, 2.0 MB."""
    unit = 1024
    if size < unit:
        return f"{size} B"
    value = float(size)
    for suffix in ("KB", "MB", "GB", "TB"):
        value /= unit
        if value < unit:
            return f"{value:.1f} {suffix}"
    return f"{value / unit:.1f} PB"
