"""Session: one invocation's worth of state and the single-pass orchestrator.

A Session owns its counters, its audit sink and the executor dependencies.
It is created once per invocation and passed explicitly; there is no
process-wide session.

For every command found in the text the session runs

    permission -> validate + execute (tool function) -> audit -> result

and splices the framed result back into the text in place. A failure in one
command becomes an error block; the remaining text is still processed.
"""

import logging
import os
import time

from core.audit_log import AuditLog, make_record
from core.errors import ErrorKind
from core.formatters import FormatterRegistry
from core.path_validator import PathValidator
from core.permission_system import PermissionSystem
from core.plugin_loader import load_plugins
from core.sandbox import create_sandbox
from core.scanner import Scanner, scan
from core.tool_protocol import (
    CommandToken, ExecutionResult, TextSpan, ToolContext,
    format_header, format_result, format_summary, render_json,
)
from tools.file_read import open_file
from tools.file_write import write_file
from tools.repo_search import KeywordSearchEngine, search_repository
from tools.sandbox_exec import exec_command


logger = logging.getLogger(__name__)

EXECUTORS = {
    "open": open_file,
    "write": write_file,
    "exec": exec_command,
    "search": search_repository,
}


def _audit_detail(result: ExecutionResult) -> str:
    token = result.token
    parts = []
    if token.kind == "write" and result.success:
        parts += [f"hash:{result.content_hash}", f"bytes:{result.bytes_written}",
                  f"action:{result.action.lower()}"]
        if result.backup_path:
            parts.append(f"backup:{os.path.basename(result.backup_path)}")
    elif token.kind == "exec" and result.exit_code is not None:
        if result.error_kind == ErrorKind.SANDBOX_TIMEOUT:
            status = "timeout"
        else:
            status = "completed" if result.success else "failed"
        parts += [f"exit_code:{result.exit_code}", f"duration:{result.duration:.3f}s", f"status:{status}"]
    elif token.kind == "search" and result.success:
        parts += [f"results:{result.match_count}", f"duration:{result.duration:.3f}s"]
    elif token.kind == "open" and result.success:
        parts.append(f"bytes:{result.extra.get('bytes', len(result.payload))}")
    if not result.success:
        kind = result.error_kind.value if result.error_kind else ErrorKind.INTERNAL.value
        parts.append(f"error:{kind}: {result.message}")
    return ",".join(parts)


class Session:
    """State for one invocation: id, config, counters, audit sink, executors."""

    def __init__(self, config, audit=None, sandbox=None, search_engine=None,
                 formatters: FormatterRegistry = None, permissions: PermissionSystem = None,
                 session_id: str = None):
        """Build a session. Any dependency left as None is built from config.

        Args:
            config: RuntimeConfig.
            audit: Audit sink with write(record)/close(). Defaults to an
                AuditLog at config.audit_log when auditing is enabled.
            sandbox: Sandbox backend for exec.
            search_engine: Object with search(query, limit).
            formatters: FormatterRegistry for writes (plugins loaded from
                config.plugins_dir when built here).
            permissions: PermissionSystem; defaults to the config enable flags.
            session_id: Defaults to the nanosecond start timestamp.
        """
        self.config = config
        self.id = session_id or str(time.time_ns())
        self.start_time = time.monotonic()
        self.commands_run = 0
        self.results: list[ExecutionResult] = []
        self.plugin_results: list[dict] = []

        if audit is None and config.audit_enabled:
            audit = AuditLog(config.audit_log)
        self.audit = audit

        if formatters is None:
            formatters = FormatterRegistry()
            if config.plugins_dir:
                self.plugin_results = load_plugins(config.plugins_dir, formatters)
        if sandbox is None:
            sandbox = create_sandbox(config.sandbox_runtime, max_output_size=config.max_output_size)
        if search_engine is None and config.search_enabled:
            search_engine = KeywordSearchEngine(config.root, config.excluded_paths, config.max_file_size)

        self.permissions = permissions or PermissionSystem.from_config(config)
        self.context = ToolContext(
            config=config,
            paths=PathValidator(config.root, config.excluded_paths),
            formatters=formatters,
            sandbox=sandbox,
            search_engine=search_engine,
        )
        self._closed = False
        logger.debug("Session %s started (root=%s)", self.id, config.root)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.start_time

    # ------------------------------------------------------------------
    # Single command
    # ------------------------------------------------------------------

    def execute(self, token: CommandToken) -> ExecutionResult:
        """Run one command through permission, executor and audit."""
        if not self.permissions.is_allowed(token.kind):
            result = ExecutionResult.fail(token, ErrorKind.COMMAND_DISABLED,
                                          f"The {token.kind} command is disabled")
        else:
            executor = EXECUTORS.get(token.kind)
            if executor is None:
                result = ExecutionResult.fail(token, ErrorKind.INTERNAL, f"No executor for {token.kind}")
            else:
                try:
                    result = executor(token, self.context)
                except Exception as e:
                    logger.exception("Unhandled error executing %s", token.original[:200])
                    result = ExecutionResult.fail(token, ErrorKind.INTERNAL, f"{type(e).__name__}: {e}")

        if result.success:
            self.commands_run += 1
        else:
            logger.info("%s %r failed: %s: %s", token.kind, token.argument,
                        result.error_kind.value if result.error_kind else "?", result.message)
        self.results.append(result)
        self._audit(result)
        return result

    def _audit(self, result: ExecutionResult) -> None:
        if self.audit is None:
            return
        token = result.token
        record = make_record(self.id, token.kind, token.argument, result.success, _audit_detail(result))
        try:
            self.audit.write(record)
        except Exception as e:
            logger.warning("Audit sink failed: %s", e)

    # ------------------------------------------------------------------
    # Whole buffers and streams
    # ------------------------------------------------------------------

    def process_text(self, text: str) -> str:
        """Execute every command in text and return it with results spliced in.

        Text without commands comes back unchanged.
        """
        items = scan(text)
        if not any(isinstance(item, CommandToken) for item in items):
            return text

        out = [format_header()]
        for item in items:
            if isinstance(item, TextSpan):
                out.append(item.text)
            else:
                out.append(self._render(item))
        out.append(format_summary(self.commands_run, self.elapsed))
        return "".join(out)

    def process_json(self, text: str) -> str:
        """Execute every command in text and return a JSON report instead of framed text."""
        first = len(self.results)
        for item in scan(text):
            if isinstance(item, CommandToken):
                self.execute(item)
        return render_json(self.results[first:], self.commands_run, self.elapsed)

    def process_stream(self, reader, writer) -> int:
        """Process text incrementally, writing output as soon as it is final.

        Passthrough text is written as it arrives, each result block as soon
        as its command completes, and the summary at end of input.

        Args:
            reader: Iterable of text chunks (a file object yields lines).
            writer: Object with write(str) (and optionally flush()).

        Returns:
            Number of commands found.
        """
        scanner = Scanner()
        found = 0

        def emit(items):
            nonlocal found
            for item in items:
                if isinstance(item, TextSpan):
                    writer.write(item.text)
                    continue
                if found == 0:
                    writer.write(format_header())
                found += 1
                writer.write(self._render(item))
            if hasattr(writer, "flush"):
                writer.flush()

        for chunk in reader:
            emit(scanner.feed(chunk))
        emit(scanner.finish())

        if found:
            writer.write(format_summary(self.commands_run, self.elapsed))
            if hasattr(writer, "flush"):
                writer.flush()
        return found

    def _render(self, token: CommandToken) -> str:
        result = self.execute(token)
        return token.original + "\n" + format_result(result)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.audit is not None:
            self.audit.close()
        logger.debug("Session %s closed: %d commands in %.2fs", self.id, self.commands_run, self.elapsed)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False
