"""<exec command>: run a whitelisted command in an isolated container."""

import logging
import os
import shutil
import tempfile

from core.command_validator import check_command
from core.errors import ErrorKind, SandboxUnavailableError
from core.sandbox import SandboxRequest
from core.tool_protocol import CommandToken, ExecutionResult, ToolContext


logger = logging.getLogger(__name__)


def combine_output(stdout: str, stderr: str) -> str:
    """Payload shown to the model: both streams labelled, or whichever is non-empty."""
    if stdout and stderr:
        return f"STDOUT:\n{stdout}\n\nSTDERR:\n{stderr}"
    return stdout or stderr


def exec_command(token: CommandToken, ctx: ToolContext) -> ExecutionResult:
    """Validate token.argument against the whitelist and run it in the sandbox.

    A fresh SandboxRequest and scratch directory are created for every call;
    the scratch directory is removed afterwards.
    """
    config = ctx.config

    check = check_command(token.argument, config.exec_whitelist)
    if not check["ok"]:
        return ExecutionResult.fail(token, check["kind"], check["error"])

    if ctx.sandbox is None:
        return ExecutionResult.fail(token, ErrorKind.SANDBOX_UNAVAILABLE, "No sandbox backend configured")

    scratch = tempfile.mkdtemp(prefix="llmrt-exec-")
    try:
        # the container runs as an unprivileged uid that must be able to write here
        os.chmod(scratch, 0o777)
        request = SandboxRequest(
            command=check["command"],
            repo_dir=config.root,
            scratch_dir=scratch,
            image=config.exec_image,
            timeout=config.exec_timeout,
            memory=config.exec_memory,
            cpus=config.exec_cpus,
            pids_limit=config.exec_pids_limit,
            user=config.exec_user,
        )
        try:
            outcome = ctx.sandbox.run(request)
        except SandboxUnavailableError as e:
            return ExecutionResult.fail(token, ErrorKind.SANDBOX_UNAVAILABLE, str(e))
    finally:
        shutil.rmtree(scratch, ignore_errors=True)

    logger.debug("exec %r: exit=%s timed_out=%s duration=%.3fs",
                 request.command, outcome.exit_code, outcome.timed_out, outcome.duration)
    payload = combine_output(outcome.stdout, outcome.stderr)
    common = {
        "exit_code": outcome.exit_code,
        "duration": outcome.duration,
        "stdout": outcome.stdout,
        "stderr": outcome.stderr,
        "payload": payload,
    }

    if outcome.timed_out:
        return ExecutionResult.fail(
            token, ErrorKind.SANDBOX_TIMEOUT,
            f"Command timed out after {config.exec_timeout}s", **common,
        )
    if outcome.exit_code != 0:
        return ExecutionResult.fail(
            token, ErrorKind.SANDBOX_EXECUTION_FAILED,
            f"Command exited with code {outcome.exit_code}", **common,
        )
    return ExecutionResult(token=token, success=True, **common)
