"""<open path>: read a repository file with size limits and encoding detection."""

import os
import stat

from core.command_validator import check_size
from core.errors import ErrorKind
from core.tool_protocol import CommandToken, ExecutionResult, ToolContext


# Bytes inspected for NUL when detecting binary files
BINARY_SNIFF_SIZE = 8192


def _decode(raw: bytes) -> tuple[str, str] | None:
    for enc in ("utf-8", "utf-8-sig", "latin-1"):
        try:
            return raw.decode(enc), enc
        except (UnicodeDecodeError, ValueError):
            continue
    return None


def open_file(token: CommandToken, ctx: ToolContext) -> ExecutionResult:
    """Read the file named by token.argument.

    The size ceiling is checked on metadata before reading and again on the
    bytes actually read (the file may grow in between).

    Returns:
        ExecutionResult with the full file content as payload.
    """
    check = ctx.paths.validate(token.argument)
    if not check["ok"]:
        return ExecutionResult.fail(token, check["kind"], check["error"])
    path = check["resolved_path"]
    limit = ctx.config.max_file_size

    try:
        st = os.stat(path)
    except FileNotFoundError:
        return ExecutionResult.fail(token, ErrorKind.FILE_NOT_FOUND, f"File not found: {token.argument}")
    except PermissionError:
        return ExecutionResult.fail(token, ErrorKind.PERMISSION_DENIED, f"Permission denied: {token.argument}")
    except OSError as e:
        return ExecutionResult.fail(token, ErrorKind.IO_FAILURE, f"Cannot stat {path}: {e}")

    if not stat.S_ISREG(st.st_mode):
        return ExecutionResult.fail(token, ErrorKind.IO_FAILURE, f"Not a regular file: {token.argument}")

    size_check = check_size(st.st_size, limit)
    if not size_check["ok"]:
        return ExecutionResult.fail(token, size_check["kind"], size_check["error"])

    try:
        with open(path, "rb") as f:
            raw = f.read(limit + 1)
    except PermissionError:
        return ExecutionResult.fail(token, ErrorKind.PERMISSION_DENIED, f"Permission denied: {token.argument}")
    except OSError as e:
        return ExecutionResult.fail(token, ErrorKind.IO_FAILURE, f"Cannot read {path}: {e}")

    size_check = check_size(len(raw), limit)
    if not size_check["ok"]:
        return ExecutionResult.fail(token, size_check["kind"], size_check["error"])

    if b"\x00" in raw[:BINARY_SNIFF_SIZE]:
        return ExecutionResult.fail(token, ErrorKind.IO_FAILURE,
                                    f"Binary file detected ({len(raw)} bytes): {token.argument}")

    decoded = _decode(raw)
    if decoded is None:
        return ExecutionResult.fail(token, ErrorKind.IO_FAILURE, f"Could not decode file: {token.argument}")
    content, encoding = decoded

    return ExecutionResult(
        token=token,
        success=True,
        payload=content,
        extra={"bytes": len(raw), "encoding": encoding, "path": path},
    )
