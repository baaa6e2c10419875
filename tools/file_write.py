"""<write path>content</write>: format, back up, then atomically replace a file."""

import hashlib
import logging
import os
import re
import shutil
import tempfile
import time

from core.command_validator import check_extension, check_size
from core.errors import ErrorKind
from core.tool_protocol import ACTION_CREATED, ACTION_UPDATED, CommandToken, ExecutionResult, ToolContext


logger = logging.getLogger(__name__)

_BACKUP_SUFFIX_RE = re.compile(r"^(\d+)(?:\.(\d+))?$")


def _backup_key(name: str, prefix: str) -> tuple[int, int] | None:
    m = _BACKUP_SUFFIX_RE.match(name[len(prefix):])
    if not m:
        return None
    return int(m.group(1)), int(m.group(2) or 0)


def list_backups(path: str) -> list[str]:
    """Backups of path, oldest first."""
    directory, name = os.path.split(path)
    prefix = f"{name}.bak."
    found = []
    for entry in os.listdir(directory):
        if not entry.startswith(prefix):
            continue
        key = _backup_key(entry, prefix)
        if key is not None:
            found.append((key, os.path.join(directory, entry)))
    return [p for _, p in sorted(found)]


def make_backup(path: str, max_backups: int = 5) -> str:
    """Copy path to <path>.bak.<unix-seconds> and prune old backups.

    Returns:
        The backup file path.
    """
    ts = int(time.time())
    prefix = f"{os.path.basename(path)}.bak."
    # same-second backups get a counter above any existing one so they sort newest
    taken = [_backup_key(os.path.basename(p), prefix) for p in list_backups(path)]
    n = max((k[1] + 1 for k in taken if k[0] == ts), default=0)
    backup = f"{path}.bak.{ts}.{n}" if n else f"{path}.bak.{ts}"
    shutil.copy2(path, backup)

    if max_backups > 0:
        for old in list_backups(path)[:-max_backups]:
            try:
                os.remove(old)
            except OSError as e:
                logger.warning("Could not prune backup %s: %s", old, e)
    return backup


def atomic_write(path: str, data: bytes) -> None:
    """Write data to a temp file beside path, fsync, then rename over path.

    On any failure the temp file is removed and path is left untouched.
    """
    directory, name = os.path.split(path)
    fd, tmp = tempfile.mkstemp(prefix=f".{name}.", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if os.path.exists(path):
            shutil.copymode(path, tmp)
        else:
            os.chmod(tmp, 0o644)
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise


def write_file(token: CommandToken, ctx: ToolContext) -> ExecutionResult:
    """Write token.body to the file named by token.argument.

    Order: path check, extension check, format, size check on the formatted
    bytes, backup of an existing file, parent directory creation, atomic
    replace.

    Returns:
        ExecutionResult with action, bytes_written, backup_path and the
        SHA-256 of the written content.
    """
    config = ctx.config

    check = ctx.paths.validate(token.argument)
    if not check["ok"]:
        return ExecutionResult.fail(token, check["kind"], check["error"])
    path = check["resolved_path"]

    ext_check = check_extension(path, config.allowed_extensions)
    if not ext_check["ok"]:
        return ExecutionResult.fail(token, ext_check["kind"], ext_check["error"])

    content = ctx.formatters.format(path, token.body or "")
    data = content.encode("utf-8")

    size_check = check_size(len(data), config.max_write_size, what="Content")
    if not size_check["ok"]:
        return ExecutionResult.fail(token, size_check["kind"], size_check["error"])

    existed = os.path.lexists(path)
    if existed and not os.path.isfile(path):
        return ExecutionResult.fail(token, ErrorKind.IO_FAILURE, f"Not a regular file: {token.argument}")

    backup_path = None
    try:
        if existed and config.backup_before_write:
            backup_path = make_backup(path, config.max_backups)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        atomic_write(path, data)
    except PermissionError:
        return ExecutionResult.fail(token, ErrorKind.PERMISSION_DENIED, f"Permission denied: {token.argument}",
                                    backup_path=backup_path)
    except OSError as e:
        return ExecutionResult.fail(token, ErrorKind.IO_FAILURE, f"Write failed for {path}: {e}",
                                    backup_path=backup_path)

    return ExecutionResult(
        token=token,
        success=True,
        action=ACTION_UPDATED if existed else ACTION_CREATED,
        bytes_written=len(data),
        backup_path=backup_path,
        content_hash=hashlib.sha256(data).hexdigest(),
        extra={"path": path},
    )
