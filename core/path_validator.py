"""Path confinement for llmrt.

Every filesystem operation goes through validate_path() before any I/O.
The returned path is absolute, symlink-resolved and inside the repository
root, or the call fails with PATH_SECURITY.

Checks, in order:
  1. reject empty, NUL-bearing or oversized input; clean lexically
  2. reject excluded paths (glob on the path, any component, or the name)
  3. join with the repository root
  4. reject if the joined path is not textually under the root
  5. resolve symlinks (nearest existing ancestor for new files; fail closed
     when nothing resolves)
  6. reject if the resolved path is not under the canonical root, and repeat
     the exclusion check on the resolved relative path
"""

import fnmatch
import logging
import os

from core.errors import ErrorKind, failure


logger = logging.getLogger(__name__)

MAX_PATH_LENGTH = 4096


def _is_excluded(path: str, exclusions: list[str]) -> str | None:
    """Return the matching exclusion pattern, or None."""
    norm = path.replace(os.sep, "/")
    parts = [p for p in norm.split("/") if p]
    name = parts[-1] if parts else ""
    for raw in exclusions:
        pattern = raw.replace(os.sep, "/").rstrip("/")
        if not pattern:
            continue
        if norm == pattern or norm.startswith(pattern + "/"):
            return raw
        if fnmatch.fnmatchcase(norm, pattern) or fnmatch.fnmatchcase(name, pattern):
            return raw
        if any(fnmatch.fnmatchcase(part, pattern) for part in parts):
            return raw
    return None


def _within(path: str, root: str) -> bool:
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


def _resolve(path: str) -> str | None:
    """Resolve symlinks, using the nearest existing ancestor for new paths."""
    existing = path
    remainder = []
    while not os.path.lexists(existing):
        parent = os.path.dirname(existing)
        if parent == existing:
            return None
        remainder.insert(0, os.path.basename(existing))
        existing = parent
    try:
        base = os.path.realpath(existing, strict=True)
    except (OSError, ValueError):
        return None
    return os.path.join(base, *remainder) if remainder else base


def validate_path(raw_path: str, repo_root: str, exclusions: list[str] = None) -> dict:
    """Validate a caller-supplied path against the repository boundary.

    Args:
        raw_path: Path as written by the model, relative or absolute.
        repo_root: Repository root directory.
        exclusions: Glob patterns or directory prefixes that are off limits.

    Returns:
        dict with ok=True, resolved_path, relative_path; or ok=False with
        kind=PATH_SECURITY and error.
    """
    exclusions = exclusions or []

    if not raw_path or not raw_path.strip():
        return failure(ErrorKind.PATH_SECURITY, "Empty path")
    if "\x00" in raw_path:
        return failure(ErrorKind.PATH_SECURITY, "Path contains NUL byte")
    if len(raw_path) > MAX_PATH_LENGTH:
        return failure(ErrorKind.PATH_SECURITY, f"Path too long ({len(raw_path)} chars)")

    cleaned = os.path.normpath(raw_path.strip())

    matched = _is_excluded(cleaned, exclusions)
    if matched:
        logger.debug("Excluded path %r (pattern %r)", raw_path, matched)
        return failure(ErrorKind.PATH_SECURITY, f"Access denied: path matches exclusion '{matched}'")

    root = os.path.realpath(repo_root)
    joined = cleaned if os.path.isabs(cleaned) else os.path.join(root, cleaned)
    joined = os.path.normpath(joined)

    if not _within(joined, root):
        logger.debug("Path %r escapes repository root", raw_path)
        return failure(ErrorKind.PATH_SECURITY, f"Path outside repository: {raw_path}")

    resolved = _resolve(joined)
    if resolved is None:
        return failure(ErrorKind.PATH_SECURITY, f"Cannot resolve path: {raw_path}")

    try:
        rel = os.path.relpath(resolved, root)
    except ValueError:
        return failure(ErrorKind.PATH_SECURITY, f"Path outside repository: {raw_path}")
    if rel == os.pardir or rel.startswith(os.pardir + os.sep) or os.path.isabs(rel):
        logger.debug("Path %r resolves outside repository: %s", raw_path, resolved)
        return failure(ErrorKind.PATH_SECURITY, f"Path resolves outside repository: {raw_path}")

    if rel != os.curdir:
        matched = _is_excluded(rel, exclusions)
        if matched:
            logger.debug("Path %r resolves into excluded %r", raw_path, matched)
            return failure(ErrorKind.PATH_SECURITY, f"Access denied: path matches exclusion '{matched}'")

    return {"ok": True, "resolved_path": resolved, "relative_path": rel}


class PathValidator:
    """validate_path() bound to one repository root and exclusion list."""

    def __init__(self, repo_root: str, exclusions: list[str] = None):
        self.repo_root = os.path.realpath(repo_root)
        self.exclusions = list(exclusions or [])

    def validate(self, raw_path: str) -> dict:
        return validate_path(raw_path, self.repo_root, self.exclusions)
