"""Admission checks that run after path validation and before any side effect.

  - write extension allow-list
  - read and write size ceilings
  - exec whitelist: normalize, reject control characters and shell
    operators, then token-boundary match against configured entries

All checks return {"ok": True} or a failure dict with an ErrorKind.
"""

import os
import re
import unicodedata

from core.errors import ErrorKind, failure


MAX_COMMAND_LENGTH = 1000

# The command runs under `sh -c` in the container, so chaining, piping,
# substitution and redirection are rejected outright.
_SHELL_OPERATOR_PATTERNS = [
    r'&&',              # cmd1 && cmd2
    r'\|\|',            # cmd1 || cmd2
    r';',               # cmd1; cmd2
    r'\|',              # cmd1 | cmd2
    r'&',               # cmd1 & cmd2, background
    r'`',               # backtick substitution
    r'\$\(',            # $(cmd)
    r'\$\{',            # ${var}
    r'>',               # > and >> redirection
    r'<',               # input redirection
]

_SHELL_OPERATOR_RE = [re.compile(p) for p in _SHELL_OPERATOR_PATTERNS]

_CONTROL_CHAR_RE = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]')


def normalize_command(command: str) -> str:
    """Normalize a command string before whitelist matching.

    Strips zero-width characters and non-ASCII homoglyphs and collapses
    whitespace, so look-alike characters cannot dodge the checks below.
    """
    command = command.replace('\\\n', ' ')
    command = re.sub(r'[\u200b-\u200f\u2028-\u202f\u2060\ufeff]', '', command)
    command = unicodedata.normalize('NFKD', command)
    command = command.encode('ascii', errors='ignore').decode('ascii')
    return re.sub(r'\s+', ' ', command).strip()


def check_extension(path: str, allowed_extensions: list[str]) -> dict:
    """Case-insensitive suffix check. An empty allow-list allows everything."""
    if not allowed_extensions:
        return {"ok": True}
    ext = os.path.splitext(path)[1].lower()
    if not ext:
        return failure(ErrorKind.EXTENSION_DENIED,
                       f"File has no extension; allowed: {', '.join(allowed_extensions)}")
    allowed = {e.lower() if e.startswith(".") else "." + e.lower() for e in allowed_extensions}
    if ext not in allowed:
        return failure(ErrorKind.EXTENSION_DENIED,
                       f"Extension '{ext}' not allowed; allowed: {', '.join(sorted(allowed))}")
    return {"ok": True}


def check_size(size: int, limit: int, what: str = "File") -> dict:
    """Byte ceiling check. A limit of 0 or less disables the check."""
    if limit > 0 and size > limit:
        return failure(ErrorKind.RESOURCE_LIMIT,
                       f"{what} too large ({size:,} bytes, max {limit:,})")
    return {"ok": True}


def _whitelist_match(tokens: list[str], whitelist: list[str]) -> str | None:
    for entry in whitelist:
        entry_tokens = normalize_command(entry).split(" ")
        if entry_tokens == [""]:
            continue
        if tokens[:len(entry_tokens)] == entry_tokens:
            return entry
    return None


def check_command(command: str, whitelist: list[str]) -> dict:
    """Validate an exec command line against the whitelist.

    Matching runs on the normalized form, but the command handed back for
    execution is the caller's text (trimmed). A command that normalization
    would alter beyond inter-token whitespace is rejected.

    Returns:
        dict with ok=True, command and matched entry, or a
        COMMAND_NOT_WHITELISTED failure.
    """
    if _CONTROL_CHAR_RE.search(command):
        return failure(ErrorKind.COMMAND_NOT_WHITELISTED, "Command contains control characters")

    normalized = normalize_command(command)
    if not normalized:
        return failure(ErrorKind.COMMAND_NOT_WHITELISTED, "Empty command")
    if normalized != " ".join(command.split()):
        return failure(ErrorKind.COMMAND_NOT_WHITELISTED,
                       "Command contains non-ASCII, zero-width or line-continuation characters")
    if len(normalized) > MAX_COMMAND_LENGTH:
        return failure(ErrorKind.COMMAND_NOT_WHITELISTED,
                       f"Command too long ({len(normalized)} chars, max {MAX_COMMAND_LENGTH})")

    for pattern in _SHELL_OPERATOR_RE:
        if pattern.search(normalized):
            return failure(ErrorKind.COMMAND_NOT_WHITELISTED,
                           "Shell operators (&&, ||, ;, |, backtick, $(), redirection) are not permitted")

    if not whitelist:
        return failure(ErrorKind.COMMAND_NOT_WHITELISTED, "No commands are whitelisted")

    entry = _whitelist_match(normalized.split(" "), whitelist)
    if entry is None:
        base = normalized.split(" ")[0]
        return failure(ErrorKind.COMMAND_NOT_WHITELISTED, f"Command not whitelisted: {base}")

    return {"ok": True, "command": command.strip(), "matched": entry}
