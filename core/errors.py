"""Error taxonomy for llmrt.

Every gate and executor reports failure with one of the ErrorKind values
below. Exceptions are reserved for the few conditions that abort an
invocation (ConfigError) or that a sandbox backend cannot express as an
outcome (SandboxUnavailableError).

Messages shown inline to the model are passed through sanitize_message()
first; the audit log keeps the unsanitized text.
"""

import re
from enum import Enum


class ErrorKind(str, Enum):
    """Kinds of per-command failure."""

    SYNTAX = "SYNTAX"
    PATH_SECURITY = "PATH_SECURITY"
    EXTENSION_DENIED = "EXTENSION_DENIED"
    RESOURCE_LIMIT = "RESOURCE_LIMIT"
    COMMAND_NOT_WHITELISTED = "COMMAND_NOT_WHITELISTED"
    COMMAND_DISABLED = "COMMAND_DISABLED"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    SANDBOX_UNAVAILABLE = "SANDBOX_UNAVAILABLE"
    SANDBOX_TIMEOUT = "SANDBOX_TIMEOUT"
    SANDBOX_EXECUTION_FAILED = "SANDBOX_EXECUTION_FAILED"
    IO_FAILURE = "IO_FAILURE"
    INTERNAL = "INTERNAL"


class LlmrtError(Exception):
    """Base class for llmrt exceptions."""


class ConfigError(LlmrtError):
    """Configuration could not be loaded or the repository root is invalid.

    Fatal to the whole invocation.
    """


class SandboxUnavailableError(LlmrtError):
    """The isolation runtime (binary, daemon or image) cannot be used."""


def failure(kind: ErrorKind, error: str) -> dict:
    """Build the failure dict returned by validators."""
    return {"ok": False, "kind": kind, "error": error}


# ---------------------------------------------------------------------------
# Message sanitization
# ---------------------------------------------------------------------------

_UNIX_PATH_RE = re.compile(r"(?:/[\w.\-]+){2,}/?")
_WINDOWS_PATH_RE = re.compile(r"[A-Za-z]:\\(?:[\w.\-]+\\?)+")
_DAEMON_PHRASES = [
    "Cannot connect to the Docker daemon",
    "Is the docker daemon running?",
    "Error response from daemon: ",
    "docker: ",
    "podman: ",
]
_IDENTITY_RE = re.compile(r"\b(user|host) '[^']*'")


def sanitize_message(message: str) -> str:
    """Strip host paths, daemon chatter and identities from an error message."""
    if not message:
        return message
    for phrase in _DAEMON_PHRASES:
        message = message.replace(phrase, "")
    message = _WINDOWS_PATH_RE.sub("[path]", message)
    message = _UNIX_PATH_RE.sub("[path]", message)
    message = _IDENTITY_RE.sub(r"\1 '[redacted]'", message)
    return message.strip()
