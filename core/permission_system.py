"""Permission system for llmrt: controls which command kinds may run.

Two modes per command kind:
  - "allow": the command is validated and executed
  - "deny": the command is rejected with COMMAND_DISABLED before any check

Defaults come from the configuration's enable flags (exec is off unless
enabled explicitly). Per-kind overrides can be set at runtime.
"""

from core.tool_protocol import COMMAND_KINDS


MODES = ("allow", "deny")

# Default permission levels by command kind
DEFAULT_PERMISSIONS = {
    "open": "allow",
    "write": "allow",
    "exec": "deny",
    "search": "allow",
}


class PermissionSystem:
    """Manages command execution permissions."""

    def __init__(self, defaults: dict[str, str] = None):
        self.defaults = dict(defaults or DEFAULT_PERMISSIONS)
        self.overrides: dict[str, str] = {}

    @classmethod
    def from_config(cls, config) -> "PermissionSystem":
        """Build from a RuntimeConfig's *_enabled flags."""
        return cls({kind: "allow" if config.enabled(kind) else "deny" for kind in COMMAND_KINDS})

    def get_permission(self, kind: str) -> str:
        """Get the effective permission for a command kind."""
        if kind in self.overrides:
            return self.overrides[kind]
        return self.defaults.get(kind, "deny")

    def set_permission(self, kind: str, mode: str) -> None:
        """Override permission for a command kind.

        Raises:
            ValueError: unknown kind or mode.
        """
        if kind not in COMMAND_KINDS:
            raise ValueError(f"Unknown command kind: {kind}")
        if mode not in MODES:
            raise ValueError(f"Invalid permission mode: {mode}")
        self.overrides[kind] = mode

    def is_allowed(self, kind: str) -> bool:
        return self.get_permission(kind) == "allow"
