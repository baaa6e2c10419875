"""Per-extension content formatters applied before a write.

A formatter is a callable taking the content string and returning the
formatted string. Formatting must be idempotent. A formatter that raises is
skipped and the raw content is written instead.

Built in: .json (re-indented with two spaces).
Extra formatters are registered by plugins (see core.plugin_loader).
"""

import json
import logging
import os


logger = logging.getLogger(__name__)


def format_json(content: str) -> str:
    """Re-indent JSON with two spaces, keeping key order."""
    data = json.loads(content)
    formatted = json.dumps(data, indent=2, ensure_ascii=False)
    return formatted + "\n" if content.endswith("\n") else formatted


class FormatterRegistry:
    """Maps lower-case file extensions to formatter callables."""

    def __init__(self, builtins: bool = True):
        self._formatters: dict[str, dict] = {}
        if builtins:
            self.register_formatter(".json", format_json, "Re-indent JSON with 2 spaces")

    def register_formatter(self, extension: str, func: callable, description: str = "",
                           replace: bool = False) -> None:
        """Register a formatter for an extension such as ".go" or "go"."""
        ext = extension.lower()
        if not ext.startswith("."):
            ext = "." + ext
        if ext in self._formatters and not replace:
            raise ValueError(f"Formatter for '{ext}' is already registered.")
        self._formatters[ext] = {"func": func, "description": description}

    def get_formatter(self, extension: str) -> callable:
        entry = self._formatters.get(extension.lower())
        return entry["func"] if entry else None

    def list_formatters(self) -> list[dict]:
        return [
            {"extension": ext, "description": f["description"]}
            for ext, f in sorted(self._formatters.items())
        ]

    def format(self, path: str, content: str) -> str:
        """Format content for path. Unknown extensions and failures return content unchanged."""
        func = self.get_formatter(os.path.splitext(path)[1])
        if func is None:
            return content
        try:
            formatted = func(content)
        except Exception as e:
            logger.info("Formatter failed for %s, writing raw content: %s", path, e)
            return content
        if not isinstance(formatted, str):
            logger.warning("Formatter for %s returned %s, writing raw content",
                           path, type(formatted).__name__)
            return content
        return formatted
