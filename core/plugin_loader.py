"""Plugin loader for llmrt: load content formatters from a directory.

Users drop Python files into a plugins directory. Each file should define
a register_formatters(registry) function that registers formatters on the
given FormatterRegistry.

Example plugin (plugins/strip_trailing.py):

    def strip_trailing(text):
        '''Drop trailing whitespace on every line.'''
        return "\\n".join(line.rstrip() for line in text.split("\\n"))

    def register_formatters(registry):
        registry.register_formatter(".md", strip_trailing, "Strip trailing spaces")

Plugins are only loaded from a directory named explicitly in configuration.
"""

import logging
import sys
import importlib.util
from pathlib import Path


logger = logging.getLogger(__name__)


def load_plugins(plugin_dir: str, registry) -> list[dict]:
    """Load all plugin files from a directory and register their formatters.

    Each plugin file must define register_formatters(registry).
    Files starting with _ or . are skipped.

    Args:
        plugin_dir: Path to directory containing plugin .py files.
        registry: FormatterRegistry instance to register formatters on.

    Returns:
        List of dicts with: name, file, ok, error, formatters.
    """
    results = []
    plugin_path = Path(plugin_dir)

    if not plugin_path.is_dir():
        logger.warning("Plugins directory not found: %s", plugin_dir)
        return results

    for entry in sorted(plugin_path.iterdir()):
        if not entry.is_file():
            continue
        if not entry.name.endswith(".py"):
            continue
        if entry.name.startswith(("_", ".")):
            continue

        result = _load_single_plugin(entry, registry)
        if result["ok"]:
            logger.info("Loaded plugin %s (%s)", result["name"], ", ".join(result["formatters"]) or "no formatters")
        else:
            logger.warning("Plugin %s failed: %s", result["name"], result["error"])
        results.append(result)

    return results


def _load_single_plugin(filepath: Path, registry) -> dict:
    """Load a single plugin file and call its register_formatters()."""
    module_name = f"llmrt_plugin_{filepath.stem}"
    result = {
        "name": filepath.stem,
        "file": str(filepath),
        "ok": False,
        "error": None,
        "formatters": [],
    }

    try:
        spec = importlib.util.spec_from_file_location(module_name, str(filepath))
        if spec is None or spec.loader is None:
            result["error"] = "Could not create module spec"
            return result

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        spec.loader.exec_module(module)

        if not hasattr(module, "register_formatters"):
            del sys.modules[module_name]
            result["error"] = "Missing register_formatters(registry) function"
            return result

        before = {f["extension"] for f in registry.list_formatters()}
        module.register_formatters(registry)
        after = {f["extension"] for f in registry.list_formatters()}

        result["ok"] = True
        result["formatters"] = sorted(after - before)
        return result

    except Exception as e:
        sys.modules.pop(module_name, None)
        result["error"] = f"{type(e).__name__}: {e}"
        return result
