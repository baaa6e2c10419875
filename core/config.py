"""Configuration file support for llmrt.

Loads settings from .llmrt.toml / llmrt.toml (project-level, then user-level)
or from an explicit --config path. CLI flags override config file values.
Config file overrides defaults.

Config files may be flat (keys named as in DEFAULTS) or sectioned:

    [repository]
    root = "."
    excluded_paths = [".git", ".env", "*.key", "*.pem"]

    [commands.exec]
    enabled = true
    whitelist = ["go test", "make"]
    timeout_seconds = 10
"""

import logging
import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path

from core.errors import ConfigError


logger = logging.getLogger(__name__)


# Default configuration values (same as CLI defaults)
DEFAULTS = {
    "root": ".",
    "excluded_paths": [".git", ".env", "*.key", "*.pem"],
    "open_enabled": True,
    "max_file_size": 1024 * 1024,
    "write_enabled": True,
    "max_write_size": 100 * 1024,
    "allowed_extensions": [".go", ".py", ".js", ".md", ".txt", ".json", ".yaml", ".yml", ".toml"],
    "backup_before_write": True,
    "max_backups": 5,
    "exec_enabled": False,
    "exec_whitelist": ["go test", "go build", "npm test", "make"],
    "exec_image": "ubuntu:22.04",
    "exec_timeout": 30,
    "exec_memory": "512m",
    "exec_cpus": 1,
    "exec_pids_limit": 256,
    "exec_user": "1000:1000",
    "sandbox_runtime": "docker",
    "search_enabled": True,
    "search_max_results": 10,
    "audit_enabled": True,
    "audit_log": "audit.log",
    "max_output_size": 1024 * 1024,
    "plugins_dir": None,
    "log_level": "warning",
    "log_file": None,
}

# Sectioned file keys -> config keys
_SECTION_KEYS = {
    "repository.root": "root",
    "repository.excluded_paths": "excluded_paths",
    "commands.open.enabled": "open_enabled",
    "commands.open.max_file_size": "max_file_size",
    "commands.write.enabled": "write_enabled",
    "commands.write.max_file_size": "max_write_size",
    "commands.write.allowed_extensions": "allowed_extensions",
    "commands.write.backup_before_write": "backup_before_write",
    "commands.write.max_backups": "max_backups",
    "commands.exec.enabled": "exec_enabled",
    "commands.exec.whitelist": "exec_whitelist",
    "commands.exec.container_image": "exec_image",
    "commands.exec.timeout_seconds": "exec_timeout",
    "commands.exec.memory_limit": "exec_memory",
    "commands.exec.cpu_limit": "exec_cpus",
    "commands.exec.pids_limit": "exec_pids_limit",
    "commands.exec.user": "exec_user",
    "commands.exec.runtime": "sandbox_runtime",
    "commands.search.enabled": "search_enabled",
    "commands.search.max_results": "search_max_results",
    "security.log_all_operations": "audit_enabled",
    "security.audit_log_path": "audit_log",
    "output.max_output_size": "max_output_size",
    "plugins.dir": "plugins_dir",
    "logging.level": "log_level",
    "logging.file": "log_file",
}

SANDBOX_RUNTIMES = ("docker", "podman")

# Config file search order (first found wins)
CONFIG_FILENAMES = [".llmrt.toml", "llmrt.toml"]
CONFIG_SEARCH_DIRS = [
    ".",                          # Current directory (project-level)
    str(Path.home()),             # Home directory (user-level)
]


@dataclass(frozen=True)
class RuntimeConfig:
    """Resolved, immutable configuration for one invocation."""
    root: str
    excluded_paths: list[str] = field(default_factory=list)
    open_enabled: bool = True
    max_file_size: int = DEFAULTS["max_file_size"]
    write_enabled: bool = True
    max_write_size: int = DEFAULTS["max_write_size"]
    allowed_extensions: list[str] = field(default_factory=list)
    backup_before_write: bool = True
    max_backups: int = 5
    exec_enabled: bool = False
    exec_whitelist: list[str] = field(default_factory=list)
    exec_image: str = DEFAULTS["exec_image"]
    exec_timeout: float = 30
    exec_memory: str = "512m"
    exec_cpus: float = 1
    exec_pids_limit: int = 256
    exec_user: str = "1000:1000"
    sandbox_runtime: str = "docker"
    search_enabled: bool = True
    search_max_results: int = 10
    audit_enabled: bool = True
    audit_log: str = "audit.log"
    max_output_size: int = DEFAULTS["max_output_size"]
    plugins_dir: str | None = None
    log_level: str = "warning"
    log_file: str | None = None

    def enabled(self, kind: str) -> bool:
        """Whether a command kind (open, write, exec, search) is switched on."""
        return bool(getattr(self, f"{kind}_enabled", False))


def _flatten(table: dict, prefix: str = "") -> dict:
    """Flatten nested TOML tables into dotted keys, normalizing - to _."""
    flat = {}
    for key, value in table.items():
        name = f"{prefix}{key.replace('-', '_')}"
        if isinstance(value, dict):
            flat.update(_flatten(value, name + "."))
        else:
            flat[name] = value
    return flat


def find_config_file() -> str | None:
    """Find the first config file in the search path."""
    for directory in CONFIG_SEARCH_DIRS:
        for filename in CONFIG_FILENAMES:
            path = os.path.join(directory, filename)
            if os.path.isfile(path):
                return path
    return None


def load_config(config_path: str = None, search: bool = True) -> dict:
    """Load configuration from file.

    Args:
        config_path: Explicit path to config file. Must exist if given.
        search: Look in the default locations when no path is given.

    Returns:
        Dict of configuration values. Missing keys use DEFAULTS.

    Raises:
        ConfigError: explicit file missing, unreadable or not valid TOML.
    """
    config = {k: (list(v) if isinstance(v, list) else v) for k, v in DEFAULTS.items()}

    if config_path:
        if not os.path.isfile(config_path):
            raise ConfigError(f"Config file not found: {config_path}")
        path = config_path
    elif search:
        path = find_config_file()
    else:
        path = None
    if not path:
        return config

    try:
        with open(path, "rb") as f:
            file_config = tomllib.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e

    for key, value in _flatten(file_config).items():
        target = _SECTION_KEYS.get(key, key)
        if target in config:
            config[target] = value
        else:
            logger.warning("Unknown config key ignored: %s (%s)", key, path)

    config["_config_file"] = path
    logger.debug("Loaded config from %s", path)
    return config


def merge_cli_args(config: dict, args) -> dict:
    """Merge CLI arguments over config file values.

    CLI args that are None (not given) don't override config.
    Explicitly set CLI args always win.
    """
    result = dict(config)

    # Map argparse attribute names to config keys
    mappings = {
        "root": "root",
        "exclude": "excluded_paths",
        "max_size": "max_file_size",
        "max_write_size": "max_write_size",
        "allowed_extensions": "allowed_extensions",
        "backup": "backup_before_write",
        "enable_exec": "exec_enabled",
        "exec_whitelist": "exec_whitelist",
        "exec_timeout": "exec_timeout",
        "exec_memory": "exec_memory",
        "exec_cpu": "exec_cpus",
        "exec_image": "exec_image",
        "sandbox_runtime": "sandbox_runtime",
        "audit_log": "audit_log",
        "plugins_dir": "plugins_dir",
        "log_file": "log_file",
    }

    for arg_name, config_key in mappings.items():
        cli_value = getattr(args, arg_name, None)
        if cli_value is None:
            continue
        result[config_key] = cli_value

    if getattr(args, "verbose", False):
        result["log_level"] = "debug"

    return result


def build_runtime_config(config: dict) -> RuntimeConfig:
    """Freeze a merged config dict into a RuntimeConfig.

    Resolves the repository root and checks value ranges.

    Raises:
        ConfigError: root missing or not a directory, or an invalid value.
    """
    root = config.get("root") or "."
    try:
        resolved_root = os.path.realpath(os.path.expanduser(root), strict=True)
    except OSError as e:
        raise ConfigError(f"Cannot resolve repository root '{root}': {e}") from e
    if not os.path.isdir(resolved_root):
        raise ConfigError(f"Repository root is not a directory: {root}")

    for key in ("max_file_size", "max_write_size", "max_output_size", "search_max_results", "exec_pids_limit"):
        value = config.get(key)
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            raise ConfigError(f"{key} must be a positive integer, got {value!r}")
    if not isinstance(config.get("exec_timeout"), (int, float)) or config["exec_timeout"] <= 0:
        raise ConfigError(f"exec_timeout must be positive, got {config.get('exec_timeout')!r}")
    if config.get("sandbox_runtime") not in SANDBOX_RUNTIMES:
        raise ConfigError(f"sandbox_runtime must be one of {', '.join(SANDBOX_RUNTIMES)}, "
                          f"got {config.get('sandbox_runtime')!r}")
    for key in ("excluded_paths", "allowed_extensions", "exec_whitelist"):
        if not isinstance(config.get(key), list):
            raise ConfigError(f"{key} must be a list, got {config.get(key)!r}")

    known = {f.name for f in fields(RuntimeConfig)}
    values = {k: v for k, v in config.items() if k in known}
    values["root"] = resolved_root
    return RuntimeConfig(**values)


def generate_sample_config() -> str:
    """Generate a sample .llmrt.toml config file."""
    return '''# llmrt configuration
# Place this file at .llmrt.toml (project) or ~/.llmrt.toml (user)

[repository]
root = "."
excluded_paths = [".git", ".env", "*.key", "*.pem"]

[commands.open]
enabled = true
max_file_size = 1048576      # 1 MB

[commands.write]
enabled = true
max_file_size = 102400       # 100 KB
allowed_extensions = [".go", ".py", ".js", ".md", ".txt", ".json", ".yaml", ".yml", ".toml"]
backup_before_write = true
max_backups = 5

[commands.exec]
enabled = false
runtime = "docker"           # or "podman"
container_image = "ubuntu:22.04"
whitelist = ["go test", "go build", "npm test", "make"]
timeout_seconds = 30
memory_limit = "512m"
cpu_limit = 1
pids_limit = 256
user = "1000:1000"

[commands.search]
enabled = true
max_results = 10

[security]
log_all_operations = true
audit_log_path = "audit.log"

[output]
max_output_size = 1048576

[logging]
level = "warning"
# file = "llmrt.log"

# [plugins]
# dir = "./plugins"
'''
