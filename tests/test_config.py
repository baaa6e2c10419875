"""Tests for configuration loading, CLI merging and validation.

Run with: python -m pytest tests/test_config.py -v
"""

import argparse
import os

import pytest

from core.config import (
    DEFAULTS, RuntimeConfig, build_runtime_config, generate_sample_config, load_config, merge_cli_args,
)
from core.errors import ConfigError
from core.permission_system import PermissionSystem


def _args(**kwargs):
    return argparse.Namespace(**kwargs)


def test_defaults_when_no_file():
    config = load_config(search=False)
    assert config == DEFAULTS
    # returned lists are copies
    config["excluded_paths"].append("x")
    assert "x" not in DEFAULTS["excluded_paths"]


def test_sectioned_file(tmp_path):
    path = tmp_path / "llmrt.toml"
    path.write_text(
        '[repository]\n'
        'excluded_paths = [".git", "secrets"]\n'
        '[commands.exec]\n'
        'enabled = true\n'
        'whitelist = ["make"]\n'
        'timeout_seconds = 10\n'
        'memory_limit = "256m"\n'
        '[commands.write]\n'
        'max_file_size = 2048\n'
        '[security]\n'
        'audit_log_path = "logs/audit.jsonl"\n'
    )
    config = load_config(str(path))
    assert config["excluded_paths"] == [".git", "secrets"]
    assert config["exec_enabled"] is True
    assert config["exec_whitelist"] == ["make"]
    assert config["exec_timeout"] == 10
    assert config["exec_memory"] == "256m"
    assert config["max_write_size"] == 2048
    assert config["max_file_size"] == DEFAULTS["max_file_size"]
    assert config["audit_log"] == "logs/audit.jsonl"
    assert config["_config_file"] == str(path)


def test_flat_file_and_unknown_keys(tmp_path, caplog):
    path = tmp_path / "flat.toml"
    path.write_text('max_backups = 2\nmystery = 1\n')
    config = load_config(str(path))
    assert config["max_backups"] == 2
    assert "mystery" not in config
    assert "Unknown config key ignored: mystery" in caplog.text


def test_missing_explicit_file():
    with pytest.raises(ConfigError, match="not found"):
        load_config("/nonexistent/llmrt.toml")


def test_invalid_toml(tmp_path):
    path = tmp_path / "bad.toml"
    path.write_text("[repository\nroot = ")
    with pytest.raises(ConfigError, match="Invalid TOML"):
        load_config(str(path))


def test_project_file_found_by_search(tmp_path, monkeypatch):
    (tmp_path / ".llmrt.toml").write_text("[commands.search]\nmax_results = 3\n")
    monkeypatch.chdir(tmp_path)
    assert load_config()["search_max_results"] == 3


def test_cli_overrides_file():
    config = dict(DEFAULTS)
    merged = merge_cli_args(config, _args(root="/r", exec_timeout=5.0, enable_exec=True, backup=False,
                                          exec_whitelist=["make"], max_size=None, verbose=True))
    assert merged["root"] == "/r"
    assert merged["exec_timeout"] == 5.0
    assert merged["exec_enabled"] is True
    assert merged["backup_before_write"] is False
    assert merged["exec_whitelist"] == ["make"]
    assert merged["max_file_size"] == DEFAULTS["max_file_size"]
    assert merged["log_level"] == "debug"
    assert config["root"] == "."


def test_build_runtime_config_resolves_root(repo):
    config = dict(DEFAULTS, root=str(repo))
    runtime = build_runtime_config(config)
    assert isinstance(runtime, RuntimeConfig)
    assert runtime.root == os.path.realpath(repo)
    assert runtime.enabled("open")
    assert not runtime.enabled("exec")


def test_root_must_exist(tmp_path):
    with pytest.raises(ConfigError):
        build_runtime_config(dict(DEFAULTS, root=str(tmp_path / "missing")))


def test_root_must_be_directory(tmp_path):
    f = tmp_path / "file.txt"
    f.write_text("x")
    with pytest.raises(ConfigError, match="not a directory"):
        build_runtime_config(dict(DEFAULTS, root=str(f)))


@pytest.mark.parametrize("key,value", [
    ("max_file_size", 0),
    ("max_write_size", -1),
    ("max_file_size", "big"),
    ("exec_timeout", 0),
    ("sandbox_runtime", "lxc"),
    ("exec_whitelist", "make"),
])
def test_invalid_values(repo, key, value):
    with pytest.raises(ConfigError):
        build_runtime_config(dict(DEFAULTS, root=str(repo), **{key: value}))


def test_runtime_config_is_frozen(repo):
    runtime = build_runtime_config(dict(DEFAULTS, root=str(repo)))
    with pytest.raises(AttributeError):
        runtime.exec_enabled = True


def test_sample_config_round_trips(tmp_path, repo):
    path = tmp_path / ".llmrt.toml"
    path.write_text(generate_sample_config())
    config = load_config(str(path))
    for key, value in DEFAULTS.items():
        if key in ("root", "plugins_dir", "log_file"):
            continue
        assert config[key] == value, key


def test_permissions_follow_enable_flags(repo):
    runtime = build_runtime_config(dict(DEFAULTS, root=str(repo), exec_enabled=True, write_enabled=False))
    perms = PermissionSystem.from_config(runtime)
    assert perms.is_allowed("exec")
    assert not perms.is_allowed("write")
    perms.set_permission("exec", "deny")
    assert not perms.is_allowed("exec")
    with pytest.raises(ValueError):
        perms.set_permission("delete", "allow")
    with pytest.raises(ValueError):
        perms.set_permission("open", "ask")
