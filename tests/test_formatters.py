"""Tests for write formatters and the plugin loader.

Run with: python -m pytest tests/test_formatters.py -v
"""

import pytest

from core.formatters import FormatterRegistry, format_json
from core.plugin_loader import load_plugins


def test_json_formatter_idempotent():
    once = format_json('{"b":1,"a":[true,null]}\n')
    assert once == '{\n  "b": 1,\n  "a": [\n    true,\n    null\n  ]\n}\n'
    assert format_json(once) == once


def test_registry_dispatches_by_extension():
    registry = FormatterRegistry()
    assert registry.format("/r/x.JSON", '{"a":1}') == '{\n  "a": 1\n}'
    assert registry.format("/r/x.txt", '{"a":1}') == '{"a":1}'


def test_failing_formatter_returns_raw():
    registry = FormatterRegistry(builtins=False)

    def boom(text):
        raise RuntimeError("nope")

    registry.register_formatter("md", boom)
    assert registry.format("README.md", "# hi") == "# hi"


def test_non_string_result_returns_raw():
    registry = FormatterRegistry(builtins=False)
    registry.register_formatter(".md", lambda text: None)
    assert registry.format("a.md", "raw") == "raw"


def test_duplicate_registration_rejected():
    registry = FormatterRegistry()
    with pytest.raises(ValueError):
        registry.register_formatter(".json", format_json)
    registry.register_formatter(".json", str.strip, replace=True)
    assert registry.get_formatter(".json") is str.strip


def test_list_formatters():
    registry = FormatterRegistry()
    assert registry.list_formatters() == [{"extension": ".json", "description": "Re-indent JSON with 2 spaces"}]


# ============================================================
# Plugins
# ============================================================

def test_load_plugins(tmp_path):
    plugins = tmp_path / "plugins"
    plugins.mkdir()
    (plugins / "trailing.py").write_text(
        "def strip_trailing(text):\n"
        "    return '\\n'.join(line.rstrip() for line in text.split('\\n'))\n"
        "\n"
        "def register_formatters(registry):\n"
        "    registry.register_formatter('.md', strip_trailing, 'Strip trailing spaces')\n"
    )
    (plugins / "broken.py").write_text("raise ImportError('missing dependency')\n")
    (plugins / "empty.py").write_text("X = 1\n")
    (plugins / "_private.py").write_text("raise SystemExit\n")
    (plugins / "notes.txt").write_text("ignored")

    registry = FormatterRegistry()
    results = {r["name"]: r for r in load_plugins(str(plugins), registry)}

    assert set(results) == {"broken", "empty", "trailing"}
    assert results["trailing"]["ok"]
    assert results["trailing"]["formatters"] == [".md"]
    assert not results["broken"]["ok"]
    assert "ImportError" in results["broken"]["error"]
    assert "register_formatters" in results["empty"]["error"]
    assert registry.format("doc.md", "a  \nb\t") == "a\nb"


def test_missing_plugins_dir(tmp_path):
    assert load_plugins(str(tmp_path / "nope"), FormatterRegistry()) == []


def test_plugin_formatter_used_by_write(tmp_path, repo, config_for, fake_sandbox):
    from core.session import Session
    from core.audit_log import MemoryAuditSink

    plugins = tmp_path / "plugins"
    plugins.mkdir()
    (plugins / "upper.py").write_text(
        "def register_formatters(registry):\n"
        "    registry.register_formatter('.txt', str.upper)\n"
    )
    config = config_for(repo, plugins_dir=str(plugins))
    with Session(config, audit=MemoryAuditSink(), sandbox=fake_sandbox) as session:
        session.process_text("<write shout.txt>hello</write>")
        assert [p["ok"] for p in session.plugin_results] == [True]
    assert (repo / "shout.txt").read_text() == "HELLO"
