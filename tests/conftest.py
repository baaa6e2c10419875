"""Test configuration: repository fixtures, config builder and sandbox fakes.

Exec tests never need a container runtime: FakeSandbox records requests and
returns canned outcomes, LocalProcessSandbox runs the command on the host
with a real deadline.
"""

import os
import subprocess
import sys
import time

import pytest

# Add parent to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.audit_log import MemoryAuditSink
from core.config import DEFAULTS, build_runtime_config
from core.sandbox import Sandbox, SandboxOutcome
from core.session import Session
from core.tool_protocol import TIMEOUT_EXIT_CODE


class FakeSandbox(Sandbox):
    """Records every request; answers with handler(request) or a stock success."""

    name = "fake"

    def __init__(self, handler=None):
        self.handler = handler
        self.requests = []

    def run(self, request):
        self.requests.append(request)
        if self.handler is not None:
            return self.handler(request)
        return SandboxOutcome(stdout=f"ran: {request.command}\n", stderr="", exit_code=0, duration=0.01)


def _text(data) -> str:
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data or ""


class LocalProcessSandbox(Sandbox):
    """Runs the command on the host under sh -c. No isolation; tests only."""

    name = "local"

    def run(self, request):
        start = time.monotonic()
        try:
            proc = subprocess.run(
                ["sh", "-c", request.command],
                cwd=request.repo_dir,
                capture_output=True,
                text=True,
                timeout=request.timeout,
            )
        except subprocess.TimeoutExpired as e:
            return SandboxOutcome(
                stdout=_text(e.stdout),
                stderr=_text(e.stderr),
                exit_code=TIMEOUT_EXIT_CODE,
                timed_out=True,
                duration=time.monotonic() - start,
            )
        return SandboxOutcome(proc.stdout, proc.stderr, proc.returncode, False, time.monotonic() - start)


def make_config(root, **overrides):
    """RuntimeConfig rooted at root, auditing off unless overridden."""
    config = {k: (list(v) if isinstance(v, list) else v) for k, v in DEFAULTS.items()}
    config["root"] = str(root)
    config["audit_enabled"] = False
    config.update(overrides)
    return build_runtime_config(config)


@pytest.fixture
def repo(tmp_path):
    root = tmp_path / "repo"
    root.mkdir()
    return root


@pytest.fixture
def config_for():
    return make_config


@pytest.fixture
def fake_sandbox():
    return FakeSandbox()


@pytest.fixture
def local_sandbox():
    return LocalProcessSandbox()


@pytest.fixture
def make_session(repo, fake_sandbox):
    """Factory: make_session(sandbox=..., **config_overrides) -> Session with a memory audit sink."""
    sessions = []

    def _make(sandbox=None, search_engine=None, **overrides):
        session = Session(
            make_config(repo, **overrides),
            audit=MemoryAuditSink(),
            sandbox=sandbox or fake_sandbox,
            search_engine=search_engine,
        )
        sessions.append(session)
        return session

    yield _make
    for session in sessions:
        session.close()
