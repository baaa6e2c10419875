"""Tests for the container sandbox backends.

The container CLI is never invoked: subprocess.run/Popen are replaced with
recorders so argv, kill handling and error mapping can be checked.

Run with: python -m pytest tests/test_sandbox.py -v
"""

import os
import subprocess

import pytest

import core.sandbox as sandbox_mod
from core.errors import SandboxUnavailableError
from core.path_registry import PathRegistry
from core.sandbox import (
    DockerSandbox, PodmanSandbox, SandboxRequest, create_sandbox, truncate_output,
)


def registry_with(**paths):
    registry = PathRegistry()
    registry._paths.update(paths)
    return registry


def request(**overrides):
    values = dict(command="go test ./...", repo_dir="/srv/repo", scratch_dir="/tmp/scratch",
                  image="golang:1.22", timeout=5)
    values.update(overrides)
    return SandboxRequest(**values)


class Completed:
    def __init__(self, returncode=0, stdout=b"", stderr=b""):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class FakePopen:
    """Stands in for subprocess.Popen. hang=True makes the first communicate() time out."""

    instances = []

    def __init__(self, argv, returncode=0, out=b"", err=b"", hang=False, **kwargs):
        self.argv = argv
        self.kwargs = kwargs
        self.returncode = returncode
        self.pid = 4242
        self._out = out
        self._err = err
        self._hang = hang
        self.communicate_calls = 0
        FakePopen.instances.append(self)

    def communicate(self, timeout=None):
        self.communicate_calls += 1
        if self._hang and self.communicate_calls == 1:
            raise subprocess.TimeoutExpired(self.argv, timeout)
        return self._out, self._err

    def kill(self):
        pass


@pytest.fixture
def cli(monkeypatch):
    """Record subprocess.run calls; answer `version` and `image inspect` with success."""
    calls = []

    def fake_run(argv, **kwargs):
        calls.append(argv)
        return Completed(0)

    monkeypatch.setattr(sandbox_mod.subprocess, "run", fake_run)
    FakePopen.instances = []
    return calls


def use_popen(monkeypatch, **behaviour):
    def factory(argv, **kwargs):
        return FakePopen(argv, **behaviour, **kwargs)
    monkeypatch.setattr(sandbox_mod.subprocess, "Popen", factory)


# ============================================================
# Command line
# ============================================================

def test_build_command_isolation_flags():
    box = DockerSandbox(path_registry=registry_with(docker="/usr/bin/docker"))
    argv = box.build_command(request(memory="256m", cpus=2, pids_limit=64, user="1000:1000"), "llmrt-x")

    assert argv[:2] == ["/usr/bin/docker", "run"]
    assert "--rm" in argv
    assert "--network=none" in argv
    assert "--volume=/srv/repo:/workspace:ro" in argv
    assert "--volume=/tmp/scratch:/tmp/workspace:rw" in argv
    assert "--read-only" in argv
    assert "--memory=256m" in argv
    assert "--memory-swap=256m" in argv
    assert "--cpus=2" in argv
    assert "--pids-limit=64" in argv
    assert "--user=1000:1000" in argv
    assert "--cap-drop=ALL" in argv
    assert "--security-opt=no-new-privileges:true" in argv
    assert argv[-4:] == ["golang:1.22", "sh", "-c", "go test ./..."]


def test_podman_uses_its_binary():
    box = PodmanSandbox(path_registry=registry_with(podman="/usr/bin/podman"))
    assert box.build_command(request(), "n")[0] == "/usr/bin/podman"
    assert box.name == "podman"


def test_create_sandbox():
    assert isinstance(create_sandbox("docker"), DockerSandbox)
    assert isinstance(create_sandbox("podman"), PodmanSandbox)
    with pytest.raises(ValueError):
        create_sandbox("chroot")


# ============================================================
# Running
# ============================================================

def test_run_success(cli, monkeypatch):
    use_popen(monkeypatch, returncode=0, out=b"ok\n", err=b"")
    box = DockerSandbox(path_registry=registry_with(docker="/usr/bin/docker"))
    outcome = box.run(request())

    assert outcome.exit_code == 0
    assert outcome.stdout == "ok\n"
    assert not outcome.timed_out
    assert [c[1] for c in cli] == ["version", "image"]
    proc = FakePopen.instances[-1]
    assert proc.kwargs["start_new_session"] is True
    assert proc.kwargs["stdin"] == subprocess.DEVNULL


def test_run_nonzero_exit_is_reported(cli, monkeypatch):
    use_popen(monkeypatch, returncode=2, out=b"", err=b"FAIL")
    box = DockerSandbox(path_registry=registry_with(docker="/usr/bin/docker"))
    outcome = box.run(request())
    assert outcome.exit_code == 2
    assert outcome.stderr == "FAIL"


def test_run_timeout_kills_container(cli, monkeypatch):
    killed = []
    monkeypatch.setattr(sandbox_mod.os, "killpg", lambda pid, sig: killed.append(pid))
    use_popen(monkeypatch, returncode=-9, out=b"partial", hang=True)
    box = DockerSandbox(path_registry=registry_with(docker="/usr/bin/docker"))

    outcome = box.run(request(timeout=1))

    assert outcome.timed_out
    assert outcome.exit_code == 124
    assert outcome.stdout == "partial"
    assert killed == [4242]
    kill_calls = [c for c in cli if c[1] == "kill"]
    assert len(kill_calls) == 1
    container_name = kill_calls[0][2]
    assert f"--name={container_name}" in FakePopen.instances[-1].argv


def test_runtime_error_exit_is_unavailable(cli, monkeypatch):
    use_popen(monkeypatch, returncode=125, err=b"Error response from daemon: oops")
    box = DockerSandbox(path_registry=registry_with(docker="/usr/bin/docker"))
    with pytest.raises(SandboxUnavailableError):
        box.run(request())


def test_command_exiting_125_is_not_a_runtime_error(cli, monkeypatch):
    use_popen(monkeypatch, returncode=125, err=b"tool: bad flag\n")
    box = DockerSandbox(path_registry=registry_with(docker="/usr/bin/docker"))
    outcome = box.run(request())
    assert outcome.exit_code == 125
    assert outcome.stderr == "tool: bad flag\n"


def test_runtime_error_prefix_from_podman(cli, monkeypatch):
    use_popen(monkeypatch, returncode=125, err=b"Error: short-name resolution failed\n")
    box = PodmanSandbox(path_registry=registry_with(podman="/usr/bin/podman"))
    with pytest.raises(SandboxUnavailableError):
        box.run(request())


def test_daemon_not_running(monkeypatch):
    monkeypatch.setattr(sandbox_mod.subprocess, "run",
                        lambda argv, **kw: Completed(1, stderr=b"Cannot connect to the Docker daemon"))
    box = DockerSandbox(path_registry=registry_with(docker="/usr/bin/docker"))
    with pytest.raises(SandboxUnavailableError):
        box.run(request())


def test_missing_binary(monkeypatch):
    monkeypatch.setattr("shutil.which", lambda name: None)
    box = DockerSandbox(path_registry=PathRegistry())
    with pytest.raises(SandboxUnavailableError, match="not found"):
        box.run(request())


def test_image_pulled_once(monkeypatch):
    calls = []

    def fake_run(argv, **kwargs):
        calls.append(argv[1:3])
        if argv[1] == "image":
            return Completed(1)
        return Completed(0)

    monkeypatch.setattr(sandbox_mod.subprocess, "run", fake_run)
    use_popen(monkeypatch)
    box = DockerSandbox(path_registry=registry_with(docker="/usr/bin/docker"))
    box.run(request())
    box.run(request())
    assert calls.count(["pull", "golang:1.22"]) == 1
    assert calls.count(["version"]) == 1


def test_truncate_output():
    assert truncate_output("abc", 10) == "abc"
    out = truncate_output("x" * 20, 10)
    assert out.startswith("x" * 10)
    assert "truncated at 10 chars" in out


# ============================================================
# Path registry
# ============================================================

def test_path_registry_caches(monkeypatch, tmp_path):
    binary = tmp_path / "docker"
    binary.write_text("#!/bin/sh\n")
    lookups = []

    def which(name):
        lookups.append(name)
        return str(binary)

    monkeypatch.setattr("shutil.which", which)
    registry = PathRegistry()
    assert registry.resolve("docker") == os.path.realpath(binary)
    assert registry.resolve("docker") == os.path.realpath(binary)
    assert lookups == ["docker"]


@pytest.mark.container
def test_real_docker_runs_echo(tmp_path):
    box = DockerSandbox()
    try:
        box.check_available()
    except SandboxUnavailableError:
        pytest.skip("docker not available")
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    outcome = box.run(SandboxRequest(command="echo hello", repo_dir=str(tmp_path), scratch_dir=str(scratch),
                                     image="ubuntu:22.04", timeout=60))
    assert outcome.exit_code == 0
    assert outcome.stdout.strip() == "hello"
