"""Isolated command execution for llmrt.

The executor talks to a narrow interface, Sandbox.run(request) -> outcome,
with one implementation per isolation technology. DockerSandbox and
PodmanSandbox drive the container CLI through subprocess; tests substitute
an in-process fake.

Every container is started with:
  - no network
  - the repository bind-mounted read-only at /workspace
  - a per-request scratch directory bind-mounted read-write at /tmp/workspace
  - a read-only root filesystem with small tmpfs mounts for /tmp and caches
  - memory, CPU and pids ceilings
  - an unprivileged uid:gid, all capabilities dropped, no-new-privileges

A request past its deadline is killed (container and client process group)
and reported with exit code 124 and timed_out=True.
"""

import logging
import os
import re
import signal
import subprocess
import time
import uuid
from dataclasses import dataclass

from core.errors import SandboxUnavailableError
from core.path_registry import PathRegistry
from core.tool_protocol import TIMEOUT_EXIT_CODE


logger = logging.getLogger(__name__)

# Maximum size of each captured stream (1 MB)
MAX_OUTPUT_SIZE = 1024 * 1024

CONTAINER_WORKDIR = "/workspace"
CONTAINER_SCRATCH = "/tmp/workspace"

# `docker run` exits 125 when the daemon itself failed to start the container;
# the CLI then prefixes stderr with its own name or a daemon error line
_RUNTIME_ERROR_EXIT = 125
_RUNTIME_ERROR_RE = re.compile(r"^(?:docker: |podman: |Error response from daemon|Error: )", re.MULTILINE)


@dataclass(frozen=True)
class SandboxRequest:
    """Everything needed for one isolated run. Built fresh for each exec."""
    command: str
    repo_dir: str
    scratch_dir: str
    image: str
    timeout: float
    memory: str = "512m"
    cpus: float = 1
    pids_limit: int = 256
    user: str = "1000:1000"
    network: str = "none"


@dataclass
class SandboxOutcome:
    stdout: str
    stderr: str
    exit_code: int
    timed_out: bool = False
    duration: float = 0.0


def truncate_output(output: str, max_size: int = MAX_OUTPUT_SIZE) -> str:
    """Truncate output to max_size characters."""
    if len(output) > max_size:
        return output[:max_size] + f"\n[...truncated at {max_size:,} chars]"
    return output


def _decode(data: bytes | None) -> str:
    return (data or b"").decode("utf-8", errors="replace")


class Sandbox:
    """Interface for isolated command execution."""

    name = "sandbox"

    def run(self, request: SandboxRequest) -> SandboxOutcome:
        """Run request.command in isolation and wait for it (bounded by request.timeout).

        Raises:
            SandboxUnavailableError: the isolation runtime cannot be used.
        """
        raise NotImplementedError


class ContainerSandbox(Sandbox):
    """Sandbox backed by a docker-compatible container CLI."""

    binary_name = "docker"

    def __init__(self, path_registry: PathRegistry = None, max_output_size: int = MAX_OUTPUT_SIZE,
                 kill_grace: float = 5.0, pull_timeout: float = 300.0):
        self.path_registry = path_registry or PathRegistry()
        self.max_output_size = max_output_size
        self.kill_grace = kill_grace
        self.pull_timeout = pull_timeout
        self._available = False
        self._images: set[str] = set()

    @property
    def name(self) -> str:
        return self.binary_name

    def _binary(self) -> str:
        return self.path_registry.resolve(self.binary_name)

    def check_available(self) -> None:
        """Make sure the CLI exists and its daemon/service answers.

        Raises:
            SandboxUnavailableError: binary missing or runtime not responding.
        """
        if self._available:
            return
        binary = self._binary()
        try:
            result = subprocess.run([binary, "version"], capture_output=True, timeout=10)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise SandboxUnavailableError(f"{self.binary_name} is not accessible: {e}") from e
        if result.returncode != 0:
            raise SandboxUnavailableError(
                f"{self.binary_name} is not running or not accessible: {_decode(result.stderr).strip()}"
            )
        self._available = True

    def ensure_image(self, image: str) -> None:
        """Pull the image if it is not present locally.

        Raises:
            SandboxUnavailableError: image cannot be found or pulled.
        """
        if image in self._images:
            return
        binary = self._binary()
        try:
            inspect = subprocess.run([binary, "image", "inspect", image], capture_output=True, timeout=30)
            if inspect.returncode != 0:
                logger.info("Pulling container image %s", image)
                pull = subprocess.run([binary, "pull", image], capture_output=True, timeout=self.pull_timeout)
                if pull.returncode != 0:
                    raise SandboxUnavailableError(
                        f"Container image '{image}' unavailable: {_decode(pull.stderr).strip()}"
                    )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise SandboxUnavailableError(f"Container image '{image}' unavailable: {e}") from e
        self._images.add(image)

    def build_command(self, request: SandboxRequest, container_name: str) -> list[str]:
        """Full argv for running the request."""
        return [
            self._binary(), "run",
            "--rm",
            f"--name={container_name}",
            f"--network={request.network}",
            f"--volume={request.repo_dir}:{CONTAINER_WORKDIR}:ro",
            f"--volume={request.scratch_dir}:{CONTAINER_SCRATCH}:rw",
            f"--workdir={CONTAINER_WORKDIR}",
            f"--user={request.user}",
            "--read-only",
            "--tmpfs=/tmp:rw,size=64m",
            "--tmpfs=/.cache:rw,size=64m",
            "--env=HOME=/tmp",
            f"--memory={request.memory}",
            f"--memory-swap={request.memory}",
            f"--cpus={request.cpus}",
            f"--pids-limit={request.pids_limit}",
            "--security-opt=no-new-privileges:true",
            "--cap-drop=ALL",
            request.image,
            "sh", "-c", request.command,
        ]

    def run(self, request: SandboxRequest) -> SandboxOutcome:
        self.check_available()
        self.ensure_image(request.image)

        container_name = f"llmrt-{uuid.uuid4().hex[:12]}"
        argv = self.build_command(request, container_name)
        logger.debug("Starting container %s: %s", container_name, request.command)

        start = time.monotonic()
        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise SandboxUnavailableError(f"Cannot start {self.binary_name}: {e}") from e

        try:
            out, err = proc.communicate(timeout=request.timeout)
        except subprocess.TimeoutExpired:
            logger.info("Container %s exceeded %ss, killing", container_name, request.timeout)
            out, err = self._kill(proc, container_name)
            return SandboxOutcome(
                stdout=truncate_output(_decode(out), self.max_output_size),
                stderr=truncate_output(_decode(err), self.max_output_size),
                exit_code=TIMEOUT_EXIT_CODE,
                timed_out=True,
                duration=time.monotonic() - start,
            )

        duration = time.monotonic() - start
        stderr = _decode(err)
        if proc.returncode == _RUNTIME_ERROR_EXIT and _RUNTIME_ERROR_RE.search(stderr):
            raise SandboxUnavailableError(f"{self.binary_name} failed to start container: {stderr.strip()}")

        return SandboxOutcome(
            stdout=truncate_output(_decode(out), self.max_output_size),
            stderr=truncate_output(stderr, self.max_output_size),
            exit_code=proc.returncode,
            timed_out=False,
            duration=duration,
        )

    def _kill(self, proc: subprocess.Popen, container_name: str) -> tuple[bytes, bytes]:
        """Kill the container and the client process group, then collect output."""
        try:
            subprocess.run([self._binary(), "kill", container_name], capture_output=True, timeout=10)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("Could not kill container %s: %s", container_name, e)
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass
        try:
            return proc.communicate(timeout=self.kill_grace)
        except subprocess.TimeoutExpired:
            proc.kill()
            return proc.communicate()


class DockerSandbox(ContainerSandbox):
    binary_name = "docker"


class PodmanSandbox(ContainerSandbox):
    binary_name = "podman"


_BACKENDS = {
    "docker": DockerSandbox,
    "podman": PodmanSandbox,
}


def create_sandbox(runtime: str, path_registry: PathRegistry = None,
                   max_output_size: int = MAX_OUTPUT_SIZE) -> Sandbox:
    """Build the sandbox backend named in configuration."""
    try:
        backend = _BACKENDS[runtime]
    except KeyError:
        raise ValueError(f"Unknown sandbox runtime: {runtime}") from None
    return backend(path_registry=path_registry, max_output_size=max_output_size)
