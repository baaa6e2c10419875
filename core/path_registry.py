"""Absolute path resolution for container runtime binaries.

Resolves the docker/podman CLI once using shutil.which() and stores the
absolute path, so sandbox subprocess calls never consult PATH afterwards.
"""

import os
import shutil

from core.errors import SandboxUnavailableError


class PathRegistry:
    """Resolves and stores absolute paths for runtime binaries."""

    RUNTIME_BINARIES = {
        "docker": ["docker"],
        "podman": ["podman"],
    }

    def __init__(self):
        self._paths: dict[str, str] = {}

    def resolve(self, name: str) -> str:
        """Resolve one runtime binary and cache it.

        Raises:
            SandboxUnavailableError: the binary is not on PATH.
        """
        if name in self._paths:
            return self._paths[name]
        candidates = self.RUNTIME_BINARIES.get(name, [name])
        path = self._resolve_one(candidates)
        if not path:
            raise SandboxUnavailableError(
                f"Container runtime '{name}' not found. Ensure it is installed and on PATH."
            )
        self._paths[name] = path
        return path

    def _resolve_one(self, candidates: list[str]) -> str | None:
        """Try each candidate via shutil.which(). Return first absolute path."""
        for candidate in candidates:
            path = shutil.which(candidate)
            if path:
                return os.path.realpath(path)
        return None
