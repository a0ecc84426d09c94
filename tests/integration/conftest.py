"""Integration test fixtures backed by a real container daemon.

Auto-detects a Docker or Podman socket and provides a ``DockerRuntime``
connected to it. Tests skip when no daemon is reachable.
"""

import asyncio
import os
import shutil
import subprocess
from collections.abc import AsyncGenerator

import pytest

from podreplay.exceptions import PodReplayError
from podreplay.replay.runtime import DockerRuntime


def _configure_container_runtime() -> None:
    """Auto-detect the container runtime socket.

    Detection order (first match wins):
      1. DOCKER_HOST already set
      2. /var/run/docker.sock exists
      3. Linux rootless Podman socket
      4. macOS Podman machine socket via ``podman machine inspect``
    """
    if os.environ.get("DOCKER_HOST"):
        return
    if os.path.exists("/var/run/docker.sock"):
        return

    linux_socket = f"/run/user/{os.getuid()}/podman/podman.sock"
    if os.path.exists(linux_socket):
        os.environ["DOCKER_HOST"] = f"unix://{linux_socket}"
        return

    if shutil.which("podman"):
        try:
            result = subprocess.run(
                ["podman", "machine", "inspect", "--format", "{{.ConnectionInfo.PodmanSocket.Path}}"],
                capture_output=True,
                text=True,
                timeout=5,
            )
            if result.returncode == 0:
                sock = result.stdout.strip()
                if sock and os.path.exists(sock):
                    os.environ["DOCKER_HOST"] = f"unix://{sock}"
        except (subprocess.TimeoutExpired, FileNotFoundError):
            pass


_configure_container_runtime()


@pytest.fixture
async def docker_runtime() -> AsyncGenerator[DockerRuntime, None]:
    """A runtime connected to the local daemon, or skip."""
    try:
        runtime = await asyncio.to_thread(DockerRuntime.connect, api_timeout=30, pull_timeout=300)
        await runtime.ping()
    except PodReplayError as e:
        pytest.skip(f"Container daemon not available: {e}")
    yield runtime
    runtime.client.close()
