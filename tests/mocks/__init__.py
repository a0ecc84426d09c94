"""Test doubles for podreplay collaborators.

Provides in-memory stand-ins for the container runtime, the docker SDK
client, the vulnerability scanner and the operator prompt, so the replay
engine can be tested without a Docker daemon, trivy or a terminal.
"""

from tests.mocks.docker_client import FakeDockerClient
from tests.mocks.runtime import FakeContainerRuntime, FakePrompt, FakeScanner, scan_result

__all__ = ["FakeContainerRuntime", "FakeDockerClient", "FakePrompt", "FakeScanner", "scan_result"]
