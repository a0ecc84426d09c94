"""Shared test fixtures for podreplay.

Provides pod manifests, in-memory collaborators and replay options used
across unit and integration tests.
"""

import copy
from typing import Any

import pytest

from podreplay.replay.isolation import IsolationConfig
from podreplay.replay.options import ReplayOptions
from podreplay.settings import Settings
from tests.mocks import FakeContainerRuntime, FakePrompt, FakeScanner

# =============================================================================
# MANIFESTS
# =============================================================================

WEB_POD: dict[str, Any] = {
    "apiVersion": "v1",
    "kind": "Pod",
    "metadata": {"name": "web", "namespace": "shop"},
    "spec": {
        "serviceAccountName": "web-sa",
        "imagePullSecrets": [{"name": "registry-creds"}],
        "containers": [
            {
                "name": "web",
                "image": "nginx:latest",
                "command": ["/docker-entrypoint.sh"],
                "args": ["nginx", "-g", "daemon off;"],
                "workingDir": "/srv",
                "env": [
                    {"name": "MODE", "value": "debug"},
                    {
                        "name": "DB_PASS",
                        "valueFrom": {"secretKeyRef": {"name": "db", "key": "pass"}},
                    },
                ],
            }
        ],
    },
}


@pytest.fixture
def web_pod() -> dict[str, Any]:
    """A single-container pod with one literal and one secret-backed env var."""
    return copy.deepcopy(WEB_POD)


# =============================================================================
# SETTINGS AND OPTIONS
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings with safe defaults, independent of the environment."""
    return Settings(
        _env_file=None,
        environment="testing",
        secret_handling="placeholder",
        scanner_auto_install=False,
    )


@pytest.fixture
def options() -> ReplayOptions:
    """Placeholder secrets, default isolation."""
    return ReplayOptions(secret_handling="placeholder", isolation=IsolationConfig())


# =============================================================================
# COLLABORATORS
# =============================================================================


@pytest.fixture
def runtime() -> FakeContainerRuntime:
    return FakeContainerRuntime()


@pytest.fixture
def scanner() -> FakeScanner:
    """Scanner reporting a clean image."""
    return FakeScanner()


@pytest.fixture
def prompt() -> FakePrompt:
    return FakePrompt()
