"""Unit-test conftest: container daemon isolation safety net.

Provides an ``autouse`` fixture that prevents any unit test from
accidentally talking to a real Docker daemon. Code paths that build a
``DockerRuntime`` without a mocked client get a clear error instead of
pulling images or creating containers on the developer's machine.

Tests that intentionally need a daemon live in ``tests/integration/``
and are unaffected.
"""

from __future__ import annotations

import docker
import pytest


def _guarded_client(*args, **kwargs):
    raise RuntimeError(
        "Unit test attempted a real Docker connection. "
        "Mock the container runtime or use tests/integration/ for daemon tests."
    )


@pytest.fixture(autouse=True)
def _isolate_docker(monkeypatch: pytest.MonkeyPatch) -> None:
    """Replace docker client constructors with a guard that raises immediately."""
    monkeypatch.setattr(docker, "from_env", _guarded_client)
    monkeypatch.setattr(docker, "DockerClient", _guarded_client)


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Clear the cached settings around every test."""
    from podreplay.settings import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
