"""podreplay exception hierarchy.

Every failure surfaced by the replay engine is a ``PodReplayError``
carrying a human-readable message, the underlying cause (if any) and a
correlation_id for tracing a single replay across log lines.

Usage:
    from podreplay.exceptions import PodReplayError, ReplayFailedError

    try:
        handle = await orchestrator.replay(manifest)
    except ReplayFailedError as e:
        logger.error("Replay failed: %s", e)  # renders the full cause chain
"""

import uuid
from typing import Any


class PodReplayError(Exception):
    """Base exception for all podreplay errors.

    ``str(error)`` renders the causal chain, e.g.
    ``"Failed to replay pod web: Image pull failed: manifest unknown"``.
    """

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException | None = None,
        correlation_id: str | None = None,
    ):
        self.message = message
        self.correlation_id = correlation_id or str(uuid.uuid4())
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause

    @property
    def cause(self) -> BaseException | None:
        return self.__cause__

    def __str__(self) -> str:
        cause = str(self.__cause__) if self.__cause__ is not None else ""
        if cause:
            return f"{self.message}: {cause}"
        return self.message


class InvalidSpecError(PodReplayError):
    """The pod manifest cannot be replayed (no container, no image, bad shape)."""

    pass


class SecretResolutionError(PodReplayError):
    """A secret reference could not be turned into a literal value."""

    def __init__(
        self,
        message: str,
        *,
        secret_name: str | None = None,
        key: str | None = None,
        **kwargs: Any,
    ):
        self.secret_name = secret_name
        self.key = key
        super().__init__(message, **kwargs)


class ImageBlockedError(PodReplayError):
    """The image security gate refused the image."""

    def __init__(self, message: str, *, image: str | None = None, **kwargs: Any):
        self.image = image
        super().__init__(message, **kwargs)


class RuntimeConnectionError(PodReplayError):
    """The container runtime daemon is unreachable."""

    pass


class RuntimeOperationError(PodReplayError):
    """A container runtime call failed or timed out."""

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        timeout: bool = False,
        **kwargs: Any,
    ):
        self.operation = operation
        self.timeout = timeout
        super().__init__(message, **kwargs)


class ReplayFailedError(PodReplayError):
    """A replay attempt ended in the Failed state.

    The originating error is the cause. ``failed_state`` is the state the
    attempt was in when it failed and ``transitions`` is the full state
    history of the attempt.
    """

    def __init__(
        self,
        message: str,
        *,
        pod_name: str | None = None,
        failed_state: str | None = None,
        transitions: list[str] | None = None,
        cleanup_errors: list[str] | None = None,
        **kwargs: Any,
    ):
        self.pod_name = pod_name
        self.failed_state = failed_state
        self.transitions = transitions or []
        self.cleanup_errors = cleanup_errors or []
        super().__init__(message, **kwargs)


class ConfigurationError(PodReplayError):
    """Errors from application configuration."""

    pass
