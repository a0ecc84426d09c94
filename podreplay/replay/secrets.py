"""Secret handling strategies for pod sanitization.

A strategy turns a ``secretKeyRef`` found in a pod's environment into a
literal value. Strategies register themselves by name; adding a strategy
means adding a subclass decorated with ``@register_strategy``.

    prompt          ask the operator (masked input)
    placeholder     PLACEHOLDER_{secretName}_{key}, never a real value
    insecure-mount  fetch the real value from the cluster (double opt-in)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar, Protocol

from pydantic import BaseModel

from podreplay.exceptions import ConfigurationError, SecretResolutionError
from podreplay.replay.prompts import OperatorPrompt

logger = logging.getLogger(__name__)


class SecretReference(BaseModel):
    """A ``valueFrom.secretKeyRef`` pointing at one key of one secret."""

    namespace: str
    secret_name: str
    key: str


class SecretFetcher(Protocol):
    """Reads a secret value from the cluster."""

    async def fetch(self, namespace: str, name: str, key: str) -> str: ...


@dataclass
class StrategyContext:
    """Collaborators a strategy may need when it is built."""

    prompt: OperatorPrompt | None = None
    fetcher: SecretFetcher | None = None
    allow_insecure: bool = False


class SecretHandlingStrategy(ABC):
    """Materializes a secret reference as a literal environment value."""

    name: ClassVar[str]

    @classmethod
    @abstractmethod
    def from_context(cls, context: StrategyContext) -> "SecretHandlingStrategy":
        """Build the strategy from the available collaborators."""

    @abstractmethod
    async def resolve(self, ref: SecretReference) -> str:
        """Return the literal value to use in place of ``ref``."""


_STRATEGIES: dict[str, type[SecretHandlingStrategy]] = {}


def register_strategy(cls: type[SecretHandlingStrategy]) -> type[SecretHandlingStrategy]:
    """Class decorator adding a strategy to the registry under ``cls.name``."""
    _STRATEGIES[cls.name] = cls
    return cls


@register_strategy
class PromptStrategy(SecretHandlingStrategy):
    """Ask the operator for each secret value."""

    name = "prompt"

    def __init__(self, prompt: OperatorPrompt):
        self.prompt = prompt

    @classmethod
    def from_context(cls, context: StrategyContext) -> "PromptStrategy":
        if context.prompt is None:
            raise ConfigurationError("Secret handling 'prompt' requires an operator prompt")
        return cls(context.prompt)

    async def resolve(self, ref: SecretReference) -> str:
        value = await self.prompt.ask_secret(ref.secret_name, ref.key)
        if not value:
            logger.warning(
                "Empty value entered for secret '%s' key '%s'", ref.secret_name, ref.key
            )
        return value


@register_strategy
class PlaceholderStrategy(SecretHandlingStrategy):
    """Substitute a deterministic, non-secret placeholder string."""

    name = "placeholder"

    @classmethod
    def from_context(cls, context: StrategyContext) -> "PlaceholderStrategy":
        return cls()

    async def resolve(self, ref: SecretReference) -> str:
        return f"PLACEHOLDER_{ref.secret_name}_{ref.key}"


@register_strategy
class InsecureMountStrategy(SecretHandlingStrategy):
    """Fetch the real secret value from the cluster.

    Requires both ``secret_handling=insecure-mount`` and
    ``allow_insecure_secrets=true``; every fetched value is logged (by
    name, never by value) as an insecure mount.
    """

    name = "insecure-mount"

    def __init__(self, fetcher: SecretFetcher):
        self.fetcher = fetcher

    @classmethod
    def from_context(cls, context: StrategyContext) -> "InsecureMountStrategy":
        if not context.allow_insecure:
            raise ConfigurationError(
                "Secret handling 'insecure-mount' copies real cluster secrets into a local "
                "container. Set PODREPLAY_ALLOW_INSECURE_SECRETS=true to confirm."
            )
        if context.fetcher is None:
            raise ConfigurationError("Secret handling 'insecure-mount' requires a secret fetcher")
        return cls(context.fetcher)

    async def resolve(self, ref: SecretReference) -> str:
        logger.warning(
            "Insecurely mounting secret '%s' key '%s' from namespace '%s'",
            ref.secret_name,
            ref.key,
            ref.namespace,
        )
        try:
            return await self.fetcher.fetch(ref.namespace, ref.secret_name, ref.key)
        except SecretResolutionError:
            raise
        except Exception as e:
            raise SecretResolutionError(
                f"Failed to fetch secret '{ref.secret_name}' key '{ref.key}'",
                secret_name=ref.secret_name,
                key=ref.key,
                cause=e,
            ) from e


def available_strategies() -> list[str]:
    return sorted(_STRATEGIES)


def get_secret_strategy(name: str, context: StrategyContext | None = None) -> SecretHandlingStrategy:
    """Build a registered strategy by name.

    Args:
        name: Strategy name (prompt, placeholder, insecure-mount)
        context: Collaborators passed to the strategy

    Returns:
        SecretHandlingStrategy instance

    Raises:
        ConfigurationError: If the name is unknown or the strategy cannot be built
    """
    if name not in _STRATEGIES:
        available = ", ".join(available_strategies())
        raise ConfigurationError(f"Unknown secret handling strategy '{name}'. Available: {available}")
    return _STRATEGIES[name].from_context(context or StrategyContext())


__all__ = [
    "InsecureMountStrategy",
    "PlaceholderStrategy",
    "PromptStrategy",
    "SecretFetcher",
    "SecretHandlingStrategy",
    "SecretReference",
    "StrategyContext",
    "available_strategies",
    "get_secret_strategy",
    "register_strategy",
]
