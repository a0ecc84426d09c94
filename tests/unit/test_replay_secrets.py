"""Unit tests for podreplay/replay/secrets.py."""

from unittest.mock import AsyncMock

import pytest

from podreplay.exceptions import ConfigurationError, SecretResolutionError
from podreplay.replay.prompts import NonInteractivePrompt
from podreplay.replay.secrets import (
    InsecureMountStrategy,
    PlaceholderStrategy,
    PromptStrategy,
    SecretReference,
    StrategyContext,
    available_strategies,
    get_secret_strategy,
)
from tests.mocks import FakePrompt

REF = SecretReference(namespace="shop", secret_name="db", key="pass")


class TestRegistry:
    def test_available_strategies(self):
        assert available_strategies() == ["insecure-mount", "placeholder", "prompt"]

    def test_unknown_strategy(self):
        with pytest.raises(ConfigurationError, match="Unknown secret handling strategy 'vault'"):
            get_secret_strategy("vault")

    def test_placeholder_needs_nothing(self):
        assert isinstance(get_secret_strategy("placeholder"), PlaceholderStrategy)


class TestPlaceholderStrategy:
    async def test_format(self):
        assert await PlaceholderStrategy().resolve(REF) == "PLACEHOLDER_db_pass"


class TestPromptStrategy:
    def test_requires_prompt(self):
        with pytest.raises(ConfigurationError, match="operator prompt"):
            get_secret_strategy("prompt", StrategyContext())

    async def test_asks_operator(self):
        prompt = FakePrompt(secrets={("db", "pass"): "s3cret"})
        strategy = get_secret_strategy("prompt", StrategyContext(prompt=prompt))

        assert isinstance(strategy, PromptStrategy)
        assert await strategy.resolve(REF) == "s3cret"
        assert prompt.secret_requests == [("db", "pass")]

    async def test_empty_value_allowed(self):
        prompt = FakePrompt(secrets={("db", "pass"): ""})
        assert await PromptStrategy(prompt).resolve(REF) == ""

    async def test_non_interactive_prompt_fails(self):
        with pytest.raises(SecretResolutionError):
            await PromptStrategy(NonInteractivePrompt()).resolve(REF)


class TestInsecureMountStrategy:
    def test_requires_explicit_opt_in(self):
        fetcher = AsyncMock()
        with pytest.raises(ConfigurationError, match="PODREPLAY_ALLOW_INSECURE_SECRETS"):
            get_secret_strategy("insecure-mount", StrategyContext(fetcher=fetcher))

    def test_requires_fetcher(self):
        with pytest.raises(ConfigurationError, match="secret fetcher"):
            get_secret_strategy("insecure-mount", StrategyContext(allow_insecure=True))

    async def test_fetches_real_value(self):
        fetcher = AsyncMock()
        fetcher.fetch.return_value = "real-password"
        strategy = get_secret_strategy(
            "insecure-mount", StrategyContext(fetcher=fetcher, allow_insecure=True)
        )

        assert isinstance(strategy, InsecureMountStrategy)
        assert await strategy.resolve(REF) == "real-password"
        fetcher.fetch.assert_awaited_once_with("shop", "db", "pass")

    async def test_fetch_error_wrapped(self):
        fetcher = AsyncMock()
        fetcher.fetch.side_effect = OSError("connection reset")
        strategy = InsecureMountStrategy(fetcher)

        with pytest.raises(SecretResolutionError) as exc_info:
            await strategy.resolve(REF)
        assert exc_info.value.secret_name == "db"
        assert "connection reset" in str(exc_info.value)
