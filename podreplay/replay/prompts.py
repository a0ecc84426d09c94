"""Interactive operator prompts used during a replay.

Two prompts exist: masked secret entry (prompt secret strategy) and the
yes/no confirmation asked when an image has critical vulnerabilities.
Console input blocks, so it runs in a worker thread and only the replay
that asked is suspended.
"""

import asyncio
from typing import Protocol

from rich.console import Console
from rich.prompt import Confirm, Prompt

from podreplay.exceptions import SecretResolutionError


class OperatorPrompt(Protocol):
    """Collaborator that asks the operator for input."""

    async def ask_secret(self, secret_name: str, key: str) -> str: ...

    async def confirm(self, message: str) -> bool: ...


class ConsolePrompt:
    """Prompts on the terminal using rich."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    async def ask_secret(self, secret_name: str, key: str) -> str:
        return await asyncio.to_thread(
            Prompt.ask,
            f"Enter value for secret '{secret_name}' key '{key}'",
            password=True,
            console=self.console,
        )

    async def confirm(self, message: str) -> bool:
        return await asyncio.to_thread(
            Confirm.ask,
            message,
            default=False,
            console=self.console,
        )


class NonInteractivePrompt:
    """Prompt for unattended use: never supplies secrets, always declines."""

    async def ask_secret(self, secret_name: str, key: str) -> str:
        raise SecretResolutionError(
            f"Secret '{secret_name}' key '{key}' requires interactive input",
            secret_name=secret_name,
            key=key,
        )

    async def confirm(self, message: str) -> bool:
        return False
