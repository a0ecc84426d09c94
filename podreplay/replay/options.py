"""Explicit configuration for a ``ReplayOrchestrator``."""

from typing import Any, Literal

from pydantic import BaseModel, Field

from podreplay.replay.isolation import IsolationConfig
from podreplay.settings import Settings


class ReplayOptions(BaseModel):
    """Policy knobs for replays, passed to the orchestrator at construction."""

    secret_handling: Literal["prompt", "placeholder", "insecure-mount"] = "prompt"
    allow_insecure_secrets: bool = False
    allow_critical_vulnerabilities: bool = False
    scan_fail_closed: bool = False
    isolation: IsolationConfig = Field(default_factory=IsolationConfig)

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "ReplayOptions":
        """Build options from application settings.

        Args:
            settings: Loaded application settings
            **overrides: Field overrides (e.g. from CLI flags); ``None`` values are ignored
        """
        isolation = IsolationConfig(
            enable_network_isolation=settings.network_isolation,
            cpu_limit=settings.cpu_limit,
            memory_limit=settings.memory_limit,
            read_only_root_filesystem=settings.read_only_root_filesystem,
            drop_capabilities=settings.drop_capabilities,
            no_new_privileges=settings.no_new_privileges,
            seccomp_profile=settings.seccomp_profile,
            apparmor_profile=settings.apparmor_profile,
            pids_limit=settings.pids_limit,
        )
        values: dict[str, Any] = {
            "secret_handling": settings.secret_handling,
            "allow_insecure_secrets": settings.allow_insecure_secrets,
            "allow_critical_vulnerabilities": settings.allow_critical_vulnerabilities,
            "scan_fail_closed": settings.scan_fail_closed,
            "isolation": isolation,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)
