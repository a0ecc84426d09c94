"""Application settings using pydantic-settings.

Loads configuration from ``PODREPLAY_``-prefixed environment variables
with .env file support. Only the CLI reads these settings; the replay
engine receives an explicit ``ReplayOptions`` built from them.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PODREPLAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "production", "testing"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Secret handling
    secret_handling: Literal["prompt", "placeholder", "insecure-mount"] = Field(
        default="prompt",
        description="How secret references in the pod spec are materialized",
    )
    allow_insecure_secrets: bool = Field(
        default=False,
        description="Second opt-in required before insecure-mount fetches real secret values",
    )

    # Image security gate
    allow_critical_vulnerabilities: bool = Field(
        default=False,
        description="Proceed without confirmation when the image has critical vulnerabilities",
    )
    scan_fail_closed: bool = Field(
        default=False,
        description="Block the replay when the vulnerability scan could not run",
    )
    scanner_binary: str = Field(default="trivy", description="Vulnerability scanner executable")
    scanner_timeout_seconds: int = Field(default=300, ge=10, le=3600)
    scanner_auto_install: bool = Field(
        default=True,
        description="Attempt a one-time install of the scanner when it is missing",
    )
    scanner_install_dir: str = Field(default="/usr/local/bin")

    # Container runtime
    docker_base_url: str | None = Field(
        default=None,
        description="Docker daemon URL (default: DOCKER_HOST / local socket)",
    )
    docker_api_timeout_seconds: int = Field(default=60, ge=5, le=600)
    image_pull_timeout_seconds: int = Field(default=600, ge=30, le=3600)

    # Kubernetes
    kubeconfig: str | None = Field(default=None, description="Path to kubeconfig file")

    # Isolation defaults
    network_isolation: bool = True
    cpu_limit: float | None = Field(default=0.5, gt=0, description="CPU cores")
    memory_limit: str | None = Field(default="512m", description="e.g. 512m, 1g")
    read_only_root_filesystem: bool = False
    drop_capabilities: list[str] = Field(default_factory=lambda: ["ALL"])
    no_new_privileges: bool = True
    seccomp_profile: str | None = None
    apparmor_profile: str | None = None
    pids_limit: int = Field(default=100, ge=1, le=65536)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are loaded once and reused.
    """
    return Settings()
