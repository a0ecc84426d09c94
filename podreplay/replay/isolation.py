"""Container isolation policy.

``IsolationConfig`` declares how tightly a replayed container is boxed
in; ``IsolationPolicyBuilder.build`` merges it into a container creation
request together with defaults that no configuration can relax:

- privileged mode is always off
- every capability is dropped ("ALL" is always in cap_drop)
- a PID limit is always applied
- IPC namespace is private and the PID namespace is never shared
- no host devices are passed through

Network mode is only touched when network isolation is enabled; a caller
that opted out keeps whatever network mode it asked for.
"""

import re
import sys

from pydantic import BaseModel, ConfigDict, Field, field_validator

from podreplay.replay.runtime import ContainerRequest

_MEMORY_PATTERN = re.compile(r"^(\d+)([bkmg])?$")

_MEMORY_UNITS = {
    "b": 1,
    "k": 1024,
    "m": 1024 * 1024,
    "g": 1024 * 1024 * 1024,
}

# Restrictive SysV message queue limits
_SYSCTLS = {
    "kernel.msgmax": "8192",
    "kernel.msgmnb": "16384",
}

ISOLATION_LABELS = {
    "podreplay.isolated": "true",
    "podreplay.security.level": "high",
}


def parse_memory_limit(limit: str | None) -> int | None:
    """Parse a memory limit such as ``512m`` or ``1g`` into bytes (1024-based).

    Returns:
        Byte count, or None when no limit is given

    Raises:
        ValueError: If the string is not a number with an optional b/k/m/g suffix
    """
    if limit is None or limit == "":
        return None
    match = _MEMORY_PATTERN.match(limit.strip().lower())
    if not match:
        msg = f"Invalid memory limit '{limit}'. Expected e.g. 512m, 1g, 65536k"
        raise ValueError(msg)
    value, unit = match.groups()
    return int(value) * _MEMORY_UNITS[unit or "b"]


def cpu_to_shares(cpu_cores: float) -> int:
    """Convert CPU cores to the runtime's relative weight (1 core = 1024)."""
    return round(cpu_cores * 1024)


class IsolationConfig(BaseModel):
    """Declarative isolation settings for one replay."""

    model_config = ConfigDict(frozen=True)

    enable_network_isolation: bool = Field(
        default=True,
        description="Attach the container to an internal, non-routable network",
    )
    cpu_limit: float | None = Field(default=0.5, gt=0, le=256, description="CPU cores")
    memory_limit: str | None = Field(default="512m", description="Memory limit, e.g. 512m")
    read_only_root_filesystem: bool = Field(
        default=False,
        description="Read-only root filesystem (may break some applications)",
    )
    drop_capabilities: list[str] = Field(default_factory=lambda: ["ALL"])
    no_new_privileges: bool = True
    seccomp_profile: str | None = None
    apparmor_profile: str | None = None
    pids_limit: int = Field(default=100, ge=1, le=65536)

    @field_validator("memory_limit")
    @classmethod
    def _check_memory_limit(cls, value: str | None) -> str | None:
        parse_memory_limit(value)
        return value


def build_security_options(config: IsolationConfig, platform: str | None = None) -> list[str]:
    """Security options (``--security-opt``) for a config.

    AppArmor profiles are only applied on Linux hosts.
    """
    platform = platform or sys.platform
    options: list[str] = []
    if config.no_new_privileges:
        options.append("no-new-privileges:true")
    if config.seccomp_profile:
        options.append(f"seccomp={config.seccomp_profile}")
    if config.apparmor_profile and platform.startswith("linux"):
        options.append(f"apparmor={config.apparmor_profile}")
    return options


class IsolationPolicyBuilder:
    """Builds security-hardened container requests. Pure, no side effects."""

    def __init__(self, platform: str | None = None):
        self.platform = platform or sys.platform

    def build(self, base: ContainerRequest, config: IsolationConfig) -> ContainerRequest:
        """Merge ``config`` and the fixed security defaults into ``base``.

        Args:
            base: Container request derived from the pod spec
            config: Isolation settings for this replay

        Returns:
            A new ContainerRequest; ``base`` is not modified
        """
        host = base.host_config
        memory = parse_memory_limit(config.memory_limit)

        cap_drop = ["ALL"]
        cap_drop.extend(c for c in config.drop_capabilities if c.upper() != "ALL" and c not in cap_drop)

        hardened = host.model_copy(
            update={
                # Resource limits
                "cpu_shares": cpu_to_shares(config.cpu_limit) if config.cpu_limit else host.cpu_shares,
                "mem_limit": memory if memory is not None else host.mem_limit,
                "memswap_limit": memory if memory is not None else host.memswap_limit,
                "pids_limit": config.pids_limit,
                # Filesystem
                "read_only": config.read_only_root_filesystem,
                # Privileges
                "privileged": False,
                "cap_add": None,
                "cap_drop": cap_drop,
                "security_opt": build_security_options(config, self.platform),
                # Namespaces and devices
                "ipc_mode": "private",
                "pid_mode": None,
                "devices": [],
                "sysctls": dict(_SYSCTLS),
                # Default network; the orchestrator attaches the isolated one
                "network_mode": None if config.enable_network_isolation else host.network_mode,
            }
        )

        return base.model_copy(
            update={
                "host_config": hardened,
                "labels": {**base.labels, **ISOLATION_LABELS},
            }
        )


class IsolationSupport(BaseModel):
    supported: bool
    warnings: list[str] = Field(default_factory=list)


def validate_isolation_support(platform: str | None = None) -> IsolationSupport:
    """Report which isolation features the host platform can enforce."""
    platform = platform or sys.platform
    warnings: list[str] = []
    supported = True

    if platform == "darwin":
        warnings.append("AppArmor profiles not supported on macOS")
        warnings.append("Seccomp filtering may be limited on macOS")
    elif platform.startswith("win"):
        warnings.append("Limited isolation features on Windows")
        supported = False

    return IsolationSupport(supported=supported, warnings=warnings)


__all__ = [
    "ISOLATION_LABELS",
    "IsolationConfig",
    "IsolationPolicyBuilder",
    "IsolationSupport",
    "build_security_options",
    "cpu_to_shares",
    "parse_memory_limit",
    "validate_isolation_support",
]
