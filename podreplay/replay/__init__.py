"""Sandboxed pod replay engine.

Re-executes the first container of a Kubernetes pod locally in a
credential-scrubbed, resource-bounded and network-isolated container,
after an image vulnerability gate.
"""

from podreplay.replay.gate import Decision, ImageSecurityGate
from podreplay.replay.isolation import IsolationConfig, IsolationPolicyBuilder
from podreplay.replay.network import NetworkIsolationManager
from podreplay.replay.options import ReplayOptions
from podreplay.replay.orchestrator import (
    ReplayHandle,
    ReplayOrchestrator,
    ReplayResources,
    ReplayState,
    SweepReport,
)
from podreplay.replay.prompts import ConsolePrompt, NonInteractivePrompt, OperatorPrompt
from podreplay.replay.runtime import ContainerRequest, ContainerRuntime, DockerRuntime
from podreplay.replay.sanitizer import SpecSanitizer
from podreplay.replay.scanner import ImageScanner, VulnerabilityScanResult

__all__ = [
    # Sanitization
    "SpecSanitizer",
    # Gate
    "Decision",
    "ImageScanner",
    "ImageSecurityGate",
    "VulnerabilityScanResult",
    # Isolation
    "IsolationConfig",
    "IsolationPolicyBuilder",
    "NetworkIsolationManager",
    # Runtime
    "ContainerRequest",
    "ContainerRuntime",
    "DockerRuntime",
    # Prompts
    "ConsolePrompt",
    "NonInteractivePrompt",
    "OperatorPrompt",
    # Orchestration
    "ReplayHandle",
    "ReplayOptions",
    "ReplayOrchestrator",
    "ReplayResources",
    "ReplayState",
    "SweepReport",
]
