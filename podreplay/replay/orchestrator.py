"""Replay orchestration.

Drives one pod replay through its states:

    IDLE -> SANITIZING -> GATING -> PULLING -> ISOLATING -> CREATING
         -> ATTACHING (network isolation only) -> STARTING -> RUNNING

Any failure, including cancellation, moves the attempt to FAILED. Failures
from PULLING onward pass through CLEANING_UP first, where every resource
recorded so far is removed in reverse order (container before network).
Cleanup problems are logged and never replace the original error.

Each created object is recorded in ``ReplayResources`` as soon as the
runtime returns it and before the next step runs. Every object also
carries podreplay labels from creation on, so ``sweep`` can find
leftovers from crashed processes too.
"""

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from podreplay.exceptions import ImageBlockedError, PodReplayError, ReplayFailedError
from podreplay.replay.gate import Decision, ImageSecurityGate
from podreplay.replay.isolation import IsolationPolicyBuilder
from podreplay.replay.labels import REPLAY_ID_LABEL, object_name, owner_labels, sweep_labels
from podreplay.replay.manifest import SanitizedPodSpec, pod_name
from podreplay.replay.network import NetworkIsolationManager
from podreplay.replay.options import ReplayOptions
from podreplay.replay.prompts import OperatorPrompt
from podreplay.replay.runtime import ContainerHandle, ContainerRequest, ContainerRuntime, NetworkHandle
from podreplay.replay.sanitizer import SpecSanitizer
from podreplay.replay.scanner import ImageScanner, VulnerabilityScanResult
from podreplay.replay.secrets import SecretFetcher, StrategyContext, get_secret_strategy

logger = logging.getLogger(__name__)


class ReplayState(StrEnum):
    """States of a single replay attempt."""

    IDLE = "idle"
    SANITIZING = "sanitizing"
    GATING = "gating"
    PULLING = "pulling"
    ISOLATING = "isolating"
    CREATING = "creating"
    ATTACHING = "attaching"
    STARTING = "starting"
    RUNNING = "running"
    CLEANING_UP = "cleaning_up"
    FAILED = "failed"


# States whose failure may leave runtime objects behind
_CLEANUP_STATES = frozenset(
    {
        ReplayState.PULLING,
        ReplayState.ISOLATING,
        ReplayState.CREATING,
        ReplayState.ATTACHING,
        ReplayState.STARTING,
    }
)

TransitionCallback = Callable[[ReplayState, str], None]


@dataclass
class ReplayResources:
    """Runtime objects created for one replay, in creation order."""

    replay_id: str
    pod_name: str
    network: NetworkHandle | None = None
    container: ContainerHandle | None = None
    container_started: bool = False

    def is_empty(self) -> bool:
        return self.network is None and self.container is None


@dataclass
class _Attempt:
    """State tracking for one ``replay()`` call."""

    pod_name: str
    replay_id: str
    callback: TransitionCallback | None = None
    state: ReplayState = ReplayState.IDLE
    transitions: list[ReplayState] = field(default_factory=lambda: [ReplayState.IDLE])

    def advance(self, state: ReplayState, detail: str = "") -> None:
        logger.debug("Replay %s (%s): %s -> %s", self.replay_id[:8], self.pod_name, self.state, state)
        self.state = state
        self.transitions.append(state)
        if self.callback is not None:
            try:
                self.callback(state, detail)
            except Exception as e:
                logger.debug("Transition callback failed: %s", e)


class ReplayHandle(BaseModel):
    """A successfully started replay."""

    replay_id: str
    pod_name: str
    namespace: str
    container_id: str
    container_name: str
    image: str
    network_id: str | None = None
    network_name: str | None = None
    scan: VulnerabilityScanResult
    decision: Decision
    state: ReplayState = ReplayState.RUNNING
    transitions: list[ReplayState] = Field(default_factory=list)

    @property
    def short_id(self) -> str:
        return self.container_id[:12]


class SweepReport(BaseModel):
    """What a sweep removed."""

    containers: list[str] = Field(default_factory=list)
    networks: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class ReplayOrchestrator:
    """Runs sandboxed pod replays and owns cleanup of what they create.

    Usage:
        orchestrator = ReplayOrchestrator(
            DockerRuntime.connect(),
            options=ReplayOptions(secret_handling="placeholder"),
            scanner=ImageScanner(),
            prompt=ConsolePrompt(),
        )
        handle = await orchestrator.replay(manifest)
        ...
        await orchestrator.stop(handle.container_id)

    A single orchestrator may run replays of different pods concurrently;
    each ``replay()`` call keeps its resources to itself.
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        *,
        options: ReplayOptions | None = None,
        scanner: ImageScanner | None = None,
        prompt: OperatorPrompt | None = None,
        secret_fetcher: SecretFetcher | None = None,
        isolation_builder: IsolationPolicyBuilder | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Raises:
            ConfigurationError: If the secret strategy cannot be built
                (unknown name, missing prompt/fetcher, insecure-mount without opt-in)
        """
        self.runtime = runtime
        self.options = options or ReplayOptions()
        self.prompt = prompt
        strategy = get_secret_strategy(
            self.options.secret_handling,
            StrategyContext(
                prompt=prompt,
                fetcher=secret_fetcher,
                allow_insecure=self.options.allow_insecure_secrets,
            ),
        )
        self.sanitizer = SpecSanitizer(strategy)
        self.gate = ImageSecurityGate(
            scanner or ImageScanner(),
            allow_critical_vulnerabilities=self.options.allow_critical_vulnerabilities,
            fail_closed=self.options.scan_fail_closed,
        )
        self.networks = NetworkIsolationManager(runtime)
        self.isolation_builder = isolation_builder or IsolationPolicyBuilder()

    async def replay(
        self,
        manifest: Any,
        *,
        on_transition: TransitionCallback | None = None,
    ) -> ReplayHandle:
        """Replay the first container of ``manifest`` in a sandbox.

        Args:
            manifest: Pod manifest (JSON-shaped dict); never mutated
            on_transition: Optional callback invoked with each new state

        Returns:
            ReplayHandle for the running container

        Raises:
            ReplayFailedError: On any failure; the originating error is the cause
            asyncio.CancelledError: Re-raised after cleanup if the replay is cancelled
        """
        attempt = _Attempt(pod_name=pod_name(manifest), replay_id=uuid.uuid4().hex, callback=on_transition)
        resources = ReplayResources(replay_id=attempt.replay_id, pod_name=attempt.pod_name)
        logger.info("Replaying pod %s (replay %s)", attempt.pod_name, attempt.replay_id[:8])

        try:
            return await self._run(manifest, attempt, resources)
        except asyncio.CancelledError:
            failed_state = attempt.state
            if failed_state in _CLEANUP_STATES:
                attempt.advance(ReplayState.CLEANING_UP, "Replay cancelled, removing replay resources")
                await self._teardown(resources)
            attempt.advance(ReplayState.FAILED, "cancelled")
            logger.warning("Replay of pod %s cancelled during %s", attempt.pod_name, failed_state)
            raise
        except Exception as e:
            failed_state = attempt.state
            cleanup_errors: list[str] = []
            if failed_state in _CLEANUP_STATES:
                attempt.advance(ReplayState.CLEANING_UP, "Removing replay resources")
                cleanup_errors = await self._teardown(resources)
            attempt.advance(ReplayState.FAILED, str(e))
            logger.error("Replay of pod %s failed during %s: %s", attempt.pod_name, failed_state, e)
            raise ReplayFailedError(
                f"Failed to replay pod {attempt.pod_name}",
                pod_name=attempt.pod_name,
                failed_state=failed_state.value,
                transitions=[s.value for s in attempt.transitions],
                cleanup_errors=cleanup_errors,
                cause=e,
            ) from e

    async def _run(self, manifest: Any, attempt: _Attempt, resources: ReplayResources) -> ReplayHandle:
        attempt.advance(ReplayState.SANITIZING, "Sanitizing pod spec")
        spec = await self.sanitizer.sanitize(manifest)
        image = spec.target.image

        attempt.advance(ReplayState.GATING, f"Scanning image {image}")
        scan, decision = await self.gate.evaluate(image)
        if decision == Decision.NEEDS_CONFIRMATION:
            decision = await self._confirm(scan)
        if decision == Decision.BLOCKED:
            raise ImageBlockedError(_blocked_message(scan), image=image)

        attempt.advance(ReplayState.PULLING, f"Pulling image {image}")
        await self.runtime.pull_image(image)

        isolation = self.options.isolation
        attempt.advance(ReplayState.ISOLATING, "Preparing isolation")
        if isolation.enable_network_isolation:
            resources.network = await self.networks.create_isolated_network(
                spec.pod_name, attempt.replay_id
            )
        request = self.isolation_builder.build(self._base_request(spec, attempt.replay_id), isolation)

        attempt.advance(ReplayState.CREATING, "Creating container")
        resources.container = await self.runtime.create_container(request)

        if resources.network is not None:
            attempt.advance(ReplayState.ATTACHING, f"Attaching to network {resources.network.name}")
            await self.runtime.connect_network(resources.network.id, resources.container.id)

        attempt.advance(ReplayState.STARTING, "Starting container")
        await self.runtime.start_container(resources.container.id)
        resources.container_started = True

        attempt.advance(ReplayState.RUNNING, resources.container.id[:12])
        logger.info(
            "Pod %s replay started as container %s",
            spec.pod_name,
            resources.container.id[:12],
        )
        return ReplayHandle(
            replay_id=attempt.replay_id,
            pod_name=spec.pod_name,
            namespace=spec.namespace,
            container_id=resources.container.id,
            container_name=resources.container.name,
            image=image,
            network_id=resources.network.id if resources.network else None,
            network_name=resources.network.name if resources.network else None,
            scan=scan,
            decision=decision,
            transitions=list(attempt.transitions),
        )

    async def _confirm(self, scan: VulnerabilityScanResult) -> Decision:
        """Ask the operator whether to run an image with critical vulnerabilities."""
        if self.prompt is None:
            logger.warning("No operator prompt available; declining image %s", scan.image)
            return Decision.BLOCKED
        counts = scan.vulnerabilities
        approved = await self.prompt.confirm(
            f"Image {scan.image} has {counts.critical} critical and {counts.high} high "
            "vulnerabilities. Replay it anyway?"
        )
        if approved:
            logger.warning("Operator approved replay of %s despite critical vulnerabilities", scan.image)
            return Decision.PROCEED
        return Decision.BLOCKED

    def _base_request(self, spec: SanitizedPodSpec, replay_id: str) -> ContainerRequest:
        target = spec.target
        return ContainerRequest(
            image=target.image,
            name=object_name("", spec.pod_name, replay_id),
            command=target.command,
            args=target.args,
            environment=[env.as_docker() for env in target.env],
            working_dir=target.working_dir,
            labels=owner_labels(spec.pod_name, replay_id),
        )

    async def _teardown(self, resources: ReplayResources) -> list[str]:
        """Best-effort removal of a failed replay's resources.

        Removes recorded objects in reverse creation order, then sweeps
        anything still labeled with this replay id (e.g. a container the
        runtime created after its create call timed out).

        Returns:
            Descriptions of cleanup steps that failed
        """
        errors: list[str] = []

        if resources.container is not None:
            container = resources.container
            try:
                if resources.container_started:
                    await self.runtime.stop_container(container.id)
                await self.runtime.remove_container(container.id)
                logger.info("Removed container %s", container.name)
            except Exception as e:
                logger.warning("Failed to remove container %s: %s", container.name, e)
                errors.append(f"container {container.name}: {e}")

        if resources.network is not None:
            try:
                await self.networks.remove_network(resources.network)
            except Exception as e:
                logger.warning("Failed to remove network %s: %s", resources.network.name, e)
                errors.append(f"network {resources.network.name}: {e}")

        leftovers = await self.sweep(replay_id=resources.replay_id)
        errors.extend(leftovers.errors)
        return errors

    async def stop(self, container_id: str) -> list[str]:
        """Stop and remove a replay container and its isolated network.

        Args:
            container_id: Container id (or unique prefix) or name

        Returns:
            Names of removed objects

        Raises:
            PodReplayError: If the id is empty or no podreplay container matches
        """
        container_id = container_id.strip()
        if not container_id:
            raise PodReplayError("Container id must not be empty")

        candidates = await self.runtime.list_containers(sweep_labels())
        matches = [c for c in candidates if c.id.startswith(container_id) or c.name == container_id]
        if not matches:
            raise PodReplayError(f"No podreplay container matches '{container_id}'")
        if len(matches) > 1:
            raise PodReplayError(f"Container id '{container_id}' is ambiguous")

        container = matches[0]
        await self.runtime.stop_container(container.id)
        await self.runtime.remove_container(container.id)
        removed = [container.name]
        logger.info("Stopped and removed container %s", container.name)

        replay_id = container.labels.get(REPLAY_ID_LABEL)
        if replay_id:
            removed.extend(await self.networks.remove_networks_by_tag(replay_id=replay_id))
        return removed

    async def sweep(self, pod_name: str | None = None, *, replay_id: str | None = None) -> SweepReport:
        """Remove every container and network podreplay created.

        Not limited to this process: anything carrying podreplay labels is
        removed, whatever state it is in. Never raises.

        Args:
            pod_name: Only sweep objects created for this pod
            replay_id: Only sweep objects created by this replay
        """
        report = SweepReport()
        labels = sweep_labels(pod_name, replay_id)

        try:
            containers = await self.runtime.list_containers(labels)
        except Exception as e:
            logger.warning("Failed to list replay containers: %s", e)
            report.errors.append(f"list containers: {e}")
            containers = []

        for container in containers:
            try:
                await self.runtime.remove_container(container.id)
                report.containers.append(container.name)
                logger.info("Swept container %s", container.name)
            except Exception as e:
                logger.warning("Failed to remove container %s: %s", container.name, e)
                report.errors.append(f"container {container.name}: {e}")

        try:
            networks = await self.runtime.list_networks(labels)
        except Exception as e:
            logger.warning("Failed to list replay networks: %s", e)
            report.errors.append(f"list networks: {e}")
            networks = []

        for network in networks:
            try:
                await self.networks.remove_network(network)
                report.networks.append(network.name)
            except Exception as e:
                logger.warning("Failed to remove network %s: %s", network.name, e)
                report.errors.append(f"network {network.name}: {e}")

        return report


def _blocked_message(scan: VulnerabilityScanResult) -> str:
    if scan.skipped:
        return (
            f"Image scan for {scan.image} was skipped ({scan.skip_reason}) "
            "and the fail-closed scan policy is set"
        )
    return (
        f"Replay of image {scan.image} declined: "
        f"{scan.vulnerabilities.critical} critical vulnerabilities found"
    )


__all__ = [
    "ReplayHandle",
    "ReplayOrchestrator",
    "ReplayResources",
    "ReplayState",
    "SweepReport",
    "TransitionCallback",
]
