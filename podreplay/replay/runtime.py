"""Container runtime collaborator.

``ContainerRuntime`` is the narrow async interface the replay engine
needs from a container runtime; ``DockerRuntime`` implements it with the
docker SDK. Every blocking SDK call runs in a worker thread under its own
timeout, so a hung daemon surfaces as a ``RuntimeOperationError`` rather
than a stuck replay.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

import docker
from docker.errors import APIError, DockerException, NotFound
from pydantic import BaseModel, Field

from podreplay.exceptions import RuntimeConnectionError, RuntimeOperationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class HostConfig(BaseModel):
    """Host configuration of a container, named after docker SDK kwargs."""

    cpu_shares: int | None = None
    mem_limit: int | None = None
    memswap_limit: int | None = None
    read_only: bool | None = None
    security_opt: list[str] | None = None
    cap_add: list[str] | None = None
    cap_drop: list[str] | None = None
    privileged: bool | None = None
    ipc_mode: str | None = None
    pid_mode: str | None = None
    network_mode: str | None = None
    devices: list[str] | None = None
    pids_limit: int | None = None
    sysctls: dict[str, str] | None = None


class ContainerRequest(BaseModel):
    """Everything needed to create one container."""

    image: str
    name: str | None = None
    command: list[str] | None = Field(default=None, description="Entrypoint override")
    args: list[str] | None = Field(default=None, description="Arguments to the entrypoint")
    environment: list[str] = Field(default_factory=list, description="NAME=value entries")
    working_dir: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    host_config: HostConfig = Field(default_factory=HostConfig)

    def to_create_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``client.containers.create``."""
        kwargs: dict[str, Any] = {
            "image": self.image,
            "environment": list(self.environment),
            "labels": dict(self.labels),
            "detach": True,
        }
        if self.name:
            kwargs["name"] = self.name
        if self.command:
            kwargs["entrypoint"] = self.command
        if self.args:
            kwargs["command"] = self.args
        if self.working_dir:
            kwargs["working_dir"] = self.working_dir
        kwargs.update(self.host_config.model_dump(exclude_none=True))
        return kwargs


class NetworkHandle(BaseModel):
    id: str
    name: str
    labels: dict[str, str] = Field(default_factory=dict)


class ContainerHandle(BaseModel):
    id: str
    name: str
    image: str
    status: str = "created"
    labels: dict[str, str] = Field(default_factory=dict)

    @property
    def short_id(self) -> str:
        return self.id[:12]


class ContainerRuntime(Protocol):
    """Async container runtime operations used by the replay engine."""

    async def ping(self) -> None: ...

    async def pull_image(self, image: str) -> None: ...

    async def create_network(
        self,
        name: str,
        *,
        internal: bool,
        options: dict[str, str],
        labels: dict[str, str],
    ) -> NetworkHandle: ...

    async def remove_network(self, network_id: str) -> None: ...

    async def list_networks(self, labels: dict[str, str]) -> list[NetworkHandle]: ...

    async def create_container(self, request: ContainerRequest) -> ContainerHandle: ...

    async def start_container(self, container_id: str) -> None: ...

    async def stop_container(self, container_id: str) -> None: ...

    async def remove_container(self, container_id: str) -> None: ...

    async def connect_network(self, network_id: str, container_id: str) -> None: ...

    async def list_containers(self, labels: dict[str, str]) -> list[ContainerHandle]: ...


def label_filters(labels: dict[str, str]) -> dict[str, list[str]]:
    """Docker list filter matching every given label."""
    return {"label": [f"{key}={value}" for key, value in labels.items()]}


def _consume_result(call: asyncio.Future) -> None:
    # Mark any exception as retrieved
    if not call.cancelled():
        call.exception()


class DockerRuntime:
    """``ContainerRuntime`` backed by the docker SDK.

    The underlying ``DockerClient`` is shared by concurrent replays; each
    call runs in its own worker thread.

    Usage:
        runtime = DockerRuntime.connect()
        await runtime.ping()
    """

    STOP_TIMEOUT = 10  # seconds given to a container to exit before SIGKILL

    def __init__(
        self,
        client: docker.DockerClient,
        *,
        api_timeout: float = 60,
        pull_timeout: float = 600,
        settle_timeout: float = 30,
    ) -> None:
        self.client = client
        self.api_timeout = api_timeout
        self.pull_timeout = pull_timeout
        self.settle_timeout = settle_timeout

    @classmethod
    def connect(
        cls,
        base_url: str | None = None,
        *,
        api_timeout: float = 60,
        pull_timeout: float = 600,
    ) -> "DockerRuntime":
        """Connect to the docker daemon.

        Raises:
            RuntimeConnectionError: If the daemon is unreachable
        """
        try:
            if base_url:
                client = docker.DockerClient(base_url=base_url, timeout=int(pull_timeout))
            else:
                client = docker.from_env(timeout=int(pull_timeout))
        except DockerException as e:
            raise RuntimeConnectionError(
                "Failed to connect to Docker daemon. Is it running?", cause=e
            ) from e
        return cls(client, api_timeout=api_timeout, pull_timeout=pull_timeout)

    async def _call(
        self,
        operation: str,
        func: Callable[..., T],
        *args: Any,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> T:
        """Run a blocking SDK call in a thread under a bounded timeout.

        The worker thread cannot be interrupted. On timeout or cancellation
        the call waits up to ``settle_timeout`` for the thread to return
        before raising, so whatever it created is visible to cleanup.

        Raises:
            RuntimeOperationError: On timeout or any docker SDK error
        """
        timeout = timeout or self.api_timeout
        call = asyncio.ensure_future(asyncio.to_thread(func, *args, **kwargs))
        try:
            return await asyncio.wait_for(asyncio.shield(call), timeout=timeout)
        except asyncio.CancelledError:
            await self._settle(call, operation)
            raise
        except TimeoutError as e:
            await self._settle(call, operation)
            raise RuntimeOperationError(
                f"{operation} timed out after {timeout:g}s",
                operation=operation,
                timeout=True,
                cause=e,
            ) from e
        except DockerException as e:
            raise RuntimeOperationError(f"{operation} failed", operation=operation, cause=e) from e

    async def _settle(self, call: asyncio.Future, operation: str) -> None:
        """Wait for an abandoned SDK call to return, up to ``settle_timeout``."""
        done, _ = await asyncio.wait({call}, timeout=self.settle_timeout)
        if call in done:
            _consume_result(call)
            logger.debug("%s finished after its caller gave up", operation)
            return
        logger.warning(
            "%s still running %gs after its caller gave up; run 'podreplay sweep' later",
            operation,
            self.settle_timeout,
        )
        call.add_done_callback(_consume_result)

    async def ping(self) -> None:
        try:
            await self._call("Ping", self.client.ping)
        except RuntimeOperationError as e:
            raise RuntimeConnectionError(
                "Failed to connect to Docker daemon. Is it running?", cause=e
            ) from e

    async def pull_image(self, image: str) -> None:
        logger.info("Pulling image %s", image)
        await self._call(f"Pull of image {image}", self.client.images.pull, image, timeout=self.pull_timeout)

    async def create_network(
        self,
        name: str,
        *,
        internal: bool,
        options: dict[str, str],
        labels: dict[str, str],
    ) -> NetworkHandle:
        network = await self._call(
            f"Creation of network {name}",
            self.client.networks.create,
            name,
            driver="bridge",
            internal=internal,
            options=options,
            labels=labels,
        )
        return NetworkHandle(id=network.id, name=network.name, labels=labels)

    async def remove_network(self, network_id: str) -> None:
        def _remove() -> None:
            try:
                self.client.networks.get(network_id).remove()
            except NotFound:
                logger.debug("Network %s already removed", network_id[:12])

        await self._call(f"Removal of network {network_id[:12]}", _remove)

    async def list_networks(self, labels: dict[str, str]) -> list[NetworkHandle]:
        networks = await self._call(
            "Listing networks",
            self.client.networks.list,
            filters=label_filters(labels),
        )
        return [
            NetworkHandle(
                id=network.id,
                name=network.name,
                labels=(network.attrs or {}).get("Labels") or {},
            )
            for network in networks
        ]

    async def create_container(self, request: ContainerRequest) -> ContainerHandle:
        container = await self._call(
            f"Creation of container {request.name or request.image}",
            self.client.containers.create,
            **request.to_create_kwargs(),
        )
        return ContainerHandle(
            id=container.id,
            name=container.name,
            image=request.image,
            status=getattr(container, "status", "created"),
            labels=dict(request.labels),
        )

    async def start_container(self, container_id: str) -> None:
        def _start() -> None:
            self.client.containers.get(container_id).start()

        await self._call(f"Start of container {container_id[:12]}", _start)

    async def stop_container(self, container_id: str) -> None:
        def _stop() -> None:
            try:
                self.client.containers.get(container_id).stop(timeout=self.STOP_TIMEOUT)
            except NotFound:
                logger.debug("Container %s already removed", container_id[:12])

        await self._call(
            f"Stop of container {container_id[:12]}",
            _stop,
            timeout=self.api_timeout + self.STOP_TIMEOUT,
        )

    async def remove_container(self, container_id: str) -> None:
        def _remove() -> None:
            try:
                self.client.containers.get(container_id).remove(force=True)
            except NotFound:
                logger.debug("Container %s already removed", container_id[:12])
            except APIError as e:
                # 409: removal already in progress
                if e.status_code != 409:
                    raise

        await self._call(f"Removal of container {container_id[:12]}", _remove)

    async def connect_network(self, network_id: str, container_id: str) -> None:
        """Attach a container to ``network_id`` as its only network."""

        def _connect() -> None:
            container = self.client.containers.get(container_id)
            attached = ((container.attrs or {}).get("NetworkSettings") or {}).get("Networks") or {}
            for network_name in attached:
                self.client.networks.get(network_name).disconnect(container)
            self.client.networks.get(network_id).connect(container)

        await self._call(
            f"Connecting container {container_id[:12]} to network {network_id[:12]}",
            _connect,
        )

    async def list_containers(self, labels: dict[str, str]) -> list[ContainerHandle]:
        containers = await self._call(
            "Listing containers",
            self.client.containers.list,
            all=True,
            filters=label_filters(labels),
        )
        handles = []
        for container in containers:
            config = (container.attrs or {}).get("Config") or {}
            handles.append(
                ContainerHandle(
                    id=container.id,
                    name=container.name,
                    image=config.get("Image") or "",
                    status=container.status,
                    labels=container.labels or {},
                )
            )
        return handles


__all__ = [
    "ContainerHandle",
    "ContainerRequest",
    "ContainerRuntime",
    "DockerRuntime",
    "HostConfig",
    "NetworkHandle",
    "label_filters",
]
