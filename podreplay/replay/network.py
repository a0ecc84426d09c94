"""Per-replay isolated networks.

Each replay with network isolation gets its own internal bridge network:
no route to the host's external network, no IP masquerading and no
inter-container communication on the bridge.
"""

import logging

from podreplay.replay.labels import ISOLATED_LABEL, object_name, owner_labels, sweep_labels
from podreplay.replay.runtime import ContainerRuntime, NetworkHandle

logger = logging.getLogger(__name__)

ISOLATED_NETWORK_OPTIONS = {
    "com.docker.network.bridge.enable_icc": "false",
    "com.docker.network.bridge.enable_ip_masquerade": "false",
}


class NetworkIsolationManager:
    """Creates and removes isolated networks through a ``ContainerRuntime``."""

    def __init__(self, runtime: ContainerRuntime):
        self.runtime = runtime

    async def create_isolated_network(self, pod_name: str, replay_id: str) -> NetworkHandle:
        """Create an internal network labeled with its owning pod.

        Raises:
            RuntimeOperationError: If the runtime cannot create the network
        """
        labels = {**owner_labels(pod_name, replay_id), ISOLATED_LABEL: "true"}
        network = await self.runtime.create_network(
            object_name("isolated", pod_name, replay_id),
            internal=True,
            options=dict(ISOLATED_NETWORK_OPTIONS),
            labels=labels,
        )
        logger.info("Created isolated network %s for pod %s", network.name, pod_name)
        return network

    async def remove_network(self, network: NetworkHandle) -> None:
        """Remove one network. Raises on runtime failure."""
        await self.runtime.remove_network(network.id)
        logger.info("Removed isolated network %s", network.name)

    async def remove_networks_by_tag(
        self,
        pod_name: str | None = None,
        *,
        replay_id: str | None = None,
    ) -> list[str]:
        """Remove every podreplay network, optionally narrowed to a pod or replay.

        Idempotent: networks that are already gone or cannot be removed
        are logged and skipped.

        Returns:
            Names of the networks that were removed
        """
        try:
            networks = await self.runtime.list_networks(sweep_labels(pod_name, replay_id))
        except Exception as e:
            logger.warning("Failed to list isolated networks: %s", e)
            return []

        removed: list[str] = []
        for network in networks:
            try:
                await self.remove_network(network)
                removed.append(network.name)
            except Exception as e:
                logger.warning("Failed to remove network %s: %s", network.name, e)
        return removed
