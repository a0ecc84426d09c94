"""Kubernetes collaborator: fetches pod manifests and (opt-in) secret values.

The kubernetes client is synchronous; its calls run in worker threads so
they never block other replays.
"""

import asyncio
import base64
import binascii
import logging
from typing import Any

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from podreplay.exceptions import ConfigurationError, PodReplayError, SecretResolutionError

logger = logging.getLogger(__name__)


def load_api_client(kubeconfig: str | None = None) -> client.ApiClient:
    """Build an API client from a kubeconfig file or in-cluster config.

    Args:
        kubeconfig: Path to a kubeconfig file (default: ~/.kube/config / KUBECONFIG)

    Raises:
        ConfigurationError: If no usable configuration is found
    """
    try:
        api_client = config.new_client_from_config(config_file=kubeconfig)
        logger.debug("Loaded kubeconfig %s", kubeconfig or "(default)")
        return api_client
    except config.ConfigException as kube_error:
        if kubeconfig:
            raise ConfigurationError(f"Cannot load kubeconfig {kubeconfig}", cause=kube_error) from kube_error
        try:
            configuration = client.Configuration()
            config.load_incluster_config(client_configuration=configuration)
            logger.debug("Loaded in-cluster Kubernetes configuration")
            return client.ApiClient(configuration)
        except config.ConfigException as e:
            raise ConfigurationError("Cannot load Kubernetes configuration", cause=e) from e


class KubernetesClient:
    """Thin async wrapper over ``CoreV1Api`` for the calls podreplay needs."""

    def __init__(self, api_client: client.ApiClient):
        self.api_client = api_client
        self.core_v1 = client.CoreV1Api(api_client)

    @classmethod
    def from_kubeconfig(cls, kubeconfig: str | None = None) -> "KubernetesClient":
        return cls(load_api_client(kubeconfig))

    async def fetch_pod_manifest(self, namespace: str, name: str) -> dict[str, Any]:
        """Read a pod and return it as a JSON-shaped (camelCase) dict.

        Raises:
            PodReplayError: If the pod does not exist or the API call fails
        """
        try:
            pod = await asyncio.to_thread(self.core_v1.read_namespaced_pod, name, namespace)
        except ApiException as e:
            if e.status == 404:
                raise PodReplayError(f"Pod not found: {name} in namespace {namespace}", cause=e) from e
            raise PodReplayError(f"Failed to get pod: {e.status} {e.reason}", cause=e) from e
        except Exception as e:
            raise PodReplayError("Failed to get pod", cause=e) from e

        manifest = self.api_client.sanitize_for_serialization(pod)
        manifest.setdefault("kind", "Pod")
        manifest.setdefault("apiVersion", "v1")
        return manifest


class KubernetesSecretFetcher:
    """Reads real secret values; used only by the insecure-mount strategy."""

    def __init__(self, kube: KubernetesClient):
        self.kube = kube

    async def fetch(self, namespace: str, name: str, key: str) -> str:
        try:
            secret = await asyncio.to_thread(self.kube.core_v1.read_namespaced_secret, name, namespace)
        except ApiException as e:
            raise SecretResolutionError(
                f"Cannot read secret '{name}' in namespace '{namespace}' ({e.status} {e.reason})",
                secret_name=name,
                key=key,
                cause=e,
            ) from e

        data = secret.data or {}
        if key not in data:
            raise SecretResolutionError(
                f"Secret '{name}' has no key '{key}'",
                secret_name=name,
                key=key,
            )
        try:
            return base64.b64decode(data[key]).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise SecretResolutionError(
                f"Secret '{name}' key '{key}' is not valid base64-encoded UTF-8",
                secret_name=name,
                key=key,
                cause=e,
            ) from e
