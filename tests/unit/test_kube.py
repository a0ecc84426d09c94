"""Unit tests for podreplay/kube.py.

The Kubernetes API client is mocked; no cluster is contacted.
"""

import base64
from unittest.mock import MagicMock, patch

import pytest
from kubernetes import config
from kubernetes.client.rest import ApiException

from podreplay.exceptions import ConfigurationError, PodReplayError, SecretResolutionError
from podreplay.kube import KubernetesClient, KubernetesSecretFetcher, load_api_client


@pytest.fixture
def kube() -> KubernetesClient:
    api_client = MagicMock()
    client = KubernetesClient(api_client)
    client.core_v1 = MagicMock()
    return client


class TestLoadApiClient:
    def test_explicit_kubeconfig_failure(self):
        with patch("podreplay.kube.config.new_client_from_config", side_effect=config.ConfigException("bad")):
            with pytest.raises(ConfigurationError, match="/tmp/missing"):
                load_api_client("/tmp/missing")

    def test_falls_back_to_in_cluster(self):
        with (
            patch("podreplay.kube.config.new_client_from_config", side_effect=config.ConfigException("none")),
            patch("podreplay.kube.config.load_incluster_config") as mock_incluster,
        ):
            api_client = load_api_client()
        mock_incluster.assert_called_once()
        assert api_client is not None

    def test_no_configuration(self):
        with (
            patch("podreplay.kube.config.new_client_from_config", side_effect=config.ConfigException("none")),
            patch("podreplay.kube.config.load_incluster_config", side_effect=config.ConfigException("none")),
        ):
            with pytest.raises(ConfigurationError, match="Cannot load Kubernetes configuration"):
                load_api_client()


class TestFetchPodManifest:
    async def test_returns_json_shaped_manifest(self, kube):
        kube.api_client.sanitize_for_serialization.return_value = {
            "metadata": {"name": "web"},
            "spec": {"containers": [{"name": "web", "image": "nginx:latest"}]},
        }

        manifest = await kube.fetch_pod_manifest("shop", "web")

        kube.core_v1.read_namespaced_pod.assert_called_once_with("web", "shop")
        assert manifest["kind"] == "Pod"
        assert manifest["apiVersion"] == "v1"
        assert manifest["spec"]["containers"][0]["image"] == "nginx:latest"

    async def test_pod_not_found(self, kube):
        kube.core_v1.read_namespaced_pod.side_effect = ApiException(status=404, reason="Not Found")

        with pytest.raises(PodReplayError, match="Pod not found: web in namespace shop"):
            await kube.fetch_pod_manifest("shop", "web")

    async def test_api_error(self, kube):
        kube.core_v1.read_namespaced_pod.side_effect = ApiException(status=403, reason="Forbidden")

        with pytest.raises(PodReplayError, match="Failed to get pod: 403 Forbidden"):
            await kube.fetch_pod_manifest("shop", "web")


class TestSecretFetcher:
    async def test_decodes_value(self, kube):
        kube.core_v1.read_namespaced_secret.return_value = MagicMock(
            data={"pass": base64.b64encode(b"hunter2").decode()}
        )

        value = await KubernetesSecretFetcher(kube).fetch("shop", "db", "pass")

        kube.core_v1.read_namespaced_secret.assert_called_once_with("db", "shop")
        assert value == "hunter2"

    async def test_missing_key(self, kube):
        kube.core_v1.read_namespaced_secret.return_value = MagicMock(data={"user": "YQ=="})

        with pytest.raises(SecretResolutionError, match="has no key 'pass'"):
            await KubernetesSecretFetcher(kube).fetch("shop", "db", "pass")

    async def test_forbidden(self, kube):
        kube.core_v1.read_namespaced_secret.side_effect = ApiException(status=403, reason="Forbidden")

        with pytest.raises(SecretResolutionError) as exc_info:
            await KubernetesSecretFetcher(kube).fetch("shop", "db", "pass")
        assert exc_info.value.secret_name == "db"
        assert exc_info.value.key == "pass"

    async def test_bad_encoding(self, kube):
        kube.core_v1.read_namespaced_secret.return_value = MagicMock(data={"pass": "!!!not-base64"})

        with pytest.raises(SecretResolutionError, match="not valid base64"):
            await KubernetesSecretFetcher(kube).fetch("shop", "db", "pass")
