"""Unit tests for podreplay/replay/sanitizer.py.

Covers identity stripping, secret materialization and manifest
validation. Secrets are resolved with the placeholder strategy or a
scripted prompt; no cluster access.
"""

import copy

import pytest

from podreplay.exceptions import InvalidSpecError, SecretResolutionError
from podreplay.replay.sanitizer import MISSING_CONTAINER_MESSAGE, SpecSanitizer
from podreplay.replay.secrets import PlaceholderStrategy, PromptStrategy, SecretReference
from tests.mocks import FakePrompt


@pytest.fixture
def sanitizer() -> SpecSanitizer:
    return SpecSanitizer(PlaceholderStrategy())


def _env(spec, index=0):
    return spec.manifest["spec"]["containers"][index]["env"]


class TestIdentityStripping:
    async def test_removes_service_account_and_pull_secrets(self, sanitizer, web_pod):
        web_pod["spec"]["serviceAccount"] = "legacy-sa"
        spec = await sanitizer.sanitize(web_pod)

        pod_spec = spec.manifest["spec"]
        assert "serviceAccountName" not in pod_spec
        assert "serviceAccount" not in pod_spec
        assert "imagePullSecrets" not in pod_spec
        assert pod_spec["automountServiceAccountToken"] is False

    async def test_forces_automount_off_even_when_enabled(self, sanitizer, web_pod):
        web_pod["spec"]["automountServiceAccountToken"] = True
        spec = await sanitizer.sanitize(web_pod)
        assert spec.manifest["spec"]["automountServiceAccountToken"] is False

    async def test_input_manifest_not_mutated(self, sanitizer, web_pod):
        original = copy.deepcopy(web_pod)
        await sanitizer.sanitize(web_pod)
        assert web_pod == original

    async def test_pod_identity(self, sanitizer, web_pod):
        spec = await sanitizer.sanitize(web_pod)
        assert spec.pod_name == "web"
        assert spec.namespace == "shop"

    async def test_missing_metadata_defaults(self, sanitizer):
        spec = await sanitizer.sanitize({"spec": {"containers": [{"image": "busybox"}]}})
        assert spec.pod_name == "unknown"
        assert spec.namespace == "default"


class TestSecretMaterialization:
    async def test_placeholder_value(self, sanitizer, web_pod):
        spec = await sanitizer.sanitize(web_pod)
        assert {"name": "DB_PASS", "value": "PLACEHOLDER_db_pass"} in _env(spec)

    async def test_no_value_from_left_anywhere(self, sanitizer, web_pod):
        web_pod["spec"]["initContainers"] = [
            {
                "name": "migrate",
                "image": "migrate:1",
                "env": [{"name": "TOKEN", "valueFrom": {"secretKeyRef": {"name": "api", "key": "token"}}}],
            }
        ]
        spec = await sanitizer.sanitize(web_pod)

        for container in spec.manifest["spec"]["initContainers"] + spec.manifest["spec"]["containers"]:
            for entry in container["env"]:
                assert "valueFrom" not in entry
                assert isinstance(entry["value"], str)
        assert spec.manifest["spec"]["initContainers"][0]["env"] == [
            {"name": "TOKEN", "value": "PLACEHOLDER_api_token"}
        ]

    async def test_literal_values_kept(self, sanitizer, web_pod):
        spec = await sanitizer.sanitize(web_pod)
        assert {"name": "MODE", "value": "debug"} in _env(spec)

    async def test_non_string_and_missing_values_become_strings(self, sanitizer, web_pod):
        web_pod["spec"]["containers"][0]["env"] = [
            {"name": "PORT", "value": 8080},
            {"name": "EMPTY"},
        ]
        spec = await sanitizer.sanitize(web_pod)
        assert _env(spec) == [{"name": "PORT", "value": "8080"}, {"name": "EMPTY", "value": ""}]

    async def test_same_secret_resolved_once(self, web_pod):
        prompt = FakePrompt(secrets={("db", "pass"): "hunter2"})
        web_pod["spec"]["containers"][0]["env"].append(
            {"name": "DB_PASS_AGAIN", "valueFrom": {"secretKeyRef": {"name": "db", "key": "pass"}}}
        )
        spec = await SpecSanitizer(PromptStrategy(prompt)).sanitize(web_pod)

        assert prompt.secret_requests == [("db", "pass")]
        assert {"name": "DB_PASS_AGAIN", "value": "hunter2"} in _env(spec)

    async def test_field_ref_resolved_from_metadata(self, sanitizer, web_pod):
        web_pod["spec"]["containers"][0]["env"] = [
            {"name": "POD_NAME", "valueFrom": {"fieldRef": {"fieldPath": "metadata.name"}}},
            {"name": "POD_NS", "valueFrom": {"fieldRef": {"fieldPath": "metadata.namespace"}}},
        ]
        spec = await sanitizer.sanitize(web_pod)
        assert _env(spec) == [{"name": "POD_NAME", "value": "web"}, {"name": "POD_NS", "value": "shop"}]

    async def test_unsupported_value_from_dropped(self, sanitizer, web_pod):
        web_pod["spec"]["containers"][0]["env"] = [
            {"name": "CFG", "valueFrom": {"configMapKeyRef": {"name": "cfg", "key": "a"}}},
            {"name": "IP", "valueFrom": {"fieldRef": {"fieldPath": "status.podIP"}}},
        ]
        spec = await sanitizer.sanitize(web_pod)
        assert _env(spec) == []

    async def test_env_from_dropped(self, sanitizer, web_pod):
        web_pod["spec"]["containers"][0]["envFrom"] = [{"secretRef": {"name": "all-secrets"}}]
        spec = await sanitizer.sanitize(web_pod)
        assert "envFrom" not in spec.manifest["spec"]["containers"][0]

    async def test_malformed_env_entries_dropped(self, sanitizer, web_pod):
        web_pod["spec"]["containers"][0]["env"] = ["junk", {"value": "no-name"}, {"name": "OK", "value": "1"}]
        spec = await sanitizer.sanitize(web_pod)
        assert _env(spec) == [{"name": "OK", "value": "1"}]

    async def test_secret_ref_without_key_rejected(self, sanitizer, web_pod):
        web_pod["spec"]["containers"][0]["env"] = [
            {"name": "BAD", "valueFrom": {"secretKeyRef": {"name": "db"}}}
        ]
        with pytest.raises(InvalidSpecError, match="missing a name or key"):
            await sanitizer.sanitize(web_pod)

    async def test_strategy_failure_propagates(self, web_pod):
        class FailingStrategy(PlaceholderStrategy):
            async def resolve(self, ref: SecretReference) -> str:
                raise SecretResolutionError("no", secret_name=ref.secret_name, key=ref.key)

        with pytest.raises(SecretResolutionError):
            await SpecSanitizer(FailingStrategy()).sanitize(web_pod)


class TestReplayTarget:
    async def test_first_container_extracted(self, sanitizer, web_pod):
        spec = await sanitizer.sanitize(web_pod)
        target = spec.target

        assert target.name == "web"
        assert target.image == "nginx:latest"
        assert target.command == ["/docker-entrypoint.sh"]
        assert target.args == ["nginx", "-g", "daemon off;"]
        assert target.working_dir == "/srv"
        assert [e.as_docker() for e in target.env] == ["MODE=debug", "DB_PASS=PLACEHOLDER_db_pass"]

    async def test_only_first_container_targeted(self, sanitizer, web_pod):
        web_pod["spec"]["containers"].append({"name": "sidecar", "image": "envoy:1"})
        spec = await sanitizer.sanitize(web_pod)
        assert spec.target.image == "nginx:latest"
        assert len(spec.manifest["spec"]["containers"]) == 2


class TestValidation:
    @pytest.mark.parametrize(
        "manifest",
        [
            {"spec": {"containers": []}},
            {"spec": {}},
            {},
            {"spec": {"containers": [{"name": "app"}]}},
            {"spec": {"containers": [{"name": "app", "image": ""}]}},
            {"spec": {"containers": [{"name": "app", "image": 42}]}},
        ],
    )
    async def test_missing_container_or_image(self, sanitizer, manifest):
        with pytest.raises(InvalidSpecError, match=MISSING_CONTAINER_MESSAGE):
            await sanitizer.sanitize(manifest)

    async def test_non_object_rejected(self, sanitizer):
        with pytest.raises(InvalidSpecError):
            await sanitizer.sanitize(["not", "a", "pod"])

    async def test_wrong_kind_rejected(self, sanitizer, web_pod):
        web_pod["kind"] = "Deployment"
        with pytest.raises(InvalidSpecError, match="Deployment"):
            await sanitizer.sanitize(web_pod)
