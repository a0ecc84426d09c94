"""Pod spec sanitization.

Strips cluster-identity material from a pod manifest and resolves every
secret reference to a literal value before the pod is replayed locally.

Only the first declared container is replayed. Pods with sidecars or
multiple app containers are replayed as their first container alone;
this is a scope limit, not an oversight. Secret references are still
resolved for every container (and init container) so the sanitized
document as a whole carries no ``valueFrom`` field.
"""

import copy
import logging
from typing import Any

from podreplay.exceptions import InvalidSpecError
from podreplay.replay.manifest import (
    EnvVar,
    ReplayTarget,
    SanitizedPodSpec,
    as_dict,
    as_list,
    as_str_list,
    containers,
    init_containers,
    pod_name,
    pod_namespace,
    secret_key_ref,
)
from podreplay.replay.secrets import SecretHandlingStrategy, SecretReference

logger = logging.getLogger(__name__)

MISSING_CONTAINER_MESSAGE = "Pod specification is missing a container or container image"

# Pod-level fields carrying cluster identity or registry credentials
_IDENTITY_FIELDS = ("serviceAccountName", "serviceAccount", "imagePullSecrets")

# fieldRef paths that can be answered from the manifest itself
_FIELD_REF_PATHS = {
    "metadata.name": pod_name,
    "metadata.namespace": pod_namespace,
}


class SpecSanitizer:
    """Turns a pod manifest into a ``SanitizedPodSpec``.

    The input manifest is never mutated. Depending on the strategy,
    ``sanitize`` may block on operator input or fetch from the cluster.
    """

    def __init__(self, strategy: SecretHandlingStrategy):
        self.strategy = strategy

    async def sanitize(self, manifest: Any) -> SanitizedPodSpec:
        """Sanitize a pod manifest.

        Args:
            manifest: Pod manifest as a JSON-shaped dict

        Returns:
            SanitizedPodSpec with identity stripped and secrets materialized

        Raises:
            InvalidSpecError: If there is no container or the first container has no image
            SecretResolutionError: If the strategy cannot resolve a secret
        """
        _validate(manifest)
        name = pod_name(manifest)
        namespace = pod_namespace(manifest)
        logger.info("Sanitizing pod spec for %s/%s", namespace, name)

        document = copy.deepcopy(manifest)
        spec = document["spec"]
        for field in _IDENTITY_FIELDS:
            if spec.pop(field, None) is not None:
                logger.debug("Removed %s from pod %s", field, name)
        spec["automountServiceAccountToken"] = False

        resolved: dict[tuple[str, str], str] = {}
        for container in init_containers(document) + containers(document):
            await self._sanitize_container(container, document, namespace, resolved)

        first = containers(document)[0]
        target = ReplayTarget(
            name=first.get("name") if isinstance(first.get("name"), str) else "app",
            image=first["image"],
            command=as_str_list(first.get("command")),
            args=as_str_list(first.get("args")),
            env=[EnvVar(**entry) for entry in first.get("env", [])],
            working_dir=first.get("workingDir") if isinstance(first.get("workingDir"), str) else None,
        )
        return SanitizedPodSpec(pod_name=name, namespace=namespace, manifest=document, target=target)

    async def _sanitize_container(
        self,
        container: dict[str, Any],
        document: dict[str, Any],
        namespace: str,
        resolved: dict[tuple[str, str], str],
    ) -> None:
        container_name = container.get("name", "?")

        if container.pop("envFrom", None) is not None:
            logger.warning(
                "Dropped envFrom sources from container %s; bulk secret/configmap "
                "imports are not replayed",
                container_name,
            )

        env: list[dict[str, str]] = []
        for entry in as_list(container.get("env")):
            entry = as_dict(entry)
            var_name = entry.get("name")
            if not isinstance(var_name, str) or not var_name:
                logger.warning("Dropped malformed env entry in container %s", container_name)
                continue

            if "valueFrom" not in entry:
                value = entry.get("value")
                env.append({"name": var_name, "value": "" if value is None else str(value)})
                continue

            value = await self._resolve_value_from(entry, document, namespace, resolved)
            if value is None:
                logger.warning(
                    "Dropped env var %s in container %s: unsupported valueFrom source",
                    var_name,
                    container_name,
                )
                continue
            env.append({"name": var_name, "value": value})

        container["env"] = env

    async def _resolve_value_from(
        self,
        entry: dict[str, Any],
        document: dict[str, Any],
        namespace: str,
        resolved: dict[tuple[str, str], str],
    ) -> str | None:
        ref = secret_key_ref(entry)
        if ref is not None:
            secret_name, key = ref.get("name"), ref.get("key")
            if not isinstance(secret_name, str) or not secret_name or not isinstance(key, str) or not key:
                raise InvalidSpecError(
                    f"Secret reference for env var {entry['name']} is missing a name or key"
                )
            if (secret_name, key) not in resolved:
                resolved[(secret_name, key)] = await self.strategy.resolve(
                    SecretReference(namespace=namespace, secret_name=secret_name, key=key)
                )
            return resolved[(secret_name, key)]

        field_path = as_dict(as_dict(entry.get("valueFrom")).get("fieldRef")).get("fieldPath")
        if isinstance(field_path, str) and field_path in _FIELD_REF_PATHS:
            return _FIELD_REF_PATHS[field_path](document)
        return None


def _validate(manifest: Any) -> None:
    if not isinstance(manifest, dict):
        raise InvalidSpecError("Pod manifest must be a JSON object")

    kind = manifest.get("kind")
    if kind is not None and kind != "Pod":
        raise InvalidSpecError(f"Expected a Pod manifest, got kind '{kind}'")

    declared = containers(manifest)
    if not declared:
        raise InvalidSpecError(MISSING_CONTAINER_MESSAGE)
    image = declared[0].get("image")
    if not isinstance(image, str) or not image.strip():
        raise InvalidSpecError(MISSING_CONTAINER_MESSAGE)
