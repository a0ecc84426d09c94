"""Tolerant accessors over untrusted pod manifests.

Pod manifests arrive as JSON-shaped dicts (camelCase keys, as returned by
the Kubernetes API). Any field may be absent or have the wrong type, so
every accessor here degrades to an empty value instead of raising.
"""

from typing import Any

from pydantic import BaseModel, Field

SECRET_KEY_REF = "secretKeyRef"


def as_dict(value: Any) -> dict[str, Any]:
    """Return ``value`` if it is a dict, otherwise an empty dict."""
    return value if isinstance(value, dict) else {}


def as_list(value: Any) -> list[Any]:
    """Return ``value`` if it is a list, otherwise an empty list."""
    return value if isinstance(value, list) else []


def as_str_list(value: Any) -> list[str] | None:
    """Coerce a command/args field to a list of strings (None if absent)."""
    if not isinstance(value, list):
        return None
    return [str(item) for item in value if item is not None]


def pod_name(manifest: Any) -> str:
    """Pod name from ``metadata.name`` (``"unknown"`` when missing)."""
    name = as_dict(as_dict(manifest).get("metadata")).get("name")
    return name if isinstance(name, str) and name else "unknown"


def pod_namespace(manifest: Any) -> str:
    """Pod namespace from ``metadata.namespace`` (``"default"`` when missing)."""
    namespace = as_dict(as_dict(manifest).get("metadata")).get("namespace")
    return namespace if isinstance(namespace, str) and namespace else "default"


def containers(manifest: Any) -> list[dict[str, Any]]:
    """Declared containers of the pod, skipping malformed entries."""
    spec = as_dict(as_dict(manifest).get("spec"))
    return [c for c in as_list(spec.get("containers")) if isinstance(c, dict)]


def init_containers(manifest: Any) -> list[dict[str, Any]]:
    spec = as_dict(as_dict(manifest).get("spec"))
    return [c for c in as_list(spec.get("initContainers")) if isinstance(c, dict)]


def secret_key_ref(env_entry: Any) -> dict[str, Any] | None:
    """The ``valueFrom.secretKeyRef`` block of an env entry, if any."""
    ref = as_dict(as_dict(as_dict(env_entry).get("valueFrom")).get(SECRET_KEY_REF))
    return ref or None


class EnvVar(BaseModel):
    """A fully materialized environment variable."""

    name: str
    value: str

    def as_docker(self) -> str:
        return f"{self.name}={self.value}"


class ReplayTarget(BaseModel):
    """The single container a replay executes (the first declared one)."""

    name: str = Field(default="app", description="Container name in the pod spec")
    image: str = Field(..., description="Image reference")
    command: list[str] | None = Field(default=None, description="Entrypoint override")
    args: list[str] | None = Field(default=None, description="Arguments to the entrypoint")
    env: list[EnvVar] = Field(default_factory=list)
    working_dir: str | None = None


class SanitizedPodSpec(BaseModel):
    """A credential-scrubbed deep copy of a pod manifest.

    ``manifest`` holds the sanitized document: service account cleared,
    token automount disabled and every env entry a literal ``value``.
    ``target`` is the first container, already extracted for replay.
    """

    pod_name: str
    namespace: str
    manifest: dict[str, Any]
    target: ReplayTarget
