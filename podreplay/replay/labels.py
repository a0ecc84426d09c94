"""Runtime labels identifying objects created by podreplay.

Labels are applied when an object is created, so a sweep can find every
network and container podreplay ever made, even after a crash lost the
in-memory record of them.
"""

import re

MANAGED_LABEL = "podreplay.managed"
POD_LABEL = "podreplay.pod"
REPLAY_ID_LABEL = "podreplay.replay-id"
ISOLATED_LABEL = "podreplay.isolated"


def managed_labels() -> dict[str, str]:
    return {MANAGED_LABEL: "true"}


def owner_labels(pod_name: str, replay_id: str) -> dict[str, str]:
    """Labels put on every object created for one replay."""
    return {
        MANAGED_LABEL: "true",
        POD_LABEL: pod_name,
        REPLAY_ID_LABEL: replay_id,
    }


def sweep_labels(pod_name: str | None = None, replay_id: str | None = None) -> dict[str, str]:
    """Label filter for a sweep, optionally narrowed to one pod or replay."""
    labels = managed_labels()
    if pod_name:
        labels[POD_LABEL] = pod_name
    if replay_id:
        labels[REPLAY_ID_LABEL] = replay_id
    return labels


def object_name(kind: str, pod_name: str, replay_id: str) -> str:
    """Runtime object name, e.g. ``podreplay-web-1a2b3c4d``.

    Pod names come from untrusted manifests, so anything outside the
    runtime's name alphabet is replaced.
    """
    safe = re.sub(r"[^a-zA-Z0-9_.-]", "-", pod_name).strip("-._") or "pod"
    prefix = "podreplay" if not kind else f"podreplay-{kind}"
    return f"{prefix}-{safe[:48]}-{replay_id[:8]}"
