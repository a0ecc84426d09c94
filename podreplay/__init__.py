"""podreplay: replay Kubernetes pods locally in a sandbox."""

__version__ = "0.1.0"
