"""Local Kubernetes cluster lifecycle orchestration."""

__version__ = "0.1.0"
