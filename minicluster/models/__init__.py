"""Data models for cluster configuration and state."""

from minicluster.models.cluster import ClusterConfig, ExtraOption, KubernetesConfig
from minicluster.models.node import Node

__all__ = [
    "Node",
    "ClusterConfig",
    "ExtraOption",
    "KubernetesConfig",
]
