"""Pod network managers and the helpers they share."""

from abc import ABC, abstractmethod
from posixpath import join

from minicluster.command.runner import CommandRunner, CopyableFile, MemoryAsset
from minicluster.constants import (
    CNI_MANIFEST_PATH,
    DEFAULT_POD_CIDR,
    GUEST_BINARIES_DIR,
    GUEST_KUBECONFIG,
)
from minicluster.exceptions import CNIError, CommandError
from minicluster.logging_config import get_logger
from minicluster.models.cluster import ClusterConfig

logger = get_logger(__name__)

APPLY_TIMEOUT = 30


class Manager(ABC):
    """A pod network overlay for one cluster."""

    def __init__(self, cc: ClusterConfig | None = None):
        self.cc = cc

    @abstractmethod
    def apply(self, control_plane: CommandRunner, workers: list[CommandRunner]) -> None:
        """Install the network on the cluster.

        Args:
            control_plane: Runner bound to the control-plane node
            workers: Runners bound to every other node

        Raises:
            CNIError: If the network cannot be installed
        """

    def cidr(self) -> str:
        """Return the pod CIDR this network serves."""
        if self.cc and self.cc.kubernetes_config.pod_cidr:
            return self.cc.kubernetes_config.pod_cidr
        return DEFAULT_POD_CIDR

    def __str__(self) -> str:
        return type(self).__name__


def manifest_asset(content: str | bytes) -> MemoryAsset:
    return MemoryAsset.for_target(content, CNI_MANIFEST_PATH, "0644")


def kubectl_path(cc: ClusterConfig) -> str:
    """Return the in-host kubectl matching the cluster's Kubernetes version."""
    return join(GUEST_BINARIES_DIR, cc.kubernetes_config.kubernetes_version, "kubectl")


def apply_manifest(cc: ClusterConfig, runner: CommandRunner, asset: CopyableFile) -> None:
    """Copy a manifest to the control plane and apply it with the node's kubectl.

    Raises:
        CNIError: If the copy or kubectl apply fails or exceeds its deadline
    """
    kubectl = kubectl_path(cc)
    logger.info(f"applying CNI manifest using {kubectl} ...")
    try:
        runner.copy(asset)
    except CommandError as e:
        raise CNIError(f"Failed to copy CNI manifest to {asset.target_path}", e.message)

    args = [
        "sudo",
        kubectl,
        "apply",
        f"--kubeconfig={GUEST_KUBECONFIG}",
        "-f",
        asset.target_path,
    ]
    try:
        runner.run_cmd(args, timeout=APPLY_TIMEOUT)
    except CommandError as e:
        raise CNIError(f"Failed to apply CNI manifest: {e.message}", e.output() or e.details)


def apply_net_conf(runners: list[CommandRunner], asset: CopyableFile) -> None:
    """Copy a CNI netconf file to every node.

    Raises:
        CNIError: If any copy fails
    """
    for runner in runners:
        try:
            runner.copy(asset)
        except CommandError as e:
            raise CNIError(f"Failed to copy CNI config to {asset.target_path}", e.message)
