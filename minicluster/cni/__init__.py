"""Pod network (CNI) selection and installation."""

from minicluster import driver
from minicluster.cni.base import Manager
from minicluster.cni.bridge import Bridge
from minicluster.cni.custom import Custom
from minicluster.cni.disabled import Disabled
from minicluster.cni.flannel import Flannel
from minicluster.cni.kindnet import KindNet
from minicluster.logging_config import get_logger
from minicluster.models.cluster import ClusterConfig

logger = get_logger(__name__)

__all__ = ["Bridge", "Custom", "Disabled", "Flannel", "KindNet", "Manager", "choose_default", "new"]


def new(cc: ClusterConfig) -> Manager:
    """Return the CNI manager for a cluster's configuration.

    Raises:
        CNIError: If ``cni`` names a custom manifest that does not exist
    """
    k8s = cc.kubernetes_config
    if k8s.network_plugin and k8s.network_plugin != "cni":
        logger.info(f"network plugin configured as {k8s.network_plugin!r}, returning disabled")
        return Disabled()

    logger.info(f"Creating CNI manager for {k8s.cni!r}")
    selector = k8s.cni
    if selector in ("", "auto"):
        return choose_default(cc)
    if selector == "false":
        return Disabled(cc)
    if selector in ("kindnet", "true"):
        return KindNet(cc)
    if selector == "bridge":
        return Bridge(cc)
    if selector == "flannel":
        return Flannel(cc)
    return Custom(cc, selector)


def choose_default(cc: ClusterConfig) -> Manager:
    """Pick a CNI when none was requested."""
    k8s = cc.kubernetes_config
    if k8s.enable_default_cni:
        logger.info("enable_default_cni is set, recommending bridge")
        return Bridge(cc)

    runtime = k8s.container_runtime
    if runtime != "docker":
        if driver.is_kic(cc.driver):
            logger.info(f"{cc.driver!r} driver + {runtime} runtime found, recommending kindnet")
            return KindNet(cc)
        logger.info(f"{cc.driver!r} driver + {runtime} runtime found, recommending bridge")
        return Bridge(cc)

    if len(cc.nodes) > 1:
        logger.info(f"{len(cc.nodes)} nodes found, recommending kindnet")
        return KindNet(cc)

    logger.info("CNI unnecessary in this configuration, recommending no CNI")
    return Disabled(cc)
