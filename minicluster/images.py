"""Control-plane image names and loading of locally cached image archives."""

from pathlib import Path
from posixpath import join

from minicluster.command.runner import CommandRunner, FileAsset
from minicluster.constants import DEFAULT_IMAGE_REPOSITORY, GUEST_PERSISTENT_DIR
from minicluster.cruntime.base import Manager
from minicluster.exceptions import ClusterError
from minicluster.logging_config import get_logger
from minicluster.version import parse_kubernetes_version

logger = get_logger(__name__)

GUEST_IMAGES_DIR = join(GUEST_PERSISTENT_DIR, "images")

# minor version -> (pause, etcd, coredns)
_ADDON_TAGS = {
    11: ("3.1", "3.2.18", "1.1.3"),
    12: ("3.1", "3.2.24", "1.2.2"),
    13: ("3.1", "3.2.24", "1.2.6"),
    14: ("3.1", "3.3.10", "1.3.1"),
    15: ("3.1", "3.3.10", "1.3.1"),
    16: ("3.1", "3.3.15-0", "1.6.2"),
    17: ("3.1", "3.4.3-0", "1.6.5"),
    18: ("3.2", "3.4.3-0", "1.6.7"),
}


def kubeadm_images(repository: str, kubernetes_version: str) -> list[str]:
    """Return the images kubeadm pulls for a Kubernetes version."""
    repo = repository or DEFAULT_IMAGE_REPOSITORY
    v = parse_kubernetes_version(kubernetes_version)
    minor = min(max(v.minor, min(_ADDON_TAGS)), max(_ADDON_TAGS))
    pause, etcd, coredns = _ADDON_TAGS[minor]
    images = [
        f"{repo}/{component}:{v.tag}"
        for component in (
            "kube-apiserver",
            "kube-controller-manager",
            "kube-scheduler",
            "kube-proxy",
        )
    ]
    images += [f"{repo}/pause:{pause}", f"{repo}/etcd:{etcd}", f"{repo}/coredns:{coredns}"]
    return images


def cache_file_name(image: str) -> str:
    """Return the archive name an image is cached under."""
    return image.replace(":", "_").replace("/", "_")


def load_cached_images(
    runner: CommandRunner, runtime: Manager, images: list[str], cache_dir: Path
) -> int:
    """Copy cached image archives to the host and load them into the runtime.

    Images without a cached archive are skipped.

    Returns:
        Number of images loaded

    Raises:
        ClusterError: If a cached archive cannot be transferred or loaded
    """
    loaded = 0
    for image in images:
        src = Path(cache_dir) / cache_file_name(image)
        if not src.is_file():
            logger.debug(f"{image} is not cached at {src}")
            continue
        asset = FileAsset(
            target_dir=GUEST_IMAGES_DIR,
            target_name=src.name,
            permissions="0644",
            source=src,
        )
        try:
            runner.copy(asset)
            runtime.load_image(asset.target_path)
        except ClusterError as e:
            raise ClusterError(f"Loading cached image {image} failed", e.message)
        loaded += 1
    logger.info(f"loaded {loaded} cached images")
    return loaded
