"""containerd, reached by the kubelet over CRI."""

from minicluster.cruntime.base import (
    ListOptions,
    Manager,
    kill_cri_containers,
    list_cri_containers,
    stop_cri_containers,
)
from minicluster.logging_config import get_logger

logger = get_logger(__name__)


class Containerd(Manager):
    runtime_type = "containerd"
    unit = "containerd"
    binary = "containerd"
    default_socket = "/run/containerd/containerd.sock"

    def name(self) -> str:
        return "containerd"

    def load_image(self, path: str) -> None:
        logger.info(f"Loading image: {path}")
        # images must land in the namespace the CRI plugin serves
        self.runner.run_cmd(["sudo", "ctr", "-n=k8s.io", "images", "import", path])

    def list_containers(self, opts: ListOptions) -> list[str]:
        return list_cri_containers(self.runner, opts)

    def stop_containers(self, ids: list[str]) -> None:
        stop_cri_containers(self.runner, ids)

    def kill_containers(self, ids: list[str]) -> None:
        kill_cri_containers(self.runner, ids)

    def kubelet_options(self) -> dict[str, str]:
        endpoint = f"unix://{self.socket_path()}"
        return {
            "container-runtime": "remote",
            "container-runtime-endpoint": endpoint,
            "image-service-endpoint": endpoint,
            "runtime-request-timeout": "15m",
        }
