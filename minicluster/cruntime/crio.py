"""CRI-O, reached by the kubelet over CRI."""

from minicluster.cruntime.base import (
    ListOptions,
    Manager,
    kill_cri_containers,
    list_cri_containers,
    stop_cri_containers,
)
from minicluster.logging_config import get_logger

logger = get_logger(__name__)


class CRIO(Manager):
    runtime_type = "crio"
    unit = "crio"
    binary = "crio"
    default_socket = "/var/run/crio/crio.sock"

    def name(self) -> str:
        return "CRI-O"

    def load_image(self, path: str) -> None:
        logger.info(f"Loading image: {path}")
        self.runner.run_cmd(["sudo", "podman", "load", "-i", path])

    def list_containers(self, opts: ListOptions) -> list[str]:
        return list_cri_containers(self.runner, opts)

    def stop_containers(self, ids: list[str]) -> None:
        stop_cri_containers(self.runner, ids)

    def kill_containers(self, ids: list[str]) -> None:
        kill_cri_containers(self.runner, ids)

    def kubelet_options(self) -> dict[str, str]:
        return {
            "container-runtime": "remote",
            "container-runtime-endpoint": self.socket_path(),
            "image-service-endpoint": self.socket_path(),
            "runtime-request-timeout": "15m",
        }
