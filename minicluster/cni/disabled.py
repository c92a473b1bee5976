"""No managed pod network."""

from minicluster import driver
from minicluster.cni.base import Manager
from minicluster.command.runner import CommandRunner
from minicluster.logging_config import get_logger

logger = get_logger(__name__)


class Disabled(Manager):
    """Leaves pod networking to the runtime or to an unmanaged plugin."""

    def apply(self, control_plane: CommandRunner, workers: list[CommandRunner]) -> None:
        if self.cc is None:
            return
        runtime = self.cc.kubernetes_config.container_runtime
        if driver.is_kic(self.cc.driver) and runtime != "docker":
            logger.warning(
                f"CNI is recommended for {self.cc.driver!r} driver and {runtime!r} runtime "
                "- expect networking issues"
            )
        if len(self.cc.nodes) > 1:
            logger.warning("CNI is recommended for multi-node clusters - expect networking issues")

    def cidr(self) -> str:
        return ""
