"""Plain bridge networking through a netconf file on every node."""

from minicluster.cni.base import Manager, apply_net_conf
from minicluster.command.runner import CommandRunner, MemoryAsset
from minicluster.constants import DEFAULT_CNI_CONFIG_PATH
from minicluster.templating import render

DEFAULT_ROUTE = "0.0.0.0/0"


class Bridge(Manager):
    def net_conf(self) -> str:
        return render("bridge.conf.j2", pod_cidr=self.cidr(), default_route=DEFAULT_ROUTE)

    def apply(self, control_plane: CommandRunner, workers: list[CommandRunner]) -> None:
        # no kubectl: this may run before the API server is healthy
        asset = MemoryAsset.for_target(self.net_conf(), DEFAULT_CNI_CONFIG_PATH, "0644")
        apply_net_conf([control_plane, *workers], asset)
