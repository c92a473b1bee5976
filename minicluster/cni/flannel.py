"""flannel VXLAN overlay."""

from minicluster.cni.base import Manager, apply_manifest, manifest_asset
from minicluster.command.runner import CommandRunner
from minicluster.constants import FLANNEL_IMAGE
from minicluster.templating import render


class Flannel(Manager):
    image = FLANNEL_IMAGE

    def manifest(self) -> str:
        return render("flannel.yaml.j2", image_name=self.image, pod_cidr=self.cidr())

    def apply(self, control_plane: CommandRunner, workers: list[CommandRunner]) -> None:
        apply_manifest(self.cc, control_plane, manifest_asset(self.manifest()))
