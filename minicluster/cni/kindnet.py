"""kindnetd, a simple overlay suited to container-backend nodes."""

from minicluster.cni.base import Manager, apply_manifest, manifest_asset
from minicluster.command.runner import CommandRunner
from minicluster.constants import OVERLAY_IMAGE
from minicluster.templating import render


class KindNet(Manager):
    image = OVERLAY_IMAGE

    def manifest(self) -> str:
        return render("kindnet.yaml.j2", image_name=self.image, pod_cidr=self.cidr())

    def apply(self, control_plane: CommandRunner, workers: list[CommandRunner]) -> None:
        apply_manifest(self.cc, control_plane, manifest_asset(self.manifest()))
