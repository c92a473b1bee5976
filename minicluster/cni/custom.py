"""A user-supplied CNI manifest."""

from pathlib import Path

from minicluster.cni.base import Manager, apply_manifest
from minicluster.command.runner import CommandRunner, FileAsset
from minicluster.constants import CNI_MANIFEST_PATH
from minicluster.exceptions import CNIError
from minicluster.models.cluster import ClusterConfig


class Custom(Manager):
    def __init__(self, cc: ClusterConfig, manifest: str | Path):
        """Initialize with a local manifest path.

        Raises:
            CNIError: If the manifest does not exist
        """
        super().__init__(cc)
        self.manifest = Path(manifest)
        if not self.manifest.is_file():
            raise CNIError(
                f"CNI manifest not found: {self.manifest}",
                "--cni accepts false, kindnet, bridge, flannel or the path of a manifest",
            )

    def apply(self, control_plane: CommandRunner, workers: list[CommandRunner]) -> None:
        dst = Path(CNI_MANIFEST_PATH)
        asset = FileAsset(
            target_dir=str(dst.parent),
            target_name=dst.name,
            permissions="0644",
            source=self.manifest,
        )
        apply_manifest(self.cc, control_plane, asset)

    def __str__(self) -> str:
        return f"Custom ({self.manifest})"
