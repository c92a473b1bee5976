"""Host command execution: local, SSH and container transports."""

from minicluster.command.container import ContainerRunner
from minicluster.command.local import LocalRunner
from minicluster.command.runner import (
    CommandRunner,
    CopyableFile,
    FileAsset,
    MemoryAsset,
    RunResult,
)
from minicluster.command.ssh import SSHRunner, SSHTarget

__all__ = [
    "CommandRunner",
    "ContainerRunner",
    "CopyableFile",
    "FileAsset",
    "LocalRunner",
    "MemoryAsset",
    "RunResult",
    "SSHRunner",
    "SSHTarget",
]
