"""Container runtime managers."""

from minicluster.command.runner import CommandRunner
from minicluster.cruntime.base import ALL, KUBE_SYSTEM, PAUSED, RUNNING, ListOptions, Manager
from minicluster.cruntime.containerd import Containerd
from minicluster.cruntime.crio import CRIO
from minicluster.cruntime.docker import Docker
from minicluster.exceptions import UnsupportedRuntimeError

RUNTIME_TYPES = ("docker", "containerd", "crio")

__all__ = [
    "ALL",
    "CRIO",
    "Containerd",
    "Docker",
    "KUBE_SYSTEM",
    "ListOptions",
    "Manager",
    "PAUSED",
    "RUNNING",
    "RUNTIME_TYPES",
    "new",
]


def new(runtime_type: str, runner: CommandRunner, socket: str = "") -> Manager:
    """Return the runtime manager for a runtime name.

    Args:
        runtime_type: docker, containerd, crio (or its alias cri-o)
        runner: Runner bound to the host the runtime lives on
        socket: Optional control socket override

    Raises:
        UnsupportedRuntimeError: If the name is not a known runtime
    """
    name = (runtime_type or "").lower()
    if name == "docker":
        return Docker(runner, socket)
    if name == "containerd":
        return Containerd(runner, socket)
    if name in ("crio", "cri-o"):
        return CRIO(runner, socket)
    raise UnsupportedRuntimeError(
        f"Unknown container runtime '{runtime_type}'",
        f"Supported runtimes: {', '.join(RUNTIME_TYPES)}",
    )
