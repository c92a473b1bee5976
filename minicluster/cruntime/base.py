"""Capability contract shared by the container runtimes minicluster manages."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import yaml

from minicluster.command.runner import CommandRunner, MemoryAsset
from minicluster.constants import CRICTL_CONFIG_PATH
from minicluster.exceptions import CommandError, RuntimeUnavailableError
from minicluster.logging_config import get_logger

logger = get_logger(__name__)

ALL = "all"
RUNNING = "running"
PAUSED = "paused"

KUBE_SYSTEM = "kube-system"
NAMESPACE_LABEL = "io.kubernetes.pod.namespace"


@dataclass
class ListOptions:
    """Filter for container listings."""

    state: str = ALL
    name: str = ""
    namespaces: list[str] = field(default_factory=list)


class Manager(ABC):
    """A container runtime bound to one runner and one control socket."""

    # selection key used by cruntime.new
    runtime_type: str = ""
    unit: str = ""
    binary: str = ""
    default_socket: str = ""

    def __init__(self, runner: CommandRunner, socket: str = ""):
        self.runner = runner
        self.socket = socket

    def __str__(self) -> str:
        return self.name()

    @abstractmethod
    def name(self) -> str:
        """Return the human-readable runtime name."""

    def socket_path(self) -> str:
        return self.socket or self.default_socket

    def available(self) -> None:
        """Check that the runtime binary exists on the host.

        Raises:
            RuntimeUnavailableError: If the binary cannot be located
        """
        try:
            self.runner.run_shell(f"command -v {self.binary}")
        except CommandError as e:
            raise RuntimeUnavailableError(
                f"{self.name()} is not available on the host",
                f"'{self.binary}' was not found: {e.message}",
            )

    def active(self) -> bool:
        """Return whether the runtime's service unit reports active."""
        rr = self.runner.run_cmd(
            ["systemctl", "is-active", "--quiet", "service", self.unit], check=False
        )
        return rr.exit_code == 0

    def enable(self, disable_others: bool = True) -> None:
        """Make this the host's running container runtime.

        Args:
            disable_others: Stop every other active runtime first. False on
                bare hosts, which minicluster does not own.

        Raises:
            CommandError: If the CRI config, IP forwarding or restart fails
        """
        if disable_others:
            disable_siblings(self)
        populate_cri_config(self.runner, self.socket_path())
        enable_ip_forwarding(self.runner)
        self.runner.run_cmd(["sudo", "systemctl", "restart", self.unit])

    def disable(self) -> None:
        """Stop the runtime's service, leaving its configuration in place."""
        self.runner.run_cmd(["sudo", "systemctl", "stop", self.unit])

    @abstractmethod
    def load_image(self, path: str) -> None:
        """Load an image archive staged on the host into the image store."""

    @abstractmethod
    def list_containers(self, opts: ListOptions) -> list[str]:
        """Return the ids of containers matching ``opts``."""

    @abstractmethod
    def stop_containers(self, ids: list[str]) -> None:
        pass

    @abstractmethod
    def kill_containers(self, ids: list[str]) -> None:
        pass

    @abstractmethod
    def kubelet_options(self) -> dict[str, str]:
        """Return the kubelet flags needed to talk to this runtime."""

    def cgroup_driver(self) -> str:
        return "cgroupfs"

    def container_logs(self, container_id: str, lines: int = 0) -> str:
        """Return a shell command that prints the logs of one container."""
        tail = f" --tail {lines}" if lines else ""
        return f"sudo crictl logs{tail} {container_id}"

    def log_commands(self, lines: int = 0) -> dict[str, str]:
        """Return shell commands that print the runtime's own logs, keyed by title."""
        journal = f"sudo journalctl -u {self.unit}"
        if lines:
            journal += f" -n {lines}"
        return {self.name(): journal}


def disable_siblings(me: Manager) -> None:
    """Disable every other runtime that reports active, logging failures."""
    from minicluster.cruntime import RUNTIME_TYPES, new

    for runtime_type in RUNTIME_TYPES:
        if runtime_type == me.runtime_type:
            continue
        other = new(runtime_type, me.runner)
        if not other.active():
            continue
        logger.info(f"disabling {other.name()} so that {me.name()} is the only active runtime")
        try:
            other.disable()
        except CommandError as e:
            logger.warning(f"Failed to disable {other.name()}: {e.message}")


def populate_cri_config(runner: CommandRunner, socket: str) -> None:
    """Point crictl at the runtime's socket."""
    content = yaml.safe_dump({"runtime-endpoint": f"unix://{socket}"}, default_flow_style=False)
    runner.copy(MemoryAsset.for_target(content, CRICTL_CONFIG_PATH, "0644"))


def enable_ip_forwarding(runner: CommandRunner) -> None:
    """Enable IPv4 forwarding, loading br_netfilter when possible.

    Raises:
        CommandError: If forwarding cannot be enabled
    """
    rr = runner.run_cmd(["sudo", "modprobe", "br_netfilter"], check=False)
    if rr.exit_code != 0:
        logger.warning(f"br_netfilter could not be loaded: {rr.stderr.strip()}")
    runner.run_shell("sudo sh -c 'echo 1 > /proc/sys/net/ipv4/ip_forward'")


def list_cri_containers(runner: CommandRunner, opts: ListOptions) -> list[str]:
    """List container ids through crictl, one query per namespace."""
    base = ["sudo", "crictl", "ps", "--quiet"]
    if opts.state == ALL:
        base.append("-a")
    elif opts.state == RUNNING:
        base += ["--state", "Running"]
    elif opts.state == PAUSED:
        base += ["--state", "Paused"]
    if opts.name:
        base += ["--name", opts.name]

    queries = [base + ["--label", f"{NAMESPACE_LABEL}={ns}"] for ns in opts.namespaces] or [base]
    ids: list[str] = []
    for args in queries:
        rr = runner.run_cmd(args)
        for line in rr.stdout.splitlines():
            line = line.strip()
            if line and line not in ids:
                ids.append(line)
    return ids


def stop_cri_containers(runner: CommandRunner, ids: list[str]) -> None:
    if not ids:
        return
    logger.info(f"Stopping containers: {ids}")
    runner.run_cmd(["sudo", "crictl", "stop", *ids])


def kill_cri_containers(runner: CommandRunner, ids: list[str]) -> None:
    if not ids:
        return
    logger.info(f"Killing containers: {ids}")
    runner.run_cmd(["sudo", "crictl", "rm", *ids])
