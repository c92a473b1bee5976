"""Built-in driver definitions and their host health checks."""

import shutil
import subprocess
import sys

from minicluster import driver
from minicluster.logging_config import get_logger
from minicluster.models.cluster import ClusterConfig
from minicluster.models.node import Node
from minicluster.registry.registry import DriverDef, Priority, Registry, State

logger = get_logger(__name__)

DOCS = "https://minikube.sigs.k8s.io/docs/reference/drivers"

PROBE_TIMEOUT = 8


def _probe(
    binary: str,
    args: list[str],
    install_fix: str,
    fix: str,
    doc: str,
    timeout: float = PROBE_TIMEOUT,
) -> State:
    """Look a binary up in PATH and run a short health command with it."""
    path = shutil.which(binary)
    logger.debug(f"probing {binary}: {path or 'not found'}")
    if not path:
        return State(error=f"{binary} not found in PATH", fix=install_fix, doc=doc)
    try:
        proc = subprocess.run([path, *args], capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        return State(
            installed=True,
            error=f"{binary} {' '.join(args)} timed out after {timeout}s",
            fix=fix,
            doc=doc,
        )
    except OSError as e:
        return State(installed=True, error=str(e), fix=fix, doc=doc)
    if proc.returncode != 0:
        output = (proc.stderr or proc.stdout).strip()
        return State(
            installed=True,
            error=f"{binary} {' '.join(args)}: exit status {proc.returncode}: {output}",
            fix=fix,
            doc=doc,
        )
    return State(installed=True, healthy=True)


def docker_status() -> State:
    return _probe(
        "docker",
        ["version", "--format", "{{.Server.Os}}-{{.Server.Version}}"],
        install_fix="Install Docker",
        fix="Start the Docker service",
        doc=f"{DOCS}/docker/",
    )


def podman_status() -> State:
    return _probe(
        "podman",
        ["version", "--format", "{{.Version}}"],
        install_fix="Install Podman",
        fix="Check that podman can run containers, e.g. 'sudo -n podman info'",
        doc=f"{DOCS}/podman/",
    )


def kvm2_status() -> State:
    if not sys.platform.startswith("linux"):
        return State(error="kvm2 is only available on Linux", doc=f"{DOCS}/kvm2/")
    return _probe(
        "virsh",
        ["domcapabilities", "--virttype", "kvm"],
        install_fix="Install libvirt",
        fix="Follow your Linux distribution instructions for configuring KVM",
        doc=f"{DOCS}/kvm2/",
    )


def virtualbox_status() -> State:
    return _probe(
        "vboxmanage",
        ["list", "hostinfo"],
        install_fix="Install VirtualBox",
        fix="Install the latest version of VirtualBox",
        doc=f"{DOCS}/virtualbox/",
    )


def hyperv_status() -> State:
    if sys.platform != "win32":
        return State(error="Hyper-V is only available on Windows", doc=f"{DOCS}/hyperv/")
    return _probe(
        "powershell",
        ["-NoProfile", "-NonInteractive", "@(Get-Command Get-VM).Name"],
        install_fix="Start PowerShell as Administrator, and run: "
        "'Enable-WindowsOptionalFeature -Online -FeatureName Microsoft-Hyper-V -All'",
        fix="Start PowerShell as Administrator and enable the Hyper-V feature",
        doc=f"{DOCS}/hyperv/",
    )


def vmware_status() -> State:
    return _probe(
        "docker-machine-driver-vmware",
        ["--help"],
        install_fix="Install docker-machine-driver-vmware",
        fix="Reinstall docker-machine-driver-vmware",
        doc=f"{DOCS}/vmware/",
    )


def none_status() -> State:
    if not sys.platform.startswith("linux"):
        return State(error="the none driver requires Linux", doc=f"{DOCS}/none/")
    state = _probe(
        "docker",
        ["version", "--format", "{{.Server.Version}}"],
        install_fix="Install docker",
        fix="Start the docker service",
        doc=f"{DOCS}/none/",
    )
    if state.healthy and not shutil.which("systemctl"):
        return State(installed=True, error="systemctl not found", doc=f"{DOCS}/none/")
    return state


def _machine_config(name: str):
    def configure(cc: ClusterConfig, node: Node) -> dict:
        config = {
            "driver": name,
            "machine_name": driver.machine_name(cc.name, node.name, node.control_plane),
            "cpus": cc.cpus,
            "memory": cc.memory,
        }
        if driver.is_kic(name):
            config["oci_binary"] = name
            config["image"] = driver.KIC_BASE_IMAGE
            config["port_mappings"] = [node.port, 22]
        elif driver.is_vm(name):
            config["disk_size"] = cc.disk_size
        return config

    return configure


BUILTIN = (
    (driver.DOCKER, docker_status, Priority.PREFERRED),
    (driver.PODMAN, podman_status, Priority.USABLE),
    (driver.KVM2, kvm2_status, Priority.PREFERRED),
    (driver.VIRTUALBOX, virtualbox_status, Priority.FALLBACK),
    (driver.HYPERV, hyperv_status, Priority.PREFERRED),
    (driver.VMWARE, vmware_status, Priority.USABLE),
    # requires root
    (driver.NONE, none_status, Priority.DISCOURAGED),
)


def register_builtin(registry: Registry) -> Registry:
    """Register every built-in driver and return the registry."""
    for name, status, priority in BUILTIN:
        registry.register(
            DriverDef(name=name, config=_machine_config(name), status=status, priority=priority)
        )
    return registry
