"""Driver names, driver families and per-driver flag defaults."""

import os
from dataclasses import dataclass, field

from minicluster.constants import DEFAULT_POD_CIDR

DOCKER = "docker"
PODMAN = "podman"
NONE = "none"
MOCK = "mock"
KVM2 = "kvm2"
VIRTUALBOX = "virtualbox"
HYPERV = "hyperv"
VMWARE = "vmware"

KIC_DRIVERS = (DOCKER, PODMAN)
VM_DRIVERS = (KVM2, VIRTUALBOX, HYPERV, VMWARE)

KIC_BASE_IMAGE = "gcr.io/k8s-minikube/kicbase:v0.0.8"

# systemd's resolver config, required by the kubelet on bare hosts running systemd-resolved
SYSTEMD_RESOLV_CONF = "/run/systemd/resolve/resolv.conf"


def is_kic(name: str) -> bool:
    """Return whether the driver runs each node as a container."""
    return name in KIC_DRIVERS


def bare_metal(name: str) -> bool:
    """Return whether the driver runs directly on the host without isolation."""
    return name in (NONE, MOCK)


def is_vm(name: str) -> bool:
    """Return whether the driver runs each node as a virtual machine."""
    return not is_kic(name) and not bare_metal(name)


def machine_name(cluster: str, node: str = "", control_plane: bool = True) -> str:
    """Return the host/container name used for a node of a cluster."""
    if control_plane or not node:
        return cluster
    return f"{cluster}-{node}"


@dataclass
class FlagHints:
    """Suggested start options for a driver."""

    extra_options: list[str] = field(default_factory=list)
    cache_images: bool = True


def flag_defaults(name: str, resolv_conf: str = SYSTEMD_RESOLV_CONF) -> FlagHints:
    """Return suggested defaults for a driver.

    Args:
        name: Driver name
        resolv_conf: systemd resolver config path, checked for bare hosts

    Returns:
        FlagHints with extra options in ``component.key=value`` form
    """
    if not bare_metal(name):
        hints = FlagHints(cache_images=True)
        if is_kic(name):
            hints.extra_options.append(f"kubeadm.pod-network-cidr={DEFAULT_POD_CIDR}")
        return hints

    hints = FlagHints(cache_images=False)
    if os.path.exists(resolv_conf):
        hints.extra_options.append(f"kubelet.resolv-conf={resolv_conf}")
    return hints
