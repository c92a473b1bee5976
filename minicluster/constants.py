"""Paths, defaults and well-known names shared across minicluster."""

import os
from pathlib import Path

MINICLUSTER_HOME_ENV = "MINICLUSTER_HOME"

DEFAULT_PROFILE = "minikube"
DEFAULT_KUBERNETES_VERSION = "v1.17.3"
NEWEST_KUBERNETES_VERSION = "v1.18.0-beta.2"
OLDEST_KUBERNETES_VERSION = "v1.11.10"

DEFAULT_CONTAINER_RUNTIME = "docker"
DEFAULT_SERVICE_CIDR = "10.96.0.0/12"
DEFAULT_POD_CIDR = "10.244.0.0/16"
DEFAULT_DNS_DOMAIN = "cluster.local"
DEFAULT_APISERVER_NAME = "minikubeCA"
DEFAULT_IMAGE_REPOSITORY = "k8s.gcr.io"
APISERVER_PORT = 8443
SSH_PORT = 22

# Kubernetes readiness
DEFAULT_CONTROL_PLANE_TIMEOUT = 240.0
DEFAULT_WAIT_TIMEOUT = 360.0

# Container-backend nodes publish their ports on this address
DEFAULT_BIND_IPV4 = "127.0.0.1"
OVERLAY_IMAGE = "kindest/kindnetd:0.5.3"
FLANNEL_IMAGE = "quay.io/coreos/flannel:v0.12.0-amd64"

# In-host layout
GUEST_PERSISTENT_DIR = "/var/lib/minikube"
GUEST_EPHEMERAL_DIR = "/var/tmp/minikube"
GUEST_MANIFESTS_DIR = "/etc/kubernetes/manifests"
GUEST_CERTS_DIR = f"{GUEST_PERSISTENT_DIR}/certs"
GUEST_KUBECONFIG = f"{GUEST_PERSISTENT_DIR}/kubeconfig"
GUEST_BINARIES_DIR = f"{GUEST_PERSISTENT_DIR}/binaries"
ETCD_DATA_DIR = f"{GUEST_PERSISTENT_DIR}/etcd"
LEGACY_ETCD_DIR = "/data/minikube"

KUBEADM_YAML_PATH = f"{GUEST_EPHEMERAL_DIR}/kubeadm.yaml"
# Written after a successful init; its presence marks an existing cluster
KUBEADM_CONFIG_FILE = "/var/lib/kubeadm.yaml"
KUBELET_SERVICE_FILE = "/lib/systemd/system/kubelet.service"
KUBELET_SYSTEMD_CONF_FILE = "/etc/systemd/system/kubelet.service.d/10-kubeadm.conf"
DEFAULT_CNI_CONFIG_PATH = "/etc/cni/net.d/1-k8s.conf"
CRICTL_CONFIG_PATH = "/etc/crictl.yaml"
CNI_MANIFEST_PATH = f"{GUEST_EPHEMERAL_DIR}/cni.yaml"

KUBERNETES_BINARIES = ("kubeadm", "kubelet", "kubectl")
KUBERNETES_RELEASE_URL = "https://storage.googleapis.com/kubernetes-release/release"


def get_home() -> Path:
    """Return the minicluster state directory.

    Honors $MINICLUSTER_HOME, appending ``.minicluster`` unless it is already
    the last path component.
    """
    env = os.environ.get(MINICLUSTER_HOME_ENV, "")
    if not env:
        return Path.home() / ".minicluster"
    home = Path(env).expanduser()
    if home.name == ".minicluster":
        return home
    return home / ".minicluster"


def binaries_cache_dir(version: str) -> Path:
    """Return the local cache directory for Kubernetes binaries of a version."""
    return get_home() / "cache" / "linux" / version


def images_cache_dir() -> Path:
    """Return the local cache directory for container image archives."""
    return get_home() / "cache" / "images"
