"""Data models for cluster configuration."""

import ipaddress
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from minicluster.constants import (
    DEFAULT_APISERVER_NAME,
    DEFAULT_CONTAINER_RUNTIME,
    DEFAULT_DNS_DOMAIN,
    DEFAULT_KUBERNETES_VERSION,
    DEFAULT_SERVICE_CIDR,
)
from minicluster.exceptions import ConfigurationError
from minicluster.models.node import Node
from minicluster.version import parse_kubernetes_version

KUBEADM = "kubeadm"
KUBELET = "kubelet"

# Components that accept extra options on the command line
EXTRA_OPTION_COMPONENTS = (
    "apiserver",
    "controller-manager",
    "scheduler",
    KUBELET,
    "kube-proxy",
    "etcd",
    KUBEADM,
)

# kubeadm parameters passed as `kubeadm init` flags
KUBEADM_CMD_PARAMS = (
    "ignore-preflight-errors",
    "dry-run",
    "kubeconfig",
    "kubeconfig-dir",
    "node-name",
    "cri-socket",
    "experimental-upload-certs",
    "certificate-key",
    "rootfs",
    "skip-phases",
)
# kubeadm parameters rendered into the kubeadm config file
KUBEADM_CONFIG_PARAMS = ("pod-network-cidr",)

SUPPORTED_RUNTIMES = ("docker", "containerd", "crio", "cri-o")


class ExtraOption(BaseModel):
    """A `component.key=value` override for one Kubernetes component."""

    component: str
    key: str
    value: str

    @field_validator("component")
    @classmethod
    def validate_component(cls, v: str) -> str:
        """Validate the component accepts extra options."""
        if v not in EXTRA_OPTION_COMPONENTS:
            raise ValueError(
                f"component '{v}' must be one of {', '.join(EXTRA_OPTION_COMPONENTS)}"
            )
        return v

    @field_validator("key")
    @classmethod
    def validate_key(cls, v: str) -> str:
        """Validate the key is not empty."""
        if not v:
            raise ValueError("key cannot be empty")
        return v

    @classmethod
    def parse(cls, raw: str) -> "ExtraOption":
        """Parse an option in `component.key=value` form.

        Raises:
            ConfigurationError: If the option is malformed or not whitelisted
        """
        if "=" not in raw or "." not in raw.split("=", 1)[0]:
            raise ConfigurationError(
                f"Invalid extra option '{raw}'", "Expected format: component.key=value"
            )
        name, value = raw.split("=", 1)
        component, key = name.split(".", 1)
        try:
            option = cls(component=component.strip(), key=key.strip(), value=value.strip())
        except ValueError as e:
            raise ConfigurationError(f"Invalid extra option '{raw}'", str(e))
        allowed = KUBEADM_CMD_PARAMS + KUBEADM_CONFIG_PARAMS
        if option.component == KUBEADM and option.key not in allowed:
            raise ConfigurationError(
                f"Invalid kubeadm parameter '{option.key}'",
                f"Valid kubeadm parameters: {', '.join(allowed)}",
            )
        return option

    def __str__(self) -> str:
        return f"{self.component}.{self.key}={self.value}"


class KubernetesConfig(BaseModel):
    """Settings for the Kubernetes distribution running on the cluster."""

    kubernetes_version: str = DEFAULT_KUBERNETES_VERSION
    cluster_name: str = ""
    node_ip: str = ""
    node_name: str = ""
    apiserver_name: str = DEFAULT_APISERVER_NAME
    apiserver_names: list[str] = Field(default_factory=list)
    apiserver_ips: list[str] = Field(default_factory=list)
    dns_domain: str = DEFAULT_DNS_DOMAIN
    container_runtime: str = DEFAULT_CONTAINER_RUNTIME
    cri_socket: str = ""
    network_plugin: str = ""
    cni: str = ""
    enable_default_cni: bool = False
    feature_gates: str = ""
    service_cidr: str = DEFAULT_SERVICE_CIDR
    pod_cidr: str = ""
    image_repository: str = ""
    extra_options: list[ExtraOption] = Field(default_factory=list)
    should_load_cached_images: bool = True

    @field_validator("kubernetes_version")
    @classmethod
    def validate_kubernetes_version(cls, v: str) -> str:
        """Validate the version follows semantic versioning."""
        try:
            parse_kubernetes_version(v)
        except ConfigurationError as e:
            raise ValueError(e.message)
        return v

    @field_validator("container_runtime")
    @classmethod
    def validate_container_runtime(cls, v: str) -> str:
        """Validate the container runtime is one minicluster can manage."""
        if v.lower() not in SUPPORTED_RUNTIMES:
            raise ValueError(
                f"container_runtime must be one of {', '.join(SUPPORTED_RUNTIMES)}, got '{v}'"
            )
        return v.lower()

    @field_validator("service_cidr")
    @classmethod
    def validate_service_cidr(cls, v: str) -> str:
        """Validate service_cidr is a valid CIDR."""
        ipaddress.ip_network(v, strict=False)
        return v

    @field_validator("node_ip")
    @classmethod
    def validate_node_ip(cls, v: str) -> str:
        """Validate the advertised address, empty until the host is known."""
        if v:
            ipaddress.ip_address(v)
        return v

    @field_validator("apiserver_ips")
    @classmethod
    def validate_apiserver_ips(cls, v: list[str]) -> list[str]:
        """Validate every extra API server IP parses."""
        for ip in v:
            ipaddress.ip_address(ip)
        return v

    def extra_options_for(self, component: str) -> dict[str, str]:
        """Return the extra options of one component as a key/value map."""
        return {o.key: o.value for o in self.extra_options if o.component == component}


class ClusterConfig(BaseModel):
    """Configuration of one named cluster (profile)."""

    name: str
    driver: str = ""
    memory: int = 2000
    cpus: int = 2
    disk_size: int = 20000
    ssh_user: str = "docker"
    ssh_key_path: str = ""
    kubernetes_config: KubernetesConfig = Field(default_factory=KubernetesConfig)
    nodes: list[Node] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate cluster name is not empty."""
        if not v:
            raise ValueError("name cannot be empty")
        return v

    @field_validator("nodes")
    @classmethod
    def validate_nodes(cls, v: list[Node]) -> list[Node]:
        """Validate that a populated node list has exactly one control plane."""
        if v and sum(1 for n in v if n.control_plane) != 1:
            raise ValueError("a cluster must have exactly one control-plane node")
        return v

    def primary_control_plane(self) -> Node:
        """Return the control-plane node.

        Raises:
            ConfigurationError: If the cluster has no control-plane node
        """
        for node in self.nodes:
            if node.control_plane:
                return node
        raise ConfigurationError(
            f"Cluster '{self.name}' has no control-plane node",
            "The profile may be corrupt; delete it and start again",
        )

    def save(self, path: str | Path) -> None:
        """Save configuration to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            f.write(self.model_dump_json(indent=2))

    @classmethod
    def load(cls, path: str | Path) -> "ClusterConfig":
        """Load configuration from a JSON file."""
        with open(path) as f:
            return cls.model_validate_json(f.read())
