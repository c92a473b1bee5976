"""Helpers that generate kubeadm and kubelet configuration and prepare the host."""

from pathlib import Path
from posixpath import join

import yaml
from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from minicluster import driver
from minicluster.command.runner import CommandRunner, FileAsset, MemoryAsset
from minicluster.constants import (
    APISERVER_PORT,
    DEFAULT_CNI_CONFIG_PATH,
    DEFAULT_POD_CIDR,
    ETCD_DATA_DIR,
    GUEST_BINARIES_DIR,
    GUEST_CERTS_DIR,
    GUEST_MANIFESTS_DIR,
    GUEST_PERSISTENT_DIR,
    KUBEADM_YAML_PATH,
    KUBELET_SERVICE_FILE,
    KUBELET_SYSTEMD_CONF_FILE,
    KUBERNETES_BINARIES,
    KUBERNETES_RELEASE_URL,
    binaries_cache_dir,
)
from minicluster.cruntime.base import Manager as RuntimeManager
from minicluster.exceptions import ClusterError, ConfigurationError
from minicluster.logging_config import get_logger
from minicluster.models.cluster import (
    EXTRA_OPTION_COMPONENTS,
    KUBEADM,
    KUBEADM_CMD_PARAMS,
    KUBEADM_CONFIG_PARAMS,
    KUBELET,
    ClusterConfig,
    ExtraOption,
    KubernetesConfig,
)
from minicluster.models.node import Node
from minicluster.retry import Done, Retriable
from minicluster.templating import render
from minicluster.version import (
    KUBEADM_INIT_PHASES,
    KUBEADM_V1ALPHA3,
    KUBEADM_V1BETA1,
    KUBEADM_V1BETA2,
    KubernetesVersion,
    parse_kubernetes_version,
)

logger = get_logger(__name__)

ARCH = "amd64"
RBAC_NAME = "minikube-rbac"

# Extra preflight checks to skip, keyed by runtime type
SKIP_ADDITIONAL_PREFLIGHTS = {
    "containerd": ["Service-Docker"],
    "crio": ["Service-Docker"],
}

DEFAULT_ADMISSION_PLUGINS = (
    "NamespaceLifecycle,LimitRanger,ServiceAccount,DefaultStorageClass,"
    "DefaultTolerationSeconds,NodeRestriction,MutatingAdmissionWebhook,"
    "ValidatingAdmissionWebhook,ResourceQuota"
)

# kubeadm ClusterConfiguration sections that take extraArgs, by component
_COMPONENT_SECTIONS = {
    "apiserver": "apiServer",
    "controller-manager": "controllerManager",
    "scheduler": "scheduler",
}


def binaries_dir(kubernetes_version: str) -> str:
    return join(GUEST_BINARIES_DIR, kubernetes_version)


def invoke_kubeadm(kubernetes_version: str) -> str:
    """Return the shell prefix that runs the kubeadm matching a version."""
    return f"sudo env PATH={binaries_dir(kubernetes_version)}:$PATH kubeadm"


def dir_available_check(path: str) -> str:
    return "DirAvailable-" + path.replace("/", "-")


def preflight_ignores(version: KubernetesVersion, runtime_type: str, driver_name: str) -> list[str]:
    """Return the kubeadm preflight checks to ignore for a host."""
    ignore = [
        dir_available_check(GUEST_MANIFESTS_DIR),
        dir_available_check(GUEST_PERSISTENT_DIR),
        dir_available_check(ETCD_DATA_DIR),
        "FileAvailable--etc-kubernetes-manifests-kube-scheduler.yaml",
        "FileAvailable--etc-kubernetes-manifests-kube-apiserver.yaml",
        "FileAvailable--etc-kubernetes-manifests-kube-controller-manager.yaml",
        "FileAvailable--etc-kubernetes-manifests-etcd.yaml",
        # bare hosts may already run a kubelet
        "Port-10250",
        # bare hosts may have swap configured
        "Swap",
    ]
    ignore += SKIP_ADDITIONAL_PREFLIGHTS.get(runtime_type, [])

    # older kubeadm rejects newer docker releases; container nodes lack kernel configs
    if version < KUBEADM_INIT_PHASES or driver.is_kic(driver_name):
        logger.info(f"Kubernetes {version} on {driver_name}, disabling SystemVerification check")
        ignore.append("SystemVerification")

    # /proc/sys/net/bridge/bridge-nf-call-iptables does not exist inside a container
    if driver.is_kic(driver_name):
        ignore.append("FileContent--proc-sys-net-bridge-bridge-nf-call-iptables")
    return ignore


def validate_extra_options(options: list[ExtraOption]) -> None:
    """Check every extra option targets a known component and kubeadm key.

    Raises:
        ConfigurationError: On a component or kubeadm key outside the whitelist
    """
    for option in options:
        if option.component not in EXTRA_OPTION_COMPONENTS:
            raise ConfigurationError(
                f"Invalid extra option component '{option.component}'",
                f"Valid components: {', '.join(EXTRA_OPTION_COMPONENTS)}",
            )
        allowed = KUBEADM_CMD_PARAMS + KUBEADM_CONFIG_PARAMS
        if option.component == KUBEADM and option.key not in allowed:
            raise ConfigurationError(
                f"Invalid kubeadm parameter '{option.key}'",
                f"Valid kubeadm parameters: {', '.join(allowed)}",
            )


def create_flags_from_extra_args(options: list[ExtraOption]) -> str:
    """Return the kubeadm command-line flags carried by extra options."""
    validate_extra_options(options)
    flags = {
        o.key: o.value for o in options if o.component == KUBEADM and o.key in KUBEADM_CMD_PARAMS
    }
    return " ".join(f"--{k}={v}" for k, v in sorted(flags.items()))


def _feature_gates(raw: str) -> dict[str, bool]:
    gates = {}
    for item in filter(None, (s.strip() for s in raw.split(","))):
        if "=" not in item:
            raise ConfigurationError(f"Invalid feature gate '{item}'", "Expected Name=true|false")
        name, value = item.split("=", 1)
        if value.lower() not in ("true", "false"):
            raise ConfigurationError(f"Invalid feature gate '{item}'", "Expected Name=true|false")
        gates[name.strip()] = value.lower() == "true"
    return gates


def pod_subnet(k8s: KubernetesConfig, default: str = "") -> str:
    """Return the pod CIDR, preferring an explicit kubeadm option."""
    return k8s.extra_options_for(KUBEADM).get("pod-network-cidr") or k8s.pod_cidr or default


def kubeadm_api_version(version: KubernetesVersion) -> str:
    if version < KUBEADM_V1ALPHA3:
        return "kubeadm.k8s.io/v1alpha2"
    if version < KUBEADM_V1BETA1:
        return "kubeadm.k8s.io/v1alpha3"
    if version < KUBEADM_V1BETA2:
        return "kubeadm.k8s.io/v1beta1"
    return "kubeadm.k8s.io/v1beta2"


def generate_kubeadm_yaml(cc: ClusterConfig, runtime: RuntimeManager, cni_cidr: str = "") -> str:
    """Render the kubeadm config for the control-plane node.

    Args:
        cc: Cluster configuration
        runtime: Runtime whose socket the node registers with
        cni_cidr: Pod CIDR of the selected CNI, used when none is configured

    Raises:
        ConfigurationError: On invalid versions, options or feature gates
    """
    k8s = cc.kubernetes_config
    version = parse_kubernetes_version(k8s.kubernetes_version)
    validate_extra_options(k8s.extra_options)
    cp = cc.primary_control_plane()
    api_version = kubeadm_api_version(version)
    node_ip = cp.ip or k8s.node_ip
    node_name = k8s.node_name or cp.name or cc.name
    port = cp.port or APISERVER_PORT

    component_args: dict[str, dict[str, str]] = {
        "apiserver": {"enable-admission-plugins": DEFAULT_ADMISSION_PLUGINS},
        "controller-manager": {"leader-elect": "false"},
        "scheduler": {"leader-elect": "false"},
    }
    for component in _COMPONENT_SECTIONS:
        component_args[component].update(k8s.extra_options_for(component))
    if k8s.feature_gates:
        gates = ",".join(
            f"{name}={str(on).lower()}" for name, on in _feature_gates(k8s.feature_gates).items()
        )
        for component in _COMPONENT_SECTIONS:
            component_args[component]["feature-gates"] = gates

    node_registration = {
        "criSocket": runtime.socket_path(),
        "name": node_name,
        "kubeletExtraArgs": {"node-ip": node_ip},
        "taints": [],
    }
    init_config = {
        "apiVersion": api_version,
        "kind": "InitConfiguration",
        "bootstrapTokens": [
            {
                "groups": ["system:bootstrappers:kubeadm:default-node-token"],
                "ttl": "24h0m0s",
                "usages": ["signing", "authentication"],
            }
        ],
        "nodeRegistration": node_registration,
    }
    endpoint = {"advertiseAddress": node_ip, "bindPort": port}
    if version < KUBEADM_V1BETA1:
        init_config["apiEndpoint"] = endpoint
    else:
        init_config["localAPIEndpoint"] = endpoint

    cert_sans = ["127.0.0.1", "localhost", node_ip, *k8s.apiserver_ips, *k8s.apiserver_names]
    cert_sans = list(dict.fromkeys(s for s in cert_sans if s))

    cluster_config = {
        "apiVersion": api_version,
        "kind": "ClusterConfiguration",
        "certificatesDir": GUEST_CERTS_DIR,
        "clusterName": "kubernetes",
        "controlPlaneEndpoint": f"localhost:{port}",
        "dns": {"type": "CoreDNS"},
        "etcd": {"local": {"dataDir": ETCD_DATA_DIR}},
        "kubernetesVersion": k8s.kubernetes_version,
        "networking": {
            "dnsDomain": k8s.dns_domain,
            "serviceSubnet": k8s.service_cidr,
        },
    }
    subnet = pod_subnet(k8s, cni_cidr)
    if subnet:
        cluster_config["networking"]["podSubnet"] = subnet
    if k8s.image_repository:
        cluster_config["imageRepository"] = k8s.image_repository
    etcd_args = k8s.extra_options_for("etcd")
    if etcd_args:
        cluster_config["etcd"]["local"]["extraArgs"] = etcd_args

    if version < KUBEADM_V1BETA1:
        cluster_config["apiServerCertSANs"] = cert_sans
        cluster_config["apiServerExtraArgs"] = component_args["apiserver"]
        cluster_config["controllerManagerExtraArgs"] = component_args["controller-manager"]
        cluster_config["schedulerExtraArgs"] = component_args["scheduler"]
    else:
        for component, section in _COMPONENT_SECTIONS.items():
            cluster_config[section] = {"extraArgs": component_args[component]}
        cluster_config["apiServer"]["certSANs"] = cert_sans

    kubelet_config = {
        "apiVersion": "kubelet.config.k8s.io/v1beta1",
        "kind": "KubeletConfiguration",
        "cgroupDriver": runtime.cgroup_driver() or "cgroupfs",
        "clusterDomain": k8s.dns_domain,
        # disable disk resource management by default
        "imageGCHighThresholdPercent": 100,
        "evictionHard": {
            "nodefs.available": "0%",
            "nodefs.inodesFree": "0%",
            "imagefs.available": "0%",
        },
    }
    proxy_config = {
        "apiVersion": "kubeproxy.config.k8s.io/v1alpha1",
        "kind": "KubeProxyConfiguration",
        "clusterCIDR": subnet or DEFAULT_POD_CIDR,
        "metricsBindAddress": f"{node_ip}:10249",
    }
    docs = [init_config, cluster_config, kubelet_config, proxy_config]
    if version < KUBEADM_V1ALPHA3:
        docs = [_master_configuration(init_config, cluster_config, kubelet_config, proxy_config)]
    return yaml.safe_dump_all(docs, default_flow_style=False, sort_keys=False)


def _master_configuration(
    init_config: dict, cluster_config: dict, kubelet: dict, proxy: dict
) -> dict:
    """Fold the split documents into the single v1alpha2 MasterConfiguration of kubeadm 1.11.

    The endpoint moves under ``api`` and the kubelet and kube-proxy
    configurations are embedded instead of being separate documents.
    """
    endpoint = init_config["apiEndpoint"]
    master = {
        "apiVersion": init_config["apiVersion"],
        "kind": "MasterConfiguration",
        "api": {
            "advertiseAddress": endpoint["advertiseAddress"],
            "bindPort": endpoint["bindPort"],
            "controlPlaneEndpoint": cluster_config["controlPlaneEndpoint"],
        },
        "bootstrapTokens": init_config["bootstrapTokens"],
        "nodeRegistration": init_config["nodeRegistration"],
    }
    # v1alpha2 has no dns section; CoreDNS is the default from 1.11
    skip = ("apiVersion", "kind", "controlPlaneEndpoint", "dns")
    master.update({k: v for k, v in cluster_config.items() if k not in skip})
    master["kubeletConfiguration"] = {"baseConfig": _without_type_meta(kubelet)}
    master["kubeProxy"] = {"config": _without_type_meta(proxy)}
    return master


def _without_type_meta(doc: dict) -> dict:
    return {k: v for k, v in doc.items() if k not in ("apiVersion", "kind")}


def kubelet_flags(cc: ClusterConfig, node: Node, runtime: RuntimeManager) -> dict[str, str]:
    """Return the kubelet command-line flags for a node."""
    k8s = cc.kubernetes_config
    flags = {
        "bootstrap-kubeconfig": "/etc/kubernetes/bootstrap-kubelet.conf",
        "kubeconfig": "/etc/kubernetes/kubelet.conf",
        "config": "/var/lib/kubelet/config.yaml",
        "client-ca-file": join(GUEST_CERTS_DIR, "ca.crt"),
        "authorization-mode": "Webhook",
        "cluster-domain": k8s.dns_domain,
        "fail-swap-on": "false",
        "hostname-override": k8s.node_name or node.name or cc.name,
        "node-ip": node.ip or k8s.node_ip,
    }
    if k8s.network_plugin:
        flags["network-plugin"] = k8s.network_plugin
    flags.update(runtime.kubelet_options())
    if k8s.feature_gates:
        flags["feature-gates"] = ",".join(
            f"{name}={str(on).lower()}" for name, on in _feature_gates(k8s.feature_gates).items()
        )
    flags.update(k8s.extra_options_for(KUBELET))
    return {k: v for k, v in flags.items() if v != ""}


def new_kubelet_config(cc: ClusterConfig, node: Node, runtime: RuntimeManager) -> str:
    """Render the kubelet systemd drop-in for a node."""
    k8s = cc.kubernetes_config
    wants = {"docker": "docker.socket"}.get(runtime.runtime_type, f"{runtime.unit}.service")
    flags = [f"--{k}={v}" for k, v in sorted(kubelet_flags(cc, node, runtime).items())]
    return render(
        "10-kubeadm.conf.j2",
        wants=wants,
        kubelet_path=join(binaries_dir(k8s.kubernetes_version), "kubelet"),
        flags=flags,
    )


def new_kubelet_service(k8s: KubernetesConfig) -> str:
    """Render the kubelet systemd unit."""
    return render(
        "kubelet.service.j2",
        kubelet_path=join(binaries_dir(k8s.kubernetes_version), "kubelet"),
    )


def config_file_assets(
    kubeadm_yaml: str, kubelet_config: str, kubelet_service: str, cni_config: str = ""
) -> list[MemoryAsset]:
    """Return the generated files installed on the control plane."""
    files = [
        MemoryAsset.for_target(kubeadm_yaml, KUBEADM_YAML_PATH, "0640"),
        MemoryAsset.for_target(kubelet_config, KUBELET_SYSTEMD_CONF_FILE, "0644"),
        MemoryAsset.for_target(kubelet_service, KUBELET_SERVICE_FILE, "0644"),
    ]
    if cni_config:
        files.append(MemoryAsset.for_target(cni_config, DEFAULT_CNI_CONFIG_PATH, "0644"))
    return files


def release_url(kubernetes_version: str, binary: str) -> str:
    return f"{KUBERNETES_RELEASE_URL}/{kubernetes_version}/bin/linux/{ARCH}/{binary}"


def transfer_binaries(
    k8s: KubernetesConfig, runner: CommandRunner, cache_dir: Path | None = None
) -> None:
    """Install kubeadm, kubelet and kubectl into the versioned binaries dir.

    Binaries found in the local cache are copied; the rest are downloaded on
    the host itself.

    Raises:
        CommandError: If a binary cannot be installed
    """
    version = k8s.kubernetes_version
    cache_dir = Path(cache_dir) if cache_dir else binaries_cache_dir(version)
    dst_dir = binaries_dir(version)
    for name in KUBERNETES_BINARIES:
        dst = join(dst_dir, name)
        src = cache_dir / name
        if src.is_file():
            runner.copy(
                FileAsset(target_dir=dst_dir, target_name=name, permissions="0755", source=src)
            )
            continue
        if runner.succeeds(["sudo", "test", "-f", dst]):
            logger.debug(f"{dst} already present")
            continue
        logger.info(f"downloading {name} {version} on the host")
        runner.run_shell(
            f"sudo mkdir -p {dst_dir} && "
            f"sudo curl -sSfL --retry 3 -o {dst} {release_url(version, name)} && "
            f"sudo chmod 0755 {dst}"
        )


def adjust_resource_limits(runner: CommandRunner) -> None:
    """Make the apiserver less likely to be chosen by the OOM killer.

    Raises:
        CommandError: If the apiserver's oom_adj cannot be read or written
    """
    rr = runner.run_shell("cat /proc/$(pgrep kube-apiserver)/oom_adj")
    current = rr.stdout.strip()
    logger.info(f"apiserver oom_adj: {current}")
    # oom_adj is already a negative number
    if current.startswith("-"):
        return
    logger.info("adjusting apiserver oom_adj to -10")
    runner.run_shell("echo -10 | sudo tee /proc/$(pgrep kube-apiserver)/oom_adj")


def elevate_kube_system_privileges(rbac: client.RbacAuthorizationV1Api) -> Retriable | Done:
    """Bind cluster-admin to the kube-system default service account.

    Returns:
        Done once the binding exists, Retriable while the API server is not ready
    """
    binding = client.V1ClusterRoleBinding(
        metadata=client.V1ObjectMeta(name=RBAC_NAME),
        role_ref=client.V1RoleRef(
            api_group="rbac.authorization.k8s.io", kind="ClusterRole", name="cluster-admin"
        ),
        subjects=[
            client.RbacV1Subject(kind="ServiceAccount", name="default", namespace="kube-system")
        ],
    )
    try:
        rbac.create_cluster_role_binding(binding)
    except ApiException as e:
        if e.status == 409:
            logger.info(f"{RBAC_NAME} already exists")
            return Done()
        return Retriable(ClusterError(f"Creating {RBAC_NAME} failed: {e.reason}", e.body))
    except (HTTPError, OSError) as e:
        return Retriable(ClusterError(f"Creating {RBAC_NAME} failed", str(e)))
    return Done()


def stop_kubelet(runner: CommandRunner) -> None:
    """Stop a running kubelet, logging failures."""
    rr = runner.run_shell("pgrep kubelet && sudo systemctl stop kubelet", check=False)
    if rr.exit_code != 0:
        logger.warning(f"unable to stop kubelet: {rr.command()} output: {rr.output().strip()}")

