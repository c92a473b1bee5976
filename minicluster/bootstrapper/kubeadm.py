"""Cluster lifecycle driven by kubeadm on a single control-plane host."""

import shlex
import time
from collections.abc import Callable
from pathlib import Path

from kubernetes import client

from minicluster import certs, cni, cruntime, driver, images, out
from minicluster.bootstrapper import bsutil, kverify
from minicluster.cni.base import kubectl_path
from minicluster.cni.kindnet import KindNet
from minicluster.command.container import host_port_binding
from minicluster.command.local import LocalRunner
from minicluster.command.runner import CommandRunner, MemoryAsset
from minicluster.constants import (
    DEFAULT_BIND_IPV4,
    DEFAULT_CONTROL_PLANE_TIMEOUT,
    ETCD_DATA_DIR,
    GUEST_KUBECONFIG,
    KUBEADM_CONFIG_FILE,
    KUBEADM_YAML_PATH,
    LEGACY_ETCD_DIR,
    images_cache_dir,
)
from minicluster.cruntime.base import KUBE_SYSTEM, ListOptions
from minicluster.cruntime.base import Manager as RuntimeManager
from minicluster.exceptions import (
    BootstrapError,
    ClusterError,
    CommandError,
    KubeadmError,
    UnsupportedOperationError,
)
from minicluster.logging_config import get_logger
from minicluster.models.cluster import ClusterConfig, KubernetesConfig
from minicluster.models.node import Node
from minicluster.retry import retry_expo
from minicluster.version import (
    KUBEADM_IMAGES_PULL,
    KUBEADM_INIT_PHASES,
    KUBEADM_RESET_FORCE,
    parse_kubernetes_version,
)

logger = get_logger(__name__)

# Builds an API client for the apiserver at (ip, port)
ClientFactory = Callable[[str, int], client.ApiClient]

STARTING = "Starting"


def default_client_factory(cert_dir: Path) -> ClientFactory:
    """Return a factory authenticating with the profile's client certificate."""

    def factory(ip: str, port: int) -> client.ApiClient:
        configuration = client.Configuration()
        configuration.host = f"https://{ip}:{port}"
        configuration.cert_file = str(Path(cert_dir) / "client.crt")
        configuration.key_file = str(Path(cert_dir) / "client.key")
        configuration.ssl_ca_cert = str(Path(cert_dir) / "ca.crt")
        return client.ApiClient(configuration)

    return factory


class Bootstrapper:
    """Brings up, verifies and tears down a kubeadm cluster through one runner.

    Args:
        runner: Runner bound to the control-plane host
        cert_dir: Local directory holding the profile's certificates
        client_factory: Builds Kubernetes API clients, defaults to client-cert auth
        local_runner: Runner for the machine hosting container-backend nodes
        poll_interval: Seconds between readiness probes
        sleep: Sleep function used between RBAC retries
    """

    def __init__(
        self,
        runner: CommandRunner,
        cert_dir: str | Path,
        client_factory: ClientFactory | None = None,
        local_runner: CommandRunner | None = None,
        poll_interval: float = kverify.POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.runner = runner
        self.cert_dir = Path(cert_dir)
        self.client_factory = client_factory or default_client_factory(self.cert_dir)
        self.local_runner = local_runner or LocalRunner()
        self.poll_interval = poll_interval
        self.sleep = sleep
        self._clients: dict[tuple[str, int], client.ApiClient] = {}

    def kubelet_status(self) -> str:
        """Return Running, Stopped, Starting or Error for the host's kubelet."""
        rr = self.runner.run_cmd(["sudo", "systemctl", "is-active", "kubelet"], check=False)
        s = rr.stdout.strip()
        logger.info(f"kubelet is-active: {s}")
        return {
            "active": kverify.RUNNING,
            "inactive": kverify.STOPPED,
            "activating": STARTING,
        }.get(s, kverify.ERROR)

    def api_server_status(self, ip: str, port: int) -> str:
        return kverify.api_server_status(self.runner, ip, port)

    def log_commands(self, lines: int = 0, follow: bool = False) -> dict[str, str]:
        """Return shell commands that display the kubelet and kernel logs."""
        kubelet = "sudo journalctl -u kubelet"
        if lines > 0:
            kubelet += f" -n {lines}"
        if follow:
            kubelet += " -f"

        dmesg = "sudo dmesg -PH -L=never --level warn,err,crit,alert,emerg"
        if follow:
            dmesg += " --follow"
        if lines > 0:
            dmesg += f" | tail -n {lines}"
        return {"kubelet": kubelet, "dmesg": dmesg}

    def _client(self, ip: str, port: int) -> client.ApiClient:
        key = (ip, port)
        if key not in self._clients:
            self._clients[key] = self.client_factory(ip, port)
        return self._clients[key]

    def _existing_config(self) -> bool:
        return self.runner.succeeds(["sudo", "test", "-f", KUBEADM_CONFIG_FILE])

    def endpoint(self, cc: ClusterConfig, node: Node) -> tuple[str, int]:
        """Return where the apiserver of ``node`` is reachable from this machine."""
        if not driver.is_kic(cc.driver):
            return node.ip, node.port
        try:
            port = host_port_binding(self.local_runner, cc.name, node.port, cc.driver)
        except CommandError as e:
            raise BootstrapError(
                f"get host-bind port {node.port} for container {cc.name}", e.details or e.message
            )
        return DEFAULT_BIND_IPV4, port

    def _create_compat_symlinks(self) -> None:
        if not self.runner.succeeds(["sudo", "test", "-d", LEGACY_ETCD_DIR]):
            logger.info(f"{LEGACY_ETCD_DIR} not found, skipping compat symlinks")
            return
        logger.info(f"Found {LEGACY_ETCD_DIR}, creating compatibility symlinks ...")
        rr = self.runner.run_cmd(["sudo", "ln", "-s", LEGACY_ETCD_DIR, ETCD_DATA_DIR], check=False)
        if rr.exit_code != 0:
            logger.error(f"failed to create compat symlinks: {rr.output().strip()}")

    def _adjust_resource_limits(self) -> None:
        try:
            bsutil.adjust_resource_limits(self.runner)
        except CommandError as e:
            logger.warning(f"unable to adjust resource limits: {e.message}")

    def start_cluster(self, cc: ClusterConfig) -> None:
        """Initialize the control plane, or restart it if it was set up before.

        Raises:
            ConfigurationError: If the Kubernetes version or extra options are invalid
            KubeadmError: If kubeadm init fails
            BootstrapError: If post-init configuration fails
        """
        if self._existing_config():
            logger.info("found existing configuration files, will attempt cluster restart")
            self.restart_cluster(cc)
            return

        start = time.monotonic()
        k8s = cc.kubernetes_config
        version = parse_kubernetes_version(k8s.kubernetes_version)
        extra_flags = bsutil.create_flags_from_extra_args(k8s.extra_options)
        runtime = cruntime.new(k8s.container_runtime, self.runner, k8s.cri_socket)
        cp = cc.primary_control_plane()
        ignore = bsutil.preflight_ignores(version, runtime.runtime_type, cc.driver)

        if driver.bare_metal(cc.driver):
            stop_conflicting_processes(self.runner, runtime)

        cmd = (
            f"{bsutil.invoke_kubeadm(k8s.kubernetes_version)} init --config {KUBEADM_YAML_PATH} "
            f"{extra_flags} --ignore-preflight-errors={','.join(ignore)}"
        )
        rr = self.runner.run_shell(cmd, check=False)
        if rr.exit_code != 0:
            raise KubeadmError("kubeadm init failed", rr.output() or None, phase="init")

        # marks the host as initialized for the next start
        try:
            self.runner.run_cmd(["sudo", "cp", KUBEADM_YAML_PATH, KUBEADM_CONFIG_FILE])
        except CommandError as e:
            raise BootstrapError("Recording the kubeadm config failed", e.output() or e.message)

        if driver.is_kic(cc.driver):
            self._apply_kic_overlay(cc)
        else:
            logger.info("Configuring cluster permissions ...")
            rbac = client.RbacAuthorizationV1Api(self._client(cp.ip, cp.port))
            try:
                retry_expo(lambda: bsutil.elevate_kube_system_privileges(rbac), sleep=self.sleep)
            except ClusterError as e:
                raise BootstrapError(
                    "timed out waiting to elevate kube-system RBAC privileges", e.message
                )

        self._adjust_resource_limits()
        logger.info(f"StartCluster complete in {time.monotonic() - start:.3f}s")

    def _apply_kic_overlay(self, cc: ClusterConfig) -> None:
        kubectl = kubectl_path(cc)
        manifest = KindNet(cc).manifest()
        args = ["sudo", kubectl, "create", f"--kubeconfig={GUEST_KUBECONFIG}", "-f", "-"]
        rr = self.runner.run_cmd(args, stdin=manifest.encode(), check=False)
        if rr.exit_code != 0:
            raise BootstrapError("applying kic overlay network failed", rr.output() or None)

    def wait_for_cluster(self, cc: ClusterConfig, timeout: float) -> None:
        """Block until the control plane is serving and kube-system pods run.

        The process, listening and system_pods stages share one deadline.

        Raises:
            WaitTimeoutError: Naming the stage that did not finish in time
        """
        start = time.monotonic()
        out.step("Waiting for cluster to come online ...")
        cp = cc.primary_control_plane()
        kverify.api_server_process(self.runner, start, timeout, self.poll_interval)

        ip, port = self.endpoint(cc, cp)
        kverify.api_server_is_running(ip, port, start, timeout, self.poll_interval)

        core = client.CoreV1Api(self._client(ip, port))
        kverify.system_pods(core, start, timeout, self.poll_interval)

    def restart_cluster(self, cc: ClusterConfig) -> None:
        """Regenerate control-plane state of an initialized host phase by phase.

        Raises:
            KubeadmError: Naming the phase that failed
            WaitTimeoutError: If the apiserver or system pods do not come back
        """
        logger.info("restartCluster start")
        start = time.monotonic()
        k8s = cc.kubernetes_config
        version = parse_kubernetes_version(k8s.kubernetes_version)

        phase, control_plane = "alpha", "controlplane"
        if version >= KUBEADM_INIT_PHASES:
            phase, control_plane = "init", "control-plane"

        self._create_compat_symlinks()

        base = f"{bsutil.invoke_kubeadm(k8s.kubernetes_version)} {phase}"
        phases = [
            ("certs", f"{base} phase certs all --config {KUBEADM_YAML_PATH}"),
            ("kubeconfig", f"{base} phase kubeconfig all --config {KUBEADM_YAML_PATH}"),
            (control_plane, f"{base} phase {control_plane} all --config {KUBEADM_YAML_PATH}"),
            ("etcd", f"{base} phase etcd local --config {KUBEADM_YAML_PATH}"),
        ]
        # one at a time so a failure names its phase
        for name, cmd in phases:
            rr = self.runner.run_shell(cmd, check=False)
            if rr.exit_code != 0:
                raise KubeadmError(
                    f"kubeadm {phase} phase {name} failed", rr.output() or None, phase=name
                )

        kverify.api_server_process(
            self.runner, time.monotonic(), DEFAULT_CONTROL_PLANE_TIMEOUT, self.poll_interval
        )

        for node in cc.nodes:
            ip, port = self.endpoint(cc, node)
            core = client.CoreV1Api(self._client(ip, port))
            kverify.system_pods(
                core, time.monotonic(), DEFAULT_CONTROL_PLANE_TIMEOUT, self.poll_interval
            )

            # re-run addons so kube-proxy and coredns pick up IP or config changes
            rr = self.runner.run_shell(
                f"{base} phase addon all --config {KUBEADM_YAML_PATH}", check=False
            )
            if rr.exit_code != 0:
                logger.warning(f"addon phase failed: {rr.command()}\n{rr.output()}")

            self._adjust_resource_limits()
        logger.info(f"restartCluster took {time.monotonic() - start:.3f}s")

    def delete_cluster(self, k8s: KubernetesConfig) -> None:
        """Reset kubeadm state on the host.

        The existing-cluster marker goes with it, so the next start on the
        same host runs a fresh init.

        Raises:
            KubeadmError: If kubeadm reset fails
        """
        version = parse_kubernetes_version(k8s.kubernetes_version)
        cmd = f"{bsutil.invoke_kubeadm(k8s.kubernetes_version)} reset"
        if version >= KUBEADM_RESET_FORCE:
            cmd += " --force"
        rr = self.runner.run_shell(cmd, check=False)
        if rr.exit_code != 0:
            raise KubeadmError(
                f"kubeadm reset failed: {rr.command()}", rr.output() or None, phase="reset"
            )
        try:
            self.runner.run_cmd(["sudo", "rm", "-f", KUBEADM_CONFIG_FILE])
        except CommandError as e:
            raise KubeadmError(
                "Removing the kubeadm config marker failed", e.output() or e.message, phase="reset"
            )

    def pull_images(self, k8s: KubernetesConfig) -> None:
        """Pre-pull the control-plane images with kubeadm.

        Raises:
            UnsupportedOperationError: If kubeadm of this version cannot pull
            KubeadmError: If the pull fails
        """
        version = parse_kubernetes_version(k8s.kubernetes_version)
        if version < KUBEADM_IMAGES_PULL:
            raise UnsupportedOperationError(f"pull command is not supported by kubeadm v{version}")
        cmd = (
            f"{bsutil.invoke_kubeadm(k8s.kubernetes_version)} config images pull "
            f"--config {KUBEADM_YAML_PATH}"
        )
        rr = self.runner.run_shell(cmd, check=False)
        if rr.exit_code != 0:
            raise KubeadmError(
                "kubeadm config images pull failed", rr.output() or None, phase="images"
            )

    def setup_certs(self, k8s: KubernetesConfig, node: Node) -> None:
        certs.setup_certs(self.runner, k8s, node, self.cert_dir)

    def update_cluster(self, cc: ClusterConfig, cache_dir: Path | None = None) -> None:
        """Install binaries, kubeadm config and the kubelet unit, then start the kubelet.

        Raises:
            ConfigurationError: If the configuration cannot be rendered
            CommandError: If files cannot be installed or the kubelet started
        """
        k8s = cc.kubernetes_config
        runtime = cruntime.new(k8s.container_runtime, self.runner, k8s.cri_socket)
        if k8s.should_load_cached_images:
            wanted = images.kubeadm_images(k8s.image_repository, k8s.kubernetes_version)
            try:
                images.load_cached_images(self.runner, runtime, wanted, images_cache_dir())
            except ClusterError as e:
                out.failure("Unable to load cached images: {error}", error=e.message)

        network = cni.new(cc)
        kubeadm_cfg = bsutil.generate_kubeadm_yaml(cc, runtime, network.cidr())
        node = cc.nodes[0] if cc.nodes else cc.primary_control_plane()
        kubelet_cfg = bsutil.new_kubelet_config(cc, node, runtime)
        kubelet_service = bsutil.new_kubelet_service(k8s)
        logger.debug(f"kubelet config:\n{kubelet_cfg}")

        # a running kubelet keeps its binary busy
        bsutil.stop_kubelet(self.runner)

        bsutil.transfer_binaries(k8s, self.runner, cache_dir)

        cni_file = ""
        if k8s.enable_default_cni:
            cni_file = cni.Bridge(cc).net_conf()
        files = bsutil.config_file_assets(kubeadm_cfg, kubelet_cfg, kubelet_service, cni_file)
        install_files(self.runner, files)

        self.runner.run_shell("sudo systemctl daemon-reload && sudo systemctl start kubelet")


def install_files(runner: CommandRunner, files: list[MemoryAsset]) -> None:
    """Create every target directory with one mkdir, then copy the files."""
    dirs = list(dict.fromkeys(f.target_dir for f in files))
    runner.run_cmd(["sudo", "mkdir", "-p", *dirs])
    for f in files:
        runner.copy(f)


def stop_conflicting_processes(runner: CommandRunner, runtime: RuntimeManager) -> None:
    """Stop a kubelet and kube-system containers left on a bare host."""
    logger.info("stopping kubelet & kube-system containers")
    rr = runner.run_cmd(["sudo", "systemctl", "stop", "kubelet.service"], check=False)
    if rr.exit_code != 0:
        logger.error(f"stop kubelet: {rr.output().strip()}")

    try:
        containers = runtime.list_containers(ListOptions(namespaces=[KUBE_SYSTEM]))
    except CommandError as e:
        logger.warning(f"unable to list kube-system containers: {e.message}")
        return
    if containers:
        logger.warning(f"found {len(containers)} kube-system containers to stop")
        try:
            runtime.stop_containers(containers)
        except CommandError as e:
            logger.error(f"unable to stop containers {shlex.join(containers)}: {e.message}")

