"""Main CLI entry point for cluster lifecycle management."""

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from minicluster import cni, cruntime, driver, logs, out
from minicluster.bootstrapper import Bootstrapper
from minicluster.command import ContainerRunner, LocalRunner, SSHRunner, SSHTarget
from minicluster.command.container import container_ip
from minicluster.command.runner import CommandRunner
from minicluster.constants import DEFAULT_CONTAINER_RUNTIME, DEFAULT_PROFILE, DEFAULT_WAIT_TIMEOUT
from minicluster.exceptions import (
    ClusterError,
    CommandError,
    ConfigurationError,
    DriverUnavailableError,
)
from minicluster.logging_config import get_logger, setup_logging
from minicluster.models.cluster import ClusterConfig, ExtraOption, KubernetesConfig
from minicluster.models.node import Node
from minicluster.profile import ProfileStore
from minicluster.registry import Registry, default_registry
from minicluster.registry.registry import DriverState
from minicluster.version import resolve_kubernetes_version

app = typer.Typer(
    name="minicluster",
    help="Run a local Kubernetes cluster on a VM, a container or this host",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)

LOCALHOST = "127.0.0.1"


# Global callback to set up logging
@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: str | None = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Global options for all commands."""
    log_path = Path(log_file) if log_file else None
    setup_logging(verbose=verbose, log_file=log_path)
    logger.debug("Logging initialized")


def _fail(e: ClusterError) -> typer.Exit:
    logger.error(f"{type(e).__name__}: {e.message}")
    console.print(f"[red]Error:[/red] {e.message}")
    if e.details:
        console.print(f"\n{e.details}")
    return typer.Exit(code=1)


def pick_driver(registry: Registry, requested: str) -> tuple[DriverState, list[DriverState]]:
    """Choose the driver for a start.

    Raises:
        DriverNotFoundError: If the requested driver is not registered
        DriverUnavailableError: If no installed driver is usable
    """
    candidates = registry.choices()
    if requested and requested not in {ds.name for ds in candidates}:
        candidates = [registry.status(requested), *candidates]
    pick, alternates = Registry.choose(requested, candidates)
    if pick is None:
        raise DriverUnavailableError(
            "Unable to pick a driver: no supported driver is installed and healthy",
            f"Registered drivers: {', '.join(d.name for d in registry.list())}",
        )
    return pick, alternates


def node_runner(cc: ClusterConfig, node: Node) -> CommandRunner:
    """Return the runner reaching a node through its driver's transport."""
    if driver.bare_metal(cc.driver):
        return LocalRunner()
    name = driver.machine_name(cc.name, node.name, node.control_plane)
    if driver.is_kic(cc.driver):
        return ContainerRunner(name, oci_binary=cc.driver)
    key = Path(cc.ssh_key_path).expanduser() if cc.ssh_key_path else None
    return SSHRunner(SSHTarget(address=node.ip, username=cc.ssh_user, key_path=key))


def resolve_node_ip(driver_name: str, profile: str, requested: str) -> str:
    """Return the address the control plane advertises.

    Raises:
        ClusterError: If a VM driver is used without an address
        CommandError: If a node container cannot be inspected
    """
    if requested:
        return requested
    if driver.bare_metal(driver_name):
        return LOCALHOST
    if driver.is_kic(driver_name):
        return container_ip(LocalRunner(), driver.machine_name(profile), driver_name)
    raise ClusterError(
        f"The '{driver_name}' driver needs the address of a running VM",
        "Pass --node-ip with the VM's address",
    )


def build_config(
    profile: str,
    ds: DriverState,
    existing: ClusterConfig | None,
    kubernetes_version: str,
    container_runtime: str,
    cni_name: str,
    extra_config: list[str],
    ssh_user: str,
    ssh_key: str,
    node_ip: str = "",
) -> ClusterConfig:
    """Assemble the cluster configuration of a start.

    Raises:
        ConfigurationError: On invalid versions, runtimes, addresses or extra options
    """
    old_k8s = existing.kubernetes_config if existing else None
    version = resolve_kubernetes_version(
        kubernetes_version, old_k8s.kubernetes_version if old_k8s else ""
    )
    hints = driver.flag_defaults(ds.name)
    options = [ExtraOption.parse(raw) for raw in [*hints.extra_options, *extra_config]]
    try:
        k8s = KubernetesConfig(
            kubernetes_version=version,
            cluster_name=profile,
            node_name=profile,
            container_runtime=container_runtime
            or (old_k8s.container_runtime if old_k8s else DEFAULT_CONTAINER_RUNTIME),
            cni=cni_name if cni_name is not None else (old_k8s.cni if old_k8s else ""),
            node_ip=node_ip,
            extra_options=options,
            should_load_cached_images=hints.cache_images,
        )
        cp = Node(name=profile, ip=node_ip, kubernetes_version=version, control_plane=True)
        return ClusterConfig(
            name=profile,
            driver=ds.name,
            ssh_user=ssh_user,
            ssh_key_path=ssh_key,
            kubernetes_config=k8s,
            nodes=[cp],
        )
    except ValueError as e:
        raise ConfigurationError("Invalid cluster configuration", str(e))


@app.command()
def version() -> None:
    """Show version information."""
    from minicluster import __version__

    typer.echo(f"minicluster version {__version__}")


@app.command()
def start(
    profile: str = typer.Option(DEFAULT_PROFILE, "--profile", "-p", help="Cluster profile name"),
    driver_name: str = typer.Option("", "--driver", "-d", help="Host driver, auto if empty"),
    kubernetes_version: str = typer.Option("", "--kubernetes-version", help="Kubernetes version"),
    container_runtime: str = typer.Option(
        "", "--container-runtime", help="docker, containerd or crio"
    ),
    cni_name: str | None = typer.Option(
        None, "--cni", help="auto, false, bridge, kindnet, flannel or a manifest path"
    ),
    extra_config: list[str] = typer.Option(
        [], "--extra-config", "-e", help="component.key=value override, repeatable"
    ),
    node_ip: str = typer.Option("", "--node-ip", help="Address of the host running the node"),
    ssh_user: str = typer.Option("docker", "--ssh-user", help="SSH user for VM drivers"),
    ssh_key: str = typer.Option("", "--ssh-key", help="SSH private key for VM drivers"),
    force: bool = typer.Option(False, "--force", help="Use the driver even if it looks broken"),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Wait for the cluster to be healthy"),
    wait_timeout: float = typer.Option(
        DEFAULT_WAIT_TIMEOUT, "--wait-timeout", help="Seconds to wait for the cluster"
    ),
) -> None:
    """
    Start a local Kubernetes cluster.

    The host for the node must already be running: a VM reachable over SSH,
    a node container, or this machine with the 'none' driver.

    Examples:
        minicluster start --driver=none

        minicluster start -p dev --container-runtime=containerd --cni=bridge
    """
    store = ProfileStore()
    try:
        existing = store.load_optional(profile)
        registry = default_registry()
        ds, alternates = pick_driver(registry, driver_name or (existing.driver if existing else ""))
        Registry.validate(ds, existing.driver if existing else None, force=force)
        out.step("Using the {driver} driver", driver=ds.name)
        if alternates:
            logger.info(f"other usable drivers: {', '.join(a.name for a in alternates)}")

        cc = build_config(
            profile,
            ds,
            existing,
            kubernetes_version,
            container_runtime,
            cni_name,
            extra_config,
            ssh_user,
            ssh_key,
            node_ip=resolve_node_ip(ds.name, profile, node_ip),
        )
        cp = cc.primary_control_plane()
        # Settle the pod network before anything touches the host
        network = cni.new(cc)
        store.save(cc)

        runner = node_runner(cc, cp)
        k8s = cc.kubernetes_config
        runtime = cruntime.new(k8s.container_runtime, runner, k8s.cri_socket)
        out.step("Preparing {runtime} on {ip}", runtime=runtime.name(), ip=cp.ip)
        runtime.available()
        runtime.enable(disable_others=not driver.bare_metal(cc.driver))

        bs = Bootstrapper(runner, store.cert_dir(profile))
        out.step("Preparing Kubernetes {version}", version=k8s.kubernetes_version)
        bs.update_cluster(cc)
        bs.setup_certs(k8s, cp)
        bs.start_cluster(cc)

        out.step("Configuring {cni} networking", cni=str(network))
        network.apply(runner, [])

        if wait:
            bs.wait_for_cluster(cc, wait_timeout)
    except ClusterError as e:
        raise _fail(e)

    out.success("Done! Cluster '{profile}' is running", profile=profile)


@app.command()
def delete(
    profile: str = typer.Option(DEFAULT_PROFILE, "--profile", "-p", help="Cluster profile name"),
) -> None:
    """Reset the cluster's Kubernetes state and remove its profile."""
    store = ProfileStore()
    if not store.exists(profile):
        known = ", ".join(store.list_profiles()) or "none"
        error = ConfigurationError(f"Profile '{profile}' not found", f"Known profiles: {known}")
        raise _fail(error)

    # A profile that no longer loads is still removed
    try:
        cc = store.load(profile)
        runner = node_runner(cc, cc.primary_control_plane())
        Bootstrapper(runner, store.cert_dir(profile)).delete_cluster(cc.kubernetes_config)
    except ClusterError as e:
        out.warning("Failed to reset Kubernetes: {error}", error=e.message)

    store.delete(profile)
    out.success("Removed all traces of the '{profile}' cluster", profile=profile)


@app.command()
def status(
    profile: str = typer.Option(DEFAULT_PROFILE, "--profile", "-p", help="Cluster profile name"),
) -> None:
    """Show the kubelet and API server status of a cluster."""
    store = ProfileStore()
    try:
        cc = store.load(profile)
        cp = cc.primary_control_plane()
    except ClusterError as e:
        raise _fail(e)

    ip, port = cp.ip, cp.port
    try:
        bs = Bootstrapper(node_runner(cc, cp), store.cert_dir(profile))
        kubelet = bs.kubelet_status()
        ip, port = bs.endpoint(cc, cp)
        apiserver = bs.api_server_status(ip, port)
    except CommandError as e:
        logger.warning(f"status probe failed: {e.message}")
        kubelet = apiserver = "Error"
    except ClusterError as e:
        raise _fail(e)

    table = Table(title=f"Cluster {profile}")
    table.add_column("Component", style="cyan")
    table.add_column("Status", style="green")
    table.add_row("driver", cc.driver)
    table.add_row("kubelet", kubelet)
    table.add_row("apiserver", f"{apiserver} ({ip}:{port})")
    console.print(table)

    if apiserver != "Running":
        raise typer.Exit(code=2)


@app.command("logs")
def logs_command(
    profile: str = typer.Option(DEFAULT_PROFILE, "--profile", "-p", help="Cluster profile name"),
    length: int = typer.Option(50, "--length", "-n", help="Number of lines back to show"),
    problems: bool = typer.Option(
        False, "--problems", help="Only show log entries that point to known problems"
    ),
) -> None:
    """
    Show the logs of a cluster's host, for debugging minicluster rather than workloads.

    Prints the kubelet, kernel and container runtime logs plus the newest
    apiserver, coredns and scheduler containers.
    """
    store = ProfileStore()
    try:
        cc = store.load(profile)
        runner = node_runner(cc, cc.primary_control_plane())
        k8s = cc.kubernetes_config
        runtime = cruntime.new(k8s.container_runtime, runner, k8s.cri_socket)
        bs = Bootstrapper(runner, store.cert_dir(profile))
        if problems:
            found = logs.find_problems(runner, logs.log_commands(runtime, bs, logs.LOOK_BACK_LINES))
            if not found:
                console.print("[green]No problems detected[/green]")
            logs.output_problems(console, found, length)
            return
        logs.output(console, runner, logs.log_commands(runtime, bs, length))
    except ClusterError as e:
        raise _fail(e)


@app.command()
def drivers() -> None:
    """List the registered host drivers and whether they are usable."""
    registry = default_registry()

    table = Table(title="Host drivers")
    table.add_column("Driver", style="cyan")
    table.add_column("Priority", style="magenta")
    table.add_column("Status", style="green")
    table.add_column("Hint", style="yellow")

    for definition in registry.list():
        ds = registry.status(definition.name)
        st = ds.state
        if ds.usable:
            status_text = "✓ Usable"
        elif st.installed:
            status_text = "! Unhealthy"
        else:
            status_text = "✗ Not installed"
        table.add_row(ds.name, ds.priority.name, status_text, st.error or "")

    console.print(table)


if __name__ == "__main__":
    app()
