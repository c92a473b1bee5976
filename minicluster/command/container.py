"""Command runner for container-backend nodes (docker or podman exec)."""

import os
import shutil
import subprocess
import tempfile

from minicluster.command.runner import CommandRunner, CopyableFile, RunResult
from minicluster.exceptions import CommandError
from minicluster.logging_config import get_logger

logger = get_logger(__name__)

DOCKER = "docker"
PODMAN = "podman"


class ContainerRunner(CommandRunner):
    """Runs commands inside a node container through the OCI CLI."""

    def __init__(self, container: str, oci_binary: str = DOCKER):
        self.container = container
        self.oci_binary = oci_binary

    def _oci(self, args: list[str], stdin: bytes | None = None, timeout: float | None = None):
        try:
            return subprocess.run(
                [self.oci_binary, *args], input=stdin, capture_output=True, timeout=timeout
            )
        except FileNotFoundError:
            raise CommandError(
                f"{self.oci_binary} not found in PATH",
                f"Install {self.oci_binary} or choose a different driver",
            )
        except subprocess.TimeoutExpired:
            raise CommandError(
                f"{self.oci_binary} {' '.join(args)}: timed out after {timeout}s", args=args
            )

    def run_cmd(
        self,
        args: list[str],
        stdin: bytes | None = None,
        timeout: float | None = None,
        check: bool = True,
    ) -> RunResult:
        rr = RunResult(args=list(args))
        # privileged so the node can remount and load modules
        oci_args = ["exec", "--privileged"]
        if stdin is not None:
            oci_args.append("-i")
        oci_args.append(self.container)
        oci_args.extend(args)

        logger.info(f"Run ({self.oci_binary} {self.container}): {rr.command()}")
        proc = self._oci(oci_args, stdin=stdin, timeout=timeout)
        rr.stdout = proc.stdout.decode(errors="replace")
        rr.stderr = proc.stderr.decode(errors="replace")
        rr.exit_code = proc.returncode

        if check and rr.exit_code != 0:
            raise rr.to_error()
        return rr

    def copy(self, asset: CopyableFile) -> None:
        dst = asset.target_path
        logger.info(f"{self.oci_binary} cp: --> {dst} ({asset.permissions})")
        tmp_dir = tempfile.mkdtemp(prefix="minicluster-asset-")
        try:
            tmp_path = os.path.join(tmp_dir, asset.target_name)
            with open(tmp_path, "wb") as f:
                f.write(asset.read())
            os.chmod(tmp_path, int(asset.permissions, 8))

            self.run_cmd(["sudo", "mkdir", "-p", asset.target_dir])
            # podman cp has no -a
            cp_args = ["cp", tmp_path, f"{self.container}:{dst}"]
            if self.oci_binary == DOCKER:
                cp_args.insert(1, "-a")
            proc = self._oci(cp_args)
            if proc.returncode != 0:
                raise CommandError(
                    f"{self.oci_binary} copy {dst} into {self.container} failed",
                    proc.stderr.decode(errors="replace"),
                    args=cp_args,
                    exit_code=proc.returncode,
                )
            self.run_cmd(["sudo", "chmod", asset.permissions, dst])
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)


def host_port_binding(
    runner: CommandRunner, container: str, container_port: int, oci_binary: str = DOCKER
) -> int:
    """Return the host port a node container publishes for a container port.

    Args:
        runner: Runner bound to the machine running the OCI engine
        container: Node container name
        container_port: Port inside the container
        oci_binary: docker or podman

    Raises:
        CommandError: If the binding cannot be determined
    """
    rr = runner.run_cmd([oci_binary, "port", container, f"{container_port}/tcp"])
    # e.g. "127.0.0.1:32771", possibly followed by an IPv6 line
    for line in rr.stdout.splitlines():
        _, _, port = line.strip().rpartition(":")
        if port.isdigit():
            return int(port)
    raise CommandError(
        f"No host binding for port {container_port} of {container}",
        rr.stdout or None,
        args=rr.args,
    )


def container_ip(runner: CommandRunner, container: str, oci_binary: str = DOCKER) -> str:
    """Return the IPv4 address of a node container on its network.

    Raises:
        CommandError: If the container cannot be inspected or has no address
    """
    fmt = "{{range .NetworkSettings.Networks}}{{.IPAddress}}{{end}}"
    rr = runner.run_cmd([oci_binary, "container", "inspect", "-f", fmt, container])
    ip = rr.stdout.strip()
    if not ip:
        raise CommandError(f"Container {container} has no IP address", args=rr.args)
    return ip
