"""Docker engine, reached by the kubelet through dockershim."""

from minicluster.cruntime.base import ALL, PAUSED, ListOptions, Manager
from minicluster.logging_config import get_logger

logger = get_logger(__name__)


class Docker(Manager):
    runtime_type = "docker"
    unit = "docker"
    binary = "docker"
    default_socket = "/var/run/dockershim.sock"

    def name(self) -> str:
        return "Docker"

    def load_image(self, path: str) -> None:
        logger.info(f"Loading image: {path}")
        self.runner.run_cmd(["sudo", "docker", "load", "-i", path])

    def list_containers(self, opts: ListOptions) -> list[str]:
        args = ["sudo", "docker", "ps"]
        if opts.state == ALL:
            args.append("-a")
        elif opts.state == PAUSED:
            args += ["--filter", "status=paused"]
        # dockershim names containers k8s_<container>_<pod>_<namespace>_<uid>_<attempt>
        pattern = f"k8s_{opts.name or '.*'}_"
        if opts.namespaces:
            pattern += f".*_({'|'.join(opts.namespaces)})_"
        args += [f"--filter=name={pattern}", "--format={{.ID}}"]
        rr = self.runner.run_cmd(args)
        return [line.strip() for line in rr.stdout.splitlines() if line.strip()]

    def stop_containers(self, ids: list[str]) -> None:
        if not ids:
            return
        logger.info(f"Stopping containers: {ids}")
        self.runner.run_cmd(["sudo", "docker", "stop", *ids])

    def kill_containers(self, ids: list[str]) -> None:
        if not ids:
            return
        logger.info(f"Killing containers: {ids}")
        self.runner.run_cmd(["sudo", "docker", "kill", *ids])

    def kubelet_options(self) -> dict[str, str]:
        return {"container-runtime": "docker"}

    def cgroup_driver(self) -> str:
        rr = self.runner.run_cmd(["docker", "info", "--format", "{{.CgroupDriver}}"])
        return rr.stdout.strip()

    def container_logs(self, container_id: str, lines: int = 0) -> str:
        tail = f" --tail {lines}" if lines else ""
        return f"docker logs{tail} {container_id}"
