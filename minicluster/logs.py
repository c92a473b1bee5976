"""Collect the logs of a cluster's host for debugging a failed start."""

import re

from rich.console import Console
from rich.markup import escape

from minicluster.bootstrapper import Bootstrapper
from minicluster.command.runner import CommandRunner
from minicluster.cruntime import KUBE_SYSTEM, ListOptions
from minicluster.cruntime import Manager as RuntimeManager
from minicluster.exceptions import ClusterError, CommandError
from minicluster.logging_config import get_logger

logger = get_logger(__name__)

# Lines that usually explain why a control plane will not come up
ROOT_CAUSE_PATTERN = re.compile(r"^error: |eviction manager: pods.* evicted|unknown flag: --")

IMPORTANT_PODS = ("kube-apiserver", "coredns", "kube-scheduler")

LOOK_BACK_LINES = 200


def is_problem(line: str) -> bool:
    return bool(ROOT_CAUSE_PATTERN.search(line))


def log_commands(runtime: RuntimeManager, bs: Bootstrapper, lines: int = 0) -> dict[str, str]:
    """Return shell commands that print each log source, keyed by title.

    Covers the kubelet and kernel logs, the runtime's own journal and the
    newest container of every important kube-system pod.
    """
    cmds = bs.log_commands(lines)
    cmds.update(runtime.log_commands(lines))
    for pod in IMPORTANT_PODS:
        try:
            ids = runtime.list_containers(ListOptions(name=pod, namespaces=[KUBE_SYSTEM]))
        except CommandError as e:
            logger.error(f"Failed to list containers for {pod!r}: {e.message}")
            continue
        logger.info(f"{len(ids)} containers for {pod}: {ids}")
        if not ids:
            cmds[pod] = f"echo 'No container was found matching \"{pod}\"'"
            continue
        cmds[pod] = runtime.container_logs(ids[0], lines)
    return cmds


def find_problems(runner: CommandRunner, cmds: dict[str, str]) -> dict[str, list[str]]:
    """Run each log command and return the problem lines found per source."""
    problems: dict[str, list[str]] = {}
    for name, cmd in cmds.items():
        logger.info(f"Gathering logs for {name} ...")
        try:
            rr = runner.run_shell(cmd, check=False)
        except CommandError as e:
            logger.warning(f"failed {name}: {cmd}: {e.message}")
            continue
        text = "\n".join(filter(None, (rr.stdout, rr.stderr)))
        found = [line for line in text.splitlines() if is_problem(line)]
        for line in found:
            logger.warning(f"Found {name} problem: {line}")
        if found:
            problems[name] = found
    return problems


def output_problems(console: Console, problems: dict[str, list[str]], max_lines: int) -> None:
    for name, lines in problems.items():
        console.print(f"[red]✗[/red] Problems detected in {escape(name)!r}:")
        for line in lines[-max_lines:]:
            console.print(f"    {escape(line)}")


def output(console: Console, runner: CommandRunner, cmds: dict[str, str]) -> None:
    """Print every log source under a header, sorted by title.

    Raises:
        ClusterError: If any source could not be fetched; the others are still printed
    """
    failed = []
    for name in sorted(cmds):
        console.print(f"==> {escape(name)} <==")
        try:
            rr = runner.run_shell(cmds[name], check=False)
        except CommandError as e:
            logger.error(f"failed: {e.message}")
            failed.append(name)
            continue
        if rr.exit_code != 0:
            logger.warning(f"{name}: {rr.command()} exited {rr.exit_code}")
        console.print(escape("\n".join(filter(None, (rr.stdout, rr.stderr)))), highlight=False)
        console.print()
    if failed:
        raise ClusterError(f"Unable to fetch logs for: {', '.join(failed)}")
