"""Readiness checks for a kubeadm-managed control plane."""

import time
from collections.abc import Callable

import httpx
from kubernetes import client
from kubernetes.client.rest import ApiException
from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, wait_fixed
from urllib3.exceptions import HTTPError

from minicluster.command.runner import CommandRunner
from minicluster.exceptions import CommandError, WaitTimeoutError
from minicluster.logging_config import get_logger

logger = get_logger(__name__)

PROCESS = "process"
LISTENING = "listening"
SYSTEM_PODS = "system_pods"

RUNNING = "Running"
STOPPED = "Stopped"
ERROR = "Error"

POLL_INTERVAL = 0.5
HEALTHZ_TIMEOUT = 2.0


def remaining(start: float, timeout: float) -> float:
    """Return the seconds left of a deadline that began at ``start``."""
    return max(0.0, timeout - (time.monotonic() - start))


def _poll(check: Callable[[], bool], budget: float, interval: float) -> bool:
    retrying = Retrying(
        stop=stop_after_delay(budget),
        wait=wait_fixed(interval),
        retry=retry_if_result(lambda ok: not ok),
    )
    try:
        return retrying(check)
    except RetryError:
        return False


def api_server_pid(runner: CommandRunner) -> int | None:
    """Return the apiserver's pid, or None when it is not running."""
    try:
        rr = runner.run_cmd(["sudo", "pgrep", "-xnf", "kube-apiserver.*minikube.*"], check=False)
    except CommandError as e:
        logger.debug(f"pgrep failed: {e.message}")
        return None
    out = rr.stdout.strip()
    if rr.exit_code != 0 or not out.isdigit():
        return None
    return int(out)


def api_server_process(
    runner: CommandRunner, start: float, timeout: float, interval: float = POLL_INTERVAL
) -> None:
    """Wait for the apiserver process to appear.

    Raises:
        WaitTimeoutError: If no process appears before the deadline
    """
    logger.info("waiting for apiserver process to appear ...")
    if not _poll(lambda: api_server_pid(runner) is not None, remaining(start, timeout), interval):
        raise WaitTimeoutError(
            f"apiserver process never appeared within {timeout:.0f}s", stage=PROCESS
        )
    elapsed = time.monotonic() - start
    logger.info(f"duration metric: took {elapsed:.3f}s to wait for apiserver process")


def healthz(ip: str, port: int, http: httpx.Client | None = None) -> bool:
    """Return whether the apiserver at ip:port answers /healthz with ok."""
    url = f"https://{ip}:{port}/healthz"
    try:
        if http is not None:
            resp = http.get(url, timeout=HEALTHZ_TIMEOUT)
        else:
            # the apiserver presents a certificate from the profile's private CA
            resp = httpx.get(url, verify=False, timeout=HEALTHZ_TIMEOUT)
    except httpx.HTTPError as e:
        logger.debug(f"{url} not reachable: {e}")
        return False
    logger.debug(f"{url} returned {resp.status_code}: {resp.text.strip()}")
    return resp.status_code == 200 and resp.text.strip() == "ok"


def api_server_is_running(
    ip: str,
    port: int,
    start: float,
    timeout: float,
    interval: float = POLL_INTERVAL,
    http: httpx.Client | None = None,
) -> None:
    """Wait for the apiserver to serve /healthz at ip:port.

    Raises:
        WaitTimeoutError: If the apiserver is not healthy before the deadline
    """
    logger.info(f"waiting for apiserver healthz status at {ip}:{port} ...")
    if not _poll(lambda: healthz(ip, port, http), remaining(start, timeout), interval):
        raise WaitTimeoutError(
            f"apiserver at {ip}:{port} did not become healthy within {timeout:.0f}s",
            stage=LISTENING,
        )


def _pods_running(core: client.CoreV1Api) -> bool:
    try:
        pods = core.list_namespaced_pod("kube-system").items
    except (ApiException, HTTPError, OSError) as e:
        logger.info(f"temporary error listing kube-system pods: {e}")
        return False
    if not pods:
        logger.info("no kube-system pods found yet")
        return False
    pending = [p.metadata.name for p in pods if p.status.phase != "Running"]
    if pending:
        logger.info(f"{len(pending)} kube-system pods not running: {', '.join(pending)}")
        return False
    logger.info(f"{len(pods)} kube-system pods found, all running")
    return True


def system_pods(
    core: client.CoreV1Api, start: float, timeout: float, interval: float = POLL_INTERVAL
) -> None:
    """Wait for every kube-system pod to be Running.

    Raises:
        WaitTimeoutError: If pods are not all running before the deadline
    """
    logger.info("waiting for kube-system pods to appear ...")
    if not _poll(lambda: _pods_running(core), remaining(start, timeout), interval):
        raise WaitTimeoutError(
            f"kube-system pods were not running within {timeout:.0f}s", stage=SYSTEM_PODS
        )


def api_server_status(runner: CommandRunner, ip: str, port: int) -> str:
    """Return Running, Stopped or Error for the apiserver at ip:port."""
    if api_server_pid(runner) is None:
        return STOPPED
    return RUNNING if healthz(ip, port) else ERROR
