"""Tests for control-plane readiness checks."""

import time
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest
from kubernetes.client.rest import ApiException

from fakes import FakeCommandRunner

from minicluster.bootstrapper import kverify
from minicluster.exceptions import WaitTimeoutError


def pod(name, phase):
    return SimpleNamespace(metadata=SimpleNamespace(name=name), status=SimpleNamespace(phase=phase))


def core_with(*listings):
    """A CoreV1Api stand-in returning each listing in turn."""
    core = MagicMock()
    core.list_namespaced_pod.side_effect = [
        item if isinstance(item, Exception) else SimpleNamespace(items=item) for item in listings
    ]
    return core


def healthz_client(status=200, body="ok"):
    transport = httpx.MockTransport(lambda req: httpx.Response(status, text=body))
    return httpx.Client(transport=transport)


class TestProcess:
    def test_pid(self):
        runner = FakeCommandRunner()
        runner.set_result("pgrep", stdout="4242\n")
        assert kverify.api_server_pid(runner) == 4242

    def test_no_pid(self):
        runner = FakeCommandRunner()
        runner.fail_on("pgrep", stderr="")
        assert kverify.api_server_pid(runner) is None

    def test_waits_for_process(self):
        runner = FakeCommandRunner()
        runner.fail_on("pgrep", stderr="", times=2)
        runner.set_result("pgrep", stdout="4242\n")
        runner.fail_on("pgrep", stderr="", times=2)

        kverify.api_server_process(runner, time.monotonic(), timeout=5, interval=0.01)

        assert runner.count("pgrep") == 3

    def test_process_timeout(self):
        runner = FakeCommandRunner()
        runner.fail_on("pgrep", stderr="")

        with pytest.raises(WaitTimeoutError) as exc_info:
            kverify.api_server_process(runner, time.monotonic(), timeout=0.05, interval=0.01)
        assert exc_info.value.stage == kverify.PROCESS


class TestHealthz:
    def test_ok(self):
        assert kverify.healthz("127.0.0.1", 8443, healthz_client())

    @pytest.mark.parametrize("status,body", [(200, "not ok"), (500, "ok"), (403, "forbidden")])
    def test_not_ok(self, status, body):
        assert not kverify.healthz("127.0.0.1", 8443, healthz_client(status, body))

    def test_connection_error(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        http = httpx.Client(transport=httpx.MockTransport(refuse))
        assert not kverify.healthz("127.0.0.1", 8443, http)

    def test_healthz_url(self):
        seen = []

        def record(request):
            seen.append(str(request.url))
            return httpx.Response(200, text="ok")

        kverify.healthz("192.168.39.10", 8443, httpx.Client(transport=httpx.MockTransport(record)))

        assert seen == ["https://192.168.39.10:8443/healthz"]

    def test_listening_timeout(self):
        with pytest.raises(WaitTimeoutError) as exc_info:
            kverify.api_server_is_running(
                "127.0.0.1",
                8443,
                time.monotonic(),
                timeout=0.05,
                interval=0.01,
                http=healthz_client(500, "etcd failed"),
            )
        assert exc_info.value.stage == kverify.LISTENING


class TestSystemPods:
    def test_waits_until_all_running(self):
        core = core_with(
            ApiException(status=503),
            [],
            [pod("etcd-minikube", "Running"), pod("coredns-1", "Pending")],
            [pod("etcd-minikube", "Running"), pod("coredns-1", "Running")],
        )

        kverify.system_pods(core, time.monotonic(), timeout=5, interval=0.01)

        assert core.list_namespaced_pod.call_count == 4
        core.list_namespaced_pod.assert_called_with("kube-system")

    def test_timeout_names_stage(self):
        core = MagicMock()
        core.list_namespaced_pod.return_value = SimpleNamespace(items=[pod("x", "Pending")])

        with pytest.raises(WaitTimeoutError) as exc_info:
            kverify.system_pods(core, time.monotonic(), timeout=0.05, interval=0.01)
        assert exc_info.value.stage == kverify.SYSTEM_PODS

    def test_exhausted_deadline_fails(self):
        core = MagicMock()
        core.list_namespaced_pod.return_value = SimpleNamespace(items=[pod("x", "Pending")])

        with pytest.raises(WaitTimeoutError):
            kverify.system_pods(core, time.monotonic() - 10, timeout=1, interval=0.01)


class TestStatus:
    def test_stopped(self):
        runner = FakeCommandRunner()
        runner.fail_on("pgrep", stderr="")
        assert kverify.api_server_status(runner, "127.0.0.1", 8443) == kverify.STOPPED

    def test_running(self, monkeypatch):
        runner = FakeCommandRunner()
        runner.set_result("pgrep", stdout="12\n")
        monkeypatch.setattr(kverify, "healthz", lambda ip, port: True)
        assert kverify.api_server_status(runner, "127.0.0.1", 8443) == kverify.RUNNING

    def test_unhealthy(self, monkeypatch):
        runner = FakeCommandRunner()
        runner.set_result("pgrep", stdout="12\n")
        monkeypatch.setattr(kverify, "healthz", lambda ip, port: False)
        assert kverify.api_server_status(runner, "127.0.0.1", 8443) == kverify.ERROR

    def test_remaining(self):
        assert kverify.remaining(time.monotonic() - 100, 10) == 0.0
        assert 9 < kverify.remaining(time.monotonic(), 10) <= 10
