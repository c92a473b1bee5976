"""Tests for collecting and scanning node logs."""

import pytest
from rich.console import Console

from fakes import FakeCommandRunner

from minicluster import logs
from minicluster.bootstrapper import Bootstrapper
from minicluster.cruntime import Docker
from minicluster.exceptions import ClusterError, CommandError


@pytest.fixture
def host():
    return FakeCommandRunner()


@pytest.fixture
def sources(host, tmp_path):
    return Docker(host), Bootstrapper(host, tmp_path / "certs")


def _console():
    return Console(record=True, width=200)


@pytest.mark.parametrize(
    "line,expected",
    [
        ("error: unable to load kubeconfig", True),
        ("E0105 eviction manager: pods kube-proxy-x evicted", True),
        ("Error: unknown flag: --cni-bin-dir", True),
        ("I0105 Started kubelet", False),
        ("  error: indented lines are not root causes", False),
    ],
)
def test_is_problem(line, expected):
    assert logs.is_problem(line) is expected


class TestLogCommands:
    def test_sources(self, host, sources):
        """Test that host, runtime and pod sources are all covered."""
        host.set_result("name=k8s_kube-apiserver_", stdout="abc123\ndef456\n")

        cmds = logs.log_commands(*sources, lines=50)

        assert cmds["kubelet"] == "sudo journalctl -u kubelet -n 50"
        assert cmds["Docker"] == "sudo journalctl -u docker -n 50"
        assert cmds["kube-apiserver"] == "docker logs --tail 50 abc123"
        assert cmds["coredns"] == "echo 'No container was found matching \"coredns\"'"
        assert "dmesg" in cmds

    def test_pod_listing_failure_is_skipped(self, host, sources):
        host.fail_on("name=k8s_coredns_", stderr="Cannot connect to the Docker daemon")

        cmds = logs.log_commands(*sources, lines=10)

        assert "coredns" not in cmds
        assert "kube-scheduler" in cmds


class TestFindProblems:
    def test_collects_problem_lines_per_source(self, host):
        host.set_result("journalctl -u kubelet", stdout="ok\nerror: unknown flag: --foo\n")
        host.set_result("dmesg", stderr="error: overlay mount failed", exit_code=1)

        problems = logs.find_problems(
            host, {"kubelet": "sudo journalctl -u kubelet", "dmesg": "sudo dmesg", "x": "true"}
        )

        assert problems == {
            "kubelet": ["error: unknown flag: --foo"],
            "dmesg": ["error: overlay mount failed"],
        }

    def test_unreachable_source_is_skipped(self, host):
        def unreachable(args):
            if "journalctl" in args[-1]:
                raise CommandError("ssh: connection reset", args=args)
            return None

        host.add_handler(unreachable)

        assert logs.find_problems(host, {"kubelet": "sudo journalctl -u kubelet"}) == {}

    def test_output_keeps_newest_lines(self):
        console = _console()
        logs.output_problems(console, {"kubelet": ["error: one", "error: two", "error: three"]}, 2)

        text = console.export_text()
        assert "Problems detected in 'kubelet'" in text
        assert "error: one" not in text
        assert "error: three" in text


class TestOutput:
    def test_sources_are_printed_sorted(self, host):
        host.set_result("journalctl", stdout="kubelet up")
        host.set_result("dmesg", stdout="[bracketed] kernel line")
        console = _console()

        logs.output(console, host, {"kubelet": "sudo journalctl", "dmesg": "sudo dmesg"})

        text = console.export_text()
        assert text.index("==> dmesg <==") < text.index("==> kubelet <==")
        assert "[bracketed] kernel line" in text
        assert "kubelet up" in text

    def test_unfetchable_source_raises_after_the_rest(self, host):
        def unreachable(args):
            if "dmesg" in args[-1]:
                raise CommandError("ssh: connection reset", args=args)
            return None

        host.add_handler(unreachable)
        host.set_result("journalctl", stdout="kubelet up")
        console = _console()

        with pytest.raises(ClusterError) as exc_info:
            logs.output(console, host, {"kubelet": "sudo journalctl", "dmesg": "sudo dmesg"})

        assert "dmesg" in exc_info.value.message
        assert "kubelet up" in console.export_text()
