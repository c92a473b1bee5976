"""Tests for the command runners and their helpers."""

import subprocess
from unittest.mock import MagicMock, patch

import paramiko
import pytest

from fakes import FakeCommandRunner

from minicluster.command import (
    ContainerRunner,
    FileAsset,
    LocalRunner,
    MemoryAsset,
    RunResult,
    SSHRunner,
    SSHTarget,
)
from minicluster.command.container import container_ip, host_port_binding
from minicluster.exceptions import CommandError


class TestRunResult:
    def test_output_sections(self):
        rr = RunResult(["kubeadm", "init"], stdout="ok", stderr="warn", exit_code=1)
        assert rr.command() == "kubeadm init"
        assert rr.output() == "-- stdout --\nok\n-- stderr --\nwarn\n"

    def test_to_error(self):
        err = RunResult(["false"], stderr="boom", exit_code=1).to_error()
        assert err.message == "false: exit status 1"
        assert err.exit_code == 1
        assert "boom" in err.details

    def test_empty_output(self):
        assert RunResult(["true"]).output() == ""


class TestAssets:
    def test_memory_asset_for_target(self):
        asset = MemoryAsset.for_target("data", "/etc/kubernetes/addons/x.yaml", "0640")
        assert asset.target_dir == "/etc/kubernetes/addons"
        assert asset.target_name == "x.yaml"
        assert asset.target_path == "/etc/kubernetes/addons/x.yaml"
        assert asset.read() == b"data"
        assert asset.length() == 4

    def test_file_asset(self, tmp_path):
        src = tmp_path / "kubelet"
        src.write_bytes(b"\x7fELF")
        asset = FileAsset(
            target_dir="/usr/bin", target_name="kubelet", permissions="0755", source=src
        )
        assert asset.read() == b"\x7fELF"
        assert asset.length() == 4


class TestLocalRunner:
    def test_captures_stdout(self):
        assert LocalRunner().run_cmd(["echo", "hello"]).stdout == "hello\n"

    def test_stdin(self):
        assert LocalRunner().run_cmd(["cat"], stdin=b"manifest").stdout == "manifest"

    def test_failure_without_check(self):
        rr = LocalRunner().run_cmd(["false"], check=False)
        assert rr.exit_code == 1

    def test_failure_with_check(self):
        with pytest.raises(CommandError) as exc_info:
            LocalRunner().run_shell("echo nope >&2; exit 3")
        assert exc_info.value.exit_code == 3
        assert "nope" in exc_info.value.details

    def test_missing_binary(self):
        with pytest.raises(CommandError) as exc_info:
            LocalRunner().run_cmd(["definitely-not-a-binary-minicluster"])
        assert exc_info.value.exit_code == 127

    def test_timeout(self):
        with pytest.raises(CommandError) as exc_info:
            LocalRunner().run_cmd(["sleep", "5"], timeout=0.1)
        assert "timed out" in exc_info.value.message

    def test_succeeds(self):
        assert LocalRunner().succeeds(["true"])
        assert not LocalRunner().succeeds(["false"])
        assert not LocalRunner().succeeds(["definitely-not-a-binary-minicluster"])


class TestFakeRunner:
    def test_rules_apply_latest_first(self):
        runner = FakeCommandRunner()
        runner.set_result("docker", stdout="generic")
        runner.set_result("docker info", stdout="specific", times=1)

        assert runner.run_cmd(["docker", "info"]).stdout == "specific"
        assert runner.run_cmd(["docker", "info"]).stdout == "generic"

    def test_systemctl_state(self):
        runner = FakeCommandRunner()
        assert not runner.succeeds(["systemctl", "is-active", "--quiet", "service", "crio"])

        runner.run_cmd(["sudo", "systemctl", "restart", "crio"])

        assert runner.succeeds(["systemctl", "is-active", "--quiet", "service", "crio"])

    def test_files(self):
        runner = FakeCommandRunner(files={"/etc/a"})
        runner.copy(MemoryAsset.for_target("x", "/var/lib/b/c"))

        assert runner.succeeds(["sudo", "test", "-f", "/etc/a"])
        assert runner.succeeds(["sudo", "test", "-d", "/var/lib/b"])
        assert not runner.succeeds(["sudo", "test", "-f", "/etc/missing"])

    def test_handler(self):
        runner = FakeCommandRunner()
        runner.add_handler(lambda args: RunResult(args, stdout="42") if "pgrep" in args else None)
        assert runner.run_cmd(["pgrep", "kubelet"]).stdout == "42"
        assert runner.run_cmd(["true"]).stdout == ""


class TestContainerHelpers:
    def test_host_port_binding(self, fake_runner):
        fake_runner.set_result("port minikube 8443/tcp", stdout="0.0.0.0:32771\n:::32771\n")

        assert host_port_binding(fake_runner, "minikube", 8443) == 32771
        assert fake_runner.commands[-1] == ["docker", "port", "minikube", "8443/tcp"]

    def test_podman_binding(self, fake_runner):
        fake_runner.set_result("podman port", stdout="127.0.0.1:40022\n")
        assert host_port_binding(fake_runner, "minikube", 22, oci_binary="podman") == 40022

    def test_no_binding(self, fake_runner):
        with pytest.raises(CommandError):
            host_port_binding(fake_runner, "minikube", 8443)

    def test_container_ip(self, fake_runner):
        fake_runner.set_result("container inspect", stdout="172.17.0.2\n")
        assert container_ip(fake_runner, "minikube") == "172.17.0.2"

    def test_container_without_ip(self, fake_runner):
        with pytest.raises(CommandError) as exc_info:
            container_ip(fake_runner, "minikube")
        assert "minikube" in exc_info.value.message


class TestContainerRunner:
    def test_exec_args(self):
        done = subprocess.CompletedProcess(args=[], returncode=0, stdout=b"ok", stderr=b"")
        with patch("minicluster.command.container.subprocess.run", return_value=done) as run:
            rr = ContainerRunner("minikube").run_cmd(["kubectl", "apply", "-f", "-"], stdin=b"x")

        assert rr.stdout == "ok"
        assert run.call_args.args[0] == [
            "docker",
            "exec",
            "--privileged",
            "-i",
            "minikube",
            "kubectl",
            "apply",
            "-f",
            "-",
        ]

    def test_missing_engine(self):
        with patch("minicluster.command.container.subprocess.run", side_effect=FileNotFoundError):
            with pytest.raises(CommandError) as exc_info:
                ContainerRunner("minikube", oci_binary="podman").run_cmd(["true"])
        assert "podman not found" in exc_info.value.message


class TestSSHRunner:
    @pytest.fixture
    def ssh_client(self):
        with patch("minicluster.command.ssh.paramiko.SSHClient") as cls:
            client = cls.return_value
            stdout, stderr = MagicMock(), MagicMock()
            stdout.read.return_value = b"active\n"
            stdout.channel.recv_exit_status.return_value = 0
            stderr.read.return_value = b""
            client.exec_command.return_value = (MagicMock(), stdout, stderr)
            yield client

    def test_run_cmd(self, ssh_client):
        runner = SSHRunner(SSHTarget(address="192.168.39.10"))

        rr = runner.run_cmd(["sudo", "systemctl", "is-active", "kubelet"])

        assert rr.stdout == "active\n"
        assert ssh_client.exec_command.call_args.args[0] == "sudo systemctl is-active kubelet"
        assert ssh_client.connect.call_args.kwargs["username"] == "docker"

    def test_connection_is_reused(self, ssh_client):
        runner = SSHRunner(SSHTarget(address="192.168.39.10"))
        runner.run_cmd(["true"])
        runner.run_cmd(["true"])
        assert ssh_client.connect.call_count == 1

    def test_connect_failure(self, ssh_client):
        ssh_client.connect.side_effect = paramiko.SSHException("Authentication failed")

        with pytest.raises(CommandError) as exc_info:
            SSHRunner(SSHTarget(address="192.168.39.10")).run_cmd(["true"])
        assert "192.168.39.10:22" in exc_info.value.message

    def test_copy_installs_with_permissions(self, ssh_client):
        runner = SSHRunner(SSHTarget(address="192.168.39.10"))

        runner.copy(MemoryAsset.for_target("conf", "/etc/cni/net.d/1-k8s.conf", "0644"))

        script = ssh_client.exec_command.call_args.args[0]
        assert "sudo install -m 0644" in script
        assert "/etc/cni/net.d/1-k8s.conf" in script
        ssh_client.open_sftp.return_value.file.assert_called_once()
