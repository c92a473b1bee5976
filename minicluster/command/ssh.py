"""Command runner for VM hosts reachable over SSH."""

import shlex
import socket
import uuid
from dataclasses import dataclass
from pathlib import Path

import paramiko

from minicluster.command.runner import CommandRunner, CopyableFile, RunResult
from minicluster.constants import SSH_PORT
from minicluster.exceptions import CommandError
from minicluster.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class SSHTarget:
    """Connection parameters for one host."""

    address: str
    port: int = SSH_PORT
    username: str = "docker"
    key_path: Path | None = None
    connect_timeout: float = 30.0


class SSHRunner(CommandRunner):
    """Runs commands over a single cached paramiko connection."""

    def __init__(self, target: SSHTarget):
        self.target = target
        self._client: paramiko.SSHClient | None = None

    def _load_key(self) -> paramiko.PKey | None:
        if not self.target.key_path:
            return None
        key_path = str(self.target.key_path)
        for key_cls in (paramiko.Ed25519Key, paramiko.RSAKey, paramiko.ECDSAKey):
            try:
                return key_cls.from_private_key_file(key_path)
            except paramiko.SSHException:
                continue
        raise CommandError(
            f"Unsupported private key format for {key_path}",
            "Expected an ed25519, RSA or ECDSA private key",
        )

    def _connect(self) -> paramiko.SSHClient:
        if self._client is not None:
            transport = self._client.get_transport()
            if transport is not None and transport.is_active():
                return self._client
            self.close()

        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=self.target.address,
                port=self.target.port,
                username=self.target.username,
                pkey=self._load_key(),
                look_for_keys=False,
                allow_agent=False,
                timeout=self.target.connect_timeout,
            )
        except (paramiko.SSHException, socket.error) as e:
            raise CommandError(
                f"Unable to connect to {self.target.address}:{self.target.port}: {e}",
                "Check that the host is running and the SSH key is authorized",
            )
        self._client = client
        return client

    def close(self) -> None:
        """Close the underlying SSH connection."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def run_cmd(
        self,
        args: list[str],
        stdin: bytes | None = None,
        timeout: float | None = None,
        check: bool = True,
    ) -> RunResult:
        rr = RunResult(args=list(args))
        logger.info(f"Run (ssh {self.target.address}): {rr.command()}")
        client = self._connect()
        try:
            chan_in, chan_out, chan_err = client.exec_command(rr.command(), timeout=timeout)
            if stdin is not None:
                chan_in.write(stdin)
                chan_in.channel.shutdown_write()
            rr.stdout = chan_out.read().decode("utf-8", errors="replace")
            rr.stderr = chan_err.read().decode("utf-8", errors="replace")
            rr.exit_code = chan_out.channel.recv_exit_status()
        except (paramiko.SSHException, socket.timeout) as e:
            raise CommandError(f"{rr.command()}: {e}", args=rr.args)

        if check and rr.exit_code != 0:
            raise rr.to_error()
        return rr

    def copy(self, asset: CopyableFile) -> None:
        dst = asset.target_path
        tmp_remote = f"/tmp/.minicluster-{uuid.uuid4().hex}"
        logger.info(f"scp: --> {dst} ({asset.permissions})")
        client = self._connect()
        try:
            sftp = client.open_sftp()
            try:
                with sftp.file(tmp_remote, "wb") as f:
                    f.write(asset.read())
            finally:
                sftp.close()
        except (paramiko.SSHException, OSError) as e:
            raise CommandError(f"Failed to upload {dst}: {e}")

        script = (
            f"sudo mkdir -p {shlex.quote(asset.target_dir)} && "
            f"sudo install -m {asset.permissions} {tmp_remote} {shlex.quote(dst)}; "
            f"rc=$?; rm -f {tmp_remote}; exit $rc"
        )
        self.run_shell(script)
