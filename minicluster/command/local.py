"""Command runner for the local machine (bare-host driver and host tooling)."""

import os
import subprocess
import tempfile
import time

from minicluster.command.runner import CommandRunner, CopyableFile, RunResult
from minicluster.exceptions import CommandError
from minicluster.logging_config import get_logger

logger = get_logger(__name__)


class LocalRunner(CommandRunner):
    """Runs commands with subprocess on the machine running minicluster."""

    def run_cmd(
        self,
        args: list[str],
        stdin: bytes | None = None,
        timeout: float | None = None,
        check: bool = True,
    ) -> RunResult:
        rr = RunResult(args=list(args))
        logger.info(f"Run: {rr.command()}")
        start = time.monotonic()
        try:
            proc = subprocess.run(
                args,
                input=stdin,
                capture_output=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandError(
                f"{rr.command()}: timed out after {timeout}s",
                args=rr.args,
                stdout=(e.stdout or b"").decode(errors="replace"),
                stderr=(e.stderr or b"").decode(errors="replace"),
            )
        except FileNotFoundError as e:
            raise CommandError(f"{rr.command()}: {e}", args=rr.args, exit_code=127)

        rr.stdout = proc.stdout.decode(errors="replace")
        rr.stderr = proc.stderr.decode(errors="replace")
        rr.exit_code = proc.returncode

        elapsed = time.monotonic() - start
        if elapsed > 1:
            logger.info(f"Completed: {rr.command()}: ({elapsed:.3f}s)")

        if check and rr.exit_code != 0:
            raise rr.to_error()
        return rr

    def copy(self, asset: CopyableFile) -> None:
        dst = asset.target_path
        logger.info(f"local copy: --> {dst} ({asset.permissions})")
        with tempfile.NamedTemporaryFile(delete=False, prefix="minicluster-asset-") as tf:
            tf.write(asset.read())
            tmp_name = tf.name
        try:
            self.run_cmd(["sudo", "mkdir", "-p", asset.target_dir])
            self.run_cmd(["sudo", "cp", "-a", tmp_name, dst])
            self.run_cmd(["sudo", "chmod", asset.permissions, dst])
        finally:
            os.remove(tmp_name)
