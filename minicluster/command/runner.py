"""Command execution contract shared by every host transport."""

import os
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from minicluster.exceptions import CommandError


@dataclass
class RunResult:
    """Outcome of one command execution."""

    args: list[str]
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0

    def command(self) -> str:
        """Return the command line as a shell-quoted string."""
        return shlex.join(self.args)

    def output(self) -> str:
        """Return stdout and stderr combined for diagnostics."""
        out = ""
        if self.stdout:
            out += f"-- stdout --\n{self.stdout}\n"
        if self.stderr:
            out += f"-- stderr --\n{self.stderr}\n"
        return out

    def to_error(self, message: str | None = None) -> CommandError:
        """Build a CommandError describing this (failed) result."""
        return CommandError(
            message or f"{self.command()}: exit status {self.exit_code}",
            self.output() or None,
            args=self.args,
            exit_code=self.exit_code,
            stdout=self.stdout,
            stderr=self.stderr,
        )


@dataclass
class CopyableFile:
    """A file to be placed on the target host."""

    target_dir: str
    target_name: str
    permissions: str = "0644"

    @property
    def target_path(self) -> str:
        return str(PurePosixPath(self.target_dir) / self.target_name)

    def read(self) -> bytes:
        raise NotImplementedError


@dataclass
class MemoryAsset(CopyableFile):
    """File content held in memory."""

    content: bytes = field(default=b"", repr=False)

    @classmethod
    def for_target(
        cls, content: bytes | str, target: str, permissions: str = "0644"
    ) -> "MemoryAsset":
        """Create an asset from content and a full target path."""
        if isinstance(content, str):
            content = content.encode()
        path = PurePosixPath(target)
        return cls(
            target_dir=str(path.parent),
            target_name=path.name,
            permissions=permissions,
            content=content,
        )

    def read(self) -> bytes:
        return self.content

    def length(self) -> int:
        return len(self.content)


@dataclass
class FileAsset(CopyableFile):
    """File content read from the local filesystem."""

    source: Path = field(default_factory=Path)

    def read(self) -> bytes:
        return Path(self.source).read_bytes()

    def length(self) -> int:
        return os.path.getsize(self.source)


class CommandRunner(ABC):
    """Runs commands and copies files on one host.

    Implementations run locally, over SSH, or inside a container; callers
    never depend on which.
    """

    @abstractmethod
    def run_cmd(
        self,
        args: list[str],
        stdin: bytes | None = None,
        timeout: float | None = None,
        check: bool = True,
    ) -> RunResult:
        """Run a command and capture its output.

        Args:
            args: Command argv
            stdin: Optional bytes fed to the command's standard input
            timeout: Optional deadline in seconds
            check: Raise CommandError when the exit status is non-zero

        Returns:
            RunResult with captured stdout, stderr and exit code

        Raises:
            CommandError: If the command fails and check is True, or the
                transport cannot execute it
        """

    @abstractmethod
    def copy(self, asset: CopyableFile) -> None:
        """Copy a file to the host with the asset's permissions.

        Raises:
            CommandError: If the file cannot be written
        """

    def run_shell(self, script: str, timeout: float | None = None, check: bool = True) -> RunResult:
        """Run a shell snippet through /bin/bash -c."""
        return self.run_cmd(["/bin/bash", "-c", script], timeout=timeout, check=check)

    def succeeds(self, args: list[str], timeout: float | None = None) -> bool:
        """Return whether a command exits zero, treating transport errors as failure."""
        try:
            return self.run_cmd(args, timeout=timeout, check=False).exit_code == 0
        except CommandError:
            return False
