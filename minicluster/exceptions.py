"""Custom exceptions for minicluster."""


class ClusterError(Exception):
    """Base exception for all minicluster errors."""

    def __init__(self, message: str, details: str = None):
        """Initialize the exception.

        Args:
            message: Main error message
            details: Additional details, remediation hints or captured output
        """
        self.message = message
        self.details = details
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message.

        Returns:
            Formatted error message with details
        """
        if self.details:
            return f"{self.message}\n\nDetails: {self.details}"
        return self.message


class ConfigurationError(ClusterError):
    """Exception raised for invalid cluster or Kubernetes configuration."""

    pass


class UnsupportedRuntimeError(ConfigurationError):
    """Exception raised when the container runtime name is not recognized."""

    pass


class DriverError(ClusterError):
    """Exception raised for driver registry errors."""

    pass


class DuplicateDriverError(DriverError):
    """Exception raised when a driver name is registered twice."""

    pass


class DriverNotFoundError(DriverError):
    """Exception raised when a driver name is not registered."""

    pass


class DriverUnavailableError(DriverError):
    """Exception raised when the selected driver cannot be used."""

    def __init__(self, message: str, details: str = None, fix: str = "", doc: str = ""):
        self.fix = fix
        self.doc = doc
        super().__init__(message, details)


class RuntimeUnavailableError(ClusterError):
    """Exception raised when a container runtime cannot be located on the host."""

    pass


class CommandError(ClusterError):
    """Exception raised when a command exits non-zero or cannot be executed."""

    def __init__(
        self,
        message: str,
        details: str = None,
        args: list[str] | None = None,
        exit_code: int = -1,
        stdout: str = "",
        stderr: str = "",
    ):
        self.command_args = list(args or [])
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(message, details)

    def output(self) -> str:
        """Return the captured stdout and stderr of the failed command."""
        out = ""
        if self.stdout:
            out += f"-- stdout --\n{self.stdout}\n"
        if self.stderr:
            out += f"-- stderr --\n{self.stderr}\n"
        return out


class CertificateError(ClusterError):
    """Exception raised when certificates cannot be generated or installed."""

    pass


class CNIError(ClusterError):
    """Exception raised when a pod network cannot be configured."""

    pass


class BootstrapError(ClusterError):
    """Exception raised by the kubeadm bootstrapper."""

    pass


class KubeadmError(BootstrapError):
    """Exception raised when a kubeadm invocation fails."""

    def __init__(self, message: str, details: str = None, phase: str = ""):
        self.phase = phase
        super().__init__(message, details)


class WaitTimeoutError(BootstrapError):
    """Exception raised when a readiness stage does not complete in time."""

    def __init__(self, message: str, details: str = None, stage: str = ""):
        self.stage = stage
        super().__init__(message, details)


class UnsupportedOperationError(BootstrapError):
    """Exception raised when the installed kubeadm lacks a requested operation."""

    pass
