"""
Custom exceptions for the netsim package.
"""

from typing import Optional, Sequence


class NetSimError(Exception):
    """Base exception for all netsim errors."""

    pass


class InvalidSpecError(NetSimError):
    """
    Raised when impairment parameters fail validation.

    Raised before any command is executed, so the kernel state is untouched.
    """

    pass


class CapabilityUnavailableError(NetSimError):
    """
    Raised when an operation needs a kernel facility this host lacks.

    Incoming shaping redirects ingress traffic through an IFB device and
    therefore requires the ``ifb`` kernel module to be loaded.
    """

    def __init__(self, capability: str, reason: str = ""):
        self.capability = capability
        message = f"Capability unavailable: {capability}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class SudoNotAvailableError(NetSimError):
    """
    Raised when sudo access is required but not available.

    Traffic control requires root privileges to execute tc commands.
    Configure passwordless sudo for tc/ip commands or run as root.
    """

    def __init__(self, message: str = "Sudo access is required for traffic control"):
        super().__init__(message)


class CommandFailedError(NetSimError):
    """
    Raised when a tc/ip command fails to execute.

    Carries the failing command line and the raw combined output of the tool
    so operators can correlate the failure with kernel-level diagnostics.
    """

    def __init__(
        self,
        command: Sequence[str],
        returncode: int,
        output: str = "",
        stage: Optional[str] = None,
    ):
        self.argv = list(command)
        self.command = " ".join(command)
        self.returncode = returncode
        self.output = output
        self.stage = stage
        message = f"Command failed (exit {returncode}): {self.command}"
        if stage:
            message = f"{stage}: {message}"
        if output:
            message += f"\nOutput: {output.strip()}"
        super().__init__(message)


class CommandTimeoutError(CommandFailedError):
    """Raised when a single command exceeds its timeout."""

    def __init__(
        self,
        command: Sequence[str],
        timeout: float,
        output: str = "",
        stage: Optional[str] = None,
    ):
        self.timeout = timeout
        super().__init__(command, -1, output or f"timed out after {timeout:g}s", stage)


class DeadlineExceededError(CommandFailedError):
    """
    Raised when the overall budget of an apply/reset sequence is spent.

    The remaining commands are not started; commands that already ran are
    left in place.
    """

    def __init__(self, command: Sequence[str], stage: Optional[str] = None):
        super().__init__(command, -1, "deadline exceeded before command started", stage)


class InterfaceQueryError(NetSimError):
    """Raised when the host network interfaces cannot be enumerated."""

    pass


class ProfileNotFoundError(NetSimError):
    """
    Raised when a requested impairment profile is not found.

    Check that the profile name is correct and the profiles file
    has been loaded properly.
    """

    def __init__(self, profile_name: str):
        self.profile_name = profile_name
        super().__init__(f"Impairment profile not found: {profile_name}")


class ProfileLoadError(NetSimError):
    """
    Raised when profile configuration file cannot be loaded.

    Check that the file exists, is valid YAML, and has the expected structure.
    """

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        message = f"Failed to load profiles from: {path}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class ConfigError(NetSimError):
    """Raised when an environment setting has a malformed value."""

    pass


class GatewayError(NetSimError):
    """Raised when default gateway mode cannot be enabled."""

    pass
