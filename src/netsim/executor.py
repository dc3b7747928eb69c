"""
Command executor for tc/ip invocations.

Runs privileged external commands with a timeout, captures their combined
output and tells real failures apart from benign "already absent" errors.
"""

import logging
import subprocess
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Sequence

from .exceptions import (
    CommandFailedError,
    CommandTimeoutError,
    DeadlineExceededError,
    SudoNotAvailableError,
)

if TYPE_CHECKING:
    from .topology import PrimitiveOp

logger = logging.getLogger(__name__)

# Output fragments of tc/ip failures meaning the target object is already gone
BENIGN_PATTERNS = (
    "Cannot find device",
    "No such file or directory",
    "Cannot delete qdisc with handle of zero",
    "Invalid handle",
    "Cannot find specified qdisc",
)


def is_benign(output: str) -> bool:
    """Return True if a failure output only reports an absent object."""
    return any(pattern in output for pattern in BENIGN_PATTERNS)


@dataclass
class CommandResult:
    """Outcome of one command invocation."""

    argv: list[str]
    returncode: int
    output: str = ""
    benign: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 or self.benign

    @property
    def command(self) -> str:
        return " ".join(self.argv)


class Deadline:
    """
    Time budget shared by a sequence of commands.

    Example:
        >>> deadline = Deadline(60)
        >>> deadline.expired()
        False
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self._expires_at = time.monotonic() + timeout if timeout is not None else None

    def remaining(self) -> Optional[float]:
        """Seconds left, or None for an unbounded deadline."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0


class CommandExecutor:
    """
    Runs tc/ip commands as argument vectors (never through a shell).

    Example:
        >>> executor = CommandExecutor(command_timeout=5)
        >>> executor.run(["tc", "qdisc", "show"]).ok
        True
    """

    def __init__(self, use_sudo: bool = False, command_timeout: float = 10.0):
        """
        Initialize the executor.

        Args:
            use_sudo: Prefix every command with ``sudo -n``.
            command_timeout: Upper bound in seconds for a single command.
        """
        self.use_sudo = use_sudo
        self.command_timeout = command_timeout
        self._sudo_available: Optional[bool] = None

    def check_sudo(self) -> bool:
        """
        Check if sudo is available without password.

        Returns:
            True if passwordless sudo is available.
        """
        if self._sudo_available is not None:
            return self._sudo_available

        try:
            result = subprocess.run(
                ["sudo", "-n", "true"], capture_output=True, timeout=5
            )
            self._sudo_available = result.returncode == 0
        except (OSError, subprocess.SubprocessError):
            self._sudo_available = False

        return self._sudo_available

    def require_sudo(self) -> None:
        """
        Raises:
            SudoNotAvailableError: If sudo is enabled but not usable.
        """
        if self.use_sudo and not self.check_sudo():
            raise SudoNotAvailableError()

    def run(
        self,
        argv: Sequence[str],
        deadline: Optional[Deadline] = None,
        lenient: bool = False,
        check: bool = True,
        stage: Optional[str] = None,
    ) -> CommandResult:
        """
        Execute a command and capture stdout and stderr together.

        Args:
            argv: Program and arguments.
            deadline: Shared budget; the command gets whatever is left,
                capped at command_timeout.
            lenient: Treat "already absent" failures as success.
            check: Raise on failure instead of returning the result.
            stage: Description of the step, used in error messages.

        Returns:
            CommandResult of the invocation.

        Raises:
            DeadlineExceededError: If the deadline expired before starting.
            CommandTimeoutError: If the command ran out of time.
            CommandFailedError: If check is set and the command failed.
        """
        argv = list(argv)
        full_argv = ["sudo", "-n"] + argv if self.use_sudo else argv

        timeout = self.command_timeout
        if deadline is not None:
            remaining = deadline.remaining()
            if remaining is not None:
                if remaining <= 0:
                    raise DeadlineExceededError(argv, stage)
                timeout = min(timeout, remaining)

        logger.debug(f"Running: {' '.join(full_argv)}")

        try:
            proc = subprocess.run(
                full_argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            logger.error(f"Command timed out after {timeout:g}s: {' '.join(argv)}")
            output = e.output if isinstance(e.output, str) else ""
            raise CommandTimeoutError(argv, timeout, output, stage)
        except OSError as e:
            # Binary missing or not executable
            result = CommandResult(argv=argv, returncode=127, output=str(e))
            if check:
                raise CommandFailedError(argv, result.returncode, result.output, stage)
            return result

        result = CommandResult(
            argv=argv, returncode=proc.returncode, output=proc.stdout or ""
        )

        if result.returncode != 0:
            if lenient and is_benign(result.output):
                result.benign = True
                logger.info(
                    f"Ignoring benign failure of '{result.command}': "
                    f"{result.output.strip()}"
                )
            elif check:
                logger.error(f"Command failed: {result.command}: {result.output.strip()}")
                raise CommandFailedError(argv, result.returncode, result.output, stage)

        return result

    def run_op(
        self, op: "PrimitiveOp", deadline: Optional[Deadline] = None
    ) -> CommandResult:
        """Compile a topology operation to argv and execute it."""
        return self.run(
            op.argv(), deadline=deadline, lenient=op.lenient, stage=op.stage
        )
