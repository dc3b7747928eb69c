"""
Preflight checks for netsim.

Diagnoses whether the host can run traffic control at all (root, iproute2,
kernel modules) and derives the HostCapabilities the rule compiler is built
with.
"""

import logging
import os
from dataclasses import asdict, dataclass
from typing import Optional

from .executor import CommandExecutor

logger = logging.getLogger(__name__)

DEFAULT_REDIRECT_DEVICE = "ifb0"
PROC_MODULES = "/proc/modules"


@dataclass(frozen=True)
class HostCapabilities:
    """
    Kernel facilities detected once at startup.

    Attributes:
        redirect_available: True if the ``ifb`` module is loaded, which
            incoming (ingress) shaping requires.
        redirect_device: IFB device that ingress traffic is redirected to.
    """

    redirect_available: bool = False
    redirect_device: str = DEFAULT_REDIRECT_DEVICE


@dataclass
class PreflightCheck:
    """Result of a single prerequisite check."""

    name: str
    required: bool
    status: bool = False
    message: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


def loaded_modules(path: str = PROC_MODULES) -> set[str]:
    """Return the names of loaded kernel modules, empty if unreadable."""
    try:
        with open(path) as f:
            return {line.split(" ", 1)[0] for line in f if line.strip()}
    except OSError as e:
        logger.warning(f"Cannot read {path}: {e}")
        return set()


def _check_root(executor: CommandExecutor) -> PreflightCheck:
    check = PreflightCheck(name="Root Permission", required=True)
    if not executor.use_sudo:
        uid = str(os.geteuid())
    else:
        result = executor.run(["id", "-u"], check=False)
        if result.returncode != 0:
            check.message = f"Failed to check UID: {result.output.strip()}"
            return check
        uid = result.output.strip()

    if uid == "0":
        check.status = True
        check.message = "OK (uid=0)"
    else:
        check.message = f"Must run as root (uid=0), but was (uid={uid})"
    return check


def _check_binary(executor: CommandExecutor, binary: str) -> PreflightCheck:
    check = PreflightCheck(name=f"{binary} (iproute2)", required=True)
    result = executor.run([binary, "-V"], check=False)
    if result.returncode == 0:
        first_line = result.output.strip().splitlines()[0] if result.output.strip() else "OK"
        check.status = True
        check.message = f"OK ({first_line})"
    else:
        check.message = (
            f"Binary '{binary}' not found. (Install with 'apt-get install iproute2')"
        )
    return check


def _check_module(modules: set[str], module: str, required: bool) -> PreflightCheck:
    check = PreflightCheck(name=f"Kernel Module '{module}'", required=required)
    if module in modules:
        check.status = True
        check.message = f"OK (Module '{module}' is loaded)"
    elif required:
        check.message = f"Module '{module}' not loaded. This is *required*."
    else:
        check.message = (
            f"Module '{module}' not loaded. "
            "Ingress (incoming) traffic shaping will be disabled."
        )
    return check


def run_preflight_checks(
    executor: CommandExecutor, modules_path: str = PROC_MODULES
) -> list[PreflightCheck]:
    """
    Run all prerequisite checks.

    Args:
        executor: Executor used to probe the tc and ip binaries.
        modules_path: Location of the loaded kernel module list.

    Returns:
        One PreflightCheck per prerequisite, in a fixed order.
    """
    modules = loaded_modules(modules_path)
    return [
        _check_root(executor),
        _check_binary(executor, "tc"),
        _check_binary(executor, "ip"),
        _check_module(modules, "ifb", required=False),
        _check_module(modules, "sch_htb", required=True),
        _check_module(modules, "sch_netem", required=True),
    ]


def preflight_ok(checks: list[PreflightCheck]) -> bool:
    """True if every required check passed."""
    return all(check.status for check in checks if check.required)


def log_checks(checks: list[PreflightCheck]) -> None:
    for check in checks:
        status = "OK" if check.status else "FAILED"
        line = f"  - Check: {check.name:<26} Status: {status:<7} Message: {check.message}"
        if not check.status and check.required:
            logger.error(line)
        elif not check.status:
            logger.warning(line)
        else:
            logger.info(line)


def detect_capabilities(
    checks: list[PreflightCheck], redirect_device: Optional[str] = None
) -> HostCapabilities:
    """Derive HostCapabilities from preflight results."""
    redirect = any(
        check.name == "Kernel Module 'ifb'" and check.status for check in checks
    )
    return HostCapabilities(
        redirect_available=redirect,
        redirect_device=redirect_device or DEFAULT_REDIRECT_DEVICE,
    )
