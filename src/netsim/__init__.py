"""
netsim - HTTP-controlled Linux tc/netem network impairment.

Compiles declarative impairment parameters (rate limit, delay, jitter, loss,
corruption, duplication, reordering) into an HTB + netem topology on a host
interface. Incoming traffic is shaped through an IFB redirect device, and
the service's own API port is always exempted.

Example:
    >>> from netsim import RuleCompiler, CommandExecutor, HostCapabilities
    >>> from netsim import ImpairmentSpec, Direction
    >>> compiler = RuleCompiler(CommandExecutor(), HostCapabilities(), 2023)
    >>> compiler.apply(ImpairmentSpec(interface="eth0",
    ...                               direction=Direction.OUTGOING,
    ...                               rate_limit_kbit=5000, delay_ms=100))
    >>> compiler.reset("eth0")
"""

__version__ = "0.1.0"

from .compiler import RuleCompiler, ShapingState
from .exceptions import (
    CapabilityUnavailableError,
    CommandFailedError,
    CommandTimeoutError,
    ConfigError,
    DeadlineExceededError,
    GatewayError,
    InterfaceQueryError,
    InvalidSpecError,
    NetSimError,
    ProfileLoadError,
    ProfileNotFoundError,
    SudoNotAvailableError,
)
from .executor import CommandExecutor, CommandResult, Deadline
from .impairment import Direction, Distribution, ImpairmentSpec
from .inventory import HostInterface, list_usable_interfaces
from .lifecycle import LifecycleManager
from .preflight import HostCapabilities, PreflightCheck
from .profile import NetworkProfile, ProfileStore
from .topology import netem_args, plan, teardown_plan

__all__ = [
    # Core classes
    "RuleCompiler",
    "ShapingState",
    "CommandExecutor",
    "CommandResult",
    "Deadline",
    "ImpairmentSpec",
    "Direction",
    "Distribution",
    "HostCapabilities",
    "HostInterface",
    "LifecycleManager",
    "NetworkProfile",
    "ProfileStore",
    "PreflightCheck",
    # Exceptions
    "NetSimError",
    "InvalidSpecError",
    "CapabilityUnavailableError",
    "CommandFailedError",
    "CommandTimeoutError",
    "DeadlineExceededError",
    "InterfaceQueryError",
    "ProfileLoadError",
    "ProfileNotFoundError",
    "SudoNotAvailableError",
    "ConfigError",
    "GatewayError",
    # Functions
    "list_usable_interfaces",
    "plan",
    "teardown_plan",
    "netem_args",
    # Version
    "__version__",
]
