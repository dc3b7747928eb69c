"""
Runtime settings for netsim, read from the environment.

Values may also come from a ``.env`` file in the working directory.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from .exceptions import ConfigError
from .preflight import DEFAULT_REDIRECT_DEVICE

DEFAULT_LISTEN = "2023"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _bool(env: Mapping[str, str], key: str, default: bool = False) -> bool:
    value = env.get(key)
    if value is None:
        return default
    value = value.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigError(f"{key} must be true or false, got '{value}'")


def _seconds(env: Mapping[str, str], key: str, default: float) -> float:
    value = env.get(key)
    if value is None or not value.strip():
        return default
    try:
        seconds = float(value)
    except ValueError:
        raise ConfigError(f"{key} must be a number of seconds, got '{value}'")
    if seconds <= 0:
        raise ConfigError(f"{key} must be positive, got '{value}'")
    return seconds


def parse_listen(listen: str) -> tuple[str, int]:
    """
    Split a listen address into host and port.

    Accepts "2023", ":2023" and "127.0.0.1:2023"; a missing host means all
    interfaces.

    Raises:
        ConfigError: If the port is not a valid TCP port.
    """
    host, _, port = listen.strip().rpartition(":")
    try:
        port_number = int(port)
    except ValueError:
        raise ConfigError(f"API_LISTEN has no valid port: '{listen}'")
    if not 0 < port_number <= 65535:
        raise ConfigError(f"API_LISTEN port out of range: '{listen}'")
    return host or "0.0.0.0", port_number


@dataclass
class Settings:
    """
    Service settings.

    Environment variables: API_LISTEN, NETSIM_REDIRECT_DEVICE,
    NETSIM_COMMAND_TIMEOUT, NETSIM_REQUEST_TIMEOUT, NETSIM_SHUTDOWN_TIMEOUT,
    NETSIM_PROFILES, NETSIM_USE_SUDO, NETSIM_LOG_LEVEL, DEFAULT_GATEWAY_MODE
    and RECONFIGURE_FIREWALL.
    """

    listen_host: str = "0.0.0.0"
    listen_port: int = int(DEFAULT_LISTEN)
    redirect_device: str = DEFAULT_REDIRECT_DEVICE
    command_timeout: float = 10.0
    request_timeout: float = 60.0
    shutdown_timeout: float = 5.0
    profiles_path: Optional[str] = None
    use_sudo: bool = False
    log_level: str = "INFO"
    gateway_mode: bool = False
    reconfigure_firewall: bool = False

    @property
    def control_plane_port(self) -> int:
        """The API port, exempted from all shaping."""
        return self.listen_port

    @classmethod
    def from_env(
        cls, env: Optional[Mapping[str, str]] = None, dotenv: bool = True
    ) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            env: Mapping to read instead of os.environ.
            dotenv: Load a .env file into os.environ first.

        Raises:
            ConfigError: If a value is malformed.
        """
        if env is None:
            if dotenv:
                load_dotenv()
            env = os.environ

        host, port = parse_listen(env.get("API_LISTEN") or DEFAULT_LISTEN)
        log_level = (env.get("NETSIM_LOG_LEVEL") or "INFO").strip().upper()
        if log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigError(f"NETSIM_LOG_LEVEL is not a logging level: '{log_level}'")

        return cls(
            listen_host=host,
            listen_port=port,
            redirect_device=env.get("NETSIM_REDIRECT_DEVICE") or DEFAULT_REDIRECT_DEVICE,
            command_timeout=_seconds(env, "NETSIM_COMMAND_TIMEOUT", 10.0),
            request_timeout=_seconds(env, "NETSIM_REQUEST_TIMEOUT", 60.0),
            shutdown_timeout=_seconds(env, "NETSIM_SHUTDOWN_TIMEOUT", 5.0),
            profiles_path=env.get("NETSIM_PROFILES") or None,
            use_sudo=_bool(env, "NETSIM_USE_SUDO"),
            log_level=log_level,
            gateway_mode=_bool(env, "DEFAULT_GATEWAY_MODE"),
            reconfigure_firewall=_bool(env, "RECONFIGURE_FIREWALL"),
        )
