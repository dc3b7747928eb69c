"""
Named impairment profiles for netsim.

Profiles are presets of impairment fields loaded from a YAML file::

    profiles:
      poor_cellular:
        description: "Congested 3G link"
        rate_limit_kbit: 768
        delay_ms: 150
        jitter_ms: 40
        loss_pct: 2
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import yaml

from .exceptions import InvalidSpecError, ProfileLoadError, ProfileNotFoundError
from .impairment import ImpairmentSpec

logger = logging.getLogger(__name__)


@dataclass
class NetworkProfile:
    """
    A named impairment preset.

    Attributes:
        name: Unique identifier for the profile.
        description: Human-readable description of network conditions.
        spec: Impairment fields; interface and direction are left unset and
            come from the request the profile is applied with.
    """

    name: str
    description: str = ""
    spec: ImpairmentSpec = field(default_factory=ImpairmentSpec)

    @classmethod
    def from_dict(cls, name: str, data: dict) -> "NetworkProfile":
        """
        Create a NetworkProfile from a dictionary.

        Example:
            >>> profile = NetworkProfile.from_dict("slow", {"delay_ms": 100, "loss_pct": 1.0})
            >>> profile.spec.delay_ms
            100
        """
        return cls(
            name=name,
            description=data.get("description", ""),
            spec=ImpairmentSpec.from_dict(data),
        )

    def to_dict(self) -> dict:
        return {"name": self.name, "description": self.description, **self.spec.to_dict()}


class ProfileStore:
    """Profiles loaded from one or more YAML files."""

    def __init__(self, path: Optional[str] = None):
        self.profiles: dict[str, NetworkProfile] = {}
        if path:
            self.load(path)

    def load(self, path: str) -> None:
        """
        Load profiles from YAML file.

        Args:
            path: Path to YAML file containing profile definitions.

        Raises:
            ProfileLoadError: If file cannot be read or parsed.
        """
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            raise ProfileLoadError(path, "file not found")
        except OSError as e:
            raise ProfileLoadError(path, f"cannot read file: {e}")
        except yaml.YAMLError as e:
            raise ProfileLoadError(path, f"invalid YAML: {e}")

        if not data:
            raise ProfileLoadError(path, "empty file")

        profiles_data = data.get("profiles", {}) if isinstance(data, dict) else {}
        if not profiles_data:
            raise ProfileLoadError(path, "no profiles defined")

        if not isinstance(profiles_data, dict):
            raise ProfileLoadError(path, "'profiles' must be a mapping of names to fields")

        for name, config in profiles_data.items():
            if config is not None and not isinstance(config, dict):
                raise ProfileLoadError(path, f"profile '{name}': expected a mapping of fields")
            try:
                self.profiles[name] = NetworkProfile.from_dict(name, config or {})
            except InvalidSpecError as e:
                raise ProfileLoadError(path, f"profile '{name}': {e}")

        logger.info(f"Loaded {len(self.profiles)} impairment profiles from {path}")

    def get(self, name: str) -> NetworkProfile:
        """
        Raises:
            ProfileNotFoundError: If no profile has this name.
        """
        if name not in self.profiles:
            raise ProfileNotFoundError(name)
        return self.profiles[name]

    def list_profiles(self) -> list[str]:
        return list(self.profiles.keys())
