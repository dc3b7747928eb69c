"""Pytest configuration and fixtures for netsim tests."""

import subprocess

import pytest

from netsim import CommandExecutor, HostCapabilities, RuleCompiler

CONTROL_PORT = 2023


class FakeTc:
    """
    Stands in for tc/ip behind subprocess.run.

    Tracks which root/ingress qdiscs exist so deletions of absent qdiscs fail
    with the same messages the kernel gives.
    """

    def __init__(self):
        self.calls: list[list[str]] = []
        self.qdiscs: set[tuple[str, str]] = set()
        self.failures: list[tuple[str, int, str]] = []

    def fail(self, fragment: str, output: str, returncode: int = 2) -> None:
        """Make every command containing fragment fail with output."""
        self.failures.append((fragment, returncode, output))

    @property
    def commands(self) -> list[str]:
        return [" ".join(argv) for argv in self.calls]

    def __call__(self, argv, **kwargs):
        self.calls.append(list(argv))
        command = " ".join(argv)

        for fragment, returncode, output in self.failures:
            if fragment in command:
                return subprocess.CompletedProcess(argv, returncode, stdout=output)

        if argv[:3] == ["tc", "qdisc", "add"]:
            device = argv[4]
            if "root" in argv:
                self.qdiscs.add((device, "root"))
            elif "ingress" in argv:
                self.qdiscs.add((device, "ingress"))
        elif argv[:3] == ["tc", "qdisc", "del"]:
            key = (argv[4], argv[5])
            if key not in self.qdiscs:
                if key[1] == "root":
                    message = "Error: Cannot delete qdisc with handle of zero.\n"
                else:
                    message = "Error: Cannot find specified qdisc on specified device.\n"
                return subprocess.CompletedProcess(argv, 2, stdout=message)
            self.qdiscs.discard(key)

        return subprocess.CompletedProcess(argv, 0, stdout="")


@pytest.fixture
def fake_tc(mocker):
    """Patch subprocess.run in the executor with a FakeTc."""
    fake = FakeTc()
    mocker.patch("netsim.executor.subprocess.run", side_effect=fake)
    return fake


@pytest.fixture
def executor():
    return CommandExecutor(command_timeout=5)


@pytest.fixture
def capabilities():
    """Host with the ifb module loaded."""
    return HostCapabilities(redirect_available=True, redirect_device="ifb0")


@pytest.fixture
def no_ifb():
    return HostCapabilities(redirect_available=False)


@pytest.fixture
def compiler(executor, capabilities):
    return RuleCompiler(executor, capabilities, CONTROL_PORT)


@pytest.fixture
def sample_profiles_yaml(tmp_path):
    """Create a temporary profiles YAML file."""
    content = """
profiles:
  test_profile:
    description: "Test profile"
    rate_limit_kbit: 1000
    delay_ms: 100
    jitter_ms: 20
    loss_pct: 1.0

  ideal:
    description: "No impairments"
"""
    profiles_file = tmp_path / "profiles.yaml"
    profiles_file.write_text(content)
    return str(profiles_file)
