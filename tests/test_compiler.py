"""Tests for RuleCompiler orchestration."""

import threading

import pytest

from netsim import (
    CapabilityUnavailableError,
    CommandFailedError,
    Direction,
    Distribution,
    ImpairmentSpec,
    InvalidSpecError,
    RuleCompiler,
    ShapingState,
)

CONTROL_PORT = 2023


def _spec(direction=Direction.OUTGOING, **kwargs):
    return ImpairmentSpec(interface="eth0", direction=direction, **kwargs)


class TestApply:
    """Tests for RuleCompiler.apply."""

    def test_outgoing_end_to_end(self, fake_tc, executor, no_ifb):
        """Test the full command sequence on a clean interface."""
        compiler = RuleCompiler(executor, no_ifb, CONTROL_PORT)

        compiler.apply(_spec(rate_limit_kbit=5000, delay_ms=100, loss_pct=1))

        assert fake_tc.commands == [
            "tc qdisc del dev eth0 root",
            "tc qdisc del dev eth0 ingress",
            "tc qdisc add dev eth0 root handle 1: htb default 20",
            "tc class add dev eth0 parent 1: classid 1:10 htb rate 10000000kbit ceil 10000000kbit",
            "tc class add dev eth0 parent 1: classid 1:20 htb rate 5000kbit ceil 5000kbit",
            "tc qdisc add dev eth0 parent 1:20 handle 20: netem delay 100ms loss 1%",
            "tc filter add dev eth0 parent 1: protocol ip prio 1 u32 match ip sport 2023 0xffff flowid 1:10",
            "tc filter add dev eth0 parent 1: protocol all prio 2 u32 match u32 0 0 flowid 1:20",
        ]
        assert compiler.state("eth0") is ShapingState.APPLIED

    def test_incoming_applies_on_ifb(self, fake_tc, compiler):
        compiler.apply(_spec(Direction.INCOMING, delay_ms=30))

        commands = fake_tc.commands
        assert commands[:3] == [
            "tc qdisc del dev eth0 root",
            "tc qdisc del dev eth0 ingress",
            "tc qdisc del dev ifb0 root",
        ]
        assert commands[3] == "ip link set dev ifb0 up"
        assert commands[4] == "tc qdisc add dev eth0 handle ffff: ingress"
        assert "match ip dport 2023 0xffff flowid 1:10" in commands[-2]
        assert ("ifb0", "root") in fake_tc.qdiscs

    def test_noop_spec_runs_nothing(self, fake_tc, compiler):
        """Test that a spec without impairments never touches the kernel."""
        compiler.apply(_spec(delay_ms=0))

        assert fake_tc.calls == []
        assert compiler.state("eth0") is ShapingState.CLEAN

    def test_missing_interface(self, fake_tc, compiler):
        with pytest.raises(InvalidSpecError):
            compiler.apply(ImpairmentSpec(direction=Direction.OUTGOING, delay_ms=10))

        assert fake_tc.calls == []

    def test_missing_direction(self, fake_tc, compiler):
        with pytest.raises(InvalidSpecError):
            compiler.apply(ImpairmentSpec(interface="eth0", delay_ms=10))

        assert fake_tc.calls == []

    def test_incoming_without_ifb(self, fake_tc, executor, no_ifb):
        """Test that incoming shaping without IFB fails before any command."""
        compiler = RuleCompiler(executor, no_ifb, CONTROL_PORT)

        with pytest.raises(CapabilityUnavailableError):
            compiler.apply(_spec(Direction.INCOMING, rate_limit_kbit=100))

        assert fake_tc.calls == []

    def test_spec_port_takes_precedence(self, fake_tc, compiler):
        compiler.apply(_spec(rate_limit_kbit=100, control_plane_port=8080))

        assert any("sport 8080" in command for command in fake_tc.commands)

    def test_distribution_forces_jitter(self, fake_tc, compiler):
        compiler.apply(_spec(delay_ms=100, distribution=Distribution.NORMAL))

        netem = next(c for c in fake_tc.commands if " netem " in c)
        assert netem.endswith("netem delay 100ms 1ms distribution normal")

    def test_failure_names_stage_and_aborts(self, fake_tc, compiler):
        """Test that the first failing operation stops the sequence."""
        fake_tc.fail("netem", "Error: Specified qdisc kind is unknown.\n")

        with pytest.raises(CommandFailedError) as exc_info:
            compiler.apply(_spec(rate_limit_kbit=100, delay_ms=10))

        error = exc_info.value
        assert error.stage == "add netem qdisc on eth0"
        assert "Specified qdisc kind is unknown" in str(error)
        assert not any("filter" in command for command in fake_tc.commands)
        assert compiler.state("eth0") is ShapingState.APPLYING

    def test_reapply_starts_from_clean(self, fake_tc, compiler):
        """Test that applying twice tears the first topology down."""
        compiler.apply(_spec(rate_limit_kbit=100))
        fake_tc.calls.clear()

        compiler.apply(_spec(rate_limit_kbit=200))

        assert fake_tc.commands[0] == "tc qdisc del dev eth0 root"
        assert "rate 200kbit" in " ".join(fake_tc.commands)
        assert ("eth0", "root") in fake_tc.qdiscs

    def test_partial_failure_repaired_by_next_apply(self, fake_tc, compiler):
        fake_tc.fail("classid 1:20", "RTNETLINK answers: Invalid argument\n")
        with pytest.raises(CommandFailedError):
            compiler.apply(_spec(rate_limit_kbit=100))

        fake_tc.failures.clear()
        compiler.apply(_spec(rate_limit_kbit=100))

        assert compiler.state("eth0") is ShapingState.APPLIED


class TestReset:
    """Tests for RuleCompiler.reset."""

    def test_reset_unconfigured_interface(self, fake_tc, compiler):
        compiler.reset("eth0")

        assert fake_tc.commands == [
            "tc qdisc del dev eth0 root",
            "tc qdisc del dev eth0 ingress",
            "tc qdisc del dev ifb0 root",
        ]

    def test_reset_twice_is_idempotent(self, fake_tc, compiler):
        """Test that a second reset never fails."""
        compiler.apply(_spec(Direction.INCOMING, rate_limit_kbit=100))

        compiler.reset("eth0")
        compiler.reset("eth0")

        assert fake_tc.qdiscs == set()
        assert compiler.state("eth0") is ShapingState.CLEAN

    def test_reset_missing_device_is_benign(self, fake_tc, compiler):
        fake_tc.fail("dev eth7", 'Cannot find device "eth7"\n', returncode=1)

        compiler.reset("eth7")

    def test_reset_real_failure(self, fake_tc, compiler):
        fake_tc.fail("del dev eth0 root", "RTNETLINK answers: Operation not permitted\n")

        with pytest.raises(CommandFailedError):
            compiler.reset("eth0")

    def test_reset_requires_interface(self, fake_tc, compiler):
        with pytest.raises(InvalidSpecError):
            compiler.reset("")

        assert fake_tc.calls == []


class TestConcurrency:
    """Tests for serialization of kernel-mutating sequences."""

    def test_reset_waits_for_running_apply(self, mocker, fake_tc, compiler):
        """Test that a second sequence never interleaves with the first."""
        release = threading.Event()
        blocked = threading.Event()

        def run(argv, **kwargs):
            if threading.current_thread().name == "apply" and not blocked.is_set():
                blocked.set()
                release.wait(5)
            return fake_tc(argv, **kwargs)

        mocker.patch("netsim.executor.subprocess.run", side_effect=run)

        applying = threading.Thread(
            name="apply", target=compiler.apply, args=(_spec(rate_limit_kbit=100, delay_ms=10),)
        )
        resetting = threading.Thread(name="reset", target=compiler.reset, args=("eth1",))
        applying.start()
        assert blocked.wait(5)
        resetting.start()
        resetting.join(0.2)

        assert resetting.is_alive()
        assert not any("dev eth1" in command for command in fake_tc.commands)

        release.set()
        applying.join(5)
        resetting.join(5)

        commands = fake_tc.commands
        last_eth0 = max(i for i, c in enumerate(commands) if "dev eth0" in c)
        first_eth1 = min(i for i, c in enumerate(commands) if "dev eth1" in c)
        assert last_eth0 < first_eth1
        assert compiler.state("eth0") is ShapingState.APPLIED

    def test_clean_interfaces_are_not_tracked(self, fake_tc, compiler):
        for name in ("foo1", "foo2", "foo3"):
            compiler.reset(name)
        compiler.apply(_spec(rate_limit_kbit=100))
        compiler.reset("eth0")

        assert compiler._states == {}
        assert compiler.state("foo1") is ShapingState.CLEAN


def test_status(fake_tc, compiler):
    compiler.apply(_spec(rate_limit_kbit=100))

    status = compiler.status("eth0")

    assert status["interface"] == "eth0"
    assert status["state"] == "applied"
    assert status["redirect_device"] == "ifb0"
    assert fake_tc.commands[-2:] == [
        "tc qdisc show dev eth0",
        "tc qdisc show dev ifb0",
    ]
