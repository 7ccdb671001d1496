"""Pytest configuration and fixtures for netshape tests."""

import subprocess

import pytest

from netshape import ShapingConfig, ShapingSpec


@pytest.fixture
def rate_config():
    """Bandwidth limit on destination port 80."""
    return ShapingConfig(
        src="none",
        dst="*:80",
        shaping=ShapingSpec(bandwidth_limit="rate 0.5mbit burst 10kb limit 10k"),
        exclude_ports=(22,),
    )


@pytest.fixture
def netem_config():
    """Jittered delay and loss on everything from 10.0.0.0/8."""
    return ShapingConfig(
        src="10.0.0.0/8:*",
        shaping=ShapingSpec(impairment="delay 100ms 10ms 25% loss 0.1%"),
    )


@pytest.fixture
def full_config():
    """Both stages, both selectors."""
    return ShapingConfig(
        interface="enp0s3",
        ifb_device="ifb1",
        src="192.168.1.10:5000",
        dst="*:443",
        shaping=ShapingSpec(
            bandwidth_limit="rate 1mbit burst 32kbit latency 400ms",
            impairment="delay 50ms 5ms",
        ),
        exclude_ports=(22, 8080),
    )


@pytest.fixture
def sample_profiles_yaml(tmp_path):
    """Create a temporary profiles YAML file."""
    content = """
default_interface: "eth1"
exclude_ports: [22, 2222]

profiles:
  slow_web:
    description: "Half a megabit towards web servers"
    rate: "rate 0.5mbit burst 10kb limit 10k"
    to: "*:80"

  lossy_lan:
    description: "Jitter and loss from the LAN"
    netem: "delay 100ms 10ms 25% loss 0.1%"
    from: "10.0.0.0/8:*"
    reorder: true
"""
    profiles_file = tmp_path / "profiles.yaml"
    profiles_file.write_text(content)
    return str(profiles_file)


@pytest.fixture
def fake_run(mocker):
    """
    Patch subprocess.run in the shaper with a recorder.

    Returns the mock. Set ``fake_run.outputs`` to a dict mapping a command
    prefix (tuple) to stdout, and ``fake_run.failures`` to a set of command
    prefixes that exit non-zero.
    """
    mock = mocker.patch("netshape.shaper.subprocess.run")
    mock.outputs = {}
    mock.failures = set()

    def side_effect(cmd, **kwargs):
        args = tuple(cmd[2:] if cmd[:2] == ["sudo", "-n"] else cmd)
        for prefix in mock.failures:
            if args[: len(prefix)] == prefix:
                return subprocess.CompletedProcess(cmd, 2, "", "RTNETLINK answers: Invalid argument")
        stdout = ""
        for prefix, output in mock.outputs.items():
            if args[: len(prefix)] == prefix:
                stdout = output
        return subprocess.CompletedProcess(cmd, 0, stdout, "")

    mock.side_effect = side_effect
    mock.commands = lambda: ran(mock)
    return mock


def ran(mock) -> list[list[str]]:
    """Commands passed to a patched subprocess.run, sudo prefix stripped."""
    commands = []
    for call in mock.call_args_list:
        cmd = call.args[0]
        commands.append(cmd[2:] if cmd[:2] == ["sudo", "-n"] else cmd)
    return commands
