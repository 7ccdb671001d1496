"""Tests for the netshape command line."""

import pytest

from netshape.cli import build_parser, config_from_args, main
from netshape.exceptions import ProfileNotFoundError


@pytest.fixture(autouse=True)
def no_dotenv(mocker, monkeypatch):
    """Keep .env files and the caller's environment out of the tests."""
    mocker.patch("netshape.cli.load_dotenv")
    for var in ("NETSHAPE_INTERFACE", "NETSHAPE_IFB_DEVICE", "NETSHAPE_PROFILES"):
        monkeypatch.delenv(var, raising=False)


def parse(*argv):
    return build_parser().parse_args(list(argv))


class TestConfigFromArgs:
    """Tests for turning arguments into a ShapingConfig."""

    def test_defaults(self):
        config = config_from_args(parse("apply"))

        assert config.interface == "eth0"
        assert config.src == "none"
        assert config.dst == "none"
        assert config.exclude_ports == (22,)
        assert config.shaping.reorder_on_jitter is False

    def test_all_options(self):
        config = config_from_args(parse(
            "apply", "-i", "eth1", "--ifb", "ifb3",
            "--rate", "rate 1mbit burst 32kbit latency 400ms",
            "--netem", "delay 100ms 10ms 25% loss 0.1%",
            "--from", "10.0.0.0/8:*", "--to", "*:80",
            "--allow-reorder", "--exclude-ports", "22,8080", "--buffer-size", "200",
        ))

        assert config.interface == "eth1"
        assert config.ifb_device == "ifb3"
        assert config.shaping.bandwidth_limit == "rate 1mbit burst 32kbit latency 400ms"
        assert config.shaping.impairment == "delay 100ms 10ms 25% loss 0.1%"
        assert config.shaping.reorder_on_jitter is True
        assert config.src == "10.0.0.0/8:*"
        assert config.dst == "*:80"
        assert config.exclude_ports == (22, 8080)
        assert config.buffer_size == 200

    def test_empty_exclude_ports(self):
        config = config_from_args(parse("apply", "--exclude-ports", ""))

        assert config.exclude_ports == ()

    def test_environment_interface(self, monkeypatch):
        monkeypatch.setenv("NETSHAPE_INTERFACE", "wlan0")

        assert config_from_args(parse("apply")).interface == "wlan0"

    def test_profile_with_override(self, sample_profiles_yaml):
        config = config_from_args(parse(
            "apply", "--profiles", sample_profiles_yaml, "-p", "slow_web", "--to", "*:8080",
        ))

        assert config.interface == "eth1"
        assert config.exclude_ports == (22, 2222)
        assert config.shaping.bandwidth_limit == "rate 0.5mbit burst 10kb limit 10k"
        assert config.dst == "*:8080"

    def test_unknown_profile_names_file(self, sample_profiles_yaml):
        with pytest.raises(ProfileNotFoundError) as exc_info:
            config_from_args(parse("apply", "--profiles", sample_profiles_yaml, "-p", "missing"))

        assert exc_info.value.path == sample_profiles_yaml
        assert sample_profiles_yaml in str(exc_info.value)

    def test_profile_without_file(self):
        with pytest.raises(ProfileNotFoundError) as exc_info:
            config_from_args(parse("apply", "-p", "slow_web"))

        assert exc_info.value.path is None
        assert "--profiles" in str(exc_info.value)


class TestMain:
    """Tests for the main entry point."""

    def test_dry_run_apply_prints_commands(self, capsys, fake_run):
        code = main([
            "apply", "--dry-run", "--rate", "rate 0.5mbit burst 10kb limit 10k", "--to", "*:80",
        ])

        out = capsys.readouterr().out
        assert code == 0
        assert "tc qdisc add dev eth0 parent 1:3 handle 10: tbf rate 0.5mbit" in out
        assert "tc qdisc add dev ifb0 parent 2:3 handle 20: tbf" in out
        assert "match ip dport 80 0xffff flowid 1:3" in out
        fake_run.assert_not_called()

    def test_list_profiles(self, capsys, sample_profiles_yaml):
        code = main(["--list-profiles", "--profiles", sample_profiles_yaml])

        out = capsys.readouterr().out
        assert code == 0
        assert "slow_web: Half a megabit towards web servers" in out
        assert "lossy_lan" in out

    def test_unknown_profile(self, sample_profiles_yaml):
        assert main(["apply", "--profiles", sample_profiles_yaml, "-p", "missing"]) == 1

    def test_bad_ports_is_usage_error(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["apply", "--exclude-ports", "ssh"])

        assert exc_info.value.code == 2

    def test_status(self, capsys, fake_run):
        fake_run.outputs[("tc", "-s", "qdisc", "show", "dev", "eth0")] = "qdisc prio 1: root\n"

        assert main(["status", "-i", "eth0"]) == 0

        out = capsys.readouterr().out
        assert "[egress] eth0 (active)" in out
        assert "[ingress] ifb0 (inactive)" in out

    def test_clear(self, fake_run):
        assert main(["clear", "--egress-only"]) == 0

        commands = fake_run.commands()
        assert ["tc", "qdisc", "del", "dev", "eth0", "root"] in commands
        assert ["tc", "qdisc", "del", "dev", "eth0", "ingress"] in commands

    def test_command_failure_exit_code(self, fake_run, mocker):
        mocker.patch("netshape.shaper.os.geteuid", return_value=0)
        fake_run.failures.add(("tc", "qdisc", "add"))

        assert main(["apply", "--netem", "delay 10ms", "--to", "*:80"]) == 1
