"""Tests for TOML configuration loading."""
import pytest

from shared.config import AppConfig, ConfigError, load_config


def test_defaults_without_file():
    cfg = load_config(None)
    assert cfg.host.preferred_port == 48632
    assert cfg.host.auth_timeout_s == 10.0
    assert cfg.remote.join_timeout_s == 15.0
    assert cfg.remote.reconnect_max_attempts == 5
    assert cfg.device.name
    assert cfg.validate() == []


def test_load_overrides(tmp_path):
    path = tmp_path / "remote.toml"
    path.write_text(
        '[device]\nname = "Den TV"\nplatform = "linux"\n'
        "[host]\npreferred_port = 50000\nadvertise = false\n"
        "[remote]\nreconnect_base_delay_s = 0.5\n"
        '[player]\nmpv = false\n'
        '[logging]\ndir = "var/log"\nlevel = "info"\n'
        '[storage]\ndir = "state"\n'
        "[unknown]\nkey = 1\n"
    )
    cfg = load_config(path)
    assert cfg.device.name == "Den TV"
    assert cfg.host.preferred_port == 50000
    assert cfg.host.advertise is False
    assert cfg.host.max_failed_auth_attempts == 5
    assert cfg.remote.reconnect_base_delay_s == 0.5
    assert cfg.player.mpv is False
    assert cfg.log_level == "info"
    assert cfg.log_path.as_posix() == "var/log"
    assert cfg.data_path.as_posix() == "state"


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.toml")


def test_invalid_values_rejected(tmp_path):
    path = tmp_path / "bad.toml"
    path.write_text("[host]\npreferred_port = 70000\nauth_timeout_s = 0\n")
    with pytest.raises(ConfigError) as exc:
        load_config(path)
    assert "preferred_port" in str(exc.value)
    assert "auth_timeout_s" in str(exc.value)


def test_validate_reports_each_problem():
    cfg = AppConfig(log_level="LOUD")
    cfg.host.max_failed_auth_attempts = 0
    cfg.remote.reconnect_max_attempts = -1
    problems = cfg.validate()
    assert len(problems) == 3
