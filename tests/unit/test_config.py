"""
Unit tests for recorder and daemon configuration.
"""

import pytest

from xray_tracer.config import (
    DaemonAddress,
    DaemonConfig,
    RecorderConfig,
    IGNORE_ERROR,
    LOG_ERROR,
    parse_daemon_address,
)
from xray_tracer.exceptions import ConfigurationError, InvalidDaemonAddressError

DAEMON_CONFIG_YAML = """\
# Maximum buffer size in MB (minimum 3). Choose 0 to use 1% of host memory.
TotalBufferSizeMB: 0
Region: "eu-west-1"
Socket:
  UDPAddress: "127.0.0.1:2000"
  TCPAddress: "127.0.0.1:2001"
Logging:
  LogRotation: true
  LogLevel: "prod"
  LogPath: ""
LocalMode: true
RoleARN: "arn:aws:iam::123456789012:role/xray-cross-account"
Version: 2
"""


class TestParseDaemonAddress:
    """Test cases for parse_daemon_address."""

    def test_default(self):
        """Test that an empty value yields 127.0.0.1:2000."""
        assert parse_daemon_address(None) == DaemonAddress()
        assert parse_daemon_address("  ") == DaemonAddress("127.0.0.1", 2000, "127.0.0.1", 2000)

    def test_single_address(self):
        """Test that one address is used for both protocols."""
        address = parse_daemon_address("xray-daemon:3000")

        assert address.udp == ("xray-daemon", 3000)
        assert address.tcp == ("xray-daemon", 3000)
        assert address.tcp_base_url == "http://xray-daemon:3000"

    @pytest.mark.parametrize("value", [
        "tcp:127.0.0.1:2001 udp:127.0.0.2:2000",
        "udp:127.0.0.2:2000 tcp:127.0.0.1:2001",
    ])
    def test_split_addresses(self, value):
        """Test separate TCP and UDP endpoints in either order."""
        address = parse_daemon_address(value)

        assert address.udp == ("127.0.0.2", 2000)
        assert address.tcp == ("127.0.0.1", 2001)

    @pytest.mark.parametrize("value", [
        "localhost",
        "localhost:port",
        "localhost:70000",
        ":2000",
        "tcp:127.0.0.1:2000 tcp:127.0.0.1:2001",
        "http:127.0.0.1:2000 udp:127.0.0.1:2001",
        "a:1 b:2 c:3",
    ])
    def test_invalid_addresses(self, value):
        """Test that malformed addresses are rejected."""
        with pytest.raises(InvalidDaemonAddressError):
            parse_daemon_address(value)


class TestRecorderConfig:
    """Test cases for RecorderConfig."""

    def test_defaults(self):
        """Test the default configuration."""
        config = RecorderConfig()

        assert config.daemon_address == DaemonAddress()
        assert config.context_missing == LOG_ERROR
        assert config.sampling is True
        assert config.enabled is True

    def test_unknown_context_missing(self):
        """Test that an unknown strategy is rejected."""
        with pytest.raises(ConfigurationError):
            RecorderConfig(context_missing="EXPLODE")

    def test_from_env(self, monkeypatch):
        """Test reading AWS_XRAY_* variables."""
        monkeypatch.setenv("AWS_XRAY_TRACING_NAME", "roles-service")
        monkeypatch.setenv("AWS_XRAY_DAEMON_ADDRESS", "tcp:10.0.0.5:2000 udp:10.0.0.5:2001")
        monkeypatch.setenv("AWS_XRAY_CONTEXT_MISSING", "ignore_error")
        monkeypatch.setenv("AWS_XRAY_SDK_ENABLED", "false")

        config = RecorderConfig.from_env()

        assert config.service_name == "roles-service"
        assert config.daemon_address.udp == ("10.0.0.5", 2001)
        assert config.context_missing == IGNORE_ERROR
        assert config.enabled is False

    def test_from_env_overrides(self, monkeypatch):
        """Test that explicit values beat the environment."""
        monkeypatch.setenv("AWS_XRAY_TRACING_NAME", "from-env")
        monkeypatch.delenv("AWS_XRAY_SDK_ENABLED", raising=False)

        config = RecorderConfig.from_env(service_name="explicit")

        assert config.service_name == "explicit"
        assert config.enabled is True


class TestDaemonConfig:
    """Test cases for loading the daemon's YAML config."""

    def test_from_yaml(self, tmp_path):
        """Test parsing a daemon config file."""
        path = tmp_path / "xray-daemon.yaml"
        path.write_text(DAEMON_CONFIG_YAML)

        config = DaemonConfig.from_yaml(path)

        assert config.version == 2
        assert config.region == "eu-west-1"
        assert config.local_mode is True
        assert config.role_arn.endswith("role/xray-cross-account")
        assert config.logging.log_level == "prod"
        assert config.daemon_address == DaemonAddress("127.0.0.1", 2000, "127.0.0.1", 2001)

    def test_defaults_for_empty_file(self, tmp_path):
        """Test that an empty file yields the default sockets."""
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert DaemonConfig.from_yaml(path).daemon_address == DaemonAddress()

    @pytest.mark.parametrize("content", ["Socket: [", "- just\n- a list\n", "Version: not-a-number\n"])
    def test_invalid_files(self, tmp_path, content):
        """Test that unreadable or invalid files raise ConfigurationError."""
        path = tmp_path / "bad.yaml"
        path.write_text(content)

        with pytest.raises(ConfigurationError):
            DaemonConfig.from_yaml(path)

    def test_missing_file(self, tmp_path):
        """Test that a missing file raises ConfigurationError."""
        with pytest.raises(ConfigurationError):
            DaemonConfig.from_yaml(tmp_path / "absent.yaml")
