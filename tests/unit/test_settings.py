"""Unit tests for ds1820bridge._settings — configuration models.

Test Techniques Used:
    - Specification-based Testing: Default values and field
      constraints
    - Boundary Value Analysis: Port range, main loop clamping, channel 0
    - Environment Override: monkeypatch for env var injection
    - Validation Error: pydantic constraint violations and cross-field
      consistency checks
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import pytest
from pydantic import SecretStr, ValidationError

from ds1820bridge._errors import ConfigurationError
from ds1820bridge._settings import (
    MAIN_LOOP_INTERVAL_MAXIMUM,
    MAIN_LOOP_INTERVAL_MINIMUM,
    BridgeSettings,
    LoggingSettings,
    MqttSettings,
    NoreadAction,
    SerialSettings,
    TagSettings,
    UpdateCycleSettings,
)
from ds1820bridge.testing import make_settings

_CONFIG = """\
main_loop_interval = 500

[mqtt]
host = "broker.test"
retain_default = true

[serial]
device = "/dev/ttyS1"
baudrate = 19200

[[updatecycles]]
id = 1
interval = 10

[[updatecycles]]
id = 2
interval = 60

[[tags]]
channel = 0
topic = "home/boiler"
update_cycle = 1

[[tags]]
channel = 3
topic = "home/outside"
multiplier = 0.1
noread_action = 1
noread_value = -99
expiry = 120
update_cycle = 2
"""


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """A complete TOML configuration on disk."""
    path = tmp_path / "ds1820bridge.toml"
    path.write_text(_CONFIG)
    return path


@pytest.fixture
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Run in an empty directory without DS1820BRIDGE_* variables."""
    for key in list(os.environ):
        if key.startswith("DS1820BRIDGE_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)


class TestMqttSettingsDefaults:
    """Verify all MQTT default values.

    Technique: Specification-based Testing.
    """

    def test_host_defaults_to_localhost(self) -> None:
        """Default host is localhost."""
        assert MqttSettings().host == "localhost"

    def test_port_defaults_to_1883(self) -> None:
        """Default port is standard MQTT port."""
        assert MqttSettings().port == 1883

    def test_credentials_default_to_none(self) -> None:
        """No authentication by default."""
        s = MqttSettings()
        assert s.username is None
        assert s.password is None

    def test_reconnect_interval_defaults_to_10(self) -> None:
        """Fixed reconnect interval of 10 seconds."""
        assert MqttSettings().reconnect_interval == 10.0

    def test_exit_flags_default_off(self) -> None:
        """Nothing is published on exit by default."""
        s = MqttSettings()
        assert s.clear_on_exit is False
        assert s.noread_on_exit is False

    def test_retain_default_is_false(self) -> None:
        """Tags are not retained unless configured."""
        assert MqttSettings().retain_default is False


class TestMqttSettingsValidation:
    """Field constraint validation for MqttSettings.

    Technique: Boundary Value Analysis.
    """

    @pytest.mark.parametrize("port", [1, 65535])
    def test_port_bounds_accepted(self, port: int) -> None:
        """Ports 1 and 65535 are valid."""
        assert MqttSettings(port=port).port == port

    @pytest.mark.parametrize("port", [0, 65536])
    def test_port_out_of_range_rejected(self, port: int) -> None:
        """Ports outside 1-65535 are rejected."""
        with pytest.raises(ValidationError):
            MqttSettings(port=port)

    def test_qos_above_2_rejected(self) -> None:
        """QoS is 0, 1 or 2."""
        with pytest.raises(ValidationError):
            MqttSettings(qos=3)

    def test_reconnect_interval_must_be_positive(self) -> None:
        """A zero reconnect interval is rejected."""
        with pytest.raises(ValidationError):
            MqttSettings(reconnect_interval=0)

    def test_password_is_secret(self) -> None:
        """Password is wrapped in SecretStr and hidden in repr."""
        s = MqttSettings(password="hunter2")
        assert isinstance(s.password, SecretStr)
        assert "hunter2" not in repr(s)


class TestSerialSettings:
    """SerialSettings defaults and baud-rate whitelist.

    Technique: Specification-based Testing.
    """

    def test_defaults(self) -> None:
        """Default device, 9600 baud, 20 s timeout."""
        s = SerialSettings()
        assert s.device == "/dev/ttyUSB0"
        assert s.baudrate == 9600
        assert s.read_timeout == 20.0

    @pytest.mark.parametrize("baud", [300, 1200, 2400, 4800, 9600, 19200])
    def test_supported_baudrates(self, baud: int) -> None:
        """Every supported rate validates."""
        assert SerialSettings(baudrate=baud).baudrate == baud

    @pytest.mark.parametrize("baud", [110, 38400, 115200])
    def test_unsupported_baudrate_rejected(self, baud: int) -> None:
        """Rates the sensor bridge does not support are rejected."""
        with pytest.raises(ValidationError):
            SerialSettings(baudrate=baud)


class TestLoggingSettings:
    """LoggingSettings defaults.

    Technique: Specification-based Testing.
    """

    def test_defaults(self) -> None:
        """JSON to stderr at INFO, no file, no syslog."""
        s = LoggingSettings()
        assert s.level == "INFO"
        assert s.format == "json"
        assert s.file is None
        assert s.syslog is False

    def test_invalid_level_rejected(self) -> None:
        """Unknown level names are rejected."""
        with pytest.raises(ValidationError):
            LoggingSettings(level="VERBOSE")  # type: ignore[arg-type]


class TestTagSettings:
    """TagSettings defaults and validators.

    Technique: Specification-based Testing.
    """

    def test_defaults(self) -> None:
        """Only the channel is required."""
        s = TagSettings(channel=1)
        assert s.topic == ""
        assert s.format == "%.1f"
        assert s.multiplier == 1.0
        assert s.offset == 0.0
        assert s.noread_action is NoreadAction.IGNORE
        assert s.expiry == 0
        assert s.retain is None
        assert s.update_cycle is None
        assert s.mode == "publish"

    def test_channel_zero_is_valid(self) -> None:
        """Channel 0 is a real channel."""
        assert TagSettings(channel=0).channel == 0

    def test_negative_channel_rejected(self) -> None:
        """Channels are non-negative."""
        with pytest.raises(ValidationError):
            TagSettings(channel=-1)

    def test_negative_expiry_rejected(self) -> None:
        """Expiry is zero (never) or positive."""
        with pytest.raises(ValidationError):
            TagSettings(channel=1, expiry=-1)

    @pytest.mark.parametrize(
        ("code", "action"),
        [
            (-1, NoreadAction.IGNORE),
            (0, NoreadAction.PUBLISH_NULL),
            (1, NoreadAction.PUBLISH_SUBSTITUTE),
        ],
    )
    def test_legacy_noread_codes(self, code: int, action: NoreadAction) -> None:
        """Integer codes from older configuration files are accepted."""
        assert TagSettings(channel=1, noread_action=code).noread_action is action

    def test_unknown_noread_code_rejected(self) -> None:
        """Codes other than -1/0/1 are rejected."""
        with pytest.raises(ValidationError):
            TagSettings(channel=1, noread_action=2)

    def test_noread_action_by_name(self) -> None:
        """The string form is accepted."""
        s = TagSettings(channel=1, noread_action="publish-null")
        assert s.noread_action is NoreadAction.PUBLISH_NULL

    @pytest.mark.parametrize("fmt", ["%.2f", "%d", "%5.1f degC"])
    def test_valid_formats(self, fmt: str) -> None:
        """printf-style float formats validate."""
        assert TagSettings(channel=1, format=fmt).format == fmt

    @pytest.mark.parametrize("fmt", ["%s %s", "%q", "%(x)f"])
    def test_invalid_formats_rejected(self, fmt: str) -> None:
        """Formats that cannot render one float are rejected."""
        with pytest.raises(ValidationError):
            TagSettings(channel=1, format=fmt)

    def test_update_cycle_interval_must_be_positive(self) -> None:
        """A cycle interval of 0 is rejected."""
        with pytest.raises(ValidationError):
            UpdateCycleSettings(id=1, interval=0)


class TestBridgeSettingsConsistency:
    """Cross-field validation of the root model.

    Technique: Validation Error.
    """

    def test_make_settings_defaults_are_valid(self) -> None:
        """The test factory yields one cycle and one tag."""
        s = make_settings()
        assert [c.id for c in s.updatecycles] == [1]
        assert [t.channel for t in s.tags] == [1]

    def test_no_cycles_rejected(self) -> None:
        """At least one update cycle is required."""
        with pytest.raises(ValidationError, match="no update cycles"):
            make_settings(updatecycles=[])

    def test_no_tags_rejected(self) -> None:
        """At least one tag is required."""
        with pytest.raises(ValidationError, match="no tags"):
            make_settings(tags=[])

    def test_duplicate_cycle_ids_rejected(self) -> None:
        """Cycle ids are unique."""
        with pytest.raises(ValidationError, match="duplicate update cycle"):
            make_settings(
                updatecycles=[{"id": 1, "interval": 5}, {"id": 1, "interval": 9}],
            )

    def test_duplicate_channels_rejected(self) -> None:
        """A channel maps to one tag."""
        with pytest.raises(ValidationError, match="more than once"):
            make_settings(
                tags=[
                    {"channel": 2, "topic": "a", "update_cycle": 1},
                    {"channel": 2, "topic": "b", "update_cycle": 1},
                ],
            )

    def test_unknown_cycle_reference_rejected(self) -> None:
        """A tag cannot reference an undefined cycle."""
        with pytest.raises(ValidationError, match="unknown update cycle 7"):
            make_settings(tags=[{"channel": 1, "topic": "a", "update_cycle": 7}])

    def test_tag_without_cycle_is_allowed(self) -> None:
        """A tag with no cycle is valid (it is simply never published)."""
        s = make_settings(tags=[{"channel": 1, "topic": "a"}])
        assert s.tags[0].update_cycle is None

    def test_unknown_root_key_rejected(self) -> None:
        """Typos in top-level keys are errors."""
        with pytest.raises(ValidationError):
            make_settings(main_loop=100)


class TestMainLoopInterval:
    """Clamping of main_loop_interval.

    Technique: Boundary Value Analysis.
    """

    def test_default_is_250ms(self) -> None:
        """Default tick is 250 ms."""
        s = make_settings()
        assert s.main_loop_interval == 250
        assert s.main_loop_seconds == 0.25

    @pytest.mark.parametrize(
        ("given", "expected"),
        [
            (10, MAIN_LOOP_INTERVAL_MINIMUM),
            (MAIN_LOOP_INTERVAL_MINIMUM, MAIN_LOOP_INTERVAL_MINIMUM),
            (MAIN_LOOP_INTERVAL_MAXIMUM, MAIN_LOOP_INTERVAL_MAXIMUM),
            (60_000, MAIN_LOOP_INTERVAL_MAXIMUM),
        ],
    )
    def test_clamped_to_range(self, given: int, expected: int) -> None:
        """Values outside 50-2000 ms are clamped, not rejected."""
        assert make_settings(main_loop_interval=given).main_loop_interval == expected

    def test_clamping_logs_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        """An out-of-range value is reported."""
        with caplog.at_level(logging.WARNING, logger="ds1820bridge._settings"):
            make_settings(main_loop_interval=5)
        assert "out of range" in caplog.text


@pytest.mark.usefixtures("_clean_env")
class TestFromFile:
    """Loading from a TOML file plus environment overrides.

    Technique: Environment Override.
    """

    def test_missing_file_raises_configuration_error(self, tmp_path: Path) -> None:
        """A missing file is a ConfigurationError, not a ValidationError."""
        with pytest.raises(ConfigurationError, match="not found"):
            BridgeSettings.from_file(tmp_path / "nope.toml", env_file=None)

    def test_loads_all_sections(self, config_file: Path) -> None:
        """Every table of the file reaches the model."""
        s = BridgeSettings.from_file(config_file, env_file=None)

        assert s.main_loop_interval == 500
        assert s.mqtt.host == "broker.test"
        assert s.mqtt.retain_default is True
        assert s.serial.device == "/dev/ttyS1"
        assert s.serial.baudrate == 19200
        assert [c.interval for c in s.updatecycles] == [10, 60]
        assert [t.channel for t in s.tags] == [0, 3]
        assert s.tags[1].noread_action is NoreadAction.PUBLISH_SUBSTITUTE

    def test_environment_overrides_file(
        self,
        config_file: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """DS1820BRIDGE_* variables win over the file."""
        monkeypatch.setenv("DS1820BRIDGE_MQTT__HOST", "env-broker")
        monkeypatch.setenv("DS1820BRIDGE_MQTT__PORT", "8883")

        s = BridgeSettings.from_file(config_file, env_file=None)

        assert s.mqtt.host == "env-broker"
        assert s.mqtt.port == 8883
        assert s.mqtt.retain_default is True

    def test_invalid_file_raises_validation_error(self, tmp_path: Path) -> None:
        """A file without tags fails validation."""
        path = tmp_path / "empty.toml"
        path.write_text("[[updatecycles]]\nid = 1\ninterval = 5\n")

        with pytest.raises(ValidationError, match="no tags"):
            BridgeSettings.from_file(path, env_file=None)

    def test_loaded_settings_is_bridge_settings(self, config_file: Path) -> None:
        """from_file returns an instance of the requested class."""
        s = BridgeSettings.from_file(config_file, env_file=None)
        assert isinstance(s, BridgeSettings)
