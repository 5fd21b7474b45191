"""Application configuration via pydantic-settings.

Configuration is read from a TOML file, environment variables and an
optional ``.env`` file.  Environment variables use the
``DS1820BRIDGE_`` prefix and ``__`` as the nesting delimiter, e.g.
``DS1820BRIDGE_MQTT__HOST=broker.local``.  Environment values take
precedence over the file.

Example ``ds1820bridge.toml``::

    main_loop_interval = 250

    [mqtt]
    host = "broker.local"
    retain_default = true
    noread_on_exit = true

    [serial]
    device = "/dev/ttyUSB0"
    baudrate = 9600

    [[updatecycles]]
    id = 1
    interval = 10

    [[tags]]
    channel = 3
    topic = "home/temp/boiler"
    multiplier = 0.1
    expiry = 60
    noread_action = "publish-substitute"
    noread_value = -99
    update_cycle = 1

All durations are in **seconds** except ``main_loop_interval`` (ms).
"""

from __future__ import annotations

import logging
from enum import StrEnum
from pathlib import Path
from typing import Annotated, Any, Literal, Self

from pydantic import (
    BaseModel,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from ds1820bridge._errors import ConfigurationError

logger = logging.getLogger(__name__)

MAIN_LOOP_INTERVAL_MINIMUM = 50
MAIN_LOOP_INTERVAL_MAXIMUM = 2000

# -------------------------------------------------------------------
# Enumerations
# -------------------------------------------------------------------


class NoreadAction(StrEnum):
    """What to publish for a tag whose value has expired."""

    PUBLISH_NULL = "publish-null"
    PUBLISH_SUBSTITUTE = "publish-substitute"
    IGNORE = "ignore"


# Integer codes used by older configuration files.
_LEGACY_NOREAD_ACTIONS = {
    -1: NoreadAction.IGNORE,
    0: NoreadAction.PUBLISH_NULL,
    1: NoreadAction.PUBLISH_SUBSTITUTE,
}

# -------------------------------------------------------------------
# Sub-models (BaseModel, NOT BaseSettings — nested via composition)
# -------------------------------------------------------------------


class MqttSettings(BaseModel):
    """MQTT broker connection and publish behaviour.

    Environment variables (with ``__`` nesting)::

        DS1820BRIDGE_MQTT__HOST=broker.local
        DS1820BRIDGE_MQTT__PORT=1883
        DS1820BRIDGE_MQTT__USERNAME=user
        DS1820BRIDGE_MQTT__PASSWORD=secret
    """

    host: str = Field(
        default="localhost",
        description="MQTT broker hostname or IP address.",
    )
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=1883,
        description="MQTT broker port.",
    )
    username: str | None = Field(
        default=None,
        description="MQTT authentication username (optional).",
    )
    password: SecretStr | None = Field(
        default=None,
        description="MQTT authentication password (optional).",
    )
    client_id: str = Field(
        default="",
        description=(
            "MQTT client identifier. When empty, the bridge generates "
            "'ds1820bridge-{hex8}' at startup."
        ),
    )
    keepalive: Annotated[int, Field(ge=5)] = Field(
        default=60,
        description="MQTT keepalive in seconds.",
    )
    qos: Annotated[int, Field(ge=0, le=2)] = Field(
        default=0,
        description="QoS used for publishes and subscriptions.",
    )
    reconnect_interval: Annotated[float, Field(gt=0)] = Field(
        default=10.0,
        description=(
            "Seconds to wait before the next connect attempt after a "
            "failed attempt or a dropped link.  Fixed, no backoff."
        ),
    )
    connect_timeout: Annotated[float, Field(gt=0)] = Field(
        default=30.0,
        description=(
            "Seconds to wait for the broker to acknowledge a connect "
            "attempt before it is treated as failed."
        ),
    )
    retain_default: bool = Field(
        default=False,
        description="Retain flag for tags that do not set ``retain``.",
    )
    clear_on_exit: bool = Field(
        default=False,
        description="Clear every tag's retained message on shutdown.",
    )
    noread_on_exit: bool = Field(
        default=False,
        description="Publish every tag's noread value on shutdown.",
    )
    debug: bool = Field(
        default=False,
        description="Log every publish at INFO level.",
    )


class LoggingSettings(BaseModel):
    """Logging configuration.

    When ``file`` is set, logs are also written to a rotating file.
    When ``syslog`` is true, records are additionally sent to the
    local syslog daemon (/dev/log), e.g. when the bridge runs as a
    systemd service.

    The ``format`` field selects the output format:

    - ``"json"`` (default) — structured JSON lines.
    - ``"text"`` — human-readable timestamped lines.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level.",
    )
    format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format ('json' or 'text').",
    )
    file: str | None = Field(
        default=None,
        description="Optional log file path. ``None`` means stderr only.",
    )
    max_file_size_mb: Annotated[int, Field(ge=1)] = Field(
        default=10,
        description="Maximum log file size in megabytes before rotation.",
    )
    backup_count: Annotated[int, Field(ge=0)] = Field(
        default=3,
        description="Number of rotated log files to keep.",
    )
    syslog: bool = Field(
        default=False,
        description="Also send records to the local syslog socket.",
    )


class SerialSettings(BaseModel):
    """Serial link to the sensor bridge."""

    device: str = Field(
        default="/dev/ttyUSB0",
        description="Serial device path.",
    )
    baudrate: Literal[300, 1200, 2400, 4800, 9600, 19200] = Field(
        default=9600,
        description="Line speed (8N1, no flow control).",
    )
    read_timeout: Annotated[float, Field(gt=0)] = Field(
        default=20.0,
        description="Seconds to wait for one complete sample line.",
    )


class UpdateCycleSettings(BaseModel):
    """A publish cadence shared by a group of tags."""

    id: int = Field(description="Cycle identifier referenced by tags.")
    interval: Annotated[int, Field(gt=0)] = Field(
        description="Seconds between publishes of this cycle's tags.",
    )


class TagSettings(BaseModel):
    """One sensor channel and how it is published."""

    channel: Annotated[int, Field(ge=0)] = Field(
        description="Channel number reported by the sensor bridge.",
    )
    topic: str = Field(
        default="",
        description="MQTT topic. Empty means the tag is never published.",
    )
    format: str = Field(
        default="%.1f",
        description="printf-style format for the published value.",
    )
    multiplier: float = 1.0
    offset: float = 0.0
    noread_value: float = Field(
        default=0.0,
        description="Substitute published when the value has expired.",
    )
    noread_action: NoreadAction = NoreadAction.IGNORE
    expiry: Annotated[int, Field(ge=0)] = Field(
        default=0,
        description="Seconds without an update before the value expires (0 = never).",
    )
    retain: bool | None = Field(
        default=None,
        description="MQTT retain flag. ``None`` uses ``mqtt.retain_default``.",
    )
    update_cycle: int | None = Field(
        default=None,
        description="Identifier of the update cycle publishing this tag.",
    )
    mode: Literal["publish", "subscribe"] = Field(
        default="publish",
        description="Publish the channel, or subscribe to the topic instead.",
    )

    @field_validator("noread_action", mode="before")
    @classmethod
    def _accept_legacy_action(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            try:
                return _LEGACY_NOREAD_ACTIONS[value]
            except KeyError:
                msg = f"unknown noread action code {value}"
                raise ValueError(msg) from None
        return value

    @field_validator("format")
    @classmethod
    def _check_format(cls, value: str) -> str:
        try:
            value % 1.0
        except (TypeError, ValueError) as exc:
            msg = f"invalid format {value!r}: {exc}"
            raise ValueError(msg) from exc
        return value


# -------------------------------------------------------------------
# Root settings
# -------------------------------------------------------------------


class BridgeSettings(BaseSettings):
    """Root settings for the bridge.

    Sources, highest priority first: constructor arguments,
    environment variables, ``.env`` file, TOML file.  The TOML file is
    configured through ``model_config["toml_file"]``; use
    :meth:`from_file` to load a specific path.
    """

    model_config = SettingsConfigDict(
        env_prefix="DS1820BRIDGE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="forbid",
    )

    main_loop_interval: int = Field(
        default=250,
        description=(
            "Main loop tick in milliseconds, clamped to "
            f"{MAIN_LOOP_INTERVAL_MINIMUM}-{MAIN_LOOP_INTERVAL_MAXIMUM}."
        ),
    )
    mqtt: MqttSettings = Field(default_factory=MqttSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    serial: SerialSettings = Field(default_factory=SerialSettings)
    updatecycles: list[UpdateCycleSettings] = Field(default_factory=list)
    tags: list[TagSettings] = Field(default_factory=list)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    @classmethod
    def from_file(cls, path: str | Path, *, env_file: str | None = ".env") -> Self:
        """Load settings from the TOML file at *path*.

        Raises:
            ConfigurationError: If *path* does not exist.
            pydantic.ValidationError: If the content is invalid.
        """
        path = Path(path)
        if not path.is_file():
            msg = f"Configuration file <{path}> not found"
            raise ConfigurationError(msg)
        bound = type(
            cls.__name__,
            (cls,),
            {
                "__module__": cls.__module__,
                "__qualname__": cls.__qualname__,
                "model_config": SettingsConfigDict(toml_file=path),
            },
        )
        return bound(_env_file=env_file)  # type: ignore[call-arg]

    @field_validator("main_loop_interval")
    @classmethod
    def _clamp_interval(cls, value: int) -> int:
        clamped = min(
            max(value, MAIN_LOOP_INTERVAL_MINIMUM),
            MAIN_LOOP_INTERVAL_MAXIMUM,
        )
        if clamped != value:
            logger.warning(
                "main_loop_interval %dms out of range, using %dms",
                value,
                clamped,
            )
        return clamped

    @model_validator(mode="after")
    def _check_consistency(self) -> Self:
        if not self.updatecycles:
            msg = "no update cycles configured"
            raise ValueError(msg)
        if not self.tags:
            msg = "no tags configured"
            raise ValueError(msg)

        cycle_ids = [cycle.id for cycle in self.updatecycles]
        if len(set(cycle_ids)) != len(cycle_ids):
            msg = f"duplicate update cycle id in {cycle_ids}"
            raise ValueError(msg)

        seen: set[int] = set()
        for tag in self.tags:
            if tag.channel in seen:
                msg = f"channel {tag.channel} configured more than once"
                raise ValueError(msg)
            seen.add(tag.channel)
            if tag.update_cycle is not None and tag.update_cycle not in cycle_ids:
                msg = (
                    f"tag channel {tag.channel} references unknown "
                    f"update cycle {tag.update_cycle}"
                )
                raise ValueError(msg)
        return self

    @property
    def main_loop_seconds(self) -> float:
        """Main loop tick in seconds."""
        return self.main_loop_interval / 1000.0
