"""ds1820bridge.

Publishes DS18x20 temperatures read from a serial sensor bridge to an
MQTT broker.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("ds1820bridge")
except PackageNotFoundError:
    # Running from a source tree without installed metadata
    __version__ = "0.0.0+unknown"

from ds1820bridge._app import Bridge  # noqa: E402
from ds1820bridge._clock import ClockPort, SystemClock  # noqa: E402
from ds1820bridge._connection import ConnectionManager, ConnectionState  # noqa: E402
from ds1820bridge._context import BridgeContext  # noqa: E402
from ds1820bridge._errors import (  # noqa: E402
    BridgeError,
    ConfigurationError,
    SampleParseError,
    SampleSourceError,
    TransportError,
)
from ds1820bridge._logging import JsonFormatter, configure_logging  # noqa: E402
from ds1820bridge._loop import MainLoop  # noqa: E402
from ds1820bridge._mqtt import (  # noqa: E402
    ConnectionEvent,
    InboundMessage,
    LinkStatus,
    MockMqttClient,
    MqttClient,
    MqttEvent,
    MqttTransport,
    NullMqttClient,
)
from ds1820bridge._policy import (  # noqa: E402
    ClearRetained,
    Decision,
    Publish,
    PublishNoreadSubstitute,
    PublishPolicy,
    Skip,
)
from ds1820bridge._reader import DeviceReader  # noqa: E402
from ds1820bridge._scheduler import UpdateCycle, UpdateCycleScheduler  # noqa: E402
from ds1820bridge._settings import (  # noqa: E402
    BridgeSettings,
    LoggingSettings,
    MqttSettings,
    NoreadAction,
    SerialSettings,
    TagSettings,
    UpdateCycleSettings,
)
from ds1820bridge._source import (  # noqa: E402
    Sample,
    SampleSource,
    SerialSampleSource,
    parse_sample_line,
)
from ds1820bridge._tags import Tag, TagReading, TagRegistry  # noqa: E402

__all__ = [
    # Version
    "__version__",
    # App
    "Bridge",
    "BridgeContext",
    "MainLoop",
    # Clock
    "ClockPort",
    "SystemClock",
    # Connection
    "ConnectionManager",
    "ConnectionState",
    # Errors
    "BridgeError",
    "ConfigurationError",
    "SampleParseError",
    "SampleSourceError",
    "TransportError",
    # Logging
    "JsonFormatter",
    "configure_logging",
    # MQTT
    "ConnectionEvent",
    "InboundMessage",
    "LinkStatus",
    "MockMqttClient",
    "MqttClient",
    "MqttEvent",
    "MqttTransport",
    "NullMqttClient",
    # Policy
    "ClearRetained",
    "Decision",
    "Publish",
    "PublishNoreadSubstitute",
    "PublishPolicy",
    "Skip",
    # Reader / source
    "DeviceReader",
    "Sample",
    "SampleSource",
    "SerialSampleSource",
    "parse_sample_line",
    # Scheduler
    "UpdateCycle",
    "UpdateCycleScheduler",
    # Settings
    "BridgeSettings",
    "LoggingSettings",
    "MqttSettings",
    "NoreadAction",
    "SerialSettings",
    "TagSettings",
    "UpdateCycleSettings",
    # Tags
    "Tag",
    "TagReading",
    "TagRegistry",
]
