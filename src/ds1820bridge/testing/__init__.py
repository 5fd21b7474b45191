"""Public test-support utilities for ds1820bridge.

Re-exports test doubles and factories so that test suites can import
everything from ``ds1820bridge.testing``:

- :class:`FakeClock` — deterministic clock.
- :class:`MockMqttClient` — in-memory MQTT double that records calls.
- :class:`NullMqttClient` — dry-run MQTT adapter.
- :class:`ScriptedSampleSource` — plays back samples and errors.
- :func:`make_settings` — ``BridgeSettings`` without files or env vars.
"""

from ds1820bridge._mqtt import MockMqttClient, NullMqttClient
from ds1820bridge.testing._clock import FakeClock
from ds1820bridge.testing._settings import make_settings
from ds1820bridge.testing._source import ScriptedSampleSource

__all__ = [
    "FakeClock",
    "MockMqttClient",
    "NullMqttClient",
    "ScriptedSampleSource",
    "make_settings",
]
