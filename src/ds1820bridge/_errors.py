"""Exception hierarchy for the ds1820bridge runtime.

All errors raised by the bridge derive from :class:`BridgeError` so the
CLI can tell bridge failures apart from programming errors.

Where each error is handled:

- :class:`ConfigurationError` — fatal at startup, before the main loop
  is entered (CLI exit status 1).
- :class:`SampleSourceError` — transient; logged by the
  :class:`~ds1820bridge._reader.DeviceReader`, which keeps reading.
- :class:`TransportError` — a single publish or connect attempt
  failed; logged, never retried outside the normal schedule.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all ds1820bridge errors."""


class ConfigurationError(BridgeError):
    """The configuration is missing, unreadable or inconsistent."""


class SampleSourceError(BridgeError):
    """Reading from the sensor link failed.

    The link may recover on its own (USB re-plug, bridge reset), so
    the reader logs the error and tries again.
    """


class SampleParseError(SampleSourceError):
    """A temperature line was received but could not be parsed.

    Attributes:
        line: The offending line, decoded and stripped.
    """

    def __init__(self, line: str) -> None:
        super().__init__(f"Malformed sample line: {line!r}")
        self.line = line


class TransportError(BridgeError):
    """The MQTT transport rejected an operation."""
