"""Sample source port and the pyserial adapter.

The sensor bridge prints one line per reading::

    T<channel> <value>\\n

e.g. ``T3 21.5``.  Lines that do not start with ``T`` (the bridge's
start-up banner) are skipped.  A ``T`` line that does not parse is an
error.

Provides:

- :class:`SampleSource` (Protocol) — ``next_sample()`` blocks until a
  sample arrives, returns ``None`` on timeout, raises
  :class:`~ds1820bridge._errors.SampleSourceError` on link errors.
- :class:`SerialSampleSource` — pyserial implementation.

``serial`` is imported lazily inside :meth:`SerialSampleSource.open`
so that the scripted test source works without pyserial installed.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Any, NamedTuple, Protocol, runtime_checkable

from ds1820bridge._clock import ClockPort, SystemClock
from ds1820bridge._errors import SampleParseError, SampleSourceError
from ds1820bridge._settings import SerialSettings

logger = logging.getLogger(__name__)

_SAMPLE_RE = re.compile(
    r"^T(?P<channel>[-+]?\d+)\s+(?P<value>[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)",
)

_POLL_SLICE = 1.0
"""Seconds per blocking read; the shutdown event is checked between slices."""


class Sample(NamedTuple):
    """One reading from the sensor bridge."""

    channel: int
    value: float


def parse_sample_line(line: str) -> Sample | None:
    """Parse one line from the sensor bridge.

    Returns:
        The sample, or ``None`` for lines that carry no temperature
        (anything not starting with ``T``).

    Raises:
        SampleParseError: For a ``T`` line that does not match
            ``T<channel> <value>``.
    """
    text = line.strip()
    if not text.startswith("T"):
        return None
    match = _SAMPLE_RE.match(text)
    if match is None:
        raise SampleParseError(text)
    return Sample(int(match["channel"]), float(match["value"]))


# ---------------------------------------------------------------------------
# Port (Protocol)
# ---------------------------------------------------------------------------


@runtime_checkable
class SampleSource(Protocol):
    """Blocking source of ``(channel, value)`` samples."""

    def next_sample(self) -> Sample | None:
        """Block until the next sample.

        Returns:
            The sample, or ``None`` if nothing arrived within the
            source's read timeout.

        Raises:
            SampleSourceError: If the link failed.
        """
        ...

    def close(self) -> None:
        """Release the underlying link."""
        ...


# ---------------------------------------------------------------------------
# Serial adapter
# ---------------------------------------------------------------------------


@dataclass
class SerialSampleSource:
    """Reads samples from a serial port with pyserial.

    The port is opened on the first read (8N1, no flow control,
    exclusive access) and its input buffer flushed.  After an I/O
    error the port is closed and reopened by the next read.

    A read waits at most ``settings.read_timeout`` seconds for a full
    line, in one-second slices.  When *cancel* is set between slices
    the read gives up and returns ``None``.
    """

    settings: SerialSettings
    cancel: threading.Event | None = None
    clock: ClockPort = field(default_factory=SystemClock)
    _port: Any = field(default=None, init=False, repr=False)
    _serial: Any = field(default=None, init=False, repr=False)
    _buffer: bytearray = field(default_factory=bytearray, init=False, repr=False)

    @property
    def is_open(self) -> bool:
        return self._port is not None

    def open(self) -> None:
        """Open and configure the serial port.

        Raises:
            SampleSourceError: If the port cannot be opened.
        """
        try:
            import serial  # noqa: PLC0415
        except ModuleNotFoundError as exc:
            msg = "pyserial is required to use SerialSampleSource"
            raise RuntimeError(msg) from exc

        self._serial = serial
        try:
            port = serial.Serial(
                port=self.settings.device,
                baudrate=self.settings.baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=min(_POLL_SLICE, self.settings.read_timeout),
                rtscts=False,
                xonxoff=False,
                exclusive=True,
            )
        except (serial.SerialException, OSError) as exc:
            msg = f"Error opening {self.settings.device}: {exc}"
            raise SampleSourceError(msg) from exc
        port.reset_input_buffer()
        self._buffer.clear()
        self._port = port
        logger.info(
            "Serial device %s opened at %d baud",
            self.settings.device,
            self.settings.baudrate,
        )

    def close(self) -> None:
        """Close the port.  Idempotent."""
        port, self._port = self._port, None
        self._buffer.clear()
        if port is None:
            return
        try:
            port.close()
        except Exception:
            logger.exception("Error closing %s", self.settings.device)

    def next_sample(self) -> Sample | None:
        """Read lines until one carries a sample, or the timeout expires."""
        if self._port is None:
            self.open()
        deadline = self.clock.now() + self.settings.read_timeout
        while True:
            line = self._read_line(deadline)
            if line is None:
                return None
            sample = parse_sample_line(line)
            if sample is not None:
                return sample
            logger.debug("Skipping non-sample line <%s>", line.strip())

    def _read_line(self, deadline: float) -> str | None:
        while not self._cancelled():
            try:
                chunk = self._port.readline()
            except (self._serial.SerialException, OSError) as exc:
                self.close()
                msg = f"Error reading {self.settings.device}: {exc}"
                raise SampleSourceError(msg) from exc
            self._buffer.extend(chunk)
            if self._buffer.endswith(b"\n"):
                line = self._buffer.decode("ascii", errors="replace")
                self._buffer.clear()
                return line
            if self.clock.now() >= deadline:
                logger.debug("No data from %s within timeout", self.settings.device)
                return None
        return None

    def _cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()
