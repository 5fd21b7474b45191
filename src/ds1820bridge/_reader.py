"""Background device reader.

:class:`DeviceReader` is the producer half of the bridge's two-thread
design: it blocks on the :class:`~ds1820bridge._source.SampleSource`
and writes every sample into the
:class:`~ds1820bridge._tags.TagRegistry`.  The main loop is the only
consumer.

Read errors are expected to be transient (unplugged cable, bridge
reset) and bounded by the source's read timeout, so the reader logs
them and keeps going.  After a link error it pauses for a fixed
``error_pause`` so that a missing device does not spin the CPU.  A
malformed line is skipped without a pause.  A tag that stops
receiving samples simply ages toward its expiry.

The reader stops when the shared shutdown event is set.  The event is
seen at the next read-timeout boundary at the latest.  The owner must
:meth:`~threading.Thread.join` the reader before closing the source.
"""

from __future__ import annotations

import logging
import threading

from ds1820bridge._errors import SampleParseError, SampleSourceError
from ds1820bridge._source import SampleSource
from ds1820bridge._tags import TagRegistry

logger = logging.getLogger(__name__)


class DeviceReader(threading.Thread):
    """Thread copying samples from a source into the registry.

    An unexpected exception (anything but
    :class:`~ds1820bridge._errors.SampleSourceError`) stops the reader,
    is kept in :attr:`failure` and sets the shutdown event so that the
    whole bridge exits.

    Args:
        source: Blocking sample source.
        registry: Destination for samples.
        shutdown: Process-wide shutdown flag.
        error_pause: Seconds to wait after a link error.
    """

    def __init__(
        self,
        source: SampleSource,
        registry: TagRegistry,
        shutdown: threading.Event,
        *,
        error_pause: float = 1.0,
    ) -> None:
        super().__init__(name="device-reader", daemon=True)
        self._source = source
        self._registry = registry
        self._shutdown = shutdown
        self._error_pause = error_pause
        self.failure: BaseException | None = None
        self.samples_read = 0
        self.samples_dropped = 0
        self.errors = 0

    def run(self) -> None:
        logger.debug("Device reader started")
        try:
            while not self._shutdown.is_set():
                self.read_once()
        except Exception as exc:
            self.failure = exc
            logger.exception("Device reader failed, requesting shutdown")
            self._shutdown.set()
        logger.debug(
            "Device reader stopped (%d samples, %d dropped, %d errors)",
            self.samples_read,
            self.samples_dropped,
            self.errors,
        )

    def read_once(self) -> bool:
        """Read one sample and store it.

        Returns:
            ``True`` if a sample was stored in the registry.
        """
        try:
            sample = self._source.next_sample()
        except SampleSourceError as exc:
            self.errors += 1
            logger.warning("Device read failed: %s", exc)
            if self._error_pause > 0 and not isinstance(exc, SampleParseError):
                self._shutdown.wait(self._error_pause)
            return False

        if sample is None:
            return False
        if self._registry.set_raw(sample.channel, sample.value):
            self.samples_read += 1
            return True
        self.samples_dropped += 1
        return False
