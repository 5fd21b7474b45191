"""Log formatting and handler setup.

The bridge usually runs unattended under systemd or in a container,
so the default output is one JSON object per line on stderr.  The
``text`` format is meant for a terminal.

:func:`configure_logging` always installs a stderr handler.  Settings
can add a rotating log file and the local syslog socket.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler, SysLogHandler
from typing import Any

from ds1820bridge._settings import LoggingSettings

_MEGABYTE = 1024 * 1024

_TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s"

_SYSLOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"

_SYSLOG_ADDRESS = "/dev/log"


class JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects.

    Fields: ``timestamp`` (ISO 8601, UTC), ``level``, ``logger``,
    ``thread``, ``message``, ``service``, plus ``version`` when set and
    ``exception`` / ``stack_info`` when present.

    Args:
        service: Name included in every log line.
        version: Version string.  Omitted from output when empty.
    """

    def __init__(
        self,
        *,
        service: str = "",
        version: str = "",
    ) -> None:
        super().__init__()
        self._service = service
        self._version = version

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
            "service": self._service,
        }

        if self._version:
            entry["version"] = self._version

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            entry["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(entry, default=str)


def configure_logging(
    settings: LoggingSettings,
    *,
    service: str,
    version: str = "",
) -> None:
    """Configure the root logger from settings.

    Existing root handlers are removed first, so calling this twice
    does not duplicate output.

    Args:
        settings: Logging configuration.
        service: Name passed to :class:`JsonFormatter`.
        version: Version passed to :class:`JsonFormatter`.
    """
    root = logging.getLogger()

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    if settings.format == "json":
        formatter: logging.Formatter = JsonFormatter(service=service, version=version)
    else:
        formatter = logging.Formatter(_TEXT_FORMAT)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if settings.file is not None:
        file_handler = RotatingFileHandler(
            settings.file,
            maxBytes=settings.max_file_size_mb * _MEGABYTE,
            backupCount=settings.backup_count,
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    if settings.syslog:
        syslog_handler = SysLogHandler(address=_SYSLOG_ADDRESS)
        syslog_handler.ident = f"{service}: " if service else ""
        syslog_handler.setFormatter(logging.Formatter(_SYSLOG_FORMAT))
        root.addHandler(syslog_handler)

    root.setLevel(settings.level)
