"""Command-line interface (Typer-based).

Commands:

- ``run`` loads the configuration file and runs the bridge until
  SIGINT/SIGTERM.
- ``read`` reads a single sample from the serial device and prints it,
  which is handy for checking the wiring without a broker.

Exit codes: :data:`EXIT_OK` on a clean shutdown,
:data:`EXIT_CONFIG_ERROR` for an invalid or missing configuration,
:data:`EXIT_RUNTIME_ERROR` when the bridge stops on an unexpected error.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, get_args

import typer
from pydantic import ValidationError

from ds1820bridge import __version__
from ds1820bridge._app import SERVICE_NAME, Bridge
from ds1820bridge._errors import ConfigurationError, SampleSourceError
from ds1820bridge._logging import configure_logging
from ds1820bridge._settings import BridgeSettings, LoggingSettings, SerialSettings
from ds1820bridge._source import SerialSampleSource

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_RUNTIME_ERROR = 3

# ---------------------------------------------------------------------------
# Allowed values (extracted from settings Literal types)
# ---------------------------------------------------------------------------

_VALID_LOG_LEVELS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["level"].annotation,
)
_VALID_LOG_FORMATS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["format"].annotation,
)
_VALID_BAUDRATES: tuple[int, ...] = get_args(
    SerialSettings.model_fields["baudrate"].annotation,
)

_DEFAULT_CONFIG = "ds1820bridge.toml"

cli = typer.Typer(
    help=f"{SERVICE_NAME} v{__version__}: DS18x20 serial temperatures to MQTT.",
    no_args_is_help=True,
)


@cli.callback()
def _main(
    version_flag: Annotated[
        bool | None,
        typer.Option(
            "--version",
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = None,
) -> None:
    if version_flag:
        typer.echo(f"{SERVICE_NAME} v{__version__}")
        raise typer.Exit()


# -- run --------------------------------------------------------------------


@cli.command("run")
def run_command(
    config: Annotated[
        Path,
        typer.Option("--config", "-c", help="Path to the TOML configuration file."),
    ] = Path(_DEFAULT_CONFIG),
    env_file: Annotated[
        str,
        typer.Option("--env-file", help="Path to .env file."),
    ] = ".env",
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Override log level."),
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option("--log-format", help="Override log format."),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Log publishes instead of connecting."),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Log every publish."),
    ] = False,
) -> None:
    """Run the bridge until SIGINT or SIGTERM."""
    # -- validate enum-like options -----------------------------------------
    if log_level is not None and log_level.upper() not in _VALID_LOG_LEVELS:
        raise typer.BadParameter(
            f"Invalid log level '{log_level}'. "
            f"Choose from: {', '.join(_VALID_LOG_LEVELS)}",
            param_hint="'--log-level'",
        )

    if log_format is not None and log_format.lower() not in _VALID_LOG_FORMATS:
        raise typer.BadParameter(
            f"Invalid log format '{log_format}'. "
            f"Choose from: {', '.join(_VALID_LOG_FORMATS)}",
            param_hint="'--log-format'",
        )

    # -- build settings -----------------------------------------------------
    try:
        settings = BridgeSettings.from_file(config, env_file=env_file)
    except (ValidationError, ConfigurationError) as exc:
        logger.error("Configuration error: %s", exc)
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(EXIT_CONFIG_ERROR) from exc

    # -- apply CLI overrides ------------------------------------------------
    if log_level is not None:
        settings.logging = settings.logging.model_copy(
            update={"level": log_level.upper()},
        )
    if log_format is not None:
        settings.logging = settings.logging.model_copy(
            update={"format": log_format.lower()},
        )
    if debug:
        settings.mqtt = settings.mqtt.model_copy(update={"debug": True})

    configure_logging(settings.logging, service=SERVICE_NAME, version=__version__)

    # -- run ----------------------------------------------------------------
    try:
        Bridge(settings, version=__version__, dry_run=dry_run).run()
    except Exception as exc:
        logger.error("Runtime error: %s", exc)
        raise typer.Exit(EXIT_RUNTIME_ERROR) from exc


# -- read -------------------------------------------------------------------


@cli.command("read")
def read_command(
    device: Annotated[
        str,
        typer.Option("--device", "-d", help="Serial device path."),
    ] = SerialSettings.model_fields["device"].default,
    baudrate: Annotated[
        int,
        typer.Option("--baudrate", "-b", help="Baud rate."),
    ] = SerialSettings.model_fields["baudrate"].default,
    timeout: Annotated[
        float,
        typer.Option("--timeout", "-t", help="Seconds to wait for a sample."),
    ] = SerialSettings.model_fields["read_timeout"].default,
) -> None:
    """Read one sample from the serial device and print it."""
    try:
        serial_settings = SerialSettings(
            device=device,
            baudrate=baudrate,
            read_timeout=timeout,
        )
    except ValidationError as exc:
        typer.echo(
            f"Invalid serial settings (baud rates: "
            f"{', '.join(map(str, _VALID_BAUDRATES))}): {exc}",
            err=True,
        )
        raise typer.Exit(EXIT_CONFIG_ERROR) from exc

    source = SerialSampleSource(serial_settings)
    try:
        sample = source.next_sample()
    except SampleSourceError as exc:
        typer.echo(f"Read failed: {exc}", err=True)
        raise typer.Exit(EXIT_CONFIG_ERROR) from exc
    finally:
        source.close()

    if sample is None:
        typer.echo(f"No sample from {device} within {timeout:g}s", err=True)
        raise typer.Exit(EXIT_CONFIG_ERROR)
    typer.echo(f"T{sample.channel} {sample.value}")


def main() -> None:
    """Console-script entry point."""
    cli()
