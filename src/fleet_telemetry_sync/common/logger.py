# fleet_telemetry_sync/common/logger.py
"""
Logging setup for the fleet_telemetry_sync package.

Every module logs through `logging.getLogger(__name__)`; this function
configures the package-level logger those loggers inherit from.
"""

import logging
import sys
from pathlib import Path

from fleet_telemetry_sync.config import LoggingConfig

__all__: list[str] = ['setup_logger']

PACKAGE_LOGGER_NAME: str = 'fleet_telemetry_sync'

LOG_FORMAT: str = '%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s'
LOG_DATE_FORMAT: str = '%Y-%m-%d %H:%M:%S'


def setup_logger(
    logging_level: int | None = None,
    config: LoggingConfig | None = None,
) -> logging.Logger:
    """
    Configure the package logger with a console handler and optional file handler.

    Idempotent: existing handlers are removed before new ones are attached, so
    calling it twice does not duplicate output.

    Args:
        logging_level: Console level when no config is given. Defaults to INFO.
        config: Validated logging configuration. When provided, its console
            level wins over `logging_level` and a file handler is attached if
            `config.file_path` is set.

    Returns:
        The package logger ('fleet_telemetry_sync').

    Example:
        >>> setup_logger(logging_level=logging.DEBUG)
        >>> setup_logger(config=load_config().logging)
    """
    package_logger: logging.Logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    package_logger.handlers.clear()

    log_format = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    console_level: int
    if config is not None:
        console_level = config.get_console_level_int()
    elif logging_level is not None:
        console_level = logging_level
    else:
        console_level = logging.INFO

    console_handler: logging.Handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(log_format)
    console_handler.setLevel(console_level)
    package_logger.addHandler(console_handler)

    file_level: int | None = config.get_file_level_int() if config else None

    if config is not None and config.file_path is not None and file_level is not None:
        log_file_path: Path = config.file_path
        log_file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(
            filename=str(log_file_path),
            mode='a',
            encoding='utf-8',
        )
        file_handler.setFormatter(log_format)
        file_handler.setLevel(file_level)
        package_logger.addHandler(file_handler)

        if console_level <= logging.INFO:
            print(f'Logging to file: {log_file_path}', file=sys.stderr)

    # The logger itself must let through the most verbose handler's records.
    effective_level: int = console_level
    if file_level is not None:
        effective_level = min(console_level, file_level)

    package_logger.setLevel(effective_level)
    return package_logger
