# fleet_telemetry_sync/config/loader.py
"""
Configuration loading.

Reads the YAML file, parses it, and validates it into a SyncClientConfig.
Low-level I/O and parsing errors are logged with context before being
re-raised.
"""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from fleet_telemetry_sync.config.config_models import SyncClientConfig

logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH: Path = Path('config/sync_config.yaml')


def load_config(config_path: Path | str | None = None) -> SyncClientConfig:
    """Load and validate the sync client configuration from a YAML file.

    Args:
        config_path: Path to the YAML file. Defaults to
            'config/sync_config.yaml' relative to the working directory.

    Returns:
        Validated SyncClientConfig.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the content fails validation (message carries details).

    Example:
        >>> config = load_config('config/sync_config.yaml')
        >>> config.sync.driver_batch_size
        100
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
        logger.debug('No config path provided, using default: %s', config_path)
    else:
        config_path = Path(config_path)

    logger.info('Loading sync configuration from: %s', config_path)

    if not config_path.exists():
        error_message: str = f'Configuration file not found: {config_path}'
        logger.error(error_message)
        raise FileNotFoundError(error_message)

    try:
        with Path.open(config_path, encoding='utf-8') as config_file:
            raw_config_data: Any = yaml.safe_load(config_file)
    except yaml.YAMLError as error:
        error_message = f'Failed to parse YAML configuration: {error}'
        logger.error(error_message)
        raise yaml.YAMLError(error_message) from error

    if not isinstance(raw_config_data, dict):
        error_message = (
            'Configuration root must be a mapping, '
            f'got {type(raw_config_data).__name__}'
        )
        logger.error(error_message)
        raise ValueError(error_message)

    try:
        validated_config: SyncClientConfig = SyncClientConfig.model_validate(
            raw_config_data
        )
    except ValidationError as error:
        error_message = f'Configuration validation failed: {error}'
        logger.error(error_message)
        raise ValueError(error_message) from error

    logger.info('Configuration loaded and validated successfully')
    return validated_config
