"""
Configuration package for the driver metrics sync client.

Exposes the configuration models and the YAML loader.
"""

from fleet_telemetry_sync.config.config_models import (
    LoggingConfig,
    PlatformConfig,
    SyncClientConfig,
    SyncConfig,
)
from fleet_telemetry_sync.config.loader import load_config

__all__: list[str] = [
    'LoggingConfig',
    'PlatformConfig',
    'SyncClientConfig',
    'SyncConfig',
    'load_config',
]
