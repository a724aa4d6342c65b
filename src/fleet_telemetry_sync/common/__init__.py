# fleet_telemetry_sync/common/__init__.py

from fleet_telemetry_sync.common.logger import setup_logger
from fleet_telemetry_sync.common.truststore_context import build_truststore_ssl_context

__all__: list[str] = [
    'build_truststore_ssl_context',
    'setup_logger',
]
