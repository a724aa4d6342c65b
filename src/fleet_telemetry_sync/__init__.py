# fleet_telemetry_sync/__init__.py
"""
Fleet Telemetry Sync - Driver metrics acquisition for ride-hailing fleets.

This package pulls per-driver operational and financial metrics from a
ride-hailing partner GraphQL API for every company of a fleet account, over a
calendar period, and returns them as validated summaries:

1. **Sync Pipeline**: Scheduled or on-demand runs
   - DriverSyncPipeline wires config, logging, client and orchestrator
   - Named periods (yesterday, previous week, billing week) or custom ranges
   - Per-day runs for weekly settlements
   - Partial results: one failing driver never aborts the run

2. **GraphQL Client Layer**: Direct API access
   - Token lifecycle with single-flight renewal
   - Bounded concurrency, retries with exponential backoff
   - Pagination and alias-batched lookups with per-alias errors

Quick Start - Pipeline:
    >>> from fleet_telemetry_sync import DriverSyncPipeline, PeriodDescriptor
    >>> from fleet_telemetry_sync import PeriodKind
    >>>
    >>> pipeline = DriverSyncPipeline('config/sync_config.yaml')
    >>> report = pipeline.run(PeriodDescriptor(kind=PeriodKind.PREVIOUS_WEEK))
    >>> df = pipeline.to_dataframe(report)

Quick Start - Client:
    >>> from fleet_telemetry_sync import GraphQLClient, load_config
    >>>
    >>> async with GraphQLClient(load_config()) as client:
    ...     data = await client.execute('{ metafleetCompanies { companyIds } }')
"""

__version__ = '0.1.0'

from fleet_telemetry_sync.aggregator import DriverMetricsAggregator
from fleet_telemetry_sync.cache import LookupCache
from fleet_telemetry_sync.client import GraphQLClient
from fleet_telemetry_sync.common import setup_logger
from fleet_telemetry_sync.config import SyncClientConfig, load_config
from fleet_telemetry_sync.enumerator import CompanyDriverEnumerator
from fleet_telemetry_sync.exceptions import (
    APIError,
    AuthenticationError,
    GraphQLError,
    NetworkError,
    RateLimitError,
    SyncTimeoutError,
    TransientAPIError,
)
from fleet_telemetry_sync.models import (
    DriverPeriodSummary,
    SyncFailure,
    SyncReport,
)
from fleet_telemetry_sync.orchestrator import ProgressCallback, SyncOrchestrator
from fleet_telemetry_sync.period import (
    PeriodDescriptor,
    PeriodKind,
    PeriodWindow,
    available_weeks,
    resolve_period_window,
)
from fleet_telemetry_sync.pipeline import DriverSyncPipeline
from fleet_telemetry_sync.schema import SUMMARY_COLUMNS, summaries_to_dataframe
from fleet_telemetry_sync.session import SessionManager

__all__: list[str] = [
    'SUMMARY_COLUMNS',
    'APIError',
    'AuthenticationError',
    'CompanyDriverEnumerator',
    'DriverMetricsAggregator',
    'DriverPeriodSummary',
    'DriverSyncPipeline',
    'GraphQLClient',
    'GraphQLError',
    'LookupCache',
    'NetworkError',
    'PeriodDescriptor',
    'PeriodKind',
    'PeriodWindow',
    'ProgressCallback',
    'RateLimitError',
    'SessionManager',
    'SyncClientConfig',
    'SyncFailure',
    'SyncOrchestrator',
    'SyncReport',
    'SyncTimeoutError',
    'TransientAPIError',
    'available_weeks',
    'load_config',
    'resolve_period_window',
    'setup_logger',
    'summaries_to_dataframe',
]
