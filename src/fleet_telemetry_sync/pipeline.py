# fleet_telemetry_sync/pipeline.py
"""
Consumer-facing entry point for driver metric syncs.

Wires configuration, logging, the GraphQL client and the orchestrator
together so a scheduled job or a back-office request handler needs one call.

Usage:
------
    from fleet_telemetry_sync import DriverSyncPipeline, PeriodDescriptor, PeriodKind

    # One-liner for cron jobs
    report = DriverSyncPipeline('config/sync_config.yaml').run(
        PeriodDescriptor(kind=PeriodKind.YESTERDAY)
    )

    # Weekly settlement, one report per local day
    pipeline = DriverSyncPipeline('config/sync_config.yaml')
    daily_reports = pipeline.run_by_day(
        PeriodDescriptor(kind=PeriodKind.PREVIOUS_BILLING_WEEK)
    )

Design Decisions:
-----------------
- One GraphQL client per run call: its connection pool, token and request
  semaphore are shared by every company of the run and released afterwards.

- Lookup caches live in the pipeline's aggregator and therefore survive
  across the daily runs of `run_by_day()`, so a vehicle is resolved once
  per week rather than once per day.

- No persistence: reports are returned to the caller, who owns storage.
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path

import httpx
import pandas as pd

from fleet_telemetry_sync.aggregator import DriverMetricsAggregator
from fleet_telemetry_sync.client import GraphQLClient
from fleet_telemetry_sync.common import setup_logger
from fleet_telemetry_sync.config import SyncClientConfig, load_config
from fleet_telemetry_sync.models import SyncReport
from fleet_telemetry_sync.orchestrator import ProgressCallback, SyncOrchestrator
from fleet_telemetry_sync.period import (
    PeriodDescriptor,
    PeriodKind,
    PeriodWindow,
    resolve_period_window,
    split_into_days,
)
from fleet_telemetry_sync.schema import summaries_to_dataframe

__all__: list[str] = ['DriverSyncPipeline']

logger: logging.Logger = logging.getLogger(__name__)


class DriverSyncPipeline:
    """
    Runs driver metric syncs from a configuration.

    Attributes:
        config: The loaded SyncClientConfig (read-only).
        last_report: Report of the most recent run, or None.

    Example:
        pipeline = DriverSyncPipeline('/path/to/config.yaml')
        report = pipeline.run(PeriodDescriptor(kind=PeriodKind.PREVIOUS_WEEK))
        print(f'{len(report.summaries)} drivers, {report.failure_count} failed')
    """

    def __init__(
        self,
        config: SyncClientConfig | Path | str,
        transport: httpx.AsyncBaseTransport | None = None,
        configure_logging: bool = True,
    ) -> None:
        """
        Initialize the pipeline.

        Args:
            config: A validated configuration, or a path to the YAML file.
            transport: Custom httpx transport for every client this pipeline
                opens (tests, proxies).
            configure_logging: Apply the configuration's logging section.

        Raises:
            FileNotFoundError: If the config file does not exist.
            ValueError: If the config file fails validation.
        """
        if isinstance(config, SyncClientConfig):
            self._config: SyncClientConfig = config
        else:
            self._config = load_config(Path(config))

        if configure_logging:
            setup_logger(config=self._config.logging)

        self._transport: httpx.AsyncBaseTransport | None = transport
        self._aggregator: DriverMetricsAggregator | None = None
        self._last_report: SyncReport | None = None

        logger.info(
            'Initialized DriverSyncPipeline: graphql_url=%r, timezone=%s',
            self._config.platform.graphql_url,
            self._config.sync.timezone,
        )

    @property
    def config(self) -> SyncClientConfig:
        return self._config

    @property
    def last_report(self) -> SyncReport | None:
        return self._last_report

    # -------------------------------------------------------------------------
    # Sync entry points
    # -------------------------------------------------------------------------

    def run(
        self,
        descriptor: PeriodDescriptor,
        on_progress: ProgressCallback | None = None,
        now: datetime | None = None,
    ) -> SyncReport:
        """
        Run one sync to completion from synchronous code.

        Must not be called from inside a running event loop; use run_async()
        there.

        Raises:
            AuthenticationError: If the platform rejects the credentials.
            APIError: If the company listing fails.
            SyncTimeoutError: If the run exceeds its deadline.
        """
        return asyncio.run(self.run_async(descriptor, on_progress, now))

    async def run_async(
        self,
        descriptor: PeriodDescriptor,
        on_progress: ProgressCallback | None = None,
        now: datetime | None = None,
    ) -> SyncReport:
        """Run one sync inside the caller's event loop. Same errors as run()."""
        async with self._open_client() as client:
            orchestrator = SyncOrchestrator(
                client, self._config, aggregator=self._get_aggregator(client)
            )
            report: SyncReport = await orchestrator.run(descriptor, on_progress, now)

        self._last_report = report
        return report

    def run_by_day(
        self,
        descriptor: PeriodDescriptor,
        on_progress: ProgressCallback | None = None,
        now: datetime | None = None,
    ) -> list[SyncReport]:
        """Synchronous wrapper around run_by_day_async()."""
        return asyncio.run(self.run_by_day_async(descriptor, on_progress, now))

    async def run_by_day_async(
        self,
        descriptor: PeriodDescriptor,
        on_progress: ProgressCallback | None = None,
        now: datetime | None = None,
    ) -> list[SyncReport]:
        """
        Resolve a period and sync it one local day at a time.

        Days run sequentially through one client, so the token and lookup
        caches are shared. A failing day aborts the remaining days.

        Returns:
            One report per local day, in chronological order.
        """
        timezone = self._config.sync.get_zone()
        window: PeriodWindow = resolve_period_window(
            descriptor, now=now, timezone=timezone
        )
        day_windows: list[PeriodWindow] = split_into_days(window, timezone)
        logger.info('Syncing %s as %d daily runs', window.label, len(day_windows))

        reports: list[SyncReport] = []
        async with self._open_client() as client:
            orchestrator = SyncOrchestrator(
                client, self._config, aggregator=self._get_aggregator(client)
            )
            for day_window in day_windows:
                day_descriptor = PeriodDescriptor(
                    kind=PeriodKind.CUSTOM,
                    start=day_window.start,
                    end=day_window.end,
                )
                reports.append(await orchestrator.run(day_descriptor, on_progress))

        if reports:
            self._last_report = reports[-1]
        return reports

    # -------------------------------------------------------------------------
    # Output helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def to_dataframe(report: SyncReport) -> pd.DataFrame:
        """Summaries of a report as a schema-conformant DataFrame."""
        return summaries_to_dataframe(report.summaries, report.window)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _open_client(self) -> GraphQLClient:
        return GraphQLClient(self._config, transport=self._transport)

    def _get_aggregator(self, client: GraphQLClient) -> DriverMetricsAggregator:
        """Aggregator bound to `client`, keeping the caches of earlier runs."""
        if self._aggregator is None:
            self._aggregator = DriverMetricsAggregator(client, self._config.sync)
        else:
            self._aggregator.bind_client(client)
        return self._aggregator
