# fleet_telemetry_sync/orchestrator.py
"""
Sync run orchestration.

One run resolves a period window, lists companies and, for every company
concurrently, lists its drivers and computes them in batches. The result is a
`SyncReport` holding every summary plus a structured record of everything
that could not be computed.

Failure Policy:
---------------
    company listing fails     -> run aborts (nothing to iterate)
    driver listing fails      -> that company is excluded, run continues
    one driver fails          -> that driver is skipped, run continues
    authentication fails      -> run aborts
    run deadline passes       -> run aborts with SyncTimeoutError

Progress:
---------
After each batch the optional `on_progress(processed, estimated_total,
new_summaries)` callback is invoked. `estimated_total` counts drivers listed so
far across companies, so it grows while companies are still being listed.
The callback may be a plain function or a coroutine function.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from fleet_telemetry_sync.aggregator import DriverMetricsAggregator
from fleet_telemetry_sync.client import GraphQLClient
from fleet_telemetry_sync.config import SyncClientConfig
from fleet_telemetry_sync.enumerator import CompanyDriverEnumerator
from fleet_telemetry_sync.exceptions import (
    APIError,
    AuthenticationError,
    SyncTimeoutError,
)
from fleet_telemetry_sync.models import (
    Driver,
    DriverOutcome,
    DriverPeriodSummary,
    SyncFailure,
    SyncReport,
)
from fleet_telemetry_sync.period import (
    PeriodDescriptor,
    PeriodWindow,
    resolve_period_window,
)

__all__: list[str] = ['ProgressCallback', 'SyncOrchestrator']

logger: logging.Logger = logging.getLogger(__name__)

ProgressCallback = Callable[
    [int, int, list[DriverPeriodSummary]], Awaitable[None] | None
]


class _CompanyResult(BaseModel):
    """What one company contributed to the run."""

    model_config = ConfigDict(frozen=True)

    company_id: str
    processed: bool
    summaries: list[DriverPeriodSummary] = Field(default_factory=list)
    failures: list[SyncFailure] = Field(default_factory=list)


class _ProgressTracker:
    """Run-wide counters shared by the company tasks (single event loop)."""

    def __init__(self) -> None:
        self.processed: int = 0
        self.estimated_total: int = 0


class SyncOrchestrator:
    """
    Runs one sync over every company and driver for a period.

    Example:
        >>> async with GraphQLClient(config) as client:
        ...     orchestrator = SyncOrchestrator(client, config)
        ...     report = await orchestrator.run(
        ...         PeriodDescriptor(kind=PeriodKind.YESTERDAY)
        ...     )
    """

    def __init__(
        self,
        client: GraphQLClient,
        config: SyncClientConfig,
        enumerator: CompanyDriverEnumerator | None = None,
        aggregator: DriverMetricsAggregator | None = None,
    ) -> None:
        """
        Args:
            client: Open GraphQL client shared by every request of the run.
            config: Root configuration.
            enumerator: Company/driver lister. Built from the client if None.
            aggregator: Per-driver calculator. Built from the client if None;
                passing one keeps its caches across runs.
        """
        self._client: GraphQLClient = client
        self._config: SyncClientConfig = config
        self._enumerator: CompanyDriverEnumerator = (
            enumerator or CompanyDriverEnumerator(client, config)
        )
        self._aggregator: DriverMetricsAggregator = (
            aggregator or DriverMetricsAggregator(client, config.sync)
        )

    @property
    def aggregator(self) -> DriverMetricsAggregator:
        return self._aggregator

    async def run(
        self,
        descriptor: PeriodDescriptor,
        on_progress: ProgressCallback | None = None,
        now: datetime | None = None,
    ) -> SyncReport:
        """
        Execute one sync run.

        Args:
            descriptor: Period to cover.
            on_progress: Optional callback invoked after each driver batch.
            now: Reference instant for resolving the period. Defaults to the
                current time.

        Returns:
            Report with every summary and failure of the run.

        Raises:
            AuthenticationError: If the platform rejects the credentials.
            APIError: If the company listing fails.
            SyncTimeoutError: If the run exceeds `sync.run_timeout_seconds`.
        """
        started_at: datetime = datetime.now(UTC)
        window: PeriodWindow = resolve_period_window(
            descriptor, now=now, timezone=self._config.sync.get_zone()
        )
        logger.info(
            'Starting sync for %s (%s .. %s)',
            window.label,
            window.start.isoformat(),
            window.end.isoformat(),
        )

        run_timeout_seconds: float | None = self._config.sync.run_timeout_seconds
        try:
            async with asyncio.timeout(run_timeout_seconds):
                company_count, company_results, tracker = await self._run_window(
                    window, on_progress
                )
        except TimeoutError as error:
            if run_timeout_seconds is None:
                raise
            logger.error('Sync aborted after %.0fs deadline', run_timeout_seconds)
            raise SyncTimeoutError(run_timeout_seconds) from error

        summaries: list[DriverPeriodSummary] = []
        failures: list[SyncFailure] = []
        for company_result in company_results:
            summaries.extend(company_result.summaries)
            failures.extend(company_result.failures)

        report = SyncReport(
            window=window,
            summaries=summaries,
            failures=failures,
            companies_total=company_count,
            companies_processed=sum(
                1 for company_result in company_results if company_result.processed
            ),
            drivers_total=tracker.estimated_total,
            started_at=started_at,
            finished_at=datetime.now(UTC),
        )

        logger.info(
            'Sync finished for %s: %d summaries, %d driver failures, '
            '%d/%d companies processed in %.1fs',
            window.label,
            len(report.summaries),
            report.failure_count,
            report.companies_processed,
            report.companies_total,
            report.duration_seconds,
        )
        return report

    async def _run_window(
        self,
        window: PeriodWindow,
        on_progress: ProgressCallback | None,
    ) -> tuple[int, list[_CompanyResult], _ProgressTracker]:
        """List companies, then process them all concurrently."""
        company_ids: list[str] = await self._enumerator.list_companies()
        tracker = _ProgressTracker()

        tasks: list[asyncio.Task[_CompanyResult]] = [
            asyncio.create_task(
                self._process_company(company_id, window, tracker, on_progress),
                name=f'sync-company-{company_id}',
            )
            for company_id in company_ids
        ]
        try:
            company_results: list[_CompanyResult] = list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        return len(company_ids), company_results, tracker

    async def _process_company(
        self,
        company_id: str,
        window: PeriodWindow,
        tracker: _ProgressTracker,
        on_progress: ProgressCallback | None,
    ) -> _CompanyResult:
        """
        List a company's drivers and compute them batch by batch.

        Raises:
            AuthenticationError: Propagated; aborts the run.
        """
        try:
            drivers: list[Driver] = await self._enumerator.list_drivers(company_id)
        except AuthenticationError:
            raise
        except (APIError, ValidationError) as error:
            logger.error(
                'Company %s excluded: could not list drivers: %s', company_id, error
            )
            return _CompanyResult(
                company_id=company_id,
                processed=False,
                failures=[
                    SyncFailure.from_exception('company', company_id, company_id, error)
                ],
            )

        tracker.estimated_total += len(drivers)

        summaries: list[DriverPeriodSummary] = []
        failures: list[SyncFailure] = []
        batch_size: int = self._config.sync.driver_batch_size

        for batch_start in range(0, len(drivers), batch_size):
            batch: list[Driver] = drivers[batch_start : batch_start + batch_size]
            outcomes: list[DriverOutcome] = await self._aggregator.compute_batch(
                batch, company_id, window
            )

            new_summaries: list[DriverPeriodSummary] = [
                outcome.summary for outcome in outcomes if outcome.summary is not None
            ]
            summaries.extend(new_summaries)
            failures.extend(
                outcome.failure for outcome in outcomes if outcome.failure is not None
            )
            tracker.processed += len(batch)

            logger.debug(
                'Company %s: batch of %d done (%d ok), progress %d/%d',
                company_id,
                len(batch),
                len(new_summaries),
                tracker.processed,
                tracker.estimated_total,
            )
            await self._notify_progress(
                on_progress, tracker.processed, tracker.estimated_total, new_summaries
            )

        return _CompanyResult(
            company_id=company_id,
            processed=True,
            summaries=summaries,
            failures=failures,
        )

    @staticmethod
    async def _notify_progress(
        on_progress: ProgressCallback | None,
        processed: int,
        estimated_total: int,
        new_summaries: list[DriverPeriodSummary],
    ) -> None:
        if on_progress is None:
            return
        try:
            callback_result: Awaitable[None] | None = on_progress(
                processed, estimated_total, new_summaries
            )
            if inspect.isawaitable(callback_result):
                await callback_result
        except Exception:
            logger.exception(
                'Progress callback failed at %d/%d; continuing',
                processed,
                estimated_total,
            )
