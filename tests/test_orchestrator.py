"""
Tests for fleet_telemetry_sync.orchestrator and enumerator modules.

Runs complete syncs against the fake platform and checks the failure policy:
driver and company failures are isolated, authentication and company listing
failures abort the run.
"""

import asyncio
from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

import pytest

from conftest import (
    REFERENCE_NOW,
    FakePlatform,
    FakeTransportHandler,
    details_record,
    driver_record,
    journey_record,
)
from fleet_telemetry_sync.client import GraphQLClient
from fleet_telemetry_sync.config import SyncClientConfig
from fleet_telemetry_sync.enumerator import CompanyDriverEnumerator
from fleet_telemetry_sync.exceptions import (
    AuthenticationError,
    GraphQLError,
    SyncTimeoutError,
)
from fleet_telemetry_sync.models import DriverPeriodSummary
from fleet_telemetry_sync.orchestrator import SyncOrchestrator
from fleet_telemetry_sync.period import PeriodDescriptor, PeriodKind

PREVIOUS_WEEK: PeriodDescriptor = PeriodDescriptor(kind=PeriodKind.PREVIOUS_WEEK)


def add_drivers(
    platform: FakePlatform,
    company_id: str,
    driver_ids: list[str],
) -> None:
    """Register drivers with default stats and no journeys."""
    platform.drivers.setdefault(company_id, [])
    for driver_id in driver_ids:
        platform.drivers[company_id].append(driver_record(driver_id))
        platform.details[driver_id] = details_record()


class TestCompanyDriverEnumerator:
    """Test company and driver listing."""

    async def test_companies_deduplicated_in_order(
        self,
        fake_platform: FakePlatform,
        platform_handler: FakeTransportHandler,
        make_client: Callable[..., GraphQLClient],
        sync_config: SyncClientConfig,
    ) -> None:
        """Duplicate and blank ids are dropped, order is kept."""
        fake_platform.companies = ['c2', 'c1', 'c2', '']

        async with make_client(platform_handler) as client:
            enumerator = CompanyDriverEnumerator(client, sync_config)
            company_ids = await enumerator.list_companies()

        assert company_ids == ['c2', 'c1']

    async def test_empty_listing_falls_back_to_configured_company(
        self,
        fake_platform: FakePlatform,
        platform_handler: FakeTransportHandler,
        make_client: Callable[..., GraphQLClient],
        config_data: dict[str, Any],
    ) -> None:
        """A non-metafleet account uses platform.company_id."""
        fake_platform.companies = []
        config_data['platform']['company_id'] = 'own-company'
        config = SyncClientConfig.model_validate(config_data)

        async with make_client(platform_handler, config) as client:
            company_ids = await CompanyDriverEnumerator(client, config).list_companies()

        assert company_ids == ['own-company']

    async def test_empty_listing_without_fallback(
        self,
        fake_platform: FakePlatform,
        platform_handler: FakeTransportHandler,
        make_client: Callable[..., GraphQLClient],
        sync_config: SyncClientConfig,
    ) -> None:
        fake_platform.companies = []

        async with make_client(platform_handler) as client:
            enumerator = CompanyDriverEnumerator(client, sync_config)
            assert await enumerator.list_companies() == []

    async def test_list_drivers_drains_pages(
        self,
        fake_platform: FakePlatform,
        platform_handler: FakeTransportHandler,
        make_client: Callable[..., GraphQLClient],
        make_config: Callable[..., SyncClientConfig],
    ) -> None:
        """Should request every page of the driver listing."""
        add_drivers(fake_platform, 'company-1', [f'd{index}' for index in range(5)])
        config = make_config(driver_page_size=2)

        async with make_client(platform_handler, config) as client:
            drivers = await CompanyDriverEnumerator(client, config).list_drivers(
                'company-1'
            )

        assert [driver.driver_id for driver in drivers] == [
            'd0',
            'd1',
            'd2',
            'd3',
            'd4',
        ]
        assert len(platform_handler.graphql_payloads) == 3  # noqa: PLR2004


class TestSyncOrchestratorRun:
    """Test complete runs."""

    async def test_failing_driver_skipped(
        self,
        fake_platform: FakePlatform,
        platform_handler: FakeTransportHandler,
        make_client: Callable[..., GraphQLClient],
        sync_config: SyncClientConfig,
    ) -> None:
        """Five drivers, one failing: four summaries and one failure."""
        add_drivers(fake_platform, 'company-1', [f'driver-{n}' for n in range(1, 6)])
        fake_platform.failing_drivers.add('driver-3')

        async with make_client(platform_handler) as client:
            report = await SyncOrchestrator(client, sync_config).run(
                PREVIOUS_WEEK, now=REFERENCE_NOW
            )

        assert len(report.summaries) == 4  # noqa: PLR2004
        assert report.failure_count == 1
        assert report.failures[0].entity_id == 'driver-3'
        assert report.drivers_total == 5  # noqa: PLR2004
        assert report.window.label == 'Sem 41 (06/10 - 12/10)'
        assert 'driver-3' not in {summary.driver_id for summary in report.summaries}

    async def test_shared_vehicles_requested_once(
        self,
        fake_platform: FakePlatform,
        platform_handler: FakeTransportHandler,
        make_client: Callable[..., GraphQLClient],
        sync_config: SyncClientConfig,
    ) -> None:
        """Three drivers on two vehicles: one lookup request for two ids."""
        add_drivers(fake_platform, 'company-1', ['d1', 'd2', 'd3'])
        for driver_id, asset_id in [('d1', 'x'), ('d2', 'x'), ('d3', 'y')]:
            fake_platform.journeys[driver_id] = [
                journey_record(f'j-{driver_id}', asset_id, 100)
            ]
        fake_platform.assets[('company-1', 'x')] = {'id': 'x', 'make': 'Fiat'}
        fake_platform.assets[('company-1', 'y')] = {'id': 'y', 'make': 'Ford'}

        async with make_client(platform_handler) as client:
            report = await SyncOrchestrator(client, sync_config).run(
                PREVIOUS_WEEK, now=REFERENCE_NOW
            )

        assert fake_platform.asset_requests == [['x', 'y']]
        assert len(report.summaries) == 3  # noqa: PLR2004

    async def test_company_failure_isolated(
        self,
        fake_platform: FakePlatform,
        platform_handler: FakeTransportHandler,
        make_client: Callable[..., GraphQLClient],
        sync_config: SyncClientConfig,
    ) -> None:
        """A company whose drivers cannot be listed is excluded."""
        fake_platform.companies = ['company-1', 'company-2']
        add_drivers(fake_platform, 'company-1', ['d1'])
        add_drivers(fake_platform, 'company-2', ['d2'])
        fake_platform.failing_companies.add('company-2')

        async with make_client(platform_handler) as client:
            report = await SyncOrchestrator(client, sync_config).run(
                PREVIOUS_WEEK, now=REFERENCE_NOW
            )

        assert [summary.driver_id for summary in report.summaries] == ['d1']
        assert report.companies_total == 2  # noqa: PLR2004
        assert report.companies_processed == 1
        assert report.company_failure_count == 1
        assert report.failure_count == 0
        assert report.failures[0].scope == 'company'
        assert report.failures[0].entity_id == 'company-2'

    async def test_company_listing_failure_aborts(
        self,
        fake_platform: FakePlatform,
        platform_handler: FakeTransportHandler,
        make_client: Callable[..., GraphQLClient],
        sync_config: SyncClientConfig,
    ) -> None:
        """Without a company list there is nothing to run."""
        fake_platform.company_listing_fails = True

        async with make_client(platform_handler) as client:
            with pytest.raises(GraphQLError, match='not a metafleet account'):
                await SyncOrchestrator(client, sync_config).run(
                    PREVIOUS_WEEK, now=REFERENCE_NOW
                )

    async def test_authentication_failure_aborts(
        self,
        fake_platform: FakePlatform,
        platform_handler: FakeTransportHandler,
        make_client: Callable[..., GraphQLClient],
        sync_config: SyncClientConfig,
    ) -> None:
        """Rejected credentials are fatal."""
        add_drivers(fake_platform, 'company-1', ['d1'])
        platform_handler.auth_status = 401

        async with make_client(platform_handler) as client:
            with pytest.raises(AuthenticationError):
                await SyncOrchestrator(client, sync_config).run(
                    PREVIOUS_WEEK, now=REFERENCE_NOW
                )

    async def test_no_companies_gives_empty_report(
        self,
        fake_platform: FakePlatform,
        platform_handler: FakeTransportHandler,
        make_client: Callable[..., GraphQLClient],
        sync_config: SyncClientConfig,
    ) -> None:
        fake_platform.companies = []

        async with make_client(platform_handler) as client:
            report = await SyncOrchestrator(client, sync_config).run(
                PREVIOUS_WEEK, now=REFERENCE_NOW
            )

        assert report.summaries == []
        assert report.companies_total == 0
        assert report.duration_seconds >= 0


class TestSyncOrchestratorProgress:
    """Test the progress callback."""

    async def test_progress_reported_per_batch(
        self,
        fake_platform: FakePlatform,
        platform_handler: FakeTransportHandler,
        make_client: Callable[..., GraphQLClient],
        make_config: Callable[..., SyncClientConfig],
    ) -> None:
        """Batches of two over five drivers report 2, 4, 5."""
        add_drivers(fake_platform, 'company-1', [f'd{index}' for index in range(5)])
        config = make_config(driver_batch_size=2)
        calls: list[tuple[int, int, int]] = []

        def on_progress(
            processed: int, total: int, summaries: list[DriverPeriodSummary]
        ) -> None:
            calls.append((processed, total, len(summaries)))

        async with make_client(platform_handler, config) as client:
            await SyncOrchestrator(client, config).run(
                PREVIOUS_WEEK, on_progress=on_progress, now=REFERENCE_NOW
            )

        assert calls == [(2, 5, 2), (4, 5, 2), (5, 5, 1)]

    async def test_async_progress_callback_awaited(
        self,
        fake_platform: FakePlatform,
        platform_handler: FakeTransportHandler,
        make_client: Callable[..., GraphQLClient],
        sync_config: SyncClientConfig,
    ) -> None:
        """Coroutine callbacks are awaited."""
        add_drivers(fake_platform, 'company-1', ['d1', 'd2'])
        received: list[str] = []

        async def on_progress(
            processed: int, total: int, summaries: list[DriverPeriodSummary]
        ) -> None:
            await asyncio.sleep(0)
            received.extend(summary.driver_id for summary in summaries)

        async with make_client(platform_handler) as client:
            await SyncOrchestrator(client, sync_config).run(
                PREVIOUS_WEEK, on_progress=on_progress, now=REFERENCE_NOW
            )

        assert received == ['d1', 'd2']

    async def test_failing_callback_does_not_abort_run(
        self,
        fake_platform: FakePlatform,
        platform_handler: FakeTransportHandler,
        make_client: Callable[..., GraphQLClient],
        make_config: Callable[..., SyncClientConfig],
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """A raising callback is logged; every batch is still summarised."""
        add_drivers(fake_platform, 'company-1', [f'd{index}' for index in range(5)])
        config = make_config(driver_batch_size=2)
        calls: list[int] = []

        async def on_progress(
            processed: int, total: int, summaries: list[DriverPeriodSummary]
        ) -> None:
            calls.append(processed)
            raise RuntimeError('progress sink unavailable')

        async with make_client(platform_handler, config) as client:
            report = await SyncOrchestrator(client, config).run(
                PREVIOUS_WEEK, on_progress=on_progress, now=REFERENCE_NOW
            )

        assert calls == [2, 4, 5]
        assert len(report.summaries) == 5  # noqa: PLR2004
        assert report.failure_count == 0
        assert 'Progress callback failed' in caplog.text


class TestSyncOrchestratorTimeout:
    """Test the run deadline."""

    async def test_deadline_raises_sync_timeout(
        self,
        platform_handler: FakeTransportHandler,
        make_client: Callable[..., GraphQLClient],
        make_config: Callable[..., SyncClientConfig],
    ) -> None:
        """A run exceeding run_timeout_seconds raises SyncTimeoutError."""
        config = make_config(run_timeout_seconds=0.05)

        async def never_finishes() -> list[str]:
            await asyncio.sleep(10)
            return []

        enumerator = MagicMock(spec=CompanyDriverEnumerator)
        enumerator.list_companies = never_finishes

        async with make_client(platform_handler, config) as client:
            orchestrator = SyncOrchestrator(client, config, enumerator=enumerator)
            with pytest.raises(SyncTimeoutError) as exc_info:
                await orchestrator.run(PREVIOUS_WEEK, now=REFERENCE_NOW)

        assert exc_info.value.timeout_seconds == 0.05  # noqa: PLR2004
