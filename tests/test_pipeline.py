"""
Tests for fleet_telemetry_sync.pipeline module.

Runs the pipeline end to end against the fake platform, through both the
synchronous and the async entry points.
"""

from decimal import Decimal
from pathlib import Path
from typing import Any

import httpx
import pytest
import yaml

from conftest import REFERENCE_NOW, FakePlatform, FakeTransportHandler
from fleet_telemetry_sync.config import SyncClientConfig
from fleet_telemetry_sync.models import SyncReport
from fleet_telemetry_sync.period import PeriodDescriptor, PeriodKind
from fleet_telemetry_sync.pipeline import DriverSyncPipeline
from fleet_telemetry_sync.schema import SUMMARY_COLUMNS

PREVIOUS_WEEK: PeriodDescriptor = PeriodDescriptor(kind=PeriodKind.PREVIOUS_WEEK)


@pytest.fixture
def pipeline(
    populated_platform: FakePlatform,
    platform_handler: FakeTransportHandler,
    sync_config: SyncClientConfig,
) -> DriverSyncPipeline:
    """Pipeline over the populated fake platform."""
    return DriverSyncPipeline(
        sync_config,
        transport=httpx.MockTransport(platform_handler),
        configure_logging=False,
    )


class TestDriverSyncPipelineInitialization:
    """Test pipeline construction."""

    def test_initialization_from_config_file(
        self, tmp_path: Path, config_data: dict[str, Any]
    ) -> None:
        """Should load and validate a YAML path."""
        config_path = tmp_path / 'sync_config.yaml'
        config_path.write_text(yaml.safe_dump(config_data), encoding='utf-8')

        pipeline = DriverSyncPipeline(config_path, configure_logging=False)

        assert pipeline.config.platform.client_id == 'fleet-client'
        assert pipeline.last_report is None

    def test_initialization_raises_on_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            DriverSyncPipeline(tmp_path / 'missing.yaml', configure_logging=False)


class TestDriverSyncPipelineRun:
    """Test single-window runs."""

    def test_run_from_sync_code(self, pipeline: DriverSyncPipeline) -> None:
        """run() drives the whole sync and keeps the report."""
        report = pipeline.run(PREVIOUS_WEEK, now=REFERENCE_NOW)

        assert len(report.summaries) == 1
        summary = report.summaries[0]
        assert summary.total_earnings == Decimal('35.00')
        assert summary.vehicle_display == 'Toyota Etios (AB123CD)'
        assert summary.toll_total == Decimal('15.00')
        assert pipeline.last_report is report

    async def test_run_async(self, pipeline: DriverSyncPipeline) -> None:
        """run_async() works inside a running event loop."""
        report = await pipeline.run_async(PREVIOUS_WEEK, now=REFERENCE_NOW)

        assert report.window.label == 'Sem 41 (06/10 - 12/10)'
        assert report.failure_count == 0

    def test_to_dataframe(self, pipeline: DriverSyncPipeline) -> None:
        """The report converts to a schema-conformant frame."""
        report = pipeline.run(PREVIOUS_WEEK, now=REFERENCE_NOW)

        df = pipeline.to_dataframe(report)

        assert list(df.columns) == SUMMARY_COLUMNS
        assert df.loc[0, 'earnings_per_hour'] == 8.75  # noqa: PLR2004
        assert df.loc[0, 'period_label'] == 'Sem 41 (06/10 - 12/10)'


class TestDriverSyncPipelineRunByDay:
    """Test day-by-day runs over a week."""

    async def test_one_report_per_day(
        self,
        pipeline: DriverSyncPipeline,
        populated_platform: FakePlatform,
        platform_handler: FakeTransportHandler,
    ) -> None:
        """Seven daily reports sharing one token and the lookup caches."""
        reports: list[SyncReport] = await pipeline.run_by_day_async(
            PREVIOUS_WEEK, now=REFERENCE_NOW
        )

        assert [report.window.label for report in reports] == [
            f'{day:02d}/10/2025 - {day:02d}/10/2025' for day in range(6, 13)
        ]
        assert reports[0].window.to_api_params() == {
            'startAt': '2025-10-06T03:00:00.000Z',
            'endAt': '2025-10-07T02:59:59.999Z',
        }
        assert len(platform_handler.auth_requests) == 1
        assert populated_platform.asset_requests == [['asset-1']]
        assert populated_platform.balance_list_requests == 1
        assert pipeline.last_report is reports[-1]

    def test_caches_survive_between_calls(
        self,
        pipeline: DriverSyncPipeline,
        populated_platform: FakePlatform,
        platform_handler: FakeTransportHandler,
    ) -> None:
        """A second run reuses vehicles resolved by the first."""
        pipeline.run(PREVIOUS_WEEK, now=REFERENCE_NOW)
        pipeline.run(PREVIOUS_WEEK, now=REFERENCE_NOW)

        assert populated_platform.asset_requests == [['asset-1']]
        assert len(platform_handler.auth_requests) == 2  # noqa: PLR2004
