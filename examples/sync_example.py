#!/usr/bin/env python3
"""
Example usage of the driver metrics sync pipeline.

Syncs the previous complete week for every driver of every company the
account can see, prints a short report and writes the summaries to CSV with
the back office's column names.
"""

import logging
import sys

from fleet_telemetry_sync import (
    DriverSyncPipeline,
    PeriodDescriptor,
    PeriodKind,
    SyncReport,
)
from fleet_telemetry_sync.models import DriverPeriodSummary
from fleet_telemetry_sync.schema import BACK_OFFICE_COLUMN_NAMES

logger = logging.getLogger(__name__)


def print_progress(
    processed: int, estimated_total: int, new_summaries: list[DriverPeriodSummary]
) -> None:
    print(f'  {processed}/{estimated_total} drivers (+{len(new_summaries)})')


def main() -> int:
    """Run the previous-week sync example."""
    pipeline = DriverSyncPipeline('config/sync_config.yaml')

    report: SyncReport = pipeline.run(
        PeriodDescriptor(kind=PeriodKind.PREVIOUS_WEEK),
        on_progress=print_progress,
    )

    logger.info('Period: %s', report.window.label)
    logger.info(
        'Summaries: %d, failed drivers: %d, excluded companies: %d',
        len(report.summaries),
        report.failure_count,
        report.company_failure_count,
    )
    for failure in report.failures:
        logger.warning(
            '%s %s: %s (%s)',
            failure.scope,
            failure.entity_id,
            failure.reason,
            failure.error_type,
        )

    df = pipeline.to_dataframe(report)
    if df.empty:
        logger.warning('No summaries returned')
        return 1

    print(df[['surname', 'name', 'total_earnings', 'connected_hours_display']])

    df.rename(columns=BACK_OFFICE_COLUMN_NAMES).to_csv(
        'driver_summaries.csv', index=False
    )
    logger.info('Wrote driver_summaries.csv')
    return 0


if __name__ == '__main__':
    sys.exit(main())
