# fleet_telemetry_sync/schema.py
"""
Tabular schema for driver period summaries.

Provides the canonical column list and DataFrame type enforcement for
`DriverPeriodSummary` records, so every consumer of a sync report (CSV export,
notebook analysis, back-office import) sees the same columns and dtypes.

The schema is flat: one row per driver per window, with the window bounds
repeated on every row so frames from several runs can be concatenated.
"""

import logging
from collections.abc import Iterable
from typing import Any, Final

import numpy as np
import pandas as pd

from fleet_telemetry_sync.models import DriverPeriodSummary
from fleet_telemetry_sync.period import PeriodWindow

logger: logging.Logger = logging.getLogger(__name__)

__all__: list[str] = [
    'BACK_OFFICE_COLUMN_NAMES',
    'SORT_COLUMNS',
    'SUMMARY_COLUMNS',
    'enforce_summary_schema',
    'summaries_to_dataframe',
]

# =============================================================================
# Schema Constants
# =============================================================================

# Canonical column order for summary frames.
SUMMARY_COLUMNS: Final[list[str]] = [
    'window_start',  # Window start (UTC, timezone-aware)
    'window_end',  # Window end (UTC, timezone-aware)
    'period_label',  # e.g. 'Sem 41 (06/10 - 12/10)'
    'company_id',  # Tenant the driver belongs to
    'driver_id',  # Platform driver id
    'name',
    'surname',
    'email',
    'national_id',
    'license_number',
    'mobile_number',
    'disabled',  # Driver disabled on the platform
    'score',  # Platform score
    'asset_id',  # Vehicle of the most recent trip
    'vehicle_display',  # 'Make Model (PLATE)'
    'trips_offered',
    'trips_accepted',
    'trips_missed',
    'trips_rejected',
    'trips_completed',
    'acceptance_rate',  # Percent, 2 decimals
    'connected_hours',  # Hours, 1 decimal
    'connected_hours_display',  # '7h 45m'
    'occupancy_rate',  # Percent, 2 decimals
    'cash_earnings',  # Currency units
    'app_earnings',  # Currency units
    'total_earnings',  # Currency units, == cash + app
    'earnings_per_hour',  # Currency units per connected hour
    'toll_total',  # Currency units
    'cash_payment_enabled',  # Driver may accept cash trips
]

# Rows are grouped per company and ordered by driver name within it.
SORT_COLUMNS: Final[list[str]] = ['company_id', 'surname', 'name', 'driver_id']

_DATETIME_COLUMNS: Final[list[str]] = ['window_start', 'window_end']
_INTEGER_COLUMNS: Final[list[str]] = [
    'trips_offered',
    'trips_accepted',
    'trips_missed',
    'trips_rejected',
    'trips_completed',
]
_FLOAT_COLUMNS: Final[list[str]] = [
    'score',
    'acceptance_rate',
    'connected_hours',
    'occupancy_rate',
    'cash_earnings',
    'app_earnings',
    'total_earnings',
    'earnings_per_hour',
    'toll_total',
]
_BOOLEAN_COLUMNS: Final[list[str]] = ['disabled', 'cash_payment_enabled']

# Column names expected by the back office, keyed by schema column.
BACK_OFFICE_COLUMN_NAMES: Final[dict[str, str]] = {
    column: str(field.serialization_alias)
    for column, field in DriverPeriodSummary.model_fields.items()
    if column in SUMMARY_COLUMNS and field.serialization_alias
} | {
    'vehicle_display': 'vehiculo',
    'connected_hours_display': 'horasConectadasFormato',
}


# =============================================================================
# Schema Functions
# =============================================================================


def _summary_to_row(
    summary: DriverPeriodSummary,
    window: PeriodWindow | None,
) -> dict[str, Any]:
    row: dict[str, Any] = summary.model_dump()
    row['window_start'] = window.start if window is not None else pd.NaT
    row['window_end'] = window.end if window is not None else pd.NaT
    row['period_label'] = window.label if window is not None else ''
    return row


def summaries_to_dataframe(
    summaries: Iterable[DriverPeriodSummary],
    window: PeriodWindow | None = None,
) -> pd.DataFrame:
    """
    Build a schema-conformant DataFrame from summaries.

    Args:
        summaries: Summaries of one run.
        window: The run's window, copied onto every row.

    Returns:
        DataFrame with exactly SUMMARY_COLUMNS, sorted by SORT_COLUMNS. Empty
        (but with the columns) when there are no summaries.
    """
    rows: list[dict[str, Any]] = [
        _summary_to_row(summary, window) for summary in summaries
    ]
    if not rows:
        logger.warning('No summaries to convert; returning empty DataFrame')
        return enforce_summary_schema(pd.DataFrame(columns=SUMMARY_COLUMNS))

    dataframe: pd.DataFrame = enforce_summary_schema(pd.DataFrame(rows))
    dataframe = dataframe.sort_values(SORT_COLUMNS, kind='stable').reset_index(
        drop=True
    )

    logger.info(
        'Created summary DataFrame: %d rows, %d columns',
        len(dataframe),
        len(dataframe.columns),
    )
    return dataframe


def enforce_summary_schema(dataframe: pd.DataFrame) -> pd.DataFrame:
    """
    Enforce column set, order and dtypes on a summary DataFrame.

    Idempotent: enforcing an already-conformant frame returns an equal frame.

    Args:
        dataframe: Frame with at least SUMMARY_COLUMNS. Extra columns are
            dropped.

    Returns:
        DataFrame with enforced types:
            - window_start/window_end: datetime64[ns, UTC]
            - trip counters: Int64 (nullable)
            - rates, hours, money: float64 (money rounded to 2 decimals)
            - flags: bool
            - company_id: category
            - all others: object (string)

    Raises:
        ValueError: If required columns are missing.
    """
    missing_columns: set[str] = set(SUMMARY_COLUMNS) - set(dataframe.columns)
    if missing_columns:
        raise ValueError(
            f'DataFrame missing required columns: {sorted(missing_columns)}'
        )

    result: pd.DataFrame = dataframe[SUMMARY_COLUMNS].copy()

    for column_name in _DATETIME_COLUMNS:
        result[column_name] = pd.to_datetime(
            result[column_name], utc=True, errors='coerce'
        )

    for column_name in _INTEGER_COLUMNS:
        result[column_name] = pd.to_numeric(
            result[column_name], errors='coerce'
        ).astype('Int64')

    for column_name in _FLOAT_COLUMNS:
        result[column_name] = (
            pd.to_numeric(result[column_name], errors='coerce')
            .astype(np.float64)
            .round(2)
        )

    for column_name in _BOOLEAN_COLUMNS:
        result[column_name] = result[column_name].eq(True)

    result['company_id'] = result['company_id'].astype('category')

    non_string_columns: set[str] = (
        set(_DATETIME_COLUMNS)
        | set(_INTEGER_COLUMNS)
        | set(_FLOAT_COLUMNS)
        | set(_BOOLEAN_COLUMNS)
        | {'company_id'}
    )
    string_columns: list[str] = [
        column for column in SUMMARY_COLUMNS if column not in non_string_columns
    ]
    for column_name in string_columns:
        result[column_name] = result[column_name].fillna('').astype(str)

    return result
