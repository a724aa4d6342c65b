# fleet_telemetry_sync/models/__init__.py

from fleet_telemetry_sync.models.platform_responses import (
    PAYMENT_CASH_PREFERENCE,
    Asset,
    AuthTokenResponse,
    Balance,
    BalanceMovement,
    BreakdownEntry,
    Driver,
    DriverDetails,
    DriverPreference,
    DriverStats,
    Journey,
    JourneyTotals,
    MetafleetCompanies,
    Money,
    ResponseModelBase,
)
from fleet_telemetry_sync.models.summary import (
    DriverOutcome,
    DriverPeriodSummary,
    FailureScope,
    SyncFailure,
    SyncReport,
    format_hours_minutes,
)

__all__: list[str] = [
    'PAYMENT_CASH_PREFERENCE',
    'Asset',
    'AuthTokenResponse',
    'Balance',
    'BalanceMovement',
    'BreakdownEntry',
    'Driver',
    'DriverDetails',
    'DriverOutcome',
    'DriverPeriodSummary',
    'DriverPreference',
    'DriverStats',
    'FailureScope',
    'Journey',
    'JourneyTotals',
    'MetafleetCompanies',
    'Money',
    'ResponseModelBase',
    'SyncFailure',
    'SyncReport',
    'format_hours_minutes',
]
