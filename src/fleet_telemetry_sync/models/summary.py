# fleet_telemetry_sync/models/summary.py
"""
Output records of a sync run.

`DriverPeriodSummary` is the flat, per-driver, per-window record consumed by the
back office. Attributes use English names; `model_dump(by_alias=True)` emits
the back office's own column names (gananciaTotal, cobroEfectivo, ...), so
the consumer's schema does not leak into the code.

Money fields are Decimal in currency units with two decimal places. They are
derived from integer minor units, so `total_earnings == cash_earnings +
app_earnings` holds exactly and is enforced by validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    model_validator,
)

from fleet_telemetry_sync.models.platform_responses import Asset
from fleet_telemetry_sync.period import PeriodWindow

__all__: list[str] = [
    'DriverOutcome',
    'DriverPeriodSummary',
    'FailureScope',
    'SyncFailure',
    'SyncReport',
    'format_hours_minutes',
]

FailureScope = Literal['company', 'driver']

_SECONDS_PER_MINUTE: int = 60
_MINUTES_PER_HOUR: int = 60


def format_hours_minutes(hours: float) -> str:
    """
    Render fractional hours as '{h}h {m}m' (minutes rounded to nearest).

    Example:
        >>> format_hours_minutes(7.75)
        '7h 45m'
    """
    total_minutes: int = round(hours * _MINUTES_PER_HOUR)
    whole_hours, minutes = divmod(total_minutes, _MINUTES_PER_HOUR)
    return f'{whole_hours}h {minutes}m'


# =============================================================================
# Driver Summary
# =============================================================================


class DriverPeriodSummary(BaseModel):
    """
    One driver's metrics over one period window.

    Identity comes from the driver stats query (falling back to the listing),
    vehicle fields from the asset of the most recent trip, and everything else
    from the reduction of stats, trips and toll movements.

    Rates are percentages in [0, 100] rounded to two decimals. Hours are
    rounded to one decimal; `earnings_per_hour` divides by the unrounded hours.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    # Identity
    driver_id: str = Field(serialization_alias='id')
    company_id: str = Field(serialization_alias='companyId')
    name: str = Field(default='', serialization_alias='name')
    surname: str = Field(default='', serialization_alias='surname')
    email: str = Field(default='', serialization_alias='email')
    national_id: str = Field(default='', serialization_alias='nationalIdNumber')
    license_number: str = Field(default='', serialization_alias='driverLicense')
    mobile_number: str = Field(default='', serialization_alias='mobileNum')
    mobile_country_code: str = Field(default='', serialization_alias='mobileCc')
    disabled: bool = Field(default=False, serialization_alias='disabled')
    activated_at: datetime | None = Field(
        default=None, serialization_alias='activatedAt'
    )
    score: float = Field(default=0.0, serialization_alias='score')

    # Vehicle
    asset_id: str = Field(default='', serialization_alias='assetId')
    vehicle_make: str = Field(default='', serialization_alias='vehiculoMarca')
    vehicle_model: str = Field(default='', serialization_alias='vehiculoModelo')
    vehicle_reg_plate: str = Field(default='', serialization_alias='patente')

    # Activity
    trips_offered: int = Field(default=0, ge=0, serialization_alias='viajesOfrecidos')
    trips_accepted: int = Field(default=0, ge=0, serialization_alias='viajesAceptados')
    trips_missed: int = Field(default=0, ge=0, serialization_alias='viajesPerdidos')
    trips_rejected: int = Field(default=0, ge=0, serialization_alias='viajesRechazados')
    trips_completed: int = Field(
        default=0, ge=0, serialization_alias='viajesFinalizados'
    )
    acceptance_rate: float = Field(
        default=0.0, ge=0, le=100, serialization_alias='tasaAceptacion'
    )
    connected_hours: float = Field(
        default=0.0, ge=0, serialization_alias='horasConectadas'
    )
    occupancy_rate: float = Field(
        default=0.0, ge=0, le=100, serialization_alias='tasaOcupacion'
    )

    # Money (currency units)
    cash_earnings: Decimal = Field(
        default=Decimal('0.00'), serialization_alias='cobroEfectivo'
    )
    app_earnings: Decimal = Field(
        default=Decimal('0.00'), serialization_alias='cobroApp'
    )
    total_earnings: Decimal = Field(
        default=Decimal('0.00'), serialization_alias='gananciaTotal'
    )
    earnings_per_hour: Decimal = Field(
        default=Decimal('0.00'), serialization_alias='gananciaPorHora'
    )
    toll_total: Decimal = Field(default=Decimal('0.00'), serialization_alias='peajes')
    cash_payment_enabled: bool = Field(
        default=False, serialization_alias='permisoEfectivo'
    )

    @model_validator(mode='after')
    def validate_earnings_split(self) -> Self:
        """
        Total earnings must equal cash plus app earnings exactly.

        Raises:
            ValueError: If the split does not add up.
        """
        if self.total_earnings != self.cash_earnings + self.app_earnings:
            raise ValueError(
                f'total_earnings ({self.total_earnings}) != cash_earnings '
                f'({self.cash_earnings}) + app_earnings ({self.app_earnings})'
            )
        return self

    @computed_field(alias='horasConectadasFormato')  # type: ignore[prop-decorator]
    @property
    def connected_hours_display(self) -> str:
        """Connected hours as '{h}h {m}m'."""
        return format_hours_minutes(self.connected_hours)

    @computed_field(alias='vehiculo')  # type: ignore[prop-decorator]
    @property
    def vehicle_display(self) -> str:
        """'Make Model (PLATE)', or '' when no vehicle was resolved."""
        description: str = ' '.join(
            part for part in (self.vehicle_make, self.vehicle_model) if part
        )
        if self.vehicle_reg_plate:
            return f'{description} ({self.vehicle_reg_plate})'.strip()
        return description

    @property
    def full_name(self) -> str:
        """'Name Surname' with surrounding whitespace trimmed."""
        return f'{self.name} {self.surname}'.strip()

    def with_asset(self, asset: Asset | None) -> Self:
        """Return a copy with the vehicle fields taken from `asset`."""
        if asset is None:
            return self
        return self.model_copy(
            update={
                'vehicle_make': asset.make,
                'vehicle_model': asset.model,
                'vehicle_reg_plate': asset.reg_plate,
            }
        )


# =============================================================================
# Run Results
# =============================================================================


class SyncFailure(BaseModel):
    """
    A structured record of one thing a run could not compute.

    Attributes:
        scope: 'company' when a whole company was excluded (driver listing
            failed), 'driver' when a single driver was skipped.
        entity_id: Company id or driver id, depending on scope.
        company_id: Company the entity belongs to.
        reason: Human-readable error message.
        error_type: Exception class name, for grouping.
    """

    model_config = ConfigDict(frozen=True)

    scope: FailureScope
    entity_id: str
    company_id: str
    reason: str
    error_type: str = ''

    @classmethod
    def from_exception(
        cls,
        scope: FailureScope,
        entity_id: str,
        company_id: str,
        error: BaseException,
    ) -> Self:
        """Build a failure record from a caught exception."""
        return cls(
            scope=scope,
            entity_id=entity_id,
            company_id=company_id,
            reason=str(error) or type(error).__name__,
            error_type=type(error).__name__,
        )


class DriverOutcome(BaseModel):
    """Result of computing one driver: exactly one of summary or failure."""

    model_config = ConfigDict(frozen=True)

    driver_id: str
    company_id: str
    summary: DriverPeriodSummary | None = None
    failure: SyncFailure | None = None

    @model_validator(mode='after')
    def validate_exactly_one(self) -> Self:
        """
        Raises:
            ValueError: If both or neither of summary and failure are set.
        """
        if (self.summary is None) == (self.failure is None):
            raise ValueError('DriverOutcome needs exactly one of summary or failure')
        return self

    @property
    def succeeded(self) -> bool:
        return self.summary is not None


class SyncReport(BaseModel):
    """
    Everything one sync run produced.

    Order of `summaries` and `failures` is incidental (companies run
    concurrently).

    Attributes:
        window: The resolved period window shared by every summary.
        summaries: One summary per successfully computed driver.
        failures: Company-level and driver-level failures.
        companies_total: Companies returned by the company listing.
        companies_processed: Companies whose drivers could be listed.
        drivers_total: Drivers listed across processed companies.
        started_at: Run start (UTC).
        finished_at: Run end (UTC).
    """

    model_config = ConfigDict(frozen=True)

    window: PeriodWindow
    summaries: list[DriverPeriodSummary] = Field(default_factory=list)
    failures: list[SyncFailure] = Field(default_factory=list)
    companies_total: int = 0
    companies_processed: int = 0
    drivers_total: int = 0
    started_at: datetime
    finished_at: datetime

    @property
    def failure_count(self) -> int:
        """Number of drivers that could not be computed."""
        return sum(1 for failure in self.failures if failure.scope == 'driver')

    @property
    def company_failure_count(self) -> int:
        """Number of companies excluded because their drivers could not be listed."""
        return sum(1 for failure in self.failures if failure.scope == 'company')

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()
