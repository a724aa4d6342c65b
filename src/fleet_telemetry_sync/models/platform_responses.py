# fleet_telemetry_sync/models/platform_responses.py
"""
Pydantic models for the partner platform's GraphQL result shapes.

One model per query shape, so every reducer works on typed attributes
instead of chained `.get()` calls on raw dictionaries.

Design Notes:
    - The API uses camelCase; models expose snake_case attributes with the
      API names as aliases (populate_by_name allows either).
    - The API returns null for many unset fields. Text fields collapse null to
      '' and counters collapse null to 0, so reducers never branch on None.
    - Money amounts are integer minor units (cents). Conversion to units
      happens once, in the aggregator.
    - extra='ignore' keeps parsing stable when the platform adds fields.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__: list[str] = [
    'Asset',
    'AuthTokenResponse',
    'Balance',
    'BalanceMovement',
    'BreakdownEntry',
    'Driver',
    'DriverDetails',
    'DriverPreference',
    'DriverStats',
    'Journey',
    'JourneyTotals',
    'MetafleetCompanies',
    'Money',
    'PAYMENT_CASH_PREFERENCE',
    'ResponseModelBase',
]

# Preference name that grants a driver permission to accept cash trips.
PAYMENT_CASH_PREFERENCE: str = 'payment_cash'


def _none_to_empty(value: Any) -> Any:
    return '' if value is None else value


def _none_to_zero(value: Any) -> Any:
    return 0 if value is None else value


# =============================================================================
# Base Configuration
# =============================================================================


class ResponseModelBase(BaseModel):
    """
    Base class for all platform response models.

    Configuration:
        - extra='ignore': unknown fields from the API are dropped.
        - populate_by_name=True: construct by attribute name or API alias.
        - str_strip_whitespace=True: trim whitespace in text fields.
    """

    model_config = ConfigDict(
        extra='ignore',
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# =============================================================================
# Authentication
# =============================================================================


class AuthTokenResponse(ResponseModelBase):
    """
    Body of a successful password-grant exchange.

    Attributes:
        access_token: Bearer token for GraphQL requests.
        token_type: Usually 'Bearer'.
        expires_in: Token lifetime in seconds.
        refresh_token: Present on some accounts; not used.
    """

    access_token: str = Field(min_length=1)
    token_type: str = 'Bearer'
    expires_in: int = Field(gt=0)
    refresh_token: str | None = None


# =============================================================================
# Drivers
# =============================================================================


class Driver(ResponseModelBase):
    """
    A driver as listed by `paginatedDrivers`.

    Read-only mirror of the platform's record; never mutated locally.
    """

    driver_id: str = Field(alias='id')
    name: str = ''
    surname: str = ''
    email: str = ''
    national_id: str = Field(default='', alias='nationalIdNumber')
    license_number: str = Field(default='', alias='driverLicense')
    mobile_number: str = Field(default='', alias='mobileNum')
    mobile_country_code: str = Field(default='', alias='mobileCc')
    disabled: bool = False
    activated_at: datetime | None = Field(default=None, alias='activatedAt')
    score: float = 0.0

    @field_validator(
        'name',
        'surname',
        'email',
        'national_id',
        'license_number',
        'mobile_number',
        'mobile_country_code',
        mode='before',
    )
    @classmethod
    def collapse_null_text(cls, value: Any) -> Any:
        return _none_to_empty(value)

    @field_validator('disabled', mode='before')
    @classmethod
    def collapse_null_flag(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator('score', mode='before')
    @classmethod
    def collapse_null_score(cls, value: Any) -> Any:
        return _none_to_zero(value)

    @property
    def full_name(self) -> str:
        """Return 'Name Surname' with surrounding whitespace trimmed."""
        return f'{self.name} {self.surname}'.strip()


class DriverStats(ResponseModelBase):
    """
    Trip and connectivity counters for one driver over one window.

    Attributes:
        accepted: Trip offers accepted.
        missed: Trip offers that timed out.
        offered: Trip offers received.
        assigned_seconds: Seconds spent on an assigned trip.
        available_seconds: Seconds connected and waiting for a trip.
        score: Platform score for the window.
    """

    accepted: int = 0
    missed: int = 0
    offered: int = 0
    assigned_seconds: float = Field(default=0.0, alias='assigned')
    available_seconds: float = Field(default=0.0, alias='available')
    score: float = 0.0

    @field_validator(
        'accepted',
        'missed',
        'offered',
        'assigned_seconds',
        'available_seconds',
        'score',
        mode='before',
    )
    @classmethod
    def collapse_null_counter(cls, value: Any) -> Any:
        return _none_to_zero(value)


class DriverPreference(ResponseModelBase):
    """A named driver preference toggle (e.g. 'payment_cash')."""

    name: str
    enabled: bool = False

    @field_validator('enabled', mode='before')
    @classmethod
    def collapse_null_enabled(cls, value: Any) -> Any:
        return False if value is None else value


class DriverDetails(ResponseModelBase):
    """
    Result of the per-driver stats query: identity, preferences and stats.

    Identity fields here take precedence over the listing's values when the
    summary is built, since this query reads the current profile.
    """

    name: str = ''
    surname: str = ''
    email: str = ''
    national_id: str = Field(default='', alias='nationalIdNumber')
    license_number: str = Field(default='', alias='driverLicense')
    mobile_number: str = Field(default='', alias='mobileNum')
    mobile_country_code: str = Field(default='', alias='mobileCc')
    preferences: list[DriverPreference] = Field(default_factory=list)
    stats: DriverStats = Field(default_factory=DriverStats)

    @field_validator(
        'name',
        'surname',
        'email',
        'national_id',
        'license_number',
        'mobile_number',
        'mobile_country_code',
        mode='before',
    )
    @classmethod
    def collapse_null_text(cls, value: Any) -> Any:
        return _none_to_empty(value)

    @field_validator('preferences', mode='before')
    @classmethod
    def collapse_null_preferences(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator('stats', mode='before')
    @classmethod
    def collapse_null_stats(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def cash_payment_enabled(self) -> bool:
        """Whether the 'payment_cash' preference is present and enabled."""
        return any(
            preference.name == PAYMENT_CASH_PREFERENCE and preference.enabled
            for preference in self.preferences
        )


# =============================================================================
# Journeys
# =============================================================================


class Money(ResponseModelBase):
    """An amount in integer minor units plus its currency code."""

    amount: int = 0
    currency: str | None = None

    @field_validator('amount', mode='before')
    @classmethod
    def collapse_null_amount(cls, value: Any) -> Any:
        return _none_to_zero(value)


class JourneyTotals(ResponseModelBase):
    """Totals block of a journey."""

    earnings_total: Money | None = Field(default=None, alias='earningsTotal')
    distance: float | None = None


class Journey(ResponseModelBase):
    """
    One trip, as listed by `paginatedJourneys`.

    Transient: consumed once per aggregation and never persisted here.
    """

    journey_id: str = Field(alias='id')
    asset_id: str = Field(default='', alias='assetId')
    finish_reason: str = Field(default='', alias='finishReason')
    payment_method: str = Field(default='', alias='paymentMethod')
    totals: JourneyTotals | None = None

    @field_validator('asset_id', 'finish_reason', 'payment_method', mode='before')
    @classmethod
    def collapse_null_text(cls, value: Any) -> Any:
        return _none_to_empty(value)

    @property
    def earnings_minor_units(self) -> int:
        """Trip earnings in minor units, 0 when the totals block is absent."""
        if self.totals is None or self.totals.earnings_total is None:
            return 0
        return self.totals.earnings_total.amount


# =============================================================================
# Assets
# =============================================================================


class Asset(ResponseModelBase):
    """A vehicle record. Asset ids are only unique within a company."""

    asset_id: str = Field(alias='id')
    make: str = ''
    model: str = ''
    reg_plate: str = Field(default='', alias='regPlate')

    @field_validator('make', 'model', 'reg_plate', mode='before')
    @classmethod
    def collapse_null_text(cls, value: Any) -> Any:
        return _none_to_empty(value)


# =============================================================================
# Balances (tolls)
# =============================================================================


class Balance(ResponseModelBase):
    """A company balance ledger; toll charges are booked as movements on it."""

    balance_id: str = Field(alias='id')
    name: str = ''
    currency: str | None = None


class BreakdownEntry(ResponseModelBase):
    """One labelled component of a balance movement (minor units)."""

    name: str = ''
    value: Decimal = Decimal(0)

    @field_validator('value', mode='before')
    @classmethod
    def collapse_null_value(cls, value: Any) -> Any:
        return _none_to_zero(value)


class BalanceMovement(ResponseModelBase):
    """A balance movement with its breakdown lines."""

    breakdown: list[BreakdownEntry] = Field(default_factory=list)

    @field_validator('breakdown', mode='before')
    @classmethod
    def collapse_null_breakdown(cls, value: Any) -> Any:
        return [] if value is None else value


# =============================================================================
# Companies
# =============================================================================


class MetafleetCompanies(ResponseModelBase):
    """Companies reachable by a metafleet account."""

    company_ids: list[str] = Field(default_factory=list, alias='companyIds')

    @field_validator('company_ids', mode='before')
    @classmethod
    def collapse_null_ids(cls, value: Any) -> Any:
        return [] if value is None else value
