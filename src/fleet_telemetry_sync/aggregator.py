# fleet_telemetry_sync/aggregator.py
"""
Per-driver metric collection and reduction.

For one driver and one period window the aggregator fetches, concurrently:

    1. the driver stats query (identity, preferences, counters)
    2. every journey in the window (paginated)
    3. the toll charges booked against the driver in the window

and reduces them into a `DriverPeriodSummary`. The vehicle of the most recent
journey is resolved through the shared asset cache.

Formulas:
---------
    connected_hours   = (assigned + available) / 3600
    occupancy_rate    = assigned / (assigned + available) * 100
    rejected          = max(offered - accepted - missed, 0)
    acceptance_rate   = accepted / (accepted + rejected + missed) * 100
    earnings_per_hour = total_earnings / connected_hours (unrounded hours)

Rates fall back to 0 when their denominator is 0. Rates are rounded to two
decimals, hours to one.

Money:
------
Journey earnings are integer minor units. Only journeys with positive
earnings count; those paid 'cash' go to cash earnings and every other
payment method to app earnings. Sums are taken in minor units and converted
once to Decimal currency units, so total == cash + app exactly.

Tolls:
------
Toll charges are breakdown lines named 'supplement:toll' on the movements of
the company's balance ledgers. The first three ledgers are queried in one
alias-batched request; further pages of any ledger are fetched one by one.
The absolute values are summed (charges are booked as negatives).
"""

import asyncio
import logging
from collections.abc import Iterable, Sequence
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Final, Self

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from fleet_telemetry_sync.cache import LookupCache
from fleet_telemetry_sync.client import AliasResult, GraphQLClient
from fleet_telemetry_sync.config import SyncConfig
from fleet_telemetry_sync.exceptions import AuthenticationError, GraphQLError
from fleet_telemetry_sync.models import (
    Asset,
    Balance,
    BalanceMovement,
    Driver,
    DriverDetails,
    DriverOutcome,
    DriverPeriodSummary,
    Journey,
    SyncFailure,
)
from fleet_telemetry_sync.period import PeriodWindow
from fleet_telemetry_sync.queries import (
    ASSET_ALIAS_TEMPLATE,
    BALANCE_MOVEMENTS_ALIAS_TEMPLATE,
    BALANCE_MOVEMENTS_QUERY,
    BALANCES_QUERY,
    DRIVER_STATS_QUERY,
    JOURNEYS_QUERY,
)

__all__: list[str] = [
    'BALANCES_CACHE_KEY',
    'DriverMetrics',
    'DriverMetricsAggregator',
    'TOLL_BREAKDOWN_NAME',
    'build_summary',
    'minor_units_to_amount',
    'sum_toll_minor_units',
]

logger: logging.Logger = logging.getLogger(__name__)

TOLL_BREAKDOWN_NAME: Final[str] = 'supplement:toll'
CASH_PAYMENT_METHOD: Final[str] = 'cash'
COMPLETED_FINISH_REASON: Final[str] = 'drop_off'

# Balance ledgers are cached per company under this fixed entity id.
BALANCES_CACHE_KEY: Final[str] = 'balances'
MAX_TOLL_BALANCES: Final[int] = 3

SECONDS_PER_HOUR: Final[int] = 3600
MINOR_UNITS_PER_UNIT: Final[Decimal] = Decimal(100)
CENTS: Final[Decimal] = Decimal('0.01')


# =============================================================================
# Pure Reductions
# =============================================================================


def minor_units_to_amount(minor_units: int | Decimal) -> Decimal:
    """Convert minor units (cents) to a two-decimal currency amount."""
    return (Decimal(minor_units) / MINOR_UNITS_PER_UNIT).quantize(
        CENTS, rounding=ROUND_HALF_UP
    )


def sum_toll_minor_units(movements: Iterable[BalanceMovement]) -> Decimal:
    """Sum |value| of every 'supplement:toll' breakdown line, in minor units."""
    return sum(
        (
            abs(entry.value)
            for movement in movements
            for entry in movement.breakdown
            if entry.name == TOLL_BREAKDOWN_NAME
        ),
        start=Decimal(0),
    )


def _percentage(numerator: float, denominator: float) -> float:
    if denominator <= 0:
        return 0.0
    return round(numerator / denominator * 100, 2)


class DriverMetrics(BaseModel):
    """
    Everything fetched and pre-reduced for one driver, before vehicle lookup.

    Attributes:
        driver: The driver as listed.
        company_id: Company the driver was listed under.
        details: Stats query result (identity, preferences, counters).
        journey_count: Journeys in the window.
        trips_completed: Journeys with earnings that ended in a drop-off.
        cash_minor_units: Earnings of cash journeys, minor units.
        app_minor_units: Earnings of every other journey, minor units.
        toll_minor_units: Toll charges, minor units.
        asset_id: Vehicle of the most recent journey, '' if none.
    """

    model_config = ConfigDict(frozen=True)

    driver: Driver
    company_id: str
    details: DriverDetails = Field(default_factory=DriverDetails)
    journey_count: int = 0
    trips_completed: int = 0
    cash_minor_units: int = 0
    app_minor_units: int = 0
    toll_minor_units: Decimal = Decimal(0)
    asset_id: str = ''

    @classmethod
    def from_sources(
        cls,
        driver: Driver,
        company_id: str,
        details: DriverDetails,
        journeys: Sequence[Journey],
        toll_minor_units: Decimal,
    ) -> Self:
        """Reduce fetched journeys into counters and earnings sums."""
        cash_minor_units: int = 0
        app_minor_units: int = 0
        trips_completed: int = 0

        for journey in journeys:
            earnings: int = journey.earnings_minor_units
            if earnings <= 0:
                continue
            if journey.payment_method == CASH_PAYMENT_METHOD:
                cash_minor_units += earnings
            else:
                app_minor_units += earnings
            if journey.finish_reason == COMPLETED_FINISH_REASON:
                trips_completed += 1

        # Journeys arrive newest first.
        asset_id: str = next(
            (journey.asset_id for journey in journeys if journey.asset_id), ''
        )

        return cls(
            driver=driver,
            company_id=company_id,
            details=details,
            journey_count=len(journeys),
            trips_completed=trips_completed,
            cash_minor_units=cash_minor_units,
            app_minor_units=app_minor_units,
            toll_minor_units=toll_minor_units,
            asset_id=asset_id,
        )


def build_summary(metrics: DriverMetrics, asset: Asset | None) -> DriverPeriodSummary:
    """
    Combine collected metrics and the resolved vehicle into a summary.

    Identity fields prefer the stats query and fall back to the listing.

    Raises:
        ValidationError: If the derived values violate the summary's bounds.
    """
    driver: Driver = metrics.driver
    details: DriverDetails = metrics.details
    stats = details.stats

    connected_seconds: float = stats.assigned_seconds + stats.available_seconds
    connected_hours: float = connected_seconds / SECONDS_PER_HOUR
    rejected: int = max(stats.offered - stats.accepted - stats.missed, 0)

    cash_earnings: Decimal = minor_units_to_amount(metrics.cash_minor_units)
    app_earnings: Decimal = minor_units_to_amount(metrics.app_minor_units)
    total_earnings: Decimal = cash_earnings + app_earnings

    earnings_per_hour: Decimal = Decimal('0.00')
    if connected_seconds > 0:
        earnings_per_hour = (
            total_earnings * SECONDS_PER_HOUR / Decimal(str(connected_seconds))
        ).quantize(CENTS, rounding=ROUND_HALF_UP)

    summary = DriverPeriodSummary(
        driver_id=driver.driver_id,
        company_id=metrics.company_id,
        name=details.name or driver.name,
        surname=details.surname or driver.surname,
        email=details.email or driver.email,
        national_id=details.national_id or driver.national_id,
        license_number=details.license_number or driver.license_number,
        mobile_number=details.mobile_number or driver.mobile_number,
        mobile_country_code=details.mobile_country_code or driver.mobile_country_code,
        disabled=driver.disabled,
        activated_at=driver.activated_at,
        score=stats.score or driver.score,
        asset_id=metrics.asset_id,
        trips_offered=stats.offered,
        trips_accepted=stats.accepted,
        trips_missed=stats.missed,
        trips_rejected=rejected,
        trips_completed=metrics.trips_completed,
        acceptance_rate=_percentage(
            stats.accepted, stats.accepted + rejected + stats.missed
        ),
        connected_hours=round(connected_hours, 1),
        occupancy_rate=_percentage(stats.assigned_seconds, connected_seconds),
        cash_earnings=cash_earnings,
        app_earnings=app_earnings,
        total_earnings=total_earnings,
        earnings_per_hour=earnings_per_hour,
        toll_total=minor_units_to_amount(metrics.toll_minor_units),
        cash_payment_enabled=details.cash_payment_enabled,
    )
    return summary.with_asset(asset)


# =============================================================================
# Aggregator
# =============================================================================


class DriverMetricsAggregator:
    """
    Fetches and reduces one driver's data for a window.

    Owns the two lookup caches of a run: assets by (company, asset id) and
    balance ledgers by (company, 'balances').

    Example:
        >>> aggregator = DriverMetricsAggregator(client, config.sync)
        >>> outcomes = await aggregator.compute_batch(drivers, company_id, window)
    """

    def __init__(
        self,
        client: GraphQLClient,
        config: SyncConfig,
        asset_cache: LookupCache[Asset] | None = None,
        balance_cache: LookupCache[list[Balance]] | None = None,
    ) -> None:
        self._client: GraphQLClient = client
        self._config: SyncConfig = config
        self._asset_cache: LookupCache[Asset] = asset_cache or LookupCache(
            'assets', self._fetch_assets
        )
        self._balance_cache: LookupCache[list[Balance]] = (
            balance_cache or LookupCache('balances', self._fetch_balances)
        )

    def bind_client(self, client: GraphQLClient) -> None:
        """Route future fetches through `client`; cached entries are kept."""
        self._client = client

    @property
    def asset_cache(self) -> LookupCache[Asset]:
        return self._asset_cache

    @property
    def balance_cache(self) -> LookupCache[list[Balance]]:
        return self._balance_cache

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def collect(
        self,
        driver: Driver,
        company_id: str,
        window: PeriodWindow,
    ) -> DriverMetrics:
        """
        Fetch stats, journeys and tolls concurrently and reduce them.

        Raises:
            APIError: Any fetch failure; the driver cannot be summarized.
        """
        details: DriverDetails
        journeys: list[Journey]
        toll_minor_units: Decimal
        details, journeys, toll_minor_units = await asyncio.gather(
            self._fetch_details(driver.driver_id, company_id, window),
            self._fetch_journeys(driver.driver_id, company_id, window),
            self._fetch_toll_minor_units(driver.driver_id, company_id, window),
        )
        return DriverMetrics.from_sources(
            driver, company_id, details, journeys, toll_minor_units
        )

    async def compute_summary(
        self,
        driver: Driver,
        company_id: str,
        window: PeriodWindow,
    ) -> DriverPeriodSummary:
        """
        Collect one driver, resolve its vehicle and build its summary.

        Raises:
            APIError: Any fetch failure.
            ValidationError: If the derived values are inconsistent.
        """
        metrics: DriverMetrics = await self.collect(driver, company_id, window)
        asset: Asset | None = None
        if metrics.asset_id:
            asset = await self._asset_cache.get_or_fetch(company_id, metrics.asset_id)
        return build_summary(metrics, asset)

    async def compute_batch(
        self,
        drivers: Sequence[Driver],
        company_id: str,
        window: PeriodWindow,
    ) -> list[DriverOutcome]:
        """
        Compute a batch of drivers of one company, isolating failures.

        All drivers are collected concurrently, then the distinct vehicles of
        the whole batch are resolved with a single cache call, so a vehicle
        shared by several drivers is requested once.

        Returns:
            One outcome per driver, in input order.

        Raises:
            AuthenticationError: Never isolated; aborts the batch.
        """
        collected: list[DriverMetrics | BaseException] = await asyncio.gather(
            *(self.collect(driver, company_id, window) for driver in drivers),
            return_exceptions=True,
        )

        for result in collected:
            if isinstance(result, AuthenticationError):
                raise result
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result

        asset_ids: list[str] = [
            result.asset_id
            for result in collected
            if isinstance(result, DriverMetrics) and result.asset_id
        ]
        assets: dict[str, Asset | None] = {}
        if asset_ids:
            assets = await self._asset_cache.get_or_fetch_batch(company_id, asset_ids)

        outcomes: list[DriverOutcome] = []
        for driver, result in zip(drivers, collected, strict=True):
            if isinstance(result, BaseException):
                outcomes.append(self._failed_outcome(driver, company_id, result))
                continue
            try:
                summary: DriverPeriodSummary = build_summary(
                    result, assets.get(result.asset_id)
                )
            except ValidationError as error:
                outcomes.append(self._failed_outcome(driver, company_id, error))
                continue
            outcomes.append(
                DriverOutcome(
                    driver_id=driver.driver_id,
                    company_id=company_id,
                    summary=summary,
                )
            )
        return outcomes

    # -------------------------------------------------------------------------
    # Fetchers
    # -------------------------------------------------------------------------

    @staticmethod
    def _failed_outcome(
        driver: Driver,
        company_id: str,
        error: BaseException,
    ) -> DriverOutcome:
        logger.warning(
            'Driver %s (%s) in company %s failed: %s: %s',
            driver.driver_id,
            driver.full_name,
            company_id,
            type(error).__name__,
            error,
        )
        return DriverOutcome(
            driver_id=driver.driver_id,
            company_id=company_id,
            failure=SyncFailure.from_exception(
                'driver', driver.driver_id, company_id, error
            ),
        )

    async def _fetch_details(
        self,
        driver_id: str,
        company_id: str,
        window: PeriodWindow,
    ) -> DriverDetails:
        data: dict[str, Any] = await self._client.execute(
            DRIVER_STATS_QUERY,
            {'driverId': driver_id, 'companyId': company_id, **window.to_api_params()},
        )
        raw_details: Any = data.get('driver')
        if raw_details is None:
            logger.debug('No stats returned for driver %s; using zeros', driver_id)
            return DriverDetails()
        return DriverDetails.model_validate(raw_details)

    async def _fetch_journeys(
        self,
        driver_id: str,
        company_id: str,
        window: PeriodWindow,
    ) -> list[Journey]:
        raw_journeys: list[dict[str, Any]] = await self._client.collect_paginated(
            JOURNEYS_QUERY,
            {'driverId': driver_id, 'companyId': company_id, **window.to_api_params()},
            path=('paginatedJourneys', 'journeys'),
            page_size=self._config.journey_page_size,
        )
        return [Journey.model_validate(raw_journey) for raw_journey in raw_journeys]

    async def _fetch_toll_minor_units(
        self,
        driver_id: str,
        company_id: str,
        window: PeriodWindow,
    ) -> Decimal:
        """
        Total toll charges for a driver in minor units.

        Raises:
            GraphQLError: If any balance ledger could not be read.
        """
        balances: list[Balance] | None = await self._balance_cache.get_or_fetch(
            company_id, BALANCES_CACHE_KEY
        )
        if not balances:
            return Decimal(0)

        balance_ids: list[str] = [
            balance.balance_id for balance in balances[:MAX_TOLL_BALANCES]
        ]
        shared_arguments: dict[str, Any] = {
            'companyId': company_id,
            'driverId': driver_id,
            'perPage': self._config.journey_page_size,
            **window.to_api_params(),
        }
        first_pages: dict[str, AliasResult[dict[str, Any]]] = (
            await self._client.execute_batched_by_alias(
                balance_ids,
                BALANCE_MOVEMENTS_ALIAS_TEMPLATE,
                shared_arguments,
                alias_prefix='balance',
            )
        )

        total: Decimal = Decimal(0)
        for balance_id in balance_ids:
            result: AliasResult[dict[str, Any]] | None = first_pages.get(balance_id)
            if result is None or not result.ok:
                reason: str = result.error if result is not None else 'no result'
                raise GraphQLError(
                    f'Toll movements for balance {balance_id} failed: {reason}'
                )
            if result.value is None:
                continue

            movements: list[BalanceMovement] = _parse_movements(result.value)
            pages: int = int(result.value.get('pages') or 1)
            for page_number in range(2, pages + 1):
                data: dict[str, Any] = await self._client.execute(
                    BALANCE_MOVEMENTS_QUERY,
                    {
                        **shared_arguments,
                        'balanceId': balance_id,
                        'page': page_number,
                    },
                )
                movements.extend(
                    _parse_movements(data.get('paginatedBalanceMovements') or {})
                )

            total += sum_toll_minor_units(movements)

        return total

    async def _fetch_assets(
        self,
        company_id: str,
        asset_ids: list[str],
    ) -> dict[str, AliasResult[Asset]]:
        """Asset cache fetcher: one alias-batched request per chunk of ids."""
        raw_results: dict[str, AliasResult[dict[str, Any]]] = (
            await self._client.execute_batched_by_alias(
                asset_ids,
                ASSET_ALIAS_TEMPLATE,
                {'companyId': company_id},
                alias_prefix='asset',
            )
        )

        results: dict[str, AliasResult[Asset]] = {}
        for asset_id, raw_result in raw_results.items():
            if not raw_result.ok:
                results[asset_id] = AliasResult[Asset](error=raw_result.error)
            elif raw_result.value is None:
                results[asset_id] = AliasResult[Asset]()
            else:
                try:
                    results[asset_id] = AliasResult[Asset](
                        value=Asset.model_validate(raw_result.value)
                    )
                except ValidationError as error:
                    results[asset_id] = AliasResult[Asset](error=str(error))
        return results

    async def _fetch_balances(
        self,
        company_id: str,
        keys: list[str],
    ) -> dict[str, AliasResult[list[Balance]]]:
        """Balance cache fetcher. Errors propagate so nothing is cached."""
        data: dict[str, Any] = await self._client.execute(
            BALANCES_QUERY, {'companyId': company_id}
        )
        balances: list[Balance] = [
            Balance.model_validate(raw_balance)
            for raw_balance in data.get('balances') or []
        ]
        logger.debug('Company %s has %d balance ledgers', company_id, len(balances))
        return {key: AliasResult[list[Balance]](value=balances) for key in keys}


def _parse_movements(envelope: dict[str, Any]) -> list[BalanceMovement]:
    return [
        BalanceMovement.model_validate(raw_movement)
        for raw_movement in envelope.get('movements') or []
    ]
