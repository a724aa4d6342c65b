# fleet_telemetry_sync/period.py
"""
Period window calculation for driver metric syncs.

Turns a period descriptor (yesterday, a week, a custom range) into an absolute
UTC window whose boundaries fall on local-day boundaries of the fleet's
timezone. Pure functions, no I/O: callers pass `now` explicitly when they need
determinism.

Week Definitions:
-----------------
Two week shapes are supported and they are NOT interchangeable:

- Calendar week (Monday 00:00:00.000 to Sunday 23:59:59.999 local). Used by
  'semana' and 'semana_actual' and by `available_weeks()`.
- Billing week (Sunday 00:00:00.000 to Saturday 23:59:59.999 local). Used by
  'semana_facturacion', matching the partner's weekly settlement.

The current week in either shape ends at `now` rather than at the week's end,
so a report never claims data from the future.

Timezone Handling:
------------------
Local calendar fields are converted to absolute instants through a named IANA
zone (default America/Argentina/Buenos_Aires). For that zone local midnight is
03:00:00Z and a local day ends at 02:59:59.999Z the next UTC day.

Wire Format:
------------
`PeriodWindow.to_api_params()` renders both ends as ISO-8601 UTC strings with
millisecond precision and a trailing 'Z' (e.g. '2025-10-06T03:00:00.000Z'),
which is the only format the platform accepts for `startAt`/`endAt`.
"""

import logging
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from enum import StrEnum
from typing import Self
from zoneinfo import ZoneInfo

from pydantic import (
    AwareDatetime,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

__all__: list[str] = [
    'DEFAULT_AVAILABLE_WEEKS',
    'PeriodDescriptor',
    'PeriodKind',
    'PeriodWindow',
    'available_weeks',
    'billing_week_window',
    'format_api_timestamp',
    'resolve_period_window',
    'split_into_days',
    'week_window',
    'yesterday_window',
]

logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE: ZoneInfo = ZoneInfo('America/Argentina/Buenos_Aires')
DEFAULT_AVAILABLE_WEEKS: int = 12

# Windows are closed intervals; the last representable instant of a day is
# one millisecond before the next local midnight.
_ONE_MILLISECOND: timedelta = timedelta(milliseconds=1)
_DAYS_PER_WEEK: int = 7


# =============================================================================
# Models
# =============================================================================


class PeriodKind(StrEnum):
    """Period selectors accepted by a sync run (values as used by the back office)."""

    YESTERDAY = 'ayer'
    PREVIOUS_WEEK = 'semana'
    CURRENT_WEEK = 'semana_actual'
    PREVIOUS_BILLING_WEEK = 'semana_facturacion'
    CUSTOM = 'custom'


class PeriodWindow(BaseModel):
    """
    An absolute, closed time window [start, end] in UTC.

    Attributes:
        start: Inclusive window start (timezone-aware, normalized to UTC).
        end: Inclusive window end (timezone-aware, normalized to UTC).
        label: Human-readable label, e.g. 'Sem 41 (06/10 - 12/10)'.
    """

    model_config = ConfigDict(frozen=True)

    start: AwareDatetime
    end: AwareDatetime
    label: str = ''

    @field_validator('start', 'end')
    @classmethod
    def normalize_to_utc(cls, instant: datetime) -> datetime:
        """Store both ends in UTC whatever offset they were given in."""
        return instant.astimezone(UTC)

    @model_validator(mode='after')
    def validate_window_order(self) -> Self:
        """
        Reject inverted windows.

        Raises:
            ValueError: If end is before start.
        """
        if self.end < self.start:
            raise ValueError(
                f'Window end ({self.end.isoformat()}) is before '
                f'start ({self.start.isoformat()})'
            )
        return self

    def to_api_params(self) -> dict[str, str]:
        """Return the window as the platform's `startAt`/`endAt` variables."""
        return {
            'startAt': format_api_timestamp(self.start),
            'endAt': format_api_timestamp(self.end),
        }

    def contains(self, instant: datetime) -> bool:
        """Whether an aware instant falls inside the closed window."""
        return self.start <= instant <= self.end

    @property
    def duration(self) -> timedelta:
        """Window length."""
        return self.end - self.start


class PeriodDescriptor(BaseModel):
    """
    What period a sync run should cover.

    Attributes:
        kind: Period selector.
        weeks_ago: For week kinds, how many whole weeks back from the current
            week (0 is the current, partial week). Defaults to 1 for the
            previous-week kinds and is forced to 0 for 'semana_actual'.
        start: Custom range start (required and timezone-aware for 'custom').
        end: Custom range end (required and timezone-aware for 'custom').
    """

    model_config = ConfigDict(frozen=True, extra='forbid')

    kind: PeriodKind
    weeks_ago: int | None = Field(default=None, ge=0)
    start: AwareDatetime | None = None
    end: AwareDatetime | None = None

    @model_validator(mode='after')
    def validate_custom_range(self) -> Self:
        """
        Custom periods need both ends with end >= start.

        Raises:
            ValueError: If a custom range is incomplete or inverted.
        """
        if self.kind is PeriodKind.CUSTOM:
            if self.start is None or self.end is None:
                raise ValueError("'custom' periods require both start and end")
            if self.end < self.start:
                raise ValueError('custom period end must not be before start')
        return self

    @property
    def effective_weeks_ago(self) -> int:
        """Weeks back for week kinds, after applying the per-kind default."""
        if self.kind is PeriodKind.CURRENT_WEEK:
            return 0
        if self.weeks_ago is None:
            return 1
        return self.weeks_ago


# =============================================================================
# Helpers
# =============================================================================


def format_api_timestamp(instant: datetime) -> str:
    """
    Render an aware datetime as 'YYYY-MM-DDTHH:MM:SS.mmmZ' in UTC.

    Sub-millisecond precision is truncated, not rounded.
    """
    utc_instant: datetime = instant.astimezone(UTC)
    milliseconds: int = utc_instant.microsecond // 1000
    return f'{utc_instant:%Y-%m-%dT%H:%M:%S}.{milliseconds:03d}Z'


def _local_midnight(day: date, timezone: tzinfo) -> datetime:
    """Absolute UTC instant of local 00:00:00.000 on `day`."""
    return datetime.combine(day, time.min, tzinfo=timezone).astimezone(UTC)


def _local_day_end(day: date, timezone: tzinfo) -> datetime:
    """Absolute UTC instant of local 23:59:59.999 on `day`."""
    return _local_midnight(day + timedelta(days=1), timezone) - _ONE_MILLISECOND


def _local_today(now: datetime, timezone: tzinfo) -> date:
    return now.astimezone(timezone).date()


def _resolve_now(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now(UTC)
    if now.tzinfo is None:
        raise ValueError('now must be timezone-aware')
    return now


def _short_date(day: date) -> str:
    return day.strftime('%d/%m')


# =============================================================================
# Window Builders
# =============================================================================


def yesterday_window(
    now: datetime | None = None,
    timezone: tzinfo = DEFAULT_TIMEZONE,
) -> PeriodWindow:
    """
    The previous local calendar day, 00:00:00.000 to 23:59:59.999.

    Args:
        now: Reference instant. Defaults to the current time.
        timezone: Zone whose calendar defines the day.

    Returns:
        Window covering exactly one local day.
    """
    today: date = _local_today(_resolve_now(now), timezone)
    yesterday: date = today - timedelta(days=1)
    return PeriodWindow(
        start=_local_midnight(yesterday, timezone),
        end=_local_day_end(yesterday, timezone),
        label=yesterday.strftime('%d/%m/%Y'),
    )


def week_window(
    weeks_ago: int = 1,
    now: datetime | None = None,
    timezone: tzinfo = DEFAULT_TIMEZONE,
) -> PeriodWindow:
    """
    A Monday-aligned calendar week.

    Args:
        weeks_ago: 0 for the current week (ending at `now`), N >= 1 for the
            complete week N weeks before the current one.
        now: Reference instant. Defaults to the current time.
        timezone: Zone whose calendar defines the week.

    Returns:
        Window labelled 'Sem {iso_week} - Actual' for the current week or
        'Sem {iso_week} (dd/mm - dd/mm)' for a complete week.

    Raises:
        ValueError: If weeks_ago is negative.
    """
    if weeks_ago < 0:
        raise ValueError(f'weeks_ago must be >= 0, got {weeks_ago}')

    resolved_now: datetime = _resolve_now(now)
    today: date = _local_today(resolved_now, timezone)
    current_monday: date = today - timedelta(days=today.weekday())
    monday: date = current_monday - timedelta(weeks=weeks_ago)
    iso_week: int = monday.isocalendar().week

    if weeks_ago == 0:
        return PeriodWindow(
            start=_local_midnight(monday, timezone),
            end=resolved_now,
            label=f'Sem {iso_week} - Actual',
        )

    sunday: date = monday + timedelta(days=_DAYS_PER_WEEK - 1)
    return PeriodWindow(
        start=_local_midnight(monday, timezone),
        end=_local_day_end(sunday, timezone),
        label=f'Sem {iso_week} ({_short_date(monday)} - {_short_date(sunday)})',
    )


def billing_week_window(
    weeks_ago: int = 1,
    now: datetime | None = None,
    timezone: tzinfo = DEFAULT_TIMEZONE,
) -> PeriodWindow:
    """
    A Sunday-aligned billing week (Sunday 00:00 to Saturday 23:59:59.999).

    Args:
        weeks_ago: 0 for the current billing week (ending at `now`), N >= 1
            for the complete billing week N weeks back.
        now: Reference instant. Defaults to the current time.
        timezone: Zone whose calendar defines the week.

    Returns:
        Window labelled 'Facturacion dd/mm - dd/mm'.

    Raises:
        ValueError: If weeks_ago is negative.
    """
    if weeks_ago < 0:
        raise ValueError(f'weeks_ago must be >= 0, got {weeks_ago}')

    resolved_now: datetime = _resolve_now(now)
    today: date = _local_today(resolved_now, timezone)
    # weekday(): Monday=0 .. Sunday=6, so Sunday goes back 0 days.
    current_sunday: date = today - timedelta(days=(today.weekday() + 1) % 7)
    sunday: date = current_sunday - timedelta(weeks=weeks_ago)
    saturday: date = sunday + timedelta(days=_DAYS_PER_WEEK - 1)

    end: datetime = (
        resolved_now if weeks_ago == 0 else _local_day_end(saturday, timezone)
    )
    return PeriodWindow(
        start=_local_midnight(sunday, timezone),
        end=end,
        label=f'Facturacion {_short_date(sunday)} - {_short_date(saturday)}',
    )


def available_weeks(
    count: int = DEFAULT_AVAILABLE_WEEKS,
    now: datetime | None = None,
    timezone: tzinfo = DEFAULT_TIMEZONE,
) -> list[PeriodWindow]:
    """
    The most recent `count` calendar weeks, current week first.

    Args:
        count: Number of weeks to list.
        now: Reference instant. Defaults to the current time.
        timezone: Zone whose calendar defines the weeks.

    Returns:
        Windows for weeks_ago = 0 .. count - 1.
    """
    resolved_now: datetime = _resolve_now(now)
    return [
        week_window(weeks_ago, now=resolved_now, timezone=timezone)
        for weeks_ago in range(count)
    ]


def split_into_days(
    window: PeriodWindow,
    timezone: tzinfo = DEFAULT_TIMEZONE,
) -> list[PeriodWindow]:
    """
    Split a window into one window per local calendar day.

    The first and last day are clipped to the window's own boundaries, so a
    partial current week yields a last day ending at the window end.

    Args:
        window: Window to split.
        timezone: Zone whose calendar defines the days.

    Returns:
        Per-day windows in chronological order.
    """
    first_day: date = window.start.astimezone(timezone).date()
    last_day: date = window.end.astimezone(timezone).date()

    day_windows: list[PeriodWindow] = []
    day: date = first_day
    while day <= last_day:
        day_windows.append(
            PeriodWindow(
                start=max(_local_midnight(day, timezone), window.start),
                end=min(_local_day_end(day, timezone), window.end),
                label=day.strftime('%d/%m/%Y'),
            )
        )
        day += timedelta(days=1)
    return day_windows


def resolve_period_window(
    descriptor: PeriodDescriptor,
    now: datetime | None = None,
    timezone: tzinfo = DEFAULT_TIMEZONE,
) -> PeriodWindow:
    """
    Resolve a period descriptor to an absolute UTC window.

    Args:
        descriptor: Requested period.
        now: Reference instant. Defaults to the current time.
        timezone: Zone whose calendar defines days and weeks.

    Returns:
        The resolved window.

    Example:
        >>> descriptor = PeriodDescriptor(kind=PeriodKind.PREVIOUS_WEEK)
        >>> window = resolve_period_window(
        ...     descriptor, now=datetime(2025, 10, 15, 15, 0, tzinfo=UTC)
        ... )
        >>> window.to_api_params()
        {'startAt': '2025-10-06T03:00:00.000Z', 'endAt': '2025-10-13T02:59:59.999Z'}
    """
    window: PeriodWindow
    match descriptor.kind:
        case PeriodKind.YESTERDAY:
            window = yesterday_window(now, timezone)
        case PeriodKind.PREVIOUS_WEEK | PeriodKind.CURRENT_WEEK:
            window = week_window(descriptor.effective_weeks_ago, now, timezone)
        case PeriodKind.PREVIOUS_BILLING_WEEK:
            window = billing_week_window(descriptor.effective_weeks_ago, now, timezone)
        case PeriodKind.CUSTOM:
            # Validated non-None by PeriodDescriptor.
            assert descriptor.start is not None and descriptor.end is not None
            local_start: date = descriptor.start.astimezone(timezone).date()
            local_end: date = descriptor.end.astimezone(timezone).date()
            window = PeriodWindow(
                start=descriptor.start,
                end=descriptor.end,
                label=(
                    f'{local_start.strftime("%d/%m/%Y")} - '
                    f'{local_end.strftime("%d/%m/%Y")}'
                ),
            )

    logger.debug(
        'Resolved period %s to %s .. %s (%s)',
        descriptor.kind.value,
        window.start.isoformat(),
        window.end.isoformat(),
        window.label,
    )
    return window
