"""Validity windows for time-constrained permissions.

A window may combine an absolute range, a set of ISO weekdays and a daily
hour range. Every constraint that is present must hold; a window with no
constraints is always satisfied.
"""

from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import FrozenSet, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ....core.exceptions import InvalidInputError


@dataclass(frozen=True)
class TimeWindow:
    """Validity window attached to a permission record.

    Attributes:
        valid_from: Inclusive start of the absolute range.
        valid_until: Exclusive end of the absolute range.
        days_of_week: ISO weekdays (1 = Monday ... 7 = Sunday) on which the grant holds.
        start_hour: Inclusive first hour of the daily range (0-23).
        end_hour: Exclusive last hour of the daily range (1-24). A range with
            ``start_hour > end_hour`` wraps past midnight.
        timezone_name: IANA zone in which weekdays and hours are evaluated.
    """

    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    days_of_week: Optional[FrozenSet[int]] = None
    start_hour: Optional[int] = None
    end_hour: Optional[int] = None
    timezone_name: str = "UTC"

    def __post_init__(self):
        if (self.start_hour is None) != (self.end_hour is None):
            raise InvalidInputError("start_hour and end_hour must be set together")

        if self.start_hour is not None:
            if not 0 <= self.start_hour <= 23 or not 1 <= self.end_hour <= 24:
                raise InvalidInputError(
                    f"Hour range out of bounds: {self.start_hour}-{self.end_hour}"
                )
            if self.start_hour == self.end_hour:
                raise InvalidInputError("start_hour and end_hour must differ")

        if self.days_of_week is not None:
            days = frozenset(self.days_of_week)
            if not days or not days <= frozenset(range(1, 8)):
                raise InvalidInputError(f"days_of_week must be ISO weekdays 1-7, got: {sorted(days)}")
            object.__setattr__(self, "days_of_week", days)

        if (
            self.valid_from is not None
            and self.valid_until is not None
            and ensure_aware(self.valid_from) >= ensure_aware(self.valid_until)
        ):
            raise InvalidInputError("valid_from must be before valid_until")

        _zone(self.timezone_name)

    @property
    def is_unconstrained(self) -> bool:
        return (
            self.valid_from is None
            and self.valid_until is None
            and self.days_of_week is None
            and self.start_hour is None
        )

    def is_satisfied(self, now: datetime) -> bool:
        """Return True when every present constraint holds at ``now``."""
        now = ensure_aware(now)

        if self.valid_from is not None and now < ensure_aware(self.valid_from):
            return False
        if self.valid_until is not None and now >= ensure_aware(self.valid_until):
            return False

        local = now.astimezone(_zone(self.timezone_name))

        if self.days_of_week is not None and local.isoweekday() not in self.days_of_week:
            return False

        if self.start_hour is not None:
            hour = local.hour
            if self.start_hour < self.end_hour:
                if not self.start_hour <= hour < self.end_hour:
                    return False
            elif not (hour >= self.start_hour or hour < self.end_hour):
                return False

        return True


def _zone(name: str) -> tzinfo:
    """Resolve an IANA zone name; UTC needs no tz database."""
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidInputError(f"Unknown timezone: {name}") from e


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
