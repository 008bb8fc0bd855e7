"""
Payout periods.

Payouts cover one calendar month [1st of month, 1st of next month) and are
paid on PAYDAY of the month after. Payouts for 1 May ~ 1 June are therefore
created and disbursed on 15 June.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

from dateutil.relativedelta import relativedelta


PAYDAY = 15


class PayoutPeriodError(Exception):
    """Custom exception for invalid payout periods."""
    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite returns them without tzinfo)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def month_start(year: int, month: int) -> datetime:
    if not 1 <= month <= 12:
        raise PayoutPeriodError(
            f"Invalid month {month}. Must be in 1 to 12.",
            details={"year": year, "month": month},
        )
    return datetime(year, month, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class PayoutPeriod:
    start_period: datetime
    end_period: datetime
    payout_date: datetime

    @classmethod
    def from_month(cls, year: int, month: int) -> "PayoutPeriod":
        start = month_start(year, month)
        end = start + relativedelta(months=1)
        return cls(
            start_period=start,
            end_period=end,
            payout_date=end + relativedelta(day=PAYDAY),
        )

    @classmethod
    def for_datetime(cls, value: datetime) -> "PayoutPeriod":
        value = ensure_utc(value)
        return cls.from_month(value.year, value.month)

    def next_period(self) -> "PayoutPeriod":
        return PayoutPeriod.for_datetime(self.end_period)

    def contains(self, value: datetime) -> bool:
        return self.start_period <= ensure_utc(value) < self.end_period

    def __str__(self) -> str:
        return f"{self.start_period:%d %b %Y} ~ {self.end_period:%d %b %Y} (pays {self.payout_date:%d %b %Y})"


def one_year_from_now(now: Optional[datetime] = None) -> datetime:
    """Midnight UTC one year from now; default expiry for seller-affiliate policies."""
    now = ensure_utc(now) if now else datetime.now(timezone.utc)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + relativedelta(years=1)
