from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Union

from sqlalchemy import extract, func, select
from sqlalchemy.orm import Session

from models import EntryKind, LedgerEntry
from periods import Period

Number = Union[int, float, Decimal]

_TWO_PLACES = Decimal("0.01")


def round2(value: Number) -> float:
    """Round half away from zero to two decimal places."""
    quantized = Decimal(str(value)).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)
    return float(quantized)


def round_cents(value: Number) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percentage(part: Number, whole: Number) -> float:
    if not whole:
        return 0.0
    return round2(Decimal(str(part)) / Decimal(str(whole)) * 100)


def category_key(category: str) -> str:
    return category.strip().lower()


@dataclass(frozen=True)
class CategoryTotal:
    category: str
    total_cents: int
    count: int


@dataclass(frozen=True)
class DayTotal:
    day: date
    total_cents: int


@dataclass(frozen=True)
class MonthTotal:
    month: int
    total_cents: int


class LedgerAggregator:
    """Sums over a user's ledger entries.

    Amounts are summed as raw numbers regardless of currency.
    """

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _scope(self, kind: Optional[EntryKind], period: Optional[Period]) -> list:
        clauses = [LedgerEntry.user_id == self.user_id]
        if kind is not None:
            clauses.append(LedgerEntry.kind == kind)
        if period is not None:
            clauses.append(LedgerEntry.occurred_at.between(period.start, period.end))
        return clauses

    def sum_total(self, kind: EntryKind, period: Period) -> int:
        stmt = select(func.coalesce(func.sum(LedgerEntry.amount_cents), 0)).where(
            *self._scope(kind, period)
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def sum_between(self, kind: EntryKind, after: datetime, until: datetime) -> int:
        if until <= after:
            return 0
        stmt = select(func.coalesce(func.sum(LedgerEntry.amount_cents), 0)).where(
            LedgerEntry.user_id == self.user_id,
            LedgerEntry.kind == kind,
            LedgerEntry.occurred_at > after,
            LedgerEntry.occurred_at <= until,
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def sum_for_category(self, kind: EntryKind, period: Period, category: str) -> int:
        stmt = select(func.coalesce(func.sum(LedgerEntry.amount_cents), 0)).where(
            *self._scope(kind, period),
            func.lower(func.trim(LedgerEntry.category)) == category_key(category),
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def has_entries(self, period: Period) -> bool:
        stmt = select(func.count(LedgerEntry.id)).where(*self._scope(None, period))
        return (self.session.execute(stmt).scalar_one() or 0) > 0

    def sum_by_category(
        self,
        kind: EntryKind,
        period: Period,
        categories: Optional[Iterable[str]] = None,
    ) -> list[CategoryTotal]:
        key = func.lower(func.trim(LedgerEntry.category))
        stmt = (
            select(
                key.label("key"),
                LedgerEntry.category,
                func.coalesce(func.sum(LedgerEntry.amount_cents), 0).label("total"),
                func.count(LedgerEntry.id).label("count"),
                func.min(LedgerEntry.id).label("first_id"),
            )
            .where(*self._scope(kind, period))
            .group_by(key, LedgerEntry.category)
            .order_by(func.min(LedgerEntry.id))
        )

        # key -> [label, total, count, first_id]
        buckets: dict[str, list] = {}
        for row in self.session.execute(stmt):
            bucket = buckets.get(row.key)
            if bucket is None:
                buckets[row.key] = [
                    row.category.strip(),
                    int(row.total),
                    int(row.count),
                    row.first_id,
                ]
                continue
            bucket[1] += int(row.total)
            bucket[2] += int(row.count)
            if row.first_id < bucket[3]:
                bucket[0] = row.category.strip()
                bucket[3] = row.first_id

        for category in categories or ():
            label = category.strip()
            buckets.setdefault(category_key(label), [label, 0, 0, None])

        ordered = sorted(
            enumerate(buckets.values()), key=lambda item: (-item[1][1], item[0])
        )
        return [
            CategoryTotal(category=label, total_cents=total, count=count)
            for _, (label, total, count, _first) in ordered
        ]

    def sum_by_day(self, kind: EntryKind, period: Period) -> list[DayTotal]:
        stmt = (
            select(
                LedgerEntry.date,
                func.coalesce(func.sum(LedgerEntry.amount_cents), 0).label("total"),
            )
            .where(*self._scope(kind, period))
            .group_by(LedgerEntry.date)
        )
        by_day = {row.date: int(row.total) for row in self.session.execute(stmt)}
        return [
            DayTotal(day=day, total_cents=by_day.get(day, 0))
            for day in (
                period.first_day + timedelta(days=offset)
                for offset in range(period.days)
            )
        ]

    def sum_by_month(self, kind: EntryKind, year: int) -> list[MonthTotal]:
        month = extract("month", LedgerEntry.date).label("month")
        stmt = (
            select(
                month,
                func.coalesce(func.sum(LedgerEntry.amount_cents), 0).label("total"),
            )
            .where(
                LedgerEntry.user_id == self.user_id,
                LedgerEntry.kind == kind,
                LedgerEntry.date.between(date(year, 1, 1), date(year, 12, 31)),
            )
            .group_by(month)
        )
        by_month = {int(row.month): int(row.total) for row in self.session.execute(stmt)}
        return [
            MonthTotal(month=m, total_cents=by_month.get(m, 0)) for m in range(1, 13)
        ]
