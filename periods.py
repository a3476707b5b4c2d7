from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional


MONTH_LABELS = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    @property
    def start_at(self) -> datetime:
        return datetime.combine(self.start, time.min)

    @property
    def end_at(self) -> datetime:
        return datetime.combine(self.end, time.max)

    def contains(self, moment: datetime) -> bool:
        return self.start_at <= moment <= self.end_at


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def month_period(d: date) -> Period:
    first = d.replace(day=1)
    end = add_months(first, 1) - date.resolution
    return Period("month", first, end)


def year_period(d: date) -> Period:
    return Period("year", date(d.year, 1, 1), date(d.year, 12, 31))


def resolve_period(slug: Optional[str], *, today: Optional[date] = None) -> Period:
    today = today or date.today()
    if not slug or slug == "month":
        return month_period(today)
    if slug == "year":
        return year_period(today)
    raise ValueError(f"Unsupported range: {slug}")


def trailing_months(today: date, count: int) -> list[Period]:
    """Calendar months ending with the month of ``today``, oldest first."""
    first = today.replace(day=1)
    return [
        month_period(add_months(first, -offset))
        for offset in range(count - 1, -1, -1)
    ]
