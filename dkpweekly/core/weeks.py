from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Iterable, List, Sequence, Tuple, Union

from .points import ActivityLevel, WeekSummaryRow

WEEKDAYS = ("MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN")

DateLike = Union[date, str]


@dataclass(frozen=True)
class WeekBounds:
    start: datetime
    end: datetime

    def contains(self, value: datetime) -> bool:
        return self.start <= value <= self.end


@dataclass
class StoredWeek:
    week_id: str
    start_utc: str = ""
    end_utc: str = ""
    timezone: str = ""
    source_file_name: str = ""
    created_utc: str = ""
    notes: str = ""


@dataclass
class HistoricalTotal:
    week_id: str
    name: str
    total_points: int
    activity_level: str
    streak: int = 1


@dataclass
class BreakdownRow:
    week_id: str
    name: str
    boss: str
    points: int
    count: int


@dataclass
class WeekStorage:
    weeks: List[StoredWeek] = field(default_factory=list)
    totals: List[HistoricalTotal] = field(default_factory=list)
    breakdown: List[BreakdownRow] = field(default_factory=list)

    def has_week(self, week_id: str) -> bool:
        return any(week.week_id == week_id for week in self.weeks)


class WeekExistsError(Exception):
    def __init__(self, week_id: str) -> None:
        super().__init__(f"Week {week_id} already exists.")
        self.week_id = week_id


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value.strip()[:10])


def isoformat_utc(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def week_bounds(week_start: DateLike) -> WeekBounds:
    day = _as_date(week_start)
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    end = start + timedelta(days=7) - timedelta(milliseconds=1)
    return WeekBounds(start=start, end=end)


def to_week_id(week_start: DateLike) -> str:
    return _as_date(week_start).isoformat()


def week_start_for(value: Union[date, datetime], week_start: str = "SUN") -> date:
    """The last configured first weekday strictly before ``value``.

    Run on the first day of a week, this picks the week that just ended.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        value = value.date()
    key = (week_start or "SUN").strip().upper()[:3]
    first = WEEKDAYS.index(key) if key in WEEKDAYS else WEEKDAYS.index("SUN")
    offset = (value.weekday() - first) % 7 or 7
    return value - timedelta(days=offset)


def recompute_streaks(
    rows: Sequence[HistoricalTotal], week_order: Sequence[str]
) -> List[HistoricalTotal]:
    """Replay every user's history in week order.

    Weeks missing from ``week_order`` sort first, ties by week id. A row continues the
    streak when its level matches the user's previous row, otherwise it restarts at 1.
    """
    position: Dict[str, int] = {}
    for index, week_id in enumerate(week_order):
        position.setdefault(week_id, index)

    by_name: Dict[str, List[int]] = {}
    for index, row in enumerate(rows):
        by_name.setdefault(row.name, []).append(index)

    result = list(rows)
    for indexes in by_name.values():
        indexes.sort(key=lambda i: (position.get(rows[i].week_id, -1), rows[i].week_id))
        streak = 0
        previous = None
        for i in indexes:
            level = rows[i].activity_level
            streak = streak + 1 if previous is not None and level == previous else 1
            result[i] = replace(rows[i], streak=streak)
            previous = level
    return result


def last_three_week_totals(
    rows: Iterable[HistoricalTotal], weeks_ascending: Sequence[str], target_week_id: str
) -> Dict[str, int]:
    if target_week_id not in weeks_ascending:
        return {}
    index = list(weeks_ascending).index(target_week_id)
    window = set(weeks_ascending[max(0, index - 2) : index + 1])
    totals: Dict[str, int] = {}
    for row in rows:
        if row.week_id in window:
            totals[row.name] = totals.get(row.name, 0) + int(row.total_points)
    return totals


def _level_text(level) -> str:
    return level.value if isinstance(level, ActivityLevel) else str(level)


def merge_week_history(
    storage: WeekStorage,
    week: StoredWeek,
    summary: Sequence[WeekSummaryRow],
    overwrite: bool = False,
) -> Tuple[WeekStorage, List[WeekSummaryRow]]:
    week_id = week.week_id
    if storage.has_week(week_id) and not overwrite:
        raise WeekExistsError(week_id)

    weeks = [item for item in storage.weeks if item.week_id != week_id]
    weeks.append(week)
    weeks.sort(key=lambda item: item.week_id)
    week_order = [item.week_id for item in weeks]

    totals = [row for row in storage.totals if row.week_id != week_id]
    for row in summary:
        totals.append(
            HistoricalTotal(
                week_id=week_id,
                name=row.name,
                total_points=row.total_points,
                activity_level=_level_text(row.activity_level),
                streak=1,
            )
        )
    totals = recompute_streaks(totals, week_order)
    totals.sort(key=lambda row: (row.week_id, row.name))

    breakdown = [row for row in storage.breakdown if row.week_id != week_id]
    for row in summary:
        for boss in dict.fromkeys([*row.boss_counts, *row.boss_points]):
            breakdown.append(
                BreakdownRow(
                    week_id=week_id,
                    name=row.name,
                    boss=boss,
                    points=row.boss_points.get(boss, 0),
                    count=row.boss_counts.get(boss, 0),
                )
            )

    streaks = {row.name: row.streak for row in totals if row.week_id == week_id}
    last3 = last_three_week_totals(totals, week_order, week_id)
    enriched = [
        replace(
            row,
            streak=streaks.get(row.name, 1),
            last3_weeks_total=last3.get(row.name, row.total_points),
        )
        for row in summary
    ]
    return WeekStorage(weeks=weeks, totals=totals, breakdown=breakdown), enriched


def load_stored_week(storage: WeekStorage, week_id: str) -> Tuple[List[WeekSummaryRow], List[str]]:
    """Rebuild the summary rows of a saved week, plus its boss columns sorted by name."""
    week_order = sorted({row.week_id for row in storage.totals})
    last3 = last_three_week_totals(storage.totals, week_order, week_id)

    rows: Dict[str, WeekSummaryRow] = {}
    for total in storage.totals:
        if total.week_id != week_id:
            continue
        rows[total.name] = WeekSummaryRow(
            name=total.name,
            total_points=int(total.total_points),
            activity_level=ActivityLevel.parse(total.activity_level),
            streak=int(total.streak) or 1,
            last3_weeks_total=last3.get(total.name, int(total.total_points)),
        )

    bosses = set()
    for item in storage.breakdown:
        if item.week_id != week_id:
            continue
        row = rows.get(item.name)
        if row is None:
            row = rows[item.name] = WeekSummaryRow(name=item.name)
        bosses.add(item.boss)
        row.boss_points[item.boss] = row.boss_points.get(item.boss, 0) + int(item.points)
        row.boss_counts[item.boss] = row.boss_counts.get(item.boss, 0) + int(item.count)

    output = sorted(rows.values(), key=lambda item: (-item.total_points, item.name))
    return output, sorted(bosses)
