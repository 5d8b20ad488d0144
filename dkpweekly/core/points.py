import math
from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction
from typing import Dict, Iterable, List, Mapping

from .lookup import BossConfig
from .parser import ParsedLine


class ActivityLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"

    @classmethod
    def parse(cls, value: str) -> "ActivityLevel":
        for level in cls:
            if level.value.lower() == (value or "").strip().lower():
                return level
        return cls.LOW


@dataclass(frozen=True)
class ActivityThresholds:
    low_max: int = 4
    medium_max: int = 9


@dataclass
class WeekSummaryRow:
    name: str
    total_points: int = 0
    activity_level: ActivityLevel = ActivityLevel.LOW
    streak: int = 1
    last3_weeks_total: int = 0
    boss_points: Dict[str, int] = field(default_factory=dict)
    boss_counts: Dict[str, int] = field(default_factory=dict)


def effective_points(base_points: int, bonus: int = 0, multiplier: Fraction = Fraction(1)) -> int:
    """``(base + bonus) * multiplier``, rounded up when the product is fractional."""
    raw = (Fraction(base_points) + bonus) * Fraction(multiplier)
    if raw.denominator == 1:
        return int(raw)
    return math.ceil(raw)


def line_points(line: ParsedLine, boss_points: Mapping[str, int]) -> int:
    base = boss_points.get(line.boss_canonical or "", 0)
    return effective_points(base, line.points_bonus, line.points_multiplier)


def activity_level(points: int, thresholds: ActivityThresholds) -> ActivityLevel:
    if points <= thresholds.low_max:
        return ActivityLevel.LOW
    if points <= thresholds.medium_max:
        return ActivityLevel.MEDIUM
    return ActivityLevel.HIGH


def boss_points_map(bosses: Iterable[BossConfig]) -> Dict[str, int]:
    return {boss.boss: boss.points for boss in bosses}


def compute_weekly_summary(
    lines: Iterable[ParsedLine],
    boss_points: Mapping[str, int],
    users: Iterable[str],
    thresholds: ActivityThresholds,
) -> List[WeekSummaryRow]:
    rows: Dict[str, WeekSummaryRow] = {}
    for user in users:
        rows[user] = WeekSummaryRow(name=user)

    for line in lines:
        if line.has_issues:
            raise ValueError(
                f"Line {line.line_number} still has {len(line.issues)} issue(s); "
                "resolve or discard it before calculating."
            )
        if not line.boss_canonical:
            continue
        boss = line.boss_canonical
        points = line_points(line, boss_points)

        for name in line.add_names:
            row = rows.get(name)
            if row is None:
                continue
            row.total_points += points
            row.boss_points[boss] = row.boss_points.get(boss, 0) + points
            row.boss_counts[boss] = row.boss_counts.get(boss, 0) + 1

        for name in line.subtract_names:
            row = rows.get(name)
            if row is None:
                continue
            row.total_points -= points
            row.boss_points[boss] = row.boss_points.get(boss, 0) - points
            row.boss_counts[boss] = row.boss_counts.get(boss, 0) - 1

    output = list(rows.values())
    for row in output:
        row.activity_level = activity_level(row.total_points, thresholds)
        row.last3_weeks_total = row.total_points

    output.sort(key=lambda item: (-item.total_points, item.name))
    return output
