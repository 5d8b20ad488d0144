import unittest
from datetime import date, datetime, timezone

from dkpweekly.core.points import ActivityLevel, WeekSummaryRow
from dkpweekly.core.weeks import (
    BreakdownRow,
    HistoricalTotal,
    StoredWeek,
    WeekExistsError,
    WeekStorage,
    isoformat_utc,
    last_three_week_totals,
    load_stored_week,
    merge_week_history,
    recompute_streaks,
    to_week_id,
    week_bounds,
    week_start_for,
)


class WeekBoundsTests(unittest.TestCase):
    def test_bounds_cover_seven_days(self) -> None:
        bounds = week_bounds("2026-03-01")
        self.assertEqual(bounds.start, datetime(2026, 3, 1, tzinfo=timezone.utc))
        self.assertEqual(bounds.end, datetime(2026, 3, 7, 23, 59, 59, 999000, tzinfo=timezone.utc))
        self.assertEqual(isoformat_utc(bounds.end), "2026-03-07T23:59:59.999Z")

    def test_week_id(self) -> None:
        self.assertEqual(to_week_id(date(2026, 3, 1)), "2026-03-01")
        self.assertEqual(to_week_id("2026-03-01T00:00:00.000Z"), "2026-03-01")

    def test_week_start_for(self) -> None:
        self.assertEqual(week_start_for(date(2026, 3, 4)), date(2026, 3, 1))
        self.assertEqual(week_start_for(date(2026, 3, 1)), date(2026, 2, 22))
        self.assertEqual(week_start_for(date(2026, 3, 2)), date(2026, 3, 1))
        self.assertEqual(week_start_for(date(2026, 3, 7)), date(2026, 3, 1))
        self.assertEqual(week_start_for(date(2026, 3, 4), "mon"), date(2026, 3, 2))
        self.assertEqual(week_start_for(date(2026, 3, 4), "bogus"), date(2026, 3, 1))


class StreakTests(unittest.TestCase):
    def test_streaks_follow_week_order(self) -> None:
        levels = ["Low", "Low", "Medium", "Medium", "Medium"]
        weeks = ["w1", "w2", "w3", "w4", "w5"]
        rows = [
            HistoricalTotal(week_id=week, name="Alice", total_points=0, activity_level=level)
            for week, level in zip(weeks, levels)
        ]
        result = recompute_streaks(list(reversed(rows)), weeks)
        by_week = {row.week_id: row.streak for row in result}
        self.assertEqual([by_week[week] for week in weeks], [1, 2, 1, 2, 3])
        self.assertEqual(rows[0].streak, 1)

    def test_users_are_independent(self) -> None:
        rows = [
            HistoricalTotal("w1", "Alice", 10, "High"),
            HistoricalTotal("w1", "Bob", 0, "Low"),
            HistoricalTotal("w2", "Bob", 0, "Low"),
            HistoricalTotal("w2", "Alice", 1, "Low"),
        ]
        result = recompute_streaks(rows, ["w1", "w2"])
        self.assertEqual([row.streak for row in result], [1, 1, 2, 1])

    def test_last_three_weeks(self) -> None:
        rows = [HistoricalTotal(f"w{i}", "Alice", i, "Low") for i in range(1, 5)]
        weeks = ["w1", "w2", "w3", "w4"]
        self.assertEqual(last_three_week_totals(rows, weeks, "w4"), {"Alice": 9})
        self.assertEqual(last_three_week_totals(rows, weeks, "w1"), {"Alice": 1})
        self.assertEqual(last_three_week_totals(rows, weeks, "w9"), {})


class MergeHistoryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.storage = WeekStorage(
            weeks=[StoredWeek("2026-02-22")],
            totals=[HistoricalTotal("2026-02-22", "Alice", 6, "Medium", 1)],
            breakdown=[BreakdownRow("2026-02-22", "Alice", "Hydra", 6, 1)],
        )
        self.summary = [
            WeekSummaryRow(
                name="Alice",
                total_points=7,
                activity_level=ActivityLevel.MEDIUM,
                boss_points={"Ogre": 7},
                boss_counts={"Ogre": 2},
            ),
            WeekSummaryRow(name="Bob"),
        ]

    def test_merge_new_week(self) -> None:
        storage, rows = merge_week_history(self.storage, StoredWeek("2026-03-01"), self.summary)
        self.assertEqual([week.week_id for week in storage.weeks], ["2026-02-22", "2026-03-01"])
        alice = rows[0]
        self.assertEqual(alice.streak, 2)
        self.assertEqual(alice.last3_weeks_total, 13)
        self.assertEqual(rows[1].streak, 1)
        self.assertEqual(len(storage.totals), 3)
        self.assertIn(BreakdownRow("2026-03-01", "Alice", "Ogre", 7, 2), storage.breakdown)
        self.assertEqual(len(self.storage.totals), 1)

    def test_existing_week_needs_overwrite(self) -> None:
        with self.assertRaises(WeekExistsError) as ctx:
            merge_week_history(self.storage, StoredWeek("2026-02-22"), self.summary)
        self.assertEqual(ctx.exception.week_id, "2026-02-22")

        storage, _ = merge_week_history(
            self.storage, StoredWeek("2026-02-22"), self.summary, overwrite=True
        )
        self.assertEqual(len(storage.weeks), 1)
        self.assertEqual(sorted(row.name for row in storage.totals), ["Alice", "Bob"])
        self.assertEqual(
            storage.breakdown, [BreakdownRow("2026-02-22", "Alice", "Ogre", 7, 2)]
        )

    def test_load_stored_week(self) -> None:
        storage, _ = merge_week_history(self.storage, StoredWeek("2026-03-01"), self.summary)
        storage.breakdown.append(BreakdownRow("2026-03-01", "Carl", "Hydra", 10, 1))

        rows, bosses = load_stored_week(storage, "2026-03-01")
        self.assertEqual(bosses, ["Hydra", "Ogre"])
        self.assertEqual([row.name for row in rows], ["Alice", "Bob", "Carl"])
        alice = rows[0]
        self.assertEqual(alice.activity_level, ActivityLevel.MEDIUM)
        self.assertEqual(alice.streak, 2)
        self.assertEqual(alice.last3_weeks_total, 13)
        self.assertEqual(alice.boss_counts, {"Ogre": 2})
        self.assertEqual(rows[2].boss_counts, {"Hydra": 1})


if __name__ == "__main__":
    unittest.main()
