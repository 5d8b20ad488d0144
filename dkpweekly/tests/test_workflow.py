import copy
import tempfile
import unittest
from datetime import date, datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock

from dkpweekly.core.config import AppConfig
from dkpweekly.core.lookup import AliasRow, BossConfig
from dkpweekly.core.parser import IssueType
from dkpweekly.core.points import ActivityLevel
from dkpweekly.core.sheets import SetupBundle
from dkpweekly.core.weeks import HistoricalTotal, StoredWeek, WeekExistsError, WeekStorage
from dkpweekly.core.workflow import (
    AccessDeniedError,
    SessionBusyError,
    SessionState,
    SessionStateError,
    SetupError,
    UnresolvedIssuesError,
    WizardSession,
    check_allowlist,
)

TIMERS = "\n".join(
    [
        "March 1, 2026 8:00 PM: Bob Smith: Hydra Alice Carl",
        "March 2, 2026 9:00 PM: Carl: Ogre Alicee",
        "",
        "March 3, 2026 9:00 PM: Carl: Wyrm Alice",
        "March 9, 2026 9:00 PM: Carl: Hydra Alice",
    ]
)


class FakeStore:
    """In-memory stand-in for SheetsStore."""

    def __init__(self) -> None:
        self.bundle = SetupBundle(
            users=["Alice", "Bob Smith", "Carl"],
            bosses=[BossConfig("Hydra", 10), BossConfig("Ogre", 3)],
        )
        self.storage = WeekStorage(
            weeks=[StoredWeek("2026-02-22")],
            totals=[HistoricalTotal("2026-02-22", "Alice", 12, "High", 1)],
        )
        self.setup_loads = 0
        self.saves = 0

    def load_setup_bundle(self) -> SetupBundle:
        self.setup_loads += 1
        bundle = copy.deepcopy(self.bundle)
        bundle.weeks = list(self.storage.weeks)
        return bundle

    def load_week_storage(self) -> WeekStorage:
        return copy.deepcopy(self.storage)

    def save_week_storage(self, storage: WeekStorage) -> None:
        self.saves += 1
        self.storage = storage

    def append_name_alias(self, alias: str, name: str) -> None:
        self.bundle.name_aliases.append(AliasRow(alias, name))

    def append_boss_alias(self, alias: str, boss: str) -> None:
        self.bundle.boss_aliases.append(AliasRow(alias, boss))

    def append_boss(self, boss: str, points: int) -> None:
        self.bundle.bosses.append(BossConfig(boss, points))


class FakeClock:
    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


def _config(**overrides) -> AppConfig:
    values = dict(data_spreadsheet_id="data-id", timezone="UTC", derive_name_aliases=False)
    values.update(overrides)
    return AppConfig(**values)


class WizardSessionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = FakeStore()
        self.clock = FakeClock()
        self.session = WizardSession(
            self.store,
            _config(),
            clock=self.clock,
            now=lambda: datetime(2026, 3, 8, 12, 0, tzinfo=timezone.utc),
        )

    def _load(self, text: str = TIMERS):
        self.session.start()
        return self.session.load_file(text, "timers.txt", date(2026, 3, 1))

    def test_start_moves_to_awaiting_file(self) -> None:
        self.assertEqual(self.session.state, SessionState.IDLE)
        self.session.start()
        self.assertEqual(self.session.state, SessionState.AWAITING_FILE)

    def test_start_requires_data_sheet(self) -> None:
        session = WizardSession(self.store, AppConfig())
        with self.assertRaises(SetupError):
            session.start()
        self.assertEqual(session.state, SessionState.IDLE)

    def test_load_file_before_start(self) -> None:
        with self.assertRaises(SessionStateError):
            self.session.load_file(TIMERS)

    def test_load_reports_issues_in_order(self) -> None:
        lines = self._load()
        self.assertEqual([line.line_number for line in lines], [1, 2, 4])
        self.assertEqual(self.session.state, SessionState.RESOLVING_ISSUE)
        self.assertEqual(self.session.week_id, "2026-03-01")

        view = self.session.current_issue()
        self.assertEqual(view.line.line_number, 2)
        self.assertEqual(view.issue.type, IssueType.UNKNOWN_NAME)
        self.assertEqual(view.issue.token, "Alicee")
        self.assertEqual(view.suggestions[0], "Alice")
        self.assertEqual((view.position, view.total), (1, 2))
        self.assertEqual(view.context[0], (1, "March 1, 2026 8:00 PM: Bob Smith: Hydra Alice Carl"))

        following = self.session.next_issue()
        self.assertEqual(following.line_number, 4)
        self.assertEqual(self.session.next_issue().line_number, 2)

    def test_week_defaults_from_today(self) -> None:
        self.session.start()
        self.session.load_file(TIMERS)
        # 2026-03-08 is a Sunday, so the week that just ended is picked.
        self.assertEqual(self.session.week_id, "2026-03-01")
        self.assertEqual(self.session.timezone, "UTC")

    def test_resolve_then_calculate_and_save(self) -> None:
        self._load()
        self.session.add_name_alias("Alicee", "Alice")
        self.assertEqual(self.session.state, SessionState.RESOLVING_ISSUE)
        self.assertEqual(self.store.bundle.name_aliases, [AliasRow("Alicee", "Alice")])

        self.session.add_boss("Wyrm", 4)
        self.assertEqual(self.session.state, SessionState.READY)

        rows = self.session.calculate()
        totals = {row.name: row.total_points for row in rows}
        self.assertEqual(totals, {"Alice": 17, "Carl": 10, "Bob Smith": 0})
        self.assertEqual(self.session.boss_columns, ["Hydra", "Ogre", "Wyrm"])

        saved = self.session.save()
        self.assertEqual(self.session.state, SessionState.SAVED)
        alice = saved[0]
        self.assertEqual(alice.activity_level, ActivityLevel.HIGH)
        self.assertEqual(alice.streak, 2)
        self.assertEqual(alice.last3_weeks_total, 29)

        week = self.store.storage.weeks[-1]
        self.assertEqual(week.week_id, "2026-03-01")
        self.assertEqual(week.end_utc, "2026-03-07T23:59:59.999Z")
        self.assertEqual(week.created_utc, "2026-03-08T12:00:00.000Z")
        self.assertEqual(week.source_file_name, "timers.txt")

    def test_save_existing_week_needs_overwrite(self) -> None:
        self._load()
        self.session.discard_line(2)
        self.session.discard_line(4)
        self.assertEqual(self.session.state, SessionState.READY)

        self.session.save()
        with self.assertRaises(WeekExistsError):
            self.session.save()
        self.assertEqual(self.session.state, SessionState.SAVED)
        self.assertEqual(self.store.saves, 1)

        self.session.save(overwrite=True)
        self.assertEqual(self.store.saves, 2)
        self.assertEqual(
            [week.week_id for week in self.store.storage.weeks], ["2026-02-22", "2026-03-01"]
        )

    def test_calculate_with_open_issues(self) -> None:
        self._load()
        with self.assertRaises(UnresolvedIssuesError) as ctx:
            self.session.calculate()
        self.assertEqual(ctx.exception.count, 2)

    def test_save_requires_ready(self) -> None:
        self._load()
        with self.assertRaises(SessionStateError):
            self.session.save()

    def test_discard_excludes_line(self) -> None:
        self._load()
        self.session.discard_line(4)
        self.assertEqual([line.line_number for line in self.session.unresolved], [2])
        self.assertEqual([line.line_number for line in self.session.in_scope_lines], [1])
        self.assertNotIn("Wyrm", self.session.corrected_text())

    def test_check_line_replaces_text(self) -> None:
        self._load()
        self.session.check_line(4, "March 3, 2026 9:00 PM: Carl: Hydra Alice")
        self.assertEqual([line.line_number for line in self.session.unresolved], [2])
        self.assertEqual(self.session.raw_lines[3], "March 3, 2026 9:00 PM: Carl: Hydra Alice")
        with self.assertRaises(ValueError):
            self.session.check_line(99, "x")

    def test_check_line_blanks_continuations(self) -> None:
        self._load("March 1, 2026 8:00 PM: Bob Smith: Hydra Alice\nCarrl")
        self.assertEqual(self.session.state, SessionState.RESOLVING_ISSUE)
        self.session.check_line(1, "March 1, 2026 8:00 PM: Bob Smith: Hydra Alice Carl")
        self.assertEqual(self.session.raw_lines, ["March 1, 2026 8:00 PM: Bob Smith: Hydra Alice Carl", ""])
        self.assertEqual(self.session.state, SessionState.READY)

    def test_check_line_needs_timestamp_after_first_entry(self) -> None:
        self._load()
        before = self.session.raw_lines[:]
        with self.assertRaises(ValueError):
            self.session.check_line(2, "Carl: Ogre Alice")
        self.assertEqual(self.session.raw_lines, before)
        first = self.session.parsed_lines[0]
        self.assertEqual(first.add_names, ("Alice", "Carl"))
        self.assertFalse(first.has_issues)
        self.assertEqual([line.line_number for line in self.session.unresolved], [2, 4])

    def test_check_line_first_entry_without_timestamp(self) -> None:
        self._load("intro\nMarch 1, 2026 8:00 PM: Bob Smith: Hydra Alice")
        self.session.check_line(1, "still not a timers line")
        self.assertEqual(self.session.raw_lines[0], "still not a timers line")
        self.assertEqual(self.session.state, SessionState.RESOLVING_ISSUE)

    def test_corrected_text_drops_discarded_continuations(self) -> None:
        self._load(
            "March 1, 2026 8:00 PM: Bob Smith: Hydra Alice\n"
            "March 2, 2026 9:00 PM: Carl: Wyrm Alice\n"
            "Carl"
        )
        self.session.discard_line(2)
        corrected = self.session.corrected_text()
        self.assertEqual(corrected, "March 1, 2026 8:00 PM: Bob Smith: Hydra Alice\n")

        self.session.load_file(corrected, "corrected.txt", date(2026, 3, 1))
        self.assertEqual(
            [(line.line_number, line.add_names) for line in self.session.parsed_lines],
            [(1, ("Alice",))],
        )

    def test_add_boss_alias(self) -> None:
        self._load("March 3, 2026 9:00 PM: Carl: /hyd Alice")
        self.assertEqual(self.session.current_issue().issue.token, "/hyd")
        self.session.add_boss_alias("/hyd", "Hydra")
        self.assertEqual(self.session.state, SessionState.READY)
        self.assertEqual(self.session.in_scope_lines[0].boss_canonical, "Hydra")

    def test_alias_values_are_required(self) -> None:
        self._load()
        with self.assertRaises(ValueError):
            self.session.add_name_alias(" ", "Alice")

    def test_busy_session_rejects_actions(self) -> None:
        self._load()
        self.session.state = SessionState.PARSING
        with self.assertRaises(SessionBusyError):
            self.session.discard_line(2)
        self.session.state = SessionState.SAVING
        with self.assertRaises(SessionBusyError):
            self.session.load_stored_week("2026-02-22")

    def test_failed_save_restores_state(self) -> None:
        self._load()
        self.session.discard_line(2)
        self.session.discard_line(4)
        self.store.save_week_storage = MagicMock(side_effect=RuntimeError("quota"))
        with self.assertRaises(RuntimeError):
            self.session.save()
        self.assertEqual(self.session.state, SessionState.READY)

    def test_setup_is_cached_until_ttl_or_write(self) -> None:
        self._load()
        self.assertEqual(self.store.setup_loads, 1)

        self.session.setup()
        self.assertEqual(self.store.setup_loads, 1)

        self.clock.value += 181
        self.session.setup()
        self.assertEqual(self.store.setup_loads, 2)

        self.session.add_name_alias("Alicee", "Alice")
        self.assertEqual(self.store.setup_loads, 3)

    def test_allowlist_blocks_other_accounts(self) -> None:
        self.store.bundle.allowlist = ["lead@example.com"]
        session = WizardSession(self.store, _config(account_email="me@example.com"))
        with self.assertRaises(AccessDeniedError):
            session.start()

        allowed = WizardSession(self.store, _config(account_email=" Lead@Example.com "))
        allowed.start()
        self.assertEqual(allowed.state, SessionState.AWAITING_FILE)

    def test_check_allowlist_open_when_empty(self) -> None:
        check_allowlist([], "")

    def test_stored_weeks(self) -> None:
        self.session.start()
        self.assertEqual(self.session.stored_week_ids(), ["2026-02-22"])
        rows = self.session.load_stored_week("2026-02-22")
        self.assertEqual([(row.name, row.total_points) for row in rows], [("Alice", 12)])

    def test_load_path(self) -> None:
        self.session.start()
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "export.txt"
            path.write_text("March 1, 2026 8:00 PM: Bob Smith: Hydra Alice\n", encoding="utf-8")
            self.session.load_path(path, date(2026, 3, 1))
        self.assertEqual(self.session.file_name, "export.txt")
        self.assertEqual(self.session.state, SessionState.READY)


if __name__ == "__main__":
    unittest.main()
