import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from .autocorrect import suggest_bosses, suggest_names
from .config import AppConfig, SheetConfig
from .export import corrected_text
from .lookup import ParserLookup, build_lookup
from .parser import IssueType, ParsedLine, ParseIssue, is_timestamp_line_start
from .points import WeekSummaryRow, boss_points_map, compute_weekly_summary
from .sanitise import LogicalEntry, merge_logical_entries, parse_entries
from .sheets import SetupBundle
from .weeks import (
    StoredWeek,
    WeekBounds,
    isoformat_utc,
    load_stored_week,
    merge_week_history,
    to_week_id,
    week_bounds,
    week_start_for,
)


class SessionState(str, Enum):
    IDLE = "Idle"
    AWAITING_FILE = "AwaitingFile"
    PARSING = "Parsing"
    RESOLVING_ISSUE = "ResolvingIssue"
    READY = "Ready"
    SAVING = "Saving"
    SAVED = "Saved"


TRANSITIONS: Dict[SessionState, Set[SessionState]] = {
    SessionState.IDLE: {SessionState.AWAITING_FILE},
    SessionState.AWAITING_FILE: {SessionState.PARSING, SessionState.IDLE},
    SessionState.PARSING: {
        SessionState.RESOLVING_ISSUE,
        SessionState.READY,
        SessionState.AWAITING_FILE,
    },
    SessionState.RESOLVING_ISSUE: {
        SessionState.PARSING,
        SessionState.RESOLVING_ISSUE,
        SessionState.READY,
        SessionState.AWAITING_FILE,
    },
    SessionState.READY: {SessionState.PARSING, SessionState.SAVING, SessionState.AWAITING_FILE},
    SessionState.SAVING: {SessionState.SAVED, SessionState.READY},
    SessionState.SAVED: {SessionState.PARSING, SessionState.SAVING, SessionState.AWAITING_FILE},
}

BUSY_STATES = {SessionState.PARSING, SessionState.SAVING}


class SessionStateError(Exception):
    pass


class SessionBusyError(SessionStateError):
    pass


class UnresolvedIssuesError(SessionStateError):
    def __init__(self, count: int) -> None:
        super().__init__(f"{count} line(s) still need attention.")
        self.count = count


class AccessDeniedError(Exception):
    pass


class SetupError(Exception):
    pass


@dataclass
class IssueView:
    line: ParsedLine
    issue: ParseIssue
    position: int
    total: int
    suggestions: List[str]
    context: List[Tuple[int, str]]


def check_allowlist(allowlist: Sequence[str], email: str) -> None:
    if not allowlist:
        return
    if (email or "").strip().lower() not in {item.strip().lower() for item in allowlist}:
        raise AccessDeniedError("Your account is not in the Allowlist tab for this data sheet.")


class WizardSession:
    """One resolver run: load a timers file, fix its lines, then calculate and save the week.

    ``store`` is a :class:`~dkpweekly.core.sheets.SheetsStore` or anything with the same
    methods. ``clock`` feeds the setup cache TTL and ``now`` stamps saved weeks.
    """

    def __init__(
        self,
        store,
        app_config: Optional[AppConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.store = store
        self.app_config = app_config or AppConfig()
        self.clock = clock
        self.now = now

        self.state = SessionState.IDLE
        self.issue_cursor = 0

        self._setup: Optional[SetupBundle] = None
        self._setup_loaded_at = 0.0
        self.lookup: Optional[ParserLookup] = None

        self.raw_lines: List[str] = []
        self.file_name = ""
        self.entries: List[LogicalEntry] = []
        self.parsed_lines: List[ParsedLine] = []
        self.discarded: Set[int] = set()
        self.week_start_date: Optional[date] = None
        self.timezone = ""
        self.results: List[WeekSummaryRow] = []
        self.boss_columns: List[str] = []

    # State machine

    def _transition(self, target: SessionState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise SessionStateError(f"Cannot move from {self.state.value} to {target.value}.")
        logging.debug("Session %s -> %s", self.state.value, target.value)
        self.state = target

    def _ensure_not_busy(self) -> None:
        if self.state in BUSY_STATES:
            raise SessionBusyError(f"Session is busy ({self.state.value}).")

    def _require(self, *states: SessionState) -> None:
        self._ensure_not_busy()
        if self.state not in states:
            allowed = ", ".join(state.value for state in states)
            raise SessionStateError(
                f"Operation not allowed in state {self.state.value} (expected {allowed})."
            )

    # Setup

    def setup(self, force: bool = False) -> SetupBundle:
        ttl = self.app_config.setup_cache_seconds
        if (
            not force
            and self._setup is not None
            and self.clock() - self._setup_loaded_at < ttl
        ):
            return self._setup

        logging.info("Loading setup bundle")
        bundle = self.store.load_setup_bundle()
        check_allowlist(bundle.allowlist, self.app_config.account_email)
        self._setup = bundle
        self._setup_loaded_at = self.clock()
        self.lookup = build_lookup(
            bundle.users,
            bundle.bosses,
            bundle.name_aliases,
            bundle.boss_aliases,
            derive_name_aliases=self.app_config.derive_name_aliases,
        )
        return bundle

    def invalidate_setup(self) -> None:
        self._setup = None
        self.lookup = None

    @property
    def sheet_config(self) -> SheetConfig:
        return SheetConfig(self._setup.config if self._setup else None)

    def start(self) -> SetupBundle:
        """Load setup and wait for a timers file."""
        self._require(SessionState.IDLE, SessionState.AWAITING_FILE)
        if not self.app_config.data_spreadsheet_id or not self.app_config.users_range:
            raise SetupError("Data spreadsheet ID and users range are required.")
        bundle = self.setup()
        if self.state == SessionState.IDLE:
            self._transition(SessionState.AWAITING_FILE)
        return bundle

    # Loading and parsing

    def load_file(
        self,
        text: str,
        file_name: str = "",
        week_start_date: Optional[date] = None,
        tz: str = "",
    ) -> List[ParsedLine]:
        self._require(
            SessionState.AWAITING_FILE,
            SessionState.RESOLVING_ISSUE,
            SessionState.READY,
            SessionState.SAVED,
        )
        if self.state != SessionState.AWAITING_FILE:
            self._transition(SessionState.AWAITING_FILE)

        self.raw_lines = text.splitlines()
        self.file_name = file_name or "manual"
        self.discarded = set()
        self.issue_cursor = 0
        self.results = []
        self.boss_columns = []

        config = SheetConfig(self.setup().config)
        self.timezone = tz or self.app_config.timezone or config.timezone_default
        self.week_start_date = week_start_date or week_start_for(self.now(), config.week_start)
        logging.info(
            "Loaded %s (%d lines) for week %s in %s",
            self.file_name,
            len(self.raw_lines),
            self.week_id,
            self.timezone,
        )
        return self._reparse()

    def load_path(self, path: Path, week_start_date: Optional[date] = None, tz: str = ""):
        with path.open("r", encoding="utf-8", errors="ignore") as f:
            text = f.read()
        return self.load_file(text, path.name, week_start_date, tz)

    @property
    def week_id(self) -> str:
        return to_week_id(self.week_start_date) if self.week_start_date else ""

    @property
    def bounds(self) -> Optional[WeekBounds]:
        return week_bounds(self.week_start_date) if self.week_start_date else None

    def _reparse(self) -> List[ParsedLine]:
        previous = self.state
        self._transition(SessionState.PARSING)
        try:
            self.setup()
            self.entries = merge_logical_entries(self.raw_lines)
            self.parsed_lines = parse_entries(self.entries, self.lookup, self.timezone, self.bounds)
        except Exception:
            self.state = previous
            raise
        self._after_parse()
        return self.parsed_lines

    def _after_parse(self) -> None:
        self.results = []
        unresolved = self.unresolved
        logging.info(
            "Parsed %d lines, %d need attention", len(self.parsed_lines), len(unresolved)
        )
        if unresolved:
            if self.issue_cursor >= len(unresolved):
                self.issue_cursor = 0
            self._transition(SessionState.RESOLVING_ISSUE)
        else:
            self.issue_cursor = 0
            self._transition(SessionState.READY)

    def _settle(self) -> None:
        """Re-evaluate the state after a discard, without reparsing."""
        self._transition(SessionState.PARSING)
        self._after_parse()

    # Issues

    @property
    def unresolved(self) -> List[ParsedLine]:
        return [
            line
            for line in self.parsed_lines
            if line.has_issues and line.line_number not in self.discarded
        ]

    @property
    def in_scope_lines(self) -> List[ParsedLine]:
        return [
            line
            for line in self.parsed_lines
            if not line.has_issues and line.line_number not in self.discarded
        ]

    def current_line(self) -> Optional[ParsedLine]:
        unresolved = self.unresolved
        if not unresolved:
            return None
        return unresolved[self.issue_cursor % len(unresolved)]

    def next_issue(self) -> Optional[ParsedLine]:
        self._require(SessionState.RESOLVING_ISSUE)
        unresolved = self.unresolved
        if len(unresolved) > 1:
            self.issue_cursor = (self.issue_cursor + 1) % len(unresolved)
            self._transition(SessionState.RESOLVING_ISSUE)
        return self.current_line()

    def entry_for(self, line_number: int) -> Optional[LogicalEntry]:
        for entry in self.entries:
            if entry.line_number == line_number:
                return entry
        return None

    def context_lines(self, line_number: int, radius: int = 2) -> List[Tuple[int, str]]:
        entry = self.entry_for(line_number)
        physical = entry.physical_lines if entry else (line_number,)
        first = max(1, physical[0] - radius)
        last = min(len(self.raw_lines), physical[-1] + radius)
        return [(number, self.raw_lines[number - 1]) for number in range(first, last + 1)]

    def suggestions_for(self, issue: ParseIssue) -> List[str]:
        if not issue.token or self.lookup is None:
            return []
        if issue.type == IssueType.UNKNOWN_NAME:
            return suggest_names(issue.token, self.lookup.users)
        if issue.type == IssueType.UNKNOWN_BOSS:
            return suggest_bosses(issue.token, self.lookup.bosses)
        return []

    def current_issue(self) -> Optional[IssueView]:
        line = self.current_line()
        if line is None:
            return None
        issue = line.issues[0]
        return IssueView(
            line=line,
            issue=issue,
            position=self.issue_cursor % len(self.unresolved) + 1,
            total=len(self.unresolved),
            suggestions=self.suggestions_for(issue),
            context=self.context_lines(line.line_number),
        )

    # Resolution actions

    def check_line(self, line_number: int, text: str) -> List[ParsedLine]:
        """Replace a logical line with ``text`` and reparse the whole file."""
        self._require(SessionState.RESOLVING_ISSUE, SessionState.READY, SessionState.SAVED)
        if not 1 <= line_number <= len(self.raw_lines):
            raise ValueError(f"Line {line_number} is out of range.")
        first_entry = self.entries[0].line_number if self.entries else line_number
        if line_number > first_entry and not is_timestamp_line_start(text):
            # Without a timestamp the text would merge into the entry above it.
            raise ValueError(f"Line {line_number} must start with a timestamp.")
        entry = self.entry_for(line_number)
        self.raw_lines[line_number - 1] = text
        if entry is not None:
            for continuation in entry.physical_lines[1:]:
                self.raw_lines[continuation - 1] = ""
        logging.info("Rechecked line %d", line_number)
        return self._reparse()

    def discard_line(self, line_number: int) -> None:
        self._require(SessionState.RESOLVING_ISSUE, SessionState.READY, SessionState.SAVED)
        self.discarded.add(line_number)
        logging.info("Discarded line %d", line_number)
        self._settle()

    def add_name_alias(self, alias: str, name: str) -> List[ParsedLine]:
        self._require(SessionState.RESOLVING_ISSUE, SessionState.READY, SessionState.SAVED)
        alias, name = alias.strip(), name.strip()
        if not alias or not name:
            raise ValueError("Alias and name are required.")
        self.store.append_name_alias(alias, name)
        self.invalidate_setup()
        return self._reparse()

    def add_boss_alias(self, alias: str, boss: str) -> List[ParsedLine]:
        self._require(SessionState.RESOLVING_ISSUE, SessionState.READY, SessionState.SAVED)
        alias, boss = alias.strip(), boss.strip()
        if not alias or not boss:
            raise ValueError("Alias and boss are required.")
        self.store.append_boss_alias(alias, boss)
        self.invalidate_setup()
        return self._reparse()

    def add_boss(self, boss: str, points: int, alias: str = "") -> List[ParsedLine]:
        self._require(SessionState.RESOLVING_ISSUE, SessionState.READY, SessionState.SAVED)
        boss = boss.strip()
        if not boss:
            raise ValueError("Boss name is required.")
        self.store.append_boss(boss, int(points))
        alias = alias.strip()
        if alias and alias.lower() != boss.lower():
            self.store.append_boss_alias(alias, boss)
        self.invalidate_setup()
        return self._reparse()

    # Calculation and storage

    def calculate(self) -> List[WeekSummaryRow]:
        self._require(SessionState.RESOLVING_ISSUE, SessionState.READY, SessionState.SAVED)
        if self.unresolved:
            raise UnresolvedIssuesError(len(self.unresolved))
        bundle = self.setup()
        if not bundle.users:
            raise SetupError("No users were loaded from the users range.")
        self.results = compute_weekly_summary(
            self.in_scope_lines,
            boss_points_map(bundle.bosses),
            bundle.users,
            self.sheet_config.thresholds,
        )
        self.boss_columns = sorted({boss.boss for boss in bundle.bosses})
        logging.info("Calculated %d rows for week %s", len(self.results), self.week_id)
        return self.results

    def save(self, overwrite: bool = False) -> List[WeekSummaryRow]:
        self._require(SessionState.READY, SessionState.SAVED)
        summary = self.calculate()
        bounds = self.bounds
        week = StoredWeek(
            week_id=self.week_id,
            start_utc=isoformat_utc(bounds.start),
            end_utc=isoformat_utc(bounds.end),
            timezone=self.timezone,
            source_file_name=self.file_name,
            created_utc=isoformat_utc(self.now()),
        )

        previous = self.state
        self._transition(SessionState.SAVING)
        try:
            storage = self.store.load_week_storage()
            updated, rows = merge_week_history(storage, week, summary, overwrite)
            self.store.save_week_storage(updated)
        except Exception:
            self.state = previous
            raise
        self.invalidate_setup()
        self.results = rows
        self._transition(SessionState.SAVED)
        logging.info("Saved week %s", self.week_id)
        return rows

    def load_stored_week(self, week_id: str) -> List[WeekSummaryRow]:
        self._ensure_not_busy()
        rows, bosses = load_stored_week(self.store.load_week_storage(), week_id)
        self.results = rows
        self.boss_columns = bosses
        return rows

    def stored_week_ids(self) -> List[str]:
        bundle = self.setup()
        return sorted((week.week_id for week in bundle.weeks), reverse=True)

    def corrected_text(self) -> str:
        # Discarded entries drop with their continuation lines.
        skipped: Set[int] = set()
        for line_number in self.discarded:
            entry = self.entry_for(line_number)
            skipped.update(entry.physical_lines if entry else (line_number,))
        return corrected_text(self.raw_lines, skipped)
