import html
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable, Optional
from zoneinfo import available_timezones

from PySide6.QtCore import QDate, Qt
from PySide6.QtGui import QColor, QCursor, QPixmap
from PySide6.QtWidgets import (
    QAbstractItemView,
    QApplication,
    QComboBox,
    QDateEdit,
    QFileDialog,
    QFormLayout,
    QFrame,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QMessageBox,
    QPlainTextEdit,
    QProgressBar,
    QPushButton,
    QTableWidget,
    QTableWidgetItem,
    QTextEdit,
    QVBoxLayout,
    QWizard,
    QWizardPage,
)

from ..core.config import AppConfig, load_config, save_config, token_path
from ..core.export import (
    clipboard_text,
    default_file_name,
    full_csv,
    minimal_csv,
    minimal_text,
    write_export,
)
from ..core.parser import IssueType
from ..core.sheets import SheetsStore, build_service
from ..core.weeks import WeekExistsError, week_start_for
from ..core.workflow import SessionState, WizardSession
from .dialogs import AddBossDialog

COMMON_TIMEZONES = ["UTC", "America/New_York", "America/Chicago", "America/Denver", "America/Los_Angeles"]


@dataclass
class WizardContext:
    config: AppConfig
    session: Optional[WizardSession] = None


def _with_wait_cursor(func: Callable):
    QApplication.setOverrideCursor(QCursor(Qt.WaitCursor))
    try:
        return func()
    finally:
        QApplication.restoreOverrideCursor()


class SetupPage(QWizardPage):
    def __init__(self, context: WizardContext) -> None:
        super().__init__()
        self.context = context
        self.setTitle("Setup")
        config = context.config

        layout = QVBoxLayout(self)
        form = QFormLayout()

        self.timers_input = QLineEdit()
        self.timers_input.setText(config.last_timers_path)
        timers_button = QPushButton("Browse")
        timers_button.clicked.connect(self._browse_timers)
        timers_row = QHBoxLayout()
        timers_row.addWidget(self.timers_input)
        timers_row.addWidget(timers_button)
        form.addRow("Timers export", timers_row)

        self.credentials_input = QLineEdit()
        self.credentials_input.setText(config.last_credentials_path)
        cred_button = QPushButton("Browse")
        cred_button.clicked.connect(self._browse_credentials)
        cred_row = QHBoxLayout()
        cred_row.addWidget(self.credentials_input)
        cred_row.addWidget(cred_button)
        form.addRow("Google credentials.json", cred_row)

        self.users_sheet_input = QLineEdit()
        self.users_sheet_input.setText(config.users_spreadsheet_id)
        form.addRow("Users spreadsheet ID", self.users_sheet_input)

        self.users_range_input = QLineEdit()
        self.users_range_input.setText(config.users_range)
        form.addRow("Users range", self.users_range_input)

        self.data_sheet_input = QLineEdit()
        self.data_sheet_input.setText(config.data_spreadsheet_id)
        form.addRow("Data spreadsheet ID", self.data_sheet_input)

        self.email_input = QLineEdit()
        self.email_input.setText(config.account_email)
        self.email_input.setPlaceholderText("Checked against the Allowlist tab")
        form.addRow("Account email", self.email_input)

        self.week_input = QDateEdit()
        self.week_input.setCalendarPopup(True)
        self.week_input.setDisplayFormat("yyyy-MM-dd")
        week_start = self._initial_week_start(config)
        self.week_input.setDate(QDate(week_start.year, week_start.month, week_start.day))
        form.addRow("Week start (UTC)", self.week_input)

        self.timezone_input = QComboBox()
        self.timezone_input.setEditable(True)
        zones = COMMON_TIMEZONES + sorted(available_timezones() - set(COMMON_TIMEZONES))
        self.timezone_input.addItems(zones)
        self.timezone_input.setCurrentText(config.timezone or "America/New_York")
        form.addRow("Export timezone", self.timezone_input)

        layout.addLayout(form)

        self.test_button = QPushButton("Test Google Sheets connection")
        self.test_button.clicked.connect(self._test_connection)
        self.test_status_indicator = QLabel("")
        self.test_status_indicator.setObjectName("StatusIndicator")
        self.test_status_indicator.setProperty("state", "idle")
        self.test_status_indicator.setAlignment(Qt.AlignCenter)
        self.test_status_indicator.setFixedSize(18, 18)
        self.test_status_text = QLabel("")
        self.test_status_text.setObjectName("TestStatusText")
        self.test_status_text.setWordWrap(True)
        test_row = QHBoxLayout()
        test_row.setSpacing(8)
        test_row.addWidget(self.test_button)
        test_row.addWidget(self.test_status_indicator)
        test_row.addWidget(self.test_status_text, 1)
        layout.addLayout(test_row)

        note = QLabel("Timestamps in the export are read in the export timezone and stored as UTC.")
        note.setStyleSheet("color: gray;")
        layout.addWidget(note)
        layout.addStretch(1)

    @staticmethod
    def _initial_week_start(config: AppConfig) -> date:
        if config.week_start_date:
            try:
                return date.fromisoformat(config.week_start_date)
            except ValueError:
                pass
        return week_start_for(datetime.now(timezone.utc))

    def initializePage(self) -> None:
        wizard = self.wizard()
        if wizard:
            wizard.setButtonText(QWizard.NextButton, "Run")

    def _browse_timers(self) -> None:
        path = self._open_file_dialog(
            "Select timers export", self.timers_input.text(), "Text Files (*.txt);;All Files (*)"
        )
        if path:
            self.timers_input.setText(path)

    def _browse_credentials(self) -> None:
        path = self._open_file_dialog(
            "Select credentials.json",
            self.credentials_input.text(),
            "JSON Files (*.json);;All Files (*)",
        )
        if path:
            self.credentials_input.setText(path)

    def _open_file_dialog(self, title: str, current: str, filter_text: str) -> str:
        start_dir = str(Path(current).parent) if current else str(Path.cwd())
        logging.info("Browse start dir: %s", start_dir)
        path, _ = QFileDialog.getOpenFileName(self.window(), title, start_dir, filter_text)
        return path

    def _collect_config(self) -> AppConfig:
        cfg = self.context.config
        cfg.last_timers_path = self.timers_input.text().strip()
        cfg.last_credentials_path = self.credentials_input.text().strip()
        cfg.users_spreadsheet_id = self.users_sheet_input.text().strip()
        cfg.users_range = self.users_range_input.text().strip()
        cfg.data_spreadsheet_id = self.data_sheet_input.text().strip()
        cfg.account_email = self.email_input.text().strip()
        cfg.week_start_date = self.week_input.date().toString("yyyy-MM-dd")
        cfg.timezone = self.timezone_input.currentText().strip()
        return cfg

    def _build_session(self) -> WizardSession:
        cfg = self._collect_config()
        credentials_path = Path(cfg.last_credentials_path)
        if not cfg.data_spreadsheet_id or not cfg.users_spreadsheet_id or not cfg.users_range:
            raise ValueError("Users spreadsheet ID, users range and data spreadsheet ID are required.")
        if not credentials_path.exists():
            raise ValueError("Please select a valid credentials.json file.")

        service = build_service(credentials_path, token_path())
        store = SheetsStore(
            service,
            data_spreadsheet_id=cfg.data_spreadsheet_id,
            users_spreadsheet_id=cfg.users_spreadsheet_id,
            users_range=cfg.users_range,
        )
        store.ensure_schema()
        session = WizardSession(store, cfg)
        session.start()
        return session

    def _test_connection(self) -> None:
        self._set_test_status("working", "Testing connection...")
        try:
            session = _with_wait_cursor(self._build_session)
        except Exception as exc:
            logging.exception("Connection test failed")
            self._set_test_status("error", str(exc))
            return
        self.context.session = session
        bundle = session.setup()
        self._set_test_status(
            "ok",
            f"Loaded {len(bundle.users)} users, {len(bundle.bosses)} bosses, "
            f"{len(bundle.weeks)} saved weeks.",
        )

    def _set_test_status(self, state: str, message: str) -> None:
        self.test_button.setEnabled(state != "working")
        self.test_status_indicator.setText({"ok": "OK", "error": "X"}.get(state, ""))
        self.test_status_indicator.setProperty("state", state)
        self.test_status_text.setText(message)
        self.test_status_indicator.style().unpolish(self.test_status_indicator)
        self.test_status_indicator.style().polish(self.test_status_indicator)
        QApplication.processEvents()

    def validatePage(self) -> bool:
        timers_path = Path(self.timers_input.text().strip())
        if not timers_path.is_file():
            QMessageBox.critical(self, "Missing file", "Please select a valid timers export.")
            return False

        def run() -> None:
            session = self._build_session()
            week = self.week_input.date()
            session.load_path(
                timers_path,
                week_start_date=date(week.year(), week.month(), week.day()),
                tz=self.context.config.timezone,
            )
            self.context.session = session

        try:
            _with_wait_cursor(run)
        except Exception as exc:
            logging.exception("Run failed")
            QMessageBox.critical(self, "Run failed", str(exc))
            return False

        save_config(self.context.config)
        return True


class ResolvePage(QWizardPage):
    def __init__(self, context: WizardContext) -> None:
        super().__init__()
        self.context = context
        self.setTitle("Resolve lines")
        layout = QVBoxLayout(self)

        self.summary = QLabel("")
        self.summary.setObjectName("SectionTitle")
        layout.addWidget(self.summary)

        self.ok_label = QLabel("All lines resolved. Click Next to calculate.")
        self.ok_label.setObjectName("ProgressLabel")
        self.ok_label.setVisible(False)
        layout.addWidget(self.ok_label)

        self.progress_bar = QProgressBar()
        layout.addWidget(self.progress_bar)

        self.fix_panel = QFrame()
        self.fix_panel.setObjectName("FixPanel")
        fix_layout = QVBoxLayout(self.fix_panel)
        fix_layout.setContentsMargins(12, 12, 12, 12)
        fix_layout.setSpacing(10)

        self.error_header = QLabel("")
        self.error_header.setObjectName("ErrorHeader")
        self.error_header.setWordWrap(True)
        fix_layout.addWidget(self.error_header)

        self.context_view = QTextEdit()
        self.context_view.setObjectName("ContextView")
        self.context_view.setReadOnly(True)
        self.context_view.setMinimumHeight(110)
        fix_layout.addWidget(self.context_view)

        self.issues_view = QPlainTextEdit()
        self.issues_view.setReadOnly(True)
        self.issues_view.setMaximumHeight(90)
        fix_layout.addWidget(self.issues_view)

        edit_label = QLabel("Edit line")
        edit_label.setObjectName("SectionTitle")
        fix_layout.addWidget(edit_label)
        self.line_input = QPlainTextEdit()
        self.line_input.setObjectName("RetypeInput")
        self.line_input.setMinimumHeight(70)
        fix_layout.addWidget(self.line_input)

        suggestion_row = QHBoxLayout()
        self.suggestion_combo = QComboBox()
        self.suggestion_combo.setEditable(True)
        self.suggestion_combo.setMinimumWidth(220)
        suggestion_row.addWidget(QLabel("Map to"))
        suggestion_row.addWidget(self.suggestion_combo, 1)
        self.name_alias_button = QPushButton("Add Name Alias")
        self.name_alias_button.clicked.connect(self._add_name_alias)
        suggestion_row.addWidget(self.name_alias_button)
        self.boss_alias_button = QPushButton("Add Boss Alias")
        self.boss_alias_button.clicked.connect(self._add_boss_alias)
        suggestion_row.addWidget(self.boss_alias_button)
        fix_layout.addLayout(suggestion_row)

        buttons_row = QHBoxLayout()
        self.check_button = QPushButton("Check Line")
        self.check_button.clicked.connect(self._check_line)
        buttons_row.addWidget(self.check_button)
        self.add_boss_button = QPushButton("Add Boss")
        self.add_boss_button.clicked.connect(self._add_boss)
        buttons_row.addWidget(self.add_boss_button)
        self.discard_button = QPushButton("Discard Line")
        self.discard_button.clicked.connect(self._discard_line)
        buttons_row.addWidget(self.discard_button)
        self.next_button = QPushButton("Next Issue")
        self.next_button.clicked.connect(self._next_issue)
        buttons_row.addWidget(self.next_button)
        fix_layout.addLayout(buttons_row)

        layout.addWidget(self.fix_panel)
        self._initial_total = 0

    def initializePage(self) -> None:
        wizard = self.wizard()
        if wizard:
            wizard.setButtonText(QWizard.NextButton, "Calculate")
        session = self.context.session
        self._initial_total = len(session.unresolved) if session else 0
        self._refresh()

    def isComplete(self) -> bool:
        session = self.context.session
        return bool(session) and session.state in (SessionState.READY, SessionState.SAVED)

    def _refresh(self) -> None:
        session = self.context.session
        view = session.current_issue() if session else None
        remaining = len(session.unresolved) if session else 0
        self._initial_total = max(self._initial_total, remaining)

        self.progress_bar.setMaximum(max(self._initial_total, 1))
        self.progress_bar.setValue(self._initial_total - remaining)
        in_scope = len(session.in_scope_lines) if session else 0
        self.summary.setText(
            f"Week {session.week_id if session else ''}: {in_scope} line(s) ready, "
            f"{remaining} need attention."
        )
        self.ok_label.setVisible(view is None)
        self.fix_panel.setVisible(view is not None)

        if view is not None:
            issue = view.issue
            self.error_header.setText(
                f"Issue {view.position} of {view.total} (line {view.line.line_number}): "
                f"{issue.message}"
            )
            self._set_context_view(view.context, view.line.line_number)
            self.issues_view.setPlainText(
                "\n".join(f"{item.type.value}: {item.message}" for item in view.line.issues)
            )
            self.line_input.setPlainText(view.line.raw_text)
            self.suggestion_combo.clear()
            self.suggestion_combo.addItems(view.suggestions)
            is_name = issue.type == IssueType.UNKNOWN_NAME
            is_boss = issue.type == IssueType.UNKNOWN_BOSS
            self.name_alias_button.setEnabled(is_name and bool(issue.token))
            self.boss_alias_button.setEnabled(is_boss and bool(issue.token))
            self.add_boss_button.setEnabled(is_boss)
            self.next_button.setEnabled(view.total > 1)
        self.completeChanged.emit()

    def _set_context_view(self, context, line_number: int) -> None:
        entry = self.context.session.entry_for(line_number)
        current = set(entry.physical_lines) if entry else {line_number}
        parts = []
        for number, text in context:
            style = "color:#f0e6d2; font-weight:bold" if number in current else "color:#8d8273"
            parts.append(f"<div style='{style}'>{number}: {html.escape(text)}</div>")
        self.context_view.setHtml("".join(parts))

    def _current(self):
        session = self.context.session
        return session.current_issue() if session else None

    def _run(self, title: str, action: Callable[[], object]) -> None:
        try:
            _with_wait_cursor(action)
        except Exception as exc:
            logging.exception("%s failed", title)
            QMessageBox.critical(self, title, str(exc))
        self._refresh()

    def _check_line(self) -> None:
        view = self._current()
        if view is None:
            return
        text = self.line_input.toPlainText().replace("\n", " ").strip()
        self._run(
            "Check line", lambda: self.context.session.check_line(view.line.line_number, text)
        )

    def _discard_line(self) -> None:
        view = self._current()
        if view is None:
            return
        self._run(
            "Discard line", lambda: self.context.session.discard_line(view.line.line_number)
        )

    def _next_issue(self) -> None:
        self._run("Next issue", self.context.session.next_issue)

    def _add_name_alias(self) -> None:
        view = self._current()
        target = self.suggestion_combo.currentText().strip()
        if view is None or not view.issue.token or not target:
            return
        self._run(
            "Add name alias",
            lambda: self.context.session.add_name_alias(view.issue.token, target),
        )

    def _add_boss_alias(self) -> None:
        view = self._current()
        target = self.suggestion_combo.currentText().strip()
        if view is None or not view.issue.token or not target:
            return
        self._run(
            "Add boss alias",
            lambda: self.context.session.add_boss_alias(view.issue.token, target),
        )

    def _add_boss(self) -> None:
        view = self._current()
        if view is None:
            return
        dialog = AddBossDialog(view.issue.token or "", self)
        if not dialog.exec():
            return
        new_boss = dialog.get_boss()
        if new_boss is None:
            return
        self._run(
            "Add boss",
            lambda: self.context.session.add_boss(new_boss.boss, new_boss.points, new_boss.alias),
        )


class ResultsPage(QWizardPage):
    def __init__(self, context: WizardContext) -> None:
        super().__init__()
        self.context = context
        self.setTitle("Results")
        layout = QVBoxLayout(self)

        stored_row = QHBoxLayout()
        stored_row.addWidget(QLabel("Stored week"))
        self.week_selector = QComboBox()
        stored_row.addWidget(self.week_selector, 1)
        load_button = QPushButton("Load")
        load_button.clicked.connect(self._load_stored_week)
        stored_row.addWidget(load_button)
        layout.addLayout(stored_row)

        self.status_label = QLabel("")
        self.status_label.setObjectName("ProgressLabel")
        layout.addWidget(self.status_label)

        self.table = QTableWidget()
        self.table.setColumnCount(0)
        self.table.setRowCount(0)
        self.table.setEditTriggers(QAbstractItemView.NoEditTriggers)
        self.table.setSelectionMode(QAbstractItemView.NoSelection)
        self.table.verticalHeader().setVisible(False)
        self.table.horizontalHeader().setStretchLastSection(True)
        layout.addWidget(self.table)

        buttons_row = QHBoxLayout()
        self.save_button = QPushButton("Save Week")
        self.save_button.clicked.connect(self._save_week)
        buttons_row.addWidget(self.save_button)
        for label, kind in (
            ("Export CSV", "minimal_csv"),
            ("Export TXT", "minimal_txt"),
            ("Export full CSV", "full_csv"),
            ("Export corrected file", "corrected"),
        ):
            button = QPushButton(label)
            button.clicked.connect(lambda _checked=False, kind=kind: self._export(kind))
            buttons_row.addWidget(button)
        copy_button = QPushButton("Copy to clipboard")
        copy_button.clicked.connect(self._copy_clipboard)
        buttons_row.addWidget(copy_button)
        layout.addLayout(buttons_row)

    def initializePage(self) -> None:
        session = self.context.session
        if session is None:
            return
        try:
            _with_wait_cursor(session.calculate)
            self.status_label.setText(f"Week {session.week_id} calculated (not saved yet).")
        except Exception as exc:
            logging.exception("Calculation failed")
            QMessageBox.critical(self, "Calculation failed", str(exc))
        self._refresh_weeks()
        self._render()

    def _refresh_weeks(self) -> None:
        session = self.context.session
        self.week_selector.clear()
        try:
            self.week_selector.addItems(session.stored_week_ids())
        except Exception:
            logging.exception("Unable to list stored weeks")

    def _render(self) -> None:
        session = self.context.session
        rows = session.results
        bosses = session.boss_columns
        columns = ["Name", "TotalPoints", "ActivityLevel", "Streak", "Last3Weeks"] + bosses
        self.table.setSortingEnabled(False)
        self.table.setColumnCount(len(columns))
        self.table.setHorizontalHeaderLabels(columns)
        self.table.setRowCount(len(rows))
        for index, row in enumerate(rows):
            values = [
                row.name,
                row.total_points,
                row.activity_level.value,
                row.streak,
                row.last3_weeks_total,
            ] + [row.boss_counts.get(boss, 0) for boss in bosses]
            for column, value in enumerate(values):
                item = QTableWidgetItem()
                item.setData(Qt.DisplayRole, value)
                self.table.setItem(index, column, item)
        self.table.resizeColumnsToContents()
        self.table.setSortingEnabled(True)

    def _save_week(self) -> None:
        session = self.context.session
        if session is None:
            return
        try:
            try:
                _with_wait_cursor(session.save)
            except WeekExistsError as exc:
                answer = QMessageBox.question(
                    self, "Week exists", f"Week {exc.week_id} already exists. Overwrite?"
                )
                if answer != QMessageBox.Yes:
                    self.status_label.setText("Save cancelled.")
                    return
                _with_wait_cursor(lambda: session.save(overwrite=True))
        except Exception as exc:
            logging.exception("Save failed")
            QMessageBox.critical(self, "Save failed", str(exc))
            return
        self.status_label.setText(f"Week {session.week_id} saved.")
        self._refresh_weeks()
        self._render()

    def _load_stored_week(self) -> None:
        week_id = self.week_selector.currentText()
        if not week_id:
            return
        try:
            _with_wait_cursor(lambda: self.context.session.load_stored_week(week_id))
        except Exception as exc:
            logging.exception("Load week failed")
            QMessageBox.critical(self, "Load week failed", str(exc))
            return
        self.status_label.setText(f"Loaded stored week {week_id}.")
        self._render()

    def _export(self, kind: str) -> None:
        session = self.context.session
        if session is None:
            return
        rows = session.results
        if kind != "corrected" and not rows:
            QMessageBox.information(self, "No data", "No weekly data to export.")
            return
        builders = {
            "minimal_csv": lambda: minimal_csv(rows),
            "minimal_txt": lambda: minimal_text(rows),
            "full_csv": lambda: full_csv(rows, session.boss_columns),
            "corrected": session.corrected_text,
        }
        path, _ = QFileDialog.getSaveFileName(
            self, "Save export", default_file_name(kind, session.week_id)
        )
        if not path:
            return
        write_export(Path(path), builders[kind]())
        logging.info("Exported %s to %s", kind, path)

    def _copy_clipboard(self) -> None:
        session = self.context.session
        if session is None or not session.results:
            QMessageBox.information(self, "No data", "No weekly data to copy.")
            return
        QApplication.clipboard().setText(clipboard_text(session.results))


class DkpWeeklyWizard(QWizard):
    def __init__(self) -> None:
        super().__init__()
        self.context = WizardContext(config=load_config())

        self.setWindowTitle("DKP Weekly")
        self.setWizardStyle(QWizard.ModernStyle)
        banner = QPixmap(1, 1)
        banner.fill(QColor("#1d1a18"))
        self.setPixmap(QWizard.BannerPixmap, banner)
        self.setup_page = SetupPage(self.context)
        self.resolve_page = ResolvePage(self.context)
        self.results_page = ResultsPage(self.context)
        self.addPage(self.setup_page)
        self.addPage(self.resolve_page)
        self.addPage(self.results_page)

    def closeEvent(self, event) -> None:
        event.accept()

    def accept(self) -> None:
        self._reset_run_state()

    def reject(self) -> None:
        self._reset_run_state()

    def _reset_run_state(self) -> None:
        self.context.session = None
        self.results_page.table.setRowCount(0)
        self.restart()
        self.setCurrentId(0)
