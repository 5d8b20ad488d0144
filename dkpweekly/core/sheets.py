import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Sequence

from google.auth.transport.requests import Request
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

from .config import DEFAULT_CONFIG
from .lookup import AliasRow, BossConfig
from .weeks import BreakdownRow, HistoricalTotal, StoredWeek, WeekStorage

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
READ_RETRIES = 4

SHEET_SCHEMAS: Dict[str, List[str]] = {
    "Allowlist": ["Email"],
    "Config": ["Key", "Value"],
    "Bosses": ["Boss", "Points"],
    "BossAliases": ["Alias", "Boss"],
    "NameAliases": ["Alias", "Name"],
    "Weeks": ["WeekId", "StartUTC", "EndUTC", "Timezone", "SourceFileName", "CreatedUTC", "Notes"],
    "WeekUserTotals": ["WeekId", "Name", "TotalPoints", "ActivityLevel", "Streak"],
    "WeekBossBreakdown": ["WeekId", "Name", "Boss", "Points", "Count"],
}

Rows = List[List[str]]


def a1(sheet_name: str, cells: str = "A:Z") -> str:
    return "'{}'!{}".format(sheet_name.replace("'", "''"), cells)


SETUP_RANGES = {
    "allowlist": a1("Allowlist", "A2:A"),
    "bosses": a1("Bosses", "A2:B"),
    "boss_aliases": a1("BossAliases", "A2:B"),
    "name_aliases": a1("NameAliases", "A2:B"),
    "config": a1("Config", "A2:B"),
    "weeks": a1("Weeks", "A2:G"),
}

STORAGE_RANGES = {
    "weeks": a1("Weeks", "A2:G"),
    "totals": a1("WeekUserTotals", "A2:E"),
    "breakdown": a1("WeekBossBreakdown", "A2:E"),
}


def load_credentials(credentials_path: Path, token_path: Path):
    raw = json.loads(credentials_path.read_text(encoding="utf-8"))

    if raw.get("type") == "service_account":
        return service_account.Credentials.from_service_account_info(raw, scopes=SCOPES)

    creds = None
    if token_path.exists():
        creds = Credentials.from_authorized_user_file(str(token_path), SCOPES)

    if not creds or not creds.valid:
        if creds and creds.expired and creds.refresh_token:
            logging.info("Refreshing Google token")
            creds.refresh(Request())
        else:
            flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), SCOPES)
            creds = flow.run_local_server(port=0)

        token_path.parent.mkdir(parents=True, exist_ok=True)
        token_path.write_text(creds.to_json(), encoding="utf-8")

    return creds


def build_service(credentials_path: Path, token_path: Path):
    creds = load_credentials(credentials_path, token_path)
    return build("sheets", "v4", credentials=creds, cache_discovery=False)


def _cell(row: Sequence, index: int) -> str:
    if index >= len(row) or row[index] is None:
        return ""
    return str(row[index]).strip()


def _to_int(value: str, fallback: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return fallback


def parse_users_rows(rows: Rows) -> List[str]:
    return [str(cell).strip() for row in rows for cell in row if str(cell).strip()]


def parse_allowlist_rows(rows: Rows) -> List[str]:
    return [_cell(row, 0).lower() for row in rows if _cell(row, 0)]


def parse_boss_rows(rows: Rows) -> List[BossConfig]:
    bosses = []
    for row in rows:
        boss = _cell(row, 0)
        if not boss:
            continue
        raw_points = _cell(row, 1) or "0"
        try:
            points = int(float(raw_points))
        except (ValueError, OverflowError):
            logging.warning("Skipping boss %r with invalid points %r", boss, raw_points)
            continue
        bosses.append(BossConfig(boss, points))
    return bosses


def parse_alias_rows(rows: Rows) -> List[AliasRow]:
    return [
        AliasRow(_cell(row, 0), _cell(row, 1))
        for row in rows
        if _cell(row, 0) and _cell(row, 1)
    ]


def parse_config_rows(rows: Rows) -> Dict[str, str]:
    config = dict(DEFAULT_CONFIG)
    for row in rows:
        key = _cell(row, 0)
        if key:
            config[key] = _cell(row, 1)
    return config


def parse_weeks_rows(rows: Rows) -> List[StoredWeek]:
    return [
        StoredWeek(*(_cell(row, index) for index in range(7)))
        for row in rows
        if _cell(row, 0)
    ]


def parse_totals_rows(rows: Rows) -> List[HistoricalTotal]:
    totals = []
    for row in rows:
        if not all(_cell(row, index) for index in range(4)):
            continue
        totals.append(
            HistoricalTotal(
                week_id=_cell(row, 0),
                name=_cell(row, 1),
                total_points=_to_int(_cell(row, 2)),
                activity_level=_cell(row, 3),
                streak=_to_int(_cell(row, 4), 1) or 1,
            )
        )
    return totals


def parse_breakdown_rows(rows: Rows) -> List[BreakdownRow]:
    return [
        BreakdownRow(
            week_id=_cell(row, 0),
            name=_cell(row, 1),
            boss=_cell(row, 2),
            points=_to_int(_cell(row, 3)),
            count=_to_int(_cell(row, 4)),
        )
        for row in rows
        if _cell(row, 0) and _cell(row, 1) and _cell(row, 2)
    ]


def weeks_to_rows(weeks: Sequence[StoredWeek]) -> Rows:
    return [
        [w.week_id, w.start_utc, w.end_utc, w.timezone, w.source_file_name, w.created_utc, w.notes]
        for w in weeks
    ]


def totals_to_rows(totals: Sequence[HistoricalTotal]) -> Rows:
    return [
        [t.week_id, t.name, str(t.total_points), t.activity_level, str(t.streak)] for t in totals
    ]


def breakdown_to_rows(breakdown: Sequence[BreakdownRow]) -> Rows:
    return [[b.week_id, b.name, b.boss, str(b.points), str(b.count)] for b in breakdown]


@dataclass
class SetupBundle:
    users: List[str] = field(default_factory=list)
    allowlist: List[str] = field(default_factory=list)
    bosses: List[BossConfig] = field(default_factory=list)
    boss_aliases: List[AliasRow] = field(default_factory=list)
    name_aliases: List[AliasRow] = field(default_factory=list)
    config: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_CONFIG))
    weeks: List[StoredWeek] = field(default_factory=list)


class SheetsStore:
    """Google Sheets tables backing the weekly leaderboard."""

    def __init__(
        self,
        service,
        data_spreadsheet_id: str,
        users_spreadsheet_id: str = "",
        users_range: str = "A:A",
    ) -> None:
        self.service = service
        self.data_spreadsheet_id = data_spreadsheet_id
        self.users_spreadsheet_id = users_spreadsheet_id or data_spreadsheet_id
        self.users_range = users_range

    def _values(self):
        return self.service.spreadsheets().values()

    def read_range(self, spreadsheet_id: str, cells: str) -> Rows:
        result = (
            self._values()
            .get(spreadsheetId=spreadsheet_id, range=cells)
            .execute(num_retries=READ_RETRIES)
        )
        return result.get("values", [])

    def batch_read(self, spreadsheet_id: str, ranges: Sequence[str]) -> Dict[str, Rows]:
        if not ranges:
            return {}
        result = (
            self._values()
            .batchGet(spreadsheetId=spreadsheet_id, ranges=list(ranges))
            .execute(num_retries=READ_RETRIES)
        )
        returned = result.get("valueRanges", [])
        # Returned ranges may be expanded (A2:A -> A2:A50); match by request order.
        by_range: Dict[str, Rows] = {}
        for index, cells in enumerate(ranges):
            by_range[cells] = returned[index].get("values", []) if index < len(returned) else []
        return by_range

    def ensure_schema(self) -> None:
        metadata = (
            self.service.spreadsheets()
            .get(spreadsheetId=self.data_spreadsheet_id)
            .execute(num_retries=READ_RETRIES)
        )
        existing = {
            sheet.get("properties", {}).get("title", "") for sheet in metadata.get("sheets", [])
        }
        missing = [name for name in SHEET_SCHEMAS if name not in existing]
        if missing:
            logging.info("Adding sheet tabs: %s", ", ".join(missing))
            self.service.spreadsheets().batchUpdate(
                spreadsheetId=self.data_spreadsheet_id,
                body={"requests": [{"addSheet": {"properties": {"title": name}}} for name in missing]},
            ).execute()

        header_ranges = {name: a1(name, "1:1") for name in SHEET_SCHEMAS}
        reads = self.batch_read(
            self.data_spreadsheet_id, [*header_ranges.values(), SETUP_RANGES["config"]]
        )

        header_updates = []
        for name, headers in SHEET_SCHEMAS.items():
            first_row = (reads.get(header_ranges[name]) or [[]])[0]
            if not any(str(cell).strip() for cell in first_row):
                header_updates.append({"range": a1(name, "A1"), "values": [headers]})
        if header_updates:
            self._values().batchUpdate(
                spreadsheetId=self.data_spreadsheet_id,
                body={"valueInputOption": "USER_ENTERED", "data": header_updates},
            ).execute()

        keys = {_cell(row, 0) for row in reads.get(SETUP_RANGES["config"], [])}
        missing_config = [[key, value] for key, value in DEFAULT_CONFIG.items() if key not in keys]
        if missing_config:
            self.append_rows("Config", missing_config)

    def load_users(self) -> List[str]:
        return parse_users_rows(self.read_range(self.users_spreadsheet_id, self.users_range))

    def load_setup_bundle(self) -> SetupBundle:
        users = self.load_users()
        reads = self.batch_read(self.data_spreadsheet_id, list(SETUP_RANGES.values()))
        bundle = SetupBundle(
            users=users,
            allowlist=parse_allowlist_rows(reads[SETUP_RANGES["allowlist"]]),
            bosses=parse_boss_rows(reads[SETUP_RANGES["bosses"]]),
            boss_aliases=parse_alias_rows(reads[SETUP_RANGES["boss_aliases"]]),
            name_aliases=parse_alias_rows(reads[SETUP_RANGES["name_aliases"]]),
            config=parse_config_rows(reads[SETUP_RANGES["config"]]),
            weeks=parse_weeks_rows(reads[SETUP_RANGES["weeks"]]),
        )
        logging.info(
            "Loaded setup: %d users, %d bosses, %d name aliases, %d boss aliases",
            len(bundle.users),
            len(bundle.bosses),
            len(bundle.name_aliases),
            len(bundle.boss_aliases),
        )
        return bundle

    def load_week_storage(self) -> WeekStorage:
        reads = self.batch_read(self.data_spreadsheet_id, list(STORAGE_RANGES.values()))
        return WeekStorage(
            weeks=parse_weeks_rows(reads[STORAGE_RANGES["weeks"]]),
            totals=parse_totals_rows(reads[STORAGE_RANGES["totals"]]),
            breakdown=parse_breakdown_rows(reads[STORAGE_RANGES["breakdown"]]),
        )

    def replace_tab_rows(self, tab_name: str, rows: Rows) -> None:
        self._values().clear(
            spreadsheetId=self.data_spreadsheet_id, range=a1(tab_name, "A:Z"), body={}
        ).execute()
        self._values().update(
            spreadsheetId=self.data_spreadsheet_id,
            range=a1(tab_name, "A1"),
            valueInputOption="USER_ENTERED",
            body={"values": [SHEET_SCHEMAS[tab_name], *rows]},
        ).execute()

    def save_week_storage(self, storage: WeekStorage) -> None:
        logging.info(
            "Writing %d weeks, %d totals, %d breakdown rows",
            len(storage.weeks),
            len(storage.totals),
            len(storage.breakdown),
        )
        self.replace_tab_rows("Weeks", weeks_to_rows(storage.weeks))
        self.replace_tab_rows("WeekUserTotals", totals_to_rows(storage.totals))
        self.replace_tab_rows("WeekBossBreakdown", breakdown_to_rows(storage.breakdown))

    def append_rows(self, tab_name: str, rows: Rows) -> None:
        if not rows:
            return
        self._values().append(
            spreadsheetId=self.data_spreadsheet_id,
            range=a1(tab_name, "A2"),
            valueInputOption="USER_ENTERED",
            body={"values": rows},
        ).execute()

    def append_name_alias(self, alias: str, name: str) -> None:
        logging.info("Adding name alias %s -> %s", alias, name)
        self.append_rows("NameAliases", [[alias, name]])

    def append_boss_alias(self, alias: str, boss: str) -> None:
        logging.info("Adding boss alias %s -> %s", alias, boss)
        self.append_rows("BossAliases", [[alias, boss]])

    def append_boss(self, boss: str, points: int) -> None:
        logging.info("Adding boss %s (%d points)", boss, points)
        self.append_rows("Bosses", [[boss, str(int(points))]])
