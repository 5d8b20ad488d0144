import json
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Dict, Mapping, Optional

from platformdirs import user_config_dir

from .points import ActivityThresholds

APP_NAME = "dkp_weekly"

DEFAULT_CONFIG: Dict[str, str] = {
    "week_start": "SUN",
    "activity_low_max": "4",
    "activity_medium_max": "9",
    "timezone_default": "America/New_York",
}


@dataclass
class AppConfig:
    data_spreadsheet_id: str = ""
    users_spreadsheet_id: str = ""
    users_range: str = "A:A"
    last_timers_path: str = ""
    last_credentials_path: str = ""
    week_start_date: str = ""
    timezone: str = ""
    account_email: str = ""
    setup_cache_seconds: int = 180
    derive_name_aliases: bool = True


def config_path() -> Path:
    base = Path(user_config_dir(APP_NAME))
    return base / "settings.json"


def token_path() -> Path:
    base = Path(user_config_dir(APP_NAME))
    return base / "token.json"


def load_config(path: Optional[Path] = None) -> AppConfig:
    path = path or config_path()
    if not path.exists():
        return AppConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError, UnicodeDecodeError):
        logging.warning("Ignoring unreadable settings file %s", path)
        return AppConfig()
    if not isinstance(data, dict):
        return AppConfig()

    defaults = AppConfig()
    return AppConfig(
        data_spreadsheet_id=str(data.get("data_spreadsheet_id", "")),
        users_spreadsheet_id=str(data.get("users_spreadsheet_id", "")),
        users_range=str(data.get("users_range", defaults.users_range)) or defaults.users_range,
        last_timers_path=str(data.get("last_timers_path", "")),
        last_credentials_path=str(data.get("last_credentials_path", "")),
        week_start_date=str(data.get("week_start_date", "")),
        timezone=str(data.get("timezone", "")),
        account_email=str(data.get("account_email", "")),
        setup_cache_seconds=_as_int(
            data.get("setup_cache_seconds"), defaults.setup_cache_seconds
        ),
        derive_name_aliases=bool(data.get("derive_name_aliases", True)),
    )


def save_config(cfg: AppConfig, path: Optional[Path] = None) -> None:
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    data = {item.name: getattr(cfg, item.name) for item in fields(AppConfig)}
    data["setup_cache_seconds"] = int(cfg.setup_cache_seconds)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def _as_int(value, fallback: int) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return fallback


class SheetConfig:
    """Key/value settings stored in the Config tab, with defaults for missing keys."""

    def __init__(self, values: Optional[Mapping[str, str]] = None) -> None:
        self.values: Dict[str, str] = dict(DEFAULT_CONFIG)
        for key, value in (values or {}).items():
            key = key.strip()
            if key:
                self.values[key] = str(value).strip()

    def get(self, key: str, default: str = "") -> str:
        return self.values.get(key, DEFAULT_CONFIG.get(key, default))

    @property
    def thresholds(self) -> ActivityThresholds:
        return ActivityThresholds(
            low_max=_as_int(self.get("activity_low_max"), int(DEFAULT_CONFIG["activity_low_max"])),
            medium_max=_as_int(
                self.get("activity_medium_max"), int(DEFAULT_CONFIG["activity_medium_max"])
            ),
        )

    @property
    def timezone_default(self) -> str:
        return self.get("timezone_default") or DEFAULT_CONFIG["timezone_default"]

    @property
    def week_start(self) -> str:
        return (self.get("week_start") or DEFAULT_CONFIG["week_start"]).upper()

