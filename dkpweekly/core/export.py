from pathlib import Path
from typing import Iterable, List, Sequence

from .points import WeekSummaryRow


def escape_csv_cell(value) -> str:
    text = str(value)
    if any(ch in text for ch in (",", '"', "\n", "\r")):
        return '"' + text.replace('"', '""') + '"'
    return text


def _csv_line(cells: Iterable) -> str:
    return ",".join(escape_csv_cell(cell) for cell in cells)


def minimal_csv(rows: Sequence[WeekSummaryRow]) -> str:
    lines = [_csv_line(["Name", "TotalPoints"])]
    lines += [_csv_line([row.name, row.total_points]) for row in rows]
    return "\n".join(lines) + "\n"


def minimal_text(rows: Sequence[WeekSummaryRow]) -> str:
    return "".join(f"{row.name},{row.total_points}\n" for row in rows)


def boss_columns(rows: Iterable[WeekSummaryRow]) -> List[str]:
    bosses = set()
    for row in rows:
        bosses.update(row.boss_counts)
    return sorted(bosses)


def full_csv(rows: Sequence[WeekSummaryRow], bosses: Sequence[str] = ()) -> str:
    bosses = list(bosses) or boss_columns(rows)
    lines = [_csv_line(["Name", "TotalPoints", "ActivityLevel", "Streak", *bosses])]
    for row in rows:
        lines.append(
            _csv_line(
                [
                    row.name,
                    row.total_points,
                    row.activity_level.value,
                    row.streak,
                    *(row.boss_counts.get(boss, 0) for boss in bosses),
                ]
            )
        )
    return "\n".join(lines) + "\n"


def corrected_text(raw_lines: Sequence[str], discarded: Iterable[int] = ()) -> str:
    """The timers file as edited in the resolver, without discarded or blanked lines."""
    skip = set(discarded)
    kept = [
        line
        for number, line in enumerate(raw_lines, start=1)
        if number not in skip and line.strip()
    ]
    return "\n".join(kept) + ("\n" if kept else "")


def clipboard_text(rows: Sequence[WeekSummaryRow]) -> str:
    return "\n".join(f"{row.name}, {row.total_points}" for row in rows)


def default_file_name(kind: str, week_id: str) -> str:
    names = {
        "minimal_csv": f"weekly_points_{week_id}.csv",
        "minimal_txt": f"weekly_points_{week_id}.txt",
        "full_csv": f"weekly_full_{week_id}.csv",
        "corrected": f"corrected_{week_id}.txt",
    }
    return names[kind]


def write_export(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as f:
        f.write(content)
