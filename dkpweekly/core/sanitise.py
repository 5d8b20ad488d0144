from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from .lookup import ParserLookup
from .parser import ParsedLine, TimezoneLike, is_timestamp_line_start, parse_line
from .weeks import WeekBounds


@dataclass(frozen=True)
class LogicalEntry:
    line_number: int
    text: str
    physical_lines: Tuple[int, ...] = ()


def merge_logical_entries(raw_lines: Sequence[str]) -> List[LogicalEntry]:
    """Join wrapped chat lines onto the timestamped line they continue.

    Blank lines are dropped. Each entry keeps the 1-based number of its first physical line.
    """
    entries: List[LogicalEntry] = []
    current_number: Optional[int] = None
    current_parts: List[str] = []
    current_lines: List[int] = []

    def flush() -> None:
        if current_number is not None:
            entries.append(
                LogicalEntry(current_number, " ".join(current_parts), tuple(current_lines))
            )

    for index, raw in enumerate(raw_lines, start=1):
        text = raw.strip()
        if not text:
            continue
        if current_number is None or is_timestamp_line_start(text):
            flush()
            current_number = index
            current_parts = [text]
            current_lines = [index]
        else:
            current_parts.append(text)
            current_lines.append(index)
    flush()
    return entries


def _keep(line: ParsedLine, bounds: Optional[WeekBounds]) -> bool:
    if line.timestamp_utc is None:
        return line.has_issues
    if bounds is None:
        return True
    return bounds.contains(line.timestamp_utc)


def parse_entries(
    entries: Iterable[LogicalEntry],
    lookup: ParserLookup,
    tz: TimezoneLike,
    bounds: Optional[WeekBounds] = None,
) -> List[ParsedLine]:
    parsed = []
    for entry in entries:
        line = parse_line(entry.text, entry.line_number, tz, lookup)
        if _keep(line, bounds):
            parsed.append(line)
    return parsed


def preprocess_lines(
    raw_lines: Sequence[str],
    lookup: ParserLookup,
    tz: TimezoneLike,
    bounds: Optional[WeekBounds] = None,
) -> List[ParsedLine]:
    return parse_entries(merge_logical_entries(raw_lines), lookup, tz, bounds)
