"""Line parser for timers exports.

Two timestamp dialects are understood, tried in order:

* legacy:    ``March 3, 2026 8:15 PM: Author Name: hydra(double) alice bob``
* alternate: ``3 Mar 2026 at 20:15 Author Name hydra alice not bob``

Every problem found on a line becomes a :class:`ParseIssue` on the returned
:class:`ParsedLine`; nothing in here raises on bad input.
"""
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from enum import Enum
from fractions import Fraction
from typing import Callable, List, NamedTuple, Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .lookup import ParserLookup
from .normalize import dedupe_preserve_order, normalize_boss_key, normalize_key, split_words

TimezoneLike = Union[str, tzinfo]

LEGACY_RE = re.compile(
    r"^\s*([A-Za-z]+ \d{1,2}, \d{4} \d{1,2}:\d{2} (?:AM|PM|am|pm)):\s*(.+)$"
)
# The time may be followed by a colon in some exports ("at 20:00: hydra alice").
ALTERNATE_RE = re.compile(
    r"^\s*(\d{1,2}\s+[A-Za-z]+\s+\d{4}\s+at\s+\d{1,2}:\d{2}(?:\s*(?:AM|PM))?)(?::\s*|\s+)(.+?)\s*$",
    re.IGNORECASE,
)

LEGACY_TIMESTAMP_FORMATS = ("%B %d, %Y %I:%M %p", "%b %d, %Y %I:%M %p")
ALTERNATE_TIMESTAMP_FORMATS = (
    "%d %b %Y at %H:%M",
    "%d %b %Y at %I:%M %p",
    "%d %B %Y at %H:%M",
    "%d %B %Y at %I:%M %p",
)

NOT_TOKEN = "not"

MODIFIER_SYNONYMS = {
    "brucy": "bonus",
    "brucybonus": "bonus",
    "fail": "half",
    "comp": "half",
    "double": "double",
    "doublepoints": "double",
}
# kind -> (bonus, multiplier)
MODIFIER_EFFECTS = {
    "bonus": (5, Fraction(1)),
    "half": (0, Fraction(1, 2)),
    "double": (0, Fraction(2)),
}

_MODIFIER_GROUP_RE = re.compile(r"\(([^)]*)\)")
_WHOLE_GROUP_RE = re.compile(r"^\([^()]*\)$")
_MODIFIER_SPLIT_RE = re.compile(r"[^a-z0-9]+")
_DOUBLE_POINTS_RE = re.compile(r"double[\s_-]*points?")
_NUMERIC_RE = re.compile(r"^\d+(?:\.\d+)?$")
_GLUED_MERIDIEM_RE = re.compile(r"(?<=\d)(?=[AaPp][Mm]$)")


class IssueType(str, Enum):
    UNSUPPORTED_FORMAT = "UnsupportedFormat"
    UNKNOWN_BOSS = "UnknownBoss"
    UNKNOWN_NAME = "UnknownName"
    MULTIPLE_NOT_TOKENS = "MultipleNotTokens"
    INVALID_TIMESTAMP = "InvalidTimestamp"
    UNKNOWN_MODIFIER = "UnknownModifier"


@dataclass(frozen=True)
class ParseIssue:
    type: IssueType
    message: str
    token: Optional[str] = None


@dataclass(frozen=True)
class ParsedLine:
    line_number: int
    raw_text: str
    dialect: Optional[str] = None
    timestamp_raw: Optional[str] = None
    timestamp_utc: Optional[datetime] = None
    author: Optional[str] = None
    boss_raw: Optional[str] = None
    boss_canonical: Optional[str] = None
    points_bonus: int = 0
    points_multiplier: Fraction = Fraction(1)
    add_names: Tuple[str, ...] = ()
    subtract_names: Tuple[str, ...] = ()
    issues: Tuple[ParseIssue, ...] = ()

    @property
    def has_issues(self) -> bool:
        return bool(self.issues)

    def issues_of(self, issue_type: IssueType) -> List[ParseIssue]:
        return [issue for issue in self.issues if issue.type == issue_type]


@dataclass
class _Draft:
    line_number: int
    raw_text: str
    dialect: Optional[str] = None
    timestamp_raw: Optional[str] = None
    timestamp_utc: Optional[datetime] = None
    author: Optional[str] = None
    boss_raw: Optional[str] = None
    boss_canonical: Optional[str] = None
    points_bonus: int = 0
    points_multiplier: Fraction = Fraction(1)
    add_names: List[str] = field(default_factory=list)
    subtract_names: List[str] = field(default_factory=list)
    issues: List[ParseIssue] = field(default_factory=list)

    def issue(self, issue_type: IssueType, message: str, token: Optional[str] = None) -> None:
        self.issues.append(ParseIssue(issue_type, message, token))

    def freeze(self) -> ParsedLine:
        return ParsedLine(
            line_number=self.line_number,
            raw_text=self.raw_text,
            dialect=self.dialect,
            timestamp_raw=self.timestamp_raw,
            timestamp_utc=self.timestamp_utc,
            author=self.author,
            boss_raw=self.boss_raw,
            boss_canonical=self.boss_canonical,
            points_bonus=self.points_bonus,
            points_multiplier=self.points_multiplier,
            add_names=tuple(self.add_names),
            subtract_names=tuple(self.subtract_names),
            issues=tuple(self.issues),
        )


class Dialect(NamedTuple):
    name: str
    pattern: re.Pattern
    timestamp_formats: Tuple[str, ...]
    parse_body: Callable[[_Draft, str, ParserLookup], _Draft]


def _resolve_zone(tz: TimezoneLike) -> Optional[tzinfo]:
    if isinstance(tz, tzinfo):
        return tz
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def parse_timestamp(
    timestamp_raw: str, tz: TimezoneLike, formats: Tuple[str, ...]
) -> Optional[datetime]:
    """Parse a dialect timestamp in ``tz`` and return it as an aware UTC datetime."""
    zone = _resolve_zone(tz)
    if zone is None:
        return None
    cleaned = _GLUED_MERIDIEM_RE.sub(" ", " ".join(timestamp_raw.split()))
    for fmt in formats:
        try:
            naive = datetime.strptime(cleaned, fmt)
        except ValueError:
            continue
        return naive.replace(tzinfo=zone).astimezone(timezone.utc)
    return None


def strip_boss_token(token: str) -> str:
    return _MODIFIER_GROUP_RE.sub("", token).strip()


def looks_boss_like(token: str) -> bool:
    key = normalize_boss_key(token)
    if not key:
        return False
    if key.startswith("/"):
        return True
    return bool(_NUMERIC_RE.match(key))


def is_boss_candidate(token: str, lookup: ParserLookup) -> bool:
    clean = strip_boss_token(token)
    key = normalize_boss_key(clean)
    if not key:
        return False
    if key in lookup.boss_alias_by_key or key in lookup.bosses_by_key:
        return True
    return looks_boss_like(clean)


def is_name_tail_token(token: str, lookup: ParserLookup) -> bool:
    if token.lower() == NOT_TOKEN:
        return True
    if lookup.resolve_user(token) is not None:
        return True
    return not looks_boss_like(strip_boss_token(token))


def choose_boss_index(tokens: List[str], lookup: ParserLookup) -> int:
    """Pick the boss position in an alternate-dialect body, or -1 when there is none."""
    candidates = [index for index, token in enumerate(tokens) if is_boss_candidate(token, lookup)]
    if not candidates:
        return -1

    tail_start = len(tokens)
    for index in range(len(tokens) - 1, -1, -1):
        if not is_name_tail_token(tokens[index], lookup):
            break
        tail_start = index

    before_tail = [index for index in candidates if index < tail_start]
    if before_tail:
        return before_tail[-1]
    return candidates[-1]


def _apply_modifiers(draft: _Draft, raw_boss_token: str) -> str:
    kinds = []
    for content in _MODIFIER_GROUP_RE.findall(raw_boss_token):
        content = _DOUBLE_POINTS_RE.sub("doublepoints", content.strip().lower())
        for token in _MODIFIER_SPLIT_RE.split(content):
            if not token:
                continue
            kind = MODIFIER_SYNONYMS.get(token)
            if kind is None:
                draft.issue(
                    IssueType.UNKNOWN_MODIFIER, f"Unknown boss modifier: {token}", token
                )
                continue
            if kind not in kinds:
                kinds.append(kind)

    for kind in kinds:
        bonus, multiplier = MODIFIER_EFFECTS[kind]
        draft.points_bonus += bonus
        draft.points_multiplier *= multiplier

    return strip_boss_token(raw_boss_token)


def _resolve_boss(draft: _Draft, boss_token: str, lookup: ParserLookup) -> _Draft:
    draft.boss_raw = boss_token
    if not normalize_boss_key(boss_token):
        draft.issue(IssueType.UNKNOWN_BOSS, "Empty boss token", boss_token)
        return draft
    boss = lookup.resolve_boss(boss_token)
    if boss is None:
        draft.issue(IssueType.UNKNOWN_BOSS, f"Unknown boss token: {boss_token}", boss_token)
        return draft
    draft.boss_canonical = boss.boss
    return draft


def _resolve_names(draft: _Draft, tokens: List[str], lookup: ParserLookup) -> List[str]:
    names: List[str] = []
    for token in tokens:
        if not normalize_key(token):
            draft.issue(IssueType.UNKNOWN_NAME, "Empty name token", token)
            continue
        canonical = lookup.resolve_user(token)
        if canonical is None:
            draft.issue(IssueType.UNKNOWN_NAME, f"Unknown name: {token}", token)
            continue
        names.append(canonical)
    return dedupe_preserve_order(names)


def _apply_names(draft: _Draft, name_tokens: List[str], lookup: ParserLookup) -> _Draft:
    not_indexes = [index for index, token in enumerate(name_tokens) if token.lower() == NOT_TOKEN]
    if len(not_indexes) > 1:
        draft.issue(
            IssueType.MULTIPLE_NOT_TOKENS, "More than one NOT token found in a single line."
        )

    if not_indexes:
        split_at = not_indexes[0]
        add_tokens = name_tokens[:split_at]
        subtract_tokens = [
            token for token in name_tokens[split_at + 1 :] if token.lower() != NOT_TOKEN
        ]
    else:
        add_tokens = list(name_tokens)
        subtract_tokens = []

    add_names = _resolve_names(draft, add_tokens, lookup)
    subtract_names = _resolve_names(draft, subtract_tokens, lookup)

    # "alice not alice" cancels out on both sides.
    overlap = {normalize_key(name) for name in add_names} & {
        normalize_key(name) for name in subtract_names
    }
    draft.add_names = [name for name in add_names if normalize_key(name) not in overlap]
    draft.subtract_names = [name for name in subtract_names if normalize_key(name) not in overlap]
    return draft


def _apply_boss_and_names(
    draft: _Draft, boss_token: str, name_tokens: List[str], lookup: ParserLookup
) -> _Draft:
    name_tokens = list(name_tokens)
    while name_tokens and _WHOLE_GROUP_RE.match(name_tokens[0]):
        boss_token += name_tokens.pop(0)

    stripped = _apply_modifiers(draft, boss_token)
    draft = _resolve_boss(draft, stripped, lookup)
    return _apply_names(draft, name_tokens, lookup)


def _parse_legacy_body(draft: _Draft, remainder: str, lookup: ParserLookup) -> _Draft:
    author, sep, payload = remainder.partition(":")
    if not sep:
        draft.issue(
            IssueType.UNSUPPORTED_FORMAT, "Missing ':' separator between author and payload."
        )
        return draft

    draft.author = author.strip()
    words = split_words(payload)
    if not words:
        draft.issue(IssueType.UNSUPPORTED_FORMAT, "Payload is empty.")
        return draft
    return _apply_boss_and_names(draft, words[0], words[1:], lookup)


def _parse_alternate_body(draft: _Draft, remainder: str, lookup: ParserLookup) -> _Draft:
    words = split_words(remainder)
    if not words:
        draft.issue(IssueType.UNSUPPORTED_FORMAT, "Payload is empty.")
        return draft

    boss_index = choose_boss_index(words, lookup)
    if boss_index == -1:
        draft.issue(
            IssueType.UNSUPPORTED_FORMAT, "Unable to determine boss token in alternate format."
        )
        return draft

    draft.author = " ".join(words[:boss_index])
    return _apply_boss_and_names(draft, words[boss_index], words[boss_index + 1 :], lookup)


DIALECTS: Tuple[Dialect, ...] = (
    Dialect("legacy", LEGACY_RE, LEGACY_TIMESTAMP_FORMATS, _parse_legacy_body),
    Dialect("alternate", ALTERNATE_RE, ALTERNATE_TIMESTAMP_FORMATS, _parse_alternate_body),
)


def match_dialect(raw_text: str):
    for dialect in DIALECTS:
        match = dialect.pattern.match(raw_text)
        if match:
            return dialect, match
    return None, None


def is_timestamp_line_start(raw_text: str) -> bool:
    dialect, _ = match_dialect(raw_text)
    return dialect is not None


def _timezone_label(tz: TimezoneLike) -> str:
    if isinstance(tz, str):
        return tz
    return getattr(tz, "key", None) or str(tz)


def parse_line(
    raw_text: str, line_number: int, tz: TimezoneLike, lookup: ParserLookup
) -> ParsedLine:
    draft = _Draft(line_number=line_number, raw_text=raw_text)

    dialect, match = match_dialect(raw_text)
    if dialect is None:
        draft.issue(
            IssueType.UNSUPPORTED_FORMAT,
            "Line does not match a supported timers export format.",
        )
        return draft.freeze()

    draft.dialect = dialect.name
    draft.timestamp_raw = match.group(1).strip()
    draft.timestamp_utc = parse_timestamp(draft.timestamp_raw, tz, dialect.timestamp_formats)
    if draft.timestamp_utc is None:
        draft.issue(
            IssueType.INVALID_TIMESTAMP,
            f"Unable to parse timestamp '{draft.timestamp_raw}' in timezone {_timezone_label(tz)}.",
            draft.timestamp_raw,
        )

    draft = dialect.parse_body(draft, match.group(2).strip(), lookup)
    return draft.freeze()
