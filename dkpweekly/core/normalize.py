import re
from typing import Iterable, List

_EDGE_CHARS = r"""\s.,!?;:'"()\[\]{}<>"""
_EDGE_RE = re.compile(rf"^[{_EDGE_CHARS}]+|[{_EDGE_CHARS}]+$")
_SPACE_RE = re.compile(r"\s+")


def normalize_key(value: str) -> str:
    """Fold a name token for lookups: chat text often carries trailing punctuation."""
    cleaned = _EDGE_RE.sub("", value.strip().lower())
    return _SPACE_RE.sub(" ", cleaned)


def normalize_boss_key(value: str) -> str:
    # Boss tokens keep their punctuation, e.g. "/hydra".
    return _SPACE_RE.sub(" ", value.strip().lower())


def split_words(value: str) -> List[str]:
    return [part for part in _SPACE_RE.split(value) if part]


def dedupe_preserve_order(values: Iterable[str]) -> List[str]:
    out: List[str] = []
    seen = set()
    for value in values:
        key = normalize_key(value)
        if key in seen:
            continue
        seen.add(key)
        out.append(value)
    return out
