from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .normalize import normalize_boss_key, normalize_key


@dataclass(frozen=True)
class BossConfig:
    boss: str
    points: int


@dataclass(frozen=True)
class AliasRow:
    alias: str
    canonical: str


@dataclass
class ParserLookup:
    users_by_key: Dict[str, str] = field(default_factory=dict)
    bosses_by_key: Dict[str, BossConfig] = field(default_factory=dict)
    name_alias_by_key: Dict[str, str] = field(default_factory=dict)
    boss_alias_by_key: Dict[str, str] = field(default_factory=dict)

    @property
    def users(self) -> List[str]:
        return list(self.users_by_key.values())

    @property
    def bosses(self) -> List[str]:
        return [item.boss for item in self.bosses_by_key.values()]

    def resolve_user(self, token: str) -> Optional[str]:
        key = normalize_key(token)
        if not key:
            return None
        target = self.name_alias_by_key.get(key) or token
        return self.users_by_key.get(normalize_key(target))

    def resolve_boss(self, token: str) -> Optional[BossConfig]:
        key = normalize_boss_key(token)
        if not key:
            return None
        target = self.boss_alias_by_key.get(key) or token
        return self.bosses_by_key.get(normalize_boss_key(target))


def derived_name_aliases(users: Iterable[str]) -> Dict[str, str]:
    """Shorthand keys players use for roster names.

    "Bob Smith" is reachable as "bob" and "bobsmith", "Tank2" as "tank". A key that two
    different roster names would claim is left out.
    """
    claims: Dict[str, str] = {}
    ambiguous = set()
    for name in users:
        parts = name.split()
        candidates = []
        if len(parts) > 1:
            candidates.append(parts[0])
            candidates.append("".join(parts))
        joined = "".join(parts)
        stripped = joined.rstrip("0123456789")
        if stripped and stripped != joined:
            candidates.append(stripped)
        for candidate in candidates:
            key = normalize_key(candidate)
            if not key:
                continue
            if key in claims and claims[key] != name:
                ambiguous.add(key)
                continue
            claims[key] = name
    return {key: name for key, name in claims.items() if key not in ambiguous}


def build_lookup(
    users: Iterable[str],
    bosses: Iterable[BossConfig],
    name_aliases: Iterable[AliasRow],
    boss_aliases: Iterable[AliasRow],
    derive_name_aliases: bool = False,
) -> ParserLookup:
    lookup = ParserLookup()
    users = list(users)
    for user in users:
        lookup.users_by_key[normalize_key(user)] = user

    for boss in bosses:
        lookup.bosses_by_key[normalize_boss_key(boss.boss)] = boss

    if derive_name_aliases:
        for key, name in derived_name_aliases(users).items():
            if key not in lookup.users_by_key:
                lookup.name_alias_by_key[key] = name

    for row in name_aliases:
        lookup.name_alias_by_key[normalize_key(row.alias)] = row.canonical

    for row in boss_aliases:
        lookup.boss_alias_by_key[normalize_boss_key(row.alias)] = row.canonical

    return lookup
