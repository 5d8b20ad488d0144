import unittest

from dkpweekly.core.autocorrect import Autocorrecter, suggest_bosses, suggest_names
from dkpweekly.core.lookup import AliasRow, BossConfig, build_lookup, derived_name_aliases
from dkpweekly.core.normalize import (
    dedupe_preserve_order,
    normalize_boss_key,
    normalize_key,
    split_words,
)


class NormalizeTests(unittest.TestCase):
    def test_normalize_key_strips_edge_punctuation(self) -> None:
        self.assertEqual(normalize_key("  (Alice!) "), "alice")
        self.assertEqual(normalize_key("Bob   Smith."), "bob smith")
        self.assertEqual(normalize_key("o'neil"), "o'neil")

    def test_normalize_boss_key_keeps_punctuation(self) -> None:
        self.assertEqual(normalize_boss_key(" /Hydra  X "), "/hydra x")

    def test_split_words(self) -> None:
        self.assertEqual(split_words("  hydra \t alice  bob "), ["hydra", "alice", "bob"])

    def test_dedupe_keeps_first_spelling(self) -> None:
        self.assertEqual(dedupe_preserve_order(["Alice", "alice!", "Bob"]), ["Alice", "Bob"])


class LookupTests(unittest.TestCase):
    def test_later_boss_rows_win(self) -> None:
        lookup = build_lookup([], [BossConfig("Hydra", 10), BossConfig("hydra", 12)], [], [])
        self.assertEqual(lookup.resolve_boss("HYDRA").points, 12)

    def test_name_alias_resolves_to_roster_spelling(self) -> None:
        lookup = build_lookup(["Alice"], [], [AliasRow("ally", "alice")], [])
        self.assertEqual(lookup.resolve_user("Ally,"), "Alice")
        self.assertIsNone(lookup.resolve_user("Zed"))
        self.assertIsNone(lookup.resolve_user("!!"))

    def test_alias_to_missing_user_does_not_resolve(self) -> None:
        lookup = build_lookup(["Alice"], [], [AliasRow("ghost", "Nobody")], [])
        self.assertIsNone(lookup.resolve_user("ghost"))

    def test_derived_aliases_skip_ambiguous_keys(self) -> None:
        aliases = derived_name_aliases(["Bob Smith", "Bob Jones", "Tank2"])
        self.assertNotIn("bob", aliases)
        self.assertEqual(aliases["bobsmith"], "Bob Smith")
        self.assertEqual(aliases["bobjones"], "Bob Jones")
        self.assertEqual(aliases["tank"], "Tank2")

    def test_explicit_aliases_override_derived(self) -> None:
        lookup = build_lookup(
            ["Bob Smith", "Bob Jones", "Tank2"],
            [],
            [AliasRow("bobsmith", "Bob Jones")],
            [],
            derive_name_aliases=True,
        )
        self.assertEqual(lookup.resolve_user("tank"), "Tank2")
        self.assertIsNone(lookup.resolve_user("bob"))
        self.assertEqual(lookup.resolve_user("bobsmith"), "Bob Jones")

    def test_derived_aliases_are_off_by_default(self) -> None:
        lookup = build_lookup(["Tank2"], [], [], [])
        self.assertIsNone(lookup.resolve_user("tank"))


class SuggestionTests(unittest.TestCase):
    def test_closest_name_first(self) -> None:
        self.assertEqual(suggest_names("Alicee", ["Bob", "Alina", "Alice"]), ["Alice"])

    def test_ties_sorted_by_display(self) -> None:
        self.assertEqual(suggest_names("bob", ["Bobb", "Bob2", "Carl"]), ["Bob2", "Bobb"])

    def test_limit(self) -> None:
        names = ["Ann", "Anna", "Anne", "Anny", "Ana", "Annie"]
        self.assertEqual(len(suggest_names("ann", names, limit=3)), 3)

    def test_boss_suggestions_use_boss_keys(self) -> None:
        self.assertEqual(suggest_bosses("/hydr", ["/hydra", "Ogre"]), ["/hydra"])

    def test_autocorrecter_ignores_duplicate_keys(self) -> None:
        corrector = Autocorrecter(["Alice", "alice", ""])
        self.assertEqual(list(corrector.vocab.values()), ["Alice"])


if __name__ == "__main__":
    unittest.main()
