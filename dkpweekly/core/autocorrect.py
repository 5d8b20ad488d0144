from typing import Callable, Dict, Iterable, List, Optional

import textdistance

from .normalize import normalize_boss_key, normalize_key

MAX_DISTANCE = 2
DEFAULT_LIMIT = 5


class Autocorrecter:
    def __init__(
        self,
        words: Iterable[str],
        key_func: Callable[[str], str] = normalize_key,
    ) -> None:
        self.key_func = key_func
        self.vocab: Dict[str, str] = {}
        for word in words:
            self.add_word(word)

    def add_word(self, word: str, display: Optional[str] = None) -> None:
        if not word:
            return
        key = self.key_func(word)
        if not key or key in self.vocab:
            return
        self.vocab[key] = display or word

    def correct(self, input_word: str, limit: int = DEFAULT_LIMIT) -> List[str]:
        input_key = self.key_func(input_word)
        scored = []
        for key, display in self.vocab.items():
            distance = textdistance.levenshtein.distance(input_key, key)
            if distance > MAX_DISTANCE:
                continue
            scored.append((distance, display))
        scored.sort()
        return [display for _, display in scored[:limit]]


def suggest_names(token: str, candidates: Iterable[str], limit: int = DEFAULT_LIMIT) -> List[str]:
    return Autocorrecter(candidates, normalize_key).correct(token, limit)


def suggest_bosses(token: str, candidates: Iterable[str], limit: int = DEFAULT_LIMIT) -> List[str]:
    return Autocorrecter(candidates, normalize_boss_key).correct(token, limit)
