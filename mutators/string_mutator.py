import re
import string
from typing import Callable, List

from mutators.base import BaseMutator

MAX_STRING = 1 << 20
MAX_CODEPOINT = 0x110000

_VOWELS = re.compile(r"[aeiou]")
_WHITESPACE = re.compile(r"\s")
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")

LEET = str.maketrans({
    "a": "4", "A": "4", "e": "3", "E": "3", "i": "1", "I": "1",
    "o": "0", "O": "0", "s": "5", "S": "5", "t": "7", "T": "7",
})

RANDOM_SUFFIX = string.ascii_lowercase + string.digits


class StringMutator(BaseMutator):
    """
    Applies one operator, picked uniformly, to a string.

    Every operator accepts the empty string, non-ASCII text and control
    characters. Positional operators treat an empty input as a single
    insertion point at index 0 and a no-op deletion.
    """

    def __init__(self, rng=None):
        super().__init__(rng)
        self.operators: List[Callable[[str], str]] = [
            self.reverse,
            self.upper,
            self.lower,
            self.strip_vowels,
            self.strip_whitespace,
            self.strip_special,
            self.append_random,
            self.shift_chars,
            self.shuffle,
            self.insert_random,
            self.delete_random,
            self.leet,
        ]

    def mutate(self, value) -> str:
        if value is None:
            value = ""
        elif not isinstance(value, str):
            value = str(value)
        op = self.rng.choice(self.operators)
        return op(value)[:MAX_STRING]

    def operator_names(self) -> List[str]:
        return [op.__name__ for op in self.operators]

    # --- Operators ---
    def reverse(self, s: str) -> str:
        return s[::-1]

    def upper(self, s: str) -> str:
        return s.upper()

    def lower(self, s: str) -> str:
        return s.lower()

    def strip_vowels(self, s: str) -> str:
        return _VOWELS.sub("", s)

    def strip_whitespace(self, s: str) -> str:
        return _WHITESPACE.sub("", s)

    def strip_special(self, s: str) -> str:
        return _NON_ALNUM.sub("", s)

    def append_random(self, s: str) -> str:
        return s + "".join(self.rng.choice(RANDOM_SUFFIX) for _ in range(5))

    def shift_chars(self, s: str) -> str:
        # wraps past U+10FFFF instead of raising in chr()
        return "".join(chr((ord(c) + 1) % MAX_CODEPOINT) for c in s)

    def shuffle(self, s: str) -> str:
        chars = list(s)
        self.rng.shuffle(chars)
        return "".join(chars)

    def insert_random(self, s: str) -> str:
        pos = self.rng.randint(0, len(s))
        ch = chr(self.rng.randrange(32, 127))
        return s[:pos] + ch + s[pos:]

    def delete_random(self, s: str) -> str:
        if not s:
            return s
        pos = self.rng.randrange(len(s))
        return s[:pos] + s[pos + 1:]

    def leet(self, s: str) -> str:
        return s.translate(LEET)
