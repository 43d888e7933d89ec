import copy
import json
import random
import string
import sys
from typing import Any, Dict, Iterable, Optional, Sequence
from urllib.parse import quote, unquote

KINDS = ("string", "number", "boolean", "object", "bytes", "function")

RANDOM_CHARSET = string.ascii_letters + string.digits
HEX_DIGITS = "0123456789ABCDEF"

# Upper bounds for every generated size.
MAX_RANDOM_LENGTH = 1 << 16
MAX_STYLE_PIXELS = 200
MAX_BORDER_PIXELS = 10

DEFAULT_STRINGS = (
    "fuzzString1", "fuzzString2", "fuzzString3", "", " ", "\x00", "\n", "\r", "\t",
    "a" * 1000, "!@#$%^&*()", "正常な文字列", "1234567890", "x" * 10000,
    "null", "undefined", "NaN", json.dumps({"key": "value"}),
    quote("<test>"), unquote("%3Ctest%3E"),
    "‮", "\udc00", "🚨", "%n%n%n%n", "%s%s%s%s",
)

# quoting, delimiter and length boundaries around a plain token
BOUNDARY_STRINGS = (
    "\"", "\"\"", "'", "A" * 1000, "A" * 10000, "\t\n\r",
    "'fuzz'", "\"fuzz\"", "fuzz,", "fuzz\n", "fuzz\\",
)

# numbers as text, for keys and fields that get parsed
NUMERIC_STRINGS = (
    "0", "-0", "1", "-1", "100", "-100",
    str(2 ** 31 - 1), str(-(2 ** 31)), str(2 ** 63 - 1), str(-(2 ** 63)),
    str(10 ** 9), str(10 ** 18),
    "inf", "-inf", "1e9", "1e-9", "1e308", "-1e308",
)

DEFAULT_NUMBERS = (
    0, 1, 999, -1, 3.14, float("nan"), float("inf"), float("-inf"),
    2 ** 53 - 1, -(2 ** 53 - 1), sys.float_info.max, 5e-324,
    1e100, -1e100, 1e-100, -1e-100,
    2 ** 31 - 1, -(2 ** 31), 2 ** 63 - 1, -(2 ** 63),
)

DEFAULT_BOOLEANS = (True, False)

DEFAULT_OBJECTS = (
    {}, {"key": "value"}, None, [], {"complex": {"nested": {"structure": True}}},
)


def _noop(*args, **kwargs):
    return None


async def _async_noop(*args, **kwargs):
    return None


def _returns_test(*args, **kwargs):
    return "test"


DEFAULT_FUNCTIONS = (_noop, _async_noop, _returns_test, lambda *a, **k: a)

# Smallest module with type, import, function, memory, global, export and code
# sections; random_module_bytes() corrupts it in place.
WASM_MODULE_TEMPLATE = bytes([
    0x00, 0x61, 0x73, 0x6D, 0x01, 0x00, 0x00, 0x00,
    0x01, 0x0B, 0x03, 0x60, 0x00, 0x00, 0x60, 0x01, 0x7F, 0x00, 0x60, 0x02, 0x7F, 0x7F, 0x00,
    0x02, 0x13, 0x02, 0x07, 0x65, 0x6E, 0x76, 0x2F, 0x61, 0x62, 0x6F, 0x72, 0x74, 0x00, 0x00,
    0x07, 0x65, 0x6E, 0x76, 0x2F, 0x69, 0x6D, 0x70, 0x6F, 0x72, 0x74, 0x65, 0x64, 0x5F, 0x66,
    0x75, 0x6E, 0x63, 0x00, 0x01,
    0x03, 0x02, 0x01, 0x00,
    0x05, 0x03, 0x01, 0x00, 0x10,
    0x06, 0x06, 0x01, 0x7F, 0x00, 0x41, 0x80, 0x88, 0x04, 0x0B,
    0x07, 0x11, 0x03, 0x06, 0x6D, 0x65, 0x6D, 0x6F, 0x72, 0x79, 0x02, 0x00, 0x06, 0x5F, 0x5F,
    0x68, 0x65, 0x61, 0x70, 0x6C, 0x00, 0x02,
    0x0A, 0x1B, 0x03, 0x04, 0x00, 0x41, 0x01, 0x0B, 0x08, 0x00, 0x20, 0x00, 0x41, 0x01, 0x6A,
    0x20, 0x01, 0x6A, 0x0B, 0x09, 0x00, 0x20, 0x00, 0x20, 0x01, 0x6A, 0x20, 0x02, 0x6A, 0x0B,
])

DEFAULT_BYTES = (
    b"", b"\x00", b"\xff" * 4, b"\xff" * 8,
    b"AAAA" * 100, b"%n%n%n%n", b"%s%s%s%s",
    b"\x7f\xff\xff\xff", b"\x80\x00\x00\x00",
    b"\x01\x00\x00\x00\x00\x00\x00\x00" * 100,
    b"\t\n\r", "‮".encode("utf-8"),
    WASM_MODULE_TEMPLATE,
)

OVERFLOW_BYTES = (b"A" * 1000, b"A" * 10000, b"\x00" * 4096)

DISPLAY_VALUES = ("block", "inline", "flex", "grid", "none")
POSITION_VALUES = ("static", "relative", "absolute", "fixed", "sticky")
PIXEL_DIMENSIONS = ("width", "height", "fontSize", "margin", "padding", "top", "left")
COLOR_DIMENSIONS = ("color", "backgroundColor", "borderColor")


class ValuePool:
    """
    Typed seed dictionaries plus generators for fresh values.

    A pool is created once per run and handed to everything that needs values.
    It is read-only after startup; extend() exists for the startup phase only.
    """

    def __init__(self, seeds: Optional[Dict[str, Iterable[Any]]] = None, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()
        if seeds is None:
            seeds = {
                "string": DEFAULT_STRINGS + BOUNDARY_STRINGS + NUMERIC_STRINGS,
                "number": DEFAULT_NUMBERS,
                "boolean": DEFAULT_BOOLEANS,
                "object": DEFAULT_OBJECTS,
                "bytes": DEFAULT_BYTES + OVERFLOW_BYTES,
                "function": DEFAULT_FUNCTIONS,
            }
        self._pools: Dict[str, tuple] = {kind: tuple(values) for kind, values in seeds.items()}

    @classmethod
    def default(cls, random_strings: int = 100, random_string_length: int = 10, rng=None) -> "ValuePool":
        pool = cls(rng=rng)
        pool.with_random_strings(random_strings, random_string_length)
        return pool

    def kinds(self) -> Sequence[str]:
        return tuple(self._pools)

    def domain(self, kind: str) -> tuple:
        return self._pools.get(kind, ())

    def extend(self, kind: str, values: Iterable[Any]) -> None:
        self._pools[kind] = self._pools.get(kind, ()) + tuple(values)

    def with_random_strings(self, count: int, length: int = 10) -> "ValuePool":
        self.extend("string", (self.random_string(length) for _ in range(max(0, count))))
        return self

    def draw(self, kind: str) -> Any:
        values = self._pools.get(kind)
        if not values:
            return ""
        value = self.rng.choice(values)
        if kind == "object":
            # Targets may keep and mutate what they are handed.
            return copy.deepcopy(value)
        return value

    def draw_like(self, arg: Any) -> Any:
        """Draw a replacement of the same kind as ``arg``; unknown kinds pass through."""
        kind = kind_of(arg)
        if not self._pools.get(kind):
            return arg
        return self.draw(kind)

    # --- Generators (not backed by the pool) ---
    def random_string(self, length: int) -> str:
        length = _bounded(length)
        return "".join(self.rng.choice(RANDOM_CHARSET) for _ in range(length))

    def random_bytes(self, length: int) -> bytes:
        return self.rng.randbytes(_bounded(length))

    def random_token(self, length: int = 5) -> str:
        alphabet = string.ascii_lowercase + string.digits
        return "".join(self.rng.choice(alphabet) for _ in range(_bounded(length)))

    def random_color(self) -> str:
        return "#" + "".join(self.rng.choice(HEX_DIGITS) for _ in range(6))

    def random_style_value(self, dimension: str) -> str:
        if dimension in COLOR_DIMENSIONS:
            return self.random_color()
        if dimension == "border":
            return f"{self.rng.randrange(MAX_BORDER_PIXELS)}px solid {self.random_color()}"
        if dimension in PIXEL_DIMENSIONS:
            return f"{self.rng.randrange(MAX_STYLE_PIXELS)}px"
        if dimension == "opacity":
            return str(self.rng.random())
        if dimension == "display":
            return self.rng.choice(DISPLAY_VALUES)
        if dimension == "position":
            return self.rng.choice(POSITION_VALUES)
        if dimension == "transform":
            return self.random_transform()
        if dimension == "zIndex":
            return str(self.rng.randint(-2 ** 31, 2 ** 31 - 1))
        return ""

    def random_transform(self) -> str:
        r = self.rng
        return r.choice([
            lambda: f"rotate({r.randrange(360)}deg)",
            lambda: f"scale({r.random() + 0.5})",
            lambda: f"translate({r.randrange(100)}px, {r.randrange(100)}px)",
            lambda: f"skew({r.randrange(45)}deg, {r.randrange(45)}deg)",
            lambda: f"rotateX({r.randrange(360)}deg) rotateY({r.randrange(360)}deg)",
        ])()

    def random_module_bytes(self, flips: int = 10) -> bytes:
        b = bytearray(WASM_MODULE_TEMPLATE)
        for _ in range(max(0, min(flips, len(b)))):
            b[self.rng.randrange(len(b))] = self.rng.randrange(256)
        return bytes(b)


def _bounded(length) -> int:
    try:
        length = int(length)
    except (TypeError, ValueError):
        return 0
    return max(0, min(length, MAX_RANDOM_LENGTH))


def kind_of(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "bytes"
    if callable(value):
        return "function"
    return "object"
