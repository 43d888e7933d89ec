"""
GPU-resource family: raw writable buffers and groups of them.

A target is a bytearray, a writable memoryview, a SharedMemory segment, or a
BufferGroup whose members are its structural children. Fixed-size buffers keep
their length; bytearrays may grow and shrink, which raises BufferError while a
view is exported.
"""
import hashlib
import struct
from dataclasses import dataclass, field
from multiprocessing import shared_memory
from typing import Any, Dict, List

from adapters.base import TargetAdapter
from errors import AdapterFault
from mutators.base import MAX_BUFFER

MAX_MEMBER_SIZE = 4096
MAX_GROUP_MEMBERS = 64
MAX_ROUNDS = 32

BINDINGS = ("binding", "offset", "size", "uniform", "vertex", "index")
DIMENSIONS = ("stride", "alignment", "usage", "format", "clear")
SIGNALS = ("clear", "fill", "invert", "copy", "submit")


@dataclass
class BufferGroup:
    """Bind-group analogue: named buffers plus key/layout tables."""
    label: str = "group"
    members: List[Any] = field(default_factory=list)
    bindings: Dict[str, Any] = field(default_factory=dict)
    layout: Dict[str, Any] = field(default_factory=dict)
    submissions: List[str] = field(default_factory=list)


def writable_view(target) -> memoryview:
    if isinstance(target, shared_memory.SharedMemory):
        mv = target.buf
    else:
        mv = memoryview(target)
    if mv is None or mv.readonly:
        raise AdapterFault(f"{type(target).__name__} is not a writable buffer")
    return mv.cast("B") if mv.format != "B" or mv.ndim != 1 else mv


def encode_value(value) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, bool):
        return b"\x01" if value else b"\x00"
    if isinstance(value, int):
        return (value & 0xFFFFFFFFFFFFFFFF).to_bytes(8, "little")
    if isinstance(value, float):
        return struct.pack("<d", value)
    if isinstance(value, str):
        return value.encode("utf-8", "surrogatepass")
    return repr(value).encode("utf-8", "backslashreplace")


def key_offset(key: str, length: int) -> int:
    digest = hashlib.blake2b(str(key).encode("utf-8", "surrogatepass"), digest_size=8).digest()
    return int.from_bytes(digest, "little") % length


class BufferAdapter(TargetAdapter):
    family = "gpu"
    attribute_names = BINDINGS
    style_dimensions = DIMENSIONS
    event_kinds = SIGNALS

    def set_key(self, target, key, value):
        if isinstance(target, BufferGroup):
            target.bindings[str(key)] = value
            return
        mv = writable_view(target)
        if len(mv) == 0:
            return
        data = encode_value(value)
        off = key_offset(key, len(mv))
        n = min(len(data), len(mv) - off)
        mv[off:off + n] = data[:n]

    def set_style_like(self, target, dimension, value):
        if isinstance(target, BufferGroup):
            target.layout[str(dimension)] = value
            return
        mv = writable_view(target)
        data = encode_value(value) or b"\x00"
        stride = max(1, data[0])
        for i in range(0, len(mv), stride):
            mv[i] = data[(i // stride) % len(data)]

    def style_value(self, dimension):
        return self.pool.rng.choice([
            self.pool.rng.randrange(256),
            self.pool.draw("number"),
            self.pool.draw("bytes"),
        ])

    def dispatch(self, target, event_kind):
        kind = str(event_kind)
        if isinstance(target, BufferGroup):
            sums = [self._checksum(m) for m in list(target.members)]
            target.submissions.append(f"{kind}:{hashlib.blake2b(''.join(sums).encode(), digest_size=8).hexdigest()}")
            del target.submissions[:-MAX_GROUP_MEMBERS]
            return
        mv = writable_view(target)
        if kind == "clear":
            mv[:] = bytes(len(mv))
        elif kind == "fill":
            mv[:] = b"\xff" * len(mv)
        elif kind == "invert":
            mv[:] = bytes(b ^ 0xFF for b in mv)
        elif kind == "copy":
            half = len(mv) // 2
            mv[half:half * 2] = mv[:half]
        elif kind == "submit":
            self._checksum(target)
        else:
            raise AdapterFault(f"unknown buffer signal {kind!r}")

    def mutate_content(self, target):
        if isinstance(target, BufferGroup):
            for member in list(target.members):
                self.mutate_content(member)
            return
        if isinstance(target, bytearray) and self.pool.rng.random() < 0.3:
            # wholesale replacement; length may change
            seed = self.pool.rng.choice([self.pool.draw("bytes"), self.pool.random_module_bytes()])
            target[:] = self.mutator.mutate_bytes(seed)[:MAX_BUFFER]
            return
        self.mutator.mutate_bytes_in_place(writable_view(target), self.pool.rng.randint(1, MAX_ROUNDS))

    def mutate_structure(self, target):
        r = self.pool.rng
        if isinstance(target, BufferGroup):
            members = target.members
            op = r.choice(["add", "remove", "replace", "swap"])
            if op == "add" and len(members) < MAX_GROUP_MEMBERS:
                members.append(bytearray(self.pool.random_bytes(r.randrange(MAX_MEMBER_SIZE))))
            elif op == "remove" and members:
                members.pop(r.randrange(len(members)))
            elif op == "replace" and members:
                members[r.randrange(len(members))] = bytearray(r.randrange(MAX_MEMBER_SIZE))
            elif op == "swap" and len(members) > 1:
                i, j = r.sample(range(len(members)), 2)
                members[i], members[j] = members[j], members[i]
            return
        mv = writable_view(target)
        if len(mv) < 2:
            raise AdapterFault("buffer too small for a structural edit")
        op = r.choice(["swap", "dup", "truncate"])
        size = r.randint(1, len(mv) // 2)
        a = r.randrange(len(mv) - size + 1)
        b = r.randrange(len(mv) - size + 1)
        if op == "swap":
            chunk_a, chunk_b = bytes(mv[a:a + size]), bytes(mv[b:b + size])
            mv[a:a + size] = chunk_b
            mv[b:b + size] = chunk_a
        elif op == "dup":
            mv[b:b + size] = bytes(mv[a:a + size])
        else:
            mv[len(mv) - size:] = bytes(size)

    def children(self, target):
        if isinstance(target, BufferGroup):
            return list(target.members)
        return []

    def extra_operations(self):
        return {"resize": self.resize}

    def resize(self, target):
        if not isinstance(target, bytearray):
            raise AdapterFault(f"{type(target).__name__} cannot be resized")
        r = self.pool.rng
        if r.random() < 0.5 and len(target) < MAX_BUFFER:
            target.extend(self.pool.random_bytes(r.randrange(1, 512)))
        elif target:
            del target[-r.randint(1, len(target)):]

    def _checksum(self, target) -> str:
        return hashlib.blake2b(bytes(writable_view(target)), digest_size=8).hexdigest()
