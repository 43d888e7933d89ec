import random
from typing import Optional

MAX_BUFFER = 65535


class BaseMutator:
    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def mutate_bytes(self, data_bytes: bytes) -> bytes:
        r = self.rng
        b = bytearray(data_bytes)
        if not b:
            b.append(r.randrange(256))
            return bytes(b)
        op = r.choice(["bitflip", "set", "arith", "insert", "delete", "dup"])
        if op == "bitflip":
            i = r.randrange(len(b))
            b[i] ^= 1 << r.randrange(8)
        elif op == "set":
            i = r.randrange(len(b))
            b[i] = r.randrange(256)
        elif op == "arith":
            i = r.randrange(len(b))
            b[i] = (b[i] + r.choice([-128, -16, -1, 1, 16, 127])) & 0xFF
        elif op == "insert" and len(b) < MAX_BUFFER:
            i = r.randrange(len(b) + 1)
            for _ in range(r.randint(1, 8)):
                b.insert(i, r.randrange(256))
        elif op == "delete" and len(b) > 1:
            i = r.randrange(len(b))
            del b[i]
        elif op == "dup" and len(b) < MAX_BUFFER:
            start = r.randrange(len(b))
            end = min(len(b), start + r.randint(1, 16))
            chunk = b[start:end]
            ins = r.randrange(len(b) + 1)
            b[ins:ins] = chunk
        return bytes(b)

    def mutate_bytes_in_place(self, buf, rounds: int = 1) -> int:
        """Overwrite a fixed-size writable buffer; length never changes. Returns bytes touched."""
        mv = memoryview(buf).cast("B")
        if len(mv) == 0:
            return 0
        touched = 0
        for _ in range(max(1, rounds)):
            i = self.rng.randrange(len(mv))
            op = self.rng.choice(["bitflip", "set", "arith"])
            if op == "bitflip":
                mv[i] ^= 1 << self.rng.randrange(8)
            elif op == "set":
                mv[i] = self.rng.randrange(256)
            else:
                mv[i] = (mv[i] + self.rng.choice([-128, -16, -1, 1, 16, 127])) & 0xFF
            touched += 1
        return touched
