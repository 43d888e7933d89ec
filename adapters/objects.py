"""
Session / engine-primitive family: arbitrary Python objects.

Keys are attributes (or items, for mappings), events are method calls made
with drawn arguments, and structural children are the attribute values that
are themselves containers or instances.
"""
import inspect
import types
from collections.abc import Mapping, MutableMapping, MutableSequence
from typing import Any, List, Optional

from adapters.base import TargetAdapter
from containment import guard_sync
from errors import AdapterFault
from oplog import OperationLog
from pool import ValuePool

MAX_CHILDREN = 256
MAX_ARGS = 8
STATE_KEYS = ("state", "mode", "timeout", "flags", "enabled", "closed", "expiration")
METHOD_HINTS = ("update", "close", "load", "remove", "reset", "clear", "pop", "copy", "generate_request")
PRIMITIVES = (str, bytes, bytearray, int, float, complex, bool, type(None))


def is_structured(value: Any) -> bool:
    if isinstance(value, PRIMITIVES) or callable(value):
        return False
    if isinstance(value, (types.ModuleType, type)):
        return False
    return isinstance(value, (Mapping, MutableSequence)) or hasattr(value, "__dict__")


def public_names(target: Any) -> List[Any]:
    """Mapping keys as they are; attribute names otherwise."""
    if isinstance(target, Mapping):
        return list(target.keys())
    try:
        return [k for k in vars(target) if not k.startswith("__")]
    except TypeError:
        return [k for k in dir(target) if not k.startswith("_")]


def arity(fn) -> int:
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return 0
    n = sum(1 for p in sig.parameters.values()
            if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD) and p.default is p.empty)
    return min(n, MAX_ARGS)


class ObjectAdapter(TargetAdapter):
    family = "object"
    attribute_names = ("id", "name", "type", "value", "data", "key")
    style_dimensions = STATE_KEYS
    event_kinds = METHOD_HINTS

    def __init__(self, pool, mutator, oplog: Optional[OperationLog] = None):
        super().__init__(pool, mutator)
        self.oplog = oplog if oplog is not None else OperationLog()

    def set_key(self, target, key, value):
        if isinstance(target, MutableMapping):
            target[key] = value
        elif isinstance(target, MutableSequence):
            if target:
                target[hash(key) % len(target)] = value
            else:
                target.append(value)
        else:
            setattr(target, str(key), value)

    def set_style_like(self, target, dimension, value):
        self.set_key(target, dimension, value)

    def style_value(self, dimension):
        return self.pool.draw(self.pool.rng.choice(["number", "boolean", "object", "string"]))

    def dispatch(self, target, event_kind):
        fn = getattr(target, str(event_kind), None)
        if not callable(fn):
            methods = [m for m in dir(target) if not m.startswith("_") and callable(getattr(target, m, None))]
            if not methods:
                raise AdapterFault(f"{type(target).__name__} has no callable members")
            fn = getattr(target, self.pool.rng.choice(methods))
        args = [self.pool.draw(self.pool.rng.choice(("string", "number", "boolean", "object", "bytes")))
                for _ in range(arity(fn))]
        return fn(*args)

    def mutate_content(self, target):
        if isinstance(target, MutableMapping):
            snapshot = list(target.items())
            target.clear()
            for k, v in snapshot:
                target[k] = self.pool.draw_like(v)
        elif isinstance(target, MutableSequence):
            target[:] = [self.pool.draw_like(v) for v in list(target)]
        else:
            for name in public_names(target):
                setattr(target, name, self.pool.draw_like(getattr(target, name, None)))

    def mutate_structure(self, target):
        r = self.pool.rng
        names = public_names(target)
        op = r.choice(["add", "delete", "nest", "swap"])
        if op == "add" or not names:
            self.set_key(target, f"fuzz_{self.pool.random_token()}", self.pool.draw("object"))
        elif op == "delete":
            name = r.choice(names)
            if isinstance(target, MutableMapping):
                del target[name]
            elif isinstance(target, MutableSequence):
                del target[r.randrange(len(target))]
            else:
                delattr(target, name)
        elif op == "nest":
            name = r.choice(names)
            self.set_key(target, name, types.SimpleNamespace(inner=self._get(target, name)))
        elif len(names) > 1:
            a, b = r.sample(names, 2)
            va, vb = self._get(target, a), self._get(target, b)
            self.set_key(target, a, vb)
            self.set_key(target, b, va)

    def children(self, target):
        if isinstance(target, Mapping):
            values = list(target.values())
        elif isinstance(target, MutableSequence):
            values = list(target)
        else:
            try:
                values = list(vars(target).values())
            except TypeError:
                values = []
        return [v for v in values if is_structured(v)][:MAX_CHILDREN]

    def extra_operations(self):
        return {"intercept": self.call_through_proxy}

    def call_through_proxy(self, target):
        proxy = InterceptingProxy(target, self.pool, self.oplog)
        methods = [m for m in dir(target) if not m.startswith("_") and callable(getattr(target, m, None))]
        if not methods:
            return None
        name = self.pool.rng.choice(methods)
        args = [self.pool.draw("string") for _ in range(arity(getattr(target, name)))]
        return getattr(proxy, name)(*args)

    def _get(self, target, name):
        if isinstance(target, Mapping):
            return target.get(name)
        if isinstance(target, MutableSequence):
            return list(target)
        return getattr(target, name, None)


class InterceptingProxy:
    """
    Explicit interception layer with a get / set / call contract.

    get: attribute reads return wrapped callables and wrapped structured values.
    set: writes go straight to the wrapped object.
    call: every positional and keyword argument is replaced by a pool value of
    the same kind before the real call; a raising call is contained and
    returns None.
    """

    __slots__ = ("_target", "_pool", "_oplog", "_path")

    def __init__(self, target: Any, pool: ValuePool, oplog: OperationLog, path: str = ""):
        object.__setattr__(self, "_target", target)
        object.__setattr__(self, "_pool", pool)
        object.__setattr__(self, "_oplog", oplog)
        object.__setattr__(self, "_path", path or type(target).__name__)

    def __getattr__(self, name):
        value = getattr(self._target, name)
        path = f"{self._path}.{name}"
        if callable(value):
            return InterceptingProxy(value, self._pool, self._oplog, path)
        if is_structured(value):
            return InterceptingProxy(value, self._pool, self._oplog, path)
        return value

    def __setattr__(self, name, value):
        setattr(self._target, name, value)

    def __delattr__(self, name):
        delattr(self._target, name)

    def __call__(self, *args, **kwargs):
        pool = self._pool
        fuzzed = [pool.draw_like(a) for a in args]
        fuzzed_kw = {k: pool.draw_like(v) for k, v in kwargs.items()}
        self._oplog.append("intercept", {"call": self._path, "args": len(fuzzed) + len(fuzzed_kw)})
        return guard_sync(self._oplog, self._path, self._target, *fuzzed, fault=AdapterFault, **fuzzed_kw)

    def __repr__(self):
        return f"<InterceptingProxy {self._path}>"

    def unwrap(self):
        return self._target
