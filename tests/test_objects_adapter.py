import random
import types

import pytest

from adapters.objects import InterceptingProxy, ObjectAdapter, arity, is_structured, public_names
from errors import AdapterFault
from oplog import OperationLog
from pool import ValuePool


class Session:
    def __init__(self):
        self.state = "open"
        self.config = {"mode": 1}
        self.peer = types.SimpleNamespace(port=80)

    def echo(self, text, n):
        return (text, n)

    def fail(self):
        raise ValueError("closed")


@pytest.fixture
def adapter(pool, mutator, oplog):
    return ObjectAdapter(pool, mutator, oplog=oplog)


@pytest.fixture
def fixed_pool():
    return ValuePool({"string": ["fuzzed"], "number": [7]}, rng=random.Random(0))


def test_set_key_by_container_kind(adapter):
    d, items, obj = {}, [], types.SimpleNamespace()
    adapter.set_key(d, "k", 1)
    adapter.set_key(items, "k", 1)
    adapter.set_key(items, "k", 2)
    adapter.set_key(obj, "k", 1)
    assert d == {"k": 1}
    assert items == [2]
    assert obj.k == 1


def test_set_key_on_immutable_raises(adapter):
    with pytest.raises((AttributeError, TypeError)):
        adapter.set_key(object(), "k", 1)


def test_helpers():
    assert is_structured({}) and is_structured([]) and is_structured(Session())
    assert not is_structured("s") and not is_structured(len) and not is_structured(Session)
    assert public_names({"a": 1, 2: 3, (4, 5): 6}) == ["a", 2, (4, 5)]
    assert set(public_names(Session())) == {"state", "config", "peer"}
    assert arity(Session().echo) == 2
    assert arity(len) == 1


def test_children_are_structured_values(adapter):
    s = Session()
    kids = adapter.children(s)
    assert s.config in kids and s.peer in kids
    assert "open" not in kids
    assert adapter.children([1, {}, "x"]) == [{}]


def test_dispatch_calls_named_method(adapter):
    s = Session()
    out = adapter.dispatch(s, "echo")
    assert isinstance(out, tuple) and len(out) == 2


def test_dispatch_without_methods_faults(adapter):
    with pytest.raises(AdapterFault):
        adapter.dispatch(types.SimpleNamespace(), "close")


def test_mutate_content_keeps_shape(adapter):
    d = {"a": 1, "b": "x"}
    adapter.mutate_content(d)
    assert set(d) == {"a", "b"}
    items = [1, 2, 3]
    adapter.mutate_content(items)
    assert len(items) == 3


def test_mutate_structure_changes_something(adapter):
    d = {"a": 1, "b": 2}
    for _ in range(30):
        adapter.mutate_structure(d)
    assert d != {"a": 1, "b": 2}


def test_proxy_replaces_arguments_by_kind(fixed_pool, oplog):
    proxy = InterceptingProxy(Session(), fixed_pool, oplog)
    assert proxy.echo("original", 1) == ("fuzzed", 7)
    event = oplog.read_all()[0]
    assert event.operation == "intercept"
    assert event.details == {"call": "Session.echo", "args": 2}


def test_proxy_contains_raising_calls(fixed_pool, oplog):
    proxy = InterceptingProxy(Session(), fixed_pool, oplog)
    assert proxy.fail() is None
    fault = [e for e in oplog.read_all() if e.operation == "fault"][0]
    assert fault.details["fault"] == "AdapterFault"
    assert fault.details["error"] == "ValueError"


def test_proxy_get_and_set(fixed_pool, oplog):
    target = Session()
    proxy = InterceptingProxy(target, fixed_pool, oplog)
    assert proxy.state == "open"
    assert isinstance(proxy.peer, InterceptingProxy)
    assert proxy.peer.unwrap() is target.peer
    proxy.state = "closed"
    assert target.state == "closed"
    del proxy.state
    assert not hasattr(target, "state")
    assert repr(proxy) == "<InterceptingProxy Session>"


def test_call_through_proxy_logs_intercept(adapter, oplog):
    adapter.call_through_proxy(Session())
    assert oplog.count("intercept") == 1


def test_objects_adapter_defaults_its_own_log(pool, mutator):
    adapter = ObjectAdapter(pool, mutator, oplog=OperationLog())
    assert len(adapter.oplog) == 0
    assert ObjectAdapter(pool, mutator).oplog is not None


@pytest.mark.parametrize("original", [
    {1: "a", 2: "b", 3: "c"},
    {(0, 1): "a", (2, 3): "b", (4, 5): "c"},
])
def test_structure_edits_keep_non_string_keys(adapter, original):
    deleted = nested = 0
    for _ in range(200):
        d = dict(original)
        adapter.mutate_structure(d)
        extra = [k for k in d if k not in original]
        assert all(isinstance(k, str) and k.startswith("fuzz_") for k in extra)
        if len(d) < len(original):
            deleted += 1
        if any(isinstance(v, types.SimpleNamespace) and v.inner in original.values() for v in d.values()):
            nested += 1
    assert deleted > 0
    assert nested > 0
