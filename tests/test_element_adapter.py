import xml.etree.ElementTree as ET

import pytest

from adapters.element import ElementAdapter, ListenerRegistry, parse_style, render_style
from errors import AdapterFault


@pytest.fixture
def doc():
    return ET.fromstring("<html><body><div id='a'><span>x</span></div><input/></body></html>")


@pytest.fixture
def adapter(pool, mutator, doc):
    return ElementAdapter(pool, mutator, document=doc)


def test_set_key_rejects_invalid_names(adapter, doc):
    div = doc.find(".//div")
    adapter.set_key(div, "data-fuzz-abcde", 42)
    assert div.get("data-fuzz-abcde") == "42"
    with pytest.raises(AdapterFault):
        adapter.set_key(div, "1 bad name", "v")


def test_styles_are_merged(adapter, doc):
    div = doc.find(".//div")
    adapter.set_style_like(div, "color", "#FFFFFF")
    adapter.set_style_like(div, "width", "10px")
    adapter.set_style_like(div, "color", "#000000")
    assert parse_style(div.get("style")) == {"color": "#000000", "width": "10px"}


def test_parse_and_render_style():
    assert parse_style("a: 1; b:2;; junk") == {"a": "1", "b": "2"}
    assert render_style({"a": "1", "b": "2"}) == "a: 1; b: 2"
    assert parse_style(None) == {}


def test_dispatch_bubbles_to_ancestors(adapter, doc):
    span = doc.find(".//span")
    body = doc.find("body")
    seen = []
    adapter.listeners.add(body, "click", lambda e: seen.append((e.kind, e.target.tag)))
    event = adapter.dispatch(span, "click")
    assert seen == [("click", "span")]
    assert [n.tag for n in event.path] == ["span", "div", "body", "html"]


def test_stop_propagation(adapter, doc):
    span = doc.find(".//span")
    div = doc.find(".//div")
    seen = []
    adapter.listeners.add(span, "keyup", lambda e: e.stop_propagation())
    adapter.listeners.add(div, "keyup", lambda e: seen.append(e))
    adapter.dispatch(span, "keyup")
    assert seen == []


def test_listener_registry_snapshot_and_remove():
    reg = ListenerRegistry()
    el = ET.Element("p")
    calls = []

    def first(e):
        reg.add(el, "click", lambda e: calls.append("late"))
        calls.append("first")

    reg.add(el, "click", first)
    for listener in reg.get(el, "click"):
        listener(None)
    assert calls == ["first"]
    assert reg.remove(el, "click", first) is True
    assert reg.remove(el, "click", first) is False
    assert reg.kinds(el) == ["click"]


def test_set_inner_parses_fragments(adapter):
    el = ET.Element("div")
    adapter.set_inner(el, "hi<b>there</b>")
    assert el.text == "hi"
    assert [c.tag for c in el] == ["b"]
    with pytest.raises(ET.ParseError):
        adapter.set_inner(el, "<unclosed>")


def test_mutate_content_always_leaves_element_usable(adapter, doc):
    el = doc.find(".//input")
    for _ in range(50):
        try:
            adapter.mutate_content(el)
        except (ET.ParseError, ValueError):
            pass
    assert el.tag == "input"


def test_wrap_self_requires_parent(adapter):
    with pytest.raises(AdapterFault):
        adapter._wrap_self(ET.Element("orphan"), "section")


def test_wrap_self_keeps_position(adapter, doc):
    body = doc.find("body")
    div = doc.find(".//div")
    adapter._wrap_self(div, "section")
    assert body[0].tag == "section"
    assert body[0][0] is div


def test_structure_ops_on_empty_element_may_fault(adapter):
    el = ET.Element("div")
    outcomes = set()
    for _ in range(100):
        try:
            adapter.mutate_structure(el)
            outcomes.add("ok")
        except (IndexError, AdapterFault):
            outcomes.add("fault")
    assert "ok" in outcomes


def test_clone_and_detach_leaves_tree_unchanged(adapter, doc):
    body = doc.find("body")
    before = ET.tostring(doc)
    adapter.clone_and_detach(body[0])
    assert ET.tostring(doc) == before


def test_shadow_toggles(adapter):
    el = ET.Element("div")
    adapter.attach_shadow(el)
    assert el.find("shadow-root") is not None
    adapter.attach_shadow(el)
    assert el.find("shadow-root") is None


def test_churn_listeners_registers_handlers(adapter, doc):
    div = doc.find(".//div")
    for _ in range(20):
        adapter.churn_listeners(div)
    for kind in adapter.listeners.kinds(div):
        adapter.dispatch(div, kind)
    assert any(k.startswith("data-seen-") for k in div.keys()) or not adapter.listeners.kinds(div)


def test_children_and_extras(adapter, doc):
    body = doc.find("body")
    assert [c.tag for c in adapter.children(body)] == ["div", "input"]
    assert set(adapter.extra_operations()) == {"transform", "clone", "listeners", "shadow"}
