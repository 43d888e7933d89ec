"""
DOM-family adapter over xml.etree.ElementTree elements.

ElementTree has no parent pointers and no event system, so the adapter keeps a
document root (for parent lookups and bubbling) and a weak listener registry.
Listeners run synchronously inside dispatch() and may themselves mutate the
tree, which is the reentrancy the race operations try to provoke.
"""
import copy
import re
import weakref
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from adapters.base import TargetAdapter
from errors import AdapterFault

NAME_RE = re.compile(r"^[A-Za-z_:][-A-Za-z0-9_:.]*$")

ATTRIBUTES = ("title", "alt", "placeholder", "src", "href", "class", "id", "name", "role", "aria-label")
STYLES = (
    "color", "backgroundColor", "border", "width", "height", "fontSize",
    "margin", "padding", "opacity", "display", "position", "top", "left",
    "transform", "zIndex",
)
EVENTS = (
    "click", "mouseover", "mouseout", "focus", "blur", "keydown",
    "keyup", "change", "input", "dblclick", "contextmenu", "wheel",
    "submit", "reset",
)
VALUE_TAGS = ("input", "textarea")
SHADOW_TAG = "shadow-root"
IMAGE_SRC = "https://via.placeholder.com/150"


@dataclass
class Event:
    kind: str
    target: ET.Element
    bubbles: bool = True
    cancelable: bool = True
    default_prevented: bool = False
    propagation_stopped: bool = False
    path: List[ET.Element] = field(default_factory=list)

    def prevent_default(self):
        if self.cancelable:
            self.default_prevented = True

    def stop_propagation(self):
        self.propagation_stopped = True


Listener = Callable[[Event], None]


class ListenerRegistry:
    def __init__(self):
        self._listeners: "weakref.WeakKeyDictionary[ET.Element, Dict[str, List[Listener]]]" = weakref.WeakKeyDictionary()

    def add(self, element: ET.Element, kind: str, listener: Listener):
        self._listeners.setdefault(element, {}).setdefault(kind, []).append(listener)

    def remove(self, element: ET.Element, kind: str, listener: Listener) -> bool:
        bucket = self._listeners.get(element, {}).get(kind, [])
        if listener in bucket:
            bucket.remove(listener)
            return True
        return False

    def get(self, element: ET.Element, kind: str) -> List[Listener]:
        # snapshot: listeners may add/remove listeners while firing
        return list(self._listeners.get(element, {}).get(kind, ()))

    def kinds(self, element: ET.Element) -> List[str]:
        return [k for k, v in self._listeners.get(element, {}).items() if v]


def parse_style(text: Optional[str]) -> Dict[str, str]:
    style = {}
    for decl in (text or "").split(";"):
        name, sep, value = decl.partition(":")
        if sep and name.strip():
            style[name.strip()] = value.strip()
    return style


def render_style(style: Dict[str, str]) -> str:
    return "; ".join(f"{k}: {v}" for k, v in style.items())


class ElementAdapter(TargetAdapter):
    family = "dom"
    attribute_names = ATTRIBUTES
    style_dimensions = STYLES
    event_kinds = EVENTS

    def __init__(self, pool, mutator, document: Optional[ET.Element] = None, registry: Optional[ListenerRegistry] = None):
        super().__init__(pool, mutator)
        self.document = document
        self.listeners = registry or ListenerRegistry()

    # --- capability set ---
    def set_key(self, target: ET.Element, key, value):
        key = str(key)
        if not NAME_RE.match(key):
            raise AdapterFault(f"invalid attribute name {key[:40]!r}")
        target.set(key, _as_text(value))

    def set_style_like(self, target: ET.Element, dimension, value):
        style = parse_style(target.get("style"))
        style[str(dimension)] = _as_text(value)
        target.set("style", render_style(style))

    def dispatch(self, target: ET.Element, event_kind) -> Event:
        event = Event(str(event_kind), target)
        event.path = self._ancestors(target, include_self=True)
        for node in event.path:
            for listener in self.listeners.get(node, event.kind):
                listener(event)
            if event.propagation_stopped or not event.bubbles:
                break
        return event

    def mutate_content(self, target: ET.Element):
        how = self.pool.rng.choice(["inner", "text", "value"])
        value = self.fresh_value()
        if how == "inner":
            self.set_inner(target, value)
        elif how == "value" and target.tag.lower() in VALUE_TAGS:
            target.set("value", value)
        else:
            self.set_text(target, value)

    def mutate_structure(self, target: ET.Element):
        ops = [
            lambda: target.append(ET.Element("div")),
            lambda: target.remove(target[0]),
            lambda: target.insert(0, ET.Element("span")),
            lambda: self._replace_first(target, ET.Element("p")),
            lambda: self._wrap_content(target, "div"),
            lambda: self._wrap_self(target, "section"),
            lambda: self._replace_with_image(target),
        ]
        self.pool.rng.choice(ops)()

    def children(self, target: ET.Element) -> List[ET.Element]:
        return list(target)

    def extra_operations(self):
        return {
            "transform": self.apply_transformation,
            "clone": self.clone_and_detach,
            "listeners": self.churn_listeners,
            "shadow": self.attach_shadow,
        }

    # --- content helpers ---
    def set_text(self, target: ET.Element, value: str):
        for child in list(target):
            target.remove(child)
        target.text = value

    def set_inner(self, target: ET.Element, markup: str):
        """innerHTML analogue: malformed markup raises ParseError."""
        fragment = ET.fromstring(f"<fragment>{markup}</fragment>")
        for child in list(target):
            target.remove(child)
        target.text = fragment.text
        for child in list(fragment):
            target.append(child)

    # --- extras ---
    def apply_transformation(self, target: ET.Element):
        self.set_style_like(target, "transform", self.pool.random_transform())

    def clone_and_detach(self, target: ET.Element):
        parent = self.parent_of(target)
        if parent is None:
            parent = target
        clone = copy.deepcopy(target)
        parent.append(clone)
        parent.remove(clone)

    def churn_listeners(self, target: ET.Element):
        kind = self.pool.rng.choice(EVENTS)
        current = self.listeners.get(target, kind)
        if current and self.pool.rng.random() < 0.5:
            self.listeners.remove(target, kind, self.pool.rng.choice(current))
            return

        def on_event(event: Event, node_ref=weakref.ref(target)):
            node = node_ref()
            if node is None:
                return
            node.set(f"data-seen-{event.kind}", self.pool.random_token())
            if self.pool.rng.random() < 0.1:
                event.stop_propagation()

        self.listeners.add(target, kind, on_event)

    def attach_shadow(self, target: ET.Element):
        existing = target.find(SHADOW_TAG)
        if existing is not None:
            target.remove(existing)
            return
        shadow = ET.SubElement(target, SHADOW_TAG, {"mode": self.pool.rng.choice(["open", "closed"])})
        shadow.text = self.fresh_value()

    # --- tree helpers ---
    def parent_of(self, target: ET.Element) -> Optional[ET.Element]:
        if self.document is None:
            return None
        for node in self.document.iter():
            for child in node:
                if child is target:
                    return node
        return None

    def _ancestors(self, target: ET.Element, include_self=False) -> List[ET.Element]:
        path = [target] if include_self else []
        node = self.parent_of(target)
        while node is not None and len(path) < 1024:
            path.append(node)
            node = self.parent_of(node)
        return path

    def _replace_first(self, target: ET.Element, new: ET.Element):
        old = target[0]
        target.remove(old)
        target.insert(0, new)

    def _wrap_content(self, target: ET.Element, tag: str):
        wrapper = ET.Element(tag)
        wrapper.text, target.text = target.text, None
        for child in list(target):
            target.remove(child)
            wrapper.append(child)
        target.append(wrapper)

    def _wrap_self(self, target: ET.Element, tag: str):
        parent = self.parent_of(target)
        if parent is None:
            raise AdapterFault("cannot wrap a detached element")
        index = list(parent).index(target)
        wrapper = ET.Element(tag)
        parent.remove(target)
        wrapper.append(target)
        parent.insert(index, wrapper)

    def _replace_with_image(self, target: ET.Element):
        for child in list(target):
            target.remove(child)
        target.text = None
        ET.SubElement(target, "img", {"src": IMAGE_SRC})


def _as_text(value) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("latin-1")
    return value if isinstance(value, str) else str(value)
