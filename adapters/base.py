from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Sequence, Tuple

from mutators.string_mutator import StringMutator
from pool import ValuePool

Target = Any
ExtraOperation = Callable[[Target], Any]


class TargetAdapter(ABC):
    """
    Maps the harness's mutation capabilities onto one family of targets.

    Any method may be handed arbitrary, adversarial values and is allowed to
    raise; callers always go through containment.guard. Methods may be plain
    functions or coroutines.
    """

    family: str = "generic"

    # names the traversal and the attribute/style/event operations iterate over
    attribute_names: Tuple[str, ...] = ()
    style_dimensions: Tuple[str, ...] = ()
    event_kinds: Tuple[str, ...] = ()

    def __init__(self, pool: ValuePool, mutator: StringMutator):
        self.pool = pool
        self.mutator = mutator

    @abstractmethod
    def set_key(self, target: Target, key: str, value: Any):
        """Set an attribute/property/uniform-like key."""

    @abstractmethod
    def set_style_like(self, target: Target, dimension: str, value: Any):
        """Set a cosmetic or state property."""

    @abstractmethod
    def dispatch(self, target: Target, event_kind: str):
        """Fire a named signal at the target; the result is not consumed."""

    @abstractmethod
    def mutate_content(self, target: Target):
        """Replace the target's primary content or state wholesale."""

    @abstractmethod
    def mutate_structure(self, target: Target):
        """Insert, remove, replace, wrap or clone+detach a structural piece."""

    def children(self, target: Target) -> Sequence[Target]:
        return []

    def extra_operations(self) -> Dict[str, ExtraOperation]:
        """Family-specific roster members, keyed by operation name."""
        return {}

    def style_value(self, dimension: str) -> Any:
        return self.pool.random_style_value(dimension)

    def fresh_value(self) -> str:
        return self.mutator.mutate(self.pool.draw("string"))

    def describe(self, target: Target) -> str:
        return f"{type(target).__name__}@{id(target):x}"
