from .base import TargetAdapter
from .buffer import BufferAdapter, BufferGroup
from .element import ElementAdapter, ListenerRegistry
from .objects import InterceptingProxy, ObjectAdapter
from .process import ProcessAdapter, ProcessSession

__all__ = [
    "TargetAdapter",
    "BufferAdapter",
    "BufferGroup",
    "ElementAdapter",
    "ListenerRegistry",
    "InterceptingProxy",
    "ObjectAdapter",
    "ProcessAdapter",
    "ProcessSession",
]
