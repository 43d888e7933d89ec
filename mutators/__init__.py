from .base import BaseMutator
from .string_mutator import StringMutator

__all__ = [
    "BaseMutator",
    "StringMutator",
]
