"""Pytest configuration for the racefuzz test suite.

Hypothesis profiles:
- dev: local runs (200 examples)
- ci: CI=true or HYPOTHESIS_PROFILE=ci (50 examples, derandomized)
"""
import asyncio
import os
import random

import pytest
from hypothesis import settings

from config import FuzzConfig
from mutators.string_mutator import StringMutator
from oplog import OperationLog
from pool import ValuePool

settings.register_profile("dev", max_examples=200, deadline=None)
settings.register_profile("ci", max_examples=50, deadline=None, derandomize=True, print_blob=True)


def _detect_profile() -> str:
    explicit = os.environ.get("HYPOTHESIS_PROFILE")
    if explicit in ("dev", "ci"):
        return explicit
    if os.environ.get("CI") == "true":
        return "ci"
    return "dev"


settings.load_profile(_detect_profile())


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def pool(rng):
    return ValuePool.default(random_strings=10, random_string_length=10, rng=rng)


@pytest.fixture
def mutator(rng):
    return StringMutator(rng=rng)


@pytest.fixture
def oplog():
    return OperationLog()


@pytest.fixture
def fast_config():
    """No throttling and tiny batches so a traversal pass finishes in milliseconds."""
    return FuzzConfig.from_mapping({
        "throttle_ms": 0,
        "iterations_per_batch": 2,
        "interval_ms": 5,
        "max_depth": 3,
    })


async def wait_until(predicate, timeout: float = 5.0, step: float = 0.005):
    """Poll predicate() on the running loop; fail the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError(f"condition not met within {timeout}s")
        await asyncio.sleep(step)
