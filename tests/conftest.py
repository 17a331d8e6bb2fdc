"""Pytest configuration and shared fixtures."""
from typing import Callable, List

import pytest

from formstate import FieldDefinition, FormEngine, FormEngineConfig, FormSnapshot


# No debounce so async tests only wait for the validator itself
FAST_CONFIG = FormEngineConfig(default_debounce=0.0)


def assert_counters_consistent(snapshot: FormSnapshot) -> None:
    """Maintained counters must equal a from-scratch recount."""
    recount = snapshot.recount()
    assert snapshot.error_count == recount.errors
    assert snapshot.dirty_count == recount.dirty
    assert snapshot.pending_count == recount.pending


class SnapshotRecorder:
    """Collects every snapshot an engine publishes."""

    def __init__(self, engine: FormEngine):
        self.snapshots: List[FormSnapshot] = []
        self.unsubscribe = engine.subscribe(self.snapshots.append)

    def __len__(self) -> int:
        return len(self.snapshots)

    @property
    def last(self) -> FormSnapshot:
        return self.snapshots[-1]

    def clear(self) -> None:
        self.snapshots.clear()


@pytest.fixture
def make_engine() -> Callable[..., FormEngine]:
    """Factory for engines; every engine created is disposed after the test."""
    engines: List[FormEngine] = []

    def factory(fields=(), **kwargs) -> FormEngine:
        kwargs.setdefault('config', FAST_CONFIG)
        engine = FormEngine(fields=list(fields), **kwargs)
        engines.append(engine)
        return engine

    yield factory

    for engine in engines:
        engine.dispose()


@pytest.fixture
def profile_engine(make_engine) -> FormEngine:
    """Small form used across tests: name (str), age (int), tags (list)."""
    return make_engine([
        FieldDefinition('name', initial_value=''),
        FieldDefinition('age', initial_value=0),
        FieldDefinition('tags', initial_value=[]),
    ])


@pytest.fixture
def recorder() -> Callable[[FormEngine], SnapshotRecorder]:
    return SnapshotRecorder


@pytest.fixture
def check_counters() -> Callable[[FormSnapshot], None]:
    return assert_counters_consistent
