import pytest

from assignment_engine import activity
from assignment_engine.engine import build_engine
from assignment_engine.store.memory_store import InMemoryStore
from tests.factories import fixed_clock


@pytest.fixture
def store():
    """Empty in-memory store with an explicitly empty rule set (no default rules)."""
    s = InMemoryStore()
    s.set_assignment_rules([])
    return s


@pytest.fixture
def engine(store):
    return build_engine(store, clock=fixed_clock())


@pytest.fixture(autouse=True)
def clean_activity():
    activity.clear()
    yield
    activity.clear()
