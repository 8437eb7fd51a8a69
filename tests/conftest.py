"""
Shared pytest fixtures.
"""

import threading
import time
from typing import Any, Callable, List

import pytest

from app.models.schemas import Insight, InsightCategory
from app.utils.events import EventBus
from app.utils.fingerprint_store import FingerprintStore


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll ``predicate`` until it holds or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class Recorder:
    """Listener that keeps every payload it receives."""

    def __init__(self):
        self._items: List[Any] = []
        self._lock = threading.Lock()

    def __call__(self, payload: Any) -> None:
        with self._lock:
            self._items.append(payload)

    @property
    def items(self) -> List[Any]:
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        return len(self.items)


@pytest.fixture
def store():
    """Connected in-memory fingerprint store."""
    store = FingerprintStore()
    store.connect()
    yield store
    store.close()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def record(bus):
    """Subscribe a Recorder to one notification kind on ``bus``."""

    def _record(kind) -> Recorder:
        recorder = Recorder()
        bus.on(kind, recorder)
        return recorder

    return _record


@pytest.fixture
def wait():
    return wait_until


class FakeAnalyzer:
    """Analyzer stand-in that returns one insight per call and records its input."""

    def __init__(self):
        self.calls: List[Any] = []
        self._lock = threading.Lock()

    def analyze(self, text: str, lens: str = "general"):
        with self._lock:
            self.calls.append((text, lens))
        return [Insight(title=f"About {text[:20]}", content=text or "empty", category=InsightCategory.OBSERVATION,
                        confidence=0.5)]

    @property
    def texts(self) -> List[str]:
        with self._lock:
            return [text for text, _ in self.calls]

    def close(self):
        pass


@pytest.fixture
def analyzer():
    return FakeAnalyzer()
