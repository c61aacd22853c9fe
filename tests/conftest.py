import pytest
from fastapi.testclient import TestClient

from app import create_app
from backend import MemoryBackend
from relay import BroadcastRelay


class FakeClock:
    """Millisecond clock the tests move by hand."""

    def __init__(self, now: int = 1_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float):
        self.now += int(seconds * 1000)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_backend(clock):
    return MemoryBackend(retention_seconds=120, idle_ttl_seconds=3600, clock=clock)


@pytest.fixture
def broadcast_relay():
    return BroadcastRelay(max_members=5)


@pytest.fixture
def client(memory_backend, broadcast_relay):
    # Entered so every request and socket runs on one event loop, as under uvicorn
    with TestClient(create_app(backend=memory_backend, relay=broadcast_relay)) as client:
        yield client
