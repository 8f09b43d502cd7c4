"""
Test fixtures and configuration
"""
import pytest
from fastapi.testclient import TestClient

from tubelinks.config import Settings
from tubelinks.main import create_app
from tubelinks.service import LinkPersistenceService
from tubelinks.storage import KVStoreAdapter, MemoryKVBackend

VIDEO_A = "https://youtu.be/aaaaaaaaaaa"
VIDEO_B = "https://youtu.be/bbbbbbbbbbb"
VIDEO_C = "https://www.youtube.com/watch?v=ccccccccccc"


@pytest.fixture
def backend():
    return MemoryKVBackend()


@pytest.fixture
def service(backend):
    return LinkPersistenceService(KVStoreAdapter(backend))


@pytest.fixture
def unconfigured_service():
    return LinkPersistenceService(KVStoreAdapter(None))


@pytest.fixture
def settings():
    s = Settings()
    s.kv.backend = "memory"
    return s


@pytest.fixture
def client(settings, service):
    """Test client over an in-memory store"""
    return TestClient(create_app(settings, service))


@pytest.fixture
def lenient_client(settings, unconfigured_service):
    """Test client in always-200 mode with no store behind it"""
    settings.server.always_ok = True
    return TestClient(create_app(settings, unconfigured_service))


@pytest.fixture
def sample_links():
    return [
        {"url": VIDEO_A, "timestamp": "2024-01-01T00:00:00Z"},
        {"url": VIDEO_B, "timestamp": "2024-01-02T00:00:00Z"},
        {"url": VIDEO_C, "timestamp": "2024-01-03T00:00:00Z"},
    ]
