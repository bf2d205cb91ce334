"""Shared test fixtures."""

from collections.abc import Generator
from datetime import UTC, datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import netwatch.database as db_module
from netwatch.config import settings
from netwatch.database import get_session
from netwatch.main import app
from netwatch.notifier.broadcaster import ChangeNotifier, DeviceChangeEvent
from netwatch.registry.models import Device, DeviceCategory
from netwatch.registry.store import DeviceStore

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC)


class RecordingNotifier(ChangeNotifier):
    """Notifier that records published events instead of fanning them out."""

    def __init__(self) -> None:
        super().__init__()
        self.events: list[DeviceChangeEvent] = []

    def publish(self, event: DeviceChangeEvent) -> None:
        self.events.append(event)


@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables created.

    StaticPool ensures every session uses the same connection,
    so the in-memory database is shared across the test.
    """
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(eng)
    return eng


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    with Session(engine) as s:
        yield s


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def store(engine, notifier) -> DeviceStore:
    return DeviceStore(engine, notifier=notifier, latency_threshold=50)


@pytest.fixture
def make_device(session):
    """Insert a device and return its id."""

    def _make(
        name: str = "Core Switch 01",
        address: str = "192.168.1.1",
        category: DeviceCategory = DeviceCategory.switch,
        **fields,
    ) -> int:
        device = Device(name=name, address=address, category=category, **fields)
        session.add(device)
        session.commit()
        session.refresh(device)
        return device.id

    return _make


@pytest.fixture
def client(engine, monkeypatch) -> Generator[TestClient, None, None]:
    """FastAPI TestClient with overridden DB engine and session."""
    # Patch the module-level engine so lifespan's init_db() and the
    # device store both use the test engine.
    original_engine = db_module.engine
    db_module.engine = engine
    monkeypatch.setattr(settings, "prober_enabled", False)
    monkeypatch.setattr(settings, "seed_demo_devices", False)

    def _override_session() -> Generator[Session, None, None]:
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = _override_session
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    db_module.engine = original_engine
