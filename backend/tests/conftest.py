"""Pytest fixtures."""

import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["PROXIMITY_AUTOSTART"] = "false"
os.environ["LOCATION_REMINDER_AUTOSTART"] = "false"
os.environ["PUSH_ENABLED"] = "false"
os.environ["GEOCODING_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from famguard import models  # noqa: F401 - register for create_all
from famguard.core.deps import build_services, get_services
from famguard.db.base import Base
from famguard.main import app
from famguard.services.backend import SafetyBackend
from famguard.services.config_store import InMemoryConfigStore


@pytest.fixture
def engine(tmp_path):
    """Fresh database file per test; backend calls run on worker threads."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'famguard.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def backend(session_factory):
    return SafetyBackend(session_factory)


@pytest.fixture
def store():
    return InMemoryConfigStore()


@pytest.fixture
def services(session_factory, store):
    return build_services(session_factory, store=store)


@pytest.fixture
def client(services):
    """Test client wired to the in-memory services."""
    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
