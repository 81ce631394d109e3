# tests/conftest.py
import pytest
import pytest_asyncio
import os
import sys
import logging
from unittest.mock import MagicMock

import requests
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from assessment_sync.utils.config import settings
from assessment_sync.utils.db import get_db
from assessment_sync.candidate.store import CandidateStore
from assessment_sync.models.admin import Event
from assessment_sync import main as main_module


# --- Candidate-side fixtures ---

@pytest_asyncio.fixture
async def store(tmp_path):
    """A fresh candidate store backed by a SQLite file unique to the test."""
    candidate_store = CandidateStore(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'candidate.db'}",
        recordings_dir=str(tmp_path / "candidate_recordings"),
        max_attempts=3,
    )
    await candidate_store.init_schema()
    yield candidate_store
    await candidate_store.close()


def create_mock_response(status_code=200, json_data=None, text_data=""):
    """Creates a mock requests.Response object."""
    mock_resp = MagicMock()
    mock_resp.status_code = status_code
    mock_resp.text = text_data
    if json_data is None:
        mock_resp.json.side_effect = requests.exceptions.JSONDecodeError("Expecting value", text_data, 0)
    else:
        mock_resp.json.return_value = json_data
    return mock_resp


@pytest.fixture
def mock_response():
    return create_mock_response


@pytest.fixture
def http_session():
    """Stand-in for requests.Session; tests set `.request.return_value` or `.side_effect`."""
    return MagicMock(spec=requests.Session)


# --- Admin-side fixtures ---

@pytest.fixture
def admin_db_path(tmp_path):
    return tmp_path / "admin.db"


@pytest.fixture
def recordings_dir(tmp_path, monkeypatch):
    path = tmp_path / "server_recordings"
    monkeypatch.setattr(settings, "recordings_dir", str(path))
    return path


@pytest.fixture
def client(admin_db_path, recordings_dir, monkeypatch):
    """
    TestClient for the admin API, wired to a per-test SQLite file.
    Startup creates the tables on that file through the patched engine.
    """
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{admin_db_path}", echo=False)
    TestSessionLocal = sessionmaker(bind=test_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with TestSessionLocal() as session:
            yield session

    monkeypatch.setattr(main_module, "engine", test_engine)
    main_module.app.dependency_overrides[get_db] = override_get_db
    with TestClient(main_module.app) as c:
        yield c
    main_module.app.dependency_overrides.clear()


@pytest.fixture
def admin_engine(client, admin_db_path):
    """Synchronous engine on the admin database, for arranging and inspecting rows."""
    engine = create_engine(f"sqlite:///{admin_db_path}")
    yield engine
    engine.dispose()


@pytest.fixture
def admin_rows(admin_engine):
    """Returns a function that loads all rows of a model, with optional filter_by criteria."""
    def _rows(model, **filters):
        with Session(admin_engine) as session:
            return session.query(model).filter_by(**filters).all()
    return _rows


@pytest.fixture
def sample_event(admin_engine):
    with Session(admin_engine, expire_on_commit=False) as session:
        event = Event(event_name="Graduate Intake 2024", description="Aptitude battery", status="active", event_code="ABC234")
        session.add(event)
        session.commit()
    return event
