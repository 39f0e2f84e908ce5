"""Shared pytest fixtures for all test modules."""
import asyncio
import os
import tempfile

# Settings are read at import time, so they must be in place before
# anything from facematch is imported.
_TMP_DIR = tempfile.mkdtemp(prefix="facematch-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'app.db')}"
os.environ["API_KEY"] = "test-key"
os.environ["LOG_PRUNE_INTERVAL_HOURS"] = "0"

import numpy as np
import pytest
from fastapi.testclient import TestClient

from facematch.config import VECTOR_DIM
from facematch.database import build_engine, build_session_maker, create_tables

API_KEY = "test-key"


@pytest.fixture
def run():
    """Drive a coroutine to completion on a fresh event loop."""
    return asyncio.run


@pytest.fixture
def session_maker(tmp_path, run):
    """Session factory bound to an empty SQLite file for this test."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'faces.db'}")
    run(create_tables(engine))
    yield build_session_maker(engine)
    run(engine.dispose())


@pytest.fixture
def make_vector():
    """Deterministic random vector of VECTOR_DIM floats for a seed."""
    def _make(seed: int = 0, dim: int = VECTOR_DIM) -> list:
        rng = np.random.default_rng(seed)
        return rng.random(dim).tolist()
    return _make


@pytest.fixture
def client(session_maker):
    """API client authenticated with the test key, using the per-test database."""
    from facematch.main import app, get_db

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app, headers={"X-API-Key": API_KEY})
    app.dependency_overrides.clear()
