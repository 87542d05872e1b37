"""
Shared test setup: disposable SQLite DB, scheduler in manual mode, no network.
Env vars are set before any gallery module is imported (they are read at import time).
"""
import os

TEST_DB_URL = "sqlite:///./test_ai_gallery.db"
TEST_DB_FILE = "./test_ai_gallery.db"

os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["SCHEDULER_AUTORUN"] = "false"
os.environ["MOCK_OPENAI"] = "true"
os.environ["LOG_AS_JSON"] = "false"

import pytest
from fastapi.testclient import TestClient

from gallery import db as dbmod


def _remove_db_file():
    try:
        if os.path.exists(TEST_DB_FILE):
            os.remove(TEST_DB_FILE)
    except Exception:
        pass


@pytest.fixture(autouse=True)
def fresh_db(monkeypatch):
    _remove_db_file()
    dbmod.reconfigure(TEST_DB_URL)
    dbmod.init_db()
    # operator key present by default so nothing reaches the fallback endpoint
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("OPENAI_KEY_FALLBACK_URL", "")
    yield
    dbmod.engine.dispose()
    _remove_db_file()


@pytest.fixture
def client():
    from gallery.app import app
    return TestClient(app)


@pytest.fixture
def service():
    from gallery.app import service as gallery_service
    return gallery_service
