import os
import tempfile
from typing import Generator

# Set test environment variables FIRST
os.environ["PLAID_ENV"] = "sandbox"
os.environ["SYNC_SCHEDULER_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient

from database.supabase import orm
from integrations.plaid import get_plaid_client
from factories import FakePlaidClient


@pytest.fixture(scope="function")
def setup_test_db():
    """Set up a fresh SQLite database for each test."""
    # Create a temporary file for the SQLite database
    db_fd, db_path = tempfile.mkstemp(suffix='.db')
    os.close(db_fd)  # Close the file descriptor, we just need the path

    # Set the database URL to use SQLite
    db_url = f"sqlite://{db_path}"
    os.environ["SUPABASE_DB_URL"] = db_url

    # Run migrations to set up the schema
    orm.run_migrations()

    yield db_url

    # Clean up the temporary database file
    try:
        os.unlink(db_path)
    except OSError:
        pass


@pytest.fixture(scope="function")
def plaid_client() -> FakePlaidClient:
    return FakePlaidClient()


@pytest.fixture(scope="function")
def client(setup_test_db, plaid_client) -> Generator:
    """Create a test client with a fresh database and a scripted Plaid client."""
    from main import app

    app.dependency_overrides[get_plaid_client] = lambda: plaid_client
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
