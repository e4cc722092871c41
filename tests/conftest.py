"""
Pytest configuration and shared fixtures.

Every test gets its own sqlite file under tmp_path, and the module-level
settings are pointed at it so the API and reconcile() use the same database.
"""
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from contact_store import ContactStore
from db_models import LinkPrecedence
from db_setup import get_db_connection, init_db, transaction
from settings import settings

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = str(tmp_path / "contacts.db")
    monkeypatch.setattr(settings, "db_path", path)
    init_db(path)
    return path


@pytest.fixture
def client(db_path):
    from main import app
    return TestClient(app)


@pytest.fixture
def seed(db_path):
    """Insert a contact directly; `minutes` offsets createdAt from a fixed origin."""

    def _seed(email=None, phone=None, linked_id=None, minutes=0, precedence=None):
        if precedence is None:
            precedence = LinkPrecedence.SECONDARY if linked_id else LinkPrecedence.PRIMARY
        with transaction(db_path) as conn:
            return ContactStore(conn).create_contact(
                email=email,
                phone=phone,
                linked_id=linked_id,
                precedence=precedence,
                created_at=T0 + timedelta(minutes=minutes),
            )

    return _seed


@pytest.fixture
def rows(db_path):
    """All rows, live or not, ordered by id."""

    def _rows():
        conn = get_db_connection(db_path)
        try:
            return [dict(r) for r in conn.execute("SELECT * FROM Contact ORDER BY id").fetchall()]
        finally:
            conn.close()

    return _rows
