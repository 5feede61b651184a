"""Test fixtures for the household duty service."""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient


def _reset_database(db_path: Path) -> None:
    from household_service import db
    from household_service.db import Base

    db.configure_engine(f"sqlite:///{db_path}")
    assert db.engine is not None
    Base.metadata.drop_all(bind=db.engine)
    Base.metadata.create_all(bind=db.engine)


@pytest.fixture
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("HOUSEHOLD_DB_PATH", str(db_path))
    monkeypatch.setenv("HOUSEHOLD_API_TOKEN", "test-token")

    from household_service.main import app

    _reset_database(db_path)

    with TestClient(app) as api_client:
        yield api_client


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"x-household-token": "test-token"}


@pytest.fixture
def session_factory(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    db_path = tmp_path / "coordinator.db"
    monkeypatch.setenv("HOUSEHOLD_DB_PATH", str(db_path))
    _reset_database(db_path)

    from household_service import db

    assert db.SessionLocal is not None
    return db.SessionLocal


@pytest.fixture
def session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
