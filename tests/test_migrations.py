from __future__ import annotations

import types

import pytest
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine

from eventhub import database, storage
from eventhub.models import Base


def _patch_db(monkeypatch: pytest.MonkeyPatch, engine: Engine, db_path) -> None:
    monkeypatch.setattr(storage, "engine", engine)
    monkeypatch.setattr(database, "engine", engine)
    monkeypatch.setattr(database, "DATABASE_URL", str(engine.url))
    fake_settings = types.SimpleNamespace(database_path=db_path)
    monkeypatch.setattr(storage, "settings", fake_settings)


def _get_version(engine: Engine) -> str | None:
    with engine.connect() as conn:
        try:
            return conn.execute(
                text("select version_num from alembic_version")
            ).scalar()
        except Exception:
            return None


def test_upgrade_database_stamps_existing_db(monkeypatch, tmp_path):
    db_path = tmp_path / "existing.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    Base.metadata.create_all(bind=engine)  # existing schema without Alembic tracking
    _patch_db(monkeypatch, engine, db_path)

    actions = storage.upgrade_database(make_backup=False)

    assert "Stamped existing database to Alembic head" in actions
    assert _get_version(engine) == "0001_initial"


def test_upgrade_database_creates_fresh_schema(monkeypatch, tmp_path):
    db_path = tmp_path / "fresh.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    _patch_db(monkeypatch, engine, db_path)

    actions = storage.upgrade_database(make_backup=False)

    assert "Ran Alembic upgrade to head (fresh database)" in actions
    assert _get_version(engine) == "0001_initial"
    inspector = inspect(engine)
    for table in (
        "users",
        "events",
        "sub_events",
        "registrations",
        "liked_events",
        "notifications",
        "reports",
    ):
        assert inspector.has_table(table)
    columns = {col["name"] for col in inspector.get_columns("events")}
    assert {"attendees", "deletion_requested", "rejection_reason"} <= columns


def test_upgrade_database_backs_up_existing_file(monkeypatch, tmp_path):
    db_path = tmp_path / "backup.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    Base.metadata.create_all(bind=engine)
    _patch_db(monkeypatch, engine, db_path)

    actions = storage.upgrade_database(make_backup=True)

    assert any(action.startswith("Backup created at") for action in actions)
    assert (tmp_path / "backup.sqlite.bak").exists()


def test_alembic_config_keeps_percent_escaped_urls(monkeypatch):
    url = "sqlite:///data%20dir/%3Amemory%3A.sqlite"
    monkeypatch.setattr(storage, "engine", types.SimpleNamespace(url=url))

    alembic_config = storage._alembic_config()

    assert alembic_config.get_main_option("sqlalchemy.url") == url
