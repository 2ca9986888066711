from __future__ import annotations

import logging

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import inspect

import migrations
from database import Database
from errors import SchemaMigrationError
from main import create_app


def _broken(engine):
    raise RuntimeError("ALTER command denied")


def test_run_migrations_is_idempotent() -> None:
    db = Database("sqlite://")
    try:
        migrations.run_migrations(db.engine)
        migrations.run_migrations(db.engine)
        columns = {c["name"]: c for c in inspect(db.engine).get_columns("countries")}
        assert columns["currency_code"]["nullable"]
        assert columns["exchange_rate"]["nullable"]
        assert columns["estimated_gdp"]["nullable"]
        assert not columns["name"]["nullable"]
    finally:
        db.dispose()


def test_failed_required_step_raises_schema_migration_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(migrations, "MIGRATIONS", [("broken_step", _broken, True)])
    db = Database("sqlite://")
    try:
        with pytest.raises(SchemaMigrationError, match="broken_step"):
            migrations.run_migrations(db.engine)
    finally:
        db.dispose()


def test_failed_optional_step_logs_warning_and_continues(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    monkeypatch.setattr(
        migrations,
        "MIGRATIONS",
        [("relax_nullable_columns", _broken, False), ("create_tables", migrations.create_tables, True)],
    )
    db = Database("sqlite://")
    try:
        with caplog.at_level(logging.WARNING, logger="migrations"):
            migrations.run_migrations(db.engine)
        assert "countries" in inspect(db.engine).get_table_names()
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert any("relax_nullable_columns" in r.getMessage() for r in warnings)
    finally:
        db.dispose()


def test_app_starts_when_optional_step_fails(test_settings, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        migrations,
        "MIGRATIONS",
        [("create_tables", migrations.create_tables, True), ("relax_nullable_columns", _broken, False)],
    )
    app = create_app(settings=test_settings, database=Database("sqlite://"))
    with TestClient(app) as test_client:
        assert test_client.get("/status").json() == {"total_countries": 0, "last_refreshed_at": None}
