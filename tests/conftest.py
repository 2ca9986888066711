from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Callable, Generator

import httpx
import pytest
from fastapi.testclient import TestClient

import services
from config import Settings
from database import Database
from main import create_app
from migrations import run_migrations
from models import CountryDB

COUNTRIES_HOST = "restcountries.com"
RATES_HOST = "open.er-api.com"

SAMPLE_COUNTRIES = [
    {
        "name": "Nigeria",
        "capital": "Abuja",
        "region": "Africa",
        "population": 206139589,
        "flag": "https://flagcdn.com/ng.svg",
        "currencies": [{"code": "NGN", "name": "Nigerian naira", "symbol": "₦"}],
    },
    {
        "name": "Ghana",
        "capital": "Accra",
        "region": "Africa",
        "population": 31072940,
        "flag": "https://flagcdn.com/gh.svg",
        "currencies": [{"code": "GHS", "name": "Ghanaian cedi", "symbol": "₵"}],
    },
    {
        "name": "Antarctica",
        "region": "Polar",
        "population": 1000,
        "flag": "https://flagcdn.com/aq.svg",
    },
    {
        "name": "Freedonia",
        "capital": ["Freedon"],
        "region": "Europe",
        "population": 5000,
        "currencies": [{"code": "FRD"}],
    },
]

SAMPLE_RATES = {"result": "success", "base_code": "USD", "rates": {"USD": 1, "NGN": 1600.23, "GHS": 15.34}}


@pytest.fixture()
def test_settings(tmp_path: Path) -> Settings:
    cfg = Settings()
    cfg.DATABASE_URL = "sqlite://"
    cfg.IMAGE_CACHE_DIR = str(tmp_path / "cache")
    cfg.FETCH_TIMEOUT_SECONDS = 1.0
    return cfg


@pytest.fixture()
def database() -> Generator[Database, None, None]:
    db = Database("sqlite://")
    run_migrations(db.engine)
    yield db
    db.dispose()


@pytest.fixture()
def client(test_settings: Settings, database: Database) -> Generator[TestClient, None, None]:
    app = create_app(
        settings=test_settings,
        database=database,
        multiplier_source=services.fixed_multiplier(1500),
    )
    with TestClient(app) as test_client:
        yield test_client


def seed(database: Database, *rows: dict) -> None:
    session = database.session()
    try:
        for row in rows:
            session.add(CountryDB(last_refreshed_at=datetime(2025, 1, 1), **row))
        session.commit()
    finally:
        session.close()


def snapshot(database: Database) -> list[tuple]:
    session = database.session()
    try:
        return [
            (c.name, c.population, c.currency_code, c.exchange_rate, c.estimated_gdp, c.last_refreshed_at)
            for c in session.query(CountryDB).order_by(CountryDB.id)
        ]
    finally:
        session.close()


def json_response(payload, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json=payload)


def make_handler(countries=None, rates=None) -> Callable[[httpx.Request], httpx.Response]:
    """MockTransport handler serving both sources; pass a callable to override one."""
    countries = SAMPLE_COUNTRIES if countries is None else countries
    rates = SAMPLE_RATES if rates is None else rates

    def handler(request: httpx.Request) -> httpx.Response:
        source = countries if request.url.host == COUNTRIES_HOST else rates
        if callable(source):
            return source(request)
        return json_response(source)

    return handler


@pytest.fixture()
def mock_sources(monkeypatch: pytest.MonkeyPatch):
    """Route the refresh fetches through an httpx.MockTransport."""
    original = services.fetch_source_data

    def install(handler: Callable[[httpx.Request], httpx.Response]) -> None:
        async def fake_fetch(countries_url, rates_url, timeout=10.0, transport=None):
            return await original(
                countries_url, rates_url, timeout=timeout, transport=httpx.MockTransport(handler)
            )

        monkeypatch.setattr(services, "fetch_source_data", fake_fetch)

    return install
