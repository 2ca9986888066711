"""
Business logic for fetching, processing, and storing country data.
"""

import asyncio
import logging
import math
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx
from sqlalchemy import func
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from errors import SourceUnavailableError, TransactionFailedError, ValidationError
from models import CountryDB

logger = logging.getLogger(__name__)

MULTIPLIER_MIN = 1000
MULTIPLIER_MAX = 2000

MultiplierSource = Callable[[], float]
PostCommitHook = Callable[[Session], None]


@dataclass
class RefreshResult:
    """Outcome of a committed refresh cycle."""
    processed: int
    hook_errors: List[str] = field(default_factory=list)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============= External API Functions =============

async def _get_json(client: httpx.AsyncClient, url: str, source: str) -> Any:
    try:
        response = await client.get(url)
        response.raise_for_status()
        return response.json()
    except httpx.TimeoutException as e:
        raise SourceUnavailableError(f"Could not fetch data from {source} - timeout") from e
    except (httpx.HTTPError, ValueError) as e:
        raise SourceUnavailableError(f"Could not fetch data from {source}: {e}") from e


async def fetch_countries_data(client: httpx.AsyncClient, url: str) -> List[Dict]:
    """Fetch country data from REST Countries API."""
    data = await _get_json(client, url, "REST Countries API")
    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        raise SourceUnavailableError("Invalid countries response from REST Countries API")
    return data


async def fetch_exchange_rates(client: httpx.AsyncClient, url: str) -> Dict[str, Any]:
    """Fetch exchange rates from Exchange Rate API."""
    data = await _get_json(client, url, "Exchange Rate API")
    if not isinstance(data, dict) or data.get("result") != "success":
        raise SourceUnavailableError("Exchange Rate API did not report success")
    rates = data.get("rates")
    if not isinstance(rates, dict) or not rates:
        raise SourceUnavailableError("Invalid exchange data from Exchange Rate API")
    return rates


async def fetch_source_data(
    countries_url: str,
    rates_url: str,
    timeout: float = 10.0,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> Tuple[List[Dict], Dict[str, Any]]:
    """
    Fetch the country catalog and the exchange rates concurrently.

    Raises:
        SourceUnavailableError: if either request fails or returns a bad shape
    """
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        results = await asyncio.gather(
            fetch_countries_data(client, countries_url),
            fetch_exchange_rates(client, rates_url),
            return_exceptions=True
        )

    for result in results:
        if isinstance(result, BaseException):
            logger.warning("External fetch failed: %s", result)
            if isinstance(result, SourceUnavailableError):
                raise result
            raise SourceUnavailableError(str(result)) from result

    countries_data, exchange_rates = results
    return countries_data, exchange_rates


# ============= Data Processing Functions =============

def random_multiplier() -> int:
    """Default multiplier source: uniform integer in [1000, 2000]."""
    return random.randint(MULTIPLIER_MIN, MULTIPLIER_MAX)


def fixed_multiplier(value: float) -> MultiplierSource:
    """Multiplier source that always returns ``value``."""
    return lambda: value


def extract_capital(capital: Any) -> Optional[str]:
    """First element of a list of capitals, the scalar value, or None."""
    if isinstance(capital, (list, tuple)):
        capital = capital[0] if capital else None
    return capital or None


def extract_name(name: Any) -> Optional[str]:
    """Stripped display name, or None when blank."""
    if isinstance(name, str):
        return name.strip() or None
    return name or None


def extract_currency_code(currencies: Any) -> Optional[str]:
    """
    Extract first currency code from currencies array.

    Args:
        currencies: List of currency dictionaries

    Returns:
        First currency code or None if empty
    """
    if not isinstance(currencies, list) or not currencies:
        return None

    first_currency = currencies[0]
    if not isinstance(first_currency, dict):
        return None
    return first_currency.get("code") or None


def parse_population(value: Any) -> int:
    """Non-negative integer population; 0 when missing or invalid."""
    try:
        population = int(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(population, 0)


def _parse_rate(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        rate = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(rate) or rate < 0:
        return None
    return rate


def derive_rate_and_gdp(
    currency_code: Optional[str],
    population: int,
    exchange_rates: Dict[str, Any],
    multiplier_source: MultiplierSource = random_multiplier
) -> Tuple[Optional[float], Optional[float]]:
    """
    Decide exchange_rate and estimated_gdp for one country.

    - no currency: (None, 0)
    - currency without a usable rate: (None, None)
    - rate of zero: (0, None)
    - positive rate: (rate, population * multiplier / rate)
    """
    if not currency_code:
        return None, 0

    exchange_rate = _parse_rate(exchange_rates.get(currency_code))
    if exchange_rate is None:
        return None, None
    if exchange_rate == 0:
        return exchange_rate, None

    return exchange_rate, (population * multiplier_source()) / exchange_rate


def process_country_data(
    country: Dict,
    exchange_rates: Dict[str, Any],
    multiplier_source: MultiplierSource = random_multiplier
) -> Dict:
    """
    Process raw country data and combine with exchange rate.

    Args:
        country: Raw country data from API
        exchange_rates: Dictionary of currency rates
        multiplier_source: Supplies the GDP multiplier

    Returns:
        Processed country data ready for database
    """
    population = parse_population(country.get("population"))
    currency_code = extract_currency_code(country.get("currencies"))
    exchange_rate, estimated_gdp = derive_rate_and_gdp(
        currency_code, population, exchange_rates, multiplier_source
    )

    return {
        "name": extract_name(country.get("name")),
        "capital": extract_capital(country.get("capital")),
        "region": country.get("region") or None,
        "population": population,
        "currency_code": currency_code,
        "exchange_rate": exchange_rate,
        "estimated_gdp": estimated_gdp,
        "flag_url": country.get("flag") or None
    }


# ============= Database Operations =============

def upsert_country(db: Session, country_data: Dict, refreshed_at: datetime) -> CountryDB:
    """
    Insert or update country in the current transaction.
    Matches by name (case-insensitive). Does not commit.

    Args:
        db: Database session
        country_data: Processed country data
        refreshed_at: Timestamp of the refresh cycle

    Returns:
        CountryDB instance
    """
    existing = None
    if country_data.get("name"):
        existing = get_country_by_name(db, country_data["name"])

    if existing:
        for key, value in country_data.items():
            setattr(existing, key, value)
        existing.last_refreshed_at = refreshed_at
        db.flush()
        return existing

    new_country = CountryDB(**country_data, last_refreshed_at=refreshed_at)
    db.add(new_country)
    db.flush()
    return new_country


def run_post_commit_hooks(db: Session, hooks: Sequence[PostCommitHook]) -> List[str]:
    """Run every hook; failures are logged and returned, never raised."""
    errors = []
    for hook in hooks:
        hook_name = getattr(hook, "__name__", repr(hook))
        try:
            hook(db)
        except Exception as e:
            logger.exception("Post-commit hook %s failed", hook_name)
            errors.append(f"{hook_name}: {e}")
    return errors


def apply_refresh(
    db: Session,
    records: Sequence[Dict],
    post_commit_hooks: Sequence[PostCommitHook] = ()
) -> RefreshResult:
    """
    Upsert every record in one transaction, commit, then run the hooks.

    Raises:
        TransactionFailedError: if any upsert or the commit fails; nothing is written
    """
    refreshed_at = utcnow()
    processed = 0

    try:
        for record in records:
            upsert_country(db, record, refreshed_at)
            processed += 1
        db.commit()
    except PoolTimeoutError:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        logger.exception(
            "Refresh transaction rolled back after %d of %d records", processed, len(records)
        )
        raise TransactionFailedError(str(e)) from e

    logger.info("Refresh committed %d countries", processed)
    hook_errors = run_post_commit_hooks(db, post_commit_hooks)
    return RefreshResult(processed=processed, hook_errors=hook_errors)


async def refresh_countries(
    db: Session,
    settings,
    multiplier_source: MultiplierSource = random_multiplier,
    post_commit_hooks: Sequence[PostCommitHook] = ()
) -> RefreshResult:
    """Run one refresh cycle: fetch, derive, upsert all, commit, hooks."""
    countries_data, exchange_rates = await fetch_source_data(
        settings.COUNTRIES_API_URL,
        settings.EXCHANGE_RATE_API_URL,
        timeout=settings.FETCH_TIMEOUT_SECONDS
    )

    records = [
        process_country_data(country, exchange_rates, multiplier_source)
        for country in countries_data
    ]
    return apply_refresh(db, records, post_commit_hooks)


def validate_name(name: Optional[str]) -> str:
    if name is None or not name.strip():
        raise ValidationError({"name": "is required"})
    return name


def get_all_countries(
    db: Session,
    region: Optional[str] = None,
    currency: Optional[str] = None,
    sort: Optional[str] = None
) -> List[CountryDB]:
    """
    Get all countries with optional filtering and sorting.

    GDP sorts put rows without an estimated_gdp last. Unknown sort
    values keep insertion order.
    """
    query = db.query(CountryDB)

    if region:
        query = query.filter(func.lower(CountryDB.region) == func.lower(region))

    if currency:
        query = query.filter(func.lower(CountryDB.currency_code) == func.lower(currency))

    if sort == "gdp_desc":
        query = query.order_by(CountryDB.estimated_gdp.is_(None), CountryDB.estimated_gdp.desc())
    elif sort == "gdp_asc":
        query = query.order_by(CountryDB.estimated_gdp.is_(None), CountryDB.estimated_gdp.asc())
    elif sort == "name_asc":
        query = query.order_by(CountryDB.name.asc())
    elif sort == "name_desc":
        query = query.order_by(CountryDB.name.desc())

    return query.order_by(CountryDB.id).all()


def get_country_by_name(db: Session, name: str) -> Optional[CountryDB]:
    """
    Get country by name (case-insensitive).

    Args:
        db: Database session
        name: Country name

    Returns:
        CountryDB instance or None
    """
    return db.query(CountryDB).filter(
        func.lower(CountryDB.name) == func.lower(name)
    ).first()


def delete_country_by_name(db: Session, name: str) -> bool:
    """
    Delete country by name (case-insensitive).

    Returns:
        True if deleted, False if not found
    """
    country = get_country_by_name(db, name)
    if country:
        db.delete(country)
        db.commit()
        return True
    return False


def get_database_status(db: Session) -> Tuple[int, Optional[datetime]]:
    """
    Get total countries and last refresh timestamp.

    Returns:
        Tuple of (total_countries, last_refreshed_at)
    """
    total = db.query(func.count(CountryDB.id)).scalar()
    last_refresh = db.query(func.max(CountryDB.last_refreshed_at)).scalar()
    return total or 0, last_refresh


def get_top_countries_by_gdp(db: Session, limit: int = 5) -> List[CountryDB]:
    """Get top countries by estimated GDP, skipping rows without one."""
    return db.query(CountryDB).filter(
        CountryDB.estimated_gdp.isnot(None)
    ).order_by(
        CountryDB.estimated_gdp.desc()
    ).limit(limit).all()
