"""
Exceptions raised by the service layer.

Each one maps to a single HTTP outcome in main.py.
"""

from typing import Any, Optional


class CountryApiError(Exception):
    """Base class for errors the API reports to clients."""

    status_code = 500
    error = "Internal server error"

    def __init__(self, details: Optional[Any] = None):
        super().__init__(details if details is not None else self.error)
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.error}
        if self.details is not None:
            body["details"] = self.details
        return body


class SourceUnavailableError(CountryApiError):
    """An external data source failed, timed out or returned a bad shape."""

    status_code = 503
    error = "External data source unavailable"


class TransactionFailedError(CountryApiError):
    """The refresh transaction was rolled back."""

    status_code = 500
    error = "Database transaction failed"

    def to_dict(self) -> dict:
        # the cause is logged server side only
        return {"error": self.error}


class ValidationError(CountryApiError):
    status_code = 400
    error = "Validation failed"


class CountryNotFoundError(CountryApiError):
    status_code = 404
    error = "Country not found"


class SchemaMigrationError(Exception):
    """Startup schema migration failed; the service must not serve traffic."""
