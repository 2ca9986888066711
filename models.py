"""
Data models for both SQLAlchemy (database) and Pydantic (API validation).
"""

from sqlalchemy import Column, Integer, BigInteger, String, Float, DateTime, func
from pydantic import BaseModel, field_serializer
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from database import Base


# ============= SQLAlchemy Models (Database Tables) =============

class CountryDB(Base):
    """
    SQLAlchemy model representing the countries table.
    """
    __tablename__ = "countries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, unique=True, index=True)
    capital = Column(String(255), nullable=True)
    region = Column(String(100), nullable=True, index=True)
    population = Column(BigInteger, nullable=False, default=0)
    currency_code = Column(String(10), nullable=True, index=True)
    exchange_rate = Column(Float, nullable=True)
    estimated_gdp = Column(Float, nullable=True)
    flag_url = Column(String(500), nullable=True)
    last_refreshed_at = Column(DateTime, nullable=False, server_default=func.now())


# ============= Pydantic Models (API Validation) =============

def utc_isoformat(value: Optional[datetime]) -> Optional[str]:
    """ISO 8601 in UTC with millisecond precision and a Z suffix."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="milliseconds") + "Z"


class CountryResponse(BaseModel):
    """Response model for country data."""
    id: int
    name: str
    capital: Optional[str] = None
    region: Optional[str] = None
    population: int
    currency_code: Optional[str] = None
    exchange_rate: Optional[float] = None
    estimated_gdp: Optional[float] = None
    flag_url: Optional[str] = None
    last_refreshed_at: datetime

    class Config:
        from_attributes = True

    @field_serializer("last_refreshed_at")
    def serialize_last_refreshed_at(self, value: datetime) -> str:
        return utc_isoformat(value)


class StatusResponse(BaseModel):
    """Response model for status endpoint."""
    total_countries: int
    last_refreshed_at: Optional[datetime] = None

    @field_serializer("last_refreshed_at")
    def serialize_last_refreshed_at(self, value: Optional[datetime]) -> Optional[str]:
        return utc_isoformat(value)


class RefreshResponse(BaseModel):
    """Response model for refresh endpoint."""
    message: str
    total: int


class MessageResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    details: Optional[Any] = None


class ValidationErrorResponse(BaseModel):
    """Validation error response."""
    error: str = "Validation failed"
    details: Dict[str, str]
