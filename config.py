"""
Configuration management for the application.
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _database_url_from_parts() -> str:
    """Build a MySQL URL from the DB_* variables."""
    user = os.getenv("DB_USER", "country_user")
    password = os.getenv("DB_PASSWORD", "password")
    host = os.getenv("DB_HOST", "localhost")
    port = os.getenv("DB_PORT", "3306")
    name = os.getenv("DB_NAME", "country_currency")
    return f"mysql+pymysql://{user}:{password}@{host}:{port}/{name}"


class Settings:
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL") or _database_url_from_parts()
    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "20"))
    DB_POOL_TIMEOUT: int = int(os.getenv("DB_POOL_TIMEOUT", "30"))

    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8080"))
    DEBUG: bool = os.getenv("DEBUG", "False").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # External APIs
    COUNTRIES_API_URL: str = os.getenv(
        "COUNTRIES_API_URL",
        "https://restcountries.com/v2/all?fields=name,capital,region,population,flag,currencies"
    )
    EXCHANGE_RATE_API_URL: str = os.getenv(
        "EXCHANGE_RATE_API_URL",
        "https://open.er-api.com/v6/latest/USD"
    )
    FETCH_TIMEOUT_SECONDS: float = float(os.getenv("FETCH_TIMEOUT_SECONDS", "10"))

    # Image Cache
    BASE_DIR = os.path.dirname(os.path.abspath(__file__))
    IMAGE_CACHE_DIR: str = os.getenv("IMAGE_CACHE_DIR", os.path.join(BASE_DIR, "cache"))
    IMAGE_FILE_NAME: str = "summary.png"

    # App Metadata
    APP_NAME: str = "Country Currency API"
    APP_VERSION: str = "1.0.0"

    @property
    def IMAGE_PATH(self) -> str:
        return os.path.join(self.IMAGE_CACHE_DIR, self.IMAGE_FILE_NAME)

    def database_host(self) -> str:
        """Database location without credentials, safe to log."""
        if "@" in self.DATABASE_URL:
            return self.DATABASE_URL.split("@", 1)[1]
        return self.DATABASE_URL


settings = Settings()
