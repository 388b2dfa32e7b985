from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    PROJECT_NAME: str = "tokendesk-prices"
    DATABASE_URL: str
    DB_ECHO: bool = False

    # Market data
    CMC_API_KEY: Optional[str] = None
    CMC_BASE_URL: str = "https://pro-api.coinmarketcap.com/v1"
    EXCHANGE_RATE_URL: str = "https://api.exchangerate-api.com/v4/latest/USD"
    MONTHLY_API_LIMIT: int = 10000

    # Used by the bulk refresh to call the price endpoint over HTTP
    APP_URL: str = "http://localhost:8000"

    # Feature Flags
    COALESCE_REFRESHES: bool = False

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        extra="ignore"
    )

@lru_cache()
def get_settings():
    return Settings()
