from sqlalchemy import Column, Integer, String, DateTime, JSON, TIMESTAMP, Float, Boolean, UniqueConstraint
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()

class PriceCache(Base):
    __tablename__ = "price_cache"

    id = Column(Integer, primary_key=True, index=True)
    # Stored uppercase; one live row per symbol
    token_symbol = Column(String, unique=True, index=True, nullable=False)
    price_usd = Column(Float, nullable=False)
    price_idr = Column(Float, nullable=False)
    price_change_24h = Column(Float, nullable=True)
    volume_24h = Column(Float, nullable=True)
    market_cap = Column(Float, nullable=True)
    last_updated = Column(TIMESTAMP(timezone=True), nullable=False)

class ExchangeRateCache(Base):
    __tablename__ = "exchange_rate_cache"

    id = Column(Integer, primary_key=True, index=True)
    from_currency = Column(String, nullable=False)
    to_currency = Column(String, nullable=False)
    rate = Column(Float, nullable=False)
    last_updated = Column(TIMESTAMP(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint('from_currency', 'to_currency', name='uix_currency_pair'),
    )

class ApiUsageLog(Base):
    __tablename__ = "api_usage_logs"

    id = Column(Integer, primary_key=True, index=True)
    api_provider = Column(String, index=True, nullable=False) # cache, coinmarketcap, mock, error
    endpoint = Column(String, nullable=False)
    tokens_requested = Column(JSON, nullable=False, default=list)
    success = Column(Boolean, nullable=False)
    error_message = Column(String, nullable=True)
    response_time_ms = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

class Token(Base):
    __tablename__ = "tokens"

    id = Column(Integer, primary_key=True, index=True)
    symbol = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=True)
    cmc_id = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    price_idr = Column(Float, nullable=True)
    price_usd = Column(Float, nullable=True)
    price_change_24h = Column(Float, nullable=True)
    last_price_update = Column(DateTime(timezone=True), nullable=True)
