"""
Price Cache Store: last known quote per token symbol.
The orchestrator only sees the `PriceCacheStore` interface; the SQLAlchemy
implementation below is what the API wires in.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from tokendesk.core.logging_config import get_logger
from tokendesk.db.models import PriceCache
from tokendesk.db.upsert import insert_for
from tokendesk.schemas.quotes import WriteFailed

logger = get_logger("price_cache")


def as_utc(ts: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass
class CachedQuote:
    symbol: str
    price_usd: float
    price_idr: float
    change_24h: float
    volume_24h: float
    market_cap: float
    last_updated: datetime


class PriceCacheStore(Protocol):
    async def get_many(self, symbols: List[str]) -> Dict[str, CachedQuote]: ...

    async def upsert(self, quote: CachedQuote) -> Optional[WriteFailed]: ...


def _to_cached_quote(row: PriceCache) -> CachedQuote:
    return CachedQuote(
        symbol=row.token_symbol,
        price_usd=float(row.price_usd),
        price_idr=float(row.price_idr),
        change_24h=float(row.price_change_24h or 0),
        volume_24h=float(row.volume_24h or 0),
        market_cap=float(row.market_cap or 0),
        last_updated=as_utc(row.last_updated),
    )


class SqlPriceCacheStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_many(self, symbols: List[str]) -> Dict[str, CachedQuote]:
        """A failed read is logged and treated as an empty cache."""
        try:
            result = await self.session.execute(
                select(PriceCache).where(PriceCache.token_symbol.in_([s.upper() for s in symbols]))
            )
            rows = result.scalars().all()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("price_cache_read_failed", symbols=symbols, error=str(e))
            return {}
        return {row.token_symbol: _to_cached_quote(row) for row in rows}

    async def upsert(self, quote: CachedQuote) -> Optional[WriteFailed]:
        stmt = insert_for(self.session, PriceCache).values(
            token_symbol=quote.symbol.upper(),
            price_usd=quote.price_usd,
            price_idr=quote.price_idr,
            price_change_24h=quote.change_24h,
            volume_24h=quote.volume_24h,
            market_cap=quote.market_cap,
            last_updated=quote.last_updated,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[PriceCache.token_symbol],
            set_={
                "price_usd": stmt.excluded.price_usd,
                "price_idr": stmt.excluded.price_idr,
                "price_change_24h": stmt.excluded.price_change_24h,
                "volume_24h": stmt.excluded.volume_24h,
                "market_cap": stmt.excluded.market_cap,
                "last_updated": stmt.excluded.last_updated,
            },
        )
        try:
            await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            return WriteFailed(str(e))
        return None
