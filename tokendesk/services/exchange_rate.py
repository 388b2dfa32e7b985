"""
Exchange-Rate Provider: USD -> IDR, cached in the database for 4 hours.
Never raises; the hardcoded fallback covers every failure.
"""
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from tokendesk.core.logging_config import get_logger
from tokendesk.db.models import ExchangeRateCache
from tokendesk.db.upsert import insert_for
from tokendesk.ingestion.sources.exchange_rate_api import EXCHANGE_RATE_URL, fetch_usd_rate
from tokendesk.schemas.quotes import FetchFailed, WriteFailed
from tokendesk.services.price_cache import as_utc

logger = get_logger("exchange_rate")

FROM_CURRENCY = "USD"
TO_CURRENCY = "IDR"
RATE_CACHE_DURATION = timedelta(hours=4)
FALLBACK_USD_TO_IDR = 15800.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExchangeRateProvider:
    def __init__(
        self,
        session: AsyncSession,
        client: httpx.AsyncClient,
        url: str = EXCHANGE_RATE_URL,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.client = client
        self.url = url
        self.clock = clock

    async def get_usd_to_idr(self) -> float:
        now = self.clock()
        cached = await self._read_cached()
        if cached is not None and now - as_utc(cached.last_updated) <= RATE_CACHE_DURATION:
            return float(cached.rate)

        result = await fetch_usd_rate(self.client, TO_CURRENCY, self.url)
        if isinstance(result, FetchFailed):
            logger.warning("exchange_rate_fallback", error=result.message, rate=FALLBACK_USD_TO_IDR)
            return FALLBACK_USD_TO_IDR

        written = await self._upsert(result.rate, now)
        if isinstance(written, WriteFailed):
            logger.warning("exchange_rate_cache_write_failed", error=written.message)
        return result.rate

    async def _read_cached(self) -> Optional[ExchangeRateCache]:
        try:
            result = await self.session.execute(
                select(ExchangeRateCache).where(
                    ExchangeRateCache.from_currency == FROM_CURRENCY,
                    ExchangeRateCache.to_currency == TO_CURRENCY,
                )
            )
            return result.scalars().first()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("exchange_rate_read_failed", error=str(e))
            return None

    async def _upsert(self, rate: float, now: datetime) -> Optional[WriteFailed]:
        stmt = insert_for(self.session, ExchangeRateCache).values(
            from_currency=FROM_CURRENCY,
            to_currency=TO_CURRENCY,
            rate=rate,
            last_updated=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ExchangeRateCache.from_currency, ExchangeRateCache.to_currency],
            set_={"rate": stmt.excluded.rate, "last_updated": stmt.excluded.last_updated},
        )
        try:
            await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            return WriteFailed(str(e))
        return None
