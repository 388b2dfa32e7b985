"""
HTTP surface of the price service.
/api/crypto-prices is the single read path for token prices; the bulk refresh and
the usage statistics endpoints sit on top of it.
"""
from datetime import datetime, timezone
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from tokendesk.core.config import get_settings
from tokendesk.core.database import get_db
from tokendesk.core.errors import InvalidRequest
from tokendesk.core.logging_config import get_logger
from tokendesk.ingestion.sources.coinmarketcap import CoinMarketCapFetcher
from tokendesk.schemas.prices import PriceResponse
from tokendesk.schemas.usage import UsageStatsResponse
from tokendesk.services.exchange_rate import ExchangeRateProvider
from tokendesk.services.price_cache import SqlPriceCacheStore
from tokendesk.services.price_service import PriceService
from tokendesk.services.single_flight import RefreshCoalescer
from tokendesk.services.token_prices import update_token_prices
from tokendesk.services.usage_logger import UsageLogger
from tokendesk.services.usage_stats import get_usage_stats

logger = get_logger("api")

router = APIRouter(prefix="/api")

# Only consulted when COALESCE_REFRESHES is on
coalescer = RefreshCoalescer()


async def get_http_client():
    async with httpx.AsyncClient() as client:
        yield client


async def get_internal_client():
    async with httpx.AsyncClient(base_url=get_settings().APP_URL) as client:
        yield client


def get_price_service(
    db: AsyncSession = Depends(get_db),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> PriceService:
    settings = get_settings()
    fetcher = None
    if settings.CMC_API_KEY:
        fetcher = CoinMarketCapFetcher(client, settings.CMC_API_KEY, settings.CMC_BASE_URL)
    return PriceService(
        store=SqlPriceCacheStore(db),
        rates=ExchangeRateProvider(db, client, settings.EXCHANGE_RATE_URL),
        usage=UsageLogger(db),
        fetcher=fetcher,
        coalescer=coalescer if settings.COALESCE_REFRESHES else None,
    )


@router.get("/crypto-prices", response_model=PriceResponse)
async def get_crypto_prices(
    symbols: Optional[str] = Query(None, description="Comma-separated symbols, e.g. BTC,ETH"),
    force: Optional[str] = Query(None, description="'true' bypasses the cache"),
    service: PriceService = Depends(get_price_service),
):
    requested = symbols.split(",") if symbols else []
    force_refresh = force == "true"

    try:
        lookup = await service.get_prices(requested, force_refresh=force_refresh)
    except InvalidRequest as e:
        return JSONResponse(status_code=400, content={"success": False, "message": str(e)})
    except Exception as e:
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "message": str(e),
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "source": "error",
            },
        )

    cached_count = len(lookup.cached_symbols)
    response = PriceResponse(
        data=lookup.data,
        timestamp=datetime.now(timezone.utc),
        usd_to_idr_rate=lookup.usd_to_idr_rate,
        source="cache" if lookup.cache_hit else "mixed",
        cache_hit=lookup.cache_hit,
        refreshed_symbols=lookup.refreshed_symbols,
        cached_symbols=lookup.cached_symbols,
        api_calls_saved=cached_count,
        message=(
            "All data served from cache" if lookup.cache_hit
            else f"{cached_count} symbols from cache, {len(lookup.refreshed_symbols)} refreshed from API"
        ),
    )
    # Serialized by hand so the variant tags stay out of the payload
    return JSONResponse(content=response.model_dump(mode="json"))


@router.post("/update-token-prices")
async def post_update_token_prices(
    db: AsyncSession = Depends(get_db),
    client: httpx.AsyncClient = Depends(get_internal_client),
):
    """
    Refreshes price_idr / price_usd / price_change_24h on every active token.
    """
    try:
        return await update_token_prices(db, client)
    except Exception as e:
        logger.error("token_price_update_failed", error=str(e))
        return JSONResponse(status_code=500, content={"error": "Failed to update token prices", "details": str(e)})


@router.get("/usage-stats", response_model=UsageStatsResponse)
async def get_api_usage_stats(db: AsyncSession = Depends(get_db)):
    settings = get_settings()
    return await get_usage_stats(db, datetime.now(timezone.utc), settings.MONTHLY_API_LIMIT)
