import time
from fastapi import FastAPI, Depends
from sqlalchemy import func
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from tokendesk.core.database import get_db
from tokendesk.core.config import get_settings
from tokendesk.db.init_db import init_db
from tokendesk.db.models import PriceCache
from tokendesk.api.routes import router as api_router
from tokendesk.services.price_cache import as_utc

from prometheus_fastapi_instrumentator import Instrumentator
from tokendesk.core.logging_config import setup_logging, get_logger

# Setup Structured Logging
setup_logging()
logger = get_logger("main")

settings = get_settings()
app = FastAPI(title=settings.PROJECT_NAME)

# Instrument Prometheus
Instrumentator().instrument(app).expose(app)

@app.on_event("startup")
async def startup_event():
    logger.info("startup_event", msg="Initializing DB", mock_mode=not settings.CMC_API_KEY)
    try:
        await init_db()
    except Exception as e:
        logger.error("db_init_failed", error=str(e))

@app.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    start_time = time.time()
    db_status = "unhealthy"
    cached_symbols = 0
    last_price_update = None

    try:
        await db.execute(select(1))
        db_status = "connected"

        result = await db.execute(select(func.count(PriceCache.id), func.max(PriceCache.last_updated)))
        cached_symbols, newest = result.one()
        if newest is not None:
            last_price_update = as_utc(newest).isoformat()
    except Exception as e:
        db_status = f"error: {str(e)}"

    latency = (time.time() - start_time) * 1000

    return {
        "status": "ok",
        "db_connectivity": db_status,
        "quote_source": "coinmarketcap" if settings.CMC_API_KEY else "mock",
        "cached_symbols": cached_symbols,
        "last_price_update": last_price_update,
        "latency_ms": round(latency, 2)
    }

app.include_router(api_router)
