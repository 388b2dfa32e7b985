"""
API usage statistics for the admin dashboard: how often prices came from the cache
versus CoinMarketCap, error rate, and daily volume, computed from the usage log.
"""
from datetime import datetime, timedelta
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from tokendesk.db.models import ApiUsageLog, PriceCache
from tokendesk.ingestion.sources.coinmarketcap import PROVIDER as CMC_PROVIDER
from tokendesk.schemas.usage import (
    CacheSummary, DailyUsage, UsageLogEntry, UsageStatsResponse, UsageTotals,
)
from tokendesk.services.price_cache import as_utc
from tokendesk.services.price_service import CACHE_DURATION, CACHE_PROVIDER

RECENT_LOG_LIMIT = 50
DAILY_WINDOW_DAYS = 7
MONTH_WINDOW = timedelta(days=30)


def _percent(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def summarize_logs(logs: List[ApiUsageLog], now: datetime, monthly_limit: int) -> UsageTotals:
    day_ago = now - timedelta(days=1)
    hour_ago = now - timedelta(hours=1)

    today = [log for log in logs if as_utc(log.created_at) > day_ago]
    last_hour = [log for log in logs if as_utc(log.created_at) > hour_ago]

    total = len(today)
    successful = sum(1 for log in today if log.success)
    cache_hits = sum(1 for log in today if log.api_provider == CACHE_PROVIDER)
    avg_response = sum(log.response_time_ms or 0 for log in today) / total if total else 0

    return UsageTotals(
        total_calls=total,
        successful_calls=successful,
        failed_calls=total - successful,
        cache_hits=cache_hits,
        api_calls=sum(1 for log in today if log.api_provider == CMC_PROVIDER),
        avg_response_time=round(avg_response),
        calls_last_hour=len(last_hour),
        calls_today=total,
        calls_this_month=sum(1 for log in logs if log.api_provider == CMC_PROVIDER),
        monthly_limit=monthly_limit,
        cache_hit_rate=_percent(cache_hits, total),
        error_rate=_percent(total - successful, total),
    )


def daily_usage(logs: List[ApiUsageLog], now: datetime, days: int = DAILY_WINDOW_DAYS) -> List[DailyUsage]:
    usage = []
    for offset in range(days - 1, -1, -1):
        day = (now - timedelta(days=offset)).date()
        day_logs = [log for log in logs if as_utc(log.created_at).date() == day]
        usage.append(DailyUsage(
            date=day,
            cache_hits=sum(1 for log in day_logs if log.api_provider == CACHE_PROVIDER),
            api_calls=sum(1 for log in day_logs if log.api_provider == CMC_PROVIDER),
            total_calls=len(day_logs),
        ))
    return usage


def summarize_cache(rows: List[PriceCache], now: datetime) -> CacheSummary:
    updates = [as_utc(row.last_updated) for row in rows]
    fresh = sum(1 for ts in updates if now - ts < CACHE_DURATION)
    return CacheSummary(
        total_entries=len(rows),
        fresh_entries=fresh,
        stale_entries=len(rows) - fresh,
        oldest_update=min(updates) if updates else None,
        newest_update=max(updates) if updates else None,
    )


async def get_usage_stats(session: AsyncSession, now: datetime, monthly_limit: int) -> UsageStatsResponse:
    result = await session.execute(
        select(ApiUsageLog).where(ApiUsageLog.created_at >= now - MONTH_WINDOW)
    )
    logs = result.scalars().all()

    result = await session.execute(
        select(ApiUsageLog).order_by(ApiUsageLog.created_at.desc(), ApiUsageLog.id.desc()).limit(RECENT_LOG_LIMIT)
    )
    recent = result.scalars().all()

    result = await session.execute(select(PriceCache))
    cache_rows = result.scalars().all()

    return UsageStatsResponse(
        stats=summarize_logs(logs, now, monthly_limit),
        daily_usage=daily_usage(logs, now),
        recent_logs=[UsageLogEntry.model_validate(log) for log in recent],
        cache=summarize_cache(cache_rows, now),
        generated_at=now,
    )
