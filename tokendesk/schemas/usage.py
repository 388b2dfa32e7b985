from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel

class UsageLogEntry(BaseModel):
    id: int
    api_provider: str
    endpoint: str
    tokens_requested: List[str]
    success: bool
    error_message: Optional[str] = None
    response_time_ms: int
    created_at: datetime

    class Config:
        from_attributes = True

class UsageTotals(BaseModel):
    total_calls: int
    successful_calls: int
    failed_calls: int
    cache_hits: int
    api_calls: int
    avg_response_time: int
    calls_last_hour: int
    calls_today: int
    calls_this_month: int
    monthly_limit: int
    cache_hit_rate: float
    error_rate: float

class DailyUsage(BaseModel):
    date: date
    cache_hits: int
    api_calls: int
    total_calls: int

class CacheSummary(BaseModel):
    total_entries: int
    fresh_entries: int
    stale_entries: int
    oldest_update: Optional[datetime] = None
    newest_update: Optional[datetime] = None

class UsageStatsResponse(BaseModel):
    stats: UsageTotals
    daily_usage: List[DailyUsage]
    recent_logs: List[UsageLogEntry]
    cache: CacheSummary
    generated_at: datetime
