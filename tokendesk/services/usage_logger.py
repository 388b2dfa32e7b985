from datetime import datetime, timezone
from typing import Callable, List, Optional

from prometheus_client import Counter
from sqlalchemy.ext.asyncio import AsyncSession

from tokendesk.core.logging_config import get_logger
from tokendesk.db.models import ApiUsageLog

logger = get_logger("usage_logger")

USAGE_LOG_ENTRIES = Counter('api_usage_log_entries_total', 'Price requests recorded in the usage log', ['provider', 'success'])


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UsageLogger:
    """
    Best-effort audit sink for price requests.
    A failed write is rolled back and reported on the log stream only.
    """

    def __init__(self, session: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.clock = clock

    async def record(
        self,
        provider: str,
        endpoint: str,
        symbols: List[str],
        success: bool,
        error: Optional[str],
        latency_ms: int,
    ) -> None:
        USAGE_LOG_ENTRIES.labels(provider=provider, success=str(success).lower()).inc()
        try:
            self.session.add(ApiUsageLog(
                api_provider=provider,
                endpoint=endpoint,
                tokens_requested=list(symbols),
                success=success,
                error_message=error,
                response_time_ms=latency_ms,
                created_at=self.clock(),
            ))
            await self.session.commit()
        except Exception as e:
            logger.error("usage_log_write_failed", provider=provider, error=str(e))
            try:
                await self.session.rollback()
            except Exception as rollback_error:
                logger.error("usage_log_rollback_failed", error=str(rollback_error))
