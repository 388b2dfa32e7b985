"""
Answers token price requests from the price cache and refreshes only what is stale.

A symbol is served from cache when its row is younger than one hour (strictly) and the
caller did not force a refresh. Everything else goes out in a single batched
CoinMarketCap call, or through the mock generator when no API key is configured.
Once input is validated the lookup always produces an answer per symbol: upstream
failures fall back to stale rows or to zero-filled placeholders.
"""
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Union

from prometheus_client import Counter

from tokendesk.core.errors import InvalidRequest
from tokendesk.core.logging_config import get_logger
from tokendesk.ingestion.sources import coinmarketcap, mock_quotes
from tokendesk.ingestion.sources.mock_quotes import MockQuoteGenerator
from tokendesk.schemas.prices import (
    CacheHit, MockData, Refreshed, StaleFallback, SymbolQuote, Unavailable,
)
from tokendesk.schemas.quotes import FetchFailed, ProviderQuote, QuoteBatch, WriteFailed
from tokendesk.services.price_cache import CachedQuote, PriceCacheStore
from tokendesk.services.single_flight import RefreshCoalescer

logger = get_logger("price_service")

CACHE_DURATION = timedelta(hours=1)
ENDPOINT = "/crypto-prices"
CACHE_PROVIDER = "cache"
ERROR_PROVIDER = "error"

PRICE_REQUESTS = Counter('price_requests_total', 'Price lookups by outcome', ['source'])
SYMBOLS_SERVED = Counter('price_symbols_served_total', 'Symbols answered', ['origin'])
PROVIDER_CALLS = Counter('price_provider_calls_total', 'Refresh passes by provider', ['provider', 'success'])


class RateProvider(Protocol):
    async def get_usd_to_idr(self) -> float: ...


class QuoteFetcher(Protocol):
    async def fetch(self, symbols: List[str]) -> Union[QuoteBatch, FetchFailed]: ...


class UsageRecorder(Protocol):
    async def record(self, provider: str, endpoint: str, symbols: List[str], success: bool,
                     error: Optional[str], latency_ms: int) -> None: ...


@dataclass
class RefreshOutcome:
    quotes: Dict[str, SymbolQuote]
    provider: str
    success: bool = True
    error: Optional[str] = None


@dataclass
class PriceLookup:
    data: Dict[str, SymbolQuote]
    cached_symbols: List[str] = field(default_factory=list)
    refreshed_symbols: List[str] = field(default_factory=list)
    usd_to_idr_rate: Optional[float] = None
    provider: str = CACHE_PROVIDER

    @property
    def cache_hit(self) -> bool:
        return not self.refreshed_symbols


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_symbols(symbols: Iterable[str]) -> List[str]:
    normalized: List[str] = []
    for symbol in symbols:
        symbol = (symbol or "").strip().upper()
        if symbol and symbol not in normalized:
            normalized.append(symbol)
    return normalized


def round_fixed(value: float, places: int) -> float:
    """Fixed-point decimal rounding, half up."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(repr(float(value))).quantize(quantum, rounding=ROUND_HALF_UP))


def is_fresh(last_updated: datetime, now: datetime) -> bool:
    return now - last_updated < CACHE_DURATION


def _elapsed_ms(start: float) -> int:
    return int((time.time() - start) * 1000)


class PriceService:
    def __init__(
        self,
        store: PriceCacheStore,
        rates: RateProvider,
        usage: UsageRecorder,
        fetcher: Optional[QuoteFetcher] = None,
        mock_generator: Optional[MockQuoteGenerator] = None,
        coalescer: Optional[RefreshCoalescer] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        # No fetcher means no API key: stale symbols get mock data
        self.store = store
        self.rates = rates
        self.usage = usage
        self.fetcher = fetcher
        self.mock_generator = mock_generator or MockQuoteGenerator()
        self.coalescer = coalescer
        self.clock = clock

    async def get_prices(self, symbols: Iterable[str], force_refresh: bool = False) -> PriceLookup:
        start_time = time.time()
        requested = normalize_symbols(symbols)
        if not requested:
            raise InvalidRequest("No symbols provided")

        try:
            return await self._lookup(requested, force_refresh, start_time)
        except Exception as e:
            logger.error("price_lookup_failed", symbols=requested, error=str(e))
            PRICE_REQUESTS.labels(source=ERROR_PROVIDER).inc()
            await self.usage.record(ERROR_PROVIDER, ENDPOINT, [], False, str(e), _elapsed_ms(start_time))
            raise

    async def _lookup(self, requested: List[str], force_refresh: bool, start_time: float) -> PriceLookup:
        cached_rows = await self.store.get_many(requested)
        now = self.clock()

        fresh: Dict[str, SymbolQuote] = {}
        stale: List[str] = []
        for symbol in requested:
            row = cached_rows.get(symbol)
            if row is not None and not force_refresh and is_fresh(row.last_updated, now):
                fresh[symbol] = CacheHit(
                    usd=row.price_usd,
                    idr=row.price_idr,
                    change_24h=row.change_24h,
                    volume_24h=row.volume_24h,
                    market_cap=row.market_cap,
                    last_updated=row.last_updated,
                )
            else:
                stale.append(symbol)

        SYMBOLS_SERVED.labels(origin="cache").inc(len(fresh))

        if not stale:
            PRICE_REQUESTS.labels(source=CACHE_PROVIDER).inc()
            await self.usage.record(CACHE_PROVIDER, ENDPOINT, requested, True, None, _elapsed_ms(start_time))
            return PriceLookup(data=fresh, cached_symbols=list(fresh))

        rate = await self.rates.get_usd_to_idr()
        outcome = await self._refresh(stale, rate, cached_rows)

        SYMBOLS_SERVED.labels(origin="refresh").inc(len(outcome.quotes))
        PRICE_REQUESTS.labels(source="mixed").inc()
        await self.usage.record(outcome.provider, ENDPOINT, stale, outcome.success, outcome.error, _elapsed_ms(start_time))

        return PriceLookup(
            data={**fresh, **outcome.quotes},
            cached_symbols=list(fresh),
            refreshed_symbols=stale,
            usd_to_idr_rate=rate,
            provider=outcome.provider,
        )

    async def _refresh(self, stale: List[str], rate: float, cached_rows: Dict[str, CachedQuote]) -> RefreshOutcome:
        if self.coalescer is None:
            return await self._refresh_batch(stale, rate, cached_rows)

        async def refresh_owned(owned: List[str]):
            outcome = await self._refresh_batch(owned, rate, cached_rows)
            return outcome.quotes, outcome

        quotes, outcome, _ = await self.coalescer.run(stale, refresh_owned)
        if outcome is None:
            # Every symbol was refreshed by a concurrent request
            return RefreshOutcome(quotes=quotes, provider=CACHE_PROVIDER)
        outcome.quotes = quotes
        return outcome

    async def _refresh_batch(self, stale: List[str], rate: float, cached_rows: Dict[str, CachedQuote]) -> RefreshOutcome:
        if self.fetcher is None:
            quotes: Dict[str, SymbolQuote] = {}
            for symbol in stale:
                quote = self.mock_generator.generate(symbol)
                quotes[quote.symbol] = MockData(**self._values(quote, rate))
                await self._persist(quote.symbol, quotes[quote.symbol])
            PROVIDER_CALLS.labels(provider=mock_quotes.PROVIDER, success="true").inc()
            return RefreshOutcome(quotes=quotes, provider=mock_quotes.PROVIDER)

        result = await self.fetcher.fetch(stale)
        if isinstance(result, FetchFailed):
            logger.warning("quote_fetch_failed", provider=coinmarketcap.PROVIDER, symbols=stale, error=result.message)
            PROVIDER_CALLS.labels(provider=coinmarketcap.PROVIDER, success="false").inc()
            return RefreshOutcome(
                quotes={symbol: self._fallback(cached_rows.get(symbol)) for symbol in stale},
                provider=coinmarketcap.PROVIDER,
                success=False,
                error=result.message,
            )

        quotes = {}
        for quote in result.quotes:
            quotes[quote.symbol] = Refreshed(**self._values(quote, rate))
            await self._persist(quote.symbol, quotes[quote.symbol])
        PROVIDER_CALLS.labels(provider=coinmarketcap.PROVIDER, success="true").inc()
        return RefreshOutcome(quotes=quotes, provider=coinmarketcap.PROVIDER)

    @staticmethod
    def _values(quote: ProviderQuote, rate: float) -> dict:
        return {
            "usd": round_fixed(quote.price_usd, 8),
            "idr": round_fixed(quote.price_usd * rate, 0),
            "change_24h": round_fixed(quote.change_24h, 2),
            "volume_24h": round_fixed(quote.volume_24h, 0),
            "market_cap": round_fixed(quote.market_cap, 0),
        }

    @staticmethod
    def _fallback(row: Optional[CachedQuote]) -> SymbolQuote:
        if row is None:
            return Unavailable()
        return StaleFallback(
            usd=row.price_usd,
            idr=row.price_idr,
            change_24h=row.change_24h,
            volume_24h=row.volume_24h,
            market_cap=row.market_cap,
            last_updated=row.last_updated,
        )

    async def _persist(self, symbol: str, values: SymbolQuote):
        written = await self.store.upsert(CachedQuote(
            symbol=symbol,
            price_usd=values.usd,
            price_idr=values.idr,
            change_24h=values.change_24h,
            volume_24h=values.volume_24h,
            market_cap=values.market_cap,
            last_updated=self.clock(),
        ))
        if isinstance(written, WriteFailed):
            logger.warning("price_cache_write_failed", symbol=symbol, error=written.message)
