"""
Per-symbol price answers and the /api/crypto-prices response.

Each answer is one of five variants. The `kind` tag drives validation only and is
never serialized, so every variant dumps to exactly the fields clients read.
"""
from datetime import datetime
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

STALE_CACHE_ERROR = "API error, using stale cache"
NO_DATA_ERROR = "No data available"

class QuoteValues(BaseModel):
    usd: float
    idr: float
    change_24h: float
    volume_24h: float
    market_cap: float

class CacheHit(QuoteValues):
    kind: Literal["cache_hit"] = Field("cache_hit", exclude=True)
    cached: bool = True
    last_updated: datetime

class Refreshed(QuoteValues):
    kind: Literal["refreshed"] = Field("refreshed", exclude=True)
    cached: bool = False

class MockData(QuoteValues):
    kind: Literal["mock"] = Field("mock", exclude=True)
    cached: bool = False
    mock: bool = True

class StaleFallback(QuoteValues):
    kind: Literal["stale_fallback"] = Field("stale_fallback", exclude=True)
    cached: bool = True
    stale: bool = True
    error: str = STALE_CACHE_ERROR
    last_updated: datetime

class Unavailable(QuoteValues):
    kind: Literal["unavailable"] = Field("unavailable", exclude=True)
    usd: float = 0
    idr: float = 0
    change_24h: float = 0
    volume_24h: float = 0
    market_cap: float = 0
    cached: bool = False
    error: str = NO_DATA_ERROR

SymbolQuote = Annotated[
    Union[CacheHit, Refreshed, MockData, StaleFallback, Unavailable],
    Field(discriminator="kind"),
]

class PriceResponse(BaseModel):
    success: bool = True
    data: Dict[str, SymbolQuote]
    timestamp: datetime
    usd_to_idr_rate: Optional[float] = None
    source: str
    cache_hit: bool
    refreshed_symbols: List[str]
    cached_symbols: List[str]
    api_calls_saved: int
    message: str
