"""
Normalized market data as it comes out of a quote source, plus the result values
that fetch and cache-write functions return instead of raising.
"""
from dataclasses import dataclass, field
from typing import List

from pydantic import BaseModel, Field, field_validator

class ProviderQuote(BaseModel):
    symbol: str = Field(..., description="e.g., BTC, ETH")
    price_usd: float = Field(..., allow_inf_nan=False, description="Price in USD")
    change_24h: float = Field(0.0, allow_inf_nan=False, description="24h percent change")
    volume_24h: float = Field(0.0, allow_inf_nan=False, description="24h Trading Volume")
    market_cap: float = Field(0.0, allow_inf_nan=False, description="Market Capitalization")

    @field_validator('symbol')
    @classmethod
    def uppercase_symbol(cls, v):
        return v.upper()

@dataclass
class QuoteBatch:
    quotes: List[ProviderQuote] = field(default_factory=list)

@dataclass
class FetchedRate:
    rate: float

@dataclass
class FetchFailed:
    message: str

@dataclass
class WriteFailed:
    message: str
