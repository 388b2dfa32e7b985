"""
Synthetic quotes for running without a CoinMarketCap key.
Prices stay within 5% of a fixed base so screens look plausible.
"""
import random
from typing import Optional

from tokendesk.schemas.quotes import ProviderQuote

PROVIDER = "mock"

BASE_PRICES = {
    "BTC": 45000,
    "ETH": 3000,
    "BNB": 300,
    "ADA": 0.5,
    "SOL": 100,
    "DOT": 7,
    "MATIC": 0.8,
    "AVAX": 35,
    "LINK": 15,
    "UNI": 6,
    "LTC": 70,
    "BCH": 250,
    "XRP": 0.6,
    "DOGE": 0.08,
    "SHIB": 0.000025,
    "USDT": 1,
    "USDC": 1,
}
DEFAULT_BASE_PRICE = 1


class MockQuoteGenerator:
    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def generate(self, symbol: str) -> ProviderQuote:
        base_price = BASE_PRICES.get(symbol.upper(), DEFAULT_BASE_PRICE)
        variation = (self.rng.random() - 0.5) * 0.1
        return ProviderQuote(
            symbol=symbol,
            price_usd=base_price * (1 + variation),
            change_24h=(self.rng.random() - 0.5) * 20,
            volume_24h=self.rng.random() * 1_000_000_000,
            market_cap=self.rng.random() * 100_000_000_000,
        )
