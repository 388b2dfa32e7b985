from typing import List, Union

import httpx
from pydantic import ValidationError

from tokendesk.schemas.quotes import ProviderQuote, QuoteBatch, FetchFailed
from tokendesk.core.logging_config import get_logger

logger = get_logger("source_coinmarketcap")

PROVIDER = "coinmarketcap"
CMC_BASE_URL = "https://pro-api.coinmarketcap.com/v1"

# Symbol -> CoinMarketCap id. Symbols missing here are never sent to the API.
TOKEN_MAPPING = {
    "BTC": 1,
    "ETH": 1027,
    "USDT": 825,
    "USDC": 3408,
    "BNB": 1839,
    "ADA": 2010,
    "SOL": 5426,
    "DOT": 6636,
    "MATIC": 3890,
    "AVAX": 5805,
    "LINK": 1975,
    "UNI": 7083,
    "LTC": 2,
    "BCH": 1831,
    "XRP": 52,
    "DOGE": 74,
    "SHIB": 5994,
    "TRX": 1958,
    "ATOM": 3794,
    "FTM": 3513,
}


def parse_coin(coin: dict) -> ProviderQuote:
    """
    Maps one entry of `data` from /cryptocurrency/quotes/latest:
    coin['symbol'] -> symbol
    coin['quote']['USD']['price'] -> price_usd
    coin['quote']['USD']['percent_change_24h'] -> change_24h
    coin['quote']['USD']['volume_24h'] -> volume_24h
    coin['quote']['USD']['market_cap'] -> market_cap
    """
    usd_quote = (coin.get('quote') or {}).get('USD') or {}
    return ProviderQuote(
        symbol=coin['symbol'],
        price_usd=usd_quote.get('price') or 0,
        change_24h=usd_quote.get('percent_change_24h') or 0,
        volume_24h=usd_quote.get('volume_24h') or 0,
        market_cap=usd_quote.get('market_cap') or 0,
    )


class CoinMarketCapFetcher:
    """Batched quote lookups against the CoinMarketCap pro API."""

    def __init__(self, client: httpx.AsyncClient, api_key: str, base_url: str = CMC_BASE_URL):
        self.client = client
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    async def fetch(self, symbols: List[str]) -> Union[QuoteBatch, FetchFailed]:
        ids = [str(TOKEN_MAPPING[s]) for s in symbols if s in TOKEN_MAPPING]
        unmapped = [s for s in symbols if s not in TOKEN_MAPPING]
        if unmapped:
            logger.info("unmapped_symbols", source=PROVIDER, symbols=unmapped)
        if not ids:
            return QuoteBatch()

        try:
            response = await self.client.get(
                f"{self.base_url}/cryptocurrency/quotes/latest",
                params={"id": ",".join(ids), "convert": "USD"},
                headers={"X-CMC_PRO_API_KEY": self.api_key, "Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            return FetchFailed(f"CoinMarketCap request failed: {e}")

        if not response.is_success:
            return FetchFailed(f"CoinMarketCap API error: {response.status_code}")

        try:
            payload = response.json()
        except ValueError:
            return FetchFailed("CoinMarketCap API returned malformed JSON")
        if not isinstance(payload, dict):
            return FetchFailed("CoinMarketCap API returned malformed JSON")

        status = payload.get('status') or {}
        if status.get('error_code') != 0:
            return FetchFailed(status.get('error_message') or "CoinMarketCap API error")

        data = payload.get('data') or {}
        if not isinstance(data, dict):
            return FetchFailed("CoinMarketCap API returned malformed JSON")

        quotes = []
        for coin in data.values():
            try:
                quotes.append(parse_coin(coin))
            except (KeyError, TypeError, AttributeError, ValidationError) as e:
                logger.warning("conversion_error", source=PROVIDER, error=str(e))
                continue

        return QuoteBatch(quotes=quotes)
