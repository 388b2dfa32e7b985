from typing import Union

import httpx

from tokendesk.schemas.quotes import FetchedRate, FetchFailed

EXCHANGE_RATE_URL = "https://api.exchangerate-api.com/v4/latest/USD"


async def fetch_usd_rate(client: httpx.AsyncClient, currency: str, url: str = EXCHANGE_RATE_URL) -> Union[FetchedRate, FetchFailed]:
    """
    Reads `rates[currency]` from an exchangerate-api style payload:
    {"base": "USD", "rates": {"IDR": 16250.5, ...}}
    """
    try:
        response = await client.get(url)
    except httpx.HTTPError as e:
        return FetchFailed(f"Exchange rate request failed: {e}")

    if not response.is_success:
        return FetchFailed(f"Failed to fetch exchange rate: {response.status_code}")

    try:
        payload = response.json()
    except ValueError:
        return FetchFailed("Exchange rate API returned malformed JSON")

    rates = payload.get("rates") if isinstance(payload, dict) else None
    rate = rates.get(currency) if isinstance(rates, dict) else None
    if isinstance(rate, bool) or not isinstance(rate, (int, float)) or rate <= 0:
        return FetchFailed(f"Exchange rate for {currency} missing from response")

    return FetchedRate(rate=float(rate))
