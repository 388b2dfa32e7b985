import pytest
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from tokendesk.api.routes import get_price_service
from tokendesk.core.database import get_db
from tokendesk.db.models import ApiUsageLog, ExchangeRateCache
from tokendesk.main import app
from tokendesk.services.price_service import PriceService
from tokendesk.services.usage_logger import UsageLogger

from fakes import FakeRates, InMemoryPriceCacheStore


async def usage_providers(db_session):
    result = await db_session.execute(select(ApiUsageLog.api_provider).order_by(ApiUsageLog.id))
    return [row[0] for row in result.all()]


@pytest.mark.asyncio
async def test_health(api_client):
    response = await api_client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["db_connectivity"] == "connected"
    assert body["quote_source"] == "mock"
    assert body["cached_symbols"] == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("query", ["", "?symbols=", "?symbols=,,", "?force=true"])
async def test_missing_symbols_is_400(api_client, query):
    response = await api_client.get(f"/api/crypto-prices{query}")

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "No symbols provided"}


@pytest.mark.asyncio
async def test_mock_mode_refreshes_then_serves_from_cache(api_client, db_session):
    response = await api_client.get("/api/crypto-prices?symbols=btc,eth,BTC")
    assert response.status_code == 200
    body = response.json()

    assert body["success"] is True
    assert set(body["data"]) == {"BTC", "ETH"}
    assert body["data"]["BTC"]["mock"] is True
    assert body["data"]["BTC"]["cached"] is False
    assert "kind" not in body["data"]["BTC"]
    assert body["source"] == "mixed"
    assert body["cache_hit"] is False
    assert body["refreshed_symbols"] == ["BTC", "ETH"]
    assert body["cached_symbols"] == []
    assert body["usd_to_idr_rate"] == 16000
    assert abs(body["data"]["ETH"]["idr"] - body["data"]["ETH"]["usd"] * 16000) <= 1

    response = await api_client.get("/api/crypto-prices?symbols=BTC,ETH")
    body = response.json()

    assert body["source"] == "cache"
    assert body["cache_hit"] is True
    assert body["refreshed_symbols"] == []
    assert body["cached_symbols"] == ["BTC", "ETH"]
    assert body["api_calls_saved"] == 2
    assert body["data"]["ETH"]["cached"] is True
    assert body["message"] == "All data served from cache"

    assert await usage_providers(db_session) == ["mock", "cache"]
    result = await db_session.execute(select(ExchangeRateCache))
    assert [row.rate for row in result.scalars().all()] == [16000]


@pytest.mark.asyncio
async def test_force_refresh_over_http(api_client, upstream):
    await api_client.get("/api/crypto-prices?symbols=SOL")

    response = await api_client.get("/api/crypto-prices?symbols=SOL&force=true")
    body = response.json()

    assert body["refreshed_symbols"] == ["SOL"]
    assert body["data"]["SOL"]["mock"] is True
    # Exchange rate is cached after the first request
    assert len(upstream.requests) == 1


@pytest.mark.asyncio
async def test_coinmarketcap_outage_still_answers_200(api_client, upstream, monkeypatch):
    from tokendesk.core.config import get_settings
    monkeypatch.setattr(get_settings(), "CMC_API_KEY", "test-key")
    upstream.cmc_status = 502

    response = await api_client.get("/api/crypto-prices?symbols=XRP")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["XRP"] == {
        "usd": 0, "idr": 0, "change_24h": 0, "volume_24h": 0, "market_cap": 0,
        "cached": False, "error": "No data available",
    }


class ExplodingStore(InMemoryPriceCacheStore):
    async def get_many(self, symbols):
        raise RuntimeError("cache backend down")


@pytest.mark.asyncio
async def test_unhandled_failure_is_500_and_logged(api_client, db_session):
    def broken_price_service(db: AsyncSession = Depends(get_db)):
        return PriceService(store=ExplodingStore(), rates=FakeRates(), usage=UsageLogger(db))

    app.dependency_overrides[get_price_service] = broken_price_service

    response = await api_client.get("/api/crypto-prices?symbols=BTC")

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["source"] == "error"
    assert body["message"] == "cache backend down"
    assert await usage_providers(db_session) == ["error"]


@pytest.mark.asyncio
async def test_force_flag_is_matched_literally(api_client):
    await api_client.get("/api/crypto-prices?symbols=SOL")

    response = await api_client.get("/api/crypto-prices?symbols=SOL&force=TRUE")
    body = response.json()

    assert body["cache_hit"] is True
    assert body["cached_symbols"] == ["SOL"]


@pytest.mark.asyncio
async def test_rate_outage_converts_with_fallback_rate(api_client, db_session, upstream):
    upstream.rate_status = 503

    response = await api_client.get("/api/crypto-prices?symbols=BTC")

    assert response.status_code == 200
    body = response.json()
    assert body["usd_to_idr_rate"] == 15800
    btc = body["data"]["BTC"]
    assert abs(btc["idr"] - btc["usd"] * 15800) <= 1
    result = await db_session.execute(select(ExchangeRateCache))
    assert result.scalars().all() == []
