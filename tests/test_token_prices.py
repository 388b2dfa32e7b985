import httpx
import pytest
from httpx import ASGITransport
from sqlalchemy.exc import OperationalError
from sqlalchemy.future import select

from tokendesk.api.routes import get_internal_client
from tokendesk.core.database import get_db
from tokendesk.db.models import Token
from tokendesk.main import app

from fakes import cmc_coin


@pytest.fixture
def internal_client():
    async def loopback():
        async with httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            yield client

    app.dependency_overrides[get_internal_client] = loopback
    yield
    app.dependency_overrides.pop(get_internal_client, None)


async def seed_tokens(session, *tokens):
    for symbol, active in tokens:
        session.add(Token(symbol=symbol, name=symbol.title(), is_active=active))
    await session.commit()


async def load_tokens(session):
    session.expire_all()
    result = await session.execute(select(Token).order_by(Token.symbol))
    return {t.symbol: t for t in result.scalars().all()}


@pytest.mark.asyncio
async def test_active_tokens_get_current_prices(api_client, db_session, internal_client):
    await seed_tokens(db_session, ("BTC", True), ("ETH", True), ("DOGE", False))

    response = await api_client.post("/api/update-token-prices")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Updated 2 tokens, 0 failed"
    assert {r["symbol"] for r in body["updated"]} == {"BTC", "ETH"}

    tokens = await load_tokens(db_session)
    assert 45000 * 0.95 <= tokens["BTC"].price_usd <= 45000 * 1.05
    assert abs(tokens["BTC"].price_idr - tokens["BTC"].price_usd * 16000) <= 1
    assert tokens["BTC"].last_price_update is not None
    assert tokens["DOGE"].price_usd is None


@pytest.mark.asyncio
async def test_tokens_without_a_price_are_reported_failed(api_client, db_session, internal_client, upstream, monkeypatch):
    from tokendesk.core.config import get_settings
    monkeypatch.setattr(get_settings(), "CMC_API_KEY", "test-key")
    upstream.cmc_payload["data"] = {"1": cmc_coin(1, "BTC", 45500.0, 3.3)}
    await seed_tokens(db_session, ("BTC", True), ("FOO", True))

    response = await api_client.post("/api/update-token-prices")
    body = response.json()

    assert body["message"] == "Updated 1 tokens, 1 failed"
    assert body["updated"] == [{"symbol": "BTC", "success": True, "price_idr": 728000000.0}]
    assert body["failed"] == [{"symbol": "FOO", "success": False, "error": "Price not found"}]

    tokens = await load_tokens(db_session)
    assert tokens["BTC"].price_change_24h == 3.3
    assert tokens["FOO"].price_usd is None


@pytest.mark.asyncio
async def test_no_active_tokens(api_client, db_session, internal_client):
    await seed_tokens(db_session, ("DOGE", False))

    response = await api_client.post("/api/update-token-prices")

    assert response.json() == {"message": "No tokens found"}


@pytest.mark.asyncio
async def test_price_endpoint_failure_is_500(api_client, db_session):
    async def failing():
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            yield client

    app.dependency_overrides[get_internal_client] = failing
    await seed_tokens(db_session, ("BTC", True))

    response = await api_client.post("/api/update-token-prices")

    assert response.status_code == 500
    assert response.json() == {
        "error": "Failed to update token prices",
        "details": "Failed to fetch prices from API",
    }


class UnreachableDatabase:
    async def execute(self, *args, **kwargs):
        raise OperationalError("SELECT tokens", {}, Exception("db down"))

    async def commit(self):
        pass

    async def rollback(self):
        pass


@pytest.mark.asyncio
async def test_token_read_failure_is_500(api_client, internal_client):
    async def broken_db():
        yield UnreachableDatabase()

    app.dependency_overrides[get_db] = broken_db

    response = await api_client.post("/api/update-token-prices")

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Failed to update token prices"
    assert body["details"].startswith("Database error: ")
    assert "db down" in body["details"]
