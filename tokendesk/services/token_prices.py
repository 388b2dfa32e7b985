"""
Pushes current prices onto the desk's active token records.
Goes through the public price endpoint over HTTP so the cache and usage log see
the refresh like any other client request.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List

import httpx
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from tokendesk.core.errors import TokenPriceUpdateError
from tokendesk.core.logging_config import get_logger
from tokendesk.db.models import Token

logger = get_logger("token_prices")


async def update_token_prices(session: AsyncSession, client: httpx.AsyncClient) -> Dict[str, Any]:
    try:
        result = await session.execute(select(Token.id, Token.symbol).where(Token.is_active.is_(True)))
        tokens = result.all()
        # Release the read transaction before calling back into the price endpoint
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        raise TokenPriceUpdateError(f"Database error: {e}")

    if not tokens:
        return {"message": "No tokens found"}

    symbols = ",".join(symbol for _, symbol in tokens)
    try:
        response = await client.get("/api/crypto-prices", params={"symbols": symbols})
    except httpx.HTTPError as e:
        raise TokenPriceUpdateError(f"Failed to fetch prices from API: {e}")

    if not response.is_success:
        raise TokenPriceUpdateError("Failed to fetch prices from API")

    try:
        prices = response.json()
    except ValueError:
        raise TokenPriceUpdateError("Price API returned malformed JSON")
    if not isinstance(prices, dict) or not prices.get("success"):
        raise TokenPriceUpdateError("Price API returned error")

    updated: List[Dict[str, Any]] = []
    failed: List[Dict[str, Any]] = []
    for token_id, symbol in tokens:
        price_info = prices.get("data", {}).get(symbol.upper())
        if not price_info:
            failed.append({"symbol": symbol, "success": False, "error": "Price not found"})
            continue

        try:
            await session.execute(
                update(Token)
                .where(Token.id == token_id)
                .values(
                    price_idr=price_info["idr"],
                    price_usd=price_info["usd"],
                    price_change_24h=price_info["change_24h"],
                    last_price_update=datetime.now(timezone.utc),
                )
            )
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error("token_price_update_failed", symbol=symbol, error=str(e))
            failed.append({"symbol": symbol, "success": False, "error": str(e)})
            continue

        updated.append({"symbol": symbol, "success": True, "price_idr": price_info["idr"]})

    logger.info("token_prices_updated", updated=len(updated), failed=len(failed))
    return {
        "success": True,
        "message": f"Updated {len(updated)} tokens, {len(failed)} failed",
        "updated": updated,
        "failed": failed,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
