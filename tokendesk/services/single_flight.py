"""
Per-symbol coalescing of concurrent refreshes within one process.
Off unless COALESCE_REFRESHES is set; without it two requests that both see a
symbol as stale both call the upstream API.
"""
import asyncio
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from tokendesk.core.logging_config import get_logger

logger = get_logger("single_flight")


class RefreshCoalescer:
    def __init__(self):
        self._in_flight: Dict[str, asyncio.Future] = {}

    def in_flight(self) -> List[str]:
        return list(self._in_flight)

    def claim(self, symbols: List[str]) -> Tuple[List[str], Dict[str, asyncio.Future]]:
        """
        Splits symbols into those this caller must refresh (now registered as in flight)
        and those another caller is already refreshing.
        """
        loop = asyncio.get_running_loop()
        owned, waiting = [], {}
        for symbol in symbols:
            future = self._in_flight.get(symbol)
            if future is not None:
                waiting[symbol] = future
            else:
                self._in_flight[symbol] = loop.create_future()
                owned.append(symbol)
        return owned, waiting

    def release(self, symbols: List[str], results: Dict[str, object]):
        # Waiters get None for symbols the refresh produced nothing for
        for symbol in symbols:
            future = self._in_flight.pop(symbol, None)
            if future is not None and not future.done():
                future.set_result(results.get(symbol))

    async def run(
        self,
        symbols: List[str],
        refresh: Callable[[List[str]], Awaitable[Tuple[Dict[str, object], object]]],
    ) -> Tuple[Dict[str, object], Optional[object], List[str]]:
        """
        Runs `refresh` for the symbols nobody else is refreshing and waits for the rest.
        Returns (results by symbol, whatever `refresh` returned alongside its results or
        None when it was not called, symbols taken from other callers).
        """
        owned, waiting = self.claim(symbols)
        results: Dict[str, object] = {}
        extra = None
        if owned:
            try:
                own_results, extra = await refresh(owned)
            except BaseException:
                self.release(owned, {})
                raise
            self.release(owned, own_results)
            results.update(own_results)
        if waiting:
            logger.info("refresh_coalesced", symbols=list(waiting))
        for symbol, future in waiting.items():
            shared = await future
            if shared is not None:
                results[symbol] = shared
        return results, extra, list(waiting)
