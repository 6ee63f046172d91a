"""SOL/USD reference price with an explicit refresh task."""

import asyncio
import logging
from typing import Optional

import aiohttp

from .diffs import WSOL_MINT

logger = logging.getLogger(__name__)


class SolPriceUnavailableError(Exception):
    """Raised when no SOL price has been fetched yet."""
    pass


class SolPriceFeed:
    """
    Holds the latest SOL/USD price and refreshes it on a fixed interval.

    The refresh loop is owned by the feed: `start()` spawns it and `stop()`
    cancels it. Readers only ever see the last successfully fetched value.
    """

    def __init__(
        self,
        price_url: str,
        refresh_seconds: float = 10.0,
        session: aiohttp.ClientSession = None,
        initial_price: Optional[float] = None,
    ):
        self.price_url = price_url
        self.refresh_seconds = refresh_seconds
        self._session = session
        self._owns_session = session is None
        self._price = initial_price
        self._task: Optional[asyncio.Task] = None

    @property
    def price(self) -> float:
        if self._price is None:
            raise SolPriceUnavailableError("SOL price not fetched yet")
        return self._price

    @property
    def has_price(self) -> bool:
        return self._price is not None

    async def start(self) -> None:
        """Fetch once, then keep refreshing in the background."""
        if self._session is None:
            self._session = aiohttp.ClientSession()
        await self.refresh()
        self._task = asyncio.create_task(self._refresh_loop())
        logger.info(f"✅ SOL price feed started (every {self.refresh_seconds}s)")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    async def refresh(self) -> Optional[float]:
        """
        Fetch the current price. Keeps the previous value on failure.

        Returns:
            The fetched price, or None if the fetch failed
        """
        try:
            async with self._session.get(self.price_url) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(f"SOL price fetch failed ({response.status}): {error_text}")
                    return None
                data = await response.json()

            price = float(data["data"][WSOL_MINT]["price"])
            if price <= 0:
                logger.error(f"Ignoring non-positive SOL price: {price}")
                return None

            self._price = price
            logger.debug(f"SOL price: {price}")
            return price

        except (aiohttp.ClientError, asyncio.TimeoutError, KeyError, TypeError, ValueError) as e:
            logger.error(f"SOL price fetch error: {e}")
            return None

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.refresh_seconds)
            await self.refresh()
