import asyncio
from datetime import datetime
from typing import Optional
from whale_watch.config import Config
from whale_watch.connectors.price import PriceSource
from whale_watch.core.exceptions import PriceFetchError
from whale_watch.models import PriceQuote
from whale_watch.utils.logger import logger


class PriceCache:
    """
    Latest fiat quote for the tracked asset.

    A failed refresh keeps the previous quote: stale is better than nothing.
    Overlapping refreshes are fine, the last successful one wins.
    """

    def __init__(self, source: PriceSource, symbol: str = Config.PRICE_SYMBOL):
        self.source = source
        self.symbol = symbol
        self._quote: Optional[PriceQuote] = None
        self._closed = False
        self.failures = 0

    @property
    def quote(self) -> Optional[PriceQuote]:
        return self._quote

    @property
    def price(self) -> float:
        return self._quote.price if self._quote else 0.0

    async def refresh(self) -> Optional[PriceQuote]:
        """
        Fetches a new quote. Never raises (except on cancellation); returns
        None when the fetch failed or the cache was closed meanwhile.
        """
        logger.debug(f"[价格] Fetching {self.symbol} price ⏳")
        try:
            price = await self.source.fetch_price(self.symbol)
        except PriceFetchError as e:
            self.failures += 1
            logger.warning(f"[价格] {e} - keeping previous price {self.price}")
            return None
        except Exception as e:
            self.failures += 1
            logger.error(f"[价格] Unexpected error from {self.source.source_id}: {e} - keeping previous price {self.price}")
            return None

        if self._closed:
            return None

        self._quote = PriceQuote(
            price=price,
            updated_at=datetime.now(),
            symbol=self.symbol,
            source=self.source.source_id,
        )
        logger.info(f"[价格] 📈 {self.symbol.upper()} = ${price:,.2f}")
        return self._quote

    async def run(self, interval: float = Config.PRICE_REFRESH_INTERVAL):
        """
        Refreshes every ``interval`` seconds until cancelled, whatever the
        outcome of the previous attempt.
        """
        loop = asyncio.get_running_loop()
        while not self._closed:
            started = loop.time()
            await self.refresh()
            elapsed = loop.time() - started
            await asyncio.sleep(max(0.0, interval - elapsed))

    def open(self):
        self._closed = False

    async def close(self):
        self._closed = True
        await self.source.close()
