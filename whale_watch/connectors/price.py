import asyncio
import math
import aiohttp
import ccxt.async_support as ccxt
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from whale_watch.utils.logger import logger
from whale_watch.config import Config
from whale_watch.core.exceptions import ConfigurationError, PriceFetchError


def validate_price(raw: Any, source: str) -> float:
    """
    Coerces a payload value to a non-negative finite float or raises
    PriceFetchError.
    """
    if raw is None or isinstance(raw, bool):
        raise PriceFetchError(f"[{source}] price missing from payload")
    try:
        price = float(raw)
    except (TypeError, ValueError):
        raise PriceFetchError(f"[{source}] price is not numeric: {raw!r}")
    if not math.isfinite(price) or price < 0:
        raise PriceFetchError(f"[{source}] price out of range: {raw!r}")
    return price


class PriceSource(ABC):
    """
    Abstract fiat price feed: "fetch current price by symbol".
    """
    def __init__(self, source_id: str):
        self.source_id = source_id

    @abstractmethod
    async def fetch_price(self, symbol: str) -> float:
        """
        Returns the USD price of one unit of ``symbol``. Raises on failure.
        """
        pass

    async def close(self):
        pass


class MessariPriceSource(PriceSource):
    """
    GET {MESSARI_URL} -> data.market_data.price_usd
    """
    def __init__(self, url_template: str = Config.MESSARI_URL, timeout: float = Config.PRICE_REQUEST_TIMEOUT):
        super().__init__('messari')
        self.url_template = url_template
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def _fetch_json(self, url: str) -> Dict[str, Any]:
        session = await self._get_session()
        async with session.get(url) as response:
            response.raise_for_status()
            return await response.json(content_type=None)

    @staticmethod
    def extract_price(payload: Any) -> float:
        try:
            raw = payload['data']['market_data']['price_usd']
        except (KeyError, TypeError):
            raise PriceFetchError("[messari] data.market_data.price_usd missing from payload")
        return validate_price(raw, 'messari')

    async def fetch_price(self, symbol: str) -> float:
        url = self.url_template.format(symbol=symbol.lower())
        try:
            payload = await self._fetch_json(url)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise PriceFetchError(f"[messari] request failed: {e}") from e
        return self.extract_price(payload)

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
            logger.info("Closed messari session.")


class ExchangePriceSource(PriceSource):
    """
    Last traded price from a CCXT exchange ticker, e.g. ETH/USDT on Binance.
    """
    def __init__(self, exchange_id: str = Config.PRICE_EXCHANGE, quote_currency: str = Config.PRICE_QUOTE_CURRENCY):
        super().__init__(exchange_id)
        self.exchange_id = exchange_id
        self.quote_currency = quote_currency
        self.exchange: Optional[ccxt.Exchange] = None

    async def initialize(self):
        """
        Initializes the CCXT exchange instance.
        """
        try:
            exchange_class = getattr(ccxt, self.exchange_id)
            self.exchange = exchange_class({
                'enableRateLimit': True,
                'timeout': int(Config.PRICE_REQUEST_TIMEOUT * 1000),
            })
            logger.info(f"Initialized {self.exchange_id} price source.")
        except AttributeError as e:
            raise ConfigurationError(f"Unknown exchange: {self.exchange_id}") from e

    def resolve_symbol(self, symbol: str) -> str:
        return f"{symbol.upper()}/{self.quote_currency}"

    async def fetch_price(self, symbol: str) -> float:
        if self.exchange is None:
            await self.initialize()
        pair = self.resolve_symbol(symbol)
        try:
            ticker = await self._retry_request(self.exchange.fetch_ticker, pair)
        except (ccxt.NetworkError, ccxt.ExchangeError) as e:
            raise PriceFetchError(f"[{self.exchange_id}] ticker {pair} failed: {e}") from e
        return validate_price((ticker or {}).get('last'), self.exchange_id)

    async def _retry_request(self, func, *args, **kwargs):
        """
        Executes a function with exponential backoff retry logic.
        """
        retries = 3
        delay = 1
        for attempt in range(retries):
            try:
                return await func(*args, **kwargs)
            except (ccxt.NetworkError, ccxt.ExchangeError) as e:
                logger.warning(f"[{self.exchange_id}] Request failed (Attempt {attempt+1}/{retries}): {e}")
                if attempt == retries - 1:
                    logger.error(f"[{self.exchange_id}] All retry attempts failed.")
                    raise
                await asyncio.sleep(delay)
                delay *= 2

    async def close(self):
        """
        Closes the exchange connection.
        """
        if self.exchange:
            await self.exchange.close()
            logger.info(f"Closed {self.exchange_id} connection.")


def create_price_source(kind: str = Config.PRICE_SOURCE) -> PriceSource:
    if kind == 'messari':
        return MessariPriceSource()
    if kind == 'exchange':
        return ExchangePriceSource()
    raise ConfigurationError(f"Unknown PRICE_SOURCE: {kind!r} (expected 'messari' or 'exchange')")
