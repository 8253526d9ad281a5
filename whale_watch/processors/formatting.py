"""
Display helpers: fiat conversion, address shortening, relative age.

Stateless apart from reading the current price; the display width is an
injected capability so the presentation layer decides what "wide" means.
"""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Optional, Union
from whale_watch.config import Config

Amount = Union[int, float, str, Decimal]


def _to_decimal(value: Amount) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class Formatter:
    def __init__(
        self,
        price_provider: Callable[[], float],
        width_provider: Optional[Callable[[], Optional[int]]] = None,
        wide_min_width: int = Config.WIDE_DISPLAY_MIN_WIDTH,
        explorer_tx_url: str = Config.EXPLORER_TX_URL,
        asset_label: str = Config.ASSET_LABEL,
    ):
        self.price_provider = price_provider
        self.width_provider = width_provider
        self.wide_min_width = wide_min_width
        self.explorer_tx_url = explorer_tx_url
        self.asset_label = asset_label

    def to_fiat(self, amount: Amount, precise: bool = False) -> str:
        """
        amount * current price as USD: "$2,000" or, when precise, "$2,000.00".
        """
        places = 2 if precise else 0
        value = _to_decimal(amount) * _to_decimal(self.price_provider() or 0)
        value = value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
        sign = '-' if value < 0 else ''
        return f"{sign}${abs(value):,.{places}f}"

    def is_wide(self) -> bool:
        if self.width_provider is None:
            return False
        width = self.width_provider()
        return width is not None and width >= self.wide_min_width

    def to_display_address(self, address: Optional[str], dynamic: bool = True) -> str:
        """
        "0x12a...9bC4d" on wide surfaces when dynamic, otherwise the first
        6 characters.
        """
        if not address:
            return ''
        if dynamic and self.is_wide():
            return f"{address[:5]}...{address[-5:]}"
        return address[:6]

    @staticmethod
    def time_ago(ts: datetime, now: Optional[datetime] = None) -> str:
        # mini style: 12s / 5m / 3h / 2d / 4mo / 1y
        now = now or datetime.now()
        seconds = max(0, int((now - ts).total_seconds()))
        if seconds < 60:
            return f"{seconds}s"
        if seconds < 3600:
            return f"{seconds // 60}m"
        if seconds < 86400:
            return f"{seconds // 3600}h"
        days = seconds // 86400
        if days < 30:
            return f"{days}d"
        if days < 365:
            return f"{days // 30}mo"
        return f"{days // 365}y"

    def explorer_url(self, tx_hash: str) -> str:
        return self.explorer_tx_url.format(tx_hash=tx_hash)

    def threshold_label(self, threshold: Amount) -> str:
        value = _to_decimal(threshold)
        if value == value.to_integral_value():
            text = str(value.quantize(Decimal(1)))
        else:
            text = f"{value.normalize():f}"
        return f"{text} {self.asset_label} ({self.to_fiat(value, precise=True)})"
