"""
Monitor Context - 统一管理监控所需的组件引用
由 WhaleMonitor 持有，测试中可以整体替换为 fake 组件
"""

from __future__ import annotations  # 启用延迟类型评估，避免循环导入

from dataclasses import dataclass
from typing import Callable, Optional

from whale_watch.analyzers.whale_watcher import WhaleWatcher
from whale_watch.config import Config
from whale_watch.connectors.price import create_price_source
from whale_watch.processors.formatting import Formatter
from whale_watch.services.price_cache import PriceCache
from whale_watch.services.subscriber import EventSubscriber, create_subscriber
from whale_watch.storage.dedup import DeduplicationStore


@dataclass
class MonitorContext:
    """
    Components wired together by the lifecycle controller.
    """
    subscriber: EventSubscriber
    price_cache: PriceCache
    whale_watcher: WhaleWatcher
    dedup: DeduplicationStore
    formatter: Optional[Formatter] = None

    # 价格刷新周期 (秒)
    price_refresh_interval: float = Config.PRICE_REFRESH_INTERVAL

    def __post_init__(self):
        """验证上下文对象的有效性"""
        if self.subscriber is None:
            raise ValueError("subscriber 不能为空")
        if self.price_cache is None:
            raise ValueError("price_cache 不能为空")
        if self.price_refresh_interval <= 0:
            raise ValueError("price_refresh_interval 必须大于 0")
        if self.formatter is None:
            self.formatter = Formatter(price_provider=lambda: self.price_cache.price)

    @classmethod
    def from_config(cls, width_provider: Optional[Callable[[], Optional[int]]] = None) -> 'MonitorContext':
        price_cache = PriceCache(create_price_source(Config.PRICE_SOURCE), symbol=Config.PRICE_SYMBOL)
        return cls(
            subscriber=create_subscriber(Config.SUBSCRIPTION_MODE),
            price_cache=price_cache,
            whale_watcher=WhaleWatcher(threshold=Config.DEFAULT_WHALE_THRESHOLD, max_records=Config.MAX_RECORDS),
            dedup=DeduplicationStore(max_size=Config.MAX_SEEN_IDS),
            formatter=Formatter(price_provider=lambda: price_cache.price, width_provider=width_provider),
        )
