"""
Pytest configuration and fixtures
"""

import os

os.environ.setdefault("LOG_FILE", "")  # no log files from the test run

import asyncio
import itertools
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import pytest

from whale_watch.analyzers.whale_watcher import WhaleWatcher
from whale_watch.connectors.price import PriceSource
from whale_watch.core.context import MonitorContext
from whale_watch.core.exceptions import NodeConnectionError
from whale_watch.models import TransactionRecord
from whale_watch.processors.formatting import Formatter
from whale_watch.services.price_cache import PriceCache
from whale_watch.services.subscriber import PendingTransactionSubscriber
from whale_watch.storage.dedup import DeduplicationStore

WEI = 10 ** 18
BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)

_hashes = itertools.count(1)

# captured before any test patches asyncio.sleep
real_sleep = asyncio.sleep


def make_hash() -> str:
    return "0x" + format(next(_hashes), "064x")


def make_raw_tx(value_eth, tx_hash: Optional[str] = None, to: Optional[str] = "0x" + "b" * 40, block_number: Optional[str] = None) -> Dict[str, Any]:
    """eth_getTransactionByHash-shaped dict"""
    return {
        "hash": tx_hash or make_hash(),
        "from": "0x" + "a" * 40,
        "to": to,
        "value": hex(int(Decimal(str(value_eth)) * WEI)),
        "blockNumber": block_number,
    }


def make_record(display_value, tx_hash: Optional[str] = None, observed_at: Optional[datetime] = None, block_height: Optional[int] = None) -> TransactionRecord:
    value = Decimal(str(display_value))
    return TransactionRecord(
        tx_hash=tx_hash or make_hash(),
        sender="0x" + "a" * 40,
        receiver="0x" + "b" * 40,
        value=value,
        display_value=value.quantize(Decimal("0.01")),
        observed_at=observed_at or BASE_TIME,
        block_height=block_height,
    )


async def wait_until(predicate, timeout: float = 2.0):
    """Polls ``predicate`` on the running loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await real_sleep(0.005)


class FakeNode:
    """
    Stands in for NodeConnector: replays ``script`` as notifications, then
    either drops the connection or stays silent forever.
    """

    def __init__(self, transactions: Optional[Dict[str, Any]] = None, script: Optional[List[Tuple[str, Any]]] = None, drop_after_script: bool = False):
        self.transactions = transactions or {}
        self.script = list(script or [])
        self.drop_after_script = drop_after_script
        self.subscriptions: Dict[str, str] = {}
        self.subscribe_params: Dict[str, tuple] = {}
        self.lookups: List[str] = []
        self.lookup_gate: Optional[asyncio.Event] = None
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed = True

    async def subscribe(self, kind: str, *params):
        subscription_id = f"0xsub{len(self.subscriptions) + 1}"
        self.subscriptions[kind] = subscription_id
        self.subscribe_params[kind] = params
        return subscription_id

    async def get_transaction(self, tx_hash: str):
        self.lookups.append(tx_hash)
        if self.lookup_gate is not None:
            await self.lookup_gate.wait()
        result = self.transactions.get(tx_hash)
        if isinstance(result, Exception):
            raise result
        return result

    async def notifications(self):
        for kind, payload in self.script:
            yield self.subscriptions[kind], payload
        if self.drop_after_script:
            raise NodeConnectionError("connection closed: scripted drop")
        await asyncio.Event().wait()


class FailingNode:
    """Connection attempt that never succeeds."""

    def __init__(self, error: Exception = None):
        self.error = error or NodeConnectionError("connect failed: refused")

    async def __aenter__(self):
        raise self.error

    async def __aexit__(self, exc_type, exc, tb):
        return False


class NodeFactory:
    """Hands out the given nodes in order, then silent ones."""

    def __init__(self, *nodes):
        self.nodes = list(nodes)
        self.created: List[Any] = []

    def __call__(self):
        node = self.nodes.pop(0) if self.nodes else FakeNode()
        self.created.append(node)
        return node


class FakePriceSource(PriceSource):
    """Returns scripted prices; Exceptions in the script are raised."""

    def __init__(self, *results):
        super().__init__("fake")
        self.results = list(results) or [2000.0]
        self.calls = 0
        self.closed = False

    async def fetch_price(self, symbol: str) -> float:
        self.calls += 1
        result = self.results[min(self.calls, len(self.results)) - 1]
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self):
        self.closed = True


@pytest.fixture
def price_source():
    return FakePriceSource(2000.0)


@pytest.fixture
def formatter():
    return Formatter(price_provider=lambda: 2000.0, width_provider=lambda: 1024)


@pytest.fixture
def build_context():
    """Factory for a MonitorContext wired with fakes."""

    def _build(node_factory=None, price_source=None, threshold=10, min_admission_value=10, max_records=None, max_seen_ids=None, price_refresh_interval=3600):
        subscriber = PendingTransactionSubscriber(
            connector_factory=node_factory or NodeFactory(),
            min_admission_value=min_admission_value,
            reconnect_delay=0.01,
            max_reconnect_delay=0.05,
        )
        return MonitorContext(
            subscriber=subscriber,
            price_cache=PriceCache(price_source or FakePriceSource(2000.0), symbol="eth"),
            whale_watcher=WhaleWatcher(threshold=threshold, max_records=max_records),
            dedup=DeduplicationStore(max_size=max_seen_ids),
            price_refresh_interval=price_refresh_interval,
        )

    return _build
