import asyncio
from decimal import Decimal
from typing import Callable, List, Optional, Set, Tuple, Union
from whale_watch.config import Config
from whale_watch.core.context import MonitorContext
from whale_watch.core.exceptions import ConfigurationError
from whale_watch.models import BlockHeader, ConnectionState, MonitorSnapshot, PriceQuote, TransactionRecord
from whale_watch.utils.logger import logger

Event = Union[TransactionRecord, BlockHeader, ConnectionState]
Listener = Callable[[MonitorSnapshot], None]


class WhaleMonitor:
    """
    Lifecycle controller: owns the subscriber, the price poller and the
    single consumer task that is the only writer of the shared state
    (dedup store, ranked set, block height, connection status).

    The subscriber never touches that state directly, it only enqueues
    events. Snapshots are built without awaiting, so readers on the loop
    always see a consistent view.
    """

    def __init__(self, context: MonitorContext):
        self.ctx = context
        self._active = False
        self._queue: Optional[asyncio.Queue] = None
        self._tasks: List[asyncio.Task] = []
        self._refreshes: Set[asyncio.Task] = set()
        self._subscriber_handle: Optional[asyncio.Task] = None
        self._listeners: List[Listener] = []

        self._block_height: Optional[int] = None
        self._connection_state = ConnectionState.STOPPED
        self.admitted = 0
        self.duplicates = 0

    @classmethod
    def from_config(cls, width_provider: Optional[Callable[[], Optional[int]]] = None) -> 'WhaleMonitor':
        if not Config.NODE_WS_URL:
            raise ConfigurationError("NODE_WS_URL (or ALCHEMY_WS_URL) must be set")
        return cls(MonitorContext.from_config(width_provider=width_provider))

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    @property
    def active(self) -> bool:
        return self._active

    async def start(self):
        """
        Starts price polling, the consumer and the subscription together.
        Ingestion does not wait for the first price.
        """
        if self._active:
            return
        self._active = True
        self._queue = asyncio.Queue()
        self.ctx.price_cache.open()
        self._tasks = [
            asyncio.create_task(self._consume(), name='whale-consumer'),
            asyncio.create_task(self.ctx.price_cache.run(self.ctx.price_refresh_interval), name='price-poller'),
        ]
        self._subscriber_handle = self.ctx.subscriber.start(
            on_record=self._queue.put_nowait,
            on_block=self._queue.put_nowait,
            on_state=self._queue.put_nowait,
        )
        logger.info(
            f"🐳 Whale monitor started | mode: {self.ctx.subscriber.mode} | "
            f"threshold: {self.threshold} | gate: {self.ctx.subscriber.min_admission_value}"
        )

    async def stop(self):
        """
        Stops the subscriber, the poller and the consumer. Lookups or price
        fetches finishing afterwards are discarded.
        """
        if not self._active:
            return
        self._active = False

        await self.ctx.subscriber.stop(self._subscriber_handle)
        tasks = self._tasks + list(self._refreshes)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.ctx.price_cache.close()

        self._tasks = []
        self._subscriber_handle = None
        self._connection_state = ConnectionState.STOPPED
        logger.info(f"Whale monitor stopped | admitted: {self.admitted} | duplicates: {self.duplicates}")

    # ------------------------------------------------------------------
    # single writer
    # ------------------------------------------------------------------

    async def _consume(self):
        while True:
            event = await self._queue.get()
            try:
                self.handle_event(event)
            except Exception as e:
                logger.error(f"Failed to apply event {event!r}: {e}")
                logger.exception(e)

    def handle_event(self, event: Event) -> bool:
        """
        Applies one event to the shared state; returns True when the state
        changed. Ignored once the monitor is stopped.
        """
        if not self._active:
            return False

        if isinstance(event, TransactionRecord):
            changed = self._admit(event)
        elif isinstance(event, BlockHeader):
            changed = self._on_block(event)
        elif isinstance(event, ConnectionState):
            changed = self._on_connection_state(event)
        else:
            logger.warning(f"Ignoring unknown event: {event!r}")
            return False

        if changed:
            self._notify()
        return changed

    def _admit(self, record: TransactionRecord) -> bool:
        # a bounded dedup store may have forgotten a hash that is still ranked
        if record.tx_hash in self.ctx.whale_watcher or not self.ctx.dedup.admit(record.tx_hash):
            self.duplicates += 1
            logger.debug(f"Duplicate {record.tx_hash} ignored")
            return False

        evicted = self.ctx.whale_watcher.add(record)
        self.admitted += 1
        if evicted is not None:
            logger.debug(f"Ranked set full, evicted {evicted.tx_hash}")
        if record.block_height is not None and (self._block_height is None or record.block_height > self._block_height):
            self._block_height = record.block_height

        if record.display_value >= self.threshold:
            logger.info(
                f"🐳 {record.display_value}Ξ ({self.ctx.formatter.to_fiat(record.display_value)}) | "
                f"{record.sender} -> {record.receiver} | {record.tx_hash}"
            )
        return True

    def _on_block(self, block: BlockHeader) -> bool:
        self._schedule_price_refresh()
        if self._block_height is not None and block.number <= self._block_height:
            return False
        self._block_height = block.number
        logger.debug(f"New block #{block.number}")
        return True

    def _on_connection_state(self, state: ConnectionState) -> bool:
        if state == self._connection_state:
            return False
        self._connection_state = state
        if state in (ConnectionState.DISCONNECTED, ConnectionState.RECONNECTING):
            logger.warning(f"Node connection: {state.value}")
        return True

    def _schedule_price_refresh(self):
        # one out-of-band refresh at a time; the poller covers the rest
        if self._refreshes:
            return
        task = asyncio.create_task(self.ctx.price_cache.refresh(), name='price-refresh-block')
        self._refreshes.add(task)
        task.add_done_callback(self._refreshes.discard)

    # ------------------------------------------------------------------
    # control surface
    # ------------------------------------------------------------------

    def set_threshold(self, value) -> Decimal:
        """
        Sets the user threshold. Negative values clamp to 0; non-numeric
        input raises InvalidThresholdError and keeps the old threshold.
        """
        threshold = self.ctx.whale_watcher.set_threshold(value)
        logger.info(f"Threshold set to {self.ctx.formatter.threshold_label(threshold)}")
        self._notify()
        return threshold

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """
        Registers a callback receiving a snapshot after every change.
        Returns a function that unregisters it.
        """
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self):
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Listener {listener!r} failed: {e}")

    # ------------------------------------------------------------------
    # output surface
    # ------------------------------------------------------------------

    def snapshot(self) -> MonitorSnapshot:
        return MonitorSnapshot(
            whales=self.whales,
            quote=self.quote,
            block_height=self._block_height,
            threshold=self.threshold,
            connection_state=self._connection_state,
            total_records=len(self.ctx.whale_watcher),
        )

    @property
    def whales(self) -> Tuple[TransactionRecord, ...]:
        return self.ctx.whale_watcher.view()

    @property
    def quote(self) -> Optional[PriceQuote]:
        return self.ctx.price_cache.quote

    @property
    def block_height(self) -> Optional[int]:
        return self._block_height

    @property
    def threshold(self) -> Decimal:
        return self.ctx.whale_watcher.threshold

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection_state

    @property
    def is_waiting(self) -> bool:
        return not self.whales
