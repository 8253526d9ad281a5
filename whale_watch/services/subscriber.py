import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Set
from whale_watch.config import Config
from whale_watch.connectors.node import NodeConnector
from whale_watch.core.exceptions import ConfigurationError, NodeConnectionError, RpcError
from whale_watch.models import BlockHeader, ConnectionState, TransactionRecord
from whale_watch.processors.data_processor import DataProcessor, parse_quantity
from whale_watch.utils.logger import logger

RecordCallback = Callable[[TransactionRecord], None]
BlockCallback = Callable[[BlockHeader], None]
StateCallback = Callable[[ConnectionState], None]
Handler = Callable[[NodeConnector, Any], None]


class EventSubscriber(ABC):
    """
    Streams node notifications, resolves each into a full transaction and
    pushes the ones clearing the admission gate to ``on_record``.

    Connection drops are retried forever with exponential backoff; events
    missed while disconnected are not replayed.
    """
    mode = ''

    def __init__(
        self,
        connector_factory: Callable[[], NodeConnector] = NodeConnector,
        min_admission_value: float = Config.MIN_ADMISSION_VALUE,
        track_blocks: bool = Config.TRACK_BLOCKS,
        reconnect_delay: float = Config.RECONNECT_DELAY,
        max_reconnect_delay: float = Config.MAX_RECONNECT_DELAY,
        max_inflight: int = Config.MAX_INFLIGHT_LOOKUPS,
        max_pending: int = Config.MAX_PENDING_LOOKUPS,
        decimals: int = Config.VALUE_DECIMALS,
    ):
        self.connector_factory = connector_factory
        self.min_admission_value = Decimal(str(min_admission_value))
        self.track_blocks = track_blocks
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.max_pending = max_pending
        self.decimals = decimals

        self.state = ConnectionState.STOPPED
        self.reconnect_count = 0
        self.stats = {'notifications': 0, 'not_found': 0, 'failed': 0, 'below_gate': 0, 'emitted': 0, 'malformed': 0, 'dropped': 0}

        self._active = False
        self._on_record: Optional[RecordCallback] = None
        self._on_block: Optional[BlockCallback] = None
        self._on_state: Optional[StateCallback] = None
        self._lookups = asyncio.Semaphore(max_inflight)
        self._inflight: Set[asyncio.Task] = set()

    @property
    def active(self) -> bool:
        return self._active

    def start(self, on_record: RecordCallback, on_block: Optional[BlockCallback] = None, on_state: Optional[StateCallback] = None) -> asyncio.Task:
        """
        Opens the subscription in a background task and returns it as the
        handle for ``stop``.
        """
        self._on_record = on_record
        self._on_block = on_block
        self._on_state = on_state
        self._active = True
        return asyncio.create_task(self.run(), name=f"subscriber-{self.mode}")

    async def stop(self, handle: Optional[asyncio.Task] = None):
        """
        Cancels the listener and every in-flight lookup. Nothing is emitted
        after this returns.
        """
        self._active = False
        tasks = list(self._inflight)
        if handle is not None:
            tasks.append(handle)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._set_state(ConnectionState.STOPPED)
        logger.info(f"[{self.mode}] Subscriber stopped")

    def _set_state(self, state: ConnectionState):
        if state == self.state:
            return
        self.state = state
        if self._on_state:
            self._on_state(state)

    async def run(self):
        """
        Connect, subscribe, consume; on any connection failure wait and
        start over.
        """
        retry_delay = self.reconnect_delay
        first_attempt = True

        while self._active:
            self._set_state(ConnectionState.CONNECTING if first_attempt else ConnectionState.RECONNECTING)
            first_attempt = False
            try:
                async with self.connector_factory() as node:
                    handlers = await self._subscribe(node)
                    self._set_state(ConnectionState.CONNECTED)
                    logger.info(f"[{self.mode}] ✅ 订阅成功 ({len(handlers)} streams)")
                    retry_delay = self.reconnect_delay  # Reset retry delay on successful connection

                    async for subscription_id, payload in node.notifications():
                        handler = handlers.get(subscription_id)
                        if handler is None:
                            continue
                        try:
                            handler(node, payload)
                        except (ValueError, TypeError) as e:
                            self.stats['malformed'] += 1
                            logger.debug(f"[{self.mode}] malformed notification {payload!r}: {e}")
            except ConfigurationError:
                raise
            except (NodeConnectionError, RpcError, OSError) as e:
                logger.warning(f"[{self.mode}] 连接中断: {e}")
            except Exception as e:
                logger.error(f"[{self.mode}] 连接异常: {e}")

            if not self._active:
                break
            self.reconnect_count += 1
            self._set_state(ConnectionState.DISCONNECTED)
            logger.warning(f"[{self.mode}] {retry_delay}秒后重连 (重连次数: {self.reconnect_count})...")
            await asyncio.sleep(retry_delay)
            retry_delay = min(retry_delay * 2, self.max_reconnect_delay)  # Exponential backoff

    @abstractmethod
    async def _subscribe(self, node: NodeConnector) -> Dict[str, Handler]:
        """
        Opens the mode's subscriptions; returns subscription id -> handler.
        """
        pass

    async def _subscribe_blocks(self, node: NodeConnector, handlers: Dict[str, Handler]):
        if self.track_blocks:
            handlers[await node.subscribe('newHeads')] = self._handle_block

    def _handle_block(self, node: NodeConnector, payload: Any):
        if not isinstance(payload, dict):
            return
        number = parse_quantity(payload.get('number'))
        if number is None or not self._active or self._on_block is None:
            return
        self._on_block(BlockHeader(number=number, observed_at=datetime.now()))

    def _spawn_lookup(self, node: NodeConnector, tx_hash: Optional[str], block_height: Optional[int] = None):
        self.stats['notifications'] += 1
        if not tx_hash:
            return
        if len(self._inflight) >= self.max_pending:
            # backlog full
            self.stats['dropped'] += 1
            logger.debug(f"[{self.mode}] {len(self._inflight)} lookups pending, dropping {tx_hash}")
            return
        task = asyncio.create_task(self.resolve(node, tx_hash, block_height))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def resolve(self, node: NodeConnector, tx_hash: str, block_height: Optional[int] = None) -> Optional[TransactionRecord]:
        """
        Looks the transaction up and emits it if it clears the admission
        gate. Lookup failures and unknown hashes are dropped quietly.
        """
        async with self._lookups:
            try:
                tx = await node.get_transaction(tx_hash)
            except (RpcError, NodeConnectionError) as e:
                self.stats['failed'] += 1
                logger.debug(f"[{self.mode}] lookup {tx_hash} failed: {e}")
                return None

        if not tx:
            # dropped or mined before we asked
            self.stats['not_found'] += 1
            return None

        try:
            record = DataProcessor.process_transaction(tx, block_height=block_height, decimals=self.decimals)
        except (KeyError, ValueError, TypeError) as e:
            self.stats['failed'] += 1
            logger.debug(f"[{self.mode}] malformed transaction {tx_hash}: {e}")
            return None

        if record.value < self.min_admission_value:
            self.stats['below_gate'] += 1
            return None

        if not self._active or self._on_record is None:
            return None
        self.stats['emitted'] += 1
        self._on_record(record)
        return record


class PendingTransactionSubscriber(EventSubscriber):
    """
    Unconfirmed transactions (newPendingTransactions).
    """
    mode = 'pending'

    async def _subscribe(self, node: NodeConnector) -> Dict[str, Handler]:
        handlers: Dict[str, Handler] = {}
        handlers[await node.subscribe('newPendingTransactions')] = self._handle_pending
        await self._subscribe_blocks(node, handlers)
        return handlers

    def _handle_pending(self, node: NodeConnector, payload: Any):
        # Some providers push the full tx object instead of the hash
        tx_hash = payload.get('hash') if isinstance(payload, dict) else payload
        self._spawn_lookup(node, tx_hash)


class LogEventSubscriber(EventSubscriber):
    """
    Mined ERC-20 style Transfer events, resolved through their tx hash.
    """
    mode = 'logs'

    def __init__(self, *args, topic: str = Config.TRANSFER_EVENT_TOPIC, **kwargs):
        kwargs.setdefault('track_blocks', True)
        super().__init__(*args, **kwargs)
        self.topic = topic

    async def _subscribe(self, node: NodeConnector) -> Dict[str, Handler]:
        handlers: Dict[str, Handler] = {}
        handlers[await node.subscribe('logs', {'topics': [self.topic]})] = self._handle_log
        await self._subscribe_blocks(node, handlers)
        return handlers

    def _handle_log(self, node: NodeConnector, payload: Any):
        if not isinstance(payload, dict) or payload.get('removed'):
            # reorged-out logs are ignored
            return
        self._spawn_lookup(node, payload.get('transactionHash'), parse_quantity(payload.get('blockNumber')))


SUBSCRIBERS = {
    PendingTransactionSubscriber.mode: PendingTransactionSubscriber,
    LogEventSubscriber.mode: LogEventSubscriber,
}


def create_subscriber(mode: str = Config.SUBSCRIPTION_MODE, **kwargs) -> EventSubscriber:
    try:
        subscriber_class = SUBSCRIBERS[mode]
    except KeyError:
        raise ConfigurationError(f"Unknown SUBSCRIPTION_MODE: {mode!r} (expected one of {sorted(SUBSCRIBERS)})")
    return subscriber_class(**kwargs)
