import asyncio
import itertools
import json
import websockets
import websockets.exceptions
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple
from whale_watch.config import Config
from whale_watch.core.exceptions import ConfigurationError, NodeConnectionError, RpcError
from whale_watch.processors.data_processor import parse_quantity
from whale_watch.utils.logger import logger

_CLOSED = object()


class NodeConnector:
    """
    JSON-RPC client over a single node websocket.

    Responses are matched to requests by id; ``eth_subscription``
    notifications are queued and consumed through ``notifications()``.
    Once the socket is gone every pending request fails with
    NodeConnectionError and the notification stream raises it.
    """

    def __init__(self, url: str = Config.NODE_WS_URL, rpc_timeout: float = Config.RPC_TIMEOUT, idle_timeout: float = Config.IDLE_TIMEOUT):
        self.url = url
        self.rpc_timeout = rpc_timeout
        self.idle_timeout = idle_timeout
        self._ws = None
        self._reader: Optional[asyncio.Task] = None
        self._ids = itertools.count(1)
        self._pending: Dict[int, asyncio.Future] = {}
        self._notifications: asyncio.Queue = asyncio.Queue()
        self._close_reason: Optional[str] = None
        self._closed = True

    async def __aenter__(self) -> 'NodeConnector':
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._closed

    async def connect(self):
        if not self.url:
            raise ConfigurationError("NODE_WS_URL is not set")
        try:
            self._ws = await websockets.connect(
                self.url,
                ping_interval=20,  # Send ping every 20 seconds
                ping_timeout=10,  # Wait 10 seconds for pong
                close_timeout=10,
                max_size=None,
            )
        except (OSError, websockets.exceptions.WebSocketException, asyncio.TimeoutError) as e:
            raise NodeConnectionError(f"connect failed: {e}") from e
        self._closed = False
        self._close_reason = None
        self._reader = asyncio.create_task(self._read_loop())
        logger.info("🔌 Node websocket connected")

    async def close(self):
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None

    async def _read_loop(self):
        reason = "connection closed"
        try:
            async for message in self._ws:
                self._dispatch(message)
        except websockets.exceptions.ConnectionClosed as e:
            reason = f"connection closed: {e}"
        finally:
            self._mark_closed(reason)

    def _mark_closed(self, reason: str):
        self._closed = True
        self._close_reason = reason
        for future in self._pending.values():
            if not future.done():
                future.set_exception(NodeConnectionError(reason))
        self._pending.clear()
        self._notifications.put_nowait(_CLOSED)

    def _dispatch(self, raw):
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning(f"[node] Ignoring non-JSON frame: {str(raw)[:100]}")
            return
        for msg in message if isinstance(message, list) else [message]:
            if isinstance(msg, dict):
                self._handle_message(msg)

    def _handle_message(self, msg: Dict[str, Any]):
        if msg.get('method') == 'eth_subscription':
            params = msg.get('params') or {}
            self._notifications.put_nowait((params.get('subscription'), params.get('result')))
            return

        future = self._pending.pop(msg.get('id'), None)
        if future is None or future.done():
            return
        error = msg.get('error')
        if error:
            if isinstance(error, dict):
                future.set_exception(RpcError(error.get('message', str(error)), error.get('code')))
            else:
                future.set_exception(RpcError(str(error)))
        else:
            future.set_result(msg.get('result'))

    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        if not self.connected:
            raise NodeConnectionError(self._close_reason or "not connected")

        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        payload = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or []}
        try:
            await self._ws.send(json.dumps(payload))
            return await asyncio.wait_for(future, timeout=self.rpc_timeout)
        except asyncio.TimeoutError:
            raise RpcError(f"{method} timed out after {self.rpc_timeout}s")
        except websockets.exceptions.ConnectionClosed as e:
            raise NodeConnectionError(f"connection closed: {e}") from e
        finally:
            self._pending.pop(request_id, None)

    async def subscribe(self, kind: str, *params: Any) -> str:
        """
        eth_subscribe; returns the subscription id.
        """
        subscription_id = await self.request('eth_subscribe', [kind, *params])
        logger.info(f"[node] Subscribed to {kind} ({subscription_id})")
        return subscription_id

    async def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """
        eth_getTransactionByHash; None when the node no longer knows it.
        """
        return await self.request('eth_getTransactionByHash', [tx_hash])

    async def block_number(self) -> int:
        return parse_quantity(await self.request('eth_blockNumber'))

    async def notifications(self) -> AsyncIterator[Tuple[str, Any]]:
        """
        Yields (subscription_id, result) until the socket goes away.
        After ``idle_timeout`` seconds of silence the connection is pinged.
        """
        while True:
            try:
                item = await asyncio.wait_for(self._notifications.get(), timeout=self.idle_timeout)
            except asyncio.TimeoutError:
                logger.debug(f"[node] {self.idle_timeout}s 未收到消息，检查连接...")
                await self._check_alive()
                continue
            if item is _CLOSED:
                raise NodeConnectionError(self._close_reason or "connection closed")
            yield item

    async def _check_alive(self):
        if not self.connected:
            raise NodeConnectionError(self._close_reason or "not connected")
        try:
            pong_waiter = await self._ws.ping()
            await asyncio.wait_for(pong_waiter, timeout=10)
        except Exception as e:
            raise NodeConnectionError(f"ping failed: {e}") from e
