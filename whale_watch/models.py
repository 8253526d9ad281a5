from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple


@dataclass(frozen=True)
class TransactionRecord:
    tx_hash: str
    sender: str
    receiver: Optional[str]  # None for contract creation
    value: Decimal  # raw value in native units (ETH)
    display_value: Decimal  # value rounded to 2 places
    observed_at: datetime  # wall-clock time at resolution, not chain time
    block_height: Optional[int] = None  # set when sourced from a log event


@dataclass(frozen=True)
class PriceQuote:
    price: float  # fiat (USD) per unit
    updated_at: datetime
    symbol: str = 'eth'
    source: str = ''


@dataclass(frozen=True)
class BlockHeader:
    number: int
    observed_at: datetime


class ConnectionState(str, Enum):
    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    DISCONNECTED = 'disconnected'
    RECONNECTING = 'reconnecting'
    STOPPED = 'stopped'


@dataclass(frozen=True)
class MonitorSnapshot:
    """
    Read-only view handed to the presentation layer.
    """
    whales: Tuple[TransactionRecord, ...]
    quote: Optional[PriceQuote]
    block_height: Optional[int]
    threshold: Decimal
    connection_state: ConnectionState
    total_records: int = 0
    taken_at: datetime = field(default_factory=datetime.now)

    @property
    def is_waiting(self) -> bool:
        """True while no record clears the threshold ("wait for the whales")."""
        return not self.whales

    @property
    def price(self) -> float:
        return self.quote.price if self.quote else 0.0
