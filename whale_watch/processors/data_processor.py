import pandas as pd
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, Optional, Union
from whale_watch.config import Config
from whale_watch.models import TransactionRecord

TABLE_COLUMNS = ['age', 'tx', 'from', 'to', 'value', 'value_usd', 'url']


def parse_quantity(value: Union[str, int, None]) -> Optional[int]:
    """
    Parses a JSON-RPC quantity ("0x1bc16d674ec80000") into an int.
    Plain ints and decimal strings are accepted too.
    """
    if value is None:
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.lower().startswith('0x'):
        return int(text, 16) if len(text) > 2 else 0
    return int(text)


class DataProcessor:
    """
    Turns raw node payloads into TransactionRecords and the whale view into
    a table for display.
    """

    @staticmethod
    def to_native_units(raw_value: int, decimals: int = Config.VALUE_DECIMALS) -> Decimal:
        # wei -> ETH
        return Decimal(raw_value).scaleb(-decimals)

    @staticmethod
    def round_display(value: Decimal) -> Decimal:
        return value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)

    @staticmethod
    def process_transaction(
        tx: Dict[str, Any],
        observed_at: Optional[datetime] = None,
        block_height: Optional[int] = None,
        decimals: int = Config.VALUE_DECIMALS,
    ) -> TransactionRecord:
        """
        Builds a record from an eth_getTransactionByHash result.

        The display value and timestamp are attached here, once; the record
        is immutable afterwards. ``block_height`` falls back to the tx's own
        blockNumber (None while pending).
        """
        tx_hash = tx['hash']
        if not isinstance(tx_hash, str) or not tx_hash:
            raise ValueError(f"transaction hash must be a non-empty string, got {tx_hash!r}")
        value = DataProcessor.to_native_units(parse_quantity(tx.get('value')) or 0, decimals)
        if block_height is None:
            block_height = parse_quantity(tx.get('blockNumber'))

        return TransactionRecord(
            tx_hash=tx_hash,
            sender=tx.get('from') or '',
            receiver=tx.get('to'),
            value=value,
            display_value=DataProcessor.round_display(value),
            observed_at=observed_at or datetime.now(),
            block_height=block_height,
        )

    @staticmethod
    def whales_to_frame(records: Iterable[TransactionRecord], formatter, now: Optional[datetime] = None) -> pd.DataFrame:
        """
        One row per record, ranked order preserved (RangeIndex).
        """
        now = now or datetime.now()
        data = []
        for r in records:
            data.append({
                'age': formatter.time_ago(r.observed_at, now),
                'tx': formatter.to_display_address(r.tx_hash, dynamic=False),
                'from': formatter.to_display_address(r.sender),
                'to': formatter.to_display_address(r.receiver),
                'value': float(r.display_value),
                'value_usd': formatter.to_fiat(r.display_value),
                'url': formatter.explorer_url(r.tx_hash),
            })

        return pd.DataFrame(data, columns=TABLE_COLUMNS)
