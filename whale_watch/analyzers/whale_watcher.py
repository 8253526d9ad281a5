from bisect import bisect_right
from decimal import Decimal, InvalidOperation
from typing import Iterable, Iterator, List, Optional, Set, Tuple, Union
from whale_watch.config import Config
from whale_watch.core.exceptions import InvalidThresholdError
from whale_watch.models import TransactionRecord

Number = Union[int, float, str, Decimal]


def normalize_threshold(value: Number) -> Decimal:
    """
    Validates a threshold coming from the control surface.

    Negative values are clamped to zero; anything non-numeric, NaN or
    infinite raises InvalidThresholdError.
    """
    if isinstance(value, bool):
        raise InvalidThresholdError(f"Threshold must be numeric, got {value!r}")
    try:
        threshold = Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidThresholdError(f"Threshold must be numeric, got {value!r}")

    if not threshold.is_finite():
        raise InvalidThresholdError(f"Threshold must be finite, got {value!r}")
    if threshold < 0:
        return Decimal(0)
    return threshold


class RankedSet:
    """
    Admitted records sorted by display value, highest first.

    Equal values keep arrival order: a new record is placed after every
    record with the same display value. Uniqueness of hashes is the
    caller's job (see DeduplicationStore).
    """

    def __init__(self, max_records: Optional[int] = None):
        self.max_records = max_records or None
        # Negated display values, ascending, parallel to _entries
        self._keys: List[Decimal] = []
        self._entries: List[Tuple[int, TransactionRecord]] = []
        self._hashes: Set[str] = set()
        self._arrivals = 0

    def insert(self, record: TransactionRecord) -> Optional[TransactionRecord]:
        """
        Inserts a record; returns the evicted record when the set is capped
        and full, otherwise None.
        """
        key = -record.display_value
        pos = bisect_right(self._keys, key)
        self._keys.insert(pos, key)
        self._entries.insert(pos, (self._arrivals, record))
        self._hashes.add(record.tx_hash.lower())
        self._arrivals += 1

        if self.max_records and len(self._entries) > self.max_records:
            return self._evict_oldest()
        return None

    def _evict_oldest(self) -> TransactionRecord:
        oldest = min(range(len(self._entries)), key=lambda i: self._entries[i][0])
        self._keys.pop(oldest)
        record = self._entries.pop(oldest)[1]
        self._hashes.discard(record.tx_hash.lower())
        return record

    def derive_view(self, threshold: Number) -> Tuple[TransactionRecord, ...]:
        """
        Records whose display value is >= threshold, in ranked order.
        Never mutates the set.
        """
        limit = normalize_threshold(threshold)
        count = bisect_right(self._keys, -limit)
        return tuple(record for _, record in self._entries[:count])

    def records(self) -> Tuple[TransactionRecord, ...]:
        return tuple(record for _, record in self._entries)

    def __contains__(self, tx_hash: str) -> bool:
        return tx_hash.lower() in self._hashes

    def __iter__(self) -> Iterator[TransactionRecord]:
        return iter(self.records())

    def __len__(self) -> int:
        return len(self._entries)


class WhaleWatcher:
    """
    Ranked set of admitted transactions plus the user-controlled threshold.
    The whale view is recomputed from both on every read.
    """
    def __init__(self, threshold: Number = Config.DEFAULT_WHALE_THRESHOLD, max_records: Optional[int] = Config.MAX_RECORDS):
        self._threshold = normalize_threshold(threshold)
        self.ranked = RankedSet(max_records=max_records)

    @property
    def threshold(self) -> Decimal:
        return self._threshold

    def set_threshold(self, value: Number) -> Decimal:
        """
        Replaces the threshold. Invalid input raises and leaves the previous
        threshold in place.
        """
        self._threshold = normalize_threshold(value)
        return self._threshold

    def add(self, record: TransactionRecord) -> Optional[TransactionRecord]:
        return self.ranked.insert(record)

    def view(self) -> Tuple[TransactionRecord, ...]:
        return self.ranked.derive_view(self._threshold)

    def check_records(self, records: Iterable[TransactionRecord], threshold: Optional[Number] = None) -> List[TransactionRecord]:
        """
        Filters records meeting the threshold without touching the ranked set.
        """
        limit = self._threshold if threshold is None else normalize_threshold(threshold)
        return [r for r in records if r.display_value >= limit]

    def __contains__(self, tx_hash: str) -> bool:
        return tx_hash in self.ranked

    def __len__(self) -> int:
        return len(self.ranked)
