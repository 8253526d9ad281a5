from collections import OrderedDict
from typing import Optional


class DeduplicationStore:
    """
    Remembers every transaction hash that has been admitted.

    Unbounded by default (the set lives for the process lifetime). With
    ``max_size`` the oldest hashes are forgotten first.
    """

    def __init__(self, max_size: Optional[int] = None):
        self.max_size = max_size or None
        self._seen: 'OrderedDict[str, None]' = OrderedDict()

    def admit(self, tx_hash: str) -> bool:
        """
        Returns True and records the hash the first time it is seen,
        False on every later call with the same hash.
        """
        key = tx_hash.lower()
        if key in self._seen:
            return False

        self._seen[key] = None
        if self.max_size and len(self._seen) > self.max_size:
            self._seen.popitem(last=False)
        return True

    def __contains__(self, tx_hash: str) -> bool:
        return tx_hash.lower() in self._seen

    def __len__(self) -> int:
        return len(self._seen)
