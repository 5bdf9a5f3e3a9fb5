"""
In-process deduplication fast path.

Remembers which (source_id, external_id) keys this process has already
staged and promoted, so repeated runs can skip them without a database
round trip. The unique constraint on the staging table stays the
authoritative guard; a miss here only means "ask the database".
"""
from collections import OrderedDict


class Deduplicator:
    """Bounded LRU set of handled dedup keys."""

    def __init__(self, max_size: int = 10_000):
        self.max_size = max_size
        self._seen: OrderedDict[tuple[str, str], None] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def seen(self, source_id: str, external_id: str) -> bool:
        key = (source_id, external_id)
        if key in self._seen:
            self._seen.move_to_end(key)
            self.hits += 1
            return True
        self.misses += 1
        return False

    def remember(self, source_id: str, external_id: str) -> None:
        if self.max_size <= 0:
            return
        key = (source_id, external_id)
        self._seen[key] = None
        self._seen.move_to_end(key)
        while len(self._seen) > self.max_size:
            self._seen.popitem(last=False)

    def __len__(self) -> int:
        return len(self._seen)

    def get_status(self) -> dict:
        return {
            "size": len(self._seen),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
        }
