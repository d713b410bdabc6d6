"""Per-pair mutual exclusion for match writes."""

import zlib
from contextlib import contextmanager
from threading import Lock
from typing import Iterator

from trackback.models.match import pair_key


class PairLockRegistry:
    """Fixed pool of locks striped by the sorted (lost, found) pair.

    Two operations on the same pair always take the same lock. Unrelated
    pairs occasionally share a stripe, which only costs throughput. The pool
    size is fixed, so memory does not grow with the number of pairs.
    """

    def __init__(self, stripes: int = 64):
        if stripes < 1:
            raise ValueError("stripes must be positive")
        self._locks = [Lock() for _ in range(stripes)]

    def _lock_for(self, first_id: str, second_id: str) -> Lock:
        low, high = pair_key(first_id, second_id)
        digest = zlib.crc32(f"{low}\x00{high}".encode("utf-8"))
        return self._locks[digest % len(self._locks)]

    @contextmanager
    def hold(self, first_id: str, second_id: str) -> Iterator[None]:
        """Hold the lock for an unordered item pair."""
        lock = self._lock_for(first_id, second_id)
        with lock:
            yield
