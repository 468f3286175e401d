"""Per-record locks for the ledger's shared rows.

There is no global lock: each operation holds only the keys of the records
it mutates (``product:<id>``, ``order:<id>``, ``affiliate:<code>``). Keys are
always acquired in sorted order, so two operations that need overlapping key
sets cannot deadlock.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field


@dataclass
class _KeyLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0  # threads holding or waiting on ``lock``


class KeyedLocks:
    """Registry of locks, one per record key.

    A key's lock exists only while some thread holds or waits on it, so the
    registry stays as small as the set of records currently in contention.
    """

    def __init__(self):
        self._locks: dict[str, _KeyLock] = {}
        self._lock = threading.Lock()  # guards the registry itself

    def _checkout(self, key: str) -> threading.Lock:
        with self._lock:
            entry = self._locks.setdefault(key, _KeyLock())
            entry.holders += 1
            return entry.lock

    def _release(self, key: str) -> None:
        with self._lock:
            entry = self._locks[key]
            entry.lock.release()
            entry.holders -= 1
            if entry.holders == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        """Hold the locks for all given keys for the duration of the block."""
        ordered = sorted(set(keys))
        acquired: list[str] = []
        try:
            for key in ordered:
                self._checkout(key).acquire()
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._release(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._locks)


def product_key(product_id) -> str:
    return f"product:{product_id}"


def order_key(order_id) -> str:
    return f"order:{order_id}"


def affiliate_key(code) -> str:
    return f"affiliate:{code}"


record_locks = KeyedLocks()
