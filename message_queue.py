import threading
from collections import deque
from typing import Deque, Optional

from models import BroadcastRecord


class MessageQueue:
    """
    Unbounded FIFO of broadcast records.

    Many session threads put(), exactly one dispatcher get()s. After close(),
    put() refuses new records and get() keeps handing out what is already
    queued, then returns None.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._items: Deque[BroadcastRecord] = deque()
        self._next_seq = 1
        self._closed = False

    def put(self, record: BroadcastRecord) -> bool:
        """Returns False if the queue is already closed and the record was dropped."""
        with self._cond:
            if self._closed:
                return False
            record.seq = self._next_seq
            self._next_seq += 1
            self._items.append(record)
            self._cond.notify()
        return True

    def get(self, timeout: Optional[float] = None) -> Optional[BroadcastRecord]:
        """
        Block until a record is available.

        Returns None when the queue is closed and drained, or when `timeout`
        runs out first.
        """
        with self._cond:
            if not self._cond.wait_for(lambda: self._items or self._closed, timeout):
                return None
            if self._items:
                return self._items.popleft()
            return None

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)
