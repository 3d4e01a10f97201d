"""Keyed in-process mutual exclusion.

Each key (checkout session, product, coupon, user cart) gets its own lock,
so unrelated work never waits behind a global lock. Locks are reference
counted and dropped once nobody holds or waits on them.
"""

import threading
from contextlib import contextmanager

import structlog

logger = structlog.get_logger(__name__)


class KeyedLock:
    def __init__(self, name: str) -> None:
        self.name = name
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}
        self._refs: dict[str, int] = {}

    @contextmanager
    def hold(self, key):
        key = str(key)
        with self._guard:
            lock = self._locks.setdefault(key, threading.RLock())
            self._refs[key] = self._refs.get(key, 0) + 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._refs[key] -= 1
                if self._refs[key] == 0:
                    del self._refs[key]
                    del self._locks[key]

    def is_held(self, key) -> bool:
        with self._guard:
            return str(key) in self._locks


session_locks = KeyedLock("checkout_session")
product_locks = KeyedLock("product_stock")
coupon_locks = KeyedLock("coupon")
cart_locks = KeyedLock("cart")
