# erp_portal/utils/lookup_cache.py
import logging
import threading
from concurrent.futures import Future

logger = logging.getLogger(__name__)


class LookupCache:
    """
    Id -> value memo for one page session.

    Entries are never expired; the page session clears the cache when it is
    torn down. Concurrent misses on the same id share one load. A failed load
    is not stored, so the next caller tries again.

    Keys are compared as strings: backend payloads mix integer and string ids.
    """

    def __init__(self, loader, name="lookup"):
        self.loader = loader
        self.name = name
        self.loads = 0
        self._entries = {}
        self._pending = {}
        self._lock = threading.Lock()

    def get(self, key):
        key = str(key)
        with self._lock:
            if key in self._entries:
                return self._entries[key]
            pending = self._pending.get(key)
            owner = pending is None
            if owner:
                pending = Future()
                self._pending[key] = pending
                self.loads += 1

        if not owner:
            return pending.result()

        try:
            value = self.loader(key)
        except Exception as e:
            with self._lock:
                self._pending.pop(key, None)
            pending.set_exception(e)
            raise

        with self._lock:
            self._entries[key] = value
            self._pending.pop(key, None)
        pending.set_result(value)
        logger.debug("📦 %s cache filled for %s", self.name, key)
        return value

    def peek(self, key, default=None):
        with self._lock:
            return self._entries.get(str(key), default)

    def prime(self, key, value):
        with self._lock:
            self._entries[str(key)] = value

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __contains__(self, key):
        with self._lock:
            return str(key) in self._entries

    def __len__(self):
        with self._lock:
            return len(self._entries)
