"""
Shared process state of a user database: the active encryption key, the
shutdown flag and the registered plugin settings.

All of it sits behind one read-write lock. Readers (seal, open, shutdown
check) share the lock; rotation and close take it exclusively. The raw key
never leaves this object.
"""

import hmac
import logging
import threading
from contextlib import contextmanager
from typing import Dict, List

from userdb.core import crypto
from userdb.core.errors import ShutdownError

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """
    Multiple readers or one writer. Waiting writers block new readers so a
    close() is never starved by a steady stream of lookups.

    Read sections nest: a thread that already holds the read lock re-enters
    without waiting. Taking the write lock while holding a read lock
    deadlocks.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writers_waiting = 0
        self._writer_active = False
        self._local = threading.local()

    @contextmanager
    def read_lock(self):
        depth = getattr(self._local, "depth", 0)
        with self._cond:
            while depth == 0 and (self._writer_active or self._writers_waiting > 0):
                self._cond.wait()
            self._readers += 1
        self._local.depth = depth + 1
        try:
            yield
        finally:
            self._local.depth = depth
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_lock(self):
        with self._cond:
            self._writers_waiting += 1
            while self._readers > 0 or self._writer_active:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer_active = True
        try:
            yield
        finally:
            with self._cond:
                self._writer_active = False
                self._cond.notify_all()


class Lifecycle:
    """Running -> shut down, one way, exactly once."""

    def __init__(self, key: bytearray):
        crypto.check_key(key)
        self._lock = ReadWriteLock()
        self._key = key
        self._shutdown = False
        self._plugin_settings: Dict[str, List] = {}

    def is_shutdown(self) -> bool:
        with self._lock.read_lock():
            return self._shutdown

    def ensure_running(self):
        if self.is_shutdown():
            raise ShutdownError("user database is shut down")

    @contextmanager
    def running(self):
        """
        Shared section. The flag is checked after the lock is held, so a
        concurrent close() can't zero the key underneath the caller.
        """
        with self._lock.read_lock():
            if self._shutdown:
                raise ShutdownError("user database is shut down")
            yield

    @contextmanager
    def exclusive(self):
        with self._lock.write_lock():
            if self._shutdown:
                raise ShutdownError("user database is shut down")
            yield

    # The helpers below must be called inside running() or exclusive().

    def seal(self, version: int, plaintext: bytes) -> bytes:
        return crypto.seal(version, self._key, plaintext)

    def open(self, envelope: bytes) -> tuple[bytes, int]:
        return crypto.open_envelope(self._key, envelope)

    def is_active_key(self, key) -> bool:
        return hmac.compare_digest(key, self._key)

    def swap_key(self, new_key: bytearray):
        """Install new_key and wipe the retired one. Needs exclusive()."""
        old = self._key
        self._key = new_key
        crypto.zero(old)

    def set_plugin_settings(self, plugin_id: str, settings: List):
        with self.exclusive():
            self._plugin_settings[plugin_id] = list(settings)

    def plugin_settings(self, plugin_id: str) -> List:
        with self.running():
            return list(self._plugin_settings.get(plugin_id, []))

    def close(self) -> bool:
        """Zero the key and mark shutdown. Returns False if already closed."""
        with self._lock.write_lock():
            if self._shutdown:
                return False
            try:
                crypto.zero(self._key)
            finally:
                self._shutdown = True
            logger.debug("encryption key zeroed")
            return True
