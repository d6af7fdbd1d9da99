from __future__ import annotations

import logging
import threading
import weakref
from contextlib import contextmanager


log = logging.getLogger(__name__)


def mask_secret(value: str | None) -> str:
    s = (value or "").strip()
    if not s:
        return "****"
    return "****" + s[-4:]


class _KeyLock:
    __slots__ = ("lock", "__weakref__")

    def __init__(self) -> None:
        self.lock = threading.Lock()


_GLOBAL_LOCK = threading.Lock()
# Entries vanish once no caller holds or waits on the key.
_LOCKS_BY_KEY: "weakref.WeakValueDictionary[tuple, _KeyLock]" = weakref.WeakValueDictionary()


def _lock_for_key(key: tuple) -> _KeyLock:
    with _GLOBAL_LOCK:
        entry = _LOCKS_BY_KEY.get(key)
        if entry is None:
            entry = _KeyLock()
            _LOCKS_BY_KEY[key] = entry
        return entry


@contextmanager
def keyed_lock(*key):
    """
    Serialize work per key within this process (e.g. lot consumption per (wallet_id, token)).
    """
    entry = _lock_for_key(tuple(key))
    if not entry.lock.acquire(blocking=False):
        log.debug("Waiting for lock %r", key)
        entry.lock.acquire()
    try:
        yield
    finally:
        entry.lock.release()
