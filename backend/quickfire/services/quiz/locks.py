import threading
from contextlib import contextmanager
from typing import Dict, Tuple

# Process-local serialization; cross-process safety comes from the
# conditional UPDATEs issued inside the locked sections.
_locks: Dict[Tuple, threading.Lock] = {}
_registry_lock = threading.Lock()


def key_lock(*key) -> threading.Lock:
    with _registry_lock:
        lock = _locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _locks[key] = lock
        return lock


@contextmanager
def user_lock(user_id: int):
    """Serialize every quiz mutation of one user (and therefore one session)."""
    lock = key_lock('user', int(user_id))
    with lock:
        yield
