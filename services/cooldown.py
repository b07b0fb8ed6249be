import threading
import time
from typing import Callable


class Cooldown:
    """Per-key cooldown table.

    ``check`` is the only read-modify-write on the table and runs entirely
    under one lock, so concurrent callers racing on the same key see exactly
    one ``False``.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._until: dict[str, float] = {}

    def check(self, key: str, seconds: float) -> bool:
        """Return True if *key* is still cooling down; otherwise start a
        new cooldown of *seconds* and return False."""
        with self._lock:
            now = self._clock()
            until = self._until.get(key)
            if until is not None and now < until:
                return True
            self._until[key] = now + seconds
            return False

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._until.clear()
            else:
                self._until.pop(key, None)
