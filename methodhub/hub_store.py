"""
A thread-safe map for registrations.

Every access takes the store lock with a bounded number of timed attempts and
raises InternalConsistencyError once the budget is spent, so a caller never
blocks indefinitely on a contended store.
"""
import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Optional, Tuple

from methodhub.hub_datatypes import DuplicateRegistration, InternalConsistencyError, InvalidArgument


class ThreadingDict:
    """Dictionary guarded by a re-entrant lock with bounded acquisition."""

    def __init__(self, retries: int = 100, retry_wait: float = 0.05):
        self._data: dict = {}
        self._lock = threading.RLock()
        self.retries = retries
        self.retry_wait = retry_wait

    @contextmanager
    def _access(self, op: str, key: Any = None) -> Iterator[None]:
        for _ in range(self.retries):
            if self._lock.acquire(timeout=self.retry_wait):
                break
        else:
            target = f" {key!r}" if key is not None else ""
            raise InternalConsistencyError(f"No access for {op}{target} after {self.retries} attempts")
        try:
            yield
        finally:
            self._lock.release()

    def add(self, key: Any, value: Any, replace: bool = False):
        if key is None:
            raise InvalidArgument("key must not be None")
        with self._access("adding", key):
            if key in self._data and not replace:
                existing = self._data[key]
                raise DuplicateRegistration(key, getattr(existing, "name", None))
            self._data[key] = value
            if self._data.get(key) is not value:
                raise InternalConsistencyError(f"Adding {key!r} to the store did not take effect")

    def get(self, key: Any, default: Any = None) -> Any:
        if key is None:
            raise InvalidArgument("key must not be None")
        with self._access("getting", key):
            return self._data.get(key, default)

    def remove(self, key: Any) -> Any:
        """Removes and returns the value for `key`; KeyError if absent."""
        if key is None:
            raise InvalidArgument("key must not be None")
        with self._access("removing", key):
            value = self._data.pop(key)
            if key in self._data:
                raise InternalConsistencyError(f"Removing {key!r} from the store did not take effect")
            return value

    def contains(self, key: Any) -> bool:
        if key is None:
            raise InvalidArgument("key must not be None")
        with self._access("reading", key):
            return key in self._data

    def first(self, predicate: Callable[[Any, Any], bool]) -> Optional[Tuple[Any, Any]]:
        """The first (key, value) pair in insertion order satisfying `predicate`."""
        for key, value in self.items():
            if predicate(key, value):
                return key, value
        return None

    def items(self) -> List[Tuple[Any, Any]]:
        with self._access("reading"):
            return list(self._data.items())

    def keys(self) -> List[Any]:
        with self._access("reading"):
            return list(self._data.keys())

    def values(self) -> List[Any]:
        with self._access("reading"):
            return list(self._data.values())

    def clear(self) -> List[Any]:
        """Empties the store and returns the values it held."""
        with self._access("clearing"):
            values = list(self._data.values())
            self._data.clear()
            return values

    def __len__(self) -> int:
        with self._access("reading"):
            return len(self._data)

    def __contains__(self, key: Any) -> bool:
        return key is not None and self.contains(key)

    def __repr__(self) -> str:
        return f"<ThreadingDict size={len(self)}>"
