"""Fallback data for failed operations.

Provides:
- A keyed registry of last-known-good responses
- A generic helper that substitutes a fallback when an operation fails
"""

import inspect
import logging
import threading
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()


class FallbackProvider:
    """Registry of previously captured responses, keyed by caller-chosen strings.

    Entries never expire; the caller owns their lifecycle.
    """

    def __init__(self, initial: Optional[dict[str, Any]] = None):
        """Initialize fallback provider.

        Args:
            initial: Optional entries to pre-populate
        """
        self._data: dict[str, Any] = dict(initial or {})
        self._lock = threading.Lock()

    def set(self, key: str, value: Any) -> None:
        """Store a value for potential fallback use.

        Args:
            key: Fallback key
            value: Value to store
        """
        with self._lock:
            self._data[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Get a stored value.

        Args:
            key: Fallback key
            default: Returned when the key is absent

        Returns:
            Stored value or default
        """
        with self._lock:
            return self._data.get(key, default)

    def has(self, key: str) -> bool:
        """Check whether a value is stored under key."""
        with self._lock:
            return key in self._data

    def lookup(self, key: Optional[str]) -> tuple[bool, Any]:
        """Atomically check and fetch a key.

        Returns:
            Tuple of (found, value)
        """
        if key is None:
            return False, None
        with self._lock:
            value = self._data.get(key, _MISSING)
        if value is _MISSING:
            return False, None
        return True, value

    def delete(self, key: str) -> bool:
        """Remove a key.

        Returns:
            True if the key existed
        """
        with self._lock:
            return self._data.pop(key, _MISSING) is not _MISSING

    def clear(self) -> int:
        """Remove all entries.

        Returns:
            Number of entries cleared
        """
        with self._lock:
            count = len(self._data)
            self._data.clear()
            return count

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


async def with_fallback(
    operation: Callable[[], Awaitable[T]],
    fallback: Callable[[], Union[T, Awaitable[T]]],
) -> T:
    """Run an operation, returning the fallback's result if it fails.

    Args:
        operation: Zero-argument async callable
        fallback: Zero-argument callable, sync or async

    Returns:
        Operation result, or fallback result on failure
    """
    try:
        return await operation()
    except Exception as e:
        logger.warning(f"Operation failed, using fallback: {e}")
        result = fallback()
        if inspect.isawaitable(result):
            return await result
        return result
