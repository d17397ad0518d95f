"""
Cache Module
============

Memoizes expensive results (feature tables, fitted ensembles) in memory
and on disk.

Each key is computed at most once: concurrent callers asking for the
same key wait for the first computation instead of repeating it.
`None` is a valid cached value.
"""

import logging
import re
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import joblib

logger = logging.getLogger(__name__)

_MISSING = object()


class DiskCache:
    """
    Key/value memoization backed by joblib files.

    Args:
        cache_dir: Directory for the `{key}.joblib` files; None keeps
            results in memory only
        refresh: Ignore (and overwrite) anything already cached
    """

    def __init__(self, cache_dir: Optional[str] = None, refresh: bool = False):
        self.cache_dir = Path(cache_dir) if cache_dir else None
        self.refresh = refresh

        self._values: Dict[str, Any] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

        if self.cache_dir is not None:
            self.cache_dir.mkdir(parents=True, exist_ok=True)

    def path(self, key: str) -> Optional[Path]:
        if self.cache_dir is None:
            return None
        safe = re.sub(r'[^A-Za-z0-9._-]+', '_', key)
        return self.cache_dir / f"{safe}.joblib"

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            if key not in self._locks:
                self._locks[key] = threading.Lock()
            return self._locks[key]

    def get_or_compute(self, key: str, compute: Callable[[], Any]) -> Any:
        """
        Return the cached value for `key`, computing it on first use.

        Args:
            key: Cache key
            compute: Zero-argument function producing the value

        Returns:
            The cached or freshly computed value
        """
        with self._lock_for(key):
            value = self._values.get(key, _MISSING)
            if value is not _MISSING:
                return value

            path = self.path(key)
            if path is not None and path.exists() and not self.refresh:
                value = joblib.load(path)
                logger.debug(f"Cache hit for '{key}' at {path}")
            else:
                logger.debug(f"Cache miss for '{key}'")
                value = compute()
                if path is not None:
                    joblib.dump(value, path)
                    logger.debug(f"Cached '{key}' to {path}")

            self._values[key] = value
            return value

    def invalidate(self, key: str) -> None:
        """Forget a cached value, in memory and on disk."""
        with self._lock_for(key):
            self._values.pop(key, None)
            path = self.path(key)
            if path is not None and path.exists():
                path.unlink()
                logger.info(f"Removed cached '{key}'")

        with self._guard:
            self._locks.pop(key, None)

    def __contains__(self, key: str) -> bool:
        if key in self._values:
            return True
        path = self.path(key)
        return path is not None and path.exists() and not self.refresh
