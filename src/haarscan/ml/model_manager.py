"""Cascade manager: discover, load, cache, and evict cascade files.

Cascades live as ``<name>.json`` files in a single directory. Loaded models
are immutable, so one cached instance is shared by every concurrent scan;
entries idle for longer than the configured TTL are evicted.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from haarscan.ml.loader import CASCADE_SUFFIX, load_cascade

if TYPE_CHECKING:
    from haarscan.config import Settings
    from haarscan.ml.cascade import CascadeModel

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class CascadeManager(Protocol):
    """Protocol for cascade lifecycle management."""

    def list_available(self) -> list[str]:
        """Return names of cascades present on disk."""
        ...

    def ensure_available(self, name: str) -> Path:
        """Return the file path of a cascade, or raise KeyError."""
        ...

    def get_cascade(self, name: str) -> CascadeModel:
        """Return a cached or newly loaded cascade."""
        ...

    def get_loaded_cascades(self) -> list[str]:
        """Return names of currently cached cascades."""
        ...

    def unload_idle_cascades(self) -> None:
        """Drop cascades that have exceeded their TTL."""
        ...

    def shutdown(self) -> None:
        """Clear all cached cascades."""
        ...


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


@dataclass
class _CachedCascade:
    cascade: CascadeModel
    last_used: float


class FileCascadeManager:
    """Loads cascades from ``settings.cascades_dir`` and caches them."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._cascades_dir = Path(settings.cascades_dir)
        self._cascades_dir.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._cache: dict[str, _CachedCascade] = {}

    # -- Public API ---------------------------------------------------------

    def list_available(self) -> list[str]:
        """Return the sorted names of all cascade files in the directory."""
        return sorted(path.stem for path in self._cascades_dir.glob(f"*{CASCADE_SUFFIX}") if path.is_file())

    def ensure_available(self, name: str) -> Path:
        """Resolve a cascade name to its file.

        Raises:
            KeyError: If the name is not a plain file stem or no file exists.
        """
        if not name or Path(name).name != name or name.startswith("."):
            raise KeyError(f"Unknown cascade: {name}")
        path = self._cascades_dir / f"{name}{CASCADE_SUFFIX}"
        if not path.is_file():
            raise KeyError(f"Unknown cascade: {name}")
        return path

    def get_cascade(self, name: str) -> CascadeModel:
        """Return a cached cascade, loading it from disk if needed.

        Raises:
            KeyError: If the cascade does not exist.
            ConfigError: If the cascade file is malformed.
        """
        with self._lock:
            cached = self._cache.get(name)
            if cached is not None:
                cached.last_used = time.monotonic()
                return cached.cascade

        cascade = load_cascade(self.ensure_available(name))

        with self._lock:
            # Double-check: another thread may have loaded it meanwhile.
            existing = self._cache.get(name)
            if existing is not None:
                existing.last_used = time.monotonic()
                return existing.cascade
            self._cache[name] = _CachedCascade(cascade=cascade, last_used=time.monotonic())
            logger.info("Cached cascade %s", name)
            return cascade

    def get_loaded_cascades(self) -> list[str]:
        """Return names of cascades currently held in memory."""
        with self._lock:
            return list(self._cache.keys())

    def unload_idle_cascades(self) -> None:
        """Remove cascades that have exceeded the configured TTL."""
        ttl = self._settings.cascade_ttl
        if ttl == 0:
            return

        now = time.monotonic()
        with self._lock:
            expired = [name for name, cached in self._cache.items() if (now - cached.last_used) > ttl]
            for name in expired:
                del self._cache[name]
                logger.info("Evicted idle cascade %s", name)

    def shutdown(self) -> None:
        """Clear all cached cascades."""
        with self._lock:
            self._cache.clear()
            logger.info("All cascades cleared")
