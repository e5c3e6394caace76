"""
Local archive cache. Files are stored under a stable name derived from package
identity and version, so an archive already on disk is never downloaded again.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Callable

from .exceptions import ArchiveFetchError

log = logging.getLogger(__name__)

Fetcher = Callable[[str, Path], None]


def archive_key(namespace: str, name: str, version: str) -> str:
    return f"{namespace}-{name}-{version}.zip"


class DownloadCache:
    """
    Maps cache keys to files under ``root``.

    ``get_or_fetch`` may be called from several threads. Calls for the same key are
    serialized by a per-key lock, so only the first one downloads and later callers
    find the finished file.
    """

    def __init__(self, root: Path, fetcher: Fetcher) -> None:
        self.root = Path(root).expanduser()
        self._fetcher = fetcher
        self._registry_lock = threading.Lock()
        self._key_locks: dict[str, threading.Lock] = {}
        self._fetch_count = 0

    @property
    def fetch_count(self) -> int:
        with self._registry_lock:
            return self._fetch_count

    def path_for(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key in {".", ".."}:
            raise ArchiveFetchError(key, "cache key must be a plain file name")
        return self.root / key

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    def get_or_fetch(self, key: str, source_url: str) -> Path:
        path = self.path_for(key)
        if path.is_file():
            log.debug("Cache hit: %s", key)
            return path

        with self._lock_for(key):
            if path.is_file():
                log.debug("Cache hit after wait: %s", key)
                return path
            self._fetch(key, source_url, path)
            return path

    def _fetch(self, key: str, source_url: str, path: Path) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ArchiveFetchError(key, f"could not create cache directory {self.root}: {e}") from e

        with self._registry_lock:
            self._fetch_count += 1
        log.info("Downloading %s", key)

        fd, tmp_name = tempfile.mkstemp(prefix=f".{key}.", suffix=".part", dir=self.root)
        os.close(fd)
        tmp = Path(tmp_name)
        try:
            self._fetcher(source_url, tmp)
            tmp.replace(path)
        except ArchiveFetchError:
            tmp.unlink(missing_ok=True)
            raise
        except Exception as e:  # noqa: BLE001 - transport errors vary by fetcher
            tmp.unlink(missing_ok=True)
            raise ArchiveFetchError(key, str(e)) from e

    def clear(self) -> int:
        return clear_cache(self.root)


def clear_cache(root: Path) -> int:
    removed = 0
    if not root.is_dir():
        return removed
    for entry in root.iterdir():
        if entry.is_file() and (entry.suffix == ".zip" or entry.name.endswith(".part")):
            entry.unlink()
            removed += 1
    log.info("Removed %d cached archives from %s", removed, root)
    return removed
