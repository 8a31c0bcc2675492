"""
Configuration Storage Backends

Durable media for encrypted connector records. Contract:
- Atomic per-key writes
- Read-your-writes within one process
- Point-in-time snapshot into a timestamped backup area
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
import os
import shutil
import tempfile
import threading

import structlog

from healthlink.config import StorageSettings

logger = structlog.get_logger(__name__)

RECORD_SUFFIX = ".json"


def backup_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")


class StorageBackend(ABC):
    """Key/value medium for encrypted records."""

    @abstractmethod
    def read(self, key: str) -> bytes | None:
        """Return the stored bytes, or None when the key is absent."""

    @abstractmethod
    def write(self, key: str, data: bytes) -> str:
        """Atomically replace the value; returns its location."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove the key; False when it was absent."""

    @abstractmethod
    def list_keys(self) -> list[str]:
        pass

    @abstractmethod
    def modified_at(self, key: str) -> datetime | None:
        pass

    @abstractmethod
    def snapshot(self) -> tuple[str, int]:
        """Copy every current record into a new backup area; returns (location, count)."""


class FileSystemBackend(StorageBackend):
    """
    One JSON file per connector under a configuration directory.

    Layout:
        <root>/<connector_id>.json
        <root>/backups/<timestamp>/<connector_id>.json
    """

    def __init__(self, root: str | Path, backup_dirname: str = "backups"):
        self.root = Path(root)
        self.backup_root = self.root / backup_dirname
        self.root.mkdir(parents=True, exist_ok=True)
        self.backup_root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.root / f"{key}{RECORD_SUFFIX}"

    def read(self, key: str) -> bytes | None:
        try:
            return self._path(key).read_bytes()
        except FileNotFoundError:
            return None

    def write(self, key: str, data: bytes) -> str:
        target = self._path(key)
        fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        return str(target)

    def delete(self, key: str) -> bool:
        try:
            self._path(key).unlink()
            return True
        except FileNotFoundError:
            return False

    def list_keys(self) -> list[str]:
        return sorted(
            p.name[: -len(RECORD_SUFFIX)]
            for p in self.root.iterdir()
            if p.is_file() and p.name.endswith(RECORD_SUFFIX) and not p.name.startswith(".")
        )

    def modified_at(self, key: str) -> datetime | None:
        try:
            return datetime.fromtimestamp(self._path(key).stat().st_mtime, tz=timezone.utc)
        except FileNotFoundError:
            return None

    def snapshot(self) -> tuple[str, int]:
        target = self.backup_root / backup_timestamp()
        suffix = 1
        while target.exists():
            target = self.backup_root / f"{backup_timestamp()}-{suffix}"
            suffix += 1
        target.mkdir(parents=True)

        count = 0
        for key in self.list_keys():
            shutil.copy2(self._path(key), target / f"{key}{RECORD_SUFFIX}")
            count += 1

        logger.info("Configuration backup written", location=str(target), count=count)
        return str(target), count


class MemoryBackend(StorageBackend):
    """Process-local medium; backups are kept alongside the records."""

    def __init__(self):
        self._records: dict[str, tuple[bytes, datetime]] = {}
        self.backups: dict[str, dict[str, bytes]] = {}
        self._lock = threading.Lock()

    def read(self, key: str) -> bytes | None:
        with self._lock:
            entry = self._records.get(key)
        return entry[0] if entry else None

    def write(self, key: str, data: bytes) -> str:
        with self._lock:
            self._records[key] = (bytes(data), datetime.now(timezone.utc))
        return f"memory://{key}"

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._records.pop(key, None) is not None

    def list_keys(self) -> list[str]:
        with self._lock:
            return sorted(self._records)

    def modified_at(self, key: str) -> datetime | None:
        with self._lock:
            entry = self._records.get(key)
        return entry[1] if entry else None

    def snapshot(self) -> tuple[str, int]:
        with self._lock:
            label = backup_timestamp()
            while label in self.backups:
                label = f"{backup_timestamp()}-{len(self.backups)}"
            self.backups[label] = {k: v[0] for k, v in self._records.items()}
            count = len(self.backups[label])
        return f"memory://backups/{label}", count


def build_backend(settings: StorageSettings) -> StorageBackend:
    if settings.backend == "memory":
        return MemoryBackend()
    return FileSystemBackend(settings.dir, backup_dirname=settings.backup_dirname)
