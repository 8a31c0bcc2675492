"""
HealthLink Storage Module

- Encrypted connector configuration store
- Pluggable storage media (filesystem, memory)
"""

from healthlink.storage.backends import FileSystemBackend, MemoryBackend, StorageBackend
from healthlink.storage.config_store import (
    BackupResult,
    ConfigStore,
    InvalidConfigEntry,
    StoreAck,
    StoredConfig,
    StoredConfigSummary,
)

__all__ = [
    "FileSystemBackend",
    "MemoryBackend",
    "StorageBackend",
    "BackupResult",
    "ConfigStore",
    "InvalidConfigEntry",
    "StoreAck",
    "StoredConfig",
    "StoredConfigSummary",
]
