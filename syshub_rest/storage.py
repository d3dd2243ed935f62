"""
sysHUB REST SDK Storage

Key/value stores for the credential record and the ETag cache, plus the
CredentialStore that keeps one serialized record in either the durable or
the ephemeral store.
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .types import CredentialRecord, KeyValueStore, StorageLocation


logger = logging.getLogger("syshub_rest.storage")


class MemoryStore:
    """In-memory store (ephemeral, lives as long as the process)."""

    def __init__(self) -> None:
        self._items: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)


class FileStore:
    """File-based store (durable across restarts)."""

    def __init__(self, file_path: Optional[str] = None) -> None:
        """
        Initialize file storage.

        Args:
            file_path: Path to the store file. Defaults to ~/.syshub/session.json
        """
        if file_path:
            self._file_path = Path(file_path)
        else:
            self._file_path = Path.home() / ".syshub" / "session.json"

        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._file_path

    def _read_data(self) -> Dict[str, Any]:
        """Read all items from file."""
        try:
            if self._file_path.exists():
                with open(self._file_path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    return data
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable store file %s: %s", self._file_path, e)
        return {}

    def _write_data(self, data: Dict[str, Any]) -> None:
        """Write all items to file."""
        if not data:
            if self._file_path.exists():
                self._file_path.unlink()
            return
        self._file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._file_path, "w", encoding="utf-8") as f:
            json.dump(data, f)
        # Owner read/write only
        os.chmod(self._file_path, 0o600)

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._read_data().get(key)
            return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read_data()
            data[key] = value
            self._write_data(data)

    def remove_item(self, key: str) -> None:
        with self._lock:
            data = self._read_data()
            if key in data:
                del data[key]
                self._write_data(data)


class CredentialStore:
    """
    Persists one serialized credential record under ``key``.

    The record lives in exactly one of the two stores; writing it to one
    store removes any copy from the other. The store never changes a record.
    """

    def __init__(
        self,
        key: str,
        durable: Optional[KeyValueStore] = None,
        ephemeral: Optional[KeyValueStore] = None,
    ) -> None:
        self._key = key
        self._durable = durable if durable is not None else FileStore()
        self._ephemeral = ephemeral if ephemeral is not None else MemoryStore()

    @property
    def key(self) -> str:
        return self._key

    @property
    def durable(self) -> KeyValueStore:
        return self._durable

    @property
    def ephemeral(self) -> KeyValueStore:
        return self._ephemeral

    def _store_for(self, location: StorageLocation) -> KeyValueStore:
        return self._durable if location is StorageLocation.DURABLE else self._ephemeral

    def load(self) -> Optional[Tuple[CredentialRecord, StorageLocation]]:
        """Load the record, looking in the durable store first."""
        for location in (StorageLocation.DURABLE, StorageLocation.EPHEMERAL):
            raw = self._store_for(location).get_item(self._key)
            if raw is None:
                continue
            try:
                return CredentialRecord.from_dict(json.loads(raw)), location
            except (ValueError, KeyError, TypeError) as e:
                logger.warning("Discarding undecodable credential record in %s store: %s", location.value, e)
        return None

    def save(self, record: CredentialRecord, location: StorageLocation) -> None:
        """Write the record to ``location`` and drop the copy in the other store."""
        other = StorageLocation.EPHEMERAL if location is StorageLocation.DURABLE else StorageLocation.DURABLE
        self._store_for(location).set_item(self._key, json.dumps(record.to_dict()))
        self._store_for(other).remove_item(self._key)

    def erase(self) -> None:
        """Remove the record from both stores."""
        self._durable.remove_item(self._key)
        self._ephemeral.remove_item(self._key)
