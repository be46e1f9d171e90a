"""
Key-value persistence for redaction data.
Values are UTF-8 JSON text stored under composite string keys.
"""

import json
import logging
import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterator, Optional, Union
from urllib.parse import quote, unquote

from errors import PersistenceReadError, PersistenceWriteError

logger = logging.getLogger(__name__)

REDACTIONS_KEY_PREFIX = "redactions"
VERSIONS_KEY_PREFIX = "redaction_versions"


def redactions_key(record_id: str, file_name: str) -> str:
    """Storage key of the current redaction set for a scope."""
    return f"{REDACTIONS_KEY_PREFIX}_{record_id}_{file_name}"


def versions_key(record_id: str, file_name: str) -> str:
    """Storage key of the version list for a scope."""
    return f"{VERSIONS_KEY_PREFIX}_{record_id}_{file_name}"


class KeyValueStore(ABC):
    """String-keyed get/set/remove store."""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        """Return the stored text, or None if the key is absent."""

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store text under key, replacing any previous value."""

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Delete key. Missing keys are ignored."""

    @abstractmethod
    def keys(self) -> Iterator[str]:
        """Iterate over stored keys."""

    def __contains__(self, key: str) -> bool:
        return self.get_item(key) is not None


class MemoryStore(KeyValueStore):
    """In-process dictionary store."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = str(value)

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> Iterator[str]:
        return iter(list(self._data))


class FileStore(KeyValueStore):
    """
    One file per key inside a directory.

    Writes go to a temporary file in the same directory which is then moved
    over the target, so a failed write leaves the previous value intact.
    """

    SUFFIX = ".json"

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        return self.directory / (quote(key, safe="") + self.SUFFIX)

    def get_item(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise PersistenceReadError(f"Failed to read {path}: {e}", key=key) from e

    def set_item(self, key: str, value: str) -> None:
        path = self._path_for(key)
        fd, temp_name = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            shutil.move(temp_name, str(path))
        except OSError:
            cleanup_temp(Path(temp_name))
            raise

    def remove_item(self, key: str) -> None:
        path = self._path_for(key)
        if path.exists():
            path.unlink()

    def keys(self) -> Iterator[str]:
        for path in sorted(self.directory.glob(f"*{self.SUFFIX}")):
            yield unquote(path.name[:-len(self.SUFFIX)])


def cleanup_temp(temp_path: Path) -> None:
    """Clean up temporary file."""
    try:
        if temp_path.exists():
            temp_path.unlink()
    except OSError as e:
        logger.warning(f"Failed to clean up temp file: {e}")


def read_json_list(store: KeyValueStore, key: str) -> list[Any]:
    """
    Read a JSON array stored under key.

    Missing keys, unreadable values, non-JSON text and JSON that is not an
    array all yield an empty list. Nothing is raised.
    """
    try:
        stored = store.get_item(key)
        if not stored:
            return []
        data = json.loads(stored)
    except (PersistenceReadError, OSError, ValueError) as e:
        logger.error(f"Error retrieving {key}: {e}")
        return []

    if not isinstance(data, list):
        logger.error(f"Error retrieving {key}: expected a JSON array, got {type(data).__name__}")
        return []
    return data


def write_json_list(store: KeyValueStore, key: str, items: list[Any]) -> None:
    """
    Serialize items as a JSON array and store it under key.

    Raises:
        PersistenceWriteError: the value could not be serialized or stored
    """
    try:
        store.set_item(key, json.dumps(items))
    except Exception as e:
        logger.error(f"Failed to persist {key}: {e}")
        raise PersistenceWriteError(f"Failed to persist {key}: {e}", key=key) from e


def remove_key(store: KeyValueStore, key: str) -> None:
    """
    Delete key from the store.

    Raises:
        PersistenceWriteError: the deletion failed
    """
    try:
        store.remove_item(key)
    except Exception as e:
        logger.error(f"Failed to remove {key}: {e}")
        raise PersistenceWriteError(f"Failed to remove {key}: {e}", key=key) from e


def open_store(storage_dir: Optional[Union[str, Path]] = None) -> KeyValueStore:
    """FileStore for a directory, MemoryStore when no directory is given."""
    if storage_dir:
        return FileStore(storage_dir)
    return MemoryStore()
