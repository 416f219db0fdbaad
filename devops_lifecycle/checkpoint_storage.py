import json
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Sequence, Union

from devops_lifecycle.models import ProgressRecord, folder_key, is_record_empty

FolderKey = Union[str, Sequence[str]]


class CheckpointStorageBackend(ABC):
    """Keyed store for progress records.

    A key is one folder name or a list of folder names deployed together; a
    lookup matches the stored record whose key contains any of the folders.
    """

    @abstractmethod
    def load(self, folders: FolderKey) -> Optional[dict]:
        """Load the progress record for the folders."""
        pass

    @abstractmethod
    def save(self, folders: FolderKey, record: dict) -> None:
        """Persist the progress record for the folders."""
        pass

    @abstractmethod
    def clear(self, folders: FolderKey) -> bool:
        """Remove an empty progress record."""
        pass

    @abstractmethod
    def list_keys(self) -> list[str]:
        """List the keys of all stored records."""
        pass


def _names(folders: FolderKey) -> list[str]:
    if isinstance(folders, str):
        return folders.split(":")
    return list(folders)


class FileCheckpointStorage(CheckpointStorageBackend):
    """Progress records kept in a single JSON document."""

    def __init__(self, base_path: str = "state", file_name: str = "deploy_data.json") -> None:
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.path = self.base_path / file_name

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        return json.loads(self.path.read_text())

    def _write(self, data: dict) -> None:
        if not data:
            if self.path.exists():
                self.path.unlink()
            return
        # Replace atomically so a crash never leaves a truncated document.
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(data, indent=2, default=str))
        os.replace(tmp_path, self.path)

    def _find_key(self, data: dict, folders: FolderKey) -> Optional[str]:
        names = _names(folders)
        for key in data:
            stored = key.split(":")
            if any(name in stored for name in names):
                return key
        return None

    def load(self, folders: FolderKey) -> Optional[dict]:
        """Load the record stored for any of the folders."""
        data = self._read()
        key = self._find_key(data, folders)
        if key is None:
            return None
        record = data[key]
        ProgressRecord.model_validate(record)
        return record

    def save(self, folders: FolderKey, record: dict) -> None:
        """Store the record, replacing the one stored for any of the folders."""
        data = self._read()
        key = self._find_key(data, folders) or folder_key(folders)
        data[key] = record
        self._write(data)

    def clear(self, folders: FolderKey) -> bool:
        """Remove the record; refuses while it still holds live resources."""
        data = self._read()
        key = self._find_key(data, folders)
        if key is None:
            return False
        if not is_record_empty(data[key]):
            raise ValueError(f"Progress record for {key} still references live resources")
        del data[key]
        self._write(data)
        return True

    def list_keys(self) -> list[str]:
        """List the keys of all stored records."""
        return list(self._read().keys())
