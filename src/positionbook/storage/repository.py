"""Primary stores: always-available, authoritative for the running process."""

import json
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any


class Repository(ABC):
    """Key-value store of JSON-serializable collections."""

    @abstractmethod
    def read(self, name: str) -> Any | None:
        """Return the stored value of a collection, or None if it has none."""
        ...

    @abstractmethod
    def write(self, name: str, value: Any) -> None:
        """Replace the stored value of a collection.

        Raises:
            OSError or TypeError: If the value could not be stored.
        """
        ...

    def has(self, name: str) -> bool:
        return self.read(name) is not None


class InMemoryRepository(Repository):
    """Repository kept in a dict. Values are stored as JSON text, so that
    callers can never mutate stored state through a shared reference."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, str] = {}
        for name, value in (initial or {}).items():
            self.write(name, value)

    def read(self, name: str) -> Any | None:
        raw = self._data.get(name)
        return json.loads(raw) if raw is not None else None

    def write(self, name: str, value: Any) -> None:
        self._data[name] = json.dumps(value)


class JsonFileRepository(Repository):
    """One ``<collection>.json`` file per collection inside a directory.

    Writes go to a temporary file that is then moved over the old one, so a
    crash mid-write leaves the previous value intact.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def path_for(self, name: str) -> Path:
        safe_name = re.sub(r"[^A-Za-z0-9_.-]", "_", name)
        return self.directory / f"{safe_name}.json"

    def read(self, name: str) -> Any | None:
        path = self.path_for(name)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            print(f"[Storage] Ignoring unreadable {path.name}: {e}", flush=True)
            return None

    def write(self, name: str, value: Any) -> None:
        path = self.path_for(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        text = json.dumps(value, indent=2, ensure_ascii=False)
        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_text(text, encoding="utf-8")
        os.replace(tmp_path, path)
