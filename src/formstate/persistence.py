"""
Persistence adapters for form values.

The engine persists a flat key -> value map per form_id. Validation, dirty
and touched metadata are never persisted. Saves are best-effort: the engine
logs failures and does not retry.
"""
from abc import ABC, abstractmethod
import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)


class FormPersistence(ABC):
    """Async storage for form values keyed by form_id."""

    @abstractmethod
    async def save(self, form_id: str, values: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def load(self, form_id: str) -> Optional[Dict[str, Any]]:
        """Return the saved values, or None when nothing is stored."""
        ...

    @abstractmethod
    async def clear(self, form_id: str) -> None:
        ...


class InMemoryFormPersistence(FormPersistence):
    """Process-local storage, mainly for tests and temporary sessions.

    Values are deep-copied on the way in and out so stored state never
    aliases live form values.
    """

    def __init__(self):
        self._storage: Dict[str, Dict[str, Any]] = {}

    async def save(self, form_id: str, values: Dict[str, Any]) -> None:
        self._storage[form_id] = copy.deepcopy(dict(values))

    async def load(self, form_id: str) -> Optional[Dict[str, Any]]:
        stored = self._storage.get(form_id)
        return copy.deepcopy(stored) if stored is not None else None

    async def clear(self, form_id: str) -> None:
        self._storage.pop(form_id, None)

    def __contains__(self, form_id: object) -> bool:
        return form_id in self._storage


class JsonFilePersistence(FormPersistence):
    """One JSON file per form_id under directory.

    Values must be JSON-serializable. Writes go to a temporary file that is
    then renamed over the target.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def path_for(self, form_id: str) -> Path:
        safe = "".join(c if c.isalnum() or c in '-_.' else '_' for c in form_id)
        return self.directory / f"{safe}.json"

    async def save(self, form_id: str, values: Dict[str, Any]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(form_id)
        tmp_path = path.with_suffix('.json.tmp')
        with open(tmp_path, 'w') as f:
            json.dump(values, f, indent=2)
        os.replace(tmp_path, path)
        logger.debug(f"PERSIST: saved {len(values)} value(s) to {path}")

    async def load(self, form_id: str) -> Optional[Dict[str, Any]]:
        path = self.path_for(form_id)
        if not path.exists():
            return None
        with open(path, 'r') as f:
            data = json.load(f)
        if not isinstance(data, dict):
            logger.warning(f"PERSIST: ignoring {path}, expected a JSON object")
            return None
        return data

    async def clear(self, form_id: str) -> None:
        path = self.path_for(form_id)
        if path.exists():
            path.unlink()
