"""Storage of workflow definitions.

The fixer reads and writes whole definitions through a DefinitionStore.
Every write keeps the replaced version so it can be inspected or restored.
"""

import asyncio
import copy
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol

from .errors import DefinitionNotFoundError, DefinitionStoreError

logger = logging.getLogger(__name__)


class DefinitionStore(Protocol):
    """Reads and writes workflow definitions by workflow id."""

    async def read(self, workflow_id: str) -> dict:
        ...

    async def write(self, workflow_id: str, definition: dict) -> None:
        ...

    async def previous(self, workflow_id: str) -> Optional[dict]:
        """The version replaced by the most recent write, if any."""
        ...


class InMemoryDefinitionStore:
    """Definitions kept in a dict; reads and writes are deep copies."""

    def __init__(self, definitions: Optional[dict[str, dict]] = None):
        self._definitions: dict[str, dict] = copy.deepcopy(definitions or {})
        self._previous: dict[str, list[dict]] = {}
        self.writes = 0

    async def read(self, workflow_id: str) -> dict:
        if workflow_id not in self._definitions:
            raise DefinitionNotFoundError(workflow_id)
        return copy.deepcopy(self._definitions[workflow_id])

    async def write(self, workflow_id: str, definition: dict) -> None:
        if workflow_id in self._definitions:
            self._previous.setdefault(workflow_id, []).append(self._definitions[workflow_id])
        self._definitions[workflow_id] = copy.deepcopy(definition)
        self.writes += 1

    async def previous(self, workflow_id: str) -> Optional[dict]:
        versions = self._previous.get(workflow_id)
        return copy.deepcopy(versions[-1]) if versions else None


class FileDefinitionStore:
    """Definitions stored as ``<workflow id>.json`` files in a directory.

    A definition whose file name differs from its ``id`` is found by
    scanning the directory. Before each write the current file is copied
    to ``.backups/<id>.<timestamp>.json``.
    """

    BACKUP_DIR = ".backups"

    def __init__(self, workflows_dir: str | Path, max_backups: int = 20):
        """Initialize the store.

        Args:
            workflows_dir: Directory holding definition files
            max_backups: Backups kept per workflow
        """
        self.workflows_dir = Path(workflows_dir)
        self.backup_dir = self.workflows_dir / self.BACKUP_DIR
        self.max_backups = max_backups
        self._paths: dict[str, Path] = {}
        self._lock = asyncio.Lock()

    def _resolve(self, workflow_id: str) -> Path:
        cached = self._paths.get(workflow_id)
        if cached and cached.exists():
            return cached

        direct = self.workflows_dir / f"{workflow_id}.json"
        if direct.exists():
            self._paths[workflow_id] = direct
            return direct

        for path in sorted(self.workflows_dir.glob("*.json")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError):
                continue
            if isinstance(data, dict) and str(data.get("id")) == workflow_id:
                self._paths[workflow_id] = path
                return path
        raise DefinitionNotFoundError(workflow_id)

    def _read_sync(self, workflow_id: str) -> dict:
        path = self._resolve(workflow_id)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise DefinitionStoreError(workflow_id, f"read failed: {e}") from e
        except json.JSONDecodeError as e:
            raise DefinitionStoreError(workflow_id, f"invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise DefinitionStoreError(workflow_id, "definition is not a JSON object")
        return data

    def _write_sync(self, workflow_id: str, definition: dict) -> None:
        try:
            path = self._resolve(workflow_id)
        except DefinitionNotFoundError:
            path = self.workflows_dir / f"{workflow_id}.json"
        try:
            if path.exists():
                self.backup_dir.mkdir(parents=True, exist_ok=True)
                stamp = datetime.now().strftime("%Y%m%dT%H%M%S%f")
                backup = self.backup_dir / f"{_safe(workflow_id)}.{stamp}.json"
                backup.write_bytes(path.read_bytes())
                self._prune_backups(workflow_id)
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(json.dumps(definition, indent=2), encoding="utf-8")
            tmp.replace(path)
        except OSError as e:
            raise DefinitionStoreError(workflow_id, f"write failed: {e}") from e
        self._paths[workflow_id] = path

    def _backups(self, workflow_id: str) -> list[Path]:
        if not self.backup_dir.exists():
            return []
        return sorted(self.backup_dir.glob(f"{_safe(workflow_id)}.*.json"))

    def _prune_backups(self, workflow_id: str) -> None:
        backups = self._backups(workflow_id)
        for old in backups[: max(0, len(backups) - self.max_backups)]:
            old.unlink(missing_ok=True)

    async def read(self, workflow_id: str) -> dict:
        return await asyncio.to_thread(self._read_sync, workflow_id)

    async def write(self, workflow_id: str, definition: dict) -> None:
        async with self._lock:
            await asyncio.to_thread(self._write_sync, workflow_id, definition)
        logger.info(f"Wrote updated definition for workflow {workflow_id}")

    async def previous(self, workflow_id: str) -> Optional[dict]:
        backups = self._backups(workflow_id)
        if not backups:
            return None
        try:
            return json.loads(backups[-1].read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read backup {backups[-1]}: {e}")
            return None


def _safe(workflow_id: str) -> str:
    return "".join(c if c.isalnum() or c in "-_" else "_" for c in workflow_id)
