"""Local snapshot stores: the last known task set of a list plus the pending queue."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


class SnapshotStore(Protocol):
    def load_tasks(self, list_id: int) -> Optional[List[Dict[str, Any]]]: ...

    def save_tasks(self, list_id: int, tasks: List[Dict[str, Any]]) -> None: ...

    def load_queue(self) -> Optional[Dict[str, Any]]: ...

    def save_queue(self, data: Dict[str, Any]) -> None: ...


class MemorySnapshotStore:
    def __init__(self) -> None:
        self.tasks: Dict[int, List[Dict[str, Any]]] = {}
        self.queue: Optional[Dict[str, Any]] = None

    def load_tasks(self, list_id: int) -> Optional[List[Dict[str, Any]]]:
        saved = self.tasks.get(list_id)
        return [dict(t) for t in saved] if saved is not None else None

    def save_tasks(self, list_id: int, tasks: List[Dict[str, Any]]) -> None:
        self.tasks[list_id] = [dict(t) for t in tasks]

    def load_queue(self) -> Optional[Dict[str, Any]]:
        return self.queue

    def save_queue(self, data: Dict[str, Any]) -> None:
        self.queue = data


class JsonSnapshotStore:
    """One JSON file per list plus `queue.json`, written atomically."""

    def __init__(self, directory: str | os.PathLike):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _read(self, name: str) -> Any:
        path = self.directory / name
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except ValueError:
            # a corrupt snapshot is discarded, the next canonical fetch rewrites it
            logger.warning("discarding unreadable snapshot %s", path)
            path.unlink()
            return None

    def _write(self, name: str, data: Any) -> None:
        path = self.directory / name
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data), encoding="utf-8")
        os.replace(tmp, path)

    def load_tasks(self, list_id: int) -> Optional[List[Dict[str, Any]]]:
        return self._read(f"list-{list_id}.json")

    def save_tasks(self, list_id: int, tasks: List[Dict[str, Any]]) -> None:
        self._write(f"list-{list_id}.json", tasks)

    def load_queue(self) -> Optional[Dict[str, Any]]:
        return self._read("queue.json")

    def save_queue(self, data: Dict[str, Any]) -> None:
        self._write("queue.json", data)
