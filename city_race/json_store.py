"""MemoryStore persisted to disk.

Layout under base_dir, one file per collection:

    teams.json
    quests.json
    users.json
    users/<user_id>/location_history.json

Each file is a JSON object keyed by document id. Everything is loaded on
start; every commit rewrites the files of the collections it touched.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from city_race.clock import Clock
from city_race.store import DEFAULT_MAX_ATTEMPTS, MemoryStore

logger = logging.getLogger(__name__)


class JsonFileStore(MemoryStore):
    def __init__(
        self,
        base_dir: Path,
        clock: Clock | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        super().__init__(clock=clock, max_attempts=max_attempts)
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._load()

    def _path(self, collection: str) -> Path:
        return self.base_dir / f"{collection}.json"

    def _read_json(self, path: Path) -> Any:
        return json.loads(path.read_text())

    def _write_json(self, path: Path, data: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2))

    def _load(self) -> None:
        for path in sorted(self.base_dir.rglob("*.json")):
            collection = path.relative_to(self.base_dir).with_suffix("").as_posix()
            docs = self._read_json(path)
            for doc_id, doc in docs.items():
                doc["id"] = doc_id
                self._bump(collection, doc_id)
            self._collections[collection] = docs
            logger.debug("loaded %d document(s) from %s", len(docs), path)

    def _persist(self, collections: set[str]) -> None:
        for collection in collections:
            docs = self._collections.get(collection, {})
            self._write_json(self._path(collection), docs)
