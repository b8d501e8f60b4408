"""
Record Store — durable CRUD over one JSON array file per document kind.

The whole collection is loaded on first access, cached in memory for the life
of the store object, and rewritten in full after every mutation.

Concurrency: there is no locking. Two interleaved writers on the same store
lose updates (last write wins). SmartDoc is used by one person at a time, so
this is an accepted limitation.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

from doc_schema import utc_now
from errors import PersistenceFault

logger = logging.getLogger(__name__)

Record = dict[str, Any]

EDPS_FILE = "edps.json"
DVP_FILE = "dvp.json"
DFMEA_FILE = "dfmea.json"


class RecordStore:
    """One homogeneous collection of records keyed by an opaque string id."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._data: Optional[list[Record]] = None

    @property
    def loaded(self) -> bool:
        return self._data is not None

    # ── Persistence ─────────────────────────────────────────────────────────

    def _load(self) -> list[Record]:
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.info("Backing file %s missing, initializing empty collection", self.path)
            self._save([])
            return self._data
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceFault(f"Failed to read {self.path}: {e}") from e

        if not isinstance(data, list):
            raise PersistenceFault(f"{self.path} does not contain a JSON array")
        self._data = data
        logger.debug("Loaded %d record(s) from %s", len(data), self.path)
        return self._data

    def _save(self, data: list[Record]) -> None:
        """Write `data` to disk, then make it the cached collection."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
        except OSError as e:
            raise PersistenceFault(f"Failed to write {self.path}: {e}") from e
        self._data = data

    def _records(self) -> list[Record]:
        if self._data is None:
            return self._load()
        return self._data

    def _index_of(self, record_id: str) -> int:
        for i, item in enumerate(self._records()):
            if item.get("id") == record_id:
                return i
        return -1

    # ── CRUD ────────────────────────────────────────────────────────────────
    # Mutations build a new list and only replace the cache once it is on disk.

    def list(self) -> list[Record]:
        return [dict(item) for item in self._records()]

    def get_by_id(self, record_id: str) -> Optional[Record]:
        index = self._index_of(record_id)
        return dict(self._records()[index]) if index != -1 else None

    def create(self, record: Record) -> Record:
        self._save(self._records() + [dict(record)])
        logger.info("Created %s in %s", record.get("id"), self.path.name)
        return record

    def update(self, record_id: str, fields: Record) -> Optional[Record]:
        index = self._index_of(record_id)
        if index == -1:
            return None
        data = list(self._records())
        updated = {**data[index], **fields, "updatedAt": utc_now()}
        data[index] = updated
        self._save(data)
        logger.info("Updated %s in %s (%s)", record_id, self.path.name, ", ".join(sorted(fields)) or "no fields")
        return dict(updated)

    def delete(self, record_id: str) -> bool:
        index = self._index_of(record_id)
        if index == -1:
            return False
        data = self._records()
        self._save(data[:index] + data[index + 1:])
        logger.info("Deleted %s from %s", record_id, self.path.name)
        return True


class StoreSet:
    """The three collections, constructed once at startup and injected into consumers."""

    def __init__(self, norms: RecordStore, test_procedures: RecordStore, failure_analyses: RecordStore) -> None:
        self.norms = norms
        self.test_procedures = test_procedures
        self.failure_analyses = failure_analyses

    @classmethod
    def from_directory(cls, data_dir: Path | str) -> "StoreSet":
        data_dir = Path(data_dir)
        return cls(
            norms=RecordStore(data_dir / EDPS_FILE),
            test_procedures=RecordStore(data_dir / DVP_FILE),
            failure_analyses=RecordStore(data_dir / DFMEA_FILE),
        )
