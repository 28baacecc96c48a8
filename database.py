"""
File-backed record stores.

Each collection is one JSON file holding an array of records (camelCase keys),
e.g. <data_dir>/checklists.json. Every write is a whole-file
read/modify/write done under a process-wide lock for that file.
"""

import json
import logging
import os
import tempfile
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Union

from pydantic import BaseModel

logger = logging.getLogger(__name__)

_locks: Dict[str, threading.RLock] = {}
_locks_guard = threading.Lock()


def _lock_for(path: str) -> threading.RLock:
    with _locks_guard:
        lock = _locks.get(path)
        if lock is None:
            lock = _locks[path] = threading.RLock()
        return lock


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class NotFoundError(LookupError):
    """Raised when a referenced record does not exist."""


class RecordStore:
    """Keyed record store over a single JSON file: list, get, put, delete."""

    def __init__(self, path: str):
        self.path = os.path.abspath(path)
        self.name = os.path.splitext(os.path.basename(path))[0]
        self._lock = _lock_for(self.path)

    def _read(self) -> List[Dict[str, Any]]:
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError):
            logger.exception("failed to read collection file", extra={"collection": self.name})
            return []
        if not isinstance(data, list):
            logger.warning("collection file is not a JSON array", extra={"collection": self.name})
            return []
        return [r for r in data if isinstance(r, dict)]

    def _write(self, records: List[Dict[str, Any]]) -> None:
        directory = os.path.dirname(self.path)
        os.makedirs(directory, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=directory, prefix=f".{self.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(records, fh, indent=2, ensure_ascii=False, default=str)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise

    @contextmanager
    def transaction(self) -> Iterator[List[Dict[str, Any]]]:
        """Hold the collection lock; the yielded list is written back on success."""
        with self._lock:
            records = self._read()
            yield records
            self._write(records)

    def list(self) -> List[Dict[str, Any]]:
        with self._lock:
            return self._read()

    def get(self, record_id: str) -> Optional[Dict[str, Any]]:
        for record in self.list():
            if record.get("id") == record_id:
                return record
        return None

    def put(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Insert the record, or replace the stored one with the same id."""
        if not record.get("id"):
            record = {**record, "id": str(uuid.uuid4())}
        with self.transaction() as records:
            for i, existing in enumerate(records):
                if existing.get("id") == record["id"]:
                    records[i] = record
                    break
            else:
                records.append(record)
        return record

    def delete(self, record_id: str) -> bool:
        with self.transaction() as records:
            before = len(records)
            records[:] = [r for r in records if r.get("id") != record_id]
            return len(records) != before


def _matches(record: Dict[str, Any], filter_dict: Optional[Dict[str, Any]]) -> bool:
    if not filter_dict:
        return True
    return all(record.get(k) == v for k, v in filter_dict.items())


class Database:
    """Handle on the data directory; one RecordStore per collection name."""

    def __init__(self, data_dir: str):
        self.data_dir = os.path.abspath(data_dir)
        os.makedirs(self.data_dir, exist_ok=True)
        self._stores: Dict[str, RecordStore] = {}
        self._guard = threading.Lock()

    def collection(self, name: str) -> RecordStore:
        with self._guard:
            store = self._stores.get(name)
            if store is None:
                store = self._stores[name] = RecordStore(os.path.join(self.data_dir, f"{name}.json"))
            return store

    def list_collection_names(self) -> List[str]:
        return sorted(f[:-5] for f in os.listdir(self.data_dir) if f.endswith(".json"))

    # ---------- Document helpers ----------

    def create_document(self, collection: str, data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
        """Stamp id/createdAt/updatedAt and append the record."""
        record = data.model_dump(by_alias=True, mode="json") if isinstance(data, BaseModel) else dict(data)
        now = utcnow_iso()
        record["id"] = record.get("id") or str(uuid.uuid4())
        record["createdAt"] = record.get("createdAt") or now
        record["updatedAt"] = now
        return self.collection(collection).put(record)

    def get_documents(
        self, collection: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        docs = [r for r in self.collection(collection).list() if _matches(r, filter_dict)]
        return docs[:limit] if limit else docs

    def get_document(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        return self.collection(collection).get(record_id)

    def update_document(self, collection: str, record_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Shallow-merge changes into the stored record."""
        store = self.collection(collection)
        with store.transaction() as records:
            for i, existing in enumerate(records):
                if existing.get("id") == record_id:
                    updated = {**existing, **changes, "id": record_id, "updatedAt": utcnow_iso()}
                    records[i] = updated
                    return updated
        raise NotFoundError(f"{collection} record {record_id} not found")

    def delete_document(self, collection: str, record_id: str) -> bool:
        return self.collection(collection).delete(record_id)
