"""
In-memory Record Store

Thread-safe dict-of-dicts implementation of the RecordStore protocol.
A single lock serializes writes, which gives the per-document atomic
update (and compare-and-set) the lifecycle core relies on.

Documents are deep-copied on the way in and out so callers can never
mutate stored state by accident.
"""

import copy
import threading
from collections import defaultdict

from urgentfix.kernel.errors import DuplicateRecordError, RecordNotFoundError
from urgentfix.kernel.ids import IdFactory, default_id_factory
from urgentfix.kernel.time import RealTimeProvider, TimeProvider
from urgentfix.store.base import Record, id_prefix
from urgentfix.store.query import Where, matches


class InMemoryRecordStore:
    """Record store for tests, demos and single-process embedding"""

    def __init__(
        self,
        time_provider: TimeProvider | None = None,
        id_factory: IdFactory | None = None,
    ) -> None:
        self.time_provider = time_provider or RealTimeProvider()
        self.id_factory = id_factory or default_id_factory
        self._collections: defaultdict[str, dict[str, Record]] = defaultdict(dict)
        self._lock = threading.RLock()

    def find(self, collection: str, where: Where | None = None) -> list[Record]:
        with self._lock:
            return [
                copy.deepcopy(doc)
                for doc in self._collections[collection].values()
                if matches(doc, where)
            ]

    def find_by_id(self, collection: str, record_id: str) -> Record | None:
        with self._lock:
            doc = self._collections[collection].get(record_id)
            return copy.deepcopy(doc) if doc is not None else None

    def create(self, collection: str, data: Record) -> Record:
        now = self.time_provider.now().isoformat()
        with self._lock:
            doc = copy.deepcopy(data)
            record_id = doc.get("id") or self.id_factory.generate(id_prefix(collection))
            if record_id in self._collections[collection]:
                raise DuplicateRecordError(collection, record_id)
            doc["id"] = record_id
            doc.setdefault("created_at", now)
            doc["updated_at"] = now
            self._collections[collection][record_id] = doc
            return copy.deepcopy(doc)

    def update(
        self,
        collection: str,
        record_id: str,
        data: Record,
        expected: Where | None = None,
    ) -> Record | None:
        now = self.time_provider.now().isoformat()
        with self._lock:
            current = self._collections[collection].get(record_id)
            if current is None:
                raise RecordNotFoundError(collection, record_id)
            if expected is not None and not matches(current, expected):
                return None
            updated = {**current, **copy.deepcopy(data), "id": record_id, "updated_at": now}
            self._collections[collection][record_id] = updated
            return copy.deepcopy(updated)

    def count(self, collection: str) -> int:
        with self._lock:
            return len(self._collections[collection])
