"""
In-process RecordStore. Same contract as the PostgreSQL client; every read
returns detached copies so callers can annotate records freely.
"""

import copy
import itertools
import uuid
from datetime import datetime, timezone
from typing import Optional

from store.base import RecordStore
from store.models import Record


def _now():
    return datetime.now(timezone.utc)


class InMemoryStore(RecordStore):
    """Dict-backed store for a single tenant."""

    def __init__(self, tenant: str = "default"):
        self.tenant = tenant
        self._records = {}    # module_name → {record_id: (seq, Record)}
        self._schemas = {}    # module_name → [ColumnDefinition]
        self._seq = itertools.count()

    def fetch_all(self, module_name: str) -> list:
        rows = self._records.get(module_name, {}).values()
        ordered = sorted(rows, key=lambda r: (r[1].entry_date, r[0]), reverse=True)
        return [copy.deepcopy(rec) for _, rec in ordered]

    def fetch(self, module_name: str, record_id: str):
        row = self._records.get(module_name, {}).get(str(record_id))
        return copy.deepcopy(row[1]) if row else None

    def _insert_data(self, module_name: str, data: dict, entry_date: Optional[datetime]):
        now = _now()
        if entry_date is not None and entry_date.tzinfo is None:
            entry_date = entry_date.replace(tzinfo=timezone.utc)
        record = Record(
            id=str(uuid.uuid4()),
            module_name=module_name,
            data=copy.deepcopy(data),
            tenant=self.tenant,
            entry_date=entry_date or now,
            created_at=now,
            updated_at=now,
        )
        self._records.setdefault(module_name, {})[record.id] = (next(self._seq), record)
        return copy.deepcopy(record)

    def _update_data(self, module_name: str, record_id: str, data: dict):
        row = self._records.get(module_name, {}).get(str(record_id))
        if row is None:
            return None
        record = row[1]
        record.data = copy.deepcopy(data)
        record.updated_at = _now()
        return copy.deepcopy(record)

    def delete(self, module_name: str, record_id: str) -> bool:
        return self._records.get(module_name, {}).pop(str(record_id), None) is not None

    def get_columns(self, module_name: str) -> list:
        return copy.deepcopy(self._schemas.get(module_name, []))

    def _save_columns(self, module_name: str, columns: list) -> None:
        self._schemas[module_name] = copy.deepcopy(columns)

    def list_modules(self) -> list:
        return sorted(set(self._schemas) | {m for m, rows in self._records.items() if rows})
