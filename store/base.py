"""
RecordStore base class — the contract the engine consumes.

Records are keyed by (tenant, module, id) and hold a free-form attribute map
serialized to JSONB. Column definitions live per (tenant, module) in the
schema registry. Implementations:

- store.memory.InMemoryStore   (tests, callers with no database)
- store.client.RecordStoreClient (PostgreSQL JSONB + row-level security)

Every backend failure surfaces as StoreError so callers can tell "no data"
apart from "the data could not be read".
"""

import json
import uuid
from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from store.registry import ModuleSchema, validate_columns


class StoreError(Exception):
    """Raised when records or schemas cannot be read from or written to the store."""


class _JSONEncoder(json.JSONEncoder):
    """Handles datetime, date, Decimal and UUID values inside record data."""

    def default(self, obj):
        if isinstance(obj, datetime):
            return {"__type__": "datetime", "value": obj.isoformat()}
        if isinstance(obj, date):
            return {"__type__": "date", "value": obj.isoformat()}
        if isinstance(obj, Decimal):
            return {"__type__": "Decimal", "value": str(obj)}
        if isinstance(obj, uuid.UUID):
            return {"__type__": "UUID", "value": str(obj)}
        return super().default(obj)


def _json_decoder_hook(d):
    """Reconstruct special types from JSONB."""
    if "__type__" in d:
        t = d["__type__"]
        v = d["value"]
        if t == "datetime":
            return datetime.fromisoformat(v)
        if t == "date":
            return date.fromisoformat(v)
        if t == "Decimal":
            return Decimal(v)
        if t == "UUID":
            return uuid.UUID(v)
    return d


def dumps(data: dict) -> str:
    """Serialize a record's data map for JSONB storage."""
    return json.dumps(data, cls=_JSONEncoder)


def loads(raw):
    """Deserialize a JSONB value (psycopg2 may already have decoded it)."""
    if isinstance(raw, (bytes, str)):
        return json.loads(raw, object_hook=_json_decoder_hook)
    # Already a dict from psycopg2's JSONB adapter; revive tagged values.
    return json.loads(json.dumps(raw), object_hook=_json_decoder_hook)


class RecordStore(ABC):
    """
    Abstract record store + schema registry for one tenant.

    Subclasses implement the storage primitives; schema-aware behavior
    (stripping computed columns, applying defaults, validating column
    lists) lives here so every backend enforces it the same way.
    """

    # ── Records ──────────────────────────────────────────────────────

    @abstractmethod
    def fetch_all(self, module_name: str) -> list:
        """All records of a module, newest entry_date first."""

    @abstractmethod
    def fetch(self, module_name: str, record_id: str):
        """One record, or None."""

    @abstractmethod
    def _insert_data(self, module_name: str, data: dict, entry_date: Optional[datetime]):
        """Persist a new record's already-prepared data."""

    @abstractmethod
    def _update_data(self, module_name: str, record_id: str, data: dict):
        """Replace a record's data. Returns the record or None."""

    @abstractmethod
    def delete(self, module_name: str, record_id: str) -> bool:
        """Delete a record. Returns True if one was removed."""

    def insert(self, module_name: str, data: dict, entry_date: Optional[datetime] = None):
        """Store a new record. Computed columns are dropped, defaults applied."""
        schema = self.get_schema(module_name)
        prepared = schema.apply_defaults(schema.strip_computed(data))
        return self._insert_data(module_name, prepared, entry_date)

    def update(self, module_name: str, record_id: str, data: dict):
        """Replace a record's stored data. Computed columns are dropped."""
        schema = self.get_schema(module_name)
        return self._update_data(module_name, record_id, schema.strip_computed(data))

    def update_field(self, module_name: str, record_id: str, field: str, value):
        """Change one stored field of a record. Returns the record or None."""
        record = self.fetch(module_name, record_id)
        if record is None:
            return None
        data = dict(record.data)
        data[field] = value
        return self.update(module_name, record_id, data)

    # ── Schemas ──────────────────────────────────────────────────────

    @abstractmethod
    def get_columns(self, module_name: str) -> list:
        """Ordered ColumnDefinitions of a module ([] when it has no schema)."""

    @abstractmethod
    def _save_columns(self, module_name: str, columns: list) -> None:
        """Persist an already-validated column list."""

    @abstractmethod
    def list_modules(self) -> list:
        """Names of modules that have a schema or records."""

    def upsert_columns(self, module_name: str, columns) -> list:
        """Validate and save a module's column list. Raises RegistryError."""
        validated = validate_columns(columns)
        self._save_columns(module_name, validated)
        return validated

    def get_schema(self, module_name: str) -> ModuleSchema:
        return ModuleSchema(module_name, self.get_columns(module_name))

    # ── Context manager ─────────────────────────────────────────────

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
