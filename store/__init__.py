"""
Tenant-scoped record store and schema registry for dynamic CRM modules,
backed by PostgreSQL JSONB + Row-Level Security (or memory, for tests).

The embedded server lives in store.server and is imported explicitly.
"""

from store.base import RecordStore, StoreError
from store.client import RecordStoreClient
from store.memory import InMemoryStore
from store.models import (
    ColumnDefinition,
    ConditionalFormatting,
    FormulaMetadata,
    Record,
    RelationshipMetadata,
)
from store.registry import ModuleSchema, RegistryError, ValidationRule, validate_columns, validate_field
