"""
RecordStoreClient — PostgreSQL JSONB implementation of RecordStore.

Connects as a tenant's login role; RLS filters every read and write to
that tenant's rows, so no tenant column appears in the queries.
Every psycopg2.Error is re-raised as StoreError.
"""

import contextlib
import logging
import os
import uuid

import psycopg2
import psycopg2.extras

from store.base import RecordStore, StoreError, dumps, loads
from store.models import ColumnDefinition, Record

logger = logging.getLogger(__name__)

# fetch_all() reads a module in pages of this many rows.
FETCH_PAGE_SIZE = int(os.getenv("CRM_FETCH_PAGE_SIZE", "1000"))

_RECORD_COLUMNS = "id, tenant, module_name, data, entry_date, created_at, updated_at"


def _is_uuid(value) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


class RecordStoreClient(RecordStore):
    """
    Record store for one tenant, backed by the module_records and
    module_schemas tables.

    Usage:
        client = RecordStoreClient(user="acme", password="secret", host="/tmp/pg", port=5432)
        client.insert("invoices", {"amount": 1200, "status": "paid"})
        invoices = client.fetch_all("invoices")
        client.close()
    """

    def __init__(self, user, password, host="localhost", port=5432, dbname="postgres",
                 page_size=None):
        self.user = user
        self.page_size = page_size or FETCH_PAGE_SIZE
        try:
            self.conn = psycopg2.connect(
                host=host,
                port=port,
                dbname=dbname,
                user=user,
                password=password,
            )
        except psycopg2.Error as exc:
            logger.error("Cannot connect to record store as %s: %s", user, exc)
            raise StoreError(f"Cannot connect as {user}: {exc}") from exc
        self.conn.autocommit = True
        psycopg2.extras.register_uuid()

    @contextlib.contextmanager
    def _cursor(self, action):
        try:
            with self.conn.cursor() as cur:
                yield cur
        except psycopg2.Error as exc:
            logger.error("Record store failed to %s: %s", action, exc)
            raise StoreError(f"Failed to {action}: {exc}") from exc

    # ── Records ──────────────────────────────────────────────────────

    def fetch_all(self, module_name: str) -> list:
        """All records of a module, newest entry_date first, read page by page."""
        records = []
        after = None
        while True:
            params = [module_name]
            keyset = ""
            if after is not None:
                keyset = "AND (entry_date, id) < (%s, %s)"
                params.extend(after)
            params.append(self.page_size)
            with self._cursor(f"fetch {module_name}") as cur:
                cur.execute(
                    f"""
                    SELECT {_RECORD_COLUMNS}
                    FROM module_records
                    WHERE module_name = %s {keyset}
                    ORDER BY entry_date DESC, id DESC
                    LIMIT %s
                    """,
                    params,
                )
                rows = cur.fetchall()
            records.extend(self._row_to_record(row) for row in rows)
            if len(rows) < self.page_size:
                return records
            last = rows[-1]
            after = (last[4], last[0])

    def fetch(self, module_name: str, record_id: str):
        if not _is_uuid(record_id):
            return None
        with self._cursor(f"fetch {module_name}/{record_id}") as cur:
            cur.execute(
                f"SELECT {_RECORD_COLUMNS} FROM module_records "
                f"WHERE module_name = %s AND id = %s",
                (module_name, str(record_id)),
            )
            row = cur.fetchone()
        return self._row_to_record(row) if row else None

    def _insert_data(self, module_name, data, entry_date):
        with self._cursor(f"insert into {module_name}") as cur:
            cur.execute(
                f"""
                INSERT INTO module_records (module_name, data, entry_date)
                VALUES (%s, %s::jsonb, COALESCE(%s, now()))
                RETURNING {_RECORD_COLUMNS}
                """,
                (module_name, dumps(data), entry_date),
            )
            return self._row_to_record(cur.fetchone())

    def _update_data(self, module_name, record_id, data):
        if not _is_uuid(record_id):
            return None
        with self._cursor(f"update {module_name}/{record_id}") as cur:
            cur.execute(
                f"""
                UPDATE module_records
                SET data = %s::jsonb, updated_at = now()
                WHERE module_name = %s AND id = %s
                RETURNING {_RECORD_COLUMNS}
                """,
                (dumps(data), module_name, str(record_id)),
            )
            row = cur.fetchone()
        return self._row_to_record(row) if row else None

    def delete(self, module_name: str, record_id: str) -> bool:
        if not _is_uuid(record_id):
            return False
        with self._cursor(f"delete {module_name}/{record_id}") as cur:
            cur.execute(
                "DELETE FROM module_records WHERE module_name = %s AND id = %s",
                (module_name, str(record_id)),
            )
            return cur.rowcount > 0

    # ── Schemas ──────────────────────────────────────────────────────

    def get_columns(self, module_name: str) -> list:
        with self._cursor(f"read schema of {module_name}") as cur:
            cur.execute(
                "SELECT columns FROM module_schemas WHERE module_name = %s",
                (module_name,),
            )
            row = cur.fetchone()
        if row is None:
            return []
        return [ColumnDefinition.from_dict(c) for c in loads(row[0])]

    def _save_columns(self, module_name: str, columns: list) -> None:
        payload = dumps([c.to_dict() for c in columns])
        with self._cursor(f"save schema of {module_name}") as cur:
            cur.execute(
                """
                INSERT INTO module_schemas (module_name, columns)
                VALUES (%s, %s::jsonb)
                ON CONFLICT (tenant, module_name)
                DO UPDATE SET columns = EXCLUDED.columns, updated_at = now()
                """,
                (module_name, payload),
            )

    def list_modules(self) -> list:
        with self._cursor("list modules") as cur:
            cur.execute(
                """
                SELECT module_name FROM module_schemas
                UNION
                SELECT DISTINCT module_name FROM module_records
                ORDER BY 1
                """
            )
            return [row[0] for row in cur.fetchall()]

    def count(self, module_name=None) -> int:
        """Number of visible records, optionally for one module."""
        with self._cursor("count records") as cur:
            if module_name is None:
                cur.execute("SELECT count(*) FROM module_records")
            else:
                cur.execute(
                    "SELECT count(*) FROM module_records WHERE module_name = %s",
                    (module_name,),
                )
            return cur.fetchone()[0]

    # ── Internal ─────────────────────────────────────────────────────

    def _row_to_record(self, row) -> Record:
        (record_id, tenant, module_name, data,
         entry_date, created_at, updated_at) = row
        return Record(
            id=str(record_id),
            module_name=module_name,
            data=loads(data),
            tenant=tenant,
            entry_date=entry_date,
            created_at=created_at,
            updated_at=updated_at,
        )

    def close(self):
        """Close the database connection."""
        if self.conn and not self.conn.closed:
            self.conn.close()
