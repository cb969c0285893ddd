"""
Tests for the tenant-scoped record store.
Tests cover: serde, the in-memory store, PostgreSQL CRUD, schema
persistence, keyset pagination, RLS tenant isolation, trust boundary,
admin access, and module evaluation on top of PostgreSQL.

Run with: pytest tests/test_store.py -v
"""

import tempfile
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import psycopg2
import psycopg2.errors
import pytest

from engine.modules import ModuleEvaluator
from store.base import StoreError, _JSONEncoder, dumps, loads
from store.client import RecordStoreClient
from store.memory import InMemoryStore
from store.registry import RegistryError
from store.schema import ADMIN_ROLE, provision_tenant
from store.server import RecordStoreServer


INVOICE_COLUMNS = [
    {"name": "amount", "type": "currency"},
    {"name": "status", "type": "text", "default": "open"},
    {"name": "vat", "type": "calculated", "formula": {"expression": "amount * 0.5"}},
]


# ── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture(scope="module")
def server():
    """Start an embedded PostgreSQL server for testing."""
    tmp_dir = tempfile.mkdtemp(prefix="test_store_")
    srv = RecordStoreServer(data_dir=tmp_dir, admin_password="test_admin_pw")
    srv.start()
    yield srv
    srv.stop()


@pytest.fixture(scope="module")
def conn_info(server):
    """Connection info dict."""
    return server.conn_info()


@pytest.fixture(scope="module")
def _provision_tenants(server):
    """Provision test tenants: acme, globex."""
    server.provision_tenant("acme", "acme_pw")
    server.provision_tenant("globex", "globex_pw")


def _client(conn_info, user, password, **kwargs):
    return RecordStoreClient(
        user=user, password=password,
        host=conn_info["host"], port=conn_info["port"], dbname=conn_info["dbname"],
        **kwargs,
    )


@pytest.fixture()
def acme(conn_info, _provision_tenants):
    """RecordStoreClient connected as acme."""
    c = _client(conn_info, "acme", "acme_pw")
    yield c
    c.close()


@pytest.fixture()
def globex(conn_info, _provision_tenants):
    """RecordStoreClient connected as globex."""
    c = _client(conn_info, "globex", "globex_pw")
    yield c
    c.close()


@pytest.fixture()
def admin_client(server, conn_info):
    """RecordStoreClient connected as crm_admin."""
    c = _client(conn_info, ADMIN_ROLE, "test_admin_pw")
    yield c
    c.close()


def _module():
    """Fresh module name so tests sharing the server do not collide."""
    return f"m_{uuid.uuid4().hex[:12]}"


# ── Serialization (no DB needed) ────────────────────────────────────────────

class TestSerde:
    def test_special_types_round_trip(self):
        data = {
            "when": datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc),
            "day": date(2025, 3, 1),
            "price": Decimal("12.50"),
            "ref": uuid.UUID("12345678-1234-5678-1234-567812345678"),
            "plain": [1, "two", None],
        }
        assert loads(dumps(data)) == data

    def test_encoder_tags(self):
        encoded = _JSONEncoder().encode({"d": date(2025, 1, 2)})
        assert '"__type__": "date"' in encoded

    def test_loads_already_decoded_jsonb(self):
        raw = {"price": {"__type__": "Decimal", "value": "1.5"}, "n": 2}
        assert loads(raw) == {"price": Decimal("1.5"), "n": 2}

    def test_unknown_type_rejected(self):
        with pytest.raises(TypeError):
            dumps({"x": object()})


# ── In-memory store (no DB needed) ──────────────────────────────────────────

class TestInMemoryStore:
    def test_insert_and_fetch(self):
        store = InMemoryStore(tenant="acme")
        rec = store.insert("invoices", {"amount": 10})
        loaded = store.fetch("invoices", rec.id)
        assert loaded.data == {"amount": 10}
        assert loaded.tenant == "acme"
        assert loaded.entry_date.tzinfo is not None

    def test_schema_applied_on_insert(self):
        store = InMemoryStore()
        store.upsert_columns("invoices", INVOICE_COLUMNS)
        rec = store.insert("invoices", {"amount": 10, "vat": 5})
        assert rec.data == {"amount": 10, "status": "open"}

    def test_newest_entry_first(self):
        store = InMemoryStore()
        base = datetime(2025, 1, 1)
        store.insert("m", {"n": 1}, entry_date=base)
        store.insert("m", {"n": 2}, entry_date=base + timedelta(days=2))
        store.insert("m", {"n": 3}, entry_date=base + timedelta(days=1))
        assert [r.data["n"] for r in store.fetch_all("m")] == [2, 3, 1]

    def test_ties_newest_insert_first(self):
        store = InMemoryStore()
        when = datetime(2025, 1, 1, tzinfo=timezone.utc)
        for n in range(3):
            store.insert("m", {"n": n}, entry_date=when)
        assert [r.data["n"] for r in store.fetch_all("m")] == [2, 1, 0]

    def test_reads_are_detached(self):
        store = InMemoryStore()
        rec = store.insert("m", {"n": 1})
        store.fetch_all("m")[0].data["n"] = 99
        assert store.fetch("m", rec.id).data == {"n": 1}

    def test_update_field(self):
        store = InMemoryStore()
        rec = store.insert("m", {"n": 1, "s": "a"})
        updated = store.update_field("m", rec.id, "s", "b")
        assert updated.data == {"n": 1, "s": "b"}
        assert store.update_field("m", "missing", "s", "c") is None

    def test_delete(self):
        store = InMemoryStore()
        rec = store.insert("m", {"n": 1})
        assert store.delete("m", rec.id)
        assert not store.delete("m", rec.id)
        assert store.fetch_all("m") == []

    def test_list_modules(self):
        store = InMemoryStore()
        store.insert("payments", {"amount": 1})
        store.upsert_columns("clients", [{"name": "name", "type": "text"}])
        assert store.list_modules() == ["clients", "payments"]

    def test_invalid_columns_rejected(self):
        store = InMemoryStore()
        with pytest.raises(RegistryError):
            store.upsert_columns("m", [{"name": "a"}, {"name": "a"}])
        assert store.get_columns("m") == []


# ── PostgreSQL CRUD ──────────────────────────────────────────────────────────

class TestCRUD:
    def test_insert_and_fetch(self, acme):
        module = _module()
        rec = acme.insert(module, {"amount": 1200, "status": "paid"})
        assert uuid.UUID(rec.id)
        assert rec.tenant == "acme"
        loaded = acme.fetch(module, rec.id)
        assert loaded.data == {"amount": 1200, "status": "paid"}

    def test_special_values_survive_jsonb(self, acme):
        module = _module()
        data = {"price": Decimal("9.99"), "due": date(2025, 5, 1), "tags": ["a", "b"]}
        rec = acme.insert(module, data)
        assert acme.fetch(module, rec.id).data == data

    def test_update(self, acme):
        module = _module()
        rec = acme.insert(module, {"status": "open"})
        updated = acme.update(module, rec.id, {"status": "paid"})
        assert updated.data == {"status": "paid"}
        assert updated.updated_at >= rec.updated_at

    def test_update_field(self, acme):
        module = _module()
        rec = acme.insert(module, {"status": "open", "amount": 5})
        acme.update_field(module, rec.id, "status", "void")
        assert acme.fetch(module, rec.id).data == {"status": "void", "amount": 5}

    def test_delete(self, acme):
        module = _module()
        rec = acme.insert(module, {"n": 1})
        assert acme.delete(module, rec.id)
        assert acme.fetch(module, rec.id) is None
        assert not acme.delete(module, rec.id)

    def test_invalid_ids(self, acme):
        assert acme.fetch("invoices", "not-a-uuid") is None
        assert acme.update("invoices", "not-a-uuid", {}) is None
        assert not acme.delete("invoices", "not-a-uuid")

    def test_count(self, acme):
        module = _module()
        acme.insert(module, {"n": 1})
        acme.insert(module, {"n": 2})
        assert acme.count(module) == 2
        assert acme.count() >= 2


class TestSchemas:
    def test_columns_persist_across_connections(self, acme, conn_info):
        module = _module()
        acme.upsert_columns(module, INVOICE_COLUMNS)
        with _client(conn_info, "acme", "acme_pw") as other:
            cols = other.get_columns(module)
        assert [c.name for c in cols] == ["amount", "status", "vat"]
        assert cols[2].formula.expression == "amount * 0.5"
        assert cols[2].formula.column_references == ["amount"]

    def test_upsert_replaces(self, acme):
        module = _module()
        acme.upsert_columns(module, INVOICE_COLUMNS)
        acme.upsert_columns(module, [{"name": "title", "type": "text"}])
        assert [c.name for c in acme.get_columns(module)] == ["title"]

    def test_insert_strips_computed_and_applies_defaults(self, acme):
        module = _module()
        acme.upsert_columns(module, INVOICE_COLUMNS)
        rec = acme.insert(module, {"amount": 10, "vat": 123})
        assert acme.fetch(module, rec.id).data == {"amount": 10, "status": "open"}

    def test_list_modules(self, acme):
        with_schema, with_records = _module(), _module()
        acme.upsert_columns(with_schema, INVOICE_COLUMNS)
        acme.insert(with_records, {"n": 1})
        modules = acme.list_modules()
        assert with_schema in modules
        assert with_records in modules

    def test_unknown_module_has_no_columns(self, acme):
        assert acme.get_columns(_module()) == []


class TestPagination:
    def test_pages_cover_every_record_newest_first(self, conn_info, _provision_tenants):
        module = _module()
        base = datetime(2025, 1, 1, tzinfo=timezone.utc)
        with _client(conn_info, "acme", "acme_pw", page_size=2) as c:
            for n in range(5):
                c.insert(module, {"n": n}, entry_date=base + timedelta(days=n))
            assert [r.data["n"] for r in c.fetch_all(module)] == [4, 3, 2, 1, 0]

    def test_equal_entry_dates_not_skipped(self, conn_info, _provision_tenants):
        module = _module()
        when = datetime(2025, 1, 1, tzinfo=timezone.utc)
        with _client(conn_info, "acme", "acme_pw", page_size=2) as c:
            ids = {c.insert(module, {"n": n}, entry_date=when).id for n in range(5)}
            records = c.fetch_all(module)
        assert len(records) == 5
        assert {r.id for r in records} == ids

    def test_exact_page_multiple(self, conn_info, _provision_tenants):
        module = _module()
        with _client(conn_info, "acme", "acme_pw", page_size=2) as c:
            for n in range(4):
                c.insert(module, {"n": n})
            assert len(c.fetch_all(module)) == 4


# ── RLS Isolation ────────────────────────────────────────────────────────────

class TestRLSIsolation:
    def test_tenant_cannot_fetch_other_tenants_record(self, acme, globex):
        module = _module()
        rec = acme.insert(module, {"secret": True})
        assert globex.fetch(module, rec.id) is None

    def test_fetch_all_only_returns_own_records(self, acme, globex):
        module = _module()
        acme.insert(module, {"owner": "acme"})
        globex.insert(module, {"owner": "globex"})
        assert [r.data["owner"] for r in acme.fetch_all(module)] == ["acme"]
        assert [r.data["owner"] for r in globex.fetch_all(module)] == ["globex"]

    def test_cannot_update_or_delete_other_tenants_record(self, acme, globex):
        module = _module()
        rec = acme.insert(module, {"n": 1})
        assert globex.update(module, rec.id, {"n": 2}) is None
        assert not globex.delete(module, rec.id)
        assert acme.fetch(module, rec.id).data == {"n": 1}

    def test_schemas_are_per_tenant(self, acme, globex):
        module = _module()
        acme.upsert_columns(module, INVOICE_COLUMNS)
        globex.upsert_columns(module, [{"name": "title", "type": "text"}])
        assert [c.name for c in acme.get_columns(module)] == ["amount", "status", "vat"]
        assert [c.name for c in globex.get_columns(module)] == ["title"]

    def test_module_list_is_per_tenant(self, acme, globex):
        module = _module()
        acme.insert(module, {"n": 1})
        assert module not in globex.list_modules()


# ── Trust Boundary Tests ─────────────────────────────────────────────────────

class TestTrustBoundary:
    def test_cannot_connect_with_wrong_password(self, conn_info, _provision_tenants):
        with pytest.raises(StoreError):
            _client(conn_info, "acme", "wrong_password")

    def test_cannot_connect_as_nonexistent_tenant(self, conn_info):
        with pytest.raises(StoreError):
            _client(conn_info, "nonexistent_tenant", "whatever")

    def test_cannot_insert_as_other_tenant(self, acme):
        with pytest.raises(psycopg2.errors.InsufficientPrivilege):
            with acme.conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO module_records (tenant, module_name, data)
                    VALUES ('globex', 'forged', '{"x": 1}'::jsonb)
                    """
                )

    def test_cannot_disable_rls(self, acme):
        with pytest.raises(psycopg2.Error):
            with acme.conn.cursor() as cur:
                cur.execute("ALTER TABLE module_records DISABLE ROW LEVEL SECURITY")

    def test_cannot_set_role_to_admin(self, acme):
        with pytest.raises(psycopg2.Error):
            with acme.conn.cursor() as cur:
                cur.execute(f"SET ROLE {ADMIN_ROLE}")

    def test_cannot_drop_table(self, acme):
        with pytest.raises(psycopg2.Error):
            with acme.conn.cursor() as cur:
                cur.execute("DROP TABLE module_schemas")

    def test_invalid_tenant_name_rejected(self, server):
        conn = server.admin_conn()
        try:
            with pytest.raises(ValueError):
                provision_tenant(conn, "acme; DROP TABLE module_records", "pw")
        finally:
            conn.close()

    def test_closed_connection_raises_store_error(self, conn_info, _provision_tenants):
        c = _client(conn_info, "acme", "acme_pw")
        c.close()
        with pytest.raises(StoreError):
            c.fetch_all("invoices")


# ── Admin Access ─────────────────────────────────────────────────────────────

class TestAdminAccess:
    def test_admin_sees_every_tenant(self, acme, globex, admin_client):
        module = _module()
        acme.insert(module, {"owner": "acme"})
        globex.insert(module, {"owner": "globex"})
        owners = {r.data["owner"] for r in admin_client.fetch_all(module)}
        assert owners == {"acme", "globex"}

    def test_admin_count_includes_all_tenants(self, acme, globex, admin_client):
        acme.insert(_module(), {"n": 1})
        globex.insert(_module(), {"n": 1})
        assert admin_client.count() > acme.count()
        assert admin_client.count() > globex.count()


# ── Engine on PostgreSQL ─────────────────────────────────────────────────────

class TestEvaluationOnPostgres:
    def test_computed_columns_over_stored_records(self, acme):
        invoices, payments = _module(), _module()
        acme.upsert_columns(invoices, [
            {"name": "amount", "type": "currency"},
            {"name": "vat", "type": "calculated", "formula": {"expression": "amount * 0.5"}},
            {
                "name": "paid",
                "type": "formula",
                "formula": {
                    "target_module_name": payments,
                    "target_column_key": "amount",
                    "operation": "SUM",
                },
            },
        ])
        acme.insert(payments, {"amount": 30})
        acme.insert(payments, {"amount": "12.5"})
        acme.insert(invoices, {"amount": 100})

        rows = ModuleEvaluator(acme).records(invoices)
        assert rows[0].data == {"amount": 100, "vat": 50, "paid": 42.5}
        assert acme.fetch_all(invoices)[0].data == {"amount": 100}


# ── Context Manager ──────────────────────────────────────────────────────────

class TestContextManager:
    def test_client_as_context_manager(self, conn_info, _provision_tenants):
        with _client(conn_info, "acme", "acme_pw") as c:
            rec = c.insert(_module(), {"n": 1})
            assert rec.id is not None
        assert c.conn.closed

    def test_server_connection_info(self, conn_info):
        assert set(conn_info) == {"host", "port", "dbname"}

    def test_server_connect(self, server, _provision_tenants):
        with server.connect("globex", "globex_pw", page_size=10) as c:
            assert c.user == "globex"
            assert c.page_size == 10
            module = _module()
            c.insert(module, {"n": 1})
            assert c.count(module) == 1

    def test_start_is_idempotent(self, server):
        assert server.is_running
        assert server.start() is server
