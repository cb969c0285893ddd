"""
Database schema: module_records and module_schemas tables, indexes, RLS
policies, and tenant provisioning.
All DDL runs as crm_admin (the table owner).

Every tenant is a PostgreSQL login role; a row belongs to the role that
wrote it (tenant DEFAULT current_user), and RLS only ever shows a tenant
its own rows.
"""

GROUP_ROLE = "crm_tenant"
ADMIN_ROLE = "crm_admin"

_TABLES = ("module_records", "module_schemas")


def bootstrap_schema(admin_conn):
    """Create the record and schema tables, indexes and RLS policies. Idempotent."""
    admin_conn.autocommit = True
    with admin_conn.cursor() as cur:
        # ── Table: records (free-form JSONB attribute map per row) ───
        cur.execute("""
            CREATE TABLE IF NOT EXISTS module_records (
                id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                tenant      TEXT NOT NULL DEFAULT current_user,
                module_name TEXT NOT NULL,
                data        JSONB NOT NULL DEFAULT '{}'::jsonb,
                entry_date  TIMESTAMPTZ NOT NULL DEFAULT now(),
                created_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
                updated_at  TIMESTAMPTZ NOT NULL DEFAULT now()
            );
        """)

        # ── Table: ordered column definitions per module ─────────────
        cur.execute("""
            CREATE TABLE IF NOT EXISTS module_schemas (
                tenant      TEXT NOT NULL DEFAULT current_user,
                module_name TEXT NOT NULL,
                columns     JSONB NOT NULL DEFAULT '[]'::jsonb,
                created_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
                updated_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
                PRIMARY KEY (tenant, module_name)
            );
        """)

        # ── Indexes ──────────────────────────────────────────────────
        cur.execute("""
            CREATE INDEX IF NOT EXISTS idx_records_module_entry
                ON module_records (tenant, module_name, entry_date DESC, id);
        """)
        cur.execute("""
            CREATE INDEX IF NOT EXISTS idx_records_data
                ON module_records USING GIN (data);
        """)

        for table in _TABLES:
            # ── Enable RLS ───────────────────────────────────────────
            cur.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY;")
            cur.execute(f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY;")

            # ── Drop existing policies (idempotent re-create) ────────
            for policy in ("admin_all", "tenant_rows"):
                cur.execute(f"DROP POLICY IF EXISTS {policy} ON {table};")

            # ── Admin policy: full access ────────────────────────────
            cur.execute(f"""
                CREATE POLICY admin_all ON {table}
                    FOR ALL
                    TO {ADMIN_ROLE}
                    USING (true)
                    WITH CHECK (true);
            """)

            # ── Tenant policy: own rows only, cannot write as another ─
            cur.execute(f"""
                CREATE POLICY tenant_rows ON {table}
                    FOR ALL
                    TO {GROUP_ROLE}
                    USING (tenant = current_user)
                    WITH CHECK (tenant = current_user);
            """)

            cur.execute(
                f"GRANT SELECT, INSERT, UPDATE, DELETE ON {table} TO {GROUP_ROLE};"
            )


def provision_tenant(admin_conn, tenant, password):
    """
    Create a PG login role for a tenant. Zero-trust: NOSUPERUSER, NOCREATEDB,
    NOCREATEROLE, NOBYPASSRLS, LOGIN with password, inherits crm_tenant.
    """
    _validate_identifier(tenant)
    admin_conn.autocommit = True
    with admin_conn.cursor() as cur:
        cur.execute("SELECT 1 FROM pg_roles WHERE rolname = %s", (tenant,))
        if cur.fetchone() is None:
            # Identifiers cannot be parameterized; the name is validated above.
            cur.execute(
                f"CREATE ROLE \"{tenant}\" LOGIN PASSWORD %s "
                f"NOSUPERUSER NOCREATEDB NOCREATEROLE NOBYPASSRLS",
                (password,),
            )
            cur.execute(f"GRANT {GROUP_ROLE} TO \"{tenant}\";")
        else:
            cur.execute(f"ALTER ROLE \"{tenant}\" PASSWORD %s", (password,))


def _validate_identifier(name):
    """Prevent SQL injection in role names."""
    if not name or not all(c.isalnum() or c == "_" for c in name):
        raise ValueError(f"Invalid identifier: {name!r}")
    if len(name) > 63:
        raise ValueError(f"Identifier too long: {name!r}")
