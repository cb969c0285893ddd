"""
Embedded PostgreSQL for the record store.

pgserver ships the PostgreSQL binaries as a wheel, so a tenant store can be
started from a plain data directory:

    with RecordStoreServer(data_dir="/var/lib/crm") as server:
        server.provision_tenant("acme", "acme_pw")
        store = server.connect("acme", "acme_pw")

Only the bootstrap superuser may use the local socket without a password;
crm_admin and every tenant role authenticate with scram-sha-256.
"""

import contextlib
import logging
import os
import urllib.parse

import pgserver
import psycopg2

from store.client import RecordStoreClient
from store.schema import ADMIN_ROLE, GROUP_ROLE, bootstrap_schema, provision_tenant

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = os.getenv(
    "CRM_STORE_DATA_DIR",
    os.path.join(os.path.dirname(__file__), "..", ".pgdata", "crmstore"),
)

ADMIN_PASSWORD = os.getenv("CRM_STORE_ADMIN_PASSWORD", "admin_secret")

_HBA_TEMPLATE = """\
# Managed by RecordStoreServer; rewritten on every start.
# TYPE  DATABASE  USER           ADDRESS        METHOD
local   all       {superuser}                   trust
local   all       all                           scram-sha-256
host    all       all            127.0.0.1/32   scram-sha-256
host    all       all            ::1/128        scram-sha-256
"""

_ADMIN_OPTIONS = "LOGIN NOSUPERUSER NOCREATEDB CREATEROLE NOBYPASSRLS"
_GROUP_OPTIONS = "NOLOGIN NOSUPERUSER NOCREATEDB NOCREATEROLE NOBYPASSRLS"


def _ensure_role(cur, role, options, password=None):
    """Create `role` if missing; always (re)set its password when one is given."""
    cur.execute("SELECT 1 FROM pg_roles WHERE rolname = %s", (role,))
    exists = cur.fetchone() is not None
    if not exists:
        if password is None:
            cur.execute(f"CREATE ROLE {role} {options}")
        else:
            cur.execute(f"CREATE ROLE {role} {options} PASSWORD %s", (password,))
        logger.debug("Created role %s", role)
    elif password is not None:
        cur.execute(f"ALTER ROLE {role} PASSWORD %s", (password,))


class RecordStoreServer:
    """One embedded PostgreSQL cluster holding every tenant's records and schemas."""

    def __init__(self, data_dir=None, admin_password=None):
        self.data_dir = os.path.abspath(data_dir or DEFAULT_DATA_DIR)
        self.admin_password = admin_password or ADMIN_PASSWORD
        self._pg = None

    @property
    def is_running(self) -> bool:
        return self._pg is not None

    def start(self):
        """Start (or attach to) the cluster, create roles and tables, lock down auth."""
        if self.is_running:
            return self
        os.makedirs(self.data_dir, exist_ok=True)
        logger.info("Starting embedded PostgreSQL in %s", self.data_dir)
        self._pg = pgserver.get_server(self.data_dir)

        with self._superuser_cursor() as cur:
            _ensure_role(cur, ADMIN_ROLE, _ADMIN_OPTIONS, self.admin_password)
            _ensure_role(cur, GROUP_ROLE, _GROUP_OPTIONS)
            cur.execute(f"GRANT CREATE, USAGE ON SCHEMA public TO {ADMIN_ROLE}")
            cur.execute(f"GRANT USAGE ON SCHEMA public TO {GROUP_ROLE}")
            # crm_admin grants the group role to each tenant it provisions.
            cur.execute(f"GRANT {GROUP_ROLE} TO {ADMIN_ROLE} WITH ADMIN OPTION")

        with contextlib.closing(self.admin_conn()) as conn:
            bootstrap_schema(conn)

        self._write_hba()
        return self

    # ── Internal ─────────────────────────────────────────────────────

    def _uri(self):
        return urllib.parse.urlparse(self._pg.get_uri())

    @contextlib.contextmanager
    def _superuser_cursor(self):
        """Autocommit cursor as the bootstrap superuser (local socket, trust)."""
        conn = psycopg2.connect(self._pg.get_uri())
        conn.autocommit = True
        try:
            with conn.cursor() as cur:
                yield cur
        finally:
            conn.close()

    def _write_hba(self):
        """Install the password-only pg_hba.conf and reload if it changed."""
        superuser = self._uri().username or os.getenv("USER", "postgres")
        desired = _HBA_TEMPLATE.format(superuser=superuser)
        path = os.path.join(self.data_dir, "pg_hba.conf")

        current = ""
        if os.path.exists(path):
            with open(path) as f:
                current = f.read()
        if current.strip() == desired.strip():
            return

        with open(path, "w") as f:
            f.write(desired)
        with self._superuser_cursor() as cur:
            cur.execute("SELECT pg_reload_conf()")
        logger.info("Installed scram-sha-256 pg_hba.conf")

    # ── Public API ───────────────────────────────────────────────────

    def conn_info(self):
        """host (socket directory), port and dbname for client connections."""
        uri = self._uri()
        query = urllib.parse.parse_qs(uri.query)
        return {
            "host": query.get("host", ["/tmp"])[0],
            "port": uri.port or 5432,
            "dbname": uri.path.lstrip("/") or "postgres",
        }

    def admin_conn(self):
        """psycopg2 connection as crm_admin (password auth, sees every tenant)."""
        return psycopg2.connect(user=ADMIN_ROLE, password=self.admin_password,
                                **self.conn_info())

    def provision_tenant(self, tenant, password):
        """Create a tenant's login role, or reset its password."""
        with contextlib.closing(self.admin_conn()) as conn:
            provision_tenant(conn, tenant, password)
        logger.info("Provisioned tenant %s", tenant)

    def connect(self, tenant, password, **kwargs) -> RecordStoreClient:
        """RecordStoreClient for one tenant on this server."""
        return RecordStoreClient(user=tenant, password=password, **self.conn_info(), **kwargs)

    def stop(self):
        if self._pg is not None:
            self._pg.cleanup()
            self._pg = None
            logger.info("Stopped embedded PostgreSQL")

    def __enter__(self):
        return self.start()

    def __exit__(self, *exc):
        self.stop()
