"""
Database engine initialisation and SQLAlchemy-backed stores.
"""

import sys
import uuid
from typing import Any, Dict, List, Optional

import bcrypt
from sqlalchemy import Integer, MetaData, Table, create_engine, delete, insert, select, text, update
from sqlalchemy.exc import NoSuchTableError

from biofactor.config import get_env
from biofactor.errors import AuthenticationError, GatewayError
from biofactor.models import ListOptions


def init_engine():
    """Create a SQLAlchemy engine and verify the connection."""
    db_uri = get_env("DB_URI")
    engine = create_engine(db_uri, echo=False, future=True)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        print("ERROR: could not connect to DB:", e, file=sys.stderr)
        sys.exit(1)
    print("[init] Connected to DB.")
    return engine


# ── Resource store ───────────────────────────────────────────────────

class SqlResourceStore:
    """ResourceStore over reflected tables. Each table needs an ``id`` column."""

    def __init__(self, engine):
        self.engine = engine
        self.metadata = MetaData()
        self._tables: Dict[str, Table] = {}

    def _table(self, name: str) -> Table:
        if name not in self._tables:
            try:
                self._tables[name] = Table(name, self.metadata, autoload_with=self.engine)
            except NoSuchTableError:
                raise GatewayError(f"Unknown resource '{name}'", resource=name) from None
        return self._tables[name]

    def list(self, table: str, options: ListOptions) -> List[Dict[str, Any]]:
        t = self._table(table)

        if options.select and options.select.strip() != "*":
            names = [c.strip() for c in options.select.split(",") if c.strip()]
            stmt = select(*[t.c[n] for n in names])
        else:
            stmt = select(t)

        for column, value in options.effective_filters().items():
            stmt = stmt.where(t.c[column] == value)

        if options.order_by:
            col = t.c[options.order_by.column]
            stmt = stmt.order_by(col.asc() if options.order_by.ascending else col.desc())

        if options.limit:
            stmt = stmt.limit(options.limit)

        with self.engine.connect() as conn:
            return [dict(row) for row in conn.execute(stmt).mappings()]

    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        t = self._table(table)
        values = {k: v for k, v in row.items() if k in t.c}
        if "id" not in values and not isinstance(t.c.id.type, Integer):
            values["id"] = str(uuid.uuid4())

        with self.engine.begin() as conn:
            result = conn.execute(insert(t).values(**values))
            record_id = values["id"] if "id" in values else result.inserted_primary_key[0]
            created = conn.execute(select(t).where(t.c.id == record_id)).mappings().first()
        return dict(created)

    def update(self, table: str, record_id: Any, fields: Dict[str, Any]) -> Dict[str, Any]:
        t = self._table(table)
        values = {k: v for k, v in fields.items() if k in t.c and k != "id"}

        with self.engine.begin() as conn:
            result = conn.execute(update(t).where(t.c.id == record_id).values(**values))
            if result.rowcount == 0:
                raise GatewayError(f"No {table} record with id {record_id}", resource=table)
            row = conn.execute(select(t).where(t.c.id == record_id)).mappings().first()
        return dict(row)

    def delete(self, table: str, record_id: Any) -> None:
        t = self._table(table)
        with self.engine.begin() as conn:
            conn.execute(delete(t).where(t.c.id == record_id))


# ── Identity / profiles ──────────────────────────────────────────────

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


class SqlIdentityProvider:
    """Email/password sign-in against the ``auth_users`` table."""

    def __init__(self, engine):
        self.engine = engine

    def sign_in(self, email: str, password: str) -> str:
        sql = text("""
            SELECT id, password_hash
            FROM auth_users
            WHERE lower(email) = lower(:email)
        """)
        with self.engine.connect() as conn:
            row = conn.execute(sql, {"email": email.strip()}).mappings().first()

        if not row or not verify_password(password, row["password_hash"]):
            raise AuthenticationError("Invalid login credentials")

        return str(row["id"])

    def sign_out(self, subject_id: Optional[str] = None) -> None:
        """No-op: password sign-in keeps no server-side state to end."""


class SqlProfileStore:
    """Profile lookups against the ``profiles`` table."""

    def __init__(self, engine):
        self.engine = engine

    def get_by_id(self, subject_id: str) -> Optional[Dict[str, Any]]:
        sql = text("""
            SELECT id, email, full_name, role, department, region, avatar_url
            FROM profiles
            WHERE id = :id
        """)
        with self.engine.connect() as conn:
            row = conn.execute(sql, {"id": subject_id}).mappings().first()
        return dict(row) if row else None
