"""
Table definitions for a self-hosted backend, plus user provisioning.

The stores reflect whatever tables exist, so these are only needed to create
a fresh database (SQLite for development, or tests).
"""

import uuid

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    func,
    insert,
)

from biofactor.database import hash_password
from biofactor.roles import DEPARTMENTS, ROLE_REGISTRY

metadata = MetaData()


def _id():
    return Column("id", String(36), primary_key=True, default=lambda: str(uuid.uuid4()))


def _created_at():
    return Column("created_at", DateTime, server_default=func.now())


auth_users = Table(
    "auth_users", metadata,
    _id(),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
)

profiles = Table(
    "profiles", metadata,
    Column("id", String(36), ForeignKey("auth_users.id"), primary_key=True),
    Column("email", String(255), nullable=False),
    Column("full_name", String(255)),
    Column("role", String(50)),
    Column("department", String(50)),
    Column("region", String(100)),
    Column("avatar_url", String(500)),
)

dealers = Table(
    "dealers", metadata,
    _id(),
    Column("name", String(255), nullable=False),
    Column("business_name", String(255)),
    Column("phone", String(50), nullable=False),
    Column("email", String(255)),
    Column("address", String(500)),
    Column("city", String(100)),
    Column("state", String(100)),
    Column("region", String(100)),
    Column("status", String(30)),
    Column("kyc_status", String(30)),
    Column("credit_limit", Float),
    Column("outstanding_balance", Float),
    Column("rating", Float),
    _created_at(),
)

orders = Table(
    "orders", metadata,
    _id(),
    Column("dealer_id", String(36), ForeignKey("dealers.id"), nullable=False),
    Column("order_date", String(10), nullable=False),
    Column("expected_delivery", String(10)),
    Column("status", String(30)),
    Column("payment_status", String(30)),
    Column("total_amount", Float),
    Column("discount_amount", Float),
    Column("tax_amount", Float),
    Column("net_amount", Float),
    Column("action", String(100)),
    Column("zone", String(100)),
    Column("area", String(100)),
    Column("designation", String(100)),
    _created_at(),
)

farmers = Table(
    "farmers", metadata,
    _id(),
    Column("name", String(255), nullable=False),
    Column("age", Integer),
    Column("phone", String(50)),
    Column("village", String(100)),
    Column("district", String(100)),
    Column("state", String(100)),
    Column("farm_size_acres", Float),
    Column("irrigation_type", String(50)),
    Column("land_type", String(50)),
    Column("soil_type", String(50)),
    Column("crops", JSON),
    Column("lat", Float),
    Column("lon", Float),
    Column("created_by", String(36)),
    _created_at(),
)

files = Table(
    "files", metadata,
    _id(),
    Column("filename", String(255), nullable=False),
    Column("path", String(500), nullable=False),
    Column("url", String(1000)),
    Column("mime_type", String(100)),
    Column("size", Integer),
    Column("uploaded_at", String(40)),
)

roles = Table(
    "roles", metadata,
    _id(),
    Column("name", String(100), nullable=False, unique=True),
    Column("description", String(500)),
    Column("permissions", JSON),
    Column("user_count", Integer),
    _created_at(),
)


def create_all(engine) -> None:
    metadata.create_all(engine)


def provision_user(engine, email: str, password: str, full_name: str, role: str,
                   department: str, region: str = None) -> str:
    """Create the sign-in account and its profile row. Returns the new id."""
    if role not in ROLE_REGISTRY:
        raise ValueError(f"Unknown role '{role}'. Choose one of: {', '.join(sorted(ROLE_REGISTRY))}")
    if department not in DEPARTMENTS:
        raise ValueError(f"Unknown department '{department}'.")

    user_id = str(uuid.uuid4())
    with engine.begin() as conn:
        conn.execute(insert(auth_users).values(
            id=user_id, email=email, password_hash=hash_password(password),
        ))
        conn.execute(insert(profiles).values(
            id=user_id, email=email, full_name=full_name, role=role,
            department=department, region=region,
        ))
    return user_id
