#!/usr/bin/env python3
"""
Provision a dashboard user: sign-in account plus profile row.
Creates the tables first when they do not exist yet.
"""

import getpass
import sys

from biofactor.database import init_engine
from biofactor.roles import DEPARTMENTS, ROLE_REGISTRY
from biofactor.schema import create_all, provision_user

if __name__ == "__main__":
    print("=" * 60)
    print("Biofactor Dashboard – Create User")
    print("=" * 60)

    engine = init_engine()
    create_all(engine)

    email = input("Email: ").strip()
    full_name = input("Full name: ").strip()
    print(f"Roles: {', '.join(sorted(ROLE_REGISTRY))}")
    role = input("Role: ").strip().lower()
    print(f"Departments: {', '.join(DEPARTMENTS)}")
    department = input("Department: ").strip().lower()
    region = input("Region (optional): ").strip() or None
    password = getpass.getpass("Password: ")

    try:
        user_id = provision_user(engine, email, password, full_name, role, department, region)
    except ValueError as e:
        print(f"\n[ERROR] {e}", file=sys.stderr)
        sys.exit(1)

    print(f"\n[init] Created user {email} (id={user_id}, role={role})")
