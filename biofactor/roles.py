"""
Static role registry – permission keys and department grants per role.
"""

from typing import Dict

from biofactor.models import ResourceAccess, RoleDefinition

WILDCARD = "*"

DEPARTMENTS = (
    "sales", "manufacturing", "qc", "warehouse", "finance",
    "hr", "fieldops", "rnd", "executive",
)

# ── Role → permission keys ───────────────────────────────────────────
ROLE_PERMISSIONS = {
    "super_admin": [WILDCARD],
    "executive": ["view_all", "view_reports", "approve_high"],
    "sales_officer": ["sales_view", "sales_create", "sales_edit"],
    "field_officer": ["field_view", "field_create"],
    "mdo": ["marketing_manage"],
    "regional_manager": ["sales_view", "sales_approve"],
    "zonal_manager": ["sales_view", "sales_approve"],
    "warehouse_manager": ["warehouse_manage"],
    "manufacturing_manager": ["manufacturing_manage"],
    "qc_analyst": ["qc_manage"],
    "finance_officer": ["finance_manage"],
    "hr_manager": ["hr_manage"],
    "rnd_manager": ["rnd_manage"],
}

# ── Role → departments ───────────────────────────────────────────────
ROLE_DEPARTMENTS = {
    "super_admin": list(DEPARTMENTS),
    "executive": list(DEPARTMENTS),
    "sales_officer": ["sales"],
    "field_officer": ["fieldops"],
    "mdo": ["sales"],
    "regional_manager": ["sales", "fieldops"],
    "zonal_manager": ["sales", "fieldops"],
    "warehouse_manager": ["warehouse"],
    "manufacturing_manager": ["manufacturing"],
    "qc_analyst": ["qc"],
    "finance_officer": ["finance"],
    "hr_manager": ["hr"],
    "rnd_manager": ["rnd"],
}


# ── Resource → gating keys ───────────────────────────────────────────
# The "roles" collection backs the role editor page; enforcement never reads it.
RESOURCE_ACCESS = {
    "dealers": ResourceAccess("sales", "sales_create", "sales_edit"),
    "orders": ResourceAccess("sales", "sales_create", "sales_edit"),
    "farmers": ResourceAccess("fieldops", "field_create", "field_create"),
    "files": ResourceAccess("sales", "sales_create", "sales_edit"),
    "roles": ResourceAccess("executive", "manage_roles", "manage_roles"),
}


def build_registry(permissions=None, departments=None) -> Dict[str, RoleDefinition]:
    """Combine the two role tables into RoleDefinitions keyed by role name."""
    permissions = ROLE_PERMISSIONS if permissions is None else permissions
    departments = ROLE_DEPARTMENTS if departments is None else departments

    missing = set(permissions) ^ set(departments)
    if missing:
        raise ValueError(f"Roles missing a permission or department entry: {sorted(missing)}")

    return {
        role: RoleDefinition(
            role=role,
            permissions=frozenset(permissions[role]),
            departments=frozenset(departments[role]),
        )
        for role in permissions
    }


ROLE_REGISTRY = build_registry()
