"""
Role-Based Access Control – authentication, session lifecycle and
permission / department predicates.
"""

import json
import os
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional

from biofactor.config import SESSION_STORAGE_KEY, TOKEN_EXPIRY_HOURS
from biofactor.errors import AuthenticationError
from biofactor.models import Principal, ResourceAccess, RoleDefinition, Session
from biofactor.roles import RESOURCE_ACCESS, ROLE_REGISTRY, WILDCARD


# ── Predicates ───────────────────────────────────────────────────────

def _role_definition(principal: Optional[Principal],
                     registry: Mapping[str, RoleDefinition]) -> Optional[RoleDefinition]:
    if principal is None or not principal.role:
        return None
    return registry.get(principal.role)


def has_permission(principal: Optional[Principal], permission: str,
                   registry: Mapping[str, RoleDefinition] = ROLE_REGISTRY) -> bool:
    """True if the principal's role grants ``*`` or exactly ``permission``.

    Keys are opaque: "sales_view" does not imply "sales" or "sales_view_all".
    """
    definition = _role_definition(principal, registry)
    if definition is None:
        return False
    return WILDCARD in definition.permissions or permission in definition.permissions


def can_access_department(principal: Optional[Principal], department: str,
                          registry: Mapping[str, RoleDefinition] = ROLE_REGISTRY) -> bool:
    """True if ``department`` is in the principal's role department set."""
    definition = _role_definition(principal, registry)
    if definition is None:
        return False
    return department in definition.departments


def can_perform(principal: Optional[Principal], resource: str, action: str,
                access: Mapping[str, ResourceAccess] = RESOURCE_ACCESS,
                registry: Mapping[str, RoleDefinition] = ROLE_REGISTRY) -> bool:
    """Gate a page action on a resource: "view", "create" or "edit".

    Viewing needs the resource's department; writing needs its permission key.
    Unknown resources are denied.
    """
    rule = access.get(resource)
    if rule is None:
        return False
    if action == "view":
        return can_access_department(principal, rule.department, registry)
    if action in ("create", "edit"):
        return has_permission(principal, getattr(rule, action), registry)
    return False


def permissions_for(principal: Optional[Principal],
                    registry: Mapping[str, RoleDefinition] = ROLE_REGISTRY) -> Dict[str, List[str]]:
    definition = _role_definition(principal, registry)
    if definition is None:
        return {"permissions": [], "departments": []}
    return {
        "permissions": sorted(definition.permissions),
        "departments": sorted(definition.departments),
    }


def principal_from_profile(profile: Dict[str, Any],
                           registry: Mapping[str, RoleDefinition] = ROLE_REGISTRY) -> Principal:
    """Build a Principal from a profile row, rejecting roles outside the registry."""
    role = str(profile.get("role") or "").strip().lower()
    if role not in registry:
        raise AuthenticationError(f"Unsupported role '{profile.get('role')}' in profile {profile.get('id')}.")

    return Principal(
        id=str(profile["id"]),
        email=profile.get("email") or "",
        display_name=profile.get("full_name") or profile.get("email") or "",
        role=role,
        department=profile.get("department"),
        region=profile.get("region"),
        avatar_url=profile.get("avatar_url"),
    )


# ── Session storage ──────────────────────────────────────────────────

class _SessionStorage:
    """Principals by storage key, each with the time it was last used."""

    def _read(self) -> Dict[str, Any]:
        raise NotImplementedError

    def _write(self, data: Dict[str, Any]) -> None:
        raise NotImplementedError

    def save(self, key: str, principal: Principal) -> None:
        data = self._read()
        data[key] = {
            "principal": principal.to_dict(),
            "last_activity": datetime.utcnow().isoformat(),
        }
        self._write(data)

    def load(self, key: str) -> Optional[Principal]:
        item = self._read().get(key) or {}
        return Principal.from_dict(item["principal"]) if item.get("principal") else None

    def touch(self, key: str) -> None:
        data = self._read()
        if key in data:
            data[key]["last_activity"] = datetime.utcnow().isoformat()
            self._write(data)

    def clear(self, key: str) -> None:
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)

    def idle_since(self, cutoff: datetime) -> List[str]:
        """Keys whose last activity is older than ``cutoff``."""
        return [
            key for key, item in self._read().items()
            if datetime.fromisoformat(item["last_activity"]) < cutoff
        ]

    def __len__(self):
        return len(self._read())


class MemorySessionStorage(_SessionStorage):
    """Process-local storage; the API server's default for token sessions."""

    def __init__(self):
        self._items: Dict[str, Dict[str, Any]] = {}

    def _read(self) -> Dict[str, Any]:
        return self._items

    def _write(self, data: Dict[str, Any]) -> None:
        self._items = data


class FileSessionStorage(_SessionStorage):
    """Durable storage: one JSON document, so sessions survive a restart."""

    def __init__(self, path: str):
        self.path = path

    def _read(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as fh:
            try:
                return json.load(fh)
            except json.JSONDecodeError:
                print(f"[WARN] Ignoring unreadable session file {self.path}")
                return {}

    def _write(self, data: Dict[str, Any]) -> None:
        folder = os.path.dirname(self.path)
        if folder:
            os.makedirs(folder, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as fh:
            json.dump(data, fh)


# ── Authentication ───────────────────────────────────────────────────

class AuthService:
    """Signs principals in and out against the identity and profile stores."""

    def __init__(self, identity, profiles, storage,
                 registry: Mapping[str, RoleDefinition] = ROLE_REGISTRY,
                 storage_key: str = SESSION_STORAGE_KEY):
        self.identity = identity
        self.profiles = profiles
        self.storage = storage
        self.registry = registry
        self.storage_key = storage_key

    def authenticate(self, email: str, password: str, key: Optional[str] = None) -> Session:
        """Sign in and load the profile; persist the principal only once both succeed."""
        key = key or self.storage_key

        try:
            subject_id = self.identity.sign_in(email, password)
        except AuthenticationError:
            raise
        except Exception as e:
            raise AuthenticationError(f"Sign-in failed: {e}") from e

        try:
            profile = self.profiles.get_by_id(subject_id)
            if not profile:
                raise AuthenticationError("No profile provisioned for this account.")
            principal = principal_from_profile(profile, self.registry)
        except Exception as e:
            self.identity.sign_out(subject_id)
            if isinstance(e, AuthenticationError):
                raise
            raise AuthenticationError(f"Profile lookup failed: {e}") from e

        self.storage.save(key, principal)
        print(f"[auth] Logged in as: {principal.display_name} (role={principal.role})")
        return Session(principal=principal, key=key)

    def login(self, email: str, password: str) -> bool:
        """Boolean wrapper around authenticate(); every failure is just False."""
        try:
            self.authenticate(email, password)
        except AuthenticationError as e:
            print(f"[auth] Login failed: {e}")
            return False
        return True

    def restore(self, key: Optional[str] = None) -> Optional[Session]:
        """Rebuild a session from storage without prompting for credentials."""
        key = key or self.storage_key
        principal = self.storage.load(key)
        if principal is None:
            return None
        if principal.role not in self.registry:
            self.storage.clear(key)
            return None
        return Session(principal=principal, key=key)

    def logout(self, session: Optional[Session] = None) -> None:
        """Clear the stored principal and end the remote session. Safe to repeat."""
        key = session.key if session else self.storage_key
        principal = session.principal if session else self.storage.load(key)
        try:
            self.identity.sign_out(principal.id if principal else None)
        finally:
            self.storage.clear(key)

    def touch(self, session: Session) -> None:
        session.touch()
        self.storage.touch(session.key)

    def cleanup_expired_sessions(self, max_age_hours: float = TOKEN_EXPIRY_HOURS) -> int:
        """Remove sessions that have been inactive beyond ``max_age_hours``."""
        cutoff = datetime.utcnow() - timedelta(hours=max_age_hours)
        expired = self.storage.idle_since(cutoff)
        for key in expired:
            self.storage.clear(key)
        if expired:
            print(f"[cleanup] Removed {len(expired)} expired sessions")
        return len(expired)
