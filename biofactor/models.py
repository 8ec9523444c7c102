"""
Domain dataclasses used across the application.
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from biofactor.config import DEFAULT_ORDER_ASCENDING


@dataclass(frozen=True)
class Principal:
    """The signed-in user together with their role and scope."""
    id: str
    email: str
    display_name: str
    role: Optional[str]        # must name a RoleDefinition; None means no access
    department: Optional[str]
    region: Optional[str] = None
    avatar_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Principal":
        return cls(
            id=str(data["id"]),
            email=data.get("email") or "",
            display_name=data.get("display_name") or "",
            role=data.get("role"),
            department=data.get("department"),
            region=data.get("region"),
            avatar_url=data.get("avatar_url"),
        )


@dataclass(frozen=True)
class RoleDefinition:
    """Static permission and department grants for one role."""
    role: str
    permissions: FrozenSet[str]
    departments: FrozenSet[str]


@dataclass(frozen=True)
class ResourceAccess:
    """Which department a resource belongs to and the keys gating it."""
    department: str   # viewing needs access to this department
    create: str
    edit: str


@dataclass
class Session:
    """Explicit login context handed to every call site that needs it."""
    principal: Principal
    key: str = "biofactor_user"   # storage slot the principal is persisted under
    created_at: datetime = field(default_factory=datetime.utcnow)
    last_activity: datetime = field(default_factory=datetime.utcnow)

    def touch(self) -> None:
        self.last_activity = datetime.utcnow()


# ── Data gateway ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class OrderBy:
    column: str
    ascending: bool = DEFAULT_ORDER_ASCENDING


@dataclass
class ListOptions:
    """Query options for a list() call. Filters are ANDed equality tests."""
    select: str = "*"
    filters: Dict[str, Any] = field(default_factory=dict)
    order_by: Optional[OrderBy] = None
    limit: Optional[int] = None

    def effective_filters(self) -> Dict[str, Any]:
        """Filters with empty-string and None values removed."""
        return {k: v for k, v in self.filters.items() if v is not None and v != ""}

    def cache_key(self) -> str:
        payload = {
            "select": self.select,
            "filters": self.effective_filters(),
            "order_by": asdict(self.order_by) if self.order_by else None,
            "limit": self.limit,
        }
        return json.dumps(payload, sort_keys=True, default=str)


@dataclass
class CacheEntry:
    resource: str
    key: str
    rows: List[Dict[str, Any]]
    stale: bool = False
    fetched_at: datetime = field(default_factory=datetime.utcnow)
    refreshing: bool = False
    options: Optional[ListOptions] = None
    generation: int = 0        # resource write count the rows were fetched at


# ── Import pipeline ──────────────────────────────────────────────────

class ImportState(str, Enum):
    IDLE = "idle"
    READING = "reading"
    PARSING = "parsing"
    MAPPING = "mapping"
    COERCING = "coercing"
    VALIDATING = "validating"
    COMMITTING = "committing"
    COMPLETED = "completed"
    FAILED = "failed"


class OutcomeKind(str, Enum):
    INSERTED = "inserted"
    DROPPED = "dropped"
    FAILED = "failed"


@dataclass(frozen=True)
class RowOutcome:
    row_index: int
    kind: OutcomeKind
    record_id: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class AggregateImportResult:
    """Tally shown to the user: inserted rows out of rows in the file."""
    success_count: int
    total_rows: int
    dropped_count: int = 0
    failed_count: int = 0
    cancelled: bool = False
    outcomes: List[RowOutcome] = field(default_factory=list)

    @property
    def summary(self) -> str:
        return f"Imported {self.success_count} of {self.total_rows} rows"
