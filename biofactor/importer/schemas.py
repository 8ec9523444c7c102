"""
Per-resource import schemas: alias tables, coercion, lookups and the typed
record each accepted row becomes.
"""

import math
from dataclasses import dataclass, field, fields as dataclass_fields
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

import pandas as pd

from biofactor.config import ARRAY_DELIMITER
from biofactor.errors import MissingRequiredFieldError

TEXT = "text"
NUMBER = "number"
DATE = "date"
ARRAY = "array"


# ── Coercion ─────────────────────────────────────────────────────────

def coerce_text(value: Any) -> Optional[str]:
    text = str(value).strip()
    return text or None


def coerce_number(value: Any) -> Optional[float]:
    """Parse a number; anything unparsable becomes None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().replace(",", "")
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if math.isnan(number) or math.isinf(number):
        return None
    return int(number) if number.is_integer() else number


def coerce_date(value: Any) -> Optional[str]:
    """Parse a date to ISO ``YYYY-MM-DD``; anything unparsable becomes None."""
    text = str(value).strip()
    if not text:
        return None
    parsed = pd.to_datetime(text, errors="coerce")
    if pd.isna(parsed):
        return None
    return parsed.date().isoformat()


def coerce_array(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        items = value
    else:
        items = str(value).split(ARRAY_DELIMITER)
    return [s for s in (str(i).strip() for i in items) if s]


COERCERS: Dict[str, Callable[[Any], Any]] = {
    TEXT: coerce_text,
    NUMBER: coerce_number,
    DATE: coerce_date,
    ARRAY: coerce_array,
}


# ── Schema definitions ───────────────────────────────────────────────

@dataclass(frozen=True)
class FieldSpec:
    """One target field. ``aliases`` are tried in order, canonical key first."""
    name: str
    aliases: Tuple[str, ...]
    kind: str = TEXT
    default: Any = None
    lookup: Optional[str] = None    # name of a Lookup resolving the value to an id

    def __post_init__(self):
        if self.kind not in COERCERS:
            raise ValueError(f"Unknown field kind '{self.kind}' for {self.name}")
        if not self.aliases or self.aliases[0] != self.name:
            raise ValueError(f"Field {self.name}: canonical key must be the first alias")

    def default_value(self) -> Any:
        return list(self.default) if isinstance(self.default, list) else self.default


@dataclass(frozen=True)
class LookupSpec:
    """Resolve display names to ids using rows of another resource."""
    resource: str
    keys: Tuple[str, ...]
    id_column: str = "id"


class Lookup:
    """Case-insensitive name → id table."""

    def __init__(self, mapping: Dict[str, Any], ids=()):
        self.mapping = mapping
        self.ids = {str(i): i for i in ids}

    @classmethod
    def from_rows(cls, rows: List[Dict[str, Any]], spec: LookupSpec) -> "Lookup":
        mapping = {}
        ids = []
        for row in rows:
            ids.append(row[spec.id_column])
            for key in spec.keys:
                name = row.get(key)
                if name:
                    mapping[str(name).strip().lower()] = row[spec.id_column]
        return cls(mapping, ids)

    def resolve(self, name: Any) -> Optional[Any]:
        if name is None:
            return None
        key = str(name).strip()
        if key in self.ids:
            return self.ids[key]
        return self.mapping.get(key.lower())


@dataclass(frozen=True)
class ResourceSchema:
    name: str
    fields: Tuple[FieldSpec, ...]
    required: Tuple[str, ...]
    record_type: Type
    lookups: Dict[str, LookupSpec] = field(default_factory=dict)
    derive: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None
    stamp_creator: bool = False


# ── Typed records ────────────────────────────────────────────────────

class _Record:
    def to_row(self) -> Dict[str, Any]:
        """Insert payload; None fields are left to the backend's defaults."""
        row = {}
        for f in dataclass_fields(self):
            value = getattr(self, f.name)
            if value is not None:
                row[f.name] = value
        return row


@dataclass
class FarmerRecord(_Record):
    name: str
    age: Optional[float] = None
    phone: Optional[str] = None
    village: Optional[str] = None
    district: Optional[str] = None
    state: Optional[str] = None
    farm_size_acres: Optional[float] = None
    irrigation_type: Optional[str] = None
    land_type: Optional[str] = None
    soil_type: Optional[str] = None
    crops: List[str] = field(default_factory=list)
    lat: Optional[float] = None
    lon: Optional[float] = None
    created_by: Optional[str] = None


@dataclass
class DealerRecord(_Record):
    name: str
    phone: str
    business_name: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    region: Optional[str] = None
    status: str = "active"
    kyc_status: str = "pending"
    credit_limit: Optional[float] = 0
    outstanding_balance: Optional[float] = 0
    rating: Optional[float] = None


@dataclass
class OrderRecord(_Record):
    dealer_id: str
    order_date: str
    expected_delivery: Optional[str] = None
    status: str = "pending"
    payment_status: str = "unpaid"
    total_amount: float = 0
    discount_amount: float = 0
    tax_amount: float = 0
    net_amount: float = 0
    action: Optional[str] = None
    zone: Optional[str] = None
    area: Optional[str] = None
    designation: Optional[str] = None


def _order_net_amount(candidate: Dict[str, Any]) -> Dict[str, Any]:
    total = candidate.get("total_amount") or 0
    discount = candidate.get("discount_amount") or 0
    tax = candidate.get("tax_amount") or 0
    return {"net_amount": total - discount + tax}


FARMERS = ResourceSchema(
    name="farmers",
    fields=(
        FieldSpec("name", ("name", "Name")),
        FieldSpec("age", ("age", "Age"), NUMBER),
        FieldSpec("phone", ("phone", "Phone")),
        FieldSpec("village", ("village", "Village")),
        FieldSpec("district", ("district", "District")),
        FieldSpec("state", ("state", "State")),
        FieldSpec("farm_size_acres", ("farm_size_acres", "Farm Size (acres)"), NUMBER),
        FieldSpec("irrigation_type", ("irrigation_type", "Irrigation")),
        FieldSpec("land_type", ("land_type", "Land")),
        FieldSpec("soil_type", ("soil_type", "Soil Type")),
        FieldSpec("crops", ("crops", "Crops"), ARRAY, default=[]),
        FieldSpec("lat", ("lat", "Lat"), NUMBER),
        FieldSpec("lon", ("lon", "Lon"), NUMBER),
    ),
    required=("name",),
    record_type=FarmerRecord,
    stamp_creator=True,
)

DEALERS = ResourceSchema(
    name="dealers",
    fields=(
        FieldSpec("name", ("name", "Name")),
        FieldSpec("business_name", ("business_name", "Business Name")),
        FieldSpec("phone", ("phone", "Phone")),
        FieldSpec("email", ("email", "Email")),
        FieldSpec("address", ("address", "Address")),
        FieldSpec("city", ("city", "City")),
        FieldSpec("state", ("state", "State")),
        FieldSpec("region", ("region", "Region")),
        FieldSpec("status", ("status", "Status"), default="active"),
        FieldSpec("kyc_status", ("kyc_status", "KYC Status"), default="pending"),
        FieldSpec("credit_limit", ("credit_limit", "Credit Limit"), NUMBER, default=0),
        FieldSpec("outstanding_balance", ("outstanding_balance", "Outstanding Balance"), NUMBER, default=0),
        FieldSpec("rating", ("rating", "Rating"), NUMBER),
    ),
    required=("name", "phone"),
    record_type=DealerRecord,
)

ORDERS = ResourceSchema(
    name="orders",
    fields=(
        FieldSpec("dealer_id", ("dealer_id", "dealer", "Dealer", "Dealer Name", "Business Name"),
                  lookup="dealer"),
        FieldSpec("order_date", ("order_date", "Order Date"), DATE),
        FieldSpec("expected_delivery", ("expected_delivery", "Expected Delivery"), DATE),
        FieldSpec("status", ("status", "Status"), default="pending"),
        FieldSpec("payment_status", ("payment_status", "Payment Status"), default="unpaid"),
        FieldSpec("total_amount", ("total_amount", "Total Amount"), NUMBER, default=0),
        FieldSpec("discount_amount", ("discount_amount", "Discount Amount"), NUMBER, default=0),
        FieldSpec("tax_amount", ("tax_amount", "Tax Amount"), NUMBER, default=0),
        FieldSpec("action", ("action", "Action")),
        FieldSpec("zone", ("zone", "Zone")),
        FieldSpec("area", ("area", "Area")),
        FieldSpec("designation", ("designation", "Designation")),
    ),
    required=("dealer_id", "order_date"),
    record_type=OrderRecord,
    lookups={"dealer": LookupSpec("dealers", keys=("name", "business_name"))},
    derive=_order_net_amount,
)

SCHEMAS = {s.name: s for s in (FARMERS, DEALERS, ORDERS)}


# ── Row mapping ──────────────────────────────────────────────────────

_MISSING = object()


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def pick_fields(raw: Dict[str, Any], schema: ResourceSchema) -> Dict[str, Any]:
    """For each field take the first alias present in ``raw``.

    A blank cell counts as absent whether it arrives as None (Excel) or as an
    empty string (CSV), so both formats resolve aliases the same way.
    """
    picked = {}
    for spec in schema.fields:
        value = _MISSING
        for alias in spec.aliases:
            if not _blank(raw.get(alias)):
                value = raw[alias]
                break
        picked[spec.name] = value
    return picked


def coerce_fields(picked: Dict[str, Any], schema: ResourceSchema,
                  lookups: Optional[Dict[str, Lookup]] = None) -> Dict[str, Any]:
    """Coerce picked values, resolve lookups, fill defaults, apply derivations."""
    lookups = lookups or {}
    candidate = {}
    for spec in schema.fields:
        value = picked.get(spec.name, _MISSING)
        if value is _MISSING:
            candidate[spec.name] = spec.default_value()
            continue

        if spec.lookup:
            candidate[spec.name] = lookups[spec.lookup].resolve(value) if spec.lookup in lookups else None
            continue

        coerced = COERCERS[spec.kind](value)
        if coerced is None and spec.default is not None:
            coerced = spec.default_value()
        candidate[spec.name] = coerced

    if schema.derive:
        candidate.update(schema.derive(candidate))
    return candidate


def map_row(raw: Dict[str, Any], schema: ResourceSchema,
            lookups: Optional[Dict[str, Lookup]] = None) -> Dict[str, Any]:
    """Turn one parsed row into a candidate record for ``schema``."""
    return coerce_fields(pick_fields(raw, schema), schema, lookups)


def validate_row(candidate: Dict[str, Any], schema: ResourceSchema):
    """Return the typed record, or raise MissingRequiredFieldError."""
    for name in schema.required:
        value = candidate.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise MissingRequiredFieldError(name)

    known = {f.name for f in dataclass_fields(schema.record_type)}
    return schema.record_type(**{k: v for k, v in candidate.items() if k in known})
