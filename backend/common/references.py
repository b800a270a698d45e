"""Legacy reference reconciliation.

The legacy document store refers to the same entity three different ways:
native ObjectIds (exported as ``{"$oid": "<24 hex>"}``), the same ObjectId
serialised as a plain 24-hex string, and short business ids such as
``"300041"`` or ``"COMP-INDIGO"``. This module reduces all of them to one
canonical key so a reference can be resolved no matter how it was written.
"""

from __future__ import annotations

import enum
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

_OBJECT_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")
_NUMERIC_RE = re.compile(r"^\d+$")


class RefKind(str, enum.Enum):
    object_id = "object_id"      # {"$oid": ...} or a bson ObjectId-like object
    hex_string = "hex_string"    # ObjectId serialised into a plain string
    numeric = "numeric"          # 6-digit style business id (str or int)
    business = "business"        # any other alphanumeric id, e.g. COMP-INDIGO
    empty = "empty"


@dataclass(frozen=True)
class LegacyRef:
    kind: RefKind
    key: str

    @property
    def is_object_id(self) -> bool:
        return self.kind in (RefKind.object_id, RefKind.hex_string)


def parse_ref(value: Any) -> LegacyRef:
    """Classify *value* and return its canonical key.

    ObjectId forms collapse to ``oid:<lowercase hex>``; numeric ids drop
    leading/trailing whitespace and are kept as digit strings; everything else
    is trimmed verbatim.
    """
    if value is None:
        return LegacyRef(RefKind.empty, "")

    if isinstance(value, dict):
        if "$oid" in value:
            return LegacyRef(RefKind.object_id, f"oid:{str(value['$oid']).lower()}")
        # Populated sub-document: prefer its business id, then its _id
        if value.get("id") not in (None, ""):
            return parse_ref(value["id"])
        if "_id" in value:
            return parse_ref(value["_id"])
        return LegacyRef(RefKind.empty, "")

    if isinstance(value, bool):
        return LegacyRef(RefKind.business, str(value).lower())

    if isinstance(value, int):
        return LegacyRef(RefKind.numeric, str(value))

    # bson.ObjectId and friends expose a 24-hex str()
    text = str(value).strip()
    if not text:
        return LegacyRef(RefKind.empty, "")
    if text.startswith("ObjectId(") and text.endswith(")"):
        text = text[len("ObjectId("):-1].strip("'\" ")
        return LegacyRef(RefKind.object_id, f"oid:{text.lower()}")
    if _OBJECT_ID_RE.match(text):
        kind = RefKind.hex_string if isinstance(value, str) else RefKind.object_id
        return LegacyRef(kind, f"oid:{text.lower()}")
    if _NUMERIC_RE.match(text):
        return LegacyRef(RefKind.numeric, text)
    return LegacyRef(RefKind.business, text)


def ref_key(value: Any) -> str:
    return parse_ref(value).key


def refs_equal(a: Any, b: Any) -> bool:
    ka, kb = ref_key(a), ref_key(b)
    return bool(ka) and ka == kb


@dataclass
class ReferenceIndex:
    """Maps every known legacy representation of one collection's ids to a UUID.

    A legacy document usually carries both an ``_id`` ObjectId and a business
    ``id``; both are registered so that either form resolves.
    """

    collection: str
    _by_key: dict[str, uuid.UUID] = field(default_factory=dict)
    unresolved: list[str] = field(default_factory=list)

    def register(self, doc: dict[str, Any], new_id: uuid.UUID) -> None:
        for attr in ("_id", "id", "employeeId"):
            if attr in doc:
                key = ref_key(doc[attr])
                if key:
                    self._by_key[key] = new_id

    def resolve(self, value: Any) -> Optional[uuid.UUID]:
        key = ref_key(value)
        if not key:
            return None
        found = self._by_key.get(key)
        if found is None:
            self.unresolved.append(key)
        return found

    def __contains__(self, value: Any) -> bool:
        key = ref_key(value)
        return bool(key) and key in self._by_key

    def __len__(self) -> int:
        return len(set(self._by_key.values()))


def primary_legacy_id(doc: dict[str, Any]) -> Optional[str]:
    """Business id if present, else the ObjectId hex; stored as ``legacy_id``."""
    for attr in ("id", "employeeId", "_id"):
        if attr in doc:
            ref = parse_ref(doc[attr])
            if ref.kind is not RefKind.empty:
                return ref.key.removeprefix("oid:")
    return None
