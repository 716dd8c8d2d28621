"""
Attribute differ: compares a patch against the current snapshot.
"""

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping

from shared.errors import ValidationError

# Version metadata lives beside the snapshot, never inside it
RESERVED_ATTRIBUTES = frozenset({
    "id",
    "entity_id",
    "entity_type",
    "version",
    "is_current",
    "changed_fields",
    "change_reason",
    "previous_version",
    "updated_at",
    "updated_by",
    "created_at",
})


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Value of type {type(value).__name__} is not JSON serializable")


def normalize(value: Any) -> Any:
    """JSON-normalized copy of a value, as it will be stored."""
    try:
        return json.loads(json.dumps(value, default=_json_default))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Attribute value cannot be stored: {e}") from e


def _comparable(value: Any) -> Any:
    # 500000.0 and 500000 are the same stored number
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {key: _comparable(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_comparable(item) for item in value]
    return value


def _canonical(value: Any) -> str:
    return json.dumps(_comparable(value), sort_keys=True)


@dataclass(frozen=True)
class AttributeDiff:
    """Changed attribute names and the merged snapshot that would result."""
    changed_fields: List[str] = field(default_factory=list)
    next_snapshot: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.changed_fields


def diff(current_snapshot: Mapping[str, Any], patch: Mapping[str, Any]) -> AttributeDiff:
    """
    Compare ``patch`` against ``current_snapshot``.

    A field is changed when its JSON-normalized value differs from the stored
    one, numbers comparing by value; fields set to their existing value are not reported. Attributes absent
    from the patch are carried over unchanged.

    Raises:
        ValidationError: If the patch names version metadata
    """
    reserved = sorted(RESERVED_ATTRIBUTES.intersection(patch))
    if reserved:
        raise ValidationError(f"Cannot modify version metadata: {', '.join(reserved)}")

    next_snapshot = normalize(dict(current_snapshot))
    changed_fields = []

    for name in sorted(patch):
        new_value = normalize(patch[name])
        if name in next_snapshot and _canonical(next_snapshot[name]) == _canonical(new_value):
            continue
        next_snapshot[name] = new_value
        changed_fields.append(name)

    return AttributeDiff(changed_fields=changed_fields, next_snapshot=next_snapshot)
