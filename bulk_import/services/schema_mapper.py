from __future__ import annotations

from collections.abc import Sequence

from ..models.field_spec import UNSET, ColumnMapping, FieldSpec, Unset

"""Schema mapping: bind logical fields to header labels.

Auto-mapping is deliberately simple and order dependent. For each field the
header labels are scanned left to right and the first label that equals the
field key or one of its aliases, or contains an alias as a substring, wins.
There is no scoring: with headers ["Code", "code_2"] and alias "code" the
field binds to "Code" because it comes first. Ties are always broken by
column order, never by alias specificity.
"""

__all__ = [
    "MappingError",
    "MappingIncompleteError",
    "label_matches",
    "auto_map",
    "override",
    "require_complete",
]


class MappingError(Exception):
    """Raised for an override naming an unknown field or header label."""


class MappingIncompleteError(Exception):
    """Raised when a required field has no column; the operator can fix it."""

    def __init__(self, missing: Sequence[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"required fields not mapped: {', '.join(self.missing)}")


def label_matches(label: str, spec: FieldSpec) -> bool:
    lower = label.strip().lower()
    if lower == spec.key.lower():
        return True
    return any(lower == alias or alias in lower for alias in spec.aliases)


def auto_map(headers: Sequence[str], fields: Sequence[FieldSpec]) -> ColumnMapping:
    """Auto-map fields to headers; fields without a match stay unconsidered."""
    bindings: dict[str, str | Unset] = {}
    for spec in fields:
        for label in headers:
            if label_matches(label, spec):
                bindings[spec.key] = label
                break
    return ColumnMapping.from_dict(bindings)


def override(
    mapping: ColumnMapping,
    key: str,
    label: str | Unset,
    headers: Sequence[str],
    fields: Sequence[FieldSpec],
) -> ColumnMapping:
    """Operator override of one field (a label, or UNSET to clear it)."""
    if key not in {f.key for f in fields}:
        raise MappingError(f"unknown field {key!r}")
    if label is UNSET:
        return mapping.with_unset(key)
    if label not in headers:
        raise MappingError(f"column {label!r} is not in the header row")
    return mapping.with_binding(key, label)


def require_complete(mapping: ColumnMapping, fields: Sequence[FieldSpec]) -> None:
    missing = mapping.missing_required(fields)
    if missing:
        raise MappingIncompleteError(missing)
