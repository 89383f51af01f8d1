from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum

"""Schema-side models: logical fields, derived fields and column mappings.

A pipeline instance declares its FieldSpec set once (opening stock, bulk
deactivation, ...). ColumnMapping binds those fields to header labels of the
uploaded file and is immutable; edits produce a new mapping.
"""

__all__ = [
    "FieldSpec",
    "DerivedField",
    "Unset",
    "UNSET",
    "ColumnMapping",
]


@dataclass(frozen=True)
class FieldSpec:
    """A logical field the pipeline collects from the uploaded file."""
    key: str  # 一意キー (payload のキーにもなる)
    label: str  # 表示名
    required: bool = False
    aliases: frozenset[str] = frozenset()  # 小文字化済みで比較

    @staticmethod
    def create(key: str, label: str, required: bool = False, aliases: Iterable[str] = ()) -> FieldSpec:
        return FieldSpec(
            key=key,
            label=label,
            required=required,
            aliases=frozenset(a.strip().lower() for a in aliases if a and a.strip()),
        )


@dataclass(frozen=True)
class DerivedField:
    """A field computed at projection time as the product of other fields.

    Opening stock uses ``total = quantity * price`` rounded to 2 digits.
    """
    key: str
    product_of: tuple[str, ...]
    ndigits: int = 2


class Unset(Enum):
    """Explicit "operator chose no column" marker.

    A key missing from a ColumnMapping means the field was never considered,
    which is not the same thing.
    """
    UNSET = "unset"

    def __repr__(self) -> str:  # pragma: no cover (trivial)
        return "UNSET"


UNSET = Unset.UNSET


@dataclass(frozen=True)
class ColumnMapping(Mapping[str, "str | Unset"]):
    """Immutable binding of FieldSpec.key to a header label or UNSET."""
    bindings: tuple[tuple[str, str | Unset], ...] = field(default=())

    @staticmethod
    def from_dict(data: Mapping[str, str | Unset]) -> ColumnMapping:
        return ColumnMapping(bindings=tuple(data.items()))

    def _as_dict(self) -> dict[str, str | Unset]:
        return dict(self.bindings)

    def __getitem__(self, key: str) -> str | Unset:
        return self._as_dict()[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._as_dict())

    def __len__(self) -> int:
        return len(self._as_dict())

    def label_for(self, key: str) -> str | None:
        """Return the bound label, or None when the field is unset or unconsidered."""
        value = self._as_dict().get(key)
        if value is None or value is UNSET:
            return None
        return value

    def is_considered(self, key: str) -> bool:
        return key in self._as_dict()

    def with_binding(self, key: str, label: str) -> ColumnMapping:
        data = self._as_dict()
        data[key] = label
        return ColumnMapping.from_dict(data)

    def with_unset(self, key: str) -> ColumnMapping:
        data = self._as_dict()
        data[key] = UNSET
        return ColumnMapping.from_dict(data)

    def missing_required(self, fields: Iterable[FieldSpec]) -> list[str]:
        return [f.key for f in fields if f.required and self.label_for(f.key) is None]

    def to_plain_dict(self) -> dict[str, str | None]:
        # JSON/ログ出力用 (UNSET -> None)
        return {k: (None if v is UNSET else v) for k, v in self.bindings}
