"""Tri-state field changes for partial updates.

A partial update has to tell "leave this field alone" apart from "clear this
field". A bare nullable value cannot, so each optional field of an update
resolves to one of UNCHANGED, SET(value) or CLEARED.
"""
import enum
from dataclasses import dataclass
from typing import Any


class FieldChangeKind(str, enum.Enum):
    """What a partial update does to one field."""

    UNCHANGED = "unchanged"
    SET = "set"
    CLEARED = "cleared"


@dataclass(frozen=True)
class FieldChange:
    """One field's change in a partial update."""

    kind: FieldChangeKind
    value: Any = None

    @classmethod
    def unchanged(cls) -> "FieldChange":
        return cls(FieldChangeKind.UNCHANGED)

    @classmethod
    def set_to(cls, value: Any) -> "FieldChange":
        return cls(FieldChangeKind.SET, value)

    @classmethod
    def cleared(cls) -> "FieldChange":
        return cls(FieldChangeKind.CLEARED)

    @property
    def is_unchanged(self) -> bool:
        return self.kind == FieldChangeKind.UNCHANGED

    @property
    def is_cleared(self) -> bool:
        return self.kind == FieldChangeKind.CLEARED

    def apply(self, current: Any, cleared_value: Any = None) -> Any:
        """Return the field's value after this change."""
        if self.kind == FieldChangeKind.SET:
            return self.value
        if self.kind == FieldChangeKind.CLEARED:
            return cleared_value
        return current


def blank_to_none(value: Any) -> Any:
    """Treat empty and whitespace-only strings as unset."""
    if isinstance(value, str) and not value.strip():
        return None
    return value
