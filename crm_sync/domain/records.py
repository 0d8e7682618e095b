"""
crm_sync/domain/records.py

Source-side record model.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from crm_sync.domain.entities import SourceEntity


def normalize_external_id(value: Any) -> str | None:
    """
    Trim and upper-case an identifier; blank values become None.
    """

    if value is None:
        return None
    text = str(value).strip()
    return text.upper() if text else None


def parse_revision(value: Any) -> int | None:
    """
    Parse a revision number; non-numeric or non-integral values become None.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return int(value)
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    if math.isfinite(number) and number.is_integer():
        return int(number)
    return None


@dataclass(frozen=True)
class SourceRecord:
    """
    One entity read from the source, consumed read-only downstream.
    """

    external_id: str | None
    revision: int | None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any], entity: SourceEntity) -> "SourceRecord":
        return cls(
            external_id=normalize_external_id(raw.get(entity.id_field)),
            revision=parse_revision(raw.get(entity.revision_field)),
            attributes=dict(raw),
        )

    def get(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)
