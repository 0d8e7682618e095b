"""
crm_sync/mappers/field_table.py

Declarative source-field -> transform -> target-field tables.

Tables are validated when they are constructed, so a malformed table fails
at import time instead of during a run.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from crm_sync.domain.records import SourceRecord, normalize_external_id, parse_revision
from crm_sync.errors import RecordValidationError

Transform = Callable[[Any], Any]

_PHONE_STRIP = re.compile(r"[.\-\s()]")
_PHONE_VALID = re.compile(r"^\+?\d{8,15}$")
_NON_DIGITS = re.compile(r"\D+")


def norm_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def norm_id(value: Any) -> str | None:
    return normalize_external_id(value)


def norm_digits(value: Any) -> str | None:
    if value is None:
        return None
    digits = _NON_DIGITS.sub("", str(value))
    return digits or None


def to_number(value: Any) -> int | float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip()) if not isinstance(value, (int, float)) else float(value)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return int(number) if number.is_integer() else number


def norm_phone(value: Any) -> str | None:
    """
    Keep E.164-like numbers of 8-15 digits; anything else is dropped.
    """

    if not value:
        return None
    candidate = _PHONE_STRIP.sub("", str(value).strip())
    return candidate if _PHONE_VALID.match(candidate) else None


@dataclass(frozen=True)
class FieldTransform:
    """
    One mapping row. With several source fields, the first one producing a
    non-empty value wins.
    """

    source_fields: tuple[str, ...]
    transform: Transform
    target_field: str

    def resolve(self, raw: Mapping[str, Any]) -> Any:
        for source_field in self.source_fields:
            value = self.transform(raw.get(source_field))
            if value is not None:
                return value
        return None


def field(source: str | Iterable[str], transform: Transform, target: str) -> FieldTransform:
    sources = (source,) if isinstance(source, str) else tuple(source)
    return FieldTransform(source_fields=sources, transform=transform, target_field=target)


@dataclass(frozen=True)
class EntityMapping:
    """
    Transform table for one entity type plus its mandatory target fields.
    """

    name: str
    transforms: tuple[FieldTransform, ...]
    required_fields: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        problems: list[str] = []
        seen: set[str] = set()
        for row in self.transforms:
            if not row.source_fields or not all(isinstance(src, str) and src for src in row.source_fields):
                problems.append(f"row for '{row.target_field}' has no valid source field")
            if not callable(row.transform):
                problems.append(f"transform for '{row.target_field}' is not callable")
            if row.target_field in seen:
                problems.append(f"duplicate target field '{row.target_field}'")
            seen.add(row.target_field)
        for required in self.required_fields:
            if required not in seen:
                problems.append(f"required field '{required}' is never produced")
        if problems:
            raise ValueError(f"Invalid mapping '{self.name}': " + "; ".join(problems))

    @property
    def target_fields(self) -> tuple[str, ...]:
        return tuple(row.target_field for row in self.transforms)

    def apply(self, raw: Mapping[str, Any]) -> dict[str, Any]:
        """
        Build the target payload; fields resolving to None are omitted.
        """

        payload: dict[str, Any] = {}
        for row in self.transforms:
            value = row.resolve(raw)
            if value is not None:
                payload[row.target_field] = value
        return payload

    def map_record(self, raw: Mapping[str, Any]) -> dict[str, Any]:
        payload = self.apply(raw)
        missing = tuple(name for name in self.required_fields if payload.get(name) in (None, ""))
        if missing:
            raise RecordValidationError(
                f"{self.name}: missing mandatory field(s) {', '.join(missing)}",
                missing_fields=missing,
            )
        return payload


@dataclass(frozen=True)
class MappedRecord:
    source: SourceRecord
    payload: dict[str, Any]


@dataclass(frozen=True)
class MappingOutcome:
    records: list[MappedRecord]
    dropped: int
    missing_counts: dict[str, int]


def map_records(records: Iterable[SourceRecord], mapping: EntityMapping) -> MappingOutcome:
    """
    Map every record, dropping and counting those that fail validation.
    """

    mapped: list[MappedRecord] = []
    dropped = 0
    missing_counts: dict[str, int] = {}
    for record in records:
        try:
            payload = mapping.map_record(record.attributes)
        except RecordValidationError as exc:
            dropped += 1
            for name in exc.missing_fields:
                missing_counts[name] = missing_counts.get(name, 0) + 1
            continue
        mapped.append(MappedRecord(source=record, payload=payload))
    return MappingOutcome(records=mapped, dropped=dropped, missing_counts=missing_counts)


to_revision: Transform = parse_revision
