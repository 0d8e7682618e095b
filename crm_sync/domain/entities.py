"""
crm_sync/domain/entities.py

Descriptors for the entity types exchanged with each system.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SourceEntity:
    """
    One Galaxy view: where to read it and which fields carry identity and revision.
    """

    name: str
    path: str
    id_field: str
    revision_field: str


@dataclass(frozen=True)
class TargetEntity:
    """
    One Zoho CRM module with its dedup key and mirrored revision field.
    """

    module: str
    dedup_field: str
    revision_field: str
