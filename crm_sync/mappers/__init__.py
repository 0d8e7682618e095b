"""
crm_sync/mappers package marker.
"""

from crm_sync.mappers.accounts import AFFILIATE_MAPPING, CUSTOMER_MAPPING
from crm_sync.mappers.field_table import EntityMapping, FieldTransform, MappedRecord, map_records

__all__ = [
    "AFFILIATE_MAPPING",
    "CUSTOMER_MAPPING",
    "EntityMapping",
    "FieldTransform",
    "MappedRecord",
    "map_records",
]
