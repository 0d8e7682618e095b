"""
crm_sync/connectors package marker.
"""

from crm_sync.connectors.base import HTTPConnector
from crm_sync.connectors.filters import FilterOperator, build_raw_filter
from crm_sync.connectors.galaxy import GalaxyConnector
from crm_sync.connectors.zoho_crm import ZohoCrmConnector

__all__ = [
    "FilterOperator",
    "GalaxyConnector",
    "HTTPConnector",
    "ZohoCrmConnector",
    "build_raw_filter",
]
