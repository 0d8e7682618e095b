"""
crm_sync/api package marker.
"""
