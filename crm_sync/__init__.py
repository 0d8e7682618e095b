"""
crm_sync package marker.

Incremental Galaxy ERP -> Zoho CRM account synchronization.
"""
