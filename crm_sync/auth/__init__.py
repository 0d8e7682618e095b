"""
crm_sync/auth package marker.
"""

from crm_sync.auth.galaxy_auth import GalaxyAuthenticator
from crm_sync.auth.session_store import SessionStore
from crm_sync.auth.token_cache import AccessToken, SourceSession, TokenCache
from crm_sync.auth.zoho_oauth import ZohoOAuthClient

__all__ = [
    "AccessToken",
    "GalaxyAuthenticator",
    "SessionStore",
    "SourceSession",
    "TokenCache",
    "ZohoOAuthClient",
]
