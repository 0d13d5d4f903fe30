"""
QPay gateway client.

Components, leaves first:
- credentials: tenant configuration lookup and credential resolution
- token_store: per-tenant token cache with TTL sanity checks
- token_acquirer: token acquisition and refresh against the auth endpoints
- executor: authenticated calls with the bounded 401 recovery cascade
- client: public facade for invoices, payments and token administration
"""

from .client import GatewayClient
from .credentials import CredentialResolver, InMemoryTenantConfigStore, TenantCredentials
from .executor import CascadeStep, RequestExecutor
from .token_acquirer import TokenAcquirer, TokenGrant, normalize_expires_in
from .token_store import TokenRecord, TokenStatus, TokenStore

__all__ = [
    "GatewayClient",
    "CredentialResolver",
    "InMemoryTenantConfigStore",
    "TenantCredentials",
    "CascadeStep",
    "RequestExecutor",
    "TokenAcquirer",
    "TokenGrant",
    "normalize_expires_in",
    "TokenRecord",
    "TokenStatus",
    "TokenStore",
]
