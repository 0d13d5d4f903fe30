"""
Response models for the Payments Service admin routes.
"""

from typing import List

from pydantic import BaseModel, Field

from .qpay.token_store import TokenStatus


class TokenStatusResponse(BaseModel):
    """Masked view of a tenant's cached token."""
    tenant_id: str
    issued_at: float
    expires_at: float
    expires_in_seconds: float
    expired: bool
    poisoned: bool

    @classmethod
    def from_status(cls, status: TokenStatus) -> "TokenStatusResponse":
        return cls(**status.to_dict())


class TokenInvalidationResponse(BaseModel):
    """Result of an administrative invalidation."""
    tenant_id: str
    invalidated: bool


class PoisonedTenantsResponse(BaseModel):
    """Tenants whose cached expiry exceeds the threshold."""
    threshold_seconds: float
    tenants: List[str] = Field(default_factory=list)


class PurgeResponse(BaseModel):
    """Tenants whose poisoned tokens were invalidated."""
    threshold_seconds: float
    purged: List[str] = Field(default_factory=list)
