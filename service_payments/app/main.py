"""
Payments service for the Payments Access Layer.

Hosts the QPay gateway client and exposes the token remediation surface
operators use instead of editing tenant records by hand.
"""

import sys
import os
import secrets
from typing import Dict, Optional

# Add shared directory to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from fastapi import Depends, Header, HTTPException, Query

from shared.base_service import BaseService
from shared.errors import ConfigurationError, PaymentsException
from shared.logging import set_tenant_context
from .models import (
    PoisonedTenantsResponse,
    PurgeResponse,
    TokenInvalidationResponse,
    TokenStatusResponse,
)
from .qpay import GatewayClient, InMemoryTenantConfigStore


class PaymentsService(BaseService):
    """Payments service implementation."""

    def __init__(self, tenant_store=None, gateway_client: Optional[GatewayClient] = None, **config_overrides):
        super().__init__("payments", 8020, **config_overrides)

        if tenant_store is None:
            if self.config.qpay_tenants_file:
                tenant_store = InMemoryTenantConfigStore.from_file(self.config.qpay_tenants_file)
            else:
                tenant_store = InMemoryTenantConfigStore()
        self.tenant_store = tenant_store
        self.gateway = gateway_client or GatewayClient.from_config(
            self.config,
            tenant_store,
            metrics=self.metrics
        )

        self._setup_payments_routes()

    def _setup_payments_routes(self):
        """Set up payments-specific routes."""

        async def require_admin(x_admin_key: Optional[str] = Header(default=None)):
            expected = self.config.admin_api_key
            if expected and not (x_admin_key and secrets.compare_digest(x_admin_key, expected)):
                raise HTTPException(status_code=401, detail="Invalid admin key")

        admin = [Depends(require_admin)]

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "payments",
                "message": "Payments Access Layer - Payments Service",
                "version": "1.0.0",
                "capabilities": ["qpay_gateway", "token_administration"]
            }

        @self.app.get("/admin/tokens/poisoned", response_model=PoisonedTenantsResponse, dependencies=admin)
        async def list_poisoned(threshold_seconds: Optional[float] = Query(default=None, ge=0)):
            """List tenants whose cached token expiry is implausibly far ahead."""
            threshold = self._threshold(threshold_seconds)
            return PoisonedTenantsResponse(
                threshold_seconds=threshold,
                tenants=self.gateway.list_poisoned_tenants(threshold)
            )

        @self.app.post("/admin/tokens/poisoned/purge", response_model=PurgeResponse, dependencies=admin)
        async def purge_poisoned(threshold_seconds: Optional[float] = Query(default=None, ge=0)):
            """Invalidate every poisoned token in one pass."""
            threshold = self._threshold(threshold_seconds)
            return PurgeResponse(
                threshold_seconds=threshold,
                purged=self.gateway.purge_poisoned_tenants(threshold)
            )

        @self.app.get("/admin/tokens/{tenant_id}", response_model=TokenStatusResponse, dependencies=admin)
        async def token_status(tenant_id: str):
            """Describe a tenant's cached token without revealing it."""
            set_tenant_context(tenant_id)
            status = self.gateway.token_status(tenant_id)
            if status is None:
                raise HTTPException(status_code=404, detail=f"No cached token for tenant {tenant_id}")
            return TokenStatusResponse.from_status(status)

        @self.app.delete("/admin/tokens/{tenant_id}", response_model=TokenInvalidationResponse, dependencies=admin)
        async def invalidate_token(tenant_id: str):
            """Force the tenant's next gateway call to acquire a fresh token."""
            set_tenant_context(tenant_id)
            return TokenInvalidationResponse(
                tenant_id=tenant_id,
                invalidated=self.gateway.invalidate_token(tenant_id)
            )

        @self.app.post("/admin/tenants/{tenant_id}/verify", response_model=TokenStatusResponse, dependencies=admin)
        async def verify_credentials(tenant_id: str):
            """Acquire a fresh token with the tenant's current credentials."""
            set_tenant_context(tenant_id)
            status = await self.gateway.verify_credentials(tenant_id)
            return TokenStatusResponse.from_status(status)

    def _threshold(self, threshold_seconds: Optional[float]) -> float:
        if threshold_seconds is None:
            return float(self.config.qpay_token_max_ttl_seconds)
        return threshold_seconds

    def _status_for(self, exc: PaymentsException) -> int:
        if isinstance(exc, ConfigurationError) and exc.details.get("reason") == "unknown_tenant":
            return 404
        return exc.http_status

    async def _check_dependencies(self) -> Dict[str, str]:
        return {
            "tenants_configured": str(len(self.tenant_store.tenant_ids())),
            "cached_tokens": str(len(self.gateway.token_store)),
        }

    async def _on_shutdown(self):
        await self.gateway.aclose()


def create_app(**kwargs):
    """Create FastAPI application."""
    service = PaymentsService(**kwargs)
    return service.app


if __name__ == "__main__":
    service = PaymentsService()
    service.run()
