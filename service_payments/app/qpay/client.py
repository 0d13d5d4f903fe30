"""
Public facade over the QPay gateway: invoice and payment operations plus the
administrative token remediation surface.
"""

import time
from typing import Any, Callable, List, Mapping, Optional
from urllib.parse import quote

import httpx

from shared.logging import get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from shared.secrets_manager import SecretsManager

from .credentials import CredentialResolver
from .executor import RequestExecutor
from .token_acquirer import TokenAcquirer
from .token_store import TokenStatus, TokenStore

INVOICE_PATH = "/v2/invoice"
PAYMENT_CHECK_PATH = "/v2/payment/check"


class GatewayClient:
    """Tenant-scoped QPay client.

    Each client owns its token cache; two clients in one process never share
    tokens. None of the business operations retries beyond the executor's
    token recovery, and none is idempotent on the gateway side: callers that
    need exactly-once invoice creation must deduplicate upstream.

    Usage:
        async with GatewayClient(tenant_store, base_url=url) as client:
            invoice = await client.create_invoice("tenant-1", {...})
    """

    def __init__(self, tenant_store, *, base_url: str, timeout: float = 30.0,
                 max_ttl: float = 3600, min_ttl: float = 60, default_expires_in: float = 3600,
                 http_client: Optional[httpx.AsyncClient] = None,
                 secrets: Optional[SecretsManager] = None,
                 metrics: Optional[MetricsCollector] = None,
                 clock: Callable[[], float] = time.time):
        self.logger = get_logger("payments.qpay.client")
        self.metrics = metrics or get_metrics_collector("payments")

        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=timeout,
            headers={"Content-Type": "application/json"}
        )

        self.resolver = CredentialResolver(tenant_store, base_url, secrets=secrets)
        self.token_store = TokenStore(max_ttl=max_ttl, min_ttl=min_ttl, clock=clock, metrics=self.metrics)
        self.acquirer = TokenAcquirer(
            self.http_client,
            default_expires_in=default_expires_in,
            clock=clock,
            metrics=self.metrics
        )
        self.executor = RequestExecutor(
            self.resolver,
            self.token_store,
            self.acquirer,
            self.http_client,
            metrics=self.metrics
        )

    @classmethod
    def from_config(cls, config, tenant_store, **kwargs) -> "GatewayClient":
        """Build a client from service settings."""
        secrets = SecretsManager(config.master_key) if config.master_key else None
        options = dict(
            base_url=config.qpay_base_url,
            timeout=config.qpay_timeout_seconds,
            max_ttl=config.qpay_token_max_ttl_seconds,
            min_ttl=config.qpay_token_min_ttl_seconds,
            default_expires_in=config.qpay_default_expires_in,
            secrets=secrets,
        )
        options.update(kwargs)
        return cls(tenant_store, **options)

    async def __aenter__(self) -> "GatewayClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        """Close the HTTP client if this instance created it."""
        if self._owns_http_client:
            await self.http_client.aclose()

    # ── Invoices ──────────────────────────────────────────────────────────────

    async def create_invoice(self, tenant_id: str, invoice: Mapping[str, Any],
                             timeout: Optional[float] = None) -> Any:
        return await self.executor.execute(tenant_id, "POST", INVOICE_PATH, dict(invoice), timeout=timeout)

    async def get_invoice(self, tenant_id: str, invoice_id: str, timeout: Optional[float] = None) -> Any:
        return await self.executor.execute(tenant_id, "GET", _invoice_path(invoice_id), timeout=timeout)

    async def cancel_invoice(self, tenant_id: str, invoice_id: str, timeout: Optional[float] = None) -> Any:
        return await self.executor.execute(tenant_id, "DELETE", _invoice_path(invoice_id), timeout=timeout)

    # ── Payments ──────────────────────────────────────────────────────────────

    async def check_payment(self, tenant_id: str, invoice_id: str, timeout: Optional[float] = None) -> Any:
        return await self.executor.execute(
            tenant_id,
            "POST",
            PAYMENT_CHECK_PATH,
            {"invoice_id": invoice_id},
            timeout=timeout
        )

    # ── Administration ────────────────────────────────────────────────────────

    def invalidate_token(self, tenant_id: str) -> bool:
        """Force the tenant's next call to acquire a fresh token."""
        removed = self.token_store.invalidate(tenant_id)
        self.logger.info("Administrative token invalidation", tenant_id=tenant_id, removed=removed)
        return removed

    def list_poisoned_tenants(self, threshold_seconds: Optional[float] = None) -> List[str]:
        """Tenants whose cached expiry lies beyond the threshold (default: max TTL)."""
        return self.token_store.list_poisoned(self._threshold(threshold_seconds))

    def purge_poisoned_tenants(self, threshold_seconds: Optional[float] = None) -> List[str]:
        """Invalidate every tenant ``list_poisoned_tenants`` reports."""
        purged = self.token_store.purge_poisoned(self._threshold(threshold_seconds))
        self.logger.info("Administrative poisoned token purge", purged=purged)
        return purged

    def token_status(self, tenant_id: str) -> Optional[TokenStatus]:
        return self.token_store.status(tenant_id)

    async def verify_credentials(self, tenant_id: str) -> TokenStatus:
        """Drop the cached token and acquire a new one with current credentials."""
        self.token_store.invalidate(tenant_id)
        record = await self.executor.ensure_token(tenant_id)
        self.logger.info("Tenant credentials verified", tenant_id=tenant_id)
        return TokenStatus.of(record, self.token_store.clock(), self.token_store.max_ttl)

    def _threshold(self, threshold_seconds: Optional[float]) -> float:
        if threshold_seconds is None:
            return self.token_store.max_ttl
        if threshold_seconds < 0:
            raise ValueError("threshold_seconds must be non-negative")
        return threshold_seconds


def _invoice_path(invoice_id: str) -> str:
    if not invoice_id:
        raise ValueError("invoice_id is required")
    return f"{INVOICE_PATH}/{quote(str(invoice_id), safe='')}"
