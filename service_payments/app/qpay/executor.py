"""
Authenticated request execution with bounded token recovery.

A business call runs through at most three attempts::

    INITIAL    -> send with the cached (or freshly acquired) token
    REFRESH    -> on 401, refresh the token once and resend
    REACQUIRE  -> on refresh failure or a second 401, drop the token,
                  acquire a clean one and resend a final time

Anything other than a 401 ends the cascade immediately.
"""

import asyncio
import time
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from shared.errors import (
    AcquisitionError,
    AuthenticationError,
    GatewayAuthError,
    GatewayRequestError,
    TransportError,
    body_excerpt,
)
from shared.logging import get_logger

from .credentials import CredentialResolver, TenantCredentials
from .token_acquirer import TokenAcquirer
from .token_store import TokenRecord, TokenStore


class CascadeStep(str, Enum):
    """Attempts of a single execute call, in order."""
    INITIAL = "initial"
    REFRESH = "refresh"
    REACQUIRE = "reacquire"


CASCADE = (CascadeStep.INITIAL, CascadeStep.REFRESH, CascadeStep.REACQUIRE)


class RequestExecutor:
    """Runs tenant-scoped gateway calls and keeps the tenant's token alive."""

    def __init__(self, resolver: CredentialResolver, token_store: TokenStore,
                 acquirer: TokenAcquirer, http_client: httpx.AsyncClient, metrics=None):
        self.resolver = resolver
        self.token_store = token_store
        self.acquirer = acquirer
        self.http_client = http_client
        self.metrics = metrics
        self.logger = get_logger("payments.qpay.executor")

        # tenant_id -> in-flight acquisition shared by concurrent callers
        self._inflight: Dict[str, asyncio.Task] = {}

    async def execute(self, tenant_id: str, method: str, path: str, body: Any = None,
                      timeout: Optional[float] = None) -> Any:
        """Send an authenticated request and return the gateway's JSON payload.

        Raises:
            ConfigurationError: tenant credentials are unknown or incomplete
            AuthenticationError: the gateway rejected the merchant credentials
            AcquisitionError: the token endpoint could not be reached
            TransportError: the business call could not be delivered or the
                deadline elapsed
            GatewayAuthError: the 401 recovery cascade was exhausted
            GatewayRequestError: the gateway answered with a non-401 error
        """
        method = method.upper()
        if timeout is None:
            return await self._run_cascade(tenant_id, method, path, body)

        try:
            return await asyncio.wait_for(self._run_cascade(tenant_id, method, path, body), timeout)
        except asyncio.TimeoutError as e:
            self.logger.warning(
                "Gateway call deadline exceeded",
                tenant_id=tenant_id,
                method=method,
                path=path,
                timeout=timeout
            )
            raise TransportError(
                f"Gateway call exceeded deadline of {timeout}s",
                tenant_id=tenant_id,
                endpoint=path
            ) from e

    async def ensure_token(self, tenant_id: str) -> TokenRecord:
        """Return a usable token for the tenant, acquiring one if needed."""
        record = self.token_store.get(tenant_id)
        if record is not None:
            return record
        return await self._acquire_shared(tenant_id)

    async def _run_cascade(self, tenant_id: str, method: str, path: str, body: Any) -> Any:
        credentials = self.resolver.resolve(tenant_id)
        record = await self.ensure_token(tenant_id)
        last_response: Optional[httpx.Response] = None

        for step in CASCADE:
            if step is not CascadeStep.INITIAL:
                record = await self._recover(step, tenant_id, credentials, record, last_response)
                if record is None:
                    continue

            response = await self._send(credentials, record, method, path, body, step)
            if response.status_code != 401:
                if step is not CascadeStep.INITIAL:
                    self._count_cascade(f"recovered_by_{step.value}")
                return self._unwrap(tenant_id, method, path, response)

            self.logger.info(
                "Gateway rejected bearer token",
                tenant_id=tenant_id,
                method=method,
                path=path,
                step=step.value
            )
            last_response = response

        self._count_cascade("exhausted")
        self.logger.error(
            "Token recovery exhausted",
            tenant_id=tenant_id,
            method=method,
            path=path
        )
        raise GatewayAuthError(
            f"Gateway kept rejecting tokens for {method} {path}",
            tenant_id=tenant_id,
            endpoint=path,
            status_code=last_response.status_code if last_response is not None else None,
            body=body_excerpt(last_response) if last_response is not None else None
        )

    async def _recover(self, step: CascadeStep, tenant_id: str, credentials: TenantCredentials,
                       record: Optional[TokenRecord],
                       last_response: Optional[httpx.Response]) -> Optional[TokenRecord]:
        """Produce the token for a recovery step, or None to move to the next step."""
        if step is CascadeStep.REFRESH:
            cached = self.token_store.get(tenant_id)
            current = cached.token if cached is not None else record.token
            try:
                grant = await self.acquirer.refresh(current, credentials)
            except (TransportError, AuthenticationError) as e:
                self.logger.warning(
                    "Token refresh failed, falling back to reacquisition",
                    tenant_id=tenant_id,
                    error=str(e)
                )
                return None
            return self.token_store.put(tenant_id, grant.token, grant.expires_in_seconds)

        self.token_store.invalidate(tenant_id)
        try:
            return await self._acquire_shared(tenant_id)
        except AcquisitionError as e:
            self._count_cascade("exhausted")
            raise GatewayAuthError(
                "Token reacquisition failed",
                tenant_id=tenant_id,
                endpoint=e.endpoint,
                status_code=last_response.status_code if last_response is not None else None,
                body=str(e)
            ) from e

    async def _acquire_shared(self, tenant_id: str) -> TokenRecord:
        """Acquire a token, collapsing concurrent acquisitions for one tenant."""
        task = self._inflight.get(tenant_id)
        if task is None:
            task = asyncio.ensure_future(self._acquire_and_store(tenant_id))
            self._inflight[tenant_id] = task
            task.add_done_callback(lambda done: self._forget(tenant_id, done))
        else:
            self.logger.debug("Joining in-flight token acquisition", tenant_id=tenant_id)
        # A cancelled caller must not cancel the acquisition other callers share
        return await asyncio.shield(task)

    async def _acquire_and_store(self, tenant_id: str) -> TokenRecord:
        credentials = self.resolver.resolve(tenant_id)
        grant = await self.acquirer.acquire(credentials)
        return self.token_store.put(tenant_id, grant.token, grant.expires_in_seconds)

    def _forget(self, tenant_id: str, task: asyncio.Task):
        if self._inflight.get(tenant_id) is task:
            del self._inflight[tenant_id]
        if not task.cancelled():
            # Mark the exception retrieved; waiters re-raise it themselves
            task.exception()

    async def _send(self, credentials: TenantCredentials, record: TokenRecord, method: str,
                    path: str, body: Any, step: CascadeStep) -> httpx.Response:
        url = f"{credentials.base_url}{path}"
        headers = {"Authorization": f"Bearer {record.token}"}
        json_body = body if method in ("POST", "PUT", "PATCH") else None

        start_time = time.time()
        try:
            response = await self.http_client.request(method, url, json=json_body, headers=headers)
        except httpx.TransportError as e:
            self.logger.error(
                "Gateway unreachable",
                tenant_id=credentials.tenant_id,
                method=method,
                path=path,
                step=step.value,
                error=str(e)
            )
            raise TransportError(
                f"Gateway unreachable: {e}",
                tenant_id=credentials.tenant_id,
                endpoint=path
            ) from e

        duration = time.time() - start_time
        self.logger.debug(
            "Gateway request",
            tenant_id=credentials.tenant_id,
            method=method,
            path=path,
            step=step.value,
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2)
        )
        if self.metrics is not None:
            self.metrics.increment_counter(
                "qpay_gateway_requests_total",
                method=method,
                status_code=str(response.status_code)
            )
            self.metrics.observe_histogram("qpay_gateway_request_duration_seconds", duration, method=method)
        return response

    def _unwrap(self, tenant_id: str, method: str, path: str, response: httpx.Response) -> Any:
        if not response.is_success:
            body = body_excerpt(response)
            self.logger.warning(
                "Gateway request failed",
                tenant_id=tenant_id,
                method=method,
                path=path,
                status_code=response.status_code,
                body=body
            )
            raise GatewayRequestError(
                f"{method} {path} returned {response.status_code}",
                tenant_id=tenant_id,
                endpoint=path,
                status_code=response.status_code,
                body=body
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return response.text

    def _count_cascade(self, outcome: str):
        if self.metrics is not None:
            self.metrics.increment_counter("qpay_auth_cascade_total", outcome=outcome)
