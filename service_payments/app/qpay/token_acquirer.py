"""
Credential exchange against the QPay auth endpoints.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx

from shared.errors import AcquisitionError, AuthenticationError, body_excerpt
from shared.logging import get_logger

from .credentials import TenantCredentials

TOKEN_PATH = "/v2/auth/token"
REFRESH_PATH = "/v2/auth/refresh"

# expires_in values at or above these are absolute timestamps, not durations
EPOCH_SECONDS_FLOOR = 1_000_000_000
EPOCH_MILLIS_FLOOR = 1_000_000_000_000


@dataclass(frozen=True)
class TokenGrant:
    """A token issued by the gateway, with its lifetime in seconds from now."""
    token: str
    expires_in_seconds: float


def normalize_expires_in(raw: Any, now: float, default: float) -> float:
    """Convert a gateway ``expires_in`` into seconds remaining.

    The gateway has been observed to answer with an absolute epoch timestamp
    rather than a duration. Large values are therefore read as epoch seconds
    or epoch milliseconds and converted relative to ``now``.
    """
    if raw is None or isinstance(raw, bool):
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    if value != value:  # NaN
        return default

    if value >= EPOCH_MILLIS_FLOOR:
        return value / 1000.0 - now
    if value >= EPOCH_SECONDS_FLOOR:
        return value - now
    return value


class TokenAcquirer:
    """Performs token acquisition and refresh. Never retries."""

    def __init__(self, http_client: httpx.AsyncClient, default_expires_in: float = 3600,
                 clock: Callable[[], float] = time.time, metrics=None):
        self.http_client = http_client
        self.default_expires_in = default_expires_in
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("payments.qpay.token_acquirer")

    async def acquire(self, credentials: TenantCredentials) -> TokenGrant:
        """Exchange merchant credentials for a new bearer token."""
        grant = await self._exchange(
            credentials,
            TOKEN_PATH,
            json={"terminal_id": credentials.terminal_id},
            auth=httpx.BasicAuth(credentials.username, credentials.password),
            counter="qpay_token_acquisitions_total",
        )
        self.logger.info(
            "Token acquired",
            tenant_id=credentials.tenant_id,
            expires_in=grant.expires_in_seconds
        )
        return grant

    async def refresh(self, current_token: str, credentials: TenantCredentials) -> TokenGrant:
        """Exchange a held token for a fresh one."""
        grant = await self._exchange(
            credentials,
            REFRESH_PATH,
            json={},
            headers={"Authorization": f"Bearer {current_token}"},
            counter="qpay_token_refreshes_total",
        )
        self.logger.info(
            "Token refreshed",
            tenant_id=credentials.tenant_id,
            expires_in=grant.expires_in_seconds
        )
        return grant

    async def _exchange(self, credentials: TenantCredentials, path: str, *, json: Dict[str, Any],
                        counter: str, auth: Optional[httpx.Auth] = None,
                        headers: Optional[Dict[str, str]] = None) -> TokenGrant:
        url = f"{credentials.base_url}{path}"
        context = {"tenant_id": credentials.tenant_id, "endpoint": path}

        try:
            response = await self.http_client.post(url, json=json, auth=auth, headers=headers)
        except httpx.TransportError as e:
            self.logger.error("Token endpoint unreachable", error=str(e), **context)
            self._count(counter, "transport_error")
            raise AcquisitionError(f"Token endpoint unreachable: {e}", **context) from e

        if not response.is_success:
            body = body_excerpt(response)
            self.logger.warning(
                "Token endpoint rejected request",
                status_code=response.status_code,
                body=body,
                **context
            )
            self._count(counter, "rejected")
            raise AuthenticationError(
                f"Token endpoint returned {response.status_code}",
                status_code=response.status_code,
                body=body,
                **context
            )

        try:
            data = response.json()
        except ValueError as e:
            self._count(counter, "malformed")
            raise AcquisitionError(
                "Invalid JSON response from token endpoint",
                status_code=response.status_code,
                body=response.text[:500],
                **context
            ) from e

        token = (data.get("access_token") or data.get("token")) if isinstance(data, dict) else None
        if not token:
            self._count(counter, "malformed")
            raise AcquisitionError(
                "Token endpoint response carried no token",
                status_code=response.status_code,
                body=sorted(data) if isinstance(data, dict) else None,
                **context
            )

        expires_in = normalize_expires_in(data.get("expires_in"), self.clock(), self.default_expires_in)
        self._count(counter, "success")
        return TokenGrant(token=str(token), expires_in_seconds=expires_in)

    def _count(self, counter: str, outcome: str):
        if self.metrics is not None:
            self.metrics.increment_counter(counter, outcome=outcome)
