"""
Per-tenant bearer token cache for the QPay gateway client.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from shared.logging import get_logger


@dataclass(frozen=True)
class TokenRecord:
    """A cached bearer token. Times are epoch seconds."""
    tenant_id: str
    token: str
    issued_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def is_poisoned(self, max_ttl: float) -> bool:
        return self.expires_at - self.issued_at > max_ttl


@dataclass(frozen=True)
class TokenStatus:
    """Masked diagnostic view of a cached token."""
    tenant_id: str
    issued_at: float
    expires_at: float
    expires_in_seconds: float
    expired: bool
    poisoned: bool

    @classmethod
    def of(cls, record: "TokenRecord", now: float, max_ttl: float) -> "TokenStatus":
        return cls(
            tenant_id=record.tenant_id,
            issued_at=record.issued_at,
            expires_at=record.expires_at,
            expires_in_seconds=max(0.0, record.expires_at - now),
            expired=record.is_expired(now),
            poisoned=record.is_poisoned(max_ttl),
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "tenant_id": self.tenant_id,
            "issued_at": self.issued_at,
            "expires_at": self.expires_at,
            "expires_in_seconds": self.expires_in_seconds,
            "expired": self.expired,
            "poisoned": self.poisoned,
        }


class TokenStore:
    """In-process token cache, one record per tenant.

    Every write is bounded by ``max_ttl``: whatever lifetime the gateway
    reports, a record never outlives ``now + max_ttl``. Records whose stored
    lifetime exceeds the ceiling are poisoned and are never handed out.
    """

    def __init__(self, max_ttl: float = 3600, min_ttl: float = 60,
                 clock: Callable[[], float] = time.time, metrics=None):
        if min_ttl <= 0 or max_ttl < min_ttl:
            raise ValueError("TTL bounds must satisfy 0 < min_ttl <= max_ttl")
        self.max_ttl = max_ttl
        self.min_ttl = min_ttl
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("payments.qpay.token_store")

        self._records: Dict[str, TokenRecord] = {}
        self._lock = threading.Lock()

    def get(self, tenant_id: str) -> Optional[TokenRecord]:
        """Return the tenant's usable token, or None if absent, expired or poisoned."""
        with self._lock:
            record = self._records.get(tenant_id)
            if record is None:
                return None

            if record.is_poisoned(self.max_ttl):
                del self._records[tenant_id]
                self.logger.warning(
                    "Discarding poisoned token",
                    tenant_id=tenant_id,
                    issued_at=record.issued_at,
                    expires_at=record.expires_at,
                    max_ttl=self.max_ttl
                )
                self._record_anomaly("poisoned")
                return None

            if record.is_expired(self.clock()):
                del self._records[tenant_id]
                self.logger.debug("Cached token expired", tenant_id=tenant_id)
                return None

            return record

    def put(self, tenant_id: str, token: str, ttl_seconds: float) -> TokenRecord:
        """Cache a token for ``ttl_seconds``, clamped to the sane TTL bounds."""
        effective_ttl = min(max(ttl_seconds, self.min_ttl), self.max_ttl)

        if ttl_seconds <= 0 or ttl_seconds > self.max_ttl:
            self.logger.warning(
                "Clamping implausible token TTL",
                tenant_id=tenant_id,
                reported_ttl=ttl_seconds,
                effective_ttl=effective_ttl
            )
            self._record_anomaly("ttl_too_long" if ttl_seconds > self.max_ttl else "ttl_non_positive")

        with self._lock:
            now = self.clock()
            record = TokenRecord(
                tenant_id=tenant_id,
                token=token,
                issued_at=now,
                expires_at=now + effective_ttl,
            )
            self._records[tenant_id] = record

        self.logger.debug("Token cached", tenant_id=tenant_id, ttl=effective_ttl)
        return record

    def invalidate(self, tenant_id: str) -> bool:
        """Drop the tenant's token. Returns whether one was cached."""
        with self._lock:
            removed = self._records.pop(tenant_id, None) is not None
        if removed:
            self.logger.info("Token invalidated", tenant_id=tenant_id)
        return removed

    def list_poisoned(self, threshold_seconds: float) -> List[str]:
        """Tenants whose cached expiry lies more than ``threshold_seconds`` ahead."""
        with self._lock:
            return self._scan_poisoned(threshold_seconds)

    def purge_poisoned(self, threshold_seconds: float) -> List[str]:
        """Invalidate every tenant ``list_poisoned`` would report, atomically."""
        with self._lock:
            tenants = self._scan_poisoned(threshold_seconds)
            for tenant_id in tenants:
                del self._records[tenant_id]
        if tenants:
            self.logger.warning("Purged poisoned tokens", tenants=tenants, threshold_seconds=threshold_seconds)
        return tenants

    def status(self, tenant_id: str) -> Optional[TokenStatus]:
        """Describe the cached record without exposing the token itself."""
        with self._lock:
            record = self._records.get(tenant_id)
            now = self.clock()
        if record is None:
            return None
        return TokenStatus.of(record, now, self.max_ttl)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _scan_poisoned(self, threshold_seconds: float) -> List[str]:
        cutoff = self.clock() + threshold_seconds
        return sorted(
            tenant_id for tenant_id, record in self._records.items()
            if record.expires_at > cutoff
        )

    def _record_anomaly(self, kind: str):
        if self.metrics is not None:
            self.metrics.increment_counter("qpay_token_anomalies_total", kind=kind)
