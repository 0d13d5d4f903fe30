"""
Tenant configuration lookup and credential resolution for the QPay gateway.
"""

import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from shared.errors import ConfigurationError
from shared.logging import get_logger
from shared.secrets_manager import SecretsManager, SecretDecryptionError, is_encrypted

REQUIRED_FIELDS = ("username", "password", "terminal_id")


@dataclass(frozen=True)
class TenantCredentials:
    """Merchant credentials for one tenant."""
    tenant_id: str
    base_url: str
    username: str
    password: str = field(repr=False)
    terminal_id: str
    merchant_id: Optional[str] = None


class InMemoryTenantConfigStore:
    """Tenant configuration records keyed by tenant id.

    Records are plain mappings in either flat form::

        {"username": ..., "password": ..., "terminal_id": ..., "base_url": ...}

    or the organization layout, with the gateway settings under ``qpay``::

        {"qpay": {"credentials": {"terminal_id": ...}, "username": ..., ...}}
    """

    def __init__(self, records: Optional[Mapping[str, Mapping[str, Any]]] = None):
        self._records: Dict[str, Dict[str, Any]] = {
            tenant_id: dict(record) for tenant_id, record in (records or {}).items()
        }
        self._lock = threading.Lock()

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "InMemoryTenantConfigStore":
        """Load tenant records from a JSON file.

        The file holds either ``{"tenants": {...}}`` or the mapping itself.
        """
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ConfigurationError(f"Tenant configuration file {path} must contain a JSON object")
        records = data.get("tenants", data)
        return cls(records)

    def get(self, tenant_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._records.get(tenant_id)
            return dict(record) if record is not None else None

    def upsert(self, tenant_id: str, record: Mapping[str, Any]) -> None:
        with self._lock:
            self._records[tenant_id] = dict(record)

    def remove(self, tenant_id: str) -> bool:
        with self._lock:
            return self._records.pop(tenant_id, None) is not None

    def tenant_ids(self):
        with self._lock:
            return sorted(self._records)


class CredentialResolver:
    """Resolves a tenant's gateway credentials from tenant configuration.

    Credentials are read on every call so rotated passwords or terminals take
    effect without a restart. Token-like fields that a tenant record may still
    carry (``token``, ``qpay.token``) are never read.
    """

    def __init__(self, tenant_store, default_base_url: str,
                 secrets: Optional[SecretsManager] = None):
        self.tenant_store = tenant_store
        self.default_base_url = default_base_url.rstrip("/")
        self.secrets = secrets
        self.logger = get_logger("payments.qpay.credentials")

    def resolve(self, tenant_id: str) -> TenantCredentials:
        record = self.tenant_store.get(tenant_id)
        if record is None:
            raise ConfigurationError(
                f"Unknown tenant: {tenant_id}",
                tenant_id=tenant_id,
                details={"reason": "unknown_tenant"}
            )

        settings = _gateway_settings(record)

        missing = [name for name in REQUIRED_FIELDS if not _present(settings.get(name))]
        if missing:
            self.logger.warning(
                "Incomplete gateway configuration",
                tenant_id=tenant_id,
                missing=missing
            )
            raise ConfigurationError(
                f"QPay configuration for tenant {tenant_id} is missing: {', '.join(missing)}",
                tenant_id=tenant_id,
                details={"missing": missing}
            )

        base_url = settings.get("base_url")
        base_url = str(base_url).rstrip("/") if _present(base_url) else self.default_base_url

        return TenantCredentials(
            tenant_id=tenant_id,
            base_url=base_url,
            username=str(settings["username"]).strip(),
            password=self._reveal(tenant_id, str(settings["password"])),
            terminal_id=str(settings["terminal_id"]).strip(),
            merchant_id=settings.get("merchant_id"),
        )

    def _reveal(self, tenant_id: str, password: str) -> str:
        if not is_encrypted(password):
            return password
        if self.secrets is None:
            raise ConfigurationError(
                f"Password for tenant {tenant_id} is encrypted but no master key is configured",
                tenant_id=tenant_id
            )
        try:
            return self.secrets.decrypt_secret(password)
        except SecretDecryptionError as e:
            raise ConfigurationError(
                f"Password for tenant {tenant_id} could not be decrypted",
                tenant_id=tenant_id
            ) from e


def _gateway_settings(record: Mapping[str, Any]) -> Dict[str, Any]:
    """Flatten a tenant record into the gateway fields, nested values winning."""
    settings: Dict[str, Any] = {}
    for key in REQUIRED_FIELDS + ("base_url", "merchant_id"):
        if key in record:
            settings[key] = record[key]

    qpay = record.get("qpay")
    if isinstance(qpay, Mapping):
        for key in REQUIRED_FIELDS + ("base_url", "merchant_id"):
            if key in qpay:
                settings[key] = qpay[key]
        credentials = qpay.get("credentials")
        if isinstance(credentials, Mapping):
            for key in REQUIRED_FIELDS + ("base_url",):
                if key in credentials:
                    settings[key] = credentials[key]
    return settings


def _present(value: Any) -> bool:
    return value is not None and str(value).strip() != ""
